"""
Upstream Data Transfer Objects.

Hey future me - these are the ONLY shapes upstream JSON is allowed to take once it
crosses the client boundary. Each DTO has a ``from_api`` classmethod that picks out
the fields we consume and raises ValidationError when a required one is missing or
has the wrong type. Services never touch raw dicts.

Flow: upstream JSON -> DTO.from_api (validates) -> service -> repository -> entity
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from setlistsync.domain.exceptions import ValidationError


def _require_str(payload: dict[str, Any], key: str, what: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what}: missing or empty '{key}'", field=key)
    return value


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def _optional_float(value: Any) -> float | None:
    # Ticketing sends coordinates as strings ("40.7505")
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_dict(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{what}: expected an object, got {type(value).__name__}")
    return value


def _name_or_code(value: Any, *keys: str) -> str | None:
    """Ticketing location fields come as ``{"name": ...}`` objects or plain strings."""
    if isinstance(value, str):
        return _optional_str(value)
    if isinstance(value, dict):
        for key in keys:
            found = _optional_str(value.get(key))
            if found:
                return found
    return None


def _pick_image(images: Any) -> str | None:
    # Catalog returns largest first; the middle one is the ~320px variant
    if not isinstance(images, list) or not images:
        return None
    candidate = images[1] if len(images) > 1 else images[0]
    if isinstance(candidate, dict):
        return _optional_str(candidate.get("url"))
    return None


# =============================================================================
# Music catalog
# =============================================================================


@dataclass
class CatalogArtistDTO:
    """Artist as returned by the music catalog search / lookup."""

    external_id: str
    name: str
    popularity: int = 0
    genres: list[str] = field(default_factory=list)
    image_url: str | None = None

    @classmethod
    def from_api(cls, payload: Any) -> "CatalogArtistDTO":
        data = _as_dict(payload, "catalog artist")
        genres = data.get("genres") or []
        if not isinstance(genres, list):
            raise ValidationError("catalog artist: 'genres' must be a list", field="genres")
        return cls(
            external_id=_require_str(data, "id", "catalog artist"),
            name=_require_str(data, "name", "catalog artist"),
            popularity=_optional_int(data.get("popularity")) or 0,
            genres=[g for g in genres if isinstance(g, str)],
            image_url=_pick_image(data.get("images")),
        )


@dataclass
class CatalogAlbumDTO:
    external_id: str
    name: str
    album_type: str | None = None
    image_url: str | None = None

    @classmethod
    def from_api(cls, payload: Any) -> "CatalogAlbumDTO":
        data = _as_dict(payload, "catalog album")
        return cls(
            external_id=_require_str(data, "id", "catalog album"),
            name=_require_str(data, "name", "catalog album"),
            album_type=_optional_str(data.get("album_type")),
            image_url=_pick_image(data.get("images")),
        )


@dataclass
class CatalogTrackDTO:
    """Track from either the top-tracks endpoint or an album's track listing.

    Album track listings carry neither album info nor popularity, so the importer
    passes the album in and fills popularity from the top-tracks lookup.
    """

    external_id: str
    title: str
    album: str | None = None
    album_image_url: str | None = None
    duration_ms: int | None = None
    popularity: int | None = None
    preview_url: str | None = None

    @classmethod
    def from_api(
        cls, payload: Any, album: CatalogAlbumDTO | None = None
    ) -> "CatalogTrackDTO":
        data = _as_dict(payload, "catalog track")
        album_name = album.name if album else None
        album_image = album.image_url if album else None
        embedded_album = data.get("album")
        if album is None and isinstance(embedded_album, dict):
            album_name = _optional_str(embedded_album.get("name"))
            album_image = _pick_image(embedded_album.get("images"))
        return cls(
            external_id=_require_str(data, "id", "catalog track"),
            title=_require_str(data, "name", "catalog track"),
            album=album_name,
            album_image_url=album_image,
            duration_ms=_optional_int(data.get("duration_ms")),
            popularity=_optional_int(data.get("popularity")),
            preview_url=_optional_str(data.get("preview_url")),
        )


@dataclass
class Page:
    """One page of a paginated catalog collection.

    ``skipped`` counts raw entries dropped as malformed, so ``fetched`` is the
    page size the upstream actually sent. Short-page checks must use ``fetched``.
    """

    items: list[Any]
    total: int | None = None
    has_next: bool = False
    skipped: int = 0

    @property
    def fetched(self) -> int:
        return len(self.items) + self.skipped


# =============================================================================
# Ticketing
# =============================================================================


@dataclass
class TicketingAttractionDTO:
    external_id: str
    name: str

    @classmethod
    def from_api(cls, payload: Any) -> "TicketingAttractionDTO":
        data = _as_dict(payload, "ticketing attraction")
        return cls(
            external_id=_require_str(data, "id", "ticketing attraction"),
            name=_require_str(data, "name", "ticketing attraction"),
        )


@dataclass
class TicketingVenueDTO:
    external_id: str
    name: str
    city: str | None = None
    state: str | None = None
    country: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_api(cls, payload: Any) -> "TicketingVenueDTO":
        data = _as_dict(payload, "ticketing venue")
        location = data.get("location") if isinstance(data.get("location"), dict) else {}
        return cls(
            external_id=_require_str(data, "id", "ticketing venue"),
            name=_require_str(data, "name", "ticketing venue"),
            city=_name_or_code(data.get("city"), "name"),
            state=_name_or_code(data.get("state"), "stateCode", "name"),
            country=_name_or_code(data.get("country"), "countryCode", "name"),
            address=_name_or_code(data.get("address"), "line1"),
            latitude=_optional_float(location.get("latitude")),
            longitude=_optional_float(location.get("longitude")),
        )


@dataclass
class TicketingEventDTO:
    """A ticketing event. Only the first attraction and first venue are used."""

    external_id: str
    name: str
    local_date: date
    attraction: TicketingAttractionDTO
    venue: TicketingVenueDTO
    local_time: str | None = None
    status_code: str | None = None
    url: str | None = None

    @classmethod
    def from_api(cls, payload: Any) -> "TicketingEventDTO":
        data = _as_dict(payload, "ticketing event")
        event_id = _require_str(data, "id", "ticketing event")

        dates = data.get("dates") if isinstance(data.get("dates"), dict) else {}
        start = dates.get("start") if isinstance(dates.get("start"), dict) else {}
        raw_date = start.get("localDate")
        if not isinstance(raw_date, str):
            raise ValidationError(
                f"ticketing event {event_id}: missing dates.start.localDate",
                field="localDate",
            )
        try:
            local_date = date.fromisoformat(raw_date)
        except ValueError as e:
            raise ValidationError(
                f"ticketing event {event_id}: bad localDate {raw_date!r}",
                field="localDate",
            ) from e
        status = dates.get("status") if isinstance(dates.get("status"), dict) else {}

        embedded = data.get("_embedded") if isinstance(data.get("_embedded"), dict) else {}
        attractions = embedded.get("attractions")
        venues = embedded.get("venues")
        if not isinstance(attractions, list) or not attractions:
            raise ValidationError(
                f"ticketing event {event_id}: no attractions", field="attractions"
            )
        if not isinstance(venues, list) or not venues:
            raise ValidationError(f"ticketing event {event_id}: no venues", field="venues")

        return cls(
            external_id=event_id,
            name=_require_str(data, "name", "ticketing event"),
            local_date=local_date,
            local_time=_optional_str(start.get("localTime")),
            status_code=_optional_str(status.get("code")),
            url=_optional_str(data.get("url")),
            attraction=TicketingAttractionDTO.from_api(attractions[0]),
            venue=TicketingVenueDTO.from_api(venues[0]),
        )


@dataclass
class EventPage:
    """One page of ticketing search results.

    ``events`` holds the events that parsed; ``invalid`` counts the ones that did
    not, so callers can report them without the whole page failing.
    """

    events: list[TicketingEventDTO]
    page_number: int = 0
    total_pages: int = 0
    invalid: int = 0

    @property
    def has_next(self) -> bool:
        return self.page_number + 1 < self.total_pages


# =============================================================================
# Setlist history
# =============================================================================


@dataclass
class SetlistRecordDTO:
    """One performed setlist. ``songs`` is the flattened list across all sets."""

    external_id: str
    event_date: date
    artist_name: str
    venue_name: str | None = None
    songs: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: Any) -> "SetlistRecordDTO":
        data = _as_dict(payload, "setlist")
        setlist_id = _require_str(data, "id", "setlist")
        raw_date = _require_str(data, "eventDate", "setlist")
        try:
            event_date = datetime.strptime(raw_date, "%d-%m-%Y").date()
        except ValueError as e:
            raise ValidationError(
                f"setlist {setlist_id}: bad eventDate {raw_date!r}", field="eventDate"
            ) from e

        artist = data.get("artist") if isinstance(data.get("artist"), dict) else {}
        venue = data.get("venue") if isinstance(data.get("venue"), dict) else {}
        sets_wrapper = data.get("sets") if isinstance(data.get("sets"), dict) else {}
        sets = sets_wrapper.get("set") or []
        if not isinstance(sets, list):
            raise ValidationError(f"setlist {setlist_id}: 'sets.set' must be a list")

        songs: list[str] = []
        for set_ in sets:
            if not isinstance(set_, dict):
                continue
            for song in set_.get("song") or []:
                title = _optional_str(song.get("name")) if isinstance(song, dict) else None
                # Empty names are tape/intro placeholders
                if title:
                    songs.append(title)

        return cls(
            external_id=setlist_id,
            event_date=event_date,
            artist_name=_optional_str(artist.get("name")) or "",
            venue_name=_optional_str(venue.get("name")),
            songs=songs,
        )


__all__ = [
    "CatalogAlbumDTO",
    "CatalogArtistDTO",
    "CatalogTrackDTO",
    "EventPage",
    "Page",
    "SetlistRecordDTO",
    "TicketingAttractionDTO",
    "TicketingEventDTO",
    "TicketingVenueDTO",
]
