"""Tests for upstream DTO validation."""

from datetime import date

import pytest

from setlistsync.domain.dtos import (
    CatalogArtistDTO,
    CatalogTrackDTO,
    EventPage,
    SetlistRecordDTO,
    TicketingEventDTO,
    TicketingVenueDTO,
)
from setlistsync.domain.exceptions import ValidationError


class TestCatalogDTOs:
    """Catalog payload parsing."""

    def test_artist_requires_id_and_name(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            CatalogArtistDTO.from_api({"name": "The Weeknd"})
        assert exc_info.value.field == "id"

    def test_artist_defaults(self) -> None:
        artist = CatalogArtistDTO.from_api({"id": "a", "name": "A", "popularity": True})
        assert artist.popularity == 0
        assert artist.genres == []
        assert artist.image_url is None

    def test_artist_rejects_non_list_genres(self) -> None:
        with pytest.raises(ValidationError):
            CatalogArtistDTO.from_api({"id": "a", "name": "A", "genres": "pop"})

    def test_artist_single_image_used(self) -> None:
        artist = CatalogArtistDTO.from_api(
            {"id": "a", "name": "A", "images": [{"url": "https://img/only"}]}
        )
        assert artist.image_url == "https://img/only"

    def test_top_track_takes_album_from_payload(self) -> None:
        track = CatalogTrackDTO.from_api(
            {
                "id": "t1",
                "name": "Starboy",
                "popularity": 88,
                "album": {"name": "Starboy", "images": [{"url": "big"}, {"url": "mid"}]},
            }
        )
        assert track.album == "Starboy"
        assert track.album_image_url == "mid"
        assert track.popularity == 88

    def test_non_object_payload(self) -> None:
        with pytest.raises(ValidationError):
            CatalogTrackDTO.from_api(["not", "a", "dict"])


class TestTicketingDTOs:
    """Ticketing payload parsing."""

    def test_venue_accepts_plain_string_location_fields(self) -> None:
        venue = TicketingVenueDTO.from_api(
            {"id": "v", "name": "Club", "city": "Berlin", "country": "DE", "location": {}}
        )
        assert venue.city == "Berlin"
        assert venue.country == "DE"
        assert venue.latitude is None

    def test_event_invalid_date(self) -> None:
        payload = {
            "id": "e1",
            "name": "Show",
            "dates": {"start": {"localDate": "2030-13-45"}},
            "_embedded": {
                "attractions": [{"id": "a", "name": "A"}],
                "venues": [{"id": "v", "name": "V"}],
            },
        }
        with pytest.raises(ValidationError) as exc_info:
            TicketingEventDTO.from_api(payload)
        assert exc_info.value.field == "localDate"

    def test_event_uses_first_attraction_and_venue(self) -> None:
        payload = {
            "id": "e1",
            "name": "Festival Night",
            "dates": {"start": {"localDate": "2030-06-01"}, "status": {"code": "cancelled"}},
            "_embedded": {
                "attractions": [{"id": "a1", "name": "Headliner"}, {"id": "a2", "name": "Support"}],
                "venues": [{"id": "v1", "name": "Field"}],
            },
        }
        event = TicketingEventDTO.from_api(payload)
        assert event.attraction.name == "Headliner"
        assert event.local_date == date(2030, 6, 1)
        assert event.local_time is None
        assert event.status_code == "cancelled"

    def test_event_page_has_next(self) -> None:
        assert EventPage(events=[], page_number=0, total_pages=2).has_next
        assert not EventPage(events=[], page_number=1, total_pages=2).has_next


class TestSetlistRecordDTO:
    def test_empty_sets(self) -> None:
        record = SetlistRecordDTO.from_api(
            {"id": "s1", "eventDate": "01-02-2030", "sets": {"set": []}}
        )
        assert record.event_date == date(2030, 2, 1)
        assert record.songs == []
        assert record.artist_name == ""

    def test_sets_must_be_a_list(self) -> None:
        with pytest.raises(ValidationError):
            SetlistRecordDTO.from_api(
                {"id": "s1", "eventDate": "01-02-2030", "sets": {"set": {"song": []}}}
            )
