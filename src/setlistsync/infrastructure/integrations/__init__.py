"""Upstream API clients."""

from setlistsync.infrastructure.integrations.setlistfm_client import SetlistFmClient
from setlistsync.infrastructure.integrations.spotify_client import SpotifyClient
from setlistsync.infrastructure.integrations.ticketmaster_client import TicketmasterClient

__all__ = ["SetlistFmClient", "SpotifyClient", "TicketmasterClient"]
