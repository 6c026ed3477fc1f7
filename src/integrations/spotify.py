"""
Spotify Web API integration - recently played history and token refresh.

Auth: per-user Bearer token; refresh uses HTTP Basic with the app credentials.
Docs: https://developer.spotify.com/documentation/web-api
"""
import logging
from typing import Optional

import httpx

from src.integrations.provider_base import OAuthProvider

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_ACCOUNTS_BASE = "https://accounts.spotify.com"

RECENTLY_PLAYED_LIMIT = 50  # API maximum


class SpotifyClient(OAuthProvider):
    """Spotify Web API client."""

    name = "spotify"

    def __init__(self, client_id: str, client_secret: str):
        self.client_id = client_id
        self.client_secret = client_secret

    async def refresh_access_token(self, refresh_token: str) -> dict:
        """Refresh a user's access token. Spotify only sometimes issues a new refresh token."""
        response = await self._send(
            "POST",
            f"{SPOTIFY_ACCOUNTS_BASE}/api/token",
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=httpx.BasicAuth(self.client_id, self.client_secret),
        )
        data = response.json()
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in", 3600),
        }

    async def get_recently_played(
        self,
        access_token: str,
        limit: int = RECENTLY_PLAYED_LIMIT,
        after_ms: Optional[int] = None,
        before_ms: Optional[int] = None,
    ) -> list[dict]:
        """
        Fetch recently played items: [{"track": {...}, "played_at": str}].
        `after` and `before` are unix milliseconds; Spotify accepts only one.
        """
        params = {"limit": limit}
        if after_ms is not None:
            params["after"] = after_ms
        elif before_ms is not None:
            params["before"] = before_ms

        response = await self._send(
            "GET",
            f"{SPOTIFY_API_BASE}/me/player/recently-played",
            access_token=access_token,
            params=params,
        )
        return response.json().get("items", [])


def get_spotify_client(settings: Optional[object] = None) -> SpotifyClient:
    if settings is None:
        from src.config import get_settings
        settings = get_settings()
    return SpotifyClient(settings.spotify_client_id, settings.spotify_client_secret)
