"""
Strava API integration - activity details, token refresh, push subscriptions.

Auth: per-athlete Bearer token for activities; application client_id/secret
for token refresh and subscription management.
Docs: https://developers.strava.com/docs/reference/
All calls have 10-second timeout per project standard.
"""
import logging
from typing import Optional

from src.integrations.provider_base import OAuthProvider

logger = logging.getLogger(__name__)

STRAVA_API_BASE = "https://www.strava.com/api/v3"
STRAVA_AUTH_BASE = "https://www.strava.com/oauth"

RUN_ACTIVITY_TYPES = ("Run", "VirtualRun")


class StravaClient(OAuthProvider):
    """Strava REST API client."""

    name = "strava"

    def __init__(self, client_id: str, client_secret: str):
        self.client_id = client_id
        self.client_secret = client_secret

    async def refresh_access_token(self, refresh_token: str) -> dict:
        """Refresh an athlete's access token. Strava rotates refresh tokens."""
        response = await self._send(
            "POST",
            f"{STRAVA_AUTH_BASE}/token",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        data = response.json()
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in", 21600),
        }

    async def get_activity(self, access_token: str, activity_id: int) -> dict:
        """Fetch a detailed activity (includes map.polyline and splits_metric)."""
        response = await self._send(
            "GET", f"{STRAVA_API_BASE}/activities/{activity_id}", access_token=access_token,
        )
        return response.json()

    # -- Push subscriptions ---------------------------------------------------

    async def create_subscription(self, callback_url: str, verify_token: str) -> dict:
        """Create the application's push subscription. Strava calls back to verify first."""
        response = await self._send(
            "POST",
            f"{STRAVA_API_BASE}/push_subscriptions",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "callback_url": callback_url,
                "verify_token": verify_token,
            },
        )
        subscription = response.json()
        logger.info("Strava subscription created: id=%s", subscription.get("id"))
        return subscription

    async def list_subscriptions(self) -> list[dict]:
        response = await self._send(
            "GET",
            f"{STRAVA_API_BASE}/push_subscriptions",
            params={"client_id": self.client_id, "client_secret": self.client_secret},
        )
        return response.json()

    async def delete_subscription(self, subscription_id: int) -> None:
        await self._send(
            "DELETE",
            f"{STRAVA_API_BASE}/push_subscriptions/{subscription_id}",
            params={"client_id": self.client_id, "client_secret": self.client_secret},
        )
        logger.info("Strava subscription deleted: id=%s", subscription_id)


def get_strava_client(settings: Optional[object] = None) -> StravaClient:
    if settings is None:
        from src.config import get_settings
        settings = get_settings()
    return StravaClient(settings.strava_client_id, settings.strava_client_secret)
