"""
Error taxonomy for the activity mapping pipeline.

- ValidationError: malformed notification, rejected at the boundary
- CredentialError: missing or unrefreshable OAuth credentials (owner must re-authorize)
- UpstreamError: failed or rate-limited call to Strava / Spotify (retryable)
- MappingError: activity data that cannot be mapped (EmptyPath, ZeroDuration)
"""
from typing import Optional


class TrailtuneError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(TrailtuneError):
    """Notification is missing required fields or has malformed values."""


class CredentialError(TrailtuneError):
    """Credential problem for an owner/provider pair."""

    def __init__(self, message: str, user_id=None, provider: Optional[str] = None):
        super().__init__(message)
        self.user_id = user_id
        self.provider = provider


class MissingCredential(CredentialError):
    """No credential row exists for the owner/provider pair."""


class RefreshFailed(CredentialError):
    """Refresh token is absent or the provider rejected the refresh."""


class UpstreamError(TrailtuneError):
    """An external API call failed."""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class MappingError(TrailtuneError):
    """Activity data cannot be mapped onto a route."""


class EmptyPath(MappingError):
    """Route has no coordinates."""


class ZeroDuration(MappingError):
    """Activity duration is zero, so completion fractions are undefined."""
