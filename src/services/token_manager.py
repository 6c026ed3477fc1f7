"""
Token lifecycle manager - always hands callers an access token that is valid
for at least the refresh buffer (5 minutes by default).

Provider-specific refresh logic lives behind OAuthProvider; this module only
picks the registered provider by name. Credential rows are mutated here and
nowhere else (last-writer-wins, refreshes are driven by expiry proximity).
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import upsert_statement
from src.errors import MissingCredential, RefreshFailed, UpstreamError
from src.integrations.provider_base import OAuthProvider
from src.models.auth_token import AuthToken, PROVIDER_SPOTIFY, PROVIDER_STRAVA
from src.utils.encryption import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)

REFRESH_BUFFER_SECONDS = 300


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenLifecycleManager:
    """Returns valid access tokens, refreshing through the provider when near expiry."""

    def __init__(
        self,
        providers: dict[str, OAuthProvider],
        buffer_seconds: int = REFRESH_BUFFER_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.providers = providers
        self.buffer = timedelta(seconds=buffer_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_valid_token(self, db: AsyncSession, user_id: uuid.UUID, provider: str) -> str:
        """
        Return an access token valid for at least the buffer from now.

        Raises:
            MissingCredential: no credential row for user/provider
            RefreshFailed: no refresh token, or the provider rejected the refresh
        """
        result = await db.execute(
            select(AuthToken).where(
                AuthToken.user_id == user_id,
                AuthToken.provider == provider,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            raise MissingCredential(
                f"No {provider} credential for user {user_id}",
                user_id=user_id, provider=provider,
            )

        now = self._clock()
        expires_at = _as_utc(credential.expires_at)
        if expires_at is not None and expires_at > now + self.buffer:
            return decrypt_secret(credential.access_token)

        return await self._refresh(db, credential, now)

    async def _refresh(self, db: AsyncSession, credential: AuthToken, now: datetime) -> str:
        provider_name = credential.provider
        refresh_token = decrypt_secret(credential.refresh_token)
        if not refresh_token:
            raise RefreshFailed(
                f"No refresh token available for {provider_name}",
                user_id=credential.user_id, provider=provider_name,
            )

        provider = self.providers.get(provider_name)
        if provider is None:
            raise RefreshFailed(
                f"No refresher registered for provider {provider_name}",
                user_id=credential.user_id, provider=provider_name,
            )

        try:
            grant = await provider.refresh_access_token(refresh_token)
        except UpstreamError as e:
            logger.warning(
                "Token refresh rejected: provider=%s user=%s status=%s",
                provider_name, str(credential.user_id)[:8], e.status_code,
            )
            raise RefreshFailed(
                f"{provider_name} refresh failed: {e}",
                user_id=credential.user_id, provider=provider_name,
            ) from e

        new_expires_at = now + timedelta(seconds=int(grant.get("expires_in") or 0))
        previous = _as_utc(credential.expires_at)
        if previous is not None and previous > new_expires_at:
            new_expires_at = previous

        credential.access_token = encrypt_secret(grant["access_token"])
        if grant.get("refresh_token"):
            credential.refresh_token = encrypt_secret(grant["refresh_token"])
        credential.expires_at = new_expires_at
        await db.flush()

        logger.info(
            "Token refreshed: provider=%s user=%s expires_at=%s",
            provider_name, str(credential.user_id)[:8], new_expires_at.isoformat(),
        )
        return grant["access_token"]

    async def get_valid_tokens(self, db: AsyncSession, user_id: uuid.UUID) -> dict[str, str]:
        """Valid tokens for every registered provider, keyed by provider name."""
        return {
            name: await self.get_valid_token(db, user_id, name)
            for name in self.providers
        }


async def store_credentials(
    db: AsyncSession,
    user_id: uuid.UUID,
    provider: str,
    access_token: str,
    refresh_token: Optional[str],
    expires_in: int,
) -> None:
    """
    Insert or replace a credential after an authorization-code exchange.
    An existing refresh token is kept when the provider does not send one.
    """
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    values = {
        "id": uuid.uuid4(),
        "user_id": user_id,
        "provider": provider,
        "access_token": encrypt_secret(access_token),
        "refresh_token": encrypt_secret(refresh_token),
        "expires_at": expires_at,
    }
    update_values = {
        "access_token": values["access_token"],
        "expires_at": expires_at,
        "updated_at": datetime.now(timezone.utc),
    }
    if refresh_token:
        update_values["refresh_token"] = values["refresh_token"]

    stmt = upsert_statement(db, AuthToken).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "provider"],
        set_=update_values,
    )
    await db.execute(stmt)
    logger.info("Credentials stored: provider=%s user=%s", provider, str(user_id)[:8])


def get_token_manager() -> TokenLifecycleManager:
    """Token manager wired with both upstream providers from settings."""
    from src.config import get_settings
    from src.integrations.spotify import get_spotify_client
    from src.integrations.strava import get_strava_client

    settings = get_settings()
    return TokenLifecycleManager(
        providers={
            PROVIDER_STRAVA: get_strava_client(settings),
            PROVIDER_SPOTIFY: get_spotify_client(settings),
        },
        buffer_seconds=settings.token_refresh_buffer_seconds,
    )
