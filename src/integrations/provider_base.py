"""
Abstract OAuth provider interface - each upstream API implements this.
The token manager only ever calls refresh_access_token, so it never
branches on which provider it is talking to.
"""
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from src.errors import UpstreamError

TIMEOUT = 10.0


class OAuthProvider(ABC):
    """Base class for providers whose access tokens expire and can be refreshed."""

    name: str = ""

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> dict:
        """
        Exchange a refresh token for a new access token.
        Returns: {"access_token": str, "refresh_token": str|None, "expires_in": int}
        Raises UpstreamError if the provider rejects the refresh.
        """
        ...

    async def _send(
        self,
        method: str,
        url: str,
        access_token: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        """Perform an HTTP call, translating transport and status failures to UpstreamError."""
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            async with httpx.AsyncClient(timeout=TIMEOUT) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamError(
                f"{self.name} API error {status} on {method} {url}",
                provider=self.name,
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"{self.name} request failed on {method} {url}: {e}",
                provider=self.name,
            ) from e
