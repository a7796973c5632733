from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncGenerator, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

# Tokens are refreshed this many seconds before the issuer says they expire.
_EXPIRY_LEEWAY_SEC = 10.0


# PUBLIC_INTERFACE
async def discover_token_url(issuer_url: str, client: httpx.AsyncClient) -> str:
    """
    Resolve the token endpoint of an OIDC issuer via its discovery document.

    Raises RuntimeError when the issuer cannot be reached or publishes no token endpoint; callers
    treat this as a fatal startup error.
    """
    url = f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"
    try:
        response = await client.get(url)
        response.raise_for_status()
        document = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise RuntimeError(f"OIDC provider initialization failed: {exc}") from exc

    token_url = document.get("token_endpoint") if isinstance(document, dict) else None
    if not token_url:
        raise RuntimeError(f"OIDC provider initialization failed: no token_endpoint in {url}")
    return str(token_url)


class ClientCredentialsAuth(httpx.Auth):
    """
    httpx auth flow attaching a bearer token obtained with the OAuth2 client-credentials grant.

    The token is cached and shared by concurrent requests until shortly before it expires.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        audience: str = "",
        *,
        token_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._audience = audience
        self._token_client = token_client or httpx.AsyncClient(timeout=10.0)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._get_token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request

    async def _get_token(self) -> str:
        async with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token

            data = {"grant_type": "client_credentials"}
            if self._audience:
                data["audience"] = self._audience
            response = await self._token_client.post(
                self._token_url,
                data=data,
                auth=(self._client_id, self._client_secret),
            )
            response.raise_for_status()
            payload = response.json()

            token = payload.get("access_token") if isinstance(payload, dict) else None
            if not token:
                raise httpx.HTTPError(f"token endpoint {self._token_url} returned no access_token")

            expires_in = float(payload.get("expires_in") or 3600)
            self._token = str(token)
            self._expires_at = self._clock() + max(0.0, expires_in - _EXPIRY_LEEWAY_SEC)
            logger.debug("Obtained access token (expires_in=%ss)", expires_in)
            return self._token

    async def aclose(self) -> None:
        await self._token_client.aclose()
