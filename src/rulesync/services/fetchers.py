"""
Rules fetchers used by the syncer.

Two variants exist and one is picked at startup:
- RulesBackendFetcher reads every tenant's rules straight from the rules storage backend (no auth);
- ObservatoriumAPIFetcher reads one tenant's rules through the rules API (authenticated client).
"""

from __future__ import annotations

import abc
import logging
from typing import AsyncIterator
from urllib.parse import quote

import httpx

from rulesync.config import SyncerConfig
from rulesync.errors import FetchError

logger = logging.getLogger(__name__)

YAML_ACCEPT = "application/yaml"


class RulesStream:
    """
    Body of a rules response, streamed.

    Must be fully consumed and then closed by the caller (`aclose()` or `async with`).
    """

    def __init__(self, response: httpx.Response):
        self._response = response

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise FetchError(f"failed to read rules from {self._response.url}: {exc}") from exc

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> "RulesStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class RulesFetcher(abc.ABC):
    """A source of serialized rule groups."""

    @abc.abstractmethod
    async def get_rules(self) -> RulesStream:
        """Start fetching rules; raises FetchError when no successful response is obtained."""


def _validate_base_url(raw: str) -> str:
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as exc:
        raise ValueError(f"invalid URL {raw!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"invalid URL {raw!r}: expected an absolute http(s) URL")
    return raw.rstrip("/")


class _HTTPRulesFetcher(RulesFetcher):
    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self._client = client

    async def get_rules(self) -> RulesStream:
        request = self._client.build_request("GET", self.url, headers={"Accept": YAML_ACCEPT})
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise FetchError(f"failed to get rules from url {self.url}: {exc}") from exc

        if response.status_code // 100 != 2:
            await response.aclose()
            raise FetchError(f"got unexpected status from {self.url}: {response.status_code}")
        return RulesStream(response)


class RulesBackendFetcher(_HTTPRulesFetcher):
    """Fetch the rules of all tenants from the rules storage backend."""

    def __init__(self, backend_url: str, client: httpx.AsyncClient):
        super().__init__(f"{_validate_base_url(backend_url)}/api/v1/rules", client)


class ObservatoriumAPIFetcher(_HTTPRulesFetcher):
    """Fetch one tenant's rules through the rules API."""

    def __init__(self, api_url: str, tenant: str, client: httpx.AsyncClient):
        if not tenant:
            raise ValueError("tenant must not be empty")
        base = _validate_base_url(api_url)
        super().__init__(f"{base}/api/metrics/v1/{quote(tenant, safe='')}/rules", client)
        self.tenant = tenant


# PUBLIC_INTERFACE
def new_fetcher(config: SyncerConfig, client: httpx.AsyncClient) -> RulesFetcher:
    """
    Pick the fetcher for this process. The rules backend wins over the API when both are configured.

    Raises ValueError for an unusable URL; callers treat this as fatal.
    """
    if config.uses_rules_backend:
        logger.info("Fetching rules from rules backend %s", config.rules_backend_url)
        return RulesBackendFetcher(config.rules_backend_url, client)
    logger.info("Fetching rules of tenant %s from %s", config.tenant, config.observatorium_url)
    return ObservatoriumAPIFetcher(config.observatorium_url, config.tenant, client)
