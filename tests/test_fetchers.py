from __future__ import annotations

from typing import List

import httpx
import pytest

from rulesync.config import SyncerConfig
from rulesync.errors import FetchError
from rulesync.services.fetchers import ObservatoriumAPIFetcher, RulesBackendFetcher, new_fetcher

RULES_YAML = b"groups:\n  - name: alerting\n    rules: []\n"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _read_all(stream) -> bytes:
    chunks: List[bytes] = []
    async with stream:
        async for chunk in stream:
            chunks.append(chunk)
    return b"".join(chunks)


@pytest.mark.anyio
async def test_backend_fetcher_streams_all_tenants_rules():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=RULES_YAML)

    async with _client(handler) as client:
        fetcher = RulesBackendFetcher("http://rules-objstore:8080/", client)
        assert await _read_all(await fetcher.get_rules()) == RULES_YAML

    assert str(seen[0].url) == "http://rules-objstore:8080/api/v1/rules"
    assert seen[0].headers["accept"] == "application/yaml"


@pytest.mark.anyio
async def test_api_fetcher_reads_single_tenant():
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=RULES_YAML)

    async with _client(handler) as client:
        fetcher = ObservatoriumAPIFetcher("https://observatorium.example.com", "acme", client)
        assert await _read_all(await fetcher.get_rules()) == RULES_YAML

    assert seen == ["https://observatorium.example.com/api/metrics/v1/acme/rules"]


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [403, 500, 503])
async def test_non_2xx_is_fetch_error(status_code):
    async with _client(lambda request: httpx.Response(status_code, text="nope")) as client:
        fetcher = ObservatoriumAPIFetcher("https://observatorium.example.com", "acme", client)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.get_rules()
    assert str(status_code) in str(excinfo.value)


@pytest.mark.anyio
async def test_transport_error_is_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        fetcher = RulesBackendFetcher("http://rules-objstore:8080", client)
        with pytest.raises(FetchError):
            await fetcher.get_rules()


@pytest.mark.parametrize("url", ["", "rules-objstore:8080", "ftp://rules-objstore"])
def test_invalid_base_url_is_rejected(url):
    with pytest.raises(ValueError):
        RulesBackendFetcher(url, httpx.AsyncClient())


def test_new_fetcher_prefers_rules_backend():
    client = httpx.AsyncClient()
    both = SyncerConfig(
        file="rules.yaml",
        thanos_rule_url="http://thanos-rule:10902",
        interval_sec=60,
        rules_backend_url="http://rules-objstore:8080",
        observatorium_url="https://observatorium.example.com",
        tenant="acme",
    )
    assert isinstance(new_fetcher(both, client), RulesBackendFetcher)

    api_only = SyncerConfig(
        file="rules.yaml",
        thanos_rule_url="http://thanos-rule:10902",
        interval_sec=60,
        observatorium_url="https://observatorium.example.com",
        tenant="acme",
    )
    fetcher = new_fetcher(api_only, client)
    assert isinstance(fetcher, ObservatoriumAPIFetcher)
    assert fetcher.tenant == "acme"
