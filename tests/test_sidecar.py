from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from rulesync import sidecar
from rulesync.config import OIDCConfig, SyncerConfig
from rulesync.oidc import ClientCredentialsAuth
from rulesync.services.fetchers import RulesBackendFetcher
from rulesync.services.rules_syncer import SyncLoop, ThanosRuleReloader
from rulesync.sidecar import SidecarState, _split_listen_address, build_sync_loop, create_internal_app, load_tls_verify


class _IdleClock:
    def monotonic(self) -> float:
        return 0.0

    async def sleep(self, seconds: float) -> None:
        await asyncio.Event().wait()


def _config(tmp_path: Path, **overrides) -> SyncerConfig:
    values = dict(
        file=str(tmp_path / "rules.yaml"),
        thanos_rule_url="http://thanos-rule:10902",
        interval_sec=30,
        rules_backend_url="http://rules-objstore:8080",
    )
    values.update(overrides)
    return SyncerConfig(**values)


@pytest.mark.anyio
async def test_internal_app_runs_loop_and_reports_status(tmp_path: Path):
    config = _config(tmp_path)
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"groups: []\n"))
    )
    loop = SyncLoop(
        RulesBackendFetcher(config.rules_backend_url, client),
        config.file,
        ThanosRuleReloader(client, config.thanos_rule_url),
        config.interval_sec,
        clock=_IdleClock(),
    )
    app = create_internal_app(config, sync_loop=loop)

    async with app.router.lifespan_context(app):
        while loop.status.cycles == 0 or loop.status.last_success is None:
            await asyncio.sleep(0)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://internal") as api:
            res = await api.get("/")
            assert res.status_code == 200
            assert res.json()["status"] == "ok"

            res = await api.get("/status")
            assert res.status_code == 200
            body = res.json()
            assert body["cycles"] == 1
            assert body["failures"] == 0
            assert body["last_success"] is not None
            assert body["file"] == config.file
            assert body["interval_sec"] == 30

    # Shutdown stopped the loop and waited for its task.
    state: SidecarState = app.state.sidecar
    assert loop.stopped
    assert state.task is not None and state.task.done()
    assert Path(config.file).read_bytes() == b"groups: []\n"
    await client.aclose()


async def _close(state: SidecarState) -> None:
    for client in state.clients:
        await client.aclose()
    if state.auth is not None:
        await state.auth.aclose()


@pytest.mark.anyio
async def test_build_sync_loop_without_oidc(tmp_path: Path):
    config = _config(tmp_path)
    state = SidecarState(config=config)
    loop = await build_sync_loop(config, state)
    try:
        assert isinstance(loop, SyncLoop)
        assert state.auth is None
        assert len(state.clients) == 2
    finally:
        await _close(state)


@pytest.mark.anyio
async def test_build_sync_loop_authenticates_fetches_in_backend_mode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    discovered = []

    async def fake_discover(issuer_url: str, client: httpx.AsyncClient) -> str:
        discovered.append(issuer_url)
        return "https://sso.example.com/token"

    monkeypatch.setattr(sidecar, "discover_token_url", fake_discover)
    config = _config(tmp_path, oidc=OIDCConfig(issuer_url="https://sso.example.com", client_id="syncer"))
    state = SidecarState(config=config)
    await build_sync_loop(config, state)
    try:
        fetch_client, reload_client = state.clients
        assert discovered == ["https://sso.example.com"]
        assert isinstance(state.auth, ClientCredentialsAuth)
        assert fetch_client.auth is state.auth
        assert reload_client.auth is None
    finally:
        await _close(state)


@pytest.mark.anyio
async def test_build_sync_loop_fails_when_issuer_is_unreachable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    async def failing_discover(issuer_url: str, client: httpx.AsyncClient) -> str:
        raise RuntimeError("OIDC provider initialization failed: connection refused")

    monkeypatch.setattr(sidecar, "discover_token_url", failing_discover)
    config = _config(tmp_path, oidc=OIDCConfig(issuer_url="https://sso.example.com", client_id="syncer"))
    state = SidecarState(config=config)
    with pytest.raises(RuntimeError, match="OIDC provider initialization failed"):
        await build_sync_loop(config, state)
    assert state.clients == ()


@pytest.mark.anyio
async def test_build_sync_loop_rejects_bad_url(tmp_path: Path):
    config = _config(tmp_path, rules_backend_url="not-a-url")
    state = SidecarState(config=config)
    try:
        with pytest.raises(RuntimeError, match="failed to initialize rules fetcher"):
            await build_sync_loop(config, state)
    finally:
        for client in state.clients:
            await client.aclose()


def test_load_tls_verify(tmp_path: Path):
    assert load_tls_verify("") is True

    with pytest.raises(RuntimeError, match="failed to read Observatorium CA file"):
        load_tls_verify(str(tmp_path / "missing-ca.pem"))

    bogus = tmp_path / "ca.pem"
    bogus.write_text("not a certificate\n")
    with pytest.raises(RuntimeError):
        load_tls_verify(str(bogus))


def test_split_listen_address():
    assert _split_listen_address(":8083") == ("0.0.0.0", 8083)
    assert _split_listen_address("127.0.0.1:9090") == ("127.0.0.1", 9090)
    with pytest.raises(RuntimeError):
        _split_listen_address("localhost")
