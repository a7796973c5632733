"""
Rules syncer sidecar: keeps a Thanos Ruler rules file in sync with the rules backend or rules API.

The sync loop runs as a background task of a small internal FastAPI app (liveness + loop status),
served by uvicorn, which also owns signal handling. On shutdown the loop is stopped and any
in-flight cycle is allowed to finish.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import sys
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import httpx
import uvicorn
from fastapi import FastAPI, Request
from pydantic import BaseModel, Field

from rulesync.config import SyncerConfig, parse_syncer_args
from rulesync.oidc import ClientCredentialsAuth, discover_token_url
from rulesync.schemas.common import HealthResponse, utc_now
from rulesync.services.fetchers import new_fetcher
from rulesync.services.rules_syncer import SyncLoop, ThanosRuleReloader

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SEC = 30.0


class SyncStatusResponse(BaseModel):
    """Sync loop state as reported by the internal server."""

    cycles: int = Field(..., ge=0, description="Cycles started since process start.")
    failures: int = Field(..., ge=0, description="Cycles that ended in an error.")
    last_run: Optional[str] = Field(default=None, description="UTC start of the latest cycle (ISO string).")
    last_success: Optional[str] = Field(default=None, description="UTC end of the latest successful cycle (ISO string).")
    last_error: Optional[str] = Field(default=None, description="Error of the latest cycle, if it failed.")
    file: str = Field(..., description="Rules file written by the syncer.")
    interval_sec: int = Field(..., description="Sync interval in seconds.")


@dataclass
class SidecarState:
    """Typed app.state container for the sidecar's singletons."""

    config: SyncerConfig
    loop: Optional[SyncLoop] = None
    task: Optional[asyncio.Task] = None
    clients: Tuple[httpx.AsyncClient, ...] = ()
    auth: Optional[ClientCredentialsAuth] = None


def load_tls_verify(ca_path: str) -> Union[ssl.SSLContext, bool]:
    """TLS verification for rules fetches: the given CA bundle, or system roots when unset."""
    if not ca_path:
        return True
    try:
        with open(ca_path, "rb") as fh:
            ca_data = fh.read().decode("ascii")
    except (OSError, UnicodeDecodeError) as exc:
        raise RuntimeError(f"failed to read Observatorium CA file: {exc}") from exc
    try:
        return ssl.create_default_context(cadata=ca_data)
    except ssl.SSLError as exc:
        raise RuntimeError(f"failed to load Observatorium CA file {ca_path}: {exc}") from exc


async def build_sync_loop(config: SyncerConfig, state: SidecarState) -> SyncLoop:
    """Create HTTP clients, OIDC auth and the fetcher for `config`. Raises on irrecoverable misconfiguration."""
    verify = load_tls_verify(config.observatorium_ca)

    auth: Optional[ClientCredentialsAuth] = None
    if config.oidc.enabled:
        token_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SEC)
        try:
            token_url = await discover_token_url(config.oidc.issuer_url, token_client)
        except RuntimeError:
            await token_client.aclose()
            raise
        auth = ClientCredentialsAuth(
            token_url,
            config.oidc.client_id,
            config.oidc.client_secret,
            config.oidc.audience,
            token_client=token_client,
        )
        state.auth = auth

    fetch_client = httpx.AsyncClient(verify=verify, auth=auth, timeout=HTTP_TIMEOUT_SEC)
    reload_client = httpx.AsyncClient(verify=verify, timeout=HTTP_TIMEOUT_SEC)
    state.clients = (fetch_client, reload_client)

    try:
        fetcher = new_fetcher(config, fetch_client)
    except ValueError as exc:
        raise RuntimeError(f"failed to initialize rules fetcher: {exc}") from exc

    return SyncLoop(
        fetcher,
        config.file,
        ThanosRuleReloader(reload_client, config.thanos_rule_url),
        config.interval_sec,
    )


# PUBLIC_INTERFACE
def create_internal_app(config: SyncerConfig, sync_loop: Optional[SyncLoop] = None) -> FastAPI:
    """Build the internal diagnostics app; its lifecycle hooks start and stop the sync loop."""
    app = FastAPI(title="Internal - rules syncer", version="0.1.0")
    app.state.sidecar = SidecarState(config=config, loop=sync_loop)

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: build the sync loop (fatal on misconfiguration) and start it."""
        state: SidecarState = app.state.sidecar
        if state.loop is None:
            state.loop = await build_sync_loop(config, state)
        state.task = asyncio.create_task(state.loop.run())

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: stop the loop at the next tick boundary, then close HTTP clients."""
        state: SidecarState = app.state.sidecar
        if state.loop is not None:
            state.loop.stop()
        if state.task is not None:
            try:
                await state.task
            except Exception:
                logger.exception("Error stopping rules syncer task")
        for client in state.clients:
            await client.aclose()
        if state.auth is not None:
            await state.auth.aclose()

    @app.get("/", response_model=HealthResponse, summary="Health check", operation_id="health_check")
    def health_check() -> HealthResponse:
        """Return sidecar liveness status."""
        return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())

    @app.get("/status", response_model=SyncStatusResponse, summary="Sync loop status", operation_id="sync_status")
    def sync_status(request: Request) -> SyncStatusResponse:
        """Report counters and timestamps of the sync loop."""
        state: SidecarState = request.app.state.sidecar
        status = state.loop.status if state.loop is not None else None
        return SyncStatusResponse(
            cycles=status.cycles if status else 0,
            failures=status.failures if status else 0,
            last_run=status.last_run.isoformat() if status and status.last_run else None,
            last_success=status.last_success.isoformat() if status and status.last_success else None,
            last_error=status.last_error if status else None,
            file=config.file,
            interval_sec=config.interval_sec,
        )

    return app


def _split_listen_address(address: str) -> Tuple[str, int]:
    host, _, port = address.rpartition(":")
    try:
        return host or "0.0.0.0", int(port)
    except ValueError as exc:
        raise RuntimeError(f"invalid listen address {address!r}") from exc


# PUBLIC_INTERFACE
def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point of the rules syncer."""
    config = parse_syncer_args(argv)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level.upper(), logging.INFO),
    )

    try:
        host, port = _split_listen_address(config.listen_internal)
        # Fail before binding anything when the CA file is unusable.
        load_tls_verify(config.observatorium_ca)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1

    logger.info("starting internal HTTP server at address: %s", config.listen_internal)
    server = uvicorn.Server(
        uvicorn.Config(
            create_internal_app(config),
            host=host,
            port=port,
            log_level=config.log_level.lower(),
            lifespan="on",
        )
    )
    server.run()
    # uvicorn reports a failed startup (e.g. OIDC discovery) by exiting without marking itself started.
    return 0 if server.started else 1


if __name__ == "__main__":
    sys.exit(main())
