from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterable, Awaitable, Callable, Optional, Protocol

import httpx

from rulesync.errors import FileWriteError, ReloadError, SyncError
from rulesync.schemas.common import utc_now
from rulesync.services.fetchers import RulesFetcher

logger = logging.getLogger(__name__)

RELOAD_PATH = "/-/reload"


class Clock(Protocol):
    """Time source driving the sync loop ticker."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


# PUBLIC_INTERFACE
async def write_rules_file(stream: AsyncIterable[bytes], path: str) -> None:
    """
    Create or truncate `path` and copy every chunk of `stream` into it through a buffered writer.

    File calls run in a worker thread so a slow disk does not stall the event loop. The file is
    flushed and closed explicitly; each failing step raises FileWriteError. The write is not atomic:
    a failure part-way leaves a partially written file behind until the next cycle.
    """
    try:
        fh = await asyncio.to_thread(open, path, "wb")
    except OSError as exc:
        raise FileWriteError(f"failed to create or open the rules file {path}: {exc}") from exc

    closed = False
    try:
        try:
            async for chunk in stream:
                await asyncio.to_thread(fh.write, chunk)
            await asyncio.to_thread(fh.flush)
        except OSError as exc:
            raise FileWriteError(f"failed to write to rules file {path}: {exc}") from exc

        closed = True
        try:
            await asyncio.to_thread(fh.close)
        except OSError as exc:
            raise FileWriteError(f"failed to close the rules file {path}: {exc}") from exc
    finally:
        if not closed:
            await asyncio.to_thread(fh.close)


class ThanosRuleReloader:
    """Ask a Thanos Ruler (or any Prometheus-style engine) to re-read its rule files."""

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self._client = client
        self.url = f"{base_url.rstrip('/')}{RELOAD_PATH}"

    async def reload(self) -> None:
        """POST to the reload endpoint; any transport error or non-2xx status raises ReloadError."""
        try:
            response = await self._client.post(self.url)
        except httpx.HTTPError as exc:
            raise ReloadError(f"failed to trigger thanos rule reload: {exc}") from exc
        if response.status_code // 100 != 2:
            raise ReloadError(
                f"failed to trigger thanos rule reload: got unexpected status from Thanos Ruler: {response.status_code}"
            )


@dataclass
class SyncStatus:
    """Outcome counters of the sync loop, exposed by the internal server."""

    cycles: int = 0
    failures: int = 0
    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None


class SyncLoop:
    """
    Fetch rules, write them to a file and trigger a reload: once at start, then on a fixed-period ticker.

    Only one cycle is ever in flight. Ticks that fall due while a cycle is running collapse into a
    single tick delivered as soon as it finishes; later ticks stay on the original schedule. Failures
    are logged and retried at the next tick only. `stop()` takes effect between cycles.
    """

    def __init__(
        self,
        fetcher: RulesFetcher,
        file: str,
        reloader: ThanosRuleReloader,
        interval_sec: float,
        *,
        clock: Optional[Clock] = None,
        file_writer: Callable[[AsyncIterable[bytes], str], Awaitable[None]] = write_rules_file,
    ):
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self._fetcher = fetcher
        self._file = file
        self._reloader = reloader
        self._interval = float(interval_sec)
        self._clock: Clock = clock or SystemClock()
        self._write_file = file_writer
        self._stop = asyncio.Event()
        self.status = SyncStatus()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _sync_once(self) -> None:
        stream = await self._fetcher.get_rules()
        async with stream:
            await self._write_file(stream, self._file)
        await self._reloader.reload()

    # PUBLIC_INTERFACE
    async def run_cycle(self) -> bool:
        """Run one fetch/write/reload cycle. Returns True on success; failures are logged, never raised."""
        self.status.cycles += 1
        self.status.last_run = utc_now()
        try:
            await self._sync_once()
        except SyncError as exc:
            self.status.failures += 1
            self.status.last_error = str(exc)
            logger.error("Rules sync failed: %s", exc)
            return False
        except Exception as exc:
            self.status.failures += 1
            self.status.last_error = str(exc)
            logger.exception("Rules sync failed unexpectedly")
            return False

        self.status.last_success = utc_now()
        self.status.last_error = None
        logger.info("Rules synced to %s and reload triggered", self._file)
        return True

    async def _sleep_unless_stopped(self, seconds: float) -> bool:
        """Sleep on the clock; return True if stop() was called first."""
        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)
        return self._stop.is_set()

    # PUBLIC_INTERFACE
    async def run(self) -> None:
        """Run cycles until stop() is called."""
        logger.info("Rules syncer started (interval=%ss, file=%s)", self._interval, self._file)

        next_tick = self._clock.monotonic() + self._interval
        if not self._stop.is_set():
            await self.run_cycle()

        while not self._stop.is_set():
            delay = next_tick - self._clock.monotonic()
            if delay > 0 and await self._sleep_unless_stopped(delay):
                break
            if self._stop.is_set():
                break

            # The tick at next_tick is consumed even if the clock woke up marginally early.
            now = max(self._clock.monotonic(), next_tick)
            while next_tick <= now:
                next_tick += self._interval
            await self.run_cycle()

        logger.info("Rules syncer stopped")
