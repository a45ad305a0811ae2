"""Periodic auto-backup loop.

First sweep one minute after start, then once a day.  The CouchDB settings
are resolved again on every tick, so a runtime override applies to the next
sweep; with no store configured a tick does nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from tasmotascope.backups.fetcher import SnapshotFetcher
from tasmotascope.backups.mirror import DeviceMirror
from tasmotascope.backups.orchestrator import BackupOrchestrator
from tasmotascope.backups.scheduler import AutoBackupResult, FleetScheduler
from tasmotascope.config import CouchDbSettings
from tasmotascope.services.couchdb import CouchDbClient

logger = logging.getLogger("tasmotascope.backups.runner")


class AutoBackupRunner:
    """Drive FleetScheduler sweeps from a background task."""

    def __init__(
        self,
        settings_provider: Callable[[], CouchDbSettings | None],
        mirror: DeviceMirror | None = None,
        interval_seconds: float = 24 * 60 * 60,
        initial_delay_seconds: float = 60,
        max_concurrent: int = 5,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings_provider = settings_provider
        self._mirror = mirror
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._max_concurrent = max_concurrent
        self._http_client = http_client
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run_loop())
            logger.info(
                "Auto-backup scheduler active (first run in %ss, then every %ss)",
                self._initial_delay, self._interval,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None

    async def run_once(self) -> list[AutoBackupResult] | None:
        """Run one sweep now.  Returns None if no store is configured."""
        settings = self._settings_provider()
        if settings is None:
            logger.debug("Auto-backup skipped: CouchDB not configured")
            return None

        store = CouchDbClient(settings, http_client=self._http_client)
        orchestrator = BackupOrchestrator(
            store,
            fetcher=SnapshotFetcher(http_client=self._http_client),
            mirror=self._mirror,
        )
        scheduler = FleetScheduler(store, orchestrator, max_concurrent=self._max_concurrent)
        return await scheduler.run_scheduled_auto_backups()

    async def _run_loop(self) -> None:
        delay = self._initial_delay
        while not await self._wait(delay):
            try:
                await self.run_once()
            except Exception:
                logger.exception("Auto-backup sweep failed")
            delay = self._interval

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
