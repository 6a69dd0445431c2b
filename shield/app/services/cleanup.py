"""Periodic sweep of the abuse-mitigation ledgers.

Removes lapsed blacklist entries and failed attempts past retention, and
evicts rate-limit windows whose TTL lapsed in stores without server-side
expiry. Live rate-limit keys are only deleted on an explicit full reset.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shield.app.core.logging import get_logger
from shield.app.core.utils import utcnow
from shield.app.db import crud
from shield.app.db.async_session import session_scope
from shield.app.services.rate_limiter import PolicySet, RateLimiter

logger = get_logger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    expired_blacklists: int
    stale_failed_attempts: int
    rate_limit_keys: int = 0
    expired_rate_limit_keys: int = 0


AfterRunHook = Callable[[CleanupReport], Awaitable[None]]


class SecurityCleanup:
    """Runs the ledger sweep on demand or on a fixed interval.

    Usage:
        cleanup = SecurityCleanup(session_maker, limiter, policies)
        await cleanup.start()
        ...
        await cleanup.stop()
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        limiter: RateLimiter,
        policies: PolicySet,
        *,
        interval_seconds: float = 3600.0,
        retention_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
        after_run: Optional[AfterRunHook] = None,
    ) -> None:
        """Initialize the sweep.

        Args:
            after_run: Awaited with the report after every background pass
        """
        self._session_maker = session_maker
        self._limiter = limiter
        self._policies = policies
        self._interval = interval_seconds
        self._retention = timedelta(hours=retention_hours)
        self._clock = clock
        self._after_run = after_run
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def run_once(self, reset_rate_limits: bool = False) -> CleanupReport:
        """Sweep the ledgers once.

        Args:
            reset_rate_limits: Also delete every key under the known
                policy prefixes (full reset, e.g. test teardown)

        Returns:
            Counts of what was deleted.
        """
        now = self._clock()

        async with session_scope(self._session_maker) as session:
            expired = await crud.delete_expired_blacklist_entries(session, now)
            stale = await crud.delete_failed_attempts_before(session, now - self._retention)

        expired_keys = await self._limiter.sweep_expired()

        rate_limit_keys = 0
        if reset_rate_limits:
            for policy in self._policies:
                rate_limit_keys += await self._limiter.reset(policy)

        report = CleanupReport(
            expired_blacklists=expired,
            stale_failed_attempts=stale,
            rate_limit_keys=rate_limit_keys,
            expired_rate_limit_keys=expired_keys,
        )
        logger.info(
            "Security cleanup completed",
            extra={
                "expired_blacklists": report.expired_blacklists,
                "stale_failed_attempts": report.stale_failed_attempts,
                "rate_limit_keys": report.rate_limit_keys,
                "expired_rate_limit_keys": report.expired_rate_limit_keys,
            },
        )
        return report

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._task is not None:
            logger.debug("Security cleanup already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Started security cleanup (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Stopped security cleanup")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                report = await self.run_once()
                if self._after_run is not None:
                    await self._after_run(report)
            except Exception as e:
                logger.error(f"Security cleanup failed, retrying next interval: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
