#!/usr/bin/env python3
"""Sweep expired blacklist entries and stale failed attempts.

Runs hourly until interrupted, or a single pass with --once.

Usage:
    python scripts/cleanup_security.py --once
    python scripts/cleanup_security.py --once --reset-rate-limits
"""

import argparse
import asyncio
import signal
import sys
from dataclasses import asdict
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from shield.app.core.config import settings
from shield.app.core.counter_store import create_counter_store
from shield.app.core.logging import get_logger, setup_logging
from shield.app.db.async_session import build_async_engine, build_session_maker, init_models
from shield.app.services.abuse import AbuseHeuristics
from shield.app.services.cleanup import CleanupReport, SecurityCleanup
from shield.app.services.rate_limiter import PolicySet, RateLimiter

logger = get_logger("shield.scripts.cleanup_security")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument(
        "--reset-rate-limits",
        action="store_true",
        help="also delete every rate limit key (full reset)",
    )
    return parser.parse_args(argv)


async def main(once: bool, reset_rate_limits: bool) -> int:
    setup_logging(settings)

    engine = build_async_engine(settings)
    session_maker = build_session_maker(engine)
    store = create_counter_store(settings)
    policies = PolicySet.from_settings(settings)
    limiter = RateLimiter(store)
    heuristics = AbuseHeuristics(session_maker, timeout=settings.store_timeout_seconds * 10)

    async def report_status(report: CleanupReport) -> None:
        status = await heuristics.security_status()
        logger.info("Security status", extra={"report": asdict(report), "status": asdict(status)})
        print(f"Cleanup: {asdict(report)}")
        print(f"Status:  {asdict(status)}")

    cleanup = SecurityCleanup(
        session_maker,
        limiter,
        policies,
        interval_seconds=settings.cleanup_interval_seconds,
        retention_hours=settings.failed_attempt_retention_hours,
        after_run=report_status,
    )

    try:
        await init_models(engine)

        if once:
            await report_status(await cleanup.run_once(reset_rate_limits=reset_rate_limits))
            return 0

        if reset_rate_limits:
            for policy in policies:
                await limiter.reset(policy)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        # The background task sweeps immediately and then every interval
        await cleanup.start()
        await stop.wait()
        await cleanup.stop()
        return 0
    finally:
        await store.close()
        await engine.dispose()


if __name__ == "__main__":
    args = parse_args()
    sys.exit(asyncio.run(main(args.once, args.reset_rate_limits)))
