"""Brute-force defenses: failed-attempt ledger, IP blacklist, CAPTCHA escalation.

Lookups fail open so an unavailable ledger never locks legitimate users
out. Failed writes are logged as security events because they silently
weaken future protection.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shield.app.core.logging import get_log_context, get_logger
from shield.app.core.utils import as_utc, utcnow
from shield.app.db import crud
from shield.app.db.async_session import session_scope
from shield.app.exceptions import CaptchaVerificationFailed, StoreUnavailable

logger = get_logger(__name__)

T = TypeVar("T")


class CaptchaVerifier(Protocol):
    async def verify(self, token: str) -> bool: ...


@dataclass(frozen=True)
class SecurityStatus:
    """Snapshot of the ledgers, as reported after a cleanup run."""
    blacklisted_ips: int
    recent_failed_attempts: int
    expired_blacklists: int


class AbuseHeuristics:
    """Failed-attempt tracking and escalation decisions.

    CAPTCHA rule: among the 5 most recent failed attempts matching the IP
    or the email, at least 3 happened less than an hour ago.
    """

    CAPTCHA_LOOKBACK_ROWS = 5
    CAPTCHA_MIN_FAILURES = 3
    CAPTCHA_WINDOW = timedelta(hours=1)
    ESCALATION_WINDOW = timedelta(hours=1)
    STATUS_WINDOW = timedelta(hours=24)

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        captcha_verifier: Optional[CaptchaVerifier] = None,
        *,
        timeout: float = 0.5,
        blacklist_threshold: int = 20,
        blacklist_duration_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the heuristics.

        Args:
            session_maker: Session factory for the ledger database
            captcha_verifier: Verifier used by verify_captcha_token
            timeout: Bound in seconds for each ledger call
            blacklist_threshold: Failures per IP within an hour that trigger
                automatic blacklisting
            blacklist_duration_hours: Lifetime of automatic blacklist entries
            clock: Returns the current time as an aware UTC datetime
        """
        self._session_maker = session_maker
        self._captcha_verifier = captcha_verifier
        self._timeout = timeout
        self._blacklist_threshold = blacklist_threshold
        self._blacklist_duration_hours = blacklist_duration_hours
        self._clock = clock

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run work in a transaction, bounded by the ledger timeout."""

        async def _in_session() -> T:
            async with session_scope(self._session_maker) as session:
                return await work(session)

        try:
            return await asyncio.wait_for(_in_session(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(operation, e) from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(operation, e) from e

    async def is_blacklisted(self, ip: str) -> bool:
        now = self._clock()
        try:
            entry = await self._run(
                "is_blacklisted",
                lambda session: crud.find_active_blacklist_entry(session, ip, now),
            )
        except Exception as e:
            logger.warning(
                f"Blacklist lookup failed, treating IP as allowed: {e}",
                extra=get_log_context(client_ip=ip),
            )
            return False
        return entry is not None

    async def blacklist(self, ip: str, reason: str, duration_hours: int = 24) -> None:
        """Bar ip from the guarded endpoints.

        Args:
            ip: Address to block
            reason: Free-text reason, kept for admins
            duration_hours: Lifetime of the entry; zero or less blocks
                indefinitely
        """
        now = self._clock()
        expires_at = now + timedelta(hours=duration_hours) if duration_hours > 0 else None
        try:
            await self._run(
                "blacklist",
                lambda session: crud.add_blacklist_entry(session, ip, reason, now, expires_at),
            )
        except Exception as e:
            logger.error(
                f"Failed to blacklist IP: {e}",
                extra=get_log_context(client_ip=ip, security_event=True),
            )
            return
        logger.warning(
            f"IP blacklisted: {reason}",
            extra=get_log_context(
                client_ip=ip,
                security_event=True,
                expires_at=expires_at.isoformat() if expires_at else None,
            ),
        )

    async def record_failed_attempt(self, ip: str, email: str, user_agent: str) -> None:
        now = self._clock()
        try:
            await self._run(
                "record_failed_attempt",
                lambda session: crud.add_failed_attempt(session, ip, email, user_agent, now),
            )
        except Exception as e:
            logger.error(
                f"Failed to record failed attempt: {e}",
                extra=get_log_context(client_ip=ip, security_event=True),
            )

    async def requires_captcha(self, ip: str, email: str) -> bool:
        now = self._clock()
        try:
            attempts = await self._run(
                "requires_captcha",
                lambda session: crud.get_recent_failed_attempts(
                    session, ip, email, self.CAPTCHA_LOOKBACK_ROWS
                ),
            )
        except Exception as e:
            logger.warning(
                f"Failed-attempt lookup failed, not requiring CAPTCHA: {e}",
                extra=get_log_context(client_ip=ip),
            )
            return False

        if len(attempts) < self.CAPTCHA_MIN_FAILURES:
            return False

        recent = sum(
            1 for attempt in attempts
            if now - as_utc(attempt.timestamp) < self.CAPTCHA_WINDOW
        )
        return recent >= self.CAPTCHA_MIN_FAILURES

    async def verify_captcha_token(self, token: str) -> bool:
        if self._captcha_verifier is None:
            logger.error("CAPTCHA verification requested but no verifier is configured")
            return False
        return await self._captcha_verifier.verify(token)

    async def check_captcha(
        self,
        ip: str,
        email: str,
        token: Optional[str],
        user_agent: str,
    ) -> None:
        """Demand and verify a CAPTCHA when recent failures call for one.

        A rejected token is itself recorded as a failed attempt.

        Raises:
            CaptchaVerificationFailed: If a challenge is required and the
                token is missing or rejected.
        """
        if not await self.requires_captcha(ip, email):
            return
        if not token:
            raise CaptchaVerificationFailed("CAPTCHA verification required")
        if not await self.verify_captcha_token(token):
            await self.record_failed_attempt(ip, email, user_agent)
            raise CaptchaVerificationFailed()

    async def escalate(self, ip: str) -> bool:
        """Blacklist ip if it crossed the hourly failure threshold.

        Returns:
            True if a new blacklist entry was written.
        """
        since = self._clock() - self.ESCALATION_WINDOW
        try:
            failures = await self._run(
                "escalate",
                lambda session: crud.count_failed_attempts_since(session, since, ip_address=ip),
            )
        except Exception as e:
            logger.warning(
                f"Failed-attempt count failed, skipping escalation: {e}",
                extra=get_log_context(client_ip=ip),
            )
            return False

        if failures < self._blacklist_threshold:
            return False
        if await self.is_blacklisted(ip):
            return False

        await self.blacklist(
            ip,
            f"Too many failed attempts ({failures} in the last hour)",
            self._blacklist_duration_hours,
        )
        return True

    async def security_status(self) -> SecurityStatus:
        """Count active blacklist rows, recent failures and lapsed rows.

        Raises:
            StoreUnavailable: If the ledger cannot be read.
        """
        now = self._clock()

        async def _collect(session: AsyncSession) -> SecurityStatus:
            return SecurityStatus(
                blacklisted_ips=await crud.count_blacklist_entries(session, now, active=True),
                recent_failed_attempts=await crud.count_failed_attempts_since(
                    session, now - self.STATUS_WINDOW
                ),
                expired_blacklists=await crud.count_blacklist_entries(session, now, active=False),
            )

        return await self._run("security_status", _collect)
