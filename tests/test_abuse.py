"""Tests for the blacklist, failed-attempt ledger and CAPTCHA escalation."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shield.app.db.models import BlacklistedIP, FailedAttempt
from shield.app.exceptions import CaptchaVerificationFailed, StoreUnavailable
from shield.app.services.abuse import AbuseHeuristics, SecurityStatus

IP = "203.0.113.7"
EMAIL = "visitor@example.com"


@pytest.fixture
def verifier():
    verifier = MagicMock()
    verifier.verify = AsyncMock(return_value=True)
    return verifier


@pytest.fixture
def heuristics(session_maker, verifier, utc_clock):
    return AbuseHeuristics(
        session_maker,
        verifier,
        timeout=5.0,
        blacklist_threshold=4,
        blacklist_duration_hours=24,
        clock=utc_clock,
    )


def broken_session_maker():
    """Session maker whose sessions fail on every statement."""
    session = MagicMock()
    session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))
    session.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


async def record_at(heuristics, utc_clock, offsets, ip=IP, email=EMAIL):
    """Record failed attempts at the given offsets before the current time."""
    now = utc_clock.now
    for offset in offsets:
        utc_clock.now = now - offset
        await heuristics.record_failed_attempt(ip, email, "pytest")
    utc_clock.now = now


class TestBlacklist:
    """Tests for blacklist entries and their expiry."""

    @pytest.mark.asyncio
    async def test_unknown_ip_is_not_blacklisted(self, heuristics):
        assert await heuristics.is_blacklisted(IP) is False

    @pytest.mark.asyncio
    async def test_blacklist_then_expire(self, heuristics, utc_clock):
        await heuristics.blacklist(IP, "manual", duration_hours=24)
        assert await heuristics.is_blacklisted(IP) is True

        utc_clock.advance(timedelta(hours=24, seconds=1))
        assert await heuristics.is_blacklisted(IP) is False

    @pytest.mark.asyncio
    async def test_indefinite_blacklist(self, heuristics, utc_clock, session_maker):
        await heuristics.blacklist(IP, "manual", duration_hours=0)

        utc_clock.advance(timedelta(days=365))
        assert await heuristics.is_blacklisted(IP) is True

        async with session_maker() as session:
            entry = (await session.execute(select(BlacklistedIP))).scalar_one()
        assert entry.expires_at is None
        assert entry.reason == "manual"

    @pytest.mark.asyncio
    async def test_blacklist_is_per_ip(self, heuristics):
        await heuristics.blacklist(IP, "manual")
        assert await heuristics.is_blacklisted("198.51.100.1") is False

    @pytest.mark.asyncio
    async def test_lookup_fails_open(self, utc_clock):
        heuristics = AbuseHeuristics(broken_session_maker(), clock=utc_clock)
        assert await heuristics.is_blacklisted(IP) is False

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_as_security_event(self, utc_clock):
        heuristics = AbuseHeuristics(broken_session_maker(), clock=utc_clock)

        with patch("shield.app.services.abuse.logger") as mock_logger:
            await heuristics.blacklist(IP, "manual")

        mock_logger.error.assert_called_once()
        extra = mock_logger.error.call_args.kwargs["extra"]
        assert extra["security_event"] is True
        assert extra["client_ip"] == IP
        mock_logger.warning.assert_not_called()


class TestFailedAttempts:
    """Tests for the failed-attempt ledger and the CAPTCHA rule."""

    @pytest.mark.asyncio
    async def test_record_stores_row(self, heuristics, session_maker):
        await heuristics.record_failed_attempt(IP, EMAIL, "Mozilla/5.0")

        async with session_maker() as session:
            row = (await session.execute(select(FailedAttempt))).scalar_one()
        assert (row.ip_address, row.email, row.user_agent) == (IP, EMAIL, "Mozilla/5.0")

    @pytest.mark.asyncio
    async def test_no_captcha_below_three_attempts(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=1), timedelta(minutes=2)])
        assert await heuristics.requires_captcha(IP, EMAIL) is False

    @pytest.mark.asyncio
    async def test_captcha_after_three_recent_attempts(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3)])
        assert await heuristics.requires_captcha(IP, EMAIL) is True

    @pytest.mark.asyncio
    async def test_three_recent_and_two_old_requires_captcha(self, heuristics, utc_clock):
        await record_at(
            heuristics,
            utc_clock,
            [timedelta(hours=3), timedelta(hours=2)]
            + [timedelta(minutes=m) for m in (5, 10, 15)],
        )
        assert await heuristics.requires_captcha(IP, EMAIL) is True

    @pytest.mark.asyncio
    async def test_old_attempts_do_not_require_captcha(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(hours=h) for h in (2, 3, 4, 5, 6)])
        assert await heuristics.requires_captcha(IP, EMAIL) is False

    @pytest.mark.asyncio
    async def test_two_recent_of_five_do_not_require_captcha(self, heuristics, utc_clock):
        await record_at(
            heuristics,
            utc_clock,
            [timedelta(hours=h) for h in (2, 3, 4)] + [timedelta(minutes=m) for m in (1, 2)],
        )
        assert await heuristics.requires_captcha(IP, EMAIL) is False

    @pytest.mark.asyncio
    async def test_matches_on_email_or_ip(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=1)], ip="198.51.100.1")
        await record_at(heuristics, utc_clock, [timedelta(minutes=2)], ip="198.51.100.2")
        await record_at(heuristics, utc_clock, [timedelta(minutes=3)], email="other@example.com")

        assert await heuristics.requires_captcha(IP, EMAIL) is True
        assert await heuristics.requires_captcha("192.0.2.9", "nobody@example.com") is False

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_require_captcha(self, utc_clock):
        heuristics = AbuseHeuristics(broken_session_maker(), clock=utc_clock)
        assert await heuristics.requires_captcha(IP, EMAIL) is False

    @pytest.mark.asyncio
    async def test_record_failure_is_swallowed_and_logged(self, utc_clock):
        heuristics = AbuseHeuristics(broken_session_maker(), clock=utc_clock)

        with patch("shield.app.services.abuse.logger") as mock_logger:
            await heuristics.record_failed_attempt(IP, EMAIL, "pytest")

        extra = mock_logger.error.call_args.kwargs["extra"]
        assert extra["security_event"] is True


class TestCaptchaCheck:
    """Tests for check_captcha."""

    @pytest.mark.asyncio
    async def test_not_required_skips_verifier(self, heuristics, verifier):
        await heuristics.check_captcha(IP, EMAIL, None, "pytest")
        verifier.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_token_when_required(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3)])

        with pytest.raises(CaptchaVerificationFailed, match="required"):
            await heuristics.check_captcha(IP, EMAIL, None, "pytest")

    @pytest.mark.asyncio
    async def test_valid_token_passes(self, heuristics, utc_clock, verifier):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3)])

        await heuristics.check_captcha(IP, EMAIL, "token", "pytest")
        verifier.verify.assert_awaited_once_with("token")

    @pytest.mark.asyncio
    async def test_rejected_token_is_recorded(self, heuristics, utc_clock, verifier, session_maker):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3)])
        verifier.verify.return_value = False

        with pytest.raises(CaptchaVerificationFailed):
            await heuristics.check_captcha(IP, EMAIL, "bad", "pytest")

        async with session_maker() as session:
            rows = (await session.execute(select(FailedAttempt))).scalars().all()
        assert len(rows) == 4

    @pytest.mark.asyncio
    async def test_no_verifier_rejects(self, session_maker, utc_clock):
        heuristics = AbuseHeuristics(session_maker, clock=utc_clock)
        assert await heuristics.verify_captcha_token("token") is False


class TestEscalation:
    """Tests for automatic blacklisting."""

    @pytest.mark.asyncio
    async def test_below_threshold(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3)])

        assert await heuristics.escalate(IP) is False
        assert await heuristics.is_blacklisted(IP) is False

    @pytest.mark.asyncio
    async def test_threshold_blacklists_for_configured_duration(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3, 4)])

        assert await heuristics.escalate(IP) is True
        assert await heuristics.is_blacklisted(IP) is True

        utc_clock.advance(timedelta(hours=25))
        assert await heuristics.is_blacklisted(IP) is False

    @pytest.mark.asyncio
    async def test_old_failures_do_not_count(self, heuristics, utc_clock):
        await record_at(heuristics, utc_clock, [timedelta(hours=2)] * 4)
        assert await heuristics.escalate(IP) is False

    @pytest.mark.asyncio
    async def test_already_blacklisted_is_not_duplicated(self, heuristics, utc_clock, session_maker):
        await record_at(heuristics, utc_clock, [timedelta(minutes=m) for m in (1, 2, 3, 4)])

        assert await heuristics.escalate(IP) is True
        assert await heuristics.escalate(IP) is False

        async with session_maker() as session:
            rows = (await session.execute(select(BlacklistedIP))).scalars().all()
        assert len(rows) == 1


class TestSecurityStatus:
    """Tests for the status snapshot."""

    @pytest.mark.asyncio
    async def test_counts(self, heuristics, utc_clock):
        await heuristics.blacklist("192.0.2.1", "active")
        await heuristics.blacklist("192.0.2.2", "forever", duration_hours=0)
        utc_clock.advance(timedelta(hours=-30))
        await heuristics.blacklist("192.0.2.3", "lapsed", duration_hours=1)
        utc_clock.advance(timedelta(hours=30))
        await record_at(heuristics, utc_clock, [timedelta(hours=1), timedelta(hours=30)])

        status = await heuristics.security_status()

        assert status == SecurityStatus(
            blacklisted_ips=2,
            recent_failed_attempts=1,
            expired_blacklists=1,
        )

    @pytest.mark.asyncio
    async def test_unavailable_ledger_raises(self, utc_clock):
        heuristics = AbuseHeuristics(broken_session_maker(), clock=utc_clock)

        with pytest.raises(StoreUnavailable):
            await heuristics.security_status()
