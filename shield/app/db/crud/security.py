"""Blacklist and failed-attempt ledger operations."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shield.app.db.models import BlacklistedIP, FailedAttempt


async def find_active_blacklist_entry(
    session: AsyncSession,
    ip_address: str,
    now: datetime,
) -> BlacklistedIP | None:
    """Return a blacklist row for ip_address that has not lapsed.

    A row is active when ``expires_at`` is NULL or later than ``now``.
    """
    result = await session.execute(
        select(BlacklistedIP)
        .where(
            BlacklistedIP.ip_address == ip_address,
            or_(BlacklistedIP.expires_at.is_(None), BlacklistedIP.expires_at > now),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def add_blacklist_entry(
    session: AsyncSession,
    ip_address: str,
    reason: str,
    created_at: datetime,
    expires_at: datetime | None,
) -> BlacklistedIP:
    entry = BlacklistedIP(
        ip_address=ip_address,
        reason=reason,
        created_at=created_at,
        expires_at=expires_at,
    )
    session.add(entry)
    await session.flush()
    return entry


async def add_failed_attempt(
    session: AsyncSession,
    ip_address: str,
    email: str,
    user_agent: str,
    timestamp: datetime,
) -> FailedAttempt:
    attempt = FailedAttempt(
        ip_address=ip_address,
        email=email,
        user_agent=user_agent,
        timestamp=timestamp,
    )
    session.add(attempt)
    await session.flush()
    return attempt


async def get_recent_failed_attempts(
    session: AsyncSession,
    ip_address: str,
    email: str,
    limit: int,
) -> list[FailedAttempt]:
    """Most recent attempts matching the IP or the email, newest first."""
    result = await session.execute(
        select(FailedAttempt)
        .where(or_(FailedAttempt.ip_address == ip_address, FailedAttempt.email == email))
        .order_by(FailedAttempt.timestamp.desc(), FailedAttempt.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_failed_attempts_since(
    session: AsyncSession,
    since: datetime,
    ip_address: str | None = None,
) -> int:
    """Count failed attempts newer than ``since``, optionally for one IP."""
    query = select(func.count(FailedAttempt.id)).where(FailedAttempt.timestamp > since)
    if ip_address is not None:
        query = query.where(FailedAttempt.ip_address == ip_address)
    result = await session.execute(query)
    return int(result.scalar_one())


async def count_blacklist_entries(
    session: AsyncSession,
    now: datetime,
    active: bool = True,
) -> int:
    """Count active (or, with active=False, lapsed) blacklist rows."""
    if active:
        condition = or_(BlacklistedIP.expires_at.is_(None), BlacklistedIP.expires_at > now)
    else:
        condition = BlacklistedIP.expires_at < now
    result = await session.execute(select(func.count(BlacklistedIP.id)).where(condition))
    return int(result.scalar_one())


async def delete_expired_blacklist_entries(session: AsyncSession, now: datetime) -> int:
    """Delete blacklist rows whose expiry has passed. Indefinite rows stay.

    Returns:
        Number of rows deleted.
    """
    result = await session.execute(
        delete(BlacklistedIP).where(
            BlacklistedIP.expires_at.is_not(None),
            BlacklistedIP.expires_at < now,
        )
    )
    return result.rowcount or 0


async def delete_failed_attempts_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(
        delete(FailedAttempt).where(FailedAttempt.timestamp < cutoff)
    )
    return result.rowcount or 0
