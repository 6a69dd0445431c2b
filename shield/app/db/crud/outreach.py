"""Contact message and newsletter subscriber operations."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shield.app.db.models import ContactMessage, NewsletterSubscriber


async def add_contact_message(
    session: AsyncSession,
    name: str,
    email: str,
    subject: str,
    message: str,
    client_ip: str,
    created_at: datetime,
) -> ContactMessage:
    row = ContactMessage(
        name=name,
        email=email,
        subject=subject,
        message=message,
        client_ip=client_ip,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row


async def get_subscriber_by_email(
    session: AsyncSession,
    email: str,
) -> NewsletterSubscriber | None:
    result = await session.execute(
        select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
    )
    return result.scalar_one_or_none()


async def upsert_subscriber(
    session: AsyncSession,
    email: str,
    name: str,
    unsubscribe_token: str,
    now: datetime,
) -> NewsletterSubscriber:
    """Create the subscriber or reactivate an existing row.

    Reactivation bumps ``subscription_count`` and issues a fresh
    unsubscribe token.
    """
    subscriber = await get_subscriber_by_email(session, email)
    if subscriber is None:
        subscriber = NewsletterSubscriber(
            email=email,
            name=name,
            is_subscribed=True,
            unsubscribe_token=unsubscribe_token,
            subscription_count=1,
            created_at=now,
            last_updated_at=now,
        )
        session.add(subscriber)
    else:
        subscriber.is_subscribed = True
        subscriber.unsubscribe_token = unsubscribe_token
        subscriber.subscription_count = (subscriber.subscription_count or 0) + 1
        subscriber.last_updated_at = now
        if name:
            subscriber.name = name
    await session.flush()
    return subscriber
