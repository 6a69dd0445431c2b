"""Contact inbox and newsletter registry behind the public forms.

Both persist first and mail second. A row that cannot be written fails the
request; a mail that cannot be sent is only logged.
"""

import uuid
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shield.app.api.schemas import ContactRequest
from shield.app.core.logging import get_log_context, get_logger
from shield.app.core.utils import utcnow
from shield.app.db import crud
from shield.app.db.async_session import session_scope
from shield.app.exceptions import SubmissionFailed

logger = get_logger(__name__)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, text: str) -> bool: ...


class ContactInbox:
    """Stores contact messages and notifies the site owner."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        mailer: Mailer,
        notify_address: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_maker = session_maker
        self._mailer = mailer
        self._notify_address = notify_address
        self._clock = clock

    async def submit(self, data: ContactRequest, client_ip: str) -> int:
        """Store the message and send the owner notification.

        Returns:
            Id of the stored message.

        Raises:
            SubmissionFailed: the message could not be stored.
        """
        try:
            async with session_scope(self._session_maker) as session:
                row = await crud.add_contact_message(
                    session,
                    name=data.name,
                    email=data.email,
                    subject=data.subject,
                    message=data.message,
                    client_ip=client_ip,
                    created_at=self._clock(),
                )
                message_id = row.id
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to store contact message: {e}",
                extra=get_log_context(client_ip=client_ip),
            )
            raise SubmissionFailed("Failed to send message") from e

        sent = await self._mailer.send(
            self._notify_address,
            f"New contact form submission: {data.subject}",
            f"From: {data.name} <{data.email}>\n"
            f"Subject: {data.subject}\n\n"
            f"{data.message}\n",
        )
        if not sent:
            logger.warning(
                "Contact notification not delivered",
                extra=get_log_context(message_id=message_id),
            )
        return message_id


class NewsletterRegistry:
    """Newsletter signups: storage, welcome mail and owner notification."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        mailer: Mailer,
        *,
        site_url: str,
        notify_address: str = "",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_maker = session_maker
        self._mailer = mailer
        self._site_url = site_url.rstrip("/")
        self._notify_address = notify_address
        self._clock = clock

    async def subscribe(self, email: str, name: str = "") -> bool:
        """Subscribe email, reactivating a previously unsubscribed row.

        Returns:
            False if the address is already subscribed, True otherwise.

        Raises:
            SubmissionFailed: the subscriber could not be stored.
        """
        token = str(uuid.uuid4())
        try:
            async with session_scope(self._session_maker) as session:
                existing = await crud.get_subscriber_by_email(session, email)
                if existing is not None and existing.is_subscribed:
                    return False
                await crud.upsert_subscriber(
                    session,
                    email=email,
                    name=name,
                    unsubscribe_token=token,
                    now=self._clock(),
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store newsletter subscriber: {e}")
            raise SubmissionFailed("Failed to subscribe to newsletter") from e

        greeting = f"Welcome {name}!" if name else "Welcome!"
        await self._mailer.send(
            email,
            "Welcome to My Newsletter!",
            f"{greeting}\n\n"
            "Thank you for subscribing to my newsletter. You'll now receive updates "
            "about my latest projects and blog posts.\n\n"
            f"Unsubscribe: {self._site_url}/unsubscribe?token={token}\n",
        )
        if self._notify_address:
            await self._mailer.send(
                self._notify_address,
                "New Newsletter Subscriber!",
                f"Email: {email}\nName: {name or '-'}\n",
            )
        return True
