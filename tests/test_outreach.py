"""Tests for the contact inbox and the newsletter registry."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shield.app.api.schemas import ContactRequest
from shield.app.db.models import ContactMessage, NewsletterSubscriber
from shield.app.exceptions import SubmissionFailed
from shield.app.services.outreach import ContactInbox, NewsletterRegistry

MESSAGE = ContactRequest(
    name="Ada Lovelace",
    email="ada@example.com",
    subject="Hello",
    message="I liked your portfolio.",
)


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.send = AsyncMock(return_value=True)
    return mailer


@pytest.fixture
def inbox(session_maker, mailer, utc_clock):
    return ContactInbox(session_maker, mailer, "owner@site.test", clock=utc_clock)


@pytest.fixture
def registry(session_maker, mailer, utc_clock):
    return NewsletterRegistry(
        session_maker,
        mailer,
        site_url="https://site.test/",
        notify_address="owner@site.test",
        clock=utc_clock,
    )


def broken_session_maker():
    session = MagicMock()
    session.__aenter__ = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))
    session.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=session)


async def subscriber(session_maker, email) -> NewsletterSubscriber:
    async with session_maker() as session:
        result = await session.execute(
            select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
        )
        return result.scalar_one()


class TestContactInbox:
    """Tests for ContactInbox.submit."""

    @pytest.mark.asyncio
    async def test_stores_message_and_notifies(self, inbox, mailer, session_maker, utc_clock):
        message_id = await inbox.submit(MESSAGE, "203.0.113.1")

        async with session_maker() as session:
            row = await session.get(ContactMessage, message_id)
        assert (row.name, row.email, row.subject, row.message) == (
            "Ada Lovelace", "ada@example.com", "Hello", "I liked your portfolio.",
        )
        assert row.client_ip == "203.0.113.1"

        mailer.send.assert_awaited_once()
        to, subject, text = mailer.send.await_args.args
        assert to == "owner@site.test"
        assert subject == "New contact form submission: Hello"
        assert "Ada Lovelace <ada@example.com>" in text
        assert "I liked your portfolio." in text

    @pytest.mark.asyncio
    async def test_undelivered_notification_keeps_message(self, inbox, mailer, session_maker):
        mailer.send.return_value = False

        message_id = await inbox.submit(MESSAGE, "203.0.113.1")

        async with session_maker() as session:
            assert await session.get(ContactMessage, message_id) is not None

    @pytest.mark.asyncio
    async def test_storage_failure_raises_without_mail(self, mailer):
        inbox = ContactInbox(broken_session_maker(), mailer, "owner@site.test")

        with pytest.raises(SubmissionFailed) as exc_info:
            await inbox.submit(MESSAGE, "203.0.113.1")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Failed to send message"
        mailer.send.assert_not_awaited()


class TestNewsletterRegistry:
    """Tests for NewsletterRegistry.subscribe."""

    @pytest.mark.asyncio
    async def test_new_subscriber(self, registry, mailer, session_maker):
        assert await registry.subscribe("reader@example.com", "Reader") is True

        row = await subscriber(session_maker, "reader@example.com")
        assert row.is_subscribed is True
        assert row.name == "Reader"
        assert row.subscription_count == 1
        assert len(row.unsubscribe_token) == 36

        assert [call.args[0] for call in mailer.send.await_args_list] == [
            "reader@example.com",
            "owner@site.test",
        ]
        welcome = mailer.send.await_args_list[0].args[2]
        assert "Welcome Reader!" in welcome
        assert f"https://site.test/unsubscribe?token={row.unsubscribe_token}" in welcome

    @pytest.mark.asyncio
    async def test_already_subscribed(self, registry, mailer, session_maker):
        await registry.subscribe("reader@example.com")
        mailer.send.reset_mock()

        assert await registry.subscribe("reader@example.com") is False

        row = await subscriber(session_maker, "reader@example.com")
        assert row.subscription_count == 1
        mailer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resubscribe_reactivates_row(self, registry, session_maker, utc_clock):
        await registry.subscribe("reader@example.com", "Reader")
        first = await subscriber(session_maker, "reader@example.com")

        async with session_maker() as session:
            row = await session.get(NewsletterSubscriber, first.id)
            row.is_subscribed = False
            await session.commit()

        utc_clock.advance(timedelta(days=3))
        assert await registry.subscribe("reader@example.com") is True

        row = await subscriber(session_maker, "reader@example.com")
        assert row.id == first.id
        assert row.is_subscribed is True
        assert row.subscription_count == 2
        assert row.name == "Reader"
        assert row.unsubscribe_token != first.unsubscribe_token

    @pytest.mark.asyncio
    async def test_no_owner_notification_without_address(self, session_maker, mailer):
        registry = NewsletterRegistry(session_maker, mailer, site_url="https://site.test")

        await registry.subscribe("reader@example.com")

        mailer.send.assert_awaited_once()
        assert mailer.send.await_args.args[0] == "reader@example.com"

    @pytest.mark.asyncio
    async def test_storage_failure_raises(self, mailer):
        registry = NewsletterRegistry(broken_session_maker(), mailer, site_url="https://site.test")

        with pytest.raises(SubmissionFailed) as exc_info:
            await registry.subscribe("reader@example.com")

        assert exc_info.value.message == "Failed to subscribe to newsletter"
        mailer.send.assert_not_awaited()
