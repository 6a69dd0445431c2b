from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shield.app.db.base import Base


class BlacklistedIP(Base):
    """An IP address barred from the guarded endpoints.

    ``expires_at`` of None means the entry never lapses.
    """

    __tablename__ = "blacklisted_ips"
    __table_args__ = (
        Index("idx_blacklisted_ips_ip", "ip_address"),
        Index("idx_blacklisted_ips_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ip_address: Mapped[str] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<BlacklistedIP(ip={self.ip_address}, expires_at={self.expires_at})>"


class FailedAttempt(Base):
    __tablename__ = "failed_attempts"
    __table_args__ = (
        Index("idx_failed_attempts_ip", "ip_address"),
        Index("idx_failed_attempts_email", "email"),
        Index("idx_failed_attempts_timestamp", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ip_address: Mapped[str] = mapped_column(String(64))
    email: Mapped[str] = mapped_column(String(320))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    user_agent: Mapped[str] = mapped_column(Text, default="unknown")


class ContactMessage(Base):
    """A message submitted through the contact form."""

    __tablename__ = "contact_messages"
    __table_args__ = (Index("idx_contact_messages_created", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(320))
    subject: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    client_ip: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class NewsletterSubscriber(Base):
    """A newsletter address. Unsubscribed rows are kept and reactivated."""

    __tablename__ = "newsletter_subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    name: Mapped[str] = mapped_column(String(100), default="")
    is_subscribed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    unsubscribe_token: Mapped[str] = mapped_column(String(36))
    subscription_count: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<NewsletterSubscriber(email={self.email}, is_subscribed={self.is_subscribed})>"
