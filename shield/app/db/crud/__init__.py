"""CRUD operations package."""

from shield.app.db.crud.outreach import (
    add_contact_message,
    get_subscriber_by_email,
    upsert_subscriber,
)
from shield.app.db.crud.security import (
    add_blacklist_entry,
    add_failed_attempt,
    count_blacklist_entries,
    count_failed_attempts_since,
    delete_expired_blacklist_entries,
    delete_failed_attempts_before,
    find_active_blacklist_entry,
    get_recent_failed_attempts,
)

__all__ = [
    "add_blacklist_entry",
    "add_contact_message",
    "add_failed_attempt",
    "count_blacklist_entries",
    "count_failed_attempts_since",
    "delete_expired_blacklist_entries",
    "delete_failed_attempts_before",
    "find_active_blacklist_entry",
    "get_recent_failed_attempts",
    "get_subscriber_by_email",
    "upsert_subscriber",
]
