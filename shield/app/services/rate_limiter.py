"""Sliding-window rate limiting over a shared counter store.

Each policy keeps one ordered list of request timestamps per identifier.
A check reads the list, prunes entries that fell out of the window, and
either rejects the request or records it.

The read and the write are separate store calls with no lock between
them, so concurrent requests for the same identifier can both slip in
just under the limit. The limiter is exact for sequential traffic and
approximate under contention.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Iterator

from shield.app.core.config import Settings
from shield.app.core.counter_store import CounterStore
from shield.app.core.logging import get_log_context, get_logger
from shield.app.core.utils import ms_to_seconds_ceil, now_ms
from shield.app.exceptions import InvalidPolicy, StoreUnavailable

logger = get_logger(__name__)


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota for one class of endpoint.

    Attributes:
        max_requests: Requests allowed per window
        window_ms: Window length in milliseconds
        key_prefix: Namespace for the policy's store keys
    """
    max_requests: int
    window_ms: int
    key_prefix: str

    def __post_init__(self) -> None:
        for name in ("max_requests", "window_ms"):
            value = getattr(self, name)
            if not _is_positive_int(value):
                raise InvalidPolicy(f"{name} must be a positive integer, got {value!r}")
        if not self.key_prefix:
            raise InvalidPolicy("key_prefix must not be empty")

    @property
    def window_seconds(self) -> int:
        return ms_to_seconds_ceil(self.window_ms)

    def key_for(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"


CONTACT_FORM_POLICY = RateLimitPolicy(
    max_requests=5, window_ms=60 * 60 * 1000, key_prefix="ratelimit:contact"
)
AUTH_POLICY = RateLimitPolicy(
    max_requests=10, window_ms=15 * 60 * 1000, key_prefix="ratelimit:auth"
)
API_POLICY = RateLimitPolicy(
    max_requests=100, window_ms=60 * 60 * 1000, key_prefix="ratelimit:api"
)


@dataclass(frozen=True)
class PolicySet:
    """The policies protecting the public endpoints."""
    contact: RateLimitPolicy = CONTACT_FORM_POLICY
    auth: RateLimitPolicy = AUTH_POLICY
    api: RateLimitPolicy = API_POLICY

    @classmethod
    def from_settings(cls, config: Settings) -> "PolicySet":
        return cls(
            contact=RateLimitPolicy(
                max_requests=config.contact_rate_limit_max_requests,
                window_ms=config.contact_rate_limit_window_ms,
                key_prefix=CONTACT_FORM_POLICY.key_prefix,
            ),
            auth=RateLimitPolicy(
                max_requests=config.auth_rate_limit_max_requests,
                window_ms=config.auth_rate_limit_window_ms,
                key_prefix=AUTH_POLICY.key_prefix,
            ),
            api=RateLimitPolicy(
                max_requests=config.api_rate_limit_max_requests,
                window_ms=config.api_rate_limit_window_ms,
                key_prefix=API_POLICY.key_prefix,
            ),
        )

    def __iter__(self) -> Iterator[RateLimitPolicy]:
        return iter((self.contact, self.auth, self.api))


@dataclass(frozen=True)
class Allowed:
    """The request fits in the quota and has been recorded."""
    limit: int
    remaining: int
    reset_at: int  # ms since epoch
    allowed: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Denied:
    """The quota is used up; nothing was recorded."""
    limit: int
    reset_at: int  # ms since epoch
    retry_after: int  # seconds
    remaining: int = field(default=0, init=False)
    allowed: bool = field(default=False, init=False)


RateLimitDecision = Allowed | Denied


class RateLimiter:
    """Check-and-record rate limiter.

    Fails open: when the store cannot be read or written the request is
    allowed and the failure is logged.
    """

    def __init__(self, store: CounterStore, clock: Callable[[], int] = now_ms) -> None:
        """Initialize rate limiter.

        Args:
            store: Counter store holding the per-key timestamp lists
            clock: Returns the current time in milliseconds
        """
        self._store = store
        self._clock = clock

    async def check(self, policy: RateLimitPolicy, identifier: str) -> RateLimitDecision:
        """Decide whether a request may proceed and record it if so."""
        now = self._clock()
        key = policy.key_for(identifier)
        window_start = now - policy.window_ms

        try:
            timestamps = await self._store.list_timestamps(key)

            first_valid = len(timestamps)
            for index, ts in enumerate(timestamps):
                if ts > window_start:
                    first_valid = index
                    break
            if first_valid:
                await self._store.trim_timestamps(key, first_valid)
            valid = timestamps[first_valid:]

            if len(valid) >= policy.max_requests:
                reset_at = valid[0] + policy.window_ms
                return Denied(
                    limit=policy.max_requests,
                    reset_at=reset_at,
                    retry_after=math.ceil((reset_at - now) / 1000),
                )

            await self._store.append_timestamp(key, now, policy.window_seconds)
            return Allowed(
                limit=policy.max_requests,
                remaining=policy.max_requests - (len(valid) + 1),
                reset_at=now + policy.window_ms,
            )

        except StoreUnavailable as e:
            logger.warning(
                f"Rate limiting fail-open triggered: {e}",
                extra=get_log_context(policy=policy.key_prefix, identifier=identifier),
            )
        except Exception as e:
            logger.exception(
                f"Unexpected rate limit error, failing open: {e}",
                extra=get_log_context(policy=policy.key_prefix, identifier=identifier),
            )

        return Allowed(
            limit=policy.max_requests,
            remaining=policy.max_requests,
            reset_at=now + policy.window_ms,
        )

    async def reset(self, policy: RateLimitPolicy) -> int:
        """Drop every key of policy. Used for full resets only."""
        return await self._store.delete_keys(f"{policy.key_prefix}:")

    async def sweep_expired(self) -> int:
        """Evict windows whose TTL lapsed without being read again."""
        return await self._store.sweep_expired()
