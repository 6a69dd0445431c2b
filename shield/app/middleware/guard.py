"""Request gate for the public endpoints.

Wraps a handler with the blacklist check and the rate-limit check, in
that order, and stamps the quota on the handler's response. The gate
keeps no state of its own.
"""

from typing import Awaitable, Callable

from fastapi import Request, Response

from shield.app.core.logging import get_log_context, get_logger
from shield.app.exceptions import AccessDenied, RateLimited
from shield.app.services.abuse import AbuseHeuristics
from shield.app.services.rate_limiter import (
    Allowed,
    Denied,
    RateLimitPolicy,
    RateLimiter,
)

logger = get_logger(__name__)

Handler = Callable[[Request], Awaitable[Response]]
IdentifierFn = Callable[[Request], str]


def ip_identifier(request: Request) -> str:
    """Scope the quota to the client address."""
    return request.state.client_ip


def ip_path_identifier(request: Request) -> str:
    """Scope the quota to the client address and route."""
    return f"{request.state.client_ip}:{request.url.path}"


def apply_rate_limit_headers(response: Response, decision: Allowed) -> Response:
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_at)
    return response


class RequestGuard:
    """Composes AbuseHeuristics and RateLimiter around request handlers."""

    def __init__(
        self,
        limiter: RateLimiter,
        heuristics: AbuseHeuristics,
        trust_forwarded_for: bool = True,
    ) -> None:
        self.limiter = limiter
        self.heuristics = heuristics
        self.trust_forwarded_for = trust_forwarded_for

    def client_ip(self, request: Request) -> str:
        """Resolve the client address.

        Uses the first X-Forwarded-For entry when the proxy is trusted,
        otherwise the connection address.
        """
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                first = forwarded.split(",")[0].strip()
                if first:
                    return first
        return request.client.host if request.client else "unknown"

    async def check(
        self,
        request: Request,
        policy: RateLimitPolicy,
        identifier_fn: IdentifierFn,
    ) -> Allowed:
        """Run both checks for request.

        Raises:
            AccessDenied: If the client IP is blacklisted.
            RateLimited: If the policy quota is used up.
        """
        ip = self.client_ip(request)
        request.state.client_ip = ip

        if await self.heuristics.is_blacklisted(ip):
            logger.warning(
                "Rejected request from blacklisted IP",
                extra=get_log_context(
                    client_ip=ip,
                    path=request.url.path,
                    request_id=getattr(request.state, "request_id", None),
                ),
            )
            raise AccessDenied()

        identifier = identifier_fn(request)
        decision = await self.limiter.check(policy, identifier)

        if isinstance(decision, Denied):
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(
                    client_ip=ip,
                    policy=policy.key_prefix,
                    identifier=identifier,
                    request_id=getattr(request.state, "request_id", None),
                ),
            )
            raise RateLimited(
                limit=decision.limit,
                reset_at=decision.reset_at,
                retry_after=decision.retry_after,
            )

        return decision

    def guard(
        self,
        policy: RateLimitPolicy,
        identifier_fn: IdentifierFn,
        handler: Handler,
    ) -> Handler:
        """Wrap handler with the blacklist and rate-limit checks.

        Example:
            wrapped = guard.guard(policies.contact, ip_identifier, handle_contact)
            response = await wrapped(request)
        """

        async def guarded(request: Request) -> Response:
            decision = await self.check(request, policy, identifier_fn)
            response = await handler(request)
            return apply_rate_limit_headers(response, decision)

        return guarded
