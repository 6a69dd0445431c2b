"""FastAPI dependencies exposing the components built in the lifespan.

Usage:
    @router.post("/contact")
    async def submit(request: Request, guard: GuardDep, policies: PoliciesDep):
        ...
"""

from typing import Annotated, TypeVar

from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError

from shield.app.middleware.guard import RequestGuard
from shield.app.services.abuse import AbuseHeuristics
from shield.app.services.cleanup import SecurityCleanup
from shield.app.services.identity import PasswordAuthenticator
from shield.app.services.outreach import ContactInbox, NewsletterRegistry
from shield.app.services.rate_limiter import PolicySet

M = TypeVar("M", bound=BaseModel)


def get_guard(request: Request) -> RequestGuard:
    return request.app.state.guard


def get_policies(request: Request) -> PolicySet:
    return request.app.state.policies


def get_heuristics(request: Request) -> AbuseHeuristics:
    return request.app.state.heuristics


def get_authenticator(request: Request) -> PasswordAuthenticator:
    return request.app.state.authenticator


def get_cleanup(request: Request) -> SecurityCleanup:
    return request.app.state.cleanup


def get_inbox(request: Request) -> ContactInbox:
    return request.app.state.inbox


def get_subscriptions(request: Request) -> NewsletterRegistry:
    return request.app.state.subscriptions


GuardDep = Annotated[RequestGuard, Depends(get_guard)]
PoliciesDep = Annotated[PolicySet, Depends(get_policies)]
HeuristicsDep = Annotated[AbuseHeuristics, Depends(get_heuristics)]
AuthenticatorDep = Annotated[PasswordAuthenticator, Depends(get_authenticator)]
CleanupDep = Annotated[SecurityCleanup, Depends(get_cleanup)]
InboxDep = Annotated[ContactInbox, Depends(get_inbox)]
SubscriptionsDep = Annotated[NewsletterRegistry, Depends(get_subscriptions)]


async def read_json_body(request: Request) -> dict:
    """Read the request body as a JSON object.

    Guarded handlers read their own body so that malformed requests still
    count against the quota.

    Raises:
        HTTPException: 400 if the body is not a JSON object.
    """
    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return raw


def validation_message(error: ValidationError) -> str:
    """First validation error as a short human-readable message."""
    first = error.errors(include_url=False, include_context=False)[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


async def parse_body(request: Request, model: type[M]) -> M:
    """Validate the JSON body of a guarded request against model.

    Raises:
        HTTPException: 400 with the first validation error.
    """
    raw = await read_json_body(request)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_message(e)) from e
