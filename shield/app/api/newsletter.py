"""Newsletter signup endpoint.

Invalid submissions and rejected CAPTCHA tokens are recorded as failed
attempts, so repeated bad submissions escalate to a CAPTCHA challenge.
Accepted signups are stored by the newsletter registry, which sends the
welcome mail.
"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from shield.app.api.dependencies import (
    GuardDep,
    PoliciesDep,
    SubscriptionsDep,
    read_json_body,
    validation_message,
)
from shield.app.api.schemas import SubscribeRequest, sanitize
from shield.app.core.logging import get_log_context, get_logger
from shield.app.middleware.guard import RequestGuard, ip_path_identifier
from shield.app.services.outreach import NewsletterRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/api/newsletter", tags=["newsletter"])


def make_subscribe_handler(guard: RequestGuard, subscriptions: NewsletterRegistry):
    heuristics = guard.heuristics

    async def handle_subscribe(request: Request) -> Response:
        ip = request.state.client_ip
        user_agent = request.headers.get("user-agent", "unknown")
        raw = await read_json_body(request)

        try:
            data = SubscribeRequest.model_validate(raw)
        except ValidationError as e:
            attempted = raw.get("email")
            await heuristics.record_failed_attempt(
                ip, sanitize(attempted)[:320] if isinstance(attempted, str) else "", user_agent
            )
            return JSONResponse(status_code=400, content={"error": validation_message(e)})

        await heuristics.check_captcha(ip, data.email, data.captcha_token, user_agent)

        if not await subscriptions.subscribe(data.email, data.name):
            return JSONResponse(
                status_code=400,
                content={"error": "You are already subscribed to our newsletter"},
            )

        logger.info(
            "Newsletter subscription accepted",
            extra=get_log_context(
                client_ip=ip,
                request_id=getattr(request.state, "request_id", None),
            ),
        )
        return JSONResponse(
            status_code=200,
            content={"message": "Successfully subscribed to newsletter"},
        )

    return handle_subscribe


@router.post("/subscribe")
async def subscribe(
    request: Request,
    guard: GuardDep,
    policies: PoliciesDep,
    subscriptions: SubscriptionsDep,
) -> Response:
    handler = make_subscribe_handler(guard, subscriptions)
    return await guard.guard(policies.api, ip_path_identifier, handler)(request)
