"""Login endpoint.

Credentials are checked by the external identity provider. This endpoint
adds the auth quota, CAPTCHA escalation after repeated failures, and
automatic blacklisting of addresses that keep failing.
"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from shield.app.api.dependencies import (
    AuthenticatorDep,
    GuardDep,
    PoliciesDep,
    parse_body,
)
from shield.app.api.schemas import LoginRequest
from shield.app.core.logging import get_log_context, get_logger
from shield.app.middleware.guard import RequestGuard, ip_identifier
from shield.app.services.identity import PasswordAuthenticator

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def make_login_handler(guard: RequestGuard, authenticator: PasswordAuthenticator):
    heuristics = guard.heuristics

    async def handle_login(request: Request) -> Response:
        data = await parse_body(request, LoginRequest)
        ip = request.state.client_ip
        user_agent = request.headers.get("user-agent", "unknown")

        await heuristics.check_captcha(ip, data.email, data.captcha_token, user_agent)

        session = await authenticator.authenticate(data.email, data.password)
        if session is None:
            await heuristics.record_failed_attempt(ip, data.email, user_agent)
            await heuristics.escalate(ip)
            logger.info(
                "Login failed",
                extra=get_log_context(
                    client_ip=ip,
                    request_id=getattr(request.state, "request_id", None),
                ),
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": "invalid_credentials",
                    "message": "Invalid email or password",
                    "requires_captcha": await heuristics.requires_captcha(ip, data.email),
                },
            )

        return JSONResponse(status_code=200, content=session)

    return handle_login


@router.post("/login")
async def login(
    request: Request,
    guard: GuardDep,
    policies: PoliciesDep,
    authenticator: AuthenticatorDep,
) -> Response:
    handler = make_login_handler(guard, authenticator)
    return await guard.guard(policies.auth, ip_identifier, handler)(request)
