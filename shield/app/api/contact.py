"""Public contact form endpoint.

Accepted messages are stored in the contact inbox, which also notifies
the site owner by mail.
"""

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from shield.app.api.dependencies import GuardDep, InboxDep, PoliciesDep, parse_body
from shield.app.api.schemas import ContactRequest
from shield.app.core.logging import get_log_context, get_logger
from shield.app.middleware.guard import ip_identifier
from shield.app.services.outreach import ContactInbox

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["contact"])


def make_contact_handler(inbox: ContactInbox):
    async def handle_contact(request: Request) -> Response:
        data = await parse_body(request, ContactRequest)
        message_id = await inbox.submit(data, request.state.client_ip)
        logger.info(
            "Contact message accepted",
            extra=get_log_context(
                client_ip=request.state.client_ip,
                request_id=getattr(request.state, "request_id", None),
                message_id=message_id,
                subject=data.subject,
            ),
        )
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content={"message": "Message sent successfully"},
        )

    return handle_contact


@router.post("/contact", status_code=status.HTTP_201_CREATED)
async def submit_contact(
    request: Request,
    guard: GuardDep,
    policies: PoliciesDep,
    inbox: InboxDep,
) -> Response:
    handler = make_contact_handler(inbox)
    return await guard.guard(policies.contact, ip_identifier, handler)(request)
