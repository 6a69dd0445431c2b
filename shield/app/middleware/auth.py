import hmac

from fastapi import HTTPException, Request


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth[7:].strip() or None


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    The admin API is disabled (404) while no admin token is configured.

    Raises:
        HTTPException: 401 if admin token is missing or invalid
    """
    expected_token = request.app.state.settings.admin_token
    if not expected_token:
        raise HTTPException(status_code=404, detail="Admin API is disabled")

    # Always compare, even against an empty token, to keep timing uniform
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"
