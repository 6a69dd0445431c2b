"""Client for the external identity provider used by the login endpoint.

Speaks the GoTrue password grant: ``POST /auth/v1/token?grant_type=password``
with the project key in the ``apikey`` header.
"""

from typing import Any, Optional

import httpx

from shield.app.core.logging import get_logger
from shield.app.exceptions import IdentityProviderUnavailable

logger = get_logger(__name__)


class PasswordAuthenticator:
    """Checks email/password pairs with the identity provider."""

    TOKEN_PATH = "/auth/v1/token"

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    async def authenticate(self, email: str, password: str) -> Optional[dict[str, Any]]:
        """Exchange credentials for a session.

        Returns:
            The provider's session payload, or None when the credentials
            are rejected.

        Raises:
            IdentityProviderUnavailable: If the provider is not configured,
                unreachable, or answers with a server error.
        """
        if not self.configured:
            raise IdentityProviderUnavailable("Authentication service is not configured")

        try:
            response = await self._client.post(
                f"{self._base_url}{self.TOKEN_PATH}",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers={"apikey": self._api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider request failed: {e}")
            raise IdentityProviderUnavailable() from e

        if response.status_code in (400, 401, 403, 422):
            return None
        if response.status_code >= 400:
            logger.error(f"Identity provider returned HTTP {response.status_code}")
            raise IdentityProviderUnavailable()

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Identity provider returned an unreadable body: {e}")
            raise IdentityProviderUnavailable() from e
