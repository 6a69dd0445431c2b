"""Outbound mail through the Resend HTTP API."""

import httpx

from shield.app.core.logging import get_logger

logger = get_logger(__name__)


class ResendMailer:
    """Sends plain-text mail with the Resend emails endpoint.

    Delivery is best effort: transport errors and non-2xx answers are
    logged and reported as False, never raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
    ) -> None:
        self._client = http_client
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, to: str, subject: str, text: str) -> bool:
        if not to:
            return False
        if not self.configured:
            logger.warning(f"Mail to {to} skipped: no Resend API key configured")
            return False

        try:
            response = await self._client.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._sender, "to": [to], "subject": subject, "text": text},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Resend rejected mail: {e.response.status_code}",
                extra={"subject": subject, "response": e.response.text[:200]},
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"Error sending mail: {e}", extra={"subject": subject})
            return False

        logger.info("Mail sent", extra={"subject": subject})
        return True
