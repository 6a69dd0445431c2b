"""reCAPTCHA token verification."""

import httpx

from shield.app.core.logging import get_logger

logger = get_logger(__name__)


class RecaptchaVerifier:
    """Verifies CAPTCHA tokens against Google's siteverify endpoint.

    Any transport error, non-2xx status or malformed body counts as a
    failed verification.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: str,
        verify_url: str = "https://www.google.com/recaptcha/api/siteverify",
    ) -> None:
        self._client = http_client
        self._secret_key = secret_key
        self._verify_url = verify_url

    async def verify(self, token: str) -> bool:
        if not token:
            return False
        if not self._secret_key:
            logger.error("CAPTCHA verification requested but no secret key is configured")
            return False

        try:
            response = await self._client.post(
                self._verify_url,
                data={"secret": self._secret_key, "response": token},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error verifying CAPTCHA: {e}")
            return False
        except ValueError as e:
            logger.error(f"CAPTCHA service returned an unreadable body: {e}")
            return False

        success = bool(payload.get("success", False)) if isinstance(payload, dict) else False
        if not success:
            logger.info(
                "CAPTCHA token rejected",
                extra={"error_codes": payload.get("error-codes") if isinstance(payload, dict) else None},
            )
        return success
