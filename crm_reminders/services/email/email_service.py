from dataclasses import dataclass
from typing import Optional

import httpx

from crm_reminders.config.settings import settings
from crm_reminders.utils.errors import EmailDeliveryError
from crm_reminders.utils.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    html: str
    text: str


class EmailService:
    """Sends rendered messages through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        # Env values are sometimes pasted with a trailing period
        self.from_email = from_email.strip().rstrip(".").strip()
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    async def send(self, to: str, message: EmailMessage) -> str:
        """Send one message and return the provider's message id."""
        if not self.api_key or not self.from_email:
            raise EmailDeliveryError(
                "RESEND_API_KEY and FROM_EMAIL must be configured",
                error_code="EMAIL_CONFIG_MISSING",
            )

        payload = {
            "from": self.from_email,
            "to": [to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.api_url,
                        json=payload,
                        headers=headers,
                        timeout=self.timeout,
                    )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(
                f"Email transport error: {e.__class__.__name__}: {e}",
                error_code="EMAIL_TRANSPORT_FAILED",
            ) from e

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"Email provider rejected message: {response.status_code} - {response.text}",
                error_code="EMAIL_REJECTED",
            )

        try:
            return str(response.json().get("id", ""))
        except ValueError:
            return ""

    async def send_email(self, to: str, message: EmailMessage) -> bool:
        """Send and report success as a flag; failures are logged, not raised."""
        try:
            message_id = await self.send(to, message)
        except EmailDeliveryError as e:
            logger.error(f"Failed to send email '{message.subject}': {e.message}")
            return False

        logger.info(f"Email '{message.subject}' accepted by provider (id={message_id or '-'})")
        return True


def get_email_service() -> EmailService:
    return EmailService(
        api_key=settings.RESEND_API_KEY,
        from_email=settings.FROM_EMAIL,
        api_url=settings.EMAIL_API_URL,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
