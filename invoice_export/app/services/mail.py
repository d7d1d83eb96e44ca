"""
Mail sender backends.

The concrete mail transport is an external collaborator. The pipeline's
responsibility ends at a fully formed SendInstruction; a backend either
confirms the handoff or raises. Selection follows ``mail_backend``:

    log    records the would-be send and confirms it (development)
    http   POSTs the instruction as JSON to a provider endpoint
"""

import logging
import uuid
from typing import Optional, Protocol

import httpx

from invoice_export.app.core.config import Settings
from invoice_export.app.schemas.artifact import SendInstruction
from invoice_export.app.services.errors import DeliveryError

logger = logging.getLogger("invoice_export.mail")


class MailSender(Protocol):
    async def send(self, instruction: SendInstruction) -> bool:
        ...


class LoggingMailSender:
    """Does not send anything; logs the message and reports success."""

    async def send(self, instruction: SendInstruction) -> bool:
        logger.info(
            "email_send_simulated",
            extra={
                "to": instruction.to,
                "subject": instruction.subject,
                "attachments": [a.filename for a in instruction.attachments],
            },
        )
        return True


class HttpMailSender:
    """
    Hands send instructions to an HTTP mail provider.

    Contract:
    - request: JSON body ``{to, from, subject, htmlBody, attachments}``
    - success: any 2xx response
    - anything else raises DeliveryError
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout_s: float = 15.0,
    ) -> None:
        self._client = http_client
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout_s = timeout_s

    async def send(self, instruction: SendInstruction) -> bool:
        correlation_id = f"invoice-export-{uuid.uuid4()}"

        headers = {
            "X-Correlation-ID": correlation_id,
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = await self._client.post(
                self._endpoint,
                json=instruction.model_dump(by_alias=True, exclude_none=True),
                headers=headers,
                timeout=self._timeout_s,
            )
        except httpx.RequestError as exc:
            raise DeliveryError(
                f"Failed to call mail provider "
                f"(correlation_id={correlation_id}): {exc}"
            ) from exc

        if not response.is_success:
            raise DeliveryError(
                "Mail provider error "
                f"(status={response.status_code}, "
                f"correlation_id={correlation_id}): "
                f"{response.text[:200]}"
            )

        logger.info(
            "email_handed_off",
            extra={
                "to": instruction.to,
                "correlation_id": correlation_id,
                "status": response.status_code,
            },
        )
        return True


def build_mail_sender(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> MailSender:
    if settings.mail_backend == "log":
        return LoggingMailSender()

    if settings.mail_backend == "http":
        if settings.mail_http_url is None:
            raise RuntimeError("INVOICE_EXPORT_MAIL_HTTP_URL is not set")
        if http_client is None:
            raise RuntimeError("The http mail backend requires an HTTP client")

        return HttpMailSender(
            http_client=http_client,
            endpoint=str(settings.mail_http_url),
            api_key=(
                settings.mail_api_key.get_secret_value()
                if settings.mail_api_key is not None
                else None
            ),
            timeout_s=settings.mail_timeout_s,
        )

    raise RuntimeError(f"Unknown mail backend '{settings.mail_backend}'")
