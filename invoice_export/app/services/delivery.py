"""
Delivery channels.

An artifact leaves the service in one of two ways:

    download   an HTTP response carrying the artifact bytes, its media
               type and an attachment disposition named after the
               invoice number
    email      a SendInstruction with the artifact base64-encoded as an
               attachment, handed to the configured MailSender

Failures of the mail handoff are raised as DeliveryError, never
swallowed.
"""

import base64
import logging
import re
from enum import Enum
from typing import Dict, Optional
from urllib.parse import quote

from fastapi.responses import Response

from invoice_export.app.schemas.artifact import (
    Artifact,
    EmailAttachment,
    SendInstruction,
)
from invoice_export.app.schemas.invoice import DocumentPayload, ExportRequest
from invoice_export.app.services.email_template import EmailBodyRenderer
from invoice_export.app.services.errors import DeliveryError
from invoice_export.app.services.mail import MailSender

logger = logging.getLogger("invoice_export.delivery")


class DeliveryChannel(str, Enum):
    DOWNLOAD = "download"
    EMAIL = "email"


def select_channel(request: ExportRequest) -> DeliveryChannel:
    if request.delivery_target:
        return DeliveryChannel.EMAIL
    return DeliveryChannel.DOWNLOAD


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


_NON_ASCII = re.compile(r"[^\x20-\x7e]")


def content_disposition(filename: str) -> str:
    """
    Attachment disposition for ``filename``.

    Header values are latin-1 on the wire. Names outside printable ASCII get
    an ASCII fallback plus an RFC 6266 ``filename*`` parameter.
    """
    if not _NON_ASCII.search(filename):
        return f"attachment; filename={filename}"

    fallback = _NON_ASCII.sub("_", filename)
    encoded = quote(filename, safe="")
    return f"attachment; filename={fallback}; filename*=UTF-8''{encoded}"


def build_download_response(
    artifact: Artifact,
    *,
    extra_headers: Optional[Dict[str, str]] = None,
) -> Response:
    headers = {"Content-Disposition": content_disposition(artifact.filename)}
    if extra_headers:
        headers.update(extra_headers)

    return Response(
        content=artifact.content,
        status_code=200,
        media_type=artifact.media_type,
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


def email_subject(payload: DocumentPayload) -> str:
    subject = f"Invoice #{payload.invoice_number}"
    if payload.sender_name:
        subject = f"{subject} from {payload.sender_name}"
    return subject


def compose_send_instruction(
    *,
    payload: DocumentPayload,
    artifact: Artifact,
    to: str,
    html_body: str,
    sender_address: Optional[str] = None,
) -> SendInstruction:
    attachment = EmailAttachment(
        content=base64.b64encode(artifact.content).decode("ascii"),
        filename=artifact.filename,
        mime_type=artifact.media_type,
    )

    return SendInstruction(
        to=to,
        sender_address=sender_address,
        subject=email_subject(payload),
        html_body=html_body,
        attachments=[attachment],
    )


class EmailDelivery:
    """Composes the invoice email and hands it to the mail sender."""

    def __init__(
        self,
        *,
        sender: MailSender,
        body_renderer: EmailBodyRenderer,
        sender_address: Optional[str] = None,
    ) -> None:
        self._sender = sender
        self._body_renderer = body_renderer
        self._sender_address = sender_address

    def compose(
        self,
        payload: DocumentPayload,
        artifact: Artifact,
        to: str,
    ) -> SendInstruction:
        html_body = self._body_renderer.render(
            invoice_number=payload.invoice_number,
        )
        return compose_send_instruction(
            payload=payload,
            artifact=artifact,
            to=to,
            html_body=html_body,
            sender_address=self._sender_address,
        )

    async def deliver(
        self,
        payload: DocumentPayload,
        artifact: Artifact,
        to: str,
    ) -> bool:
        instruction = self.compose(payload, artifact, to)

        try:
            confirmed = await self._sender.send(instruction)
        except DeliveryError:
            raise
        except Exception as exc:
            raise DeliveryError(f"Mail handoff failed: {exc}") from exc

        if not confirmed:
            raise DeliveryError("Mail sender did not confirm the handoff")

        logger.info(
            "invoice_email_delivered",
            extra={
                "invoice_number": payload.invoice_number,
                "attachment": artifact.filename,
            },
        )
        return True
