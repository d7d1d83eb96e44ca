"""
Export artifacts and outbound send instructions.

Artifacts are produced once per request and consumed once by a delivery
channel. Nothing here is cached or persisted.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def artifact_filename(invoice_number: str, extension: str) -> str:
    return f"invoice-{invoice_number}.{extension}"


class Artifact(BaseModel):
    """Opaque export content with its framing metadata."""

    content: bytes = Field(repr=False)
    media_type: str
    filename: str

    model_config = ConfigDict(frozen=True)

    @property
    def size(self) -> int:
        return len(self.content)


class RenderedArtifact(Artifact):
    """Bytes captured from a rendered template page (capture path)."""

    media_type: str = "application/pdf"


class SerializedExport(Artifact):
    """Bytes serialized straight from the payload (direct-serialize path)."""

    media_type: str = "application/json"


# ---------------------------------------------------------------------------
# Email send instruction
# ---------------------------------------------------------------------------


class EmailAttachment(BaseModel):
    content: str = Field(..., description="Base64-encoded file content", repr=False)
    filename: str
    mime_type: str = Field(..., alias="mimeType")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class SendInstruction(BaseModel):
    """
    A fully formed message handed to the external mail sender.

    Dump with ``by_alias=True`` to obtain the provider wire shape
    ``{to, from, subject, htmlBody, attachments}``.
    """

    to: str
    sender_address: Optional[str] = Field(default=None, alias="from")
    subject: str
    html_body: str = Field(..., alias="htmlBody", repr=False)
    attachments: List[EmailAttachment] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, populate_by_name=True)
