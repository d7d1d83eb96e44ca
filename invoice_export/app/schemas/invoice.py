"""
Invoice payload schemas.

Defines the structured document record received from the invoice
editor. Only the fields the export pipeline relies on are declared;
everything else is carried through verbatim so templates receive the
document exactly as it was submitted.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"

_OPEN_FROZEN = ConfigDict(
    extra="allow",
    frozen=True,
    populate_by_name=True,
)


class InvoiceDetails(BaseModel):
    """Identifying fields of an invoice."""

    invoice_number: str = Field(
        ...,
        alias="invoiceNumber",
        min_length=1,
        max_length=128,
    )
    pdf_template: Union[int, str] = Field(
        ...,
        alias="pdfTemplate",
        description="Identifier of the template page used for rendering",
    )

    model_config = _OPEN_FROZEN

    @field_validator("invoice_number")
    @classmethod
    def reject_path_characters(cls, v: str) -> str:
        # The number ends up in a Content-Disposition filename.
        if any(ch in v for ch in ('"', "/", "\\", "\r", "\n", ";")):
            raise ValueError("invoiceNumber contains forbidden characters")
        return v

    @field_validator("pdf_template")
    @classmethod
    def reject_unsafe_template_id(cls, v: Union[int, str]) -> Union[int, str]:
        if isinstance(v, str) and (not v or "/" in v or ".." in v):
            raise ValueError("pdfTemplate must be a single path segment")
        return v


class InvoiceParty(BaseModel):
    """Sender or receiver block. Only the display name is interpreted."""

    name: Optional[str] = None

    model_config = _OPEN_FROZEN


class DocumentPayload(BaseModel):
    """
    The structured invoice submitted for export.

    Immutable for the duration of one export. ``to_wire`` is the single
    serialization used for both template hydration and raw export.
    """

    locale: Optional[str] = None
    details: InvoiceDetails
    sender: Optional[InvoiceParty] = None
    receiver: Optional[InvoiceParty] = None

    model_config = _OPEN_FROZEN

    @property
    def invoice_number(self) -> str:
        return self.details.invoice_number

    @property
    def template_id(self) -> str:
        return str(self.details.pdf_template)

    @property
    def sender_name(self) -> Optional[str]:
        return self.sender.name if self.sender is not None else None

    def to_wire(self) -> Dict[str, Any]:
        """
        Return the JSON-compatible form of the payload.

        Only fields that were supplied are emitted, under their original
        wire names, so the result matches what the editor sent.
        """
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_unset=True,
        )


class ExportRequest(BaseModel):
    """An export instruction: payload, requested format, optional target."""

    data: DocumentPayload
    format: str = Field(
        ...,
        validation_alias=AliasChoices("format", "type"),
        min_length=1,
        max_length=32,
    )
    delivery_target: Optional[str] = Field(
        default=None,
        max_length=320,
        pattern=EMAIL_PATTERN,
        validation_alias=AliasChoices("deliveryTarget", "delivery_target"),
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class SendEmailRequest(BaseModel):
    """Body of the send-by-email route."""

    data: DocumentPayload
    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        pattern=EMAIL_PATTERN,
    )

    model_config = ConfigDict(frozen=True, extra="forbid")
