"""
Export dispatch.

Every requested format maps to exactly one pipeline path:

    pdf       CAPTURE               render the template, print to PDF
    pdfXLSX   CAPTURE_THEN_CONVERT  no converter exists; reported as
                                    unsupported before any browser work
    json      DIRECT_SERIALIZE      serialize the payload, no browser

Strings outside the ExportFormat enum are unsupported. Dispatch never
falls back from one path to another.
"""

import json
import logging
from enum import Enum
from typing import Dict, Optional, assert_never

from invoice_export.app.schemas.artifact import (
    Artifact,
    RenderedArtifact,
    SerializedExport,
    artifact_filename,
)
from invoice_export.app.schemas.invoice import DocumentPayload, ExportRequest
from invoice_export.app.services.browser import SessionProvider
from invoice_export.app.services.errors import UnsupportedFormatError
from invoice_export.app.services.locator import TemplateLocator

logger = logging.getLogger("invoice_export.dispatcher")


class ExportFormat(str, Enum):
    PDF = "pdf"
    PDF_XLSX = "pdfXLSX"
    JSON = "json"


class ExportPath(str, Enum):
    CAPTURE = "capture"
    CAPTURE_THEN_CONVERT = "capture_then_convert"
    DIRECT_SERIALIZE = "direct_serialize"


FORMAT_PATHS: Dict[ExportFormat, ExportPath] = {
    ExportFormat.PDF: ExportPath.CAPTURE,
    ExportFormat.PDF_XLSX: ExportPath.CAPTURE_THEN_CONVERT,
    ExportFormat.JSON: ExportPath.DIRECT_SERIALIZE,
}

if set(FORMAT_PATHS) != set(ExportFormat):
    raise RuntimeError("FORMAT_PATHS must cover every ExportFormat member")


def parse_format(value: str) -> ExportFormat:
    try:
        return ExportFormat(value)
    except ValueError:
        raise UnsupportedFormatError(value) from None


# ---------------------------------------------------------------------------
# Direct-serialize path
# ---------------------------------------------------------------------------


def serialize_payload(payload: DocumentPayload) -> SerializedExport:
    content = json.dumps(
        payload.to_wire(),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")

    return SerializedExport(
        content=content,
        filename=artifact_filename(payload.invoice_number, "json"),
    )


def deserialize_payload(content: bytes) -> DocumentPayload:
    return DocumentPayload.model_validate_json(content)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ExportDispatcher:
    """Routes export requests to the capture or direct-serialize path."""

    def __init__(self, sessions: SessionProvider, locator: TemplateLocator) -> None:
        self._sessions = sessions
        self._locator = locator

    async def render_pdf(
        self,
        payload: DocumentPayload,
        request_host: Optional[str] = None,
    ) -> RenderedArtifact:
        """Capture path: hydrate the template page and print it to PDF."""
        url = self._locator.locate(payload, request_host)

        async with self._sessions.session() as session:
            pdf = await session.hydrate_and_capture(url, payload)

        logger.info(
            "invoice_pdf_rendered",
            extra={
                "invoice_number": payload.invoice_number,
                "template_id": payload.template_id,
                "size_bytes": len(pdf),
            },
        )

        return RenderedArtifact(
            content=pdf,
            filename=artifact_filename(payload.invoice_number, "pdf"),
        )

    async def export(
        self,
        request: ExportRequest,
        request_host: Optional[str] = None,
    ) -> Artifact:
        """
        Produce the artifact for ``request``.

        Raises UnsupportedFormatError for formats without an implemented
        path. Render failures propagate as ExportError subclasses after
        the session has been released.
        """
        export_format = parse_format(request.format)
        path = FORMAT_PATHS[export_format]

        logger.info(
            "export_dispatched",
            extra={
                "invoice_number": request.data.invoice_number,
                "format": export_format.value,
                "path": path.value,
            },
        )

        if path is ExportPath.CAPTURE:
            return await self.render_pdf(request.data, request_host)
        if path is ExportPath.DIRECT_SERIALIZE:
            return serialize_payload(request.data)
        if path is ExportPath.CAPTURE_THEN_CONVERT:
            raise UnsupportedFormatError(
                export_format.value,
                "PDF conversion for this format is not implemented yet",
            )
        assert_never(path)
