"""
Print-to-PDF capture.

Page size and margins are fixed for every invoice so output dimensions
do not depend on the caller. The returned bytes are never inspected.
"""

import asyncio
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from invoice_export.app.services.engine import BrowserPage, bounded
from invoice_export.app.services.errors import CaptureError


class PdfLayout(BaseModel):
    format: str = "A4"
    print_background: bool = True
    margin: Dict[str, str] = Field(
        default_factory=lambda: {
            "top": "20px",
            "right": "20px",
            "bottom": "20px",
            "left": "20px",
        }
    )

    model_config = ConfigDict(frozen=True)


INVOICE_PDF_LAYOUT = PdfLayout()


async def capture_pdf(
    page: BrowserPage,
    *,
    timeout_ms: int,
    layout: PdfLayout = INVOICE_PDF_LAYOUT,
) -> bytes:
    """Print the current page to PDF bytes."""
    try:
        pdf = await bounded(
            page.pdf(
                format=layout.format,
                print_background=layout.print_background,
                margin=dict(layout.margin),
            ),
            timeout_ms,
        )
    except asyncio.TimeoutError as exc:
        raise CaptureError(
            f"PDF capture did not finish within {timeout_ms}ms"
        ) from exc
    except Exception as exc:
        raise CaptureError(f"PDF capture failed: {exc}") from exc

    if not pdf:
        raise CaptureError("PDF capture produced no output")

    return bytes(pdf)
