import logging
import uuid
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse, Response

from invoice_export.app.schemas.invoice import (
    DocumentPayload,
    ExportRequest,
    SendEmailRequest,
)
from invoice_export.app.services.delivery import (
    DeliveryChannel,
    EmailDelivery,
    build_download_response,
    select_channel,
)
from invoice_export.app.services.dispatcher import ExportDispatcher
from invoice_export.app.services.errors import UnsupportedFormatError

logger = logging.getLogger("invoice_export.api")

router = APIRouter(prefix="/invoice", tags=["Invoice Export"])

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Audit trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_dispatcher(request: Request) -> ExportDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("export dispatcher not initialized")
    return dispatcher


def get_email_delivery(request: Request) -> EmailDelivery:
    delivery = getattr(request.app.state, "email_delivery", None)
    if delivery is None:
        raise RuntimeError("email delivery not initialized")
    return delivery


def get_request_host(request: Request) -> Optional[str]:
    return request.headers.get("host")


CorrelationId = Annotated[str, Depends(get_correlation_id)]
Dispatcher = Annotated[ExportDispatcher, Depends(get_dispatcher)]
Delivery = Annotated[EmailDelivery, Depends(get_email_delivery)]
RequestHost = Annotated[Optional[str], Depends(get_request_host)]


def _error_response(
    status_code: int,
    message: str,
    correlation_id: str,
    **details: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, **details},
        headers={"X-Correlation-ID": correlation_id},
    )


def _unsupported_response(
    exc: UnsupportedFormatError,
    correlation_id: str,
) -> JSONResponse:
    logger.info(
        "export_format_unsupported",
        extra={
            "format": exc.requested_format,
            "trace_id": correlation_id,
        },
    )
    return _error_response(
        status.HTTP_501_NOT_IMPLEMENTED,
        "Export format not implemented yet",
        correlation_id,
        format=exc.requested_format,
        detail=exc.reason,
    )


def _failure_response(
    message: str,
    exc: Exception,
    correlation_id: str,
    invoice_number: str,
) -> JSONResponse:
    logger.exception(
        "export_pipeline_failure",
        extra={
            "trace_id": correlation_id,
            "invoice_number": invoice_number,
            "error_type": type(exc).__name__,
        },
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        message,
        correlation_id,
    )


# =============================================================================
# POST /invoice/generate
# =============================================================================

@router.post(
    "/generate",
    summary="Render an invoice to a downloadable PDF",
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}},
            "description": "Rendered invoice PDF",
        },
        500: {"description": "Rendering failure"},
    },
)
async def generate_pdf(
    payload: DocumentPayload,
    dispatcher: Dispatcher,
    correlation_id: CorrelationId,
    host: RequestHost,
) -> Response:
    try:
        artifact = await dispatcher.render_pdf(payload, host)
        return build_download_response(
            artifact,
            extra_headers={"X-Correlation-ID": correlation_id},
        )
    except Exception as exc:
        return _failure_response(
            "Failed to generate PDF",
            exc,
            correlation_id,
            payload.invoice_number,
        )


# =============================================================================
# POST /invoice/export
# =============================================================================

@router.post(
    "/export",
    summary="Export an invoice in the requested format",
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}, "application/json": {}},
            "description": "Exported artifact, or a send confirmation",
        },
        501: {"description": "Export format not implemented"},
        500: {"description": "Export failure"},
    },
)
async def export_invoice(
    export_request: ExportRequest,
    dispatcher: Dispatcher,
    delivery: Delivery,
    correlation_id: CorrelationId,
    host: RequestHost,
) -> Response:
    """
    Export the invoice as ``format``.

    Without ``deliveryTarget`` the artifact is returned as a download.
    With it, the artifact is emailed to that address instead.
    """
    payload = export_request.data
    channel = select_channel(export_request)

    logger.info(
        "initiating_invoice_export",
        extra={
            "invoice_number": payload.invoice_number,
            "format": export_request.format,
            "channel": channel.value,
            "trace_id": correlation_id,
        },
    )

    try:
        artifact = await dispatcher.export(export_request, host)

        if channel is DeliveryChannel.EMAIL:
            await delivery.deliver(payload, artifact, export_request.delivery_target)
            return JSONResponse(
                content={"sent": True, "invoiceNumber": payload.invoice_number},
                headers={"X-Correlation-ID": correlation_id},
            )

        return build_download_response(
            artifact,
            extra_headers={"X-Correlation-ID": correlation_id},
        )

    except UnsupportedFormatError as exc:
        return _unsupported_response(exc, correlation_id)

    except Exception as exc:
        return _failure_response(
            "Failed to export invoice",
            exc,
            correlation_id,
            payload.invoice_number,
        )


# =============================================================================
# POST /invoice/send
# =============================================================================

@router.post(
    "/send",
    summary="Render an invoice and email it as a PDF attachment",
    responses={
        200: {"description": "Email handed off to the mail sender"},
        500: {"description": "Rendering or delivery failure"},
    },
)
async def send_pdf_to_email(
    send_request: SendEmailRequest,
    dispatcher: Dispatcher,
    delivery: Delivery,
    correlation_id: CorrelationId,
    host: RequestHost,
) -> JSONResponse:
    payload = send_request.data

    try:
        artifact = await dispatcher.render_pdf(payload, host)
        await delivery.deliver(payload, artifact, send_request.email)
    except Exception as exc:
        return _failure_response(
            "Failed to send invoice email",
            exc,
            correlation_id,
            payload.invoice_number,
        )

    return JSONResponse(
        content={"sent": True, "invoiceNumber": payload.invoice_number},
        headers={"X-Correlation-ID": correlation_id},
    )
