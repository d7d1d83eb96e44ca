import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoice_export.app.api.routes import router as invoice_router
from invoice_export.app.core.config import Settings, get_settings
from invoice_export.app.services.browser import build_session_provider
from invoice_export.app.services.delivery import EmailDelivery
from invoice_export.app.services.dispatcher import ExportDispatcher
from invoice_export.app.services.email_template import (
    EmailBodyRenderer,
    JinjaEmailRenderer,
)
from invoice_export.app.services.engine import BrowserEngine, PlaywrightEngine
from invoice_export.app.services.hydration import READY_MESSAGE_TYPE
from invoice_export.app.services.locator import TemplateLocator
from invoice_export.app.services.mail import MailSender, build_mail_sender

logger = logging.getLogger("invoice_export.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("invoice-export")
    except PackageNotFoundError:
        return "0.1.0"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(
    *,
    settings: Optional[Settings] = None,
    engine: Optional[BrowserEngine] = None,
    mail_sender: Optional[MailSender] = None,
    body_renderer: Optional[EmailBodyRenderer] = None,
) -> FastAPI:
    """
    Application factory for the invoice export service.

    Every collaborator can be injected; anything left out is built from
    configuration at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Guarantees:
        - Fail-fast startup if configuration is invalid
        - One session provider for the lifetime of the process
        - Pooled browsers and HTTP transports are closed on shutdown
        """
        try:
            resolved = settings or get_settings()
        except Exception:
            logger.exception("invalid_invoice_export_configuration")
            raise

        configure_logging(resolved.log_level)

        logger.info(
            "invoice_export_startup_begin",
            extra={
                "version": get_app_version(),
                "session_pool_size": resolved.session_pool_size,
                "hydration_strategy": resolved.hydration_strategy,
                "mail_backend": resolved.mail_backend,
            },
        )

        if resolved.hydration_strategy == "acknowledge":
            logger.info(
                "hydration_requires_template_ack",
                extra={
                    "ready_message_type": READY_MESSAGE_TYPE,
                    "ack_timeout_ms": resolved.hydration_ack_timeout_ms,
                    "alternative": "INVOICE_EXPORT_HYDRATION_STRATEGY=settle",
                },
            )

        http_client: Optional[httpx.AsyncClient] = None
        sender = mail_sender
        if sender is None:
            if resolved.mail_backend == "http":
                http_client = httpx.AsyncClient(
                    timeout=httpx.Timeout(
                        timeout=resolved.mail_timeout_s,
                        connect=5.0,
                    ),
                    headers={"User-Agent": f"invoice-export/{get_app_version()}"},
                )
            sender = build_mail_sender(resolved, http_client)

        sessions = build_session_provider(engine or PlaywrightEngine(), resolved)

        app.state.settings = resolved
        app.state.sessions = sessions
        app.state.dispatcher = ExportDispatcher(
            sessions=sessions,
            locator=TemplateLocator(resolved),
        )
        app.state.email_delivery = EmailDelivery(
            sender=sender,
            body_renderer=body_renderer or JinjaEmailRenderer(),
            sender_address=resolved.mail_from,
        )

        try:
            yield
        finally:
            logger.info("invoice_export_shutdown_begin")

            # Idempotent shutdown
            try:
                await sessions.aclose()
            except Exception:
                logger.warning("session_provider_shutdown_failed", exc_info=True)

            if http_client is not None:
                try:
                    await http_client.aclose()
                except Exception:
                    logger.warning("http_client_shutdown_failed", exc_info=True)

    app = FastAPI(
        title="Invoice Export",
        description=(
            "Renders invoice templates in headless Chromium and delivers "
            "the result as a download or an email attachment."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "GET"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Correlation-ID"],
    )

    app.include_router(invoice_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness probe",
    )
    async def health_check() -> JSONResponse:
        """Reports that the process is up. Does not launch a browser."""
        return JSONResponse(
            content={
                "status": "ok",
                "service": "invoice-export",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            }
        )

    return app


app = create_app()
