"""
Centralized configuration management for the invoice export service.

Pydantic v2 settings management to enforce strict validation and
fast-failure on invalid configuration. Settings are created once at
startup and injected into the application factory; no pipeline
component reads the environment on its own.
"""

from functools import lru_cache
from typing import Annotated, Literal, Optional, Tuple

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

Milliseconds = Annotated[
    int,
    Field(ge=0, le=300_000),
]

BoundedMilliseconds = Annotated[
    int,
    Field(ge=1, le=300_000),
]

# Chromium flags for constrained / containerized hosts. The sandbox is
# disabled here; run the service inside an isolated container.
DEFAULT_BROWSER_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--single-process",
    "--disable-gpu",
    "--disable-features=site-per-process",
)


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Every browser interaction is bounded by one of the timeouts below.
    """

    # ---------------------------------------------------------------------
    # Rendering engine
    # ---------------------------------------------------------------------

    browser_executable_path: Annotated[
        str,
        Field(
            default="/usr/bin/chromium-browser",
            min_length=1,
            validation_alias=AliasChoices(
                "INVOICE_EXPORT_BROWSER_EXECUTABLE_PATH",
                "PUPPETEER_EXECUTABLE_PATH",
                "BROWSER_EXECUTABLE_PATH",
            ),
            description="Path to the Chromium executable",
        ),
    ]

    browser_args: Annotated[
        Tuple[str, ...],
        Field(
            default=DEFAULT_BROWSER_ARGS,
            description="Command-line flags passed to Chromium",
        ),
    ]

    browser_headless: bool = True

    ignore_https_errors: Annotated[
        bool,
        Field(
            default=True,
            description="Accept self-signed certificates on template hosts",
        ),
    ]

    # ---------------------------------------------------------------------
    # Timeouts
    # ---------------------------------------------------------------------

    launch_timeout_ms: BoundedMilliseconds = 30_000
    navigation_timeout_ms: BoundedMilliseconds = 30_000
    capture_timeout_ms: BoundedMilliseconds = 30_000

    # ---------------------------------------------------------------------
    # Hydration
    # ---------------------------------------------------------------------

    hydration_strategy: Annotated[
        Literal["acknowledge", "settle"],
        Field(
            default="acknowledge",
            description=(
                "'acknowledge' waits for the template to post "
                "INVOICE_DATA_READY back. 'settle' sleeps for "
                "hydration_settle_ms after posting the data. Templates "
                "that never post the ready message must use 'settle'."
            ),
        ),
    ]

    hydration_ack_timeout_ms: BoundedMilliseconds = 10_000
    hydration_settle_ms: Milliseconds = 1_000

    # ---------------------------------------------------------------------
    # Template addressing
    # ---------------------------------------------------------------------

    template_host: Annotated[
        Optional[str],
        Field(
            default=None,
            description=(
                "Host serving the template pages. Falls back to the "
                "inbound request Host header."
            ),
        ),
    ]

    template_scheme: Annotated[
        Optional[Literal["http", "https"]],
        Field(
            default=None,
            description="Force a scheme instead of the local/remote rule",
        ),
    ]

    local_hosts: Tuple[str, ...] = ("localhost", "127.0.0.1", "::1", "0.0.0.0")

    default_locale: Annotated[
        str,
        Field(default="en", min_length=2, max_length=16),
    ]

    # ---------------------------------------------------------------------
    # Session pooling
    # ---------------------------------------------------------------------

    session_pool_size: Annotated[
        int,
        Field(
            default=0,
            ge=0,
            le=32,
            description=(
                "0 launches one browser per request. N > 0 keeps up to "
                "N browsers alive and leases one page per request."
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Mail delivery
    # ---------------------------------------------------------------------

    mail_backend: Literal["log", "http"] = "log"

    mail_http_url: Annotated[
        Optional[AnyHttpUrl],
        Field(
            default=None,
            description="Provider endpoint accepting send instructions",
        ),
    ]

    mail_api_key: Annotated[
        Optional[SecretStr],
        Field(
            default=None,
            description="Sensitive credential, redacted from logs",
        ),
    ]

    mail_from: Optional[str] = None

    mail_timeout_s: Annotated[
        float,
        Field(default=15.0, gt=0, le=120),
    ]

    # ---------------------------------------------------------------------
    # Operational
    # ---------------------------------------------------------------------

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="INVOICE_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )


# -------------------------------------------------------------------------
# Settings Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the process-wide settings instance.

    Used only by the default application factory; tests build their own
    Settings and pass them in.
    """
    return Settings()
