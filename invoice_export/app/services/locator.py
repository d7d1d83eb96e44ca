"""
Template endpoint addressing.

Template pages live at ``<scheme>://<host>/<locale>/template/<templateId>``.
Plain HTTP is used only for local development hosts; every other host is
addressed over HTTPS unless a scheme is forced in configuration.
"""

from typing import Iterable, Optional
from urllib.parse import quote, urlsplit

from invoice_export.app.core.config import Settings
from invoice_export.app.schemas.invoice import DocumentPayload

DEFAULT_TEMPLATE_HOST = "localhost:3000"
DEFAULT_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1", "0.0.0.0")


def is_local_host(host: str, local_hosts: Iterable[str] = DEFAULT_LOCAL_HOSTS) -> bool:
    hostname = urlsplit(f"//{host.strip()}").hostname or ""
    return hostname in set(local_hosts) or hostname.endswith(".localhost")


def select_scheme(
    host: str,
    *,
    local_hosts: Iterable[str] = DEFAULT_LOCAL_HOSTS,
    override: Optional[str] = None,
) -> str:
    if override:
        return override
    return "http" if is_local_host(host, local_hosts) else "https"


def locate_template(
    host: str,
    locale: str,
    template_id: str,
    *,
    scheme: Optional[str] = None,
    local_hosts: Iterable[str] = DEFAULT_LOCAL_HOSTS,
) -> str:
    """Build the fully qualified URL of a template page."""
    host = host.strip().rstrip("/")
    if not host or "/" in host:
        raise ValueError(f"Invalid template host: {host!r}")

    scheme = select_scheme(host, local_hosts=local_hosts, override=scheme)

    return (
        f"{scheme}://{host}/"
        f"{quote(locale, safe='')}/template/{quote(str(template_id), safe='')}"
    )


class TemplateLocator:
    """Resolves template URLs for payloads using configured defaults."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def locate(self, payload: DocumentPayload, request_host: Optional[str] = None) -> str:
        host = self._settings.template_host or request_host or DEFAULT_TEMPLATE_HOST
        locale = payload.locale or self._settings.default_locale

        return locate_template(
            host,
            locale,
            payload.template_id,
            scheme=self._settings.template_scheme,
            local_hosts=self._settings.local_hosts,
        )
