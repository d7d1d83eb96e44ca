"""
Email body rendering.

The body of the invoice email is an HTML Jinja2 template shipped with
the service. The renderer only ever receives the invoice number; the
invoice itself travels as the PDF attachment.
"""

from pathlib import Path
from typing import Optional, Protocol

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape


TEMPLATE_ROOT = Path(__file__).resolve().parent.parent / "templates"

SEND_PDF_TEMPLATE = "email/send_pdf.html.jinja"


class EmailBodyRenderer(Protocol):
    def render(self, *, invoice_number: str) -> str:
        ...


class JinjaEmailRenderer:
    """Renders the invoice email body from the packaged templates."""

    def __init__(
        self,
        template_root: Optional[Path] = None,
        template_name: str = SEND_PDF_TEMPLATE,
    ) -> None:
        root = (template_root or TEMPLATE_ROOT).resolve()
        if not root.is_dir():
            raise RuntimeError(f"Email template root does not exist: {root}")

        self._env = Environment(
            loader=FileSystemLoader(root),
            undefined=StrictUndefined,
            autoescape=select_autoescape(["html", "jinja"]),
        )
        self._template_name = template_name

    def render(self, *, invoice_number: str) -> str:
        template = self._env.get_template(self._template_name)
        return template.render(invoice_number=invoice_number)
