# civic_core/documents/pdf.py
"""
PDF rendering for commercial documents.

The renderer is a collaborator: services only call `render_*` and get bytes back.
The default implementation renders Django templates and converts them with WeasyPrint.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict

from django.template.loader import render_to_string
from django.utils.module_loading import import_string

from civic_core.common.api.exceptions import DeliveryFailure
from civic_core.common.conf import BillingSettings, load_billing_settings

if TYPE_CHECKING:
    from civic_core.invoices.models import Invoice
    from civic_core.mandates.models import MandateInvoice, MandateOrder
    from civic_core.quotes.models import Quote

logger = logging.getLogger(__name__)


class PdfRenderer:
    """Interface. Subclasses implement `_render(template_name, context)`."""

    def __init__(self, conf: BillingSettings | None = None):
        self.conf = conf or load_billing_settings()

    def _base_context(self) -> Dict[str, Any]:
        return {"emitter": self.conf.emitter, "payment_terms": self.conf.payment_terms_label}

    def render_html(self, template_name: str, context: Dict[str, Any]) -> str:
        return render_to_string(template_name, {**self._base_context(), **context})

    def _render(self, template_name: str, context: Dict[str, Any]) -> bytes:
        raise NotImplementedError

    def render_quote(self, quote: "Quote") -> bytes:
        return self._render("documents/quote.html", {"quote": quote, "lines": list(quote.lines.all())})

    def render_invoice(self, invoice: "Invoice") -> bytes:
        return self._render(
            "documents/invoice.html",
            {"invoice": invoice, "lines": list(invoice.lines.all()), "mandate": False},
        )

    def render_mandate_invoice(self, invoice: "MandateInvoice") -> bytes:
        return self._render(
            "documents/invoice.html",
            {"invoice": invoice, "order": invoice.order, "mandate": True},
        )

    def render_mandate_order(self, order: "MandateOrder") -> bytes:
        return self._render("documents/mandate_order.html", {"order": order})


class WeasyPrintRenderer(PdfRenderer):
    def _render(self, template_name: str, context: Dict[str, Any]) -> bytes:
        try:
            from weasyprint import HTML
        except (ImportError, OSError) as exc:
            logger.error("WeasyPrint unavailable: %s", exc)
            raise DeliveryFailure("PDF generation is currently unavailable.")

        html = self.render_html(template_name, context)
        try:
            return HTML(string=html).write_pdf()
        except Exception as exc:
            logger.error("PDF generation failed for %s: %s", template_name, exc)
            raise DeliveryFailure("PDF generation failed.")


def get_pdf_renderer(conf: BillingSettings | None = None) -> PdfRenderer:
    conf = conf or load_billing_settings()
    return import_string(conf.pdf_renderer)(conf)


def pdf_filename(number: str) -> str:
    return f"{number}.pdf"
