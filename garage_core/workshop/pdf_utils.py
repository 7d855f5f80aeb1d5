"""Invoice PDF rendering and caching."""
from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Iterable

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.template.loader import render_to_string
from django.utils import timezone
try:
    from weasyprint import HTML
    WEASYPRINT_AVAILABLE = True
except (ImportError, OSError):
    WEASYPRINT_AVAILABLE = False
    HTML = None

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SUBDIR = "invoices/generated"
INVOICE_TEMPLATE = "workshop/invoice_pdf.html"


def branding_context() -> dict:
    return {
        "business_name": getattr(settings, "GARAGE_NAME", "") or "Garage",
        "business_gstin": getattr(settings, "GARAGE_GSTIN", ""),
        "business_address": getattr(settings, "GARAGE_ADDRESS", ""),
        "business_phone": getattr(settings, "GARAGE_PHONE", ""),
        "currency": getattr(settings, "CURRENCY", "INR"),
    }


def _pdf_cache_enabled() -> bool:
    return bool(getattr(settings, "INVOICE_PDF_CACHE_ENABLED", True))


def _cache_directory() -> str:
    configured = getattr(settings, "INVOICE_PDF_CACHE_SUBDIR", DEFAULT_CACHE_SUBDIR)
    return str(Path(configured).as_posix())


def _purge_old_cached_files(directory: str, prefix: str) -> None:
    try:
        _, files = default_storage.listdir(directory)
    except (FileNotFoundError, NotADirectoryError):
        return

    for name in files:
        if name.startswith(prefix):
            default_storage.delete(f"{directory}/{name}")


def render_html_to_pdf(html: str, *, stylesheets: Iterable = (), base_url: str | None = None) -> bytes:
    """Render an HTML string to PDF bytes."""
    if not WEASYPRINT_AVAILABLE:
        raise ImportError("WeasyPrint is not available. PDF generation is disabled.")
    buffer = BytesIO()
    HTML(string=html, base_url=base_url).write_pdf(target=buffer, stylesheets=list(stylesheets))
    return buffer.getvalue()


def render_template_to_pdf(template: str, context: dict, *, base_url: str | None = None) -> bytes:
    context = {**branding_context(), **(context or {})}
    html = render_to_string(template, context)
    return render_html_to_pdf(html, base_url=base_url)


def invoice_context(invoice, payments=None) -> dict:
    if payments is None:
        from .invoice_utils import invoice_with_payments
        payments = invoice_with_payments(invoice)['payments']
    return {
        "invoice": invoice,
        "items": list(invoice.items.all()),
        "payments": payments,
        "customer": invoice.customer_snapshot or {},
        "vehicle": invoice.vehicle_snapshot or {},
        "generated_at": timezone.now(),
    }


def render_invoice_pdf(invoice, payments=None) -> bytes:
    """PDF bytes for an invoice, cached per ``updated_at`` so ledger changes re-render."""
    context = invoice_context(invoice, payments)
    if not _pdf_cache_enabled() or invoice.pk is None:
        return render_template_to_pdf(INVOICE_TEMPLATE, context)

    directory = _cache_directory()
    stamp = (invoice.updated_at or timezone.now()).strftime('%Y%m%d%H%M%S')
    cache_path = f"{directory}/invoice_{invoice.pk}_{stamp}.pdf"

    if default_storage.exists(cache_path):
        with default_storage.open(cache_path, "rb") as cached_file:
            return cached_file.read()

    # Remove older cached variants for the same invoice
    _purge_old_cached_files(directory, f"invoice_{invoice.pk}_")

    pdf_bytes = render_template_to_pdf(INVOICE_TEMPLATE, context)
    default_storage.save(cache_path, ContentFile(pdf_bytes))
    logger.info("Rendered invoice PDF %s", invoice.invoice_number)
    return pdf_bytes
