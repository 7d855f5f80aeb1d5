"""Invoice generation from a job card's finalized billing."""
import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from . import billing
from .exceptions import BusinessRuleViolation, Conflict
from .models import (
    Estimate,
    Invoice,
    InvoiceItem,
    JobCard,
    JobItem,
    NumberSequence,
    Payment,
    ZERO,
    ensure_decimal,
    round2,
)

logger = logging.getLogger(__name__)

TWO = Decimal('2')


def open_invoice_for(job_card):
    return job_card.invoices.exclude(status=Invoice.STATUS_CANCELLED).first()


def _copy_approved_estimate(job_card):
    """Last resort when billing lags an approved estimate."""
    estimate = job_card.estimates.filter(status=Estimate.STATUS_APPROVED).order_by('-version').first()
    if estimate is None or ensure_decimal(estimate.grand_total) <= ZERO:
        return False
    if not job_card.items.exists():
        now = timezone.now()
        for line in estimate.items or []:
            JobItem.objects.create(
                job_card=job_card,
                item_type=line.get('type') or JobItem.TYPE_SERVICE,
                name=line.get('name') or line.get('description') or 'Service',
                description=line.get('description') or '',
                hsn_code=line.get('hsn_code') or '',
                quantity=ensure_decimal(line.get('quantity'), '1'),
                unit_price=ensure_decimal(line.get('unit_price')),
                discount_percent=ensure_decimal(line.get('discount')),
                total=round2(line.get('total')),
                is_approved=True,
                approved_at=now,
            )
    billing.apply_estimate_totals(job_card, estimate)
    return True


def prepare_billing(job_card):
    """Make sure the job card carries a usable grand total before invoicing.

    Recompute from items when priced items exist but the total is zero, then
    fall back to the approved estimate's totals.
    """
    billing.ensure_fresh(job_card)
    if ensure_decimal(job_card.grand_total) <= ZERO:
        _copy_approved_estimate(job_card)
    return ensure_decimal(job_card.grand_total)


def _split_tax(tax_amount, tax_rate):
    """Split the billed tax into CGST and SGST halves that add back up to it."""
    half_rate = round2(ensure_decimal(tax_rate) / TWO)
    cgst_amount = round2(tax_amount / TWO)
    return half_rate, cgst_amount, round2(tax_amount - cgst_amount)


def create_from_job_card(job_card, user=None, *, notes=''):
    """Issue the single open invoice for a job card."""
    with transaction.atomic():
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        if open_invoice_for(job_card) is not None:
            raise Conflict("Invoice already exists for this job card")
        if job_card.status == JobCard.STATUS_CANCELLED:
            raise BusinessRuleViolation("Job card is cancelled")
        if prepare_billing(job_card) <= ZERO:
            raise BusinessRuleViolation("Job card has no billing information")

        tax_rate = ensure_decimal(job_card.tax_rate)
        taxable_amount = max(ZERO, round2(job_card.subtotal - job_card.discount_amount))
        tax_amount = round2(job_card.tax_amount)
        half_rate, cgst_amount, sgst_amount = _split_tax(tax_amount, tax_rate)
        issued_at = timezone.now()
        due_days = getattr(settings, 'INVOICE_DUE_DAYS', 7)

        invoice = Invoice.objects.create(
            invoice_number=NumberSequence.next_monthly_number('INV', issued_at),
            job_card=job_card,
            customer=job_card.customer,
            customer_snapshot=job_card.customer.snapshot(),
            vehicle_snapshot=dict(job_card.vehicle_snapshot or {}),
            subtotal=round2(job_card.subtotal),
            discount_amount=round2(job_card.discount_amount),
            discount_reason=job_card.discount_reason,
            taxable_amount=taxable_amount,
            tax_rate=tax_rate,
            cgst_rate=half_rate,
            cgst_amount=cgst_amount,
            sgst_rate=half_rate,
            sgst_amount=sgst_amount,
            tax_amount=tax_amount,
            grand_total=round2(job_card.grand_total),
            paid_amount=ZERO,
            balance_amount=round2(job_card.grand_total),
            status=Invoice.STATUS_DRAFT,
            terms=getattr(settings, 'INVOICE_TERMS', ''),
            notes=notes or '',
            generated_by=user if getattr(user, 'is_authenticated', False) else None,
        )
        for item in job_card.items.all():
            InvoiceItem.objects.create(
                invoice=invoice,
                item_type=item.item_type,
                name=item.name,
                description=item.description,
                hsn_code=item.hsn_code,
                quantity=item.quantity,
                unit_price=item.unit_price,
                discount_percent=item.discount_percent,
                tax_rate=tax_rate,
                tax_amount=round2(item.total * tax_rate / billing.HUNDRED),
                total=item.total,
            )

        # Payments taken before the invoice existed count towards it
        prepaid = job_card.payments.filter(
            status__in=(Payment.STATUS_COMPLETED, Payment.STATUS_REFUNDED),
            invoice__isnull=True,
        )
        paid_amount = ZERO
        for payment in prepaid:
            paid_amount += payment.paid_amount
        prepaid.update(invoice=invoice, applied_at=issued_at)

        invoice.status = Invoice.STATUS_ISSUED
        invoice.issued_at = issued_at
        invoice.due_date = (issued_at + timedelta(days=due_days)).date()
        invoice.save()
        if paid_amount > ZERO:
            from .payments import recompute_invoice
            invoice.paid_amount = round2(paid_amount)
            recompute_invoice(invoice)
            invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'paid_at'])

    logger.info(
        "Issued invoice %s for %s: grand_total=%s",
        invoice.invoice_number,
        job_card.job_number,
        invoice.grand_total,
    )
    return invoice


def get_or_create_for_job_card(job_card, user=None):
    """Return the open invoice, generating it on first access when billing allows."""
    invoice = open_invoice_for(job_card)
    if invoice is not None:
        return invoice
    if job_card.status == JobCard.STATUS_CANCELLED:
        raise BusinessRuleViolation("Job card is cancelled")
    try:
        return create_from_job_card(job_card, user)
    except BusinessRuleViolation:
        raise BusinessRuleViolation("Invoice not available yet")
    except (Conflict, IntegrityError):
        # Lost a race with another request generating the same invoice
        invoice = open_invoice_for(job_card)
        if invoice is None:
            raise
        return invoice


def cancel_invoice(invoice, user=None, reason=''):
    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.status == Invoice.STATUS_CANCELLED:
            raise Conflict("Invoice is already cancelled")
        if ensure_decimal(invoice.paid_amount) > ZERO or invoice.payments.filter(
            status=Payment.STATUS_COMPLETED
        ).exists():
            raise BusinessRuleViolation("Cannot cancel invoice with payments")
        invoice.status = Invoice.STATUS_CANCELLED
        invoice.cancelled_at = timezone.now()
        invoice.save(update_fields=['status', 'cancelled_at'])
    logger.info(
        "Cancelled invoice %s by %s%s",
        invoice.invoice_number,
        getattr(user, 'username', 'system'),
        f": {reason}" if reason else "",
    )
    return invoice


def invoice_with_payments(invoice):
    payments = list(invoice.payments.filter(status=Payment.STATUS_COMPLETED).order_by('created_at'))
    total_paid = round2(sum((p.paid_amount for p in payments), ZERO))
    return {
        'invoice': invoice,
        'payments': payments,
        'total_paid': total_paid,
        'balance_amount': max(ZERO, round2(invoice.grand_total - total_paid)),
        'is_paid': total_paid >= round2(invoice.grand_total),
    }
