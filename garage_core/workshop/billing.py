"""Billing calculator for job cards and estimates.

``compute_totals`` is pure and works on plain numbers. ``recalculate`` and
``apply_estimate_totals`` are the only code paths that write a job card's
subtotal, tax amount and grand total.
"""
import logging
from decimal import Decimal

from django.db.models import Q

from .models import JobItem, ZERO, ensure_decimal, round2

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
ONE = Decimal('1')


def normalize_item(quantity, unit_price, discount_percent):
    """Clamp raw line values and return (quantity, unit_price, discount_percent, total)."""
    quantity = max(ONE, ensure_decimal(quantity, '1'))
    unit_price = max(ZERO, ensure_decimal(unit_price))
    discount_percent = min(max(ensure_decimal(discount_percent), ZERO), HUNDRED)
    line_total = quantity * unit_price
    line_discount = line_total * discount_percent / HUNDRED
    total = round2(max(ZERO, line_total - line_discount))
    return quantity, unit_price, discount_percent, total


def normalize_item_payload(item):
    """Normalize one line item dict coming from an API payload."""
    quantity, unit_price, discount_percent, total = normalize_item(
        item.get('quantity', 1),
        item.get('unit_price', item.get('unitPrice', 0)),
        item.get('discount_percent', item.get('discount', 0)),
    )
    item_type = item.get('item_type') or item.get('type') or JobItem.TYPE_SERVICE
    if item_type not in dict(JobItem.TYPE_CHOICES):
        item_type = JobItem.TYPE_SERVICE
    name = (item.get('name') or item.get('description') or 'Service').strip()
    return {
        'item_type': item_type,
        'name': name,
        'description': item.get('description') or '',
        'hsn_code': item.get('hsn_code') or item.get('hsnCode') or '',
        'quantity': quantity,
        'unit_price': unit_price,
        'discount_percent': discount_percent,
        'total': total,
    }


def compute_totals(line_totals, discount=0, tax_rate=0):
    """Return a dict with subtotal, discount, tax_amount and grand_total."""
    subtotal = round2(sum((ensure_decimal(t) for t in line_totals), ZERO))
    discount = max(ZERO, round2(discount))
    tax_rate = max(ZERO, ensure_decimal(tax_rate))
    after_discount = max(ZERO, subtotal - discount)
    tax_amount = round2(after_discount * tax_rate / HUNDRED)
    grand_total = round2(after_discount + tax_amount)
    return {
        'subtotal': subtotal,
        'discount': discount,
        'taxable_amount': round2(after_discount),
        'tax_rate': tax_rate,
        'tax_amount': tax_amount,
        'grand_total': grand_total,
    }


def recalculate(job_card, *, approved_only=False, save=True):
    """Re-price every job item and rewrite the job card's billing summary.

    Idempotent: running it twice in a row leaves the same values behind.
    """
    line_totals = []
    for item in job_card.items.all():
        quantity, unit_price, discount_percent, total = normalize_item(
            item.quantity, item.unit_price, item.discount_percent
        )
        if (item.quantity, item.unit_price, item.discount_percent, item.total) != (
            quantity, unit_price, discount_percent, total
        ):
            item.quantity = quantity
            item.unit_price = unit_price
            item.discount_percent = discount_percent
            item.total = total
            item.save(update_fields=['quantity', 'unit_price', 'discount_percent', 'total'])
        if approved_only and not item.is_approved:
            continue
        line_totals.append(total)

    totals = compute_totals(line_totals, job_card.discount_amount, job_card.tax_rate)
    job_card.subtotal = totals['subtotal']
    job_card.discount_amount = totals['discount']
    job_card.tax_amount = totals['tax_amount']
    job_card.grand_total = totals['grand_total']
    if save:
        job_card.save(update_fields=['subtotal', 'discount_amount', 'tax_amount', 'grand_total', 'updated_at'])
    logger.info(
        "Recalculated billing for %s: subtotal=%s tax=%s grand_total=%s%s",
        job_card.job_number,
        job_card.subtotal,
        job_card.tax_amount,
        job_card.grand_total,
        " (approved items only)" if approved_only else "",
    )
    return totals


def apply_estimate_totals(job_card, estimate, *, save=True):
    """Copy an approved estimate's totals verbatim into the job card billing."""
    job_card.subtotal = round2(estimate.subtotal)
    job_card.discount_amount = round2(estimate.discount_amount)
    job_card.discount_reason = estimate.discount_reason or ''
    job_card.tax_rate = ensure_decimal(estimate.tax_rate)
    job_card.tax_amount = round2(estimate.tax_amount)
    job_card.grand_total = round2(estimate.grand_total)
    if save:
        job_card.save(update_fields=[
            'subtotal', 'discount_amount', 'discount_reason', 'tax_rate',
            'tax_amount', 'grand_total', 'updated_at',
        ])
    logger.info(
        "Copied estimate v%s totals into %s billing: grand_total=%s",
        estimate.version,
        job_card.job_number,
        job_card.grand_total,
    )


def has_priced_items(job_card):
    return job_card.items.filter(Q(total__gt=0) | Q(unit_price__gt=0)).exists()


def ensure_fresh(job_card):
    """Recompute when priced items exist but the stored grand total is still zero."""
    if ensure_decimal(job_card.grand_total) <= ZERO and has_priced_items(job_card):
        logger.warning("Stale zero total on %s; recalculating billing", job_card.job_number)
        recalculate(job_card)
        return True
    return False


def update_billing(job_card, *, discount=None, discount_reason=None, tax_rate=None):
    """Admin edit of the billing inputs followed by a recalculation."""
    update_fields = []
    if discount is not None:
        job_card.discount_amount = max(ZERO, round2(discount))
        update_fields.append('discount_amount')
    if discount_reason:
        job_card.discount_reason = discount_reason
        update_fields.append('discount_reason')
    if tax_rate is not None:
        job_card.tax_rate = min(max(ensure_decimal(tax_rate), ZERO), HUNDRED)
        update_fields.append('tax_rate')
    if update_fields:
        job_card.save(update_fields=update_fields + ['updated_at'])
    return recalculate(job_card)
