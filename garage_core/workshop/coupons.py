"""Coupon validation and application.

Usage counters are checked and incremented under a row lock on the coupon in
the same transaction that attaches the discount to the job card, so the
global and per-customer limits hold under concurrent applications.
"""
import logging
from datetime import datetime, time

from django.db import IntegrityError, transaction
from django.db.models import F, Q, Sum
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from . import billing
from .exceptions import BusinessRuleViolation, Conflict, NotFound
from .models import Coupon, CouponUsage, Invoice, JobCard, ZERO, ensure_decimal, round2

logger = logging.getLogger(__name__)

HUNDRED = billing.HUNDRED


def _parse_moment(value):
    if value in (None, ''):
        return None
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                raise BusinessRuleViolation(f"Invalid date '{value}'")
            parsed = datetime.combine(day, time.min)
        value = parsed
    if timezone.is_naive(value):
        value = timezone.make_aware(value, timezone.get_current_timezone())
    return value


def normalize_coupon_payload(payload, instance=None):
    """Map API payload names onto model fields.

    Accepts both ``discountType``/``type`` (FLAT, PERCENT, flat, percentage) and
    ``usageLimit`` as either a number or ``{"total": .., "perUser": ..}``.
    """
    data = {}
    code = payload.get('code')
    if code:
        data['code'] = str(code).strip().upper()
    if 'description' in payload:
        data['description'] = payload.get('description') or ''

    discount_type = payload.get('discount_type') or payload.get('discountType') or payload.get('type')
    if discount_type:
        discount_type = str(discount_type).lower()
        data['discount_type'] = {
            'percent': Coupon.TYPE_PERCENTAGE,
            'percentage': Coupon.TYPE_PERCENTAGE,
            'flat': Coupon.TYPE_FLAT,
        }.get(discount_type, discount_type)

    for field, aliases in (
        ('value', ('value', 'discountValue', 'discount_value')),
        ('max_discount_amount', ('max_discount_amount', 'maxDiscountAmount', 'maxDiscount')),
        ('min_invoice_amount', ('min_invoice_amount', 'minInvoiceAmount', 'minOrderAmount')),
        ('valid_from', ('valid_from', 'validFrom')),
        ('valid_till', ('valid_till', 'validTill', 'validUntil')),
    ):
        for alias in aliases:
            if alias in payload:
                data[field] = payload[alias]
                break

    usage_limit = payload.get('usageLimit', payload.get('usage_limit'))
    if isinstance(usage_limit, dict):
        if usage_limit.get('total') is not None:
            data['usage_limit_total'] = int(usage_limit['total'])
        if usage_limit.get('perUser') is not None:
            data['usage_limit_per_user'] = int(usage_limit['perUser'])
    elif usage_limit is not None:
        data['usage_limit_total'] = int(usage_limit)
    for alias in ('usage_limit_total', 'usage_limit_per_user'):
        if alias in payload:
            data[alias] = int(payload[alias])
    per_customer = payload.get('perCustomerLimit')
    if per_customer is not None:
        data['usage_limit_per_user'] = int(per_customer)

    for flag, alias in (('is_active', 'isActive'), ('is_public', 'isPublic')):
        value = payload.get(flag, payload.get(alias))
        if isinstance(value, bool):
            data[flag] = value

    for field in ('value', 'max_discount_amount', 'min_invoice_amount'):
        if field in data and data[field] not in (None, ''):
            data[field] = ensure_decimal(data[field])
        elif field in data:
            data[field] = None if field == 'max_discount_amount' else ZERO
    for field in ('valid_from', 'valid_till'):
        if field in data:
            data[field] = _parse_moment(data[field])

    if instance is None:
        data.setdefault('usage_limit_total', Coupon.UNLIMITED)
        data.setdefault('usage_limit_per_user', 1)
        data.setdefault('min_invoice_amount', ZERO)
    return data


def create_coupon(payload, user=None):
    data = normalize_coupon_payload(payload)
    if not data.get('code') or not data.get('discount_type') or data.get('value') in (None, ''):
        raise BusinessRuleViolation("Missing required coupon fields")
    if data['discount_type'] not in dict(Coupon.TYPE_CHOICES):
        raise BusinessRuleViolation("Coupon type must be flat or percentage")
    if Coupon.objects.filter(code=data['code']).exists():
        raise Conflict("Coupon code already exists")
    try:
        coupon = Coupon.objects.create(
            created_by=user if getattr(user, 'is_authenticated', False) else None,
            **data,
        )
    except IntegrityError:
        raise Conflict("Coupon code already exists")
    logger.info("Created coupon %s", coupon.code)
    return coupon


def update_coupon(coupon, payload):
    data = normalize_coupon_payload(payload, instance=coupon)
    data.pop('code', None)
    for field, value in data.items():
        setattr(coupon, field, value)
    coupon.save()
    return coupon


def toggle_coupon(coupon):
    coupon.is_active = not coupon.is_active
    coupon.save(update_fields=['is_active'])
    return coupon


def coupon_analytics():
    return {
        'total_coupons': Coupon.objects.count(),
        'active_coupons': Coupon.objects.filter(is_active=True).count(),
        'total_redemptions': Coupon.objects.aggregate(used=Sum('used_count'))['used'] or 0,
    }


def public_coupons():
    now = timezone.now()
    return Coupon.objects.filter(
        Q(valid_from__isnull=True) | Q(valid_from__lte=now),
        Q(valid_till__isnull=True) | Q(valid_till__gte=now),
        is_public=True,
        is_active=True,
    )


def get_coupon(code):
    coupon = Coupon.objects.filter(code=(code or '').strip().upper()).first()
    if coupon is None:
        raise NotFound("Coupon not found")
    return coupon


def can_be_used_by(coupon, customer, order_amount):
    """Return (ok, reason). Checks run in a fixed order and stop at the first failure."""
    now = timezone.now()
    order_amount = ensure_decimal(order_amount)
    if not coupon.is_active:
        return False, "Coupon is not active"
    if coupon.valid_from and now < coupon.valid_from:
        return False, "Coupon is not valid yet"
    if coupon.valid_till and now > coupon.valid_till:
        return False, "Coupon has expired"
    if order_amount < ensure_decimal(coupon.min_invoice_amount):
        return False, f"Minimum order amount of ₹{round2(coupon.min_invoice_amount):.2f} required"
    if coupon.usage_limit_total != Coupon.UNLIMITED and coupon.used_count >= coupon.usage_limit_total:
        return False, "Coupon usage limit reached"
    used_by_customer = CouponUsage.objects.filter(coupon=coupon, customer=customer).count()
    if used_by_customer >= coupon.usage_limit_per_user:
        return False, "You have already used this coupon the maximum number of times"
    return True, ''


def calculate_discount(coupon, order_amount):
    order_amount = max(ZERO, ensure_decimal(order_amount))
    if coupon.discount_type == Coupon.TYPE_FLAT:
        return round2(min(ensure_decimal(coupon.value), order_amount))
    discount = order_amount * ensure_decimal(coupon.value) / HUNDRED
    if coupon.max_discount_amount:
        discount = min(discount, ensure_decimal(coupon.max_discount_amount))
    return round2(discount)


def validate(code, job_card):
    """Dry run used by the checkout screen; the job card billing is left untouched."""
    coupon = get_coupon(code)
    billing.recalculate(job_card, save=False)
    order_amount = job_card.subtotal
    ok, reason = can_be_used_by(coupon, job_card.customer, order_amount)
    if not ok:
        return {'valid': False, 'reason': reason}
    return {
        'valid': True,
        'discount_amount': calculate_discount(coupon, order_amount),
        'discount_type': coupon.discount_type,
    }


def _record_usage(coupon, customer, job_card, discount_amount):
    """Atomic check-and-increment of the usage counters."""
    updated = Coupon.objects.filter(pk=coupon.pk).filter(
        Q(usage_limit_total=Coupon.UNLIMITED) | Q(used_count__lt=F('usage_limit_total'))
    ).update(used_count=F('used_count') + 1)
    if not updated:
        raise BusinessRuleViolation("Coupon usage limit reached")
    CouponUsage.objects.create(
        coupon=coupon,
        customer=customer,
        job_card=job_card,
        discount_amount=discount_amount,
    )


def apply(code, job_card, user=None):
    """Attach a coupon discount to the job card and record its usage exactly once."""
    with transaction.atomic():
        coupon = Coupon.objects.select_for_update().filter(code=(code or '').strip().upper()).first()
        if coupon is None:
            raise NotFound("Coupon not found")
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        if job_card.is_terminal:
            raise BusinessRuleViolation(f"Cannot apply a coupon to a {job_card.status} job card")
        if job_card.coupon_code and job_card.coupon_code != coupon.code:
            raise BusinessRuleViolation("A coupon is already applied to this invoice")
        if job_card.invoices.exclude(status=Invoice.STATUS_CANCELLED).exists():
            raise BusinessRuleViolation("Cannot apply a coupon after the invoice has been generated")

        billing.recalculate(job_card)
        order_amount = job_card.subtotal
        already_applied = CouponUsage.objects.filter(coupon=coupon, job_card=job_card).exists()
        if not already_applied:
            ok, reason = can_be_used_by(coupon, job_card.customer, order_amount)
            if not ok:
                raise BusinessRuleViolation(reason or "Coupon cannot be used")

        discount_amount = calculate_discount(coupon, order_amount)
        job_card.discount_amount = discount_amount
        job_card.discount_reason = f"COUPON:{coupon.code}"
        job_card.coupon = coupon
        job_card.coupon_code = coupon.code
        job_card.save(update_fields=['discount_amount', 'discount_reason', 'coupon', 'coupon_code', 'updated_at'])
        billing.recalculate(job_card)

        if not already_applied:
            _record_usage(coupon, job_card.customer, job_card, discount_amount)
        else:
            CouponUsage.objects.filter(coupon=coupon, job_card=job_card).update(discount_amount=discount_amount)

    logger.info(
        "Applied coupon %s to %s: discount=%s grand_total=%s",
        coupon.code,
        job_card.job_number,
        discount_amount,
        job_card.grand_total,
    )
    return {
        'job_card': job_card,
        'discount_amount': discount_amount,
        'grand_total': job_card.grand_total,
    }
