"""Job card lifecycle: creation, line items, mechanics and status transitions."""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Sum, F
from django.utils import timezone

from . import billing, notifications
from .exceptions import BusinessRuleViolation, Forbidden, NotFound
from .models import (
    Invoice,
    JobCard,
    JobCardStatusHistory,
    JobItem,
    Mechanic,
    Payment,
    ZERO,
    ensure_decimal,
    round2,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    JobCard.STATUS_CREATED: {
        JobCard.STATUS_INSPECTION,
        JobCard.STATUS_AWAITING_APPROVAL,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_INSPECTION: {
        JobCard.STATUS_AWAITING_APPROVAL,
        JobCard.STATUS_APPROVED,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_AWAITING_APPROVAL: {
        JobCard.STATUS_APPROVED,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_APPROVED: {
        JobCard.STATUS_IN_PROGRESS,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_IN_PROGRESS: {
        JobCard.STATUS_AWAITING_APPROVAL,
        JobCard.STATUS_QUALITY_CHECK,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_QUALITY_CHECK: {
        JobCard.STATUS_READY,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_READY: {
        JobCard.STATUS_DELIVERED,
        JobCard.STATUS_CANCELLED,
    },
    JobCard.STATUS_DELIVERED: set(),
    JobCard.STATUS_CANCELLED: set(),
}

# Extra exits an admin may force while a job is waiting on the customer
OVERRIDE_TRANSITIONS = {
    JobCard.STATUS_AWAITING_APPROVAL: {
        JobCard.STATUS_INSPECTION,
        JobCard.STATUS_IN_PROGRESS,
    },
}

PAYMENT_STATUSES_WITH_MONEY = (Payment.STATUS_COMPLETED, Payment.STATUS_REFUNDED)


def _tolerance():
    return ensure_decimal(getattr(settings, 'PAYMENT_BALANCE_TOLERANCE', '0.01'), '0.01')


def allowed_transitions(status, *, override=False):
    allowed = set(TRANSITIONS.get(status, set()))
    if override:
        allowed |= OVERRIDE_TRANSITIONS.get(status, set())
    return allowed


def payment_summary(job_card):
    """Derive the paid/balance figures from the payment rows every time."""
    payments = job_card.payments.filter(status__in=PAYMENT_STATUSES_WITH_MONEY)
    aggregates = payments.aggregate(
        paid=Sum('amount'),
        refunded=Sum('refunded_amount'),
    )
    total_paid = round2(ensure_decimal(aggregates['paid']) - ensure_decimal(aggregates['refunded']))
    grand_total = round2(job_card.grand_total)
    return {
        'grand_total': grand_total,
        'total_paid': total_paid,
        'balance_due': max(ZERO, round2(grand_total - total_paid)),
        'completed_payments_count': job_card.payments.filter(status=Payment.STATUS_COMPLETED).count(),
    }


def _check_delivery(job_card):
    if job_card.status != JobCard.STATUS_READY:
        raise BusinessRuleViolation("Job card must be marked ready before it can be delivered")
    billing.ensure_fresh(job_card)
    summary = payment_summary(job_card)
    balance_due = round2(summary['grand_total'] - summary['total_paid'])
    if balance_due > _tolerance():
        raise BusinessRuleViolation(
            f"Cannot mark delivered until payment is completed. Balance due: ₹{balance_due:.2f}"
        )


def _record_history(job_card, status, user=None, note=''):
    return JobCardStatusHistory.objects.create(
        job_card=job_card,
        status=status,
        changed_by=user if getattr(user, 'is_authenticated', False) else None,
        note=note or '',
    )


def transition(job_card, new_status, user=None, note='', *, override=False, approval=False):
    """Move a job card to ``new_status`` and append the history entry in the same transaction.

    ``approval`` marks a move made by estimate or item approval, the normal way
    out of awaiting-approval. ``override`` lets an admin force the extra exits in
    OVERRIDE_TRANSITIONS.
    """
    if new_status not in dict(JobCard.STATUS_CHOICES):
        raise BusinessRuleViolation(f"Unknown job card status '{new_status}'")

    with transaction.atomic():
        locked = JobCard.objects.select_for_update().get(pk=job_card.pk)
        current = locked.status
        if new_status == current:
            return job_card
        if locked.is_terminal:
            raise BusinessRuleViolation(f"Job card is already {current}")
        if new_status == JobCard.STATUS_DELIVERED:
            _check_delivery(locked)
        if new_status not in allowed_transitions(current, override=override):
            raise BusinessRuleViolation(f"Cannot change status from {current} to {new_status}")
        if (
            current == JobCard.STATUS_AWAITING_APPROVAL
            and new_status != JobCard.STATUS_CANCELLED
            and not (approval or override)
        ):
            raise BusinessRuleViolation("Job card is awaiting customer approval")

        locked.status = new_status
        locked.save(update_fields=['status', 'updated_at'])
        _record_history(locked, new_status, user, note or f"Status changed to {new_status}")

        job_card.status = new_status
        job_card.updated_at = locked.updated_at
        logger.info("Job card %s moved %s -> %s", locked.job_number, current, new_status)

        notifications.after_commit(notifications.send_status_update, locked.customer, locked, new_status)
        if new_status == JobCard.STATUS_READY:
            notifications.after_commit(notifications.send_vehicle_ready, locked.customer, locked)
    return job_card


def mechanic_transition(mechanic, job_card, new_status, note=''):
    ensure_mechanic_assigned(job_card, mechanic)
    return transition(job_card, new_status, mechanic.portal_user, note)


def ensure_mechanic_assigned(job_card, mechanic):
    if not job_card.is_assigned_to(mechanic):
        raise Forbidden("You are not assigned to this job card")


def _create_items(job_card, items, user=None, *, approved=False):
    created = []
    for raw in items or []:
        data = billing.normalize_item_payload(raw)
        created.append(JobItem.objects.create(
            job_card=job_card,
            added_by=user if getattr(user, 'is_authenticated', False) else None,
            is_approved=approved,
            approved_at=timezone.now() if approved else None,
            **data,
        ))
    return created


def create_job_card(customer, vehicle=None, *, items=None, user=None, mechanic_ids=None,
                    odometer_reading=None, fuel_level='', customer_complaints=None,
                    appointment_reference='', internal_notes='', tax_rate=None,
                    history_note="Job card created"):
    if vehicle is not None and (vehicle.customer_id != customer.pk or not vehicle.is_active):
        raise NotFound("Vehicle not found")

    with transaction.atomic():
        job_card = JobCard.objects.create(
            customer=customer,
            vehicle=vehicle,
            vehicle_snapshot=vehicle.snapshot() if vehicle is not None else {},
            appointment_reference=appointment_reference or '',
            odometer_reading=odometer_reading,
            fuel_level=fuel_level or '',
            customer_complaints=list(customer_complaints or []),
            internal_notes=internal_notes or '',
            tax_rate=ensure_decimal(tax_rate if tax_rate is not None else settings.DEFAULT_TAX_RATE),
            created_by=user if getattr(user, 'is_authenticated', False) else None,
        )
        _record_history(job_card, JobCard.STATUS_CREATED, user, history_note)
        _create_items(job_card, items, user)
        billing.recalculate(job_card)
        if mechanic_ids:
            assign_mechanics(job_card, mechanic_ids)
    logger.info("Created job card %s for customer %s", job_card.job_number, customer.pk)
    return job_card


def create_from_appointment(appointment, user=None):
    """Build a job card from a confirmed appointment payload.

    ``appointment`` carries ``appointment_number``, ``customer``, ``vehicle``,
    ``services`` (each with ``name`` and ``price``) and optional ``customer_notes``.
    """
    number = appointment.get('appointment_number') or ''
    items = [
        {
            'item_type': JobItem.TYPE_LABOUR,
            'name': service.get('name') or 'Service',
            'quantity': 1,
            'unit_price': service.get('price') or 0,
            'discount_percent': 0,
        }
        for service in appointment.get('services') or []
    ]
    notes = appointment.get('customer_notes')
    return create_job_card(
        appointment['customer'],
        appointment.get('vehicle'),
        items=items,
        user=user,
        customer_complaints=[notes] if notes else [],
        appointment_reference=number,
        internal_notes=f"Auto-created from appointment {number}",
        history_note=f"Auto-created from appointment {number}",
    )


def _ensure_editable(job_card):
    if job_card.is_terminal:
        raise BusinessRuleViolation(f"Cannot modify a {job_card.status} job card")


def add_item(job_card, data, user=None):
    _ensure_editable(job_card)
    with transaction.atomic():
        item = _create_items(job_card, [data], user)[0]
        billing.recalculate(job_card)
        if job_card.status in (JobCard.STATUS_INSPECTION, JobCard.STATUS_IN_PROGRESS):
            transition(job_card, JobCard.STATUS_AWAITING_APPROVAL, user, "New items added for approval")
    return item


def remove_item(job_card, item_id):
    _ensure_editable(job_card)
    with transaction.atomic():
        item = job_card.items.filter(pk=item_id).first()
        if item is None:
            raise NotFound("Job item not found")
        item.delete()
        billing.recalculate(job_card)
    return job_card


def approve_items(job_card, item_ids, user=None):
    """Customer approval of a subset of job items."""
    if job_card.status != JobCard.STATUS_AWAITING_APPROVAL:
        raise BusinessRuleViolation("Job card is not awaiting approval")
    wanted = {str(pk) for pk in item_ids or []}
    with transaction.atomic():
        now = timezone.now()
        for item in job_card.items.filter(is_approved=False):
            if str(item.pk) in wanted:
                item.is_approved = True
                item.approved_at = now
                item.save(update_fields=['is_approved', 'approved_at'])
        billing.recalculate(job_card, approved_only=True)
        if not job_card.items.filter(is_approved=False).exists():
            transition(job_card, JobCard.STATUS_APPROVED, user, "All items approved by customer", approval=True)
    return job_card


def assign_mechanics(job_card, mechanic_ids):
    unique_ids = []
    for raw in mechanic_ids or []:
        try:
            pk = int(raw)
        except (TypeError, ValueError):
            raise BusinessRuleViolation("One or more mechanic ids are invalid or inactive")
        if pk not in unique_ids:
            unique_ids.append(pk)
    mechanics = list(Mechanic.objects.filter(pk__in=unique_ids, is_active=True))
    if len(mechanics) != len(unique_ids):
        raise BusinessRuleViolation("One or more mechanic ids are invalid or inactive")

    previous = set(job_card.mechanics.values_list('pk', flat=True))
    job_card.mechanics.set(mechanics)
    for mechanic in mechanics:
        if mechanic.pk not in previous:
            notifications.after_commit(notifications.notify_mechanic_assignment, mechanic, job_card)
    logger.info("Assigned mechanics %s to %s", unique_ids, job_card.job_number)
    return mechanics


DETAIL_FIELDS = (
    'odometer_reading',
    'fuel_level',
    'diagnostics',
    'internal_notes',
    'estimated_completion',
    'customer_complaints',
)

MEDIA_FIELDS = {
    'before': 'before_service_images',
    'after': 'after_service_images',
    'videos': 'videos',
}


def update_details(job_card, **changes):
    update_fields = []
    for field in DETAIL_FIELDS:
        if field in changes and changes[field] is not None:
            setattr(job_card, field, changes[field])
            update_fields.append(field)
    if update_fields:
        job_card.save(update_fields=update_fields + ['updated_at'])
    return job_card


def add_media(job_card, kind, urls):
    field = MEDIA_FIELDS.get(kind)
    if field is None:
        raise BusinessRuleViolation(f"Unknown media collection '{kind}'")
    current = list(getattr(job_card, field) or [])
    for url in urls or []:
        if url and url not in current:
            current.append(url)
    setattr(job_card, field, current)
    job_card.save(update_fields=[field, 'updated_at'])
    return current


def job_card_stats():
    status_counts = {
        row['status']: row['count']
        for row in JobCard.objects.values('status').annotate(count=Count('id'))
    }
    collected = Payment.objects.filter(status__in=PAYMENT_STATUSES_WITH_MONEY).aggregate(
        total=Sum(F('amount') - F('refunded_amount'))
    )['total']
    outstanding = Invoice.objects.exclude(
        status__in=(Invoice.STATUS_CANCELLED, Invoice.STATUS_REFUNDED, Invoice.STATUS_DRAFT)
    ).aggregate(total=Sum('balance_amount'))['total']
    return {
        'status_counts': status_counts,
        'total_active': JobCard.objects.exclude(status__in=JobCard.TERMINAL_STATUSES).count(),
        'revenue_collected': round2(collected),
        'outstanding_balance': round2(outstanding),
    }
