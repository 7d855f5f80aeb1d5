"""Versioned cost estimates and the customer approval workflow."""
import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import billing, lifecycle, notifications
from .exceptions import BusinessRuleViolation, Conflict, NotFound
from .models import Estimate, JobCard

logger = logging.getLogger(__name__)

DECISION_STATUSES = (JobCard.STATUS_INSPECTION, JobCard.STATUS_AWAITING_APPROVAL)


def _serialize_items(items):
    lines = []
    for raw in items or []:
        data = billing.normalize_item_payload(raw)
        lines.append({
            'type': data['item_type'],
            'name': data['name'],
            'description': data['description'],
            'hsn_code': data['hsn_code'],
            'quantity': str(data['quantity']),
            'unit_price': str(data['unit_price']),
            'discount': str(data['discount_percent']),
            'total': str(data['total']),
        })
    return lines


def create_or_revise(job_card, *, items, discount_amount=0, discount_reason='', tax_rate=None,
                     notes='', expires_at=None, user=None):
    """Create the first estimate or a new version replacing the pending one."""
    with transaction.atomic():
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        current = job_card.current_estimate
        if current is not None and current.status == Estimate.STATUS_APPROVED:
            raise BusinessRuleViolation(
                "Cannot modify an approved estimate. Create a supplementary estimate instead."
            )
        if job_card.status in JobCard.TERMINAL_STATUSES:
            raise BusinessRuleViolation("Cannot create estimate for completed or cancelled jobs")

        lines = _serialize_items(items)
        if tax_rate in (None, ''):
            tax_rate = settings.DEFAULT_TAX_RATE
        totals = billing.compute_totals(
            [line['total'] for line in lines],
            discount=discount_amount,
            tax_rate=tax_rate,
        )

        now = timezone.now()
        if current is not None and current.status == Estimate.STATUS_PENDING_APPROVAL:
            current.status = Estimate.STATUS_SUPERSEDED
            current.archived_at = now
            current.save(update_fields=['status', 'archived_at'])

        estimate = Estimate.objects.create(
            job_card=job_card,
            version=(current.version if current is not None else 0) + 1,
            status=Estimate.STATUS_PENDING_APPROVAL,
            items=lines,
            subtotal=totals['subtotal'],
            discount_amount=totals['discount'],
            discount_reason=discount_reason or '',
            tax_rate=totals['tax_rate'],
            tax_amount=totals['tax_amount'],
            grand_total=totals['grand_total'],
            notes=notes or '',
            expires_at=expires_at,
            created_by=user if getattr(user, 'is_authenticated', False) else None,
            created_at=now,
        )

        if job_card.status in (JobCard.STATUS_CREATED, JobCard.STATUS_INSPECTION):
            lifecycle.transition(
                job_card,
                JobCard.STATUS_AWAITING_APPROVAL,
                user,
                "Revised estimate sent to customer" if current is not None else "Estimate sent to customer",
            )
        notifications.after_commit(notifications.send_estimate_approval, job_card.customer, estimate)

    logger.info(
        "Estimate v%s for %s saved: grand_total=%s",
        estimate.version,
        job_card.job_number,
        estimate.grand_total,
    )
    return estimate


def _pending_estimate_for_decision(job_card, action):
    estimate = job_card.estimates.select_for_update().order_by('-version').first()
    if estimate is None:
        raise NotFound("No estimate available for this job card")
    if estimate.status != Estimate.STATUS_PENDING_APPROVAL:
        raise Conflict(f"Estimate has already been {estimate.status.lower()}")
    if job_card.status not in DECISION_STATUSES:
        raise BusinessRuleViolation(f"Cannot {action} estimate at this stage of the job")
    return estimate


def approve(job_card, user=None):
    with transaction.atomic():
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        estimate = _pending_estimate_for_decision(job_card, 'approve')
        if estimate.is_expired:
            raise BusinessRuleViolation("This estimate has expired. Please request a new estimate.")

        estimate.status = Estimate.STATUS_APPROVED
        estimate.approved_at = timezone.now()
        estimate.approved_by = user if getattr(user, 'is_authenticated', False) else None
        estimate.save(update_fields=['status', 'approved_at', 'approved_by'])

        billing.apply_estimate_totals(job_card, estimate)
        lifecycle.transition(
            job_card,
            JobCard.STATUS_APPROVED,
            user,
            "Customer approved cost estimate",
            approval=True,
        )
        notifications.after_commit(
            notifications.notify_admins,
            "Estimate approved",
            f"Job {job_card.job_number}: customer approved estimate v{estimate.version} "
            f"({settings.CURRENCY} {estimate.grand_total:.2f})",
            entity=estimate,
        )
    logger.info("Estimate v%s approved for %s", estimate.version, job_card.job_number)
    return estimate


def reject(job_card, reason='', user=None):
    with transaction.atomic():
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        estimate = _pending_estimate_for_decision(job_card, 'reject')
        now = timezone.now()
        estimate.status = Estimate.STATUS_REJECTED
        estimate.rejected_at = now
        estimate.rejected_by = user if getattr(user, 'is_authenticated', False) else None
        estimate.rejection_reason = reason or ''
        estimate.archived_at = now
        estimate.save(update_fields=['status', 'rejected_at', 'rejected_by', 'rejection_reason', 'archived_at'])
        notifications.after_commit(
            notifications.notify_admins,
            "Estimate rejected",
            f"Job {job_card.job_number}: customer rejected the estimate"
            + (f' - "{reason}"' if reason else ""),
            entity=estimate,
        )
    logger.info("Estimate v%s rejected for %s", estimate.version, job_card.job_number)
    return estimate

