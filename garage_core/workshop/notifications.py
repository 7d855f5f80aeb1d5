"""Customer, mechanic and admin notifications.

Every notification is stored in the inbox table and e-mailed when an address
is known. Errors here are observability-only: they are logged and never
reach the caller, and nothing in the ledger depends on them.
"""
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from .models import Notification

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    'inspection': "Your vehicle is being inspected",
    'awaiting-approval': "Cost estimate is ready for your approval",
    'approved': "Work has been approved and will begin shortly",
    'in-progress': "Work is in progress on your vehicle",
    'quality-check': "Your vehicle is undergoing quality check",
    'ready': "Your vehicle is ready for pickup!",
    'delivered': "Thank you for choosing us!",
    'cancelled': "Your job has been cancelled",
}


def after_commit(func, *args, **kwargs):
    """Run ``func`` once the current transaction commits, swallowing its errors."""

    def _run():
        try:
            func(*args, **kwargs)
        except Exception:
            logger.exception("Notification %s failed", getattr(func, '__name__', func))

    transaction.on_commit(_run)


def _deliver(*, title, body, notification_type, customer=None, user=None, email=None, entity=None):
    notification = Notification.objects.create(
        customer=customer,
        recipient_user=user,
        notification_type=notification_type,
        title=title,
        body=body,
        related_entity_type=entity.__class__.__name__ if entity is not None else '',
        related_entity_id=getattr(entity, 'pk', None),
    )
    if not email:
        return notification
    try:
        send_mail(
            f"{settings.GARAGE_NAME}: {title}",
            body,
            settings.DEFAULT_FROM_EMAIL,
            [email],
            fail_silently=False,
        )
        notification.emailed_at = timezone.now()
        notification.save(update_fields=['emailed_at'])
        logger.info("Email sent to %s for %s", email, notification_type)
    except OSError as e:
        logger.error("OSError during send_mail: %s", e)
    except Exception as e:
        logger.error("Unexpected error during email sending: %s", e)
    return notification


def send_status_update(customer, job_card, status):
    message = STATUS_MESSAGES.get(status, f"Status changed to {status}")
    return _deliver(
        title=f"Job {job_card.job_number} update",
        body=message,
        notification_type=Notification.TYPE_STATUS_UPDATE,
        customer=customer,
        email=customer.get_notification_email(),
        entity=job_card,
    )


def send_vehicle_ready(customer, job_card):
    vehicle = (job_card.vehicle_snapshot or {}).get('registration_number') or 'Your vehicle'
    return _deliver(
        title="Vehicle ready for pickup",
        body=(
            f"{vehicle} is ready for pickup at {settings.GARAGE_NAME}.\n"
            f"Amount payable: {settings.CURRENCY} {job_card.grand_total:.2f}"
        ),
        notification_type=Notification.TYPE_VEHICLE_READY,
        customer=customer,
        email=customer.get_notification_email(),
        entity=job_card,
    )


def send_estimate_approval(customer, estimate):
    job_card = estimate.job_card
    body = (
        f"A cost estimate (version {estimate.version}) for job {job_card.job_number} "
        f"is ready for your approval.\n"
        f"Estimated total: {settings.CURRENCY} {estimate.grand_total:.2f}"
    )
    if estimate.expires_at:
        body += f"\nValid until: {timezone.localtime(estimate.expires_at):%d %b %Y %H:%M}"
    notification = _deliver(
        title="Estimate ready for approval",
        body=body,
        notification_type=Notification.TYPE_ESTIMATE,
        customer=customer,
        email=customer.get_notification_email(),
        entity=estimate,
    )
    estimate.notification_sent_at = timezone.now()
    estimate.save(update_fields=['notification_sent_at'])
    return notification


def send_payment_success(customer, payment):
    return _deliver(
        title="Payment received",
        body=(
            f"We received {settings.CURRENCY} {payment.amount:.2f} "
            f"(payment {payment.payment_number}) for job {payment.job_card.job_number}. Thank you!"
        ),
        notification_type=Notification.TYPE_PAYMENT,
        customer=customer,
        email=customer.get_notification_email(),
        entity=payment,
    )


def send_refund_update(customer, refund):
    return _deliver(
        title=f"Refund {refund.status.lower()}",
        body=(
            f"Your refund request of {settings.CURRENCY} {refund.requested_amount:.2f} "
            f"is now {refund.status.lower()}."
            + (f"\nRemarks: {refund.admin_remarks}" if refund.admin_remarks else "")
        ),
        notification_type=Notification.TYPE_REFUND,
        customer=customer,
        email=customer.get_notification_email(),
        entity=refund,
    )


def notify_mechanic_assignment(mechanic, job_card):
    logger.info("Sending assignment of %s to mechanic %s", job_card.job_number, mechanic.name)
    vehicle = (job_card.vehicle_snapshot or {}).get('registration_number') or ''
    return _deliver(
        title=f"New job card assignment {job_card.job_number}",
        body=(
            f"Hello {mechanic.name},\n\n"
            f"You have been assigned to job card {job_card.job_number}"
            + (f" for vehicle {vehicle}" if vehicle else "")
            + ".\n\nThank you."
        ),
        notification_type=Notification.TYPE_ASSIGNMENT,
        user=mechanic.portal_user,
        email=mechanic.email or getattr(mechanic.portal_user, 'email', None),
        entity=job_card,
    )


def notify_admins(title, body, *, entity=None, notification_type=Notification.TYPE_ESTIMATE_DECISION):
    admins = get_user_model().objects.filter(is_staff=True, is_active=True)
    for admin_user in admins:
        _deliver(
            title=title,
            body=body,
            notification_type=notification_type,
            user=admin_user,
            email=admin_user.email or None,
            entity=entity,
        )
