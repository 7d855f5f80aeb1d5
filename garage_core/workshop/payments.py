"""Payment ledger: recording payments, applying them to invoices and refunds.

All writes to ``Invoice.paid_amount`` go through :func:`_apply_to_invoice`,
which runs under a row lock on the invoice so the increment and the
balance/status recomputation land in a single write.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from . import notifications
from .exceptions import (
    BusinessRuleViolation,
    Conflict,
    NotFound,
    SignatureMismatch,
    UpstreamFailure,
)
from .invoice_utils import open_invoice_for
from .models import (
    Invoice,
    JobCard,
    Notification,
    Payment,
    RefundRequest,
    ZERO,
    round2,
)
from .razorpay_service import (
    RazorpayApiError,
    RazorpayClient,
    from_subunits,
    get_key_id,
    is_configured,
    verify_payment_signature,
)

logger = logging.getLogger(__name__)

MIN_ONLINE_AMOUNT = Decimal('1.00')

GATEWAY_METHODS = {
    'upi': Payment.METHOD_UPI,
    'card': Payment.METHOD_CARD,
    'netbanking': Payment.METHOD_NETBANKING,
    'wallet': Payment.METHOD_WALLET,
}

MANUAL_METHODS = (
    Payment.METHOD_CASH,
    Payment.METHOD_CARD,
    Payment.METHOD_UPI,
    Payment.METHOD_BANK_TRANSFER,
)


def recompute_invoice(invoice):
    """Derive balance and status from ``paid_amount``. Caller saves."""
    paid = round2(invoice.paid_amount)
    grand_total = round2(invoice.grand_total)
    invoice.paid_amount = paid
    invoice.balance_amount = max(ZERO, round2(grand_total - paid))
    if paid >= grand_total and grand_total > ZERO:
        invoice.status = Invoice.STATUS_PAID
        if invoice.paid_at is None:
            invoice.paid_at = timezone.now()
    elif paid > ZERO:
        invoice.status = Invoice.STATUS_PARTIALLY_PAID
    elif invoice.status in (Invoice.STATUS_PAID, Invoice.STATUS_PARTIALLY_PAID):
        invoice.status = Invoice.STATUS_REFUNDED
    return invoice


def _check_payable(invoice, amount=None):
    if invoice.status == Invoice.STATUS_PAID:
        raise BusinessRuleViolation("Invoice is already fully paid")
    if invoice.status in Invoice.CLOSED_STATUSES:
        raise BusinessRuleViolation("Cannot pay for a cancelled or refunded invoice")
    if amount is not None and round2(amount) > round2(invoice.balance_amount):
        raise BusinessRuleViolation(f"Amount cannot exceed balance of ₹{round2(invoice.balance_amount):.2f}")


def _lock_invoice(invoice):
    return Invoice.objects.select_for_update().get(pk=invoice.pk)


def _apply_to_invoice(payment):
    """Add a completed payment to its invoice exactly once."""
    if payment.applied_at is not None or payment.invoice_id is None:
        return None
    invoice = _lock_invoice(payment.invoice)
    invoice.paid_amount = round2(invoice.paid_amount) + round2(payment.amount)
    recompute_invoice(invoice)
    invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'paid_at'])
    payment.applied_at = timezone.now()
    payment.save(update_fields=['applied_at'])
    logger.info(
        "Applied payment %s (%s) to invoice %s: paid=%s balance=%s status=%s",
        payment.payment_number,
        payment.amount,
        invoice.invoice_number,
        invoice.paid_amount,
        invoice.balance_amount,
        invoice.status,
    )
    return invoice


def _payment_type(amount, invoice):
    if invoice is not None and round2(amount) < round2(invoice.balance_amount):
        return Payment.TYPE_PARTIAL
    return Payment.TYPE_FULL


def _create_payment(**fields):
    try:
        with transaction.atomic():
            return Payment.objects.create(**fields)
    except IntegrityError:
        raise Conflict("A payment with this transaction id already exists")


def record_manual_payment(job_card, *, amount, payment_method=Payment.METHOD_CASH, transaction_id='',
                          status=Payment.STATUS_COMPLETED, notes='', user=None):
    """Admin entry of a counter payment, optionally left pending for later completion."""
    amount = round2(amount)
    if amount <= ZERO:
        raise BusinessRuleViolation("Payment amount must be greater than zero")
    if payment_method not in MANUAL_METHODS:
        raise BusinessRuleViolation(f"Unsupported payment method '{payment_method}'")
    if status not in (Payment.STATUS_PENDING, Payment.STATUS_COMPLETED):
        raise BusinessRuleViolation("Payment status must be pending or completed")

    with transaction.atomic():
        job_card = JobCard.objects.select_for_update().get(pk=job_card.pk)
        if job_card.status == JobCard.STATUS_CANCELLED:
            raise BusinessRuleViolation("Cannot record a payment for a cancelled job card")
        invoice = open_invoice_for(job_card)
        if invoice is not None:
            invoice = _lock_invoice(invoice)
            _check_payable(invoice, amount)

        now = timezone.now()
        payment = _create_payment(
            customer=job_card.customer,
            job_card=job_card,
            invoice=invoice,
            amount=amount,
            payment_type=_payment_type(amount, invoice),
            payment_method=payment_method,
            status=status,
            transaction_id=(transaction_id or '').strip(),
            notes=notes or '',
            recorded_by=user if getattr(user, 'is_authenticated', False) else None,
            completed_at=now if status == Payment.STATUS_COMPLETED else None,
        )
        if status == Payment.STATUS_COMPLETED:
            _apply_to_invoice(payment)
            notifications.after_commit(notifications.send_payment_success, job_card.customer, payment)

    logger.info(
        "Recorded %s payment %s of %s for %s",
        status,
        payment.payment_number,
        amount,
        job_card.job_number,
    )
    return payment


def complete_payment(payment, user=None):
    """Move a pending payment to completed and apply it to the ledger."""
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        if payment.status != Payment.STATUS_PENDING:
            raise Conflict(f"Payment is already {payment.status}")
        invoice = payment.invoice or open_invoice_for(payment.job_card)
        if invoice is not None:
            invoice = _lock_invoice(invoice)
            _check_payable(invoice, payment.amount)
        payment.invoice = invoice
        payment.status = Payment.STATUS_COMPLETED
        payment.completed_at = timezone.now()
        payment.save()
        _apply_to_invoice(payment)
        notifications.after_commit(notifications.send_payment_success, payment.customer, payment)
    logger.info("Completed payment %s by %s", payment.payment_number, getattr(user, 'username', 'system'))
    return payment


def fail_payment(payment, reason=''):
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        if payment.status != Payment.STATUS_PENDING:
            raise Conflict(f"Payment is already {payment.status}")
        payment.status = Payment.STATUS_FAILED
        if reason:
            payment.notes = f"{payment.notes}\n{reason}".strip()
        payment.save()
    logger.warning("Payment %s marked failed: %s", payment.payment_number, reason)
    return payment


def create_payment_order(invoice, amount=None, client=None):
    """Open a gateway order for (part of) the invoice balance."""
    if not is_configured():
        raise UpstreamFailure("Payment gateway is not configured")
    _check_payable(invoice)
    balance = round2(invoice.balance_amount)
    amount = balance if amount in (None, '') else round2(amount)
    if amount > balance:
        raise BusinessRuleViolation(f"Amount cannot exceed balance of ₹{balance:.2f}")
    if amount < MIN_ONLINE_AMOUNT:
        raise BusinessRuleViolation("Minimum payment amount is ₹1")

    client = client or RazorpayClient()
    try:
        order = client.create_order(
            amount,
            receipt=invoice.invoice_number,
            notes={
                'invoice_id': str(invoice.pk),
                'job_card': invoice.job_card.job_number,
            },
        )
    except RazorpayApiError as e:
        logger.error("Gateway order creation failed for %s: %s", invoice.invoice_number, e)
        raise UpstreamFailure("Failed to create payment order")

    logger.info("Created gateway order %s for %s amount=%s", order.get('id'), invoice.invoice_number, amount)
    return {
        'order_id': order.get('id'),
        'amount': amount,
        'currency': getattr(settings, 'CURRENCY', 'INR'),
        'key_id': get_key_id(),
        'invoice_number': invoice.invoice_number,
    }


def verify_payment(invoice, *, order_id, payment_id, signature, client=None):
    """Trust a signed gateway callback and record the payment it describes."""
    if not verify_payment_signature(order_id, payment_id, signature):
        logger.warning("Signature mismatch for order %s payment %s", order_id, payment_id)
        raise SignatureMismatch()

    existing = Payment.objects.filter(transaction_id=payment_id).first()
    if existing is not None:
        if existing.invoice_id != invoice.pk:
            raise Conflict("A payment with this transaction id already exists")
        return existing

    client = client or RazorpayClient()
    try:
        details = client.fetch_payment(payment_id)
    except RazorpayApiError as e:
        logger.error("Could not fetch gateway payment %s: %s", payment_id, e)
        raise UpstreamFailure("Could not fetch payment details from gateway")
    if details.get('status') == 'failed':
        raise BusinessRuleViolation("Payment failed at the gateway")

    amount = from_subunits(details.get('amount'))
    method = GATEWAY_METHODS.get((details.get('method') or '').lower(), Payment.METHOD_OTHER)

    with transaction.atomic():
        locked = _lock_invoice(invoice)
        _check_payable(locked)
        payment = _create_payment(
            customer=locked.customer,
            job_card=locked.job_card,
            invoice=locked,
            amount=amount,
            payment_type=_payment_type(amount, locked),
            payment_method=method,
            gateway=Payment.GATEWAY_RAZORPAY,
            status=Payment.STATUS_COMPLETED,
            transaction_id=payment_id,
            gateway_order_id=order_id,
            metadata={
                'gateway_status': details.get('status'),
                'method': details.get('method'),
                'email': details.get('email'),
                'contact': details.get('contact'),
            },
            completed_at=timezone.now(),
        )
        _apply_to_invoice(payment)
        notifications.after_commit(notifications.send_payment_success, locked.customer, payment)

    logger.info("Verified gateway payment %s (%s) for %s", payment_id, amount, invoice.invoice_number)
    return payment


def request_refund(payment, *, amount, reason, user=None):
    amount = round2(amount)
    if not (reason or '').strip():
        raise BusinessRuleViolation("Refund reason is required")
    if payment.status != Payment.STATUS_COMPLETED:
        raise BusinessRuleViolation("Only completed payments can be refunded")
    if amount <= ZERO:
        raise BusinessRuleViolation("Refund amount must be greater than zero")
    if amount > payment.paid_amount:
        raise BusinessRuleViolation(f"Refund amount cannot exceed paid amount of ₹{payment.paid_amount:.2f}")

    refund = RefundRequest(
        payment=payment,
        invoice=payment.invoice,
        job_card=payment.job_card,
        customer=payment.customer,
        requested_amount=amount,
        reason=reason.strip(),
    )
    refund.add_log('REQUESTED', user, reason)
    refund.save()
    notifications.after_commit(
        notifications.notify_admins,
        "Refund requested",
        f"Refund of {settings.CURRENCY} {amount:.2f} requested on payment {payment.payment_number}",
        entity=refund,
        notification_type=Notification.TYPE_REFUND,
    )
    logger.info("Refund %s requested on %s amount=%s", refund.pk, payment.payment_number, amount)
    return refund


def _decide_refund(refund, new_status, user, remarks):
    with transaction.atomic():
        refund = RefundRequest.objects.select_for_update().get(pk=refund.pk)
        if refund.status != RefundRequest.STATUS_PENDING:
            raise BusinessRuleViolation(f"Refund request is already {refund.status.lower()}")
        refund.status = new_status
        refund.admin_remarks = remarks or refund.admin_remarks
        refund.add_log(new_status, user, remarks)
        refund.save(update_fields=['status', 'admin_remarks', 'logs', 'updated_at'])
        notifications.after_commit(notifications.send_refund_update, refund.customer, refund)
    logger.info("Refund %s %s", refund.pk, new_status.lower())
    return refund


def approve_refund(refund, user=None, remarks=''):
    return _decide_refund(refund, RefundRequest.STATUS_APPROVED, user, remarks)


def reject_refund(refund, user=None, remarks=''):
    return _decide_refund(refund, RefundRequest.STATUS_REJECTED, user, remarks)


def process_refund(refund, user=None, remarks='', client=None):
    """Move money back: decrement the payment and its invoice, then ask the gateway.

    The local ledger is written first; a gateway failure is logged and left
    for out-of-band reconciliation.
    """
    with transaction.atomic():
        refund = RefundRequest.objects.select_for_update().get(pk=refund.pk)
        if refund.status not in (RefundRequest.STATUS_PENDING, RefundRequest.STATUS_APPROVED):
            raise BusinessRuleViolation(f"Cannot process a {refund.status.lower()} refund request")
        payment = Payment.objects.select_for_update().get(pk=refund.payment_id)
        amount = round2(refund.requested_amount)
        if amount > payment.paid_amount:
            raise BusinessRuleViolation(
                f"Refund amount cannot exceed paid amount of ₹{payment.paid_amount:.2f}"
            )

        payment.refunded_amount = round2(payment.refunded_amount) + amount
        if payment.paid_amount <= ZERO:
            payment.status = Payment.STATUS_REFUNDED
        payment.save(update_fields=['refunded_amount', 'status'])

        invoice = None
        if payment.invoice_id and payment.applied_at is not None:
            invoice = _lock_invoice(payment.invoice)
            invoice.paid_amount = max(ZERO, round2(invoice.paid_amount) - amount)
            recompute_invoice(invoice)
            invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'paid_at'])

        refund.status = RefundRequest.STATUS_PROCESSED
        refund.processed_at = timezone.now()
        if remarks:
            refund.admin_remarks = remarks
        refund.add_log('PROCESSED', user, remarks)
        refund.save(update_fields=['status', 'processed_at', 'admin_remarks', 'logs', 'updated_at'])
        notifications.after_commit(notifications.send_refund_update, refund.customer, refund)

    logger.info(
        "Processed refund %s: payment %s paid=%s invoice=%s",
        refund.pk,
        payment.payment_number,
        payment.paid_amount,
        invoice.status if invoice is not None else None,
    )

    if payment.gateway == Payment.GATEWAY_RAZORPAY and payment.transaction_id:
        try:
            result = (client or RazorpayClient()).initiate_refund(
                payment.transaction_id,
                amount,
                notes={'refund_request': str(refund.pk)},
            )
        except RazorpayApiError as e:
            logger.error("Gateway refund failed for refund %s: %s", refund.pk, e)
        else:
            refund.gateway_refund_id = result.get('id') or ''
            refund.save(update_fields=['gateway_refund_id', 'updated_at'])
    return refund


def get_payment(payment_id):
    payment = Payment.objects.select_related('invoice', 'job_card', 'customer').filter(pk=payment_id).first()
    if payment is None:
        raise NotFound("Payment not found")
    return payment


def reconcile_invoice(invoice, *, fix=True):
    """Re-derive paid/balance/status from completed payments. Returns (old_paid, new_paid)."""
    with transaction.atomic():
        invoice = _lock_invoice(invoice)
        old_paid = round2(invoice.paid_amount)
        new_paid = ZERO
        for payment in invoice.payments.filter(
            status__in=(Payment.STATUS_COMPLETED, Payment.STATUS_REFUNDED),
        ):
            new_paid += payment.paid_amount
        new_paid = round2(new_paid)
        if fix and (new_paid != old_paid or invoice.balance_amount != max(ZERO, round2(invoice.grand_total - new_paid))):
            invoice.paid_amount = new_paid
            recompute_invoice(invoice)
            invoice.save(update_fields=['paid_amount', 'balance_amount', 'status', 'paid_at'])
            logger.warning(
                "Reconciled invoice %s: paid %s -> %s",
                invoice.invoice_number,
                old_paid,
                new_paid,
            )
    return old_paid, new_paid
