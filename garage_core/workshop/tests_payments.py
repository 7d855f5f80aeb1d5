import hashlib
import hmac
from decimal import Decimal
from unittest import mock

import requests
from django.contrib.auth.models import User
from django.test import TestCase
from django.test.utils import override_settings

from . import estimates, invoice_utils, lifecycle, payments
from .exceptions import BusinessRuleViolation, Conflict, SignatureMismatch, UpstreamFailure
from .models import Invoice, JobCard, Payment, RefundRequest
from .razorpay_service import RazorpayApiError, RazorpayClient, from_subunits, to_subunits
from .tests import make_customer

GATEWAY_SECRET = 'test_secret'


def sign(order_id, payment_id, secret=GATEWAY_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class LedgerTestMixin:
    def setUp(self):
        self.admin = User.objects.create_user(
            username='cashier', password='pass1234', email='cashier@example.com', is_staff=True,
        )
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, user=self.admin)
        lifecycle.transition(self.job_card, JobCard.STATUS_INSPECTION, self.admin)
        estimates.create_or_revise(
            self.job_card,
            items=[{'name': 'Suspension work', 'unit_price': '2000'}],
            tax_rate=0,
            user=self.admin,
        )
        estimates.approve(self.job_card, self.admin)
        self.job_card.refresh_from_db()
        self.invoice = invoice_utils.create_from_job_card(self.job_card, self.admin)

    def pay(self, amount, **kwargs):
        return payments.record_manual_payment(self.job_card, amount=Decimal(amount), user=self.admin, **kwargs)


class ManualPaymentTests(LedgerTestMixin, TestCase):
    def test_full_payment_marks_invoice_paid_once(self):
        self.assertEqual(self.invoice.grand_total, Decimal('2000.00'))

        payment = self.pay('2000.00', payment_method=Payment.METHOD_UPI, transaction_id='UPI-8899')

        self.invoice.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(payment.payment_type, Payment.TYPE_FULL)
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(self.invoice.balance_amount, Decimal('0.00'))
        paid_at = self.invoice.paid_at
        self.assertIsNotNone(paid_at)

        with self.assertRaisesMessage(BusinessRuleViolation, "Invoice is already fully paid"):
            self.pay('1.00')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_at, paid_at)
        self.assertEqual(Payment.objects.count(), 1)

    def test_partial_payments_accumulate(self):
        first = self.pay('500.00')
        self.invoice.refresh_from_db()
        self.assertEqual(first.payment_type, Payment.TYPE_PARTIAL)
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIALLY_PAID)
        self.assertEqual(self.invoice.balance_amount, Decimal('1500.00'))

        self.pay('1500.00')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal('2000.00'))
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)

    def test_overpayment_is_rejected(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Amount cannot exceed balance of ₹2000.00"):
            self.pay('2000.01')

    def test_duplicate_transaction_id_conflicts(self):
        self.pay('100.00', transaction_id='CHQ-1')

        with self.assertRaisesMessage(Conflict, "A payment with this transaction id already exists"):
            self.pay('100.00', transaction_id='CHQ-1')

    def test_unsupported_method(self):
        with self.assertRaises(BusinessRuleViolation):
            self.pay('100.00', payment_method=Payment.METHOD_WALLET)

    def test_pending_payment_completes_later(self):
        payment = self.pay('800.00', status=Payment.STATUS_PENDING)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal('0.00'))

        payments.complete_payment(payment, self.admin)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal('800.00'))
        with self.assertRaisesMessage(Conflict, "Payment is already completed"):
            payments.complete_payment(payment, self.admin)

    def test_failed_payment_never_touches_invoice(self):
        payment = self.pay('800.00', status=Payment.STATUS_PENDING)

        payments.fail_payment(payment, 'Card declined')

        payment.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertEqual(payment.status, Payment.STATUS_FAILED)
        self.assertIn('Card declined', payment.notes)
        self.assertEqual(self.invoice.paid_amount, Decimal('0.00'))

    def test_completed_payment_is_frozen(self):
        payment = Payment.objects.get(pk=self.pay('100.00').pk)

        payment.amount = Decimal('1.00')
        with self.assertRaises(ValueError):
            payment.save()

    def test_payment_success_notification(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.pay('100.00')

        self.assertTrue(self.customer.notifications.filter(title="Payment received").exists())


class RefundTests(LedgerTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.payment = self.pay('2000.00')

    def test_partial_refund_reopens_invoice(self):
        refund = payments.request_refund(self.payment, amount=Decimal('500'), reason='Part not fitted')
        self.assertEqual(refund.status, RefundRequest.STATUS_PENDING)

        payments.approve_refund(refund, self.admin, 'OK')
        refund = payments.process_refund(refund, self.admin)

        self.payment.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertEqual(refund.status, RefundRequest.STATUS_PROCESSED)
        self.assertEqual([entry['action'] for entry in refund.logs], ['REQUESTED', 'APPROVED', 'PROCESSED'])
        self.assertEqual(self.payment.paid_amount, Decimal('1500.00'))
        self.assertEqual(self.payment.status, Payment.STATUS_COMPLETED)
        self.assertEqual(self.invoice.paid_amount, Decimal('1500.00'))
        self.assertEqual(self.invoice.balance_amount, Decimal('500.00'))
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIALLY_PAID)
        self.assertIsNotNone(self.invoice.paid_at)

    def test_full_refund_marks_everything_refunded(self):
        refund = payments.request_refund(self.payment, amount=Decimal('2000'), reason='Job cancelled')
        payments.process_refund(refund, self.admin)

        self.payment.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_REFUNDED)
        self.assertEqual(self.invoice.status, Invoice.STATUS_REFUNDED)
        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot pay for a cancelled or refunded invoice"):
            self.pay('10.00')

    def test_refund_cannot_exceed_paid_amount(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Refund amount cannot exceed paid amount of ₹2000.00"):
            payments.request_refund(self.payment, amount=Decimal('2500'), reason='Too much')

    def test_refund_needs_reason(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Refund reason is required"):
            payments.request_refund(self.payment, amount=Decimal('100'), reason='  ')

    def test_decisions_are_final(self):
        refund = payments.request_refund(self.payment, amount=Decimal('100'), reason='Overcharged')
        payments.reject_refund(refund, self.admin, 'Charge is correct')

        with self.assertRaisesMessage(BusinessRuleViolation, "Refund request is already rejected"):
            payments.approve_refund(refund, self.admin)
        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot process a rejected refund request"):
            payments.process_refund(refund, self.admin)

    def test_reconcile_matches_ledger_after_refund(self):
        refund = payments.request_refund(self.payment, amount=Decimal('500'), reason='Part not fitted')
        payments.process_refund(refund, self.admin)

        old_paid, new_paid = payments.reconcile_invoice(self.invoice)

        self.assertEqual(old_paid, new_paid)
        self.assertEqual(new_paid, Decimal('1500.00'))


@override_settings(RAZORPAY_KEY_ID='rzp_test_key', RAZORPAY_KEY_SECRET=GATEWAY_SECRET)
class GatewayPaymentTests(LedgerTestMixin, TestCase):
    def gateway(self, **payment_details):
        client = mock.Mock(spec=RazorpayClient)
        client.create_order.return_value = {'id': 'order_abc'}
        client.fetch_payment.return_value = {
            'status': 'captured',
            'amount': 200000,
            'method': 'upi',
            **payment_details,
        }
        client.initiate_refund.return_value = {'id': 'rfnd_123'}
        return client

    def test_create_order_defaults_to_balance(self):
        client = self.gateway()

        order = payments.create_payment_order(self.invoice, client=client)

        self.assertEqual(order['order_id'], 'order_abc')
        self.assertEqual(order['amount'], Decimal('2000.00'))
        self.assertEqual(order['key_id'], 'rzp_test_key')
        self.assertEqual(order['currency'], 'INR')
        client.create_order.assert_called_once()
        self.assertEqual(client.create_order.call_args.kwargs['receipt'], self.invoice.invoice_number)

    def test_create_order_validates_amount(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Minimum payment amount is ₹1"):
            payments.create_payment_order(self.invoice, Decimal('0.50'), client=self.gateway())

    def test_unconfigured_gateway_refuses_orders(self):
        client = self.gateway()

        with self.settings(RAZORPAY_KEY_ID=''):
            with self.assertRaisesMessage(UpstreamFailure, "Payment gateway is not configured"):
                payments.create_payment_order(self.invoice, client=client)
        client.create_order.assert_not_called()

    def test_gateway_failure_surfaces_as_upstream_error(self):
        client = self.gateway()
        client.create_order.side_effect = RazorpayApiError("Razorpay API error 500")

        with self.assertRaisesMessage(UpstreamFailure, "Failed to create payment order"):
            payments.create_payment_order(self.invoice, client=client)

    def test_verified_payment_settles_invoice(self):
        client = self.gateway()

        payment = payments.verify_payment(
            self.invoice,
            order_id='order_abc',
            payment_id='pay_001',
            signature=sign('order_abc', 'pay_001'),
            client=client,
        )

        self.invoice.refresh_from_db()
        self.assertEqual(payment.amount, Decimal('2000.00'))
        self.assertEqual(payment.payment_method, Payment.METHOD_UPI)
        self.assertEqual(payment.gateway, Payment.GATEWAY_RAZORPAY)
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)

    def test_verify_is_idempotent(self):
        client = self.gateway(amount=50000)
        kwargs = dict(order_id='order_abc', payment_id='pay_002', signature=sign('order_abc', 'pay_002'), client=client)

        first = payments.verify_payment(self.invoice, **kwargs)
        second = payments.verify_payment(self.invoice, **kwargs)

        self.invoice.refresh_from_db()
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(self.invoice.paid_amount, Decimal('500.00'))
        self.assertEqual(client.fetch_payment.call_count, 1)

    def test_bad_signature_is_rejected(self):
        client = self.gateway()

        with self.assertRaises(SignatureMismatch):
            payments.verify_payment(
                self.invoice,
                order_id='order_abc',
                payment_id='pay_003',
                signature=sign('order_abc', 'pay_003', secret='wrong'),
                client=client,
            )
        client.fetch_payment.assert_not_called()
        self.assertFalse(Payment.objects.exists())

    def test_failed_gateway_payment_is_not_recorded(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Payment failed at the gateway"):
            payments.verify_payment(
                self.invoice,
                order_id='order_abc',
                payment_id='pay_004',
                signature=sign('order_abc', 'pay_004'),
                client=self.gateway(status='failed'),
            )

    def test_refund_of_gateway_payment_calls_gateway(self):
        client = self.gateway()
        payment = payments.verify_payment(
            self.invoice, order_id='order_abc', payment_id='pay_005',
            signature=sign('order_abc', 'pay_005'), client=client,
        )
        refund = payments.request_refund(payment, amount=Decimal('500'), reason='Discount promised')

        refund = payments.process_refund(refund, self.admin, client=client)

        client.initiate_refund.assert_called_once_with('pay_005', Decimal('500.00'), notes={'refund_request': str(refund.pk)})
        self.assertEqual(refund.gateway_refund_id, 'rfnd_123')

    def test_gateway_refund_failure_keeps_local_ledger(self):
        client = self.gateway()
        payment = payments.verify_payment(
            self.invoice, order_id='order_abc', payment_id='pay_006',
            signature=sign('order_abc', 'pay_006'), client=client,
        )
        client.initiate_refund.side_effect = RazorpayApiError("timeout")
        refund = payments.request_refund(payment, amount=Decimal('500'), reason='Discount promised')

        refund = payments.process_refund(refund, self.admin, client=client)

        self.invoice.refresh_from_db()
        self.assertEqual(refund.status, RefundRequest.STATUS_PROCESSED)
        self.assertEqual(refund.gateway_refund_id, '')
        self.assertEqual(self.invoice.status, Invoice.STATUS_PARTIALLY_PAID)


@override_settings(RAZORPAY_KEY_ID='rzp_test_key', RAZORPAY_KEY_SECRET=GATEWAY_SECRET)
class RazorpayClientTests(TestCase):
    def test_amount_conversion(self):
        self.assertEqual(to_subunits(Decimal('10.50')), 1050)
        self.assertEqual(from_subunits(1050), Decimal('10.50'))

    def test_create_order_posts_paise(self):
        response = mock.Mock(ok=True, status_code=200, content=b'{"id": "order_1"}')
        response.json.return_value = {'id': 'order_1'}
        client = RazorpayClient()

        with mock.patch.object(client.session, 'request', return_value=response) as request:
            order = client.create_order(Decimal('99.99'), receipt='INV-1')

        self.assertEqual(order, {'id': 'order_1'})
        method, url = request.call_args.args
        self.assertEqual(method, 'POST')
        self.assertEqual(url, 'https://api.razorpay.com/v1/orders')
        self.assertEqual(request.call_args.kwargs['json']['amount'], 9999)
        self.assertEqual(client.session.auth, ('rzp_test_key', GATEWAY_SECRET))

    def test_network_error_is_wrapped(self):
        client = RazorpayClient()

        with mock.patch.object(client.session, 'request', side_effect=requests.ConnectionError("down")):
            with self.assertRaises(RazorpayApiError):
                client.fetch_payment('pay_1')

    def test_http_error_is_wrapped(self):
        response = mock.Mock(ok=False, status_code=400, text='{"error": "bad"}')
        client = RazorpayClient()

        with mock.patch.object(client.session, 'request', return_value=response):
            with self.assertRaisesMessage(RazorpayApiError, "Razorpay API error 400"):
                client.initiate_refund('pay_1', Decimal('10'))
