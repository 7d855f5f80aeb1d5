from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth.models import User
from django.core.management import call_command
from django.test import TestCase

from . import estimates, invoice_utils, lifecycle, pdf_utils
from .exceptions import BusinessRuleViolation, Conflict
from .models import Invoice, JobCard
from .payments import record_manual_payment
from .tests import TWO_ITEMS, make_customer


class InvoiceGenerationTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username='accounts', password='pass1234', is_staff=True)
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=18)

    def test_invoice_copies_billing_and_splits_gst(self):
        invoice = invoice_utils.create_from_job_card(self.job_card, self.admin, notes='Thank you')

        self.assertTrue(invoice.invoice_number.startswith('INV'))
        self.assertEqual(invoice.status, Invoice.STATUS_ISSUED)
        self.assertIsNotNone(invoice.issued_at)
        self.assertIsNotNone(invoice.due_date)
        self.assertEqual(invoice.subtotal, Decimal('1100.00'))
        self.assertEqual(invoice.taxable_amount, Decimal('1100.00'))
        self.assertEqual(invoice.cgst_rate, Decimal('9.00'))
        self.assertEqual(invoice.cgst_amount, Decimal('99.00'))
        self.assertEqual(invoice.sgst_amount, Decimal('99.00'))
        self.assertEqual(invoice.tax_amount, Decimal('198.00'))
        self.assertEqual(invoice.grand_total, Decimal('1298.00'))
        self.assertEqual(invoice.balance_amount, Decimal('1298.00'))
        self.assertEqual(invoice.customer_snapshot['name'], 'Asha Rao')
        self.assertEqual(invoice.items.count(), 2)
        self.assertEqual(invoice.items.get(name='Brake pads').tax_amount, Decimal('108.00'))

    def test_gst_halves_add_up_to_billed_tax(self):
        job_card = lifecycle.create_job_card(
            self.customer, self.vehicle, items=[{'name': 'Wheel balancing', 'unit_price': '100.05'}], tax_rate=18,
        )

        invoice = invoice_utils.create_from_job_card(job_card)

        self.assertEqual(invoice.tax_amount, Decimal('18.01'))
        self.assertEqual(invoice.cgst_amount, Decimal('9.01'))
        self.assertEqual(invoice.sgst_amount, Decimal('9.00'))
        self.assertEqual(invoice.cgst_amount + invoice.sgst_amount, invoice.tax_amount)
        self.assertEqual(invoice.grand_total, Decimal('118.06'))

    def test_second_invoice_conflicts(self):
        invoice_utils.create_from_job_card(self.job_card, self.admin)

        with self.assertRaisesMessage(Conflict, "Invoice already exists for this job card"):
            invoice_utils.create_from_job_card(self.job_card, self.admin)

    def test_get_or_create_returns_existing_invoice(self):
        first = invoice_utils.get_or_create_for_job_card(self.job_card)
        second = invoice_utils.get_or_create_for_job_card(self.job_card)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Invoice.objects.count(), 1)

    def test_cancelled_job_card_has_no_invoice(self):
        lifecycle.transition(self.job_card, JobCard.STATUS_CANCELLED)

        with self.assertRaisesMessage(BusinessRuleViolation, "Job card is cancelled"):
            invoice_utils.create_from_job_card(self.job_card)

    def test_empty_job_card_cannot_be_invoiced(self):
        empty = lifecycle.create_job_card(self.customer, self.vehicle)

        with self.assertRaisesMessage(BusinessRuleViolation, "Job card has no billing information"):
            invoice_utils.create_from_job_card(empty)
        with self.assertRaisesMessage(BusinessRuleViolation, "Invoice not available yet"):
            invoice_utils.get_or_create_for_job_card(empty)

    def test_issued_invoice_is_immutable(self):
        invoice = invoice_utils.create_from_job_card(self.job_card)
        invoice = Invoice.objects.get(pk=invoice.pk)

        invoice.grand_total = Decimal('1.00')
        with self.assertRaises(ValueError):
            invoice.save()
        with self.assertRaises(ValueError):
            invoice.save(update_fields=['grand_total'])

    def test_stale_zero_total_is_recomputed_before_issue(self):
        JobCard.objects.filter(pk=self.job_card.pk).update(subtotal=0, tax_amount=0, grand_total=0)

        invoice = invoice_utils.create_from_job_card(self.job_card)

        self.assertEqual(invoice.grand_total, Decimal('1298.00'))

    def test_falls_back_to_approved_estimate(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle)
        lifecycle.transition(job_card, JobCard.STATUS_INSPECTION)
        estimates.create_or_revise(
            job_card,
            items=[{'name': 'Engine tune-up', 'unit_price': '2000'}],
            tax_rate=0,
        )
        estimates.approve(job_card)
        JobCard.objects.filter(pk=job_card.pk).update(subtotal=0, tax_amount=0, grand_total=0)

        invoice = invoice_utils.create_from_job_card(job_card)

        self.assertEqual(invoice.grand_total, Decimal('2000.00'))
        self.assertEqual(list(invoice.items.values_list('name', flat=True)), ['Engine tune-up'])
        self.assertTrue(job_card.items.get().is_approved)

    def test_prepayment_is_attached_to_new_invoice(self):
        record_manual_payment(self.job_card, amount=Decimal('500.00'), user=self.admin)

        invoice = invoice_utils.create_from_job_card(self.job_card)

        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal('500.00'))
        self.assertEqual(invoice.balance_amount, Decimal('798.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PARTIALLY_PAID)
        self.assertEqual(invoice.payments.count(), 1)


class InvoiceCancellationTests(TestCase):
    def setUp(self):
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)
        self.invoice = invoice_utils.create_from_job_card(self.job_card)

    def test_cancel_unpaid_invoice_allows_reissue(self):
        cancelled = invoice_utils.cancel_invoice(self.invoice, reason='Wrong customer')

        self.assertEqual(cancelled.status, Invoice.STATUS_CANCELLED)
        self.assertIsNotNone(cancelled.cancelled_at)
        reissued = invoice_utils.create_from_job_card(self.job_card)
        self.assertNotEqual(reissued.invoice_number, cancelled.invoice_number)
        with self.assertRaisesMessage(Conflict, "Invoice is already cancelled"):
            invoice_utils.cancel_invoice(cancelled)

    def test_cannot_cancel_paid_invoice(self):
        record_manual_payment(self.job_card, amount=Decimal('100.00'))

        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot cancel invoice with payments"):
            invoice_utils.cancel_invoice(self.invoice)

    def test_invoice_with_payments_summary(self):
        record_manual_payment(self.job_card, amount=Decimal('210.00'))
        self.invoice.refresh_from_db()

        summary = invoice_utils.invoice_with_payments(self.invoice)

        self.assertEqual(summary['total_paid'], Decimal('210.00'))
        self.assertEqual(summary['balance_amount'], Decimal('1000.00'))
        self.assertFalse(summary['is_paid'])
        self.assertEqual(len(summary['payments']), 1)


class InvoicePdfTests(TestCase):
    def setUp(self):
        customer, vehicle = make_customer()
        job_card = lifecycle.create_job_card(customer, vehicle, items=TWO_ITEMS, tax_rate=18)
        self.invoice = invoice_utils.create_from_job_card(job_card)

    def test_context_carries_branding_and_lines(self):
        context = pdf_utils.invoice_context(self.invoice)

        self.assertEqual(context['invoice'], self.invoice)
        self.assertEqual(len(context['items']), 2)
        self.assertEqual(context['customer']['name'], 'Asha Rao')
        self.assertEqual(pdf_utils.branding_context()['currency'], 'INR')

    def test_render_passes_html_to_weasyprint(self):
        with mock.patch.object(pdf_utils, 'render_html_to_pdf', return_value=b'%PDF-1.7') as render:
            with self.settings(INVOICE_PDF_CACHE_ENABLED=False):
                pdf = pdf_utils.render_invoice_pdf(self.invoice)

        self.assertEqual(pdf, b'%PDF-1.7')
        html = render.call_args[0][0]
        self.assertIn(self.invoice.invoice_number, html)
        self.assertIn('CGST @ 9.00%', html)


class MaintenanceCommandTests(TestCase):
    def setUp(self):
        customer, vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(customer, vehicle, items=TWO_ITEMS, tax_rate=10)
        self.invoice = invoice_utils.create_from_job_card(self.job_card)

    def test_reconcile_repairs_drifted_invoice(self):
        record_manual_payment(self.job_card, amount=Decimal('210.00'))
        Invoice.objects.filter(pk=self.invoice.pk).update(paid_amount=0, balance_amount=Decimal('1210.00'))

        out = StringIO()
        call_command('reconcile_invoices', stdout=out)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal('210.00'))
        self.assertEqual(self.invoice.balance_amount, Decimal('1000.00'))
        self.assertIn(self.invoice.invoice_number, out.getvalue())

    def test_recalculate_dry_run_leaves_rows_alone(self):
        JobCard.objects.filter(pk=self.job_card.pk).update(grand_total=0)

        call_command('recalculate_totals', '--dry-run', stdout=StringIO())

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.grand_total, Decimal('0.00'))
        call_command('recalculate_totals', stdout=StringIO())
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.grand_total, Decimal('1210.00'))
