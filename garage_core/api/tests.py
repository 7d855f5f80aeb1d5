from decimal import Decimal
from unittest import mock

from django.contrib.auth.models import User
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from workshop import estimates, invoice_utils, lifecycle
from workshop.models import Coupon, Customer, JobCard, Mechanic, Payment, Vehicle
from workshop.payments import record_manual_payment

ITEMS = [
    {'name': 'Oil change', 'quantity': 1, 'unit_price': '500'},
    {'name': 'Brake pads', 'item_type': 'part', 'quantity': 2, 'unit_price': '300'},
]


class WorkshopApiTestCase(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username='manager', password='pass1234', is_staff=True)
        self.customer_user = User.objects.create_user(username='asha', password='pass1234')
        self.customer = Customer.objects.create(name='Asha Rao', email='asha@example.com', portal_user=self.customer_user)
        self.vehicle = Vehicle.objects.create(customer=self.customer, registration_number='KA05MN4321')
        self.other_user = User.objects.create_user(username='bala', password='pass1234')
        self.other_customer = Customer.objects.create(name='Bala', portal_user=self.other_user)
        self.other_vehicle = Vehicle.objects.create(customer=self.other_customer, registration_number='KA03ZZ0001')

    def job_card(self, customer=None, vehicle=None, **kwargs):
        kwargs.setdefault('items', ITEMS)
        kwargs.setdefault('tax_rate', 10)
        return lifecycle.create_job_card(customer or self.customer, vehicle or self.vehicle, **kwargs)


class JobCardApiTests(WorkshopApiTestCase):
    def test_requires_authentication(self):
        response = self.client.get(reverse('job_cards'))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])

    def test_admin_creates_job_card(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse('job_cards'), {
            'customer': self.customer.pk,
            'vehicle': self.vehicle.pk,
            'items': ITEMS,
            'tax_rate': '10',
            'customer_complaints': ['Squeaking brakes'],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        billing = response.data['data']['billing']
        self.assertEqual(billing['subtotal'], '1100.00')
        self.assertEqual(billing['tax_amount'], '110.00')
        self.assertEqual(billing['grand_total'], '1210.00')
        self.assertEqual(len(response.data['data']['items']), 2)
        self.assertEqual(response.data['data']['status_history'][0]['status'], 'created')

    def test_customer_cannot_create_job_card(self):
        self.client.force_authenticate(self.customer_user)

        response = self.client.post(reverse('job_cards'), {'customer': self.customer.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], "Admin access required")

    def test_list_is_paginated_and_scoped(self):
        for _ in range(3):
            self.job_card()
        self.job_card(self.other_customer, self.other_vehicle)

        self.client.force_authenticate(self.customer_user)
        response = self.client.get(reverse('job_cards'), {'limit': 2})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']), 2)
        self.assertEqual(response.data['pagination'], {'page': 1, 'limit': 2, 'total': 3, 'pages': 2})

        self.client.force_authenticate(self.admin)
        response = self.client.get(reverse('job_cards'))
        self.assertEqual(response.data['pagination']['total'], 4)

    def test_other_customers_job_card_is_hidden(self):
        job_card = self.job_card(self.other_customer, self.other_vehicle)
        self.client.force_authenticate(self.customer_user)

        response = self.client.get(reverse('job_card_detail', args=[job_card.pk]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['message'], "Job card not found")

    def test_internal_notes_are_staff_only(self):
        job_card = self.job_card(internal_notes='Customer haggles')

        self.client.force_authenticate(self.customer_user)
        response = self.client.get(reverse('job_card_detail', args=[job_card.pk]))
        self.assertNotIn('internal_notes', response.data['data'])

        self.client.force_authenticate(self.admin)
        response = self.client.get(reverse('job_card_detail', args=[job_card.pk]))
        self.assertEqual(response.data['data']['internal_notes'], 'Customer haggles')

    def test_illegal_transition_returns_error_envelope(self):
        job_card = self.job_card()
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('job_card_set_status', args=[job_card.pk]), {'status': 'delivered'}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {
            'success': False,
            'message': "Job card must be marked ready before it can be delivered",
            'errors': None,
        })

    def test_assigned_mechanic_updates_status(self):
        job_card = self.job_card()
        mechanic_user = User.objects.create_user(username='ravi', password='pass1234')
        mechanic = Mechanic.objects.create(name='Ravi', portal_user=mechanic_user)
        self.client.force_authenticate(mechanic_user)

        url = reverse('job_card_set_status', args=[job_card.pk])
        response = self.client.post(url, {'status': 'inspection'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        lifecycle.assign_mechanics(job_card, [mechanic.pk])
        response = self.client.post(url, {'status': 'inspection', 'note': 'Started'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'inspection')

    def test_billing_update_and_payment_summary(self):
        job_card = self.job_card()
        self.client.force_authenticate(self.admin)

        response = self.client.patch(
            reverse('job_card_update_billing', args=[job_card.pk]),
            {'discount': '100', 'discount_reason': 'Festive offer'},
            format='json',
        )
        self.assertEqual(response.data['data']['billing']['grand_total'], '1100.00')

        response = self.client.get(reverse('job_card_payment_summary', args=[job_card.pk]))
        self.assertEqual(response.data['data'], {
            'grand_total': '1100.00',
            'total_paid': '0.00',
            'balance_due': '1100.00',
            'completed_payments_count': 0,
        })

    def test_reads_repair_stale_zero_total(self):
        job_card = self.job_card()
        JobCard.objects.filter(pk=job_card.pk).update(subtotal=0, tax_amount=0, grand_total=0)
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('job_card_payment_summary', args=[job_card.pk]))
        self.assertEqual(response.data['data']['balance_due'], '1210.00')

        response = self.client.get(reverse('job_card_detail', args=[job_card.pk]))
        self.assertEqual(response.data['data']['billing']['grand_total'], '1210.00')

    def test_validation_error_envelope(self):
        job_card = self.job_card()
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse('job_card_payments', args=[job_card.pk]), {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertIn('amount', response.data['errors'])


class EstimateApiTests(WorkshopApiTestCase):
    def setUp(self):
        super().setUp()
        self.job = self.job_card(items=[])
        lifecycle.transition(self.job, JobCard.STATUS_INSPECTION, self.admin)

    def test_admin_sends_estimate_and_customer_approves(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(reverse('job_card_estimate', args=[self.job.pk]), {
            'items': [{'name': 'Timing belt', 'unit_price': '2000'}],
            'tax_rate': '0',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['grand_total'], '2000.00')

        self.client.force_authenticate(self.customer_user)
        response = self.client.post(reverse('job_card_estimate_approve', args=[self.job.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'APPROVED')

        response = self.client.post(reverse('job_card_estimate_approve', args=[self.job.pk]))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        self.job.refresh_from_db()
        self.assertEqual(self.job.grand_total, Decimal('2000.00'))
        self.assertEqual(self.job.status, JobCard.STATUS_APPROVED)

    def test_estimate_history(self):
        estimates.create_or_revise(self.job, items=[{'name': 'A', 'unit_price': '100'}])
        estimates.create_or_revise(self.job, items=[{'name': 'B', 'unit_price': '90'}])
        self.client.force_authenticate(self.customer_user)

        response = self.client.get(reverse('job_card_estimate', args=[self.job.pk]))

        self.assertEqual(response.data['data']['estimate']['version'], 2)
        self.assertEqual([e['version'] for e in response.data['data']['history']], [1])


class CouponApiTests(WorkshopApiTestCase):
    def test_customer_cannot_manage_coupons(self):
        self.client.force_authenticate(self.customer_user)

        response = self.client.post(reverse('coupon_list'), {'code': 'X', 'type': 'flat', 'value': 10}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_validate_and_apply(self):
        job_card = self.job_card()
        Coupon.objects.create(code='FLAT100', discount_type=Coupon.TYPE_FLAT, value=Decimal('100'),
                              min_invoice_amount=Decimal('1500'))
        self.client.force_authenticate(self.customer_user)

        response = self.client.post(
            reverse('job_card_coupon_validate', args=[job_card.pk]), {'code': 'flat100'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['data']['valid'])
        self.assertEqual(response.data['message'], "Minimum order amount of ₹1500.00 required")

        response = self.client.post(
            reverse('job_card_coupon_apply', args=[job_card.pk]), {'code': 'flat100'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_admin_creates_and_toggles_coupon(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse('coupon_list'), {
            'code': 'diwali', 'discountType': 'PERCENT', 'value': '10', 'isPublic': True,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        coupon_id = response.data['data']['id']

        response = self.client.post(reverse('coupon_toggle', args=[coupon_id]))
        self.assertEqual(response.data['message'], "Coupon deactivated")

        self.client.force_authenticate(self.customer_user)
        response = self.client.get(reverse('coupon_public'))
        self.assertEqual(response.data['data'], [])


class InvoiceApiTests(WorkshopApiTestCase):
    def setUp(self):
        super().setUp()
        self.job = self.job_card()

    def test_customer_fetches_invoice_on_demand(self):
        self.client.force_authenticate(self.customer_user)

        response = self.client.get(reverse('job_card_invoice', args=[self.job.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['grand_total'], '1210.00')
        self.assertEqual(response.data['data']['status'], 'ISSUED')

    def test_other_customer_gets_forbidden(self):
        invoice = invoice_utils.create_from_job_card(self.job)
        self.client.force_authenticate(self.other_user)

        response = self.client.get(reverse('invoice_detail', args=[invoice.pk]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], "You do not have access to this invoice")

    def test_pdf_download(self):
        invoice = invoice_utils.create_from_job_card(self.job)
        self.client.force_authenticate(self.customer_user)

        with mock.patch('api.views.render_invoice_pdf', return_value=b'%PDF-1.7') as render:
            response = self.client.get(reverse('invoice_pdf', args=[invoice.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertIn(invoice.invoice_number, response['Content-Disposition'])
        self.assertEqual(response.content, b'%PDF-1.7')
        render.assert_called_once()

    def test_manual_payment_and_invoice_detail(self):
        invoice = invoice_utils.create_from_job_card(self.job)
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse('job_card_payments', args=[self.job.pk]), {
            'amount': '1210.00', 'payment_method': 'upi', 'transaction_id': 'UPI123',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get(reverse('invoice_detail', args=[invoice.pk]))
        self.assertEqual(response.data['data']['invoice']['status'], 'PAID')
        self.assertEqual(response.data['data']['balance_amount'], '0.00')
        self.assertTrue(response.data['data']['is_paid'])

    def test_admin_marks_pending_payment_failed(self):
        invoice = invoice_utils.create_from_job_card(self.job)
        payment = record_manual_payment(self.job, amount=Decimal('500.00'), status=Payment.STATUS_PENDING)
        self.client.force_authenticate(self.admin)

        response = self.client.post(reverse('payment_fail', args=[payment.pk]), {'reason': 'Cheque bounced'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], Payment.STATUS_FAILED)
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal('0.00'))

        response = self.client.post(reverse('payment_fail', args=[payment.pk]), format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_verify_payment_with_bad_signature(self):
        invoice = invoice_utils.create_from_job_card(self.job)
        self.client.force_authenticate(self.customer_user)

        with self.settings(RAZORPAY_KEY_SECRET='secret'):
            response = self.client.post(reverse('invoice_verify_payment', args=[invoice.pk]), {
                'razorpay_order_id': 'order_1',
                'razorpay_payment_id': 'pay_1',
                'razorpay_signature': 'forged',
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], "Payment verification failed")


class RefundApiTests(WorkshopApiTestCase):
    def setUp(self):
        super().setUp()
        self.job = self.job_card()
        invoice_utils.create_from_job_card(self.job)
        self.payment = record_manual_payment(self.job, amount=Decimal('1210.00'))

    def test_customer_requests_and_admin_processes_refund(self):
        self.client.force_authenticate(self.customer_user)
        response = self.client.post(reverse('refund_list'), {
            'payment': self.payment.pk, 'amount': '210.00', 'reason': 'Brake pads not replaced',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        refund_id = response.data['data']['id']

        self.client.force_authenticate(self.admin)
        self.client.post(reverse('refund_approve', args=[refund_id]), {'remarks': 'Verified'}, format='json')
        response = self.client.post(reverse('refund_process', args=[refund_id]), {}, format='json')
        self.assertEqual(response.data['data']['status'], 'PROCESSED')

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.paid_amount, Decimal('1000.00'))
        self.assertEqual(self.payment.status, Payment.STATUS_COMPLETED)

    def test_customer_cannot_refund_someone_elses_payment(self):
        self.client.force_authenticate(self.other_user)

        response = self.client.post(reverse('refund_list'), {
            'payment': self.payment.pk, 'amount': '10.00', 'reason': 'Mine',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class DashboardApiTests(WorkshopApiTestCase):
    def test_stats_for_staff(self):
        self.job_card()
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('dashboard_stats'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['total_active'], 1)
        self.assertEqual(response.data['data']['revenue_collected'], '0.00')

    def test_stats_hidden_from_customers(self):
        self.client.force_authenticate(self.customer_user)

        response = self.client.get(reverse('dashboard_stats'))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
