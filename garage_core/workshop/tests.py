from decimal import Decimal
from unittest import mock

from django.contrib.admin.sites import AdminSite
from django.contrib.auth.models import User
from django.test import RequestFactory, TestCase

from . import billing, lifecycle, notifications
from .admin import EstimateAdmin, JobCardAdmin
from .exceptions import BusinessRuleViolation, Forbidden, NotFound
from .models import Customer, Estimate, JobCard, JobCardStatusHistory, JobItem, Mechanic, Notification, Vehicle
from .payments import record_manual_payment


def make_customer(name='Asha Rao', email='asha@example.com'):
    customer = Customer.objects.create(name=name, email=email, phone_number='9800000001')
    vehicle = Vehicle.objects.create(
        customer=customer,
        registration_number='KA01AB1234',
        brand='Maruti',
        model='Swift',
        year=2019,
    )
    return customer, vehicle


TWO_ITEMS = [
    {'name': 'Oil change', 'quantity': 1, 'unit_price': '500'},
    {'name': 'Brake pads', 'item_type': 'part', 'quantity': 2, 'unit_price': '300'},
]


class BillingCalculatorTests(TestCase):
    def test_compute_totals_applies_discount_before_tax(self):
        totals = billing.compute_totals([Decimal('1000.00')], discount=Decimal('100'), tax_rate=Decimal('18'))

        self.assertEqual(totals['subtotal'], Decimal('1000.00'))
        self.assertEqual(totals['taxable_amount'], Decimal('900.00'))
        self.assertEqual(totals['tax_amount'], Decimal('162.00'))
        self.assertEqual(totals['grand_total'], Decimal('1062.00'))

    def test_discount_larger_than_subtotal_floors_at_zero(self):
        totals = billing.compute_totals([Decimal('50.00')], discount=Decimal('80'), tax_rate=Decimal('18'))

        self.assertEqual(totals['taxable_amount'], Decimal('0.00'))
        self.assertEqual(totals['tax_amount'], Decimal('0.00'))
        self.assertEqual(totals['grand_total'], Decimal('0.00'))

    def test_normalize_item_clamps_bad_values(self):
        quantity, unit_price, discount_percent, total = billing.normalize_item('0', '-25', '150')

        self.assertEqual(quantity, Decimal('1'))
        self.assertEqual(unit_price, Decimal('0.00'))
        self.assertEqual(discount_percent, Decimal('100'))
        self.assertEqual(total, Decimal('0.00'))

    def test_line_discount_rounds_half_up(self):
        *_, total = billing.normalize_item('3', '33.35', '10')

        # 100.05 less 10.005
        self.assertEqual(total, Decimal('90.05'))

    def test_normalize_payload_accepts_alternate_keys(self):
        data = billing.normalize_item_payload({'description': 'Wheel alignment', 'unitPrice': '750', 'type': 'bogus'})

        self.assertEqual(data['name'], 'Wheel alignment')
        self.assertEqual(data['unit_price'], Decimal('750'))
        self.assertEqual(data['item_type'], 'service')


class JobCardBillingTests(TestCase):
    def setUp(self):
        self.customer, self.vehicle = make_customer()

    def test_two_items_with_ten_percent_tax(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)

        job_card.refresh_from_db()
        self.assertEqual(job_card.subtotal, Decimal('1100.00'))
        self.assertEqual(job_card.tax_amount, Decimal('110.00'))
        self.assertEqual(job_card.grand_total, Decimal('1210.00'))
        self.assertTrue(job_card.job_number.startswith('JC'))
        self.assertEqual(job_card.vehicle_snapshot['registration_number'], 'KA01AB1234')

    def test_recalculate_is_idempotent(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)

        first = billing.recalculate(job_card)
        second = billing.recalculate(job_card)

        self.assertEqual(first, second)
        self.assertEqual(job_card.grand_total, Decimal('1210.00'))

    def test_update_billing_recalculates(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)

        billing.update_billing(job_card, discount=Decimal('100'), discount_reason='Loyalty')

        job_card.refresh_from_db()
        self.assertEqual(job_card.discount_amount, Decimal('100.00'))
        self.assertEqual(job_card.discount_reason, 'Loyalty')
        self.assertEqual(job_card.grand_total, Decimal('1100.00'))

    def test_ensure_fresh_repairs_stale_zero_total(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)
        JobCard.objects.filter(pk=job_card.pk).update(grand_total=0, subtotal=0, tax_amount=0)
        job_card.refresh_from_db()

        self.assertTrue(billing.ensure_fresh(job_card))
        self.assertEqual(job_card.grand_total, Decimal('1210.00'))
        self.assertFalse(billing.ensure_fresh(job_card))

    def test_removing_an_item_reprices(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)
        brake_pads = job_card.items.get(name='Brake pads')

        lifecycle.remove_item(job_card, brake_pads.pk)

        job_card.refresh_from_db()
        self.assertEqual(job_card.subtotal, Decimal('500.00'))
        self.assertEqual(job_card.grand_total, Decimal('550.00'))
        with self.assertRaises(NotFound):
            lifecycle.remove_item(job_card, brake_pads.pk)


class JobCardLifecycleTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username='frontdesk', password='pass1234', is_staff=True)
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(
            self.customer, self.vehicle, items=TWO_ITEMS, user=self.admin, tax_rate=10,
        )

    def _walk(self, *statuses):
        for status in statuses:
            lifecycle.transition(self.job_card, status, self.admin)

    def test_creation_writes_first_history_entry(self):
        history = list(self.job_card.status_history.all())

        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].status, JobCard.STATUS_CREATED)
        self.assertEqual(history[0].changed_by, self.admin)

    def test_each_transition_appends_history(self):
        self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS)

        statuses = list(self.job_card.status_history.values_list('status', flat=True))
        self.assertEqual(statuses, ['created', 'inspection', 'approved', 'in-progress'])
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_IN_PROGRESS)

    def test_same_status_is_a_no_op(self):
        lifecycle.transition(self.job_card, JobCard.STATUS_CREATED, self.admin)

        self.assertEqual(JobCardStatusHistory.objects.filter(job_card=self.job_card).count(), 1)

    def test_illegal_transition_is_rejected(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot change status from created to in-progress"):
            lifecycle.transition(self.job_card, JobCard.STATUS_IN_PROGRESS, self.admin)

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(BusinessRuleViolation):
            lifecycle.transition(self.job_card, 'teleported', self.admin)

    def test_awaiting_approval_needs_customer_decision(self):
        self._walk(JobCard.STATUS_AWAITING_APPROVAL)

        with self.assertRaisesMessage(BusinessRuleViolation, "Job card is awaiting customer approval"):
            lifecycle.transition(self.job_card, JobCard.STATUS_APPROVED, self.admin)

        lifecycle.transition(self.job_card, JobCard.STATUS_IN_PROGRESS, self.admin, "Approved by phone", override=True)
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_IN_PROGRESS)

    def test_delivery_requires_ready(self):
        self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS,
                   JobCard.STATUS_QUALITY_CHECK)

        with self.assertRaisesMessage(BusinessRuleViolation, "Job card must be marked ready before it can be delivered"):
            lifecycle.transition(self.job_card, JobCard.STATUS_DELIVERED, self.admin)

    def test_delivery_requires_full_payment(self):
        self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS,
                   JobCard.STATUS_QUALITY_CHECK, JobCard.STATUS_READY)

        with self.assertRaisesMessage(BusinessRuleViolation, "Balance due: ₹1210.00"):
            lifecycle.transition(self.job_card, JobCard.STATUS_DELIVERED, self.admin)

        record_manual_payment(self.job_card, amount=Decimal('1210.00'), user=self.admin)
        lifecycle.transition(self.job_card, JobCard.STATUS_DELIVERED, self.admin)

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_DELIVERED)
        summary = lifecycle.payment_summary(self.job_card)
        self.assertEqual(summary['balance_due'], Decimal('0.00'))
        self.assertEqual(summary['completed_payments_count'], 1)

    def test_delivery_recomputes_stale_zero_total(self):
        job_card = lifecycle.create_job_card(self.customer, self.vehicle, user=self.admin, tax_rate=10)
        for status in (JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS,
                       JobCard.STATUS_QUALITY_CHECK, JobCard.STATUS_READY):
            lifecycle.transition(job_card, status, self.admin)
        # Item written without going through the calculator
        JobItem.objects.create(job_card=job_card, name='Clutch plate', unit_price=Decimal('1000.00'))

        with self.assertRaisesMessage(BusinessRuleViolation, "Balance due: ₹1100.00"):
            lifecycle.transition(job_card, JobCard.STATUS_DELIVERED, self.admin)

    def test_ready_notifies_customer_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS,
                       JobCard.STATUS_QUALITY_CHECK, JobCard.STATUS_READY)

        notification = Notification.objects.get(
            customer=self.customer, notification_type=Notification.TYPE_VEHICLE_READY,
        )
        self.assertIn('KA01AB1234', notification.body)

    def test_failed_notification_keeps_status_change(self):
        self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS,
                   JobCard.STATUS_QUALITY_CHECK)

        with mock.patch.object(notifications, 'send_vehicle_ready', side_effect=RuntimeError('SMTP down')):
            with self.assertLogs('workshop.notifications', level='ERROR') as logs:
                with self.captureOnCommitCallbacks(execute=True):
                    lifecycle.transition(self.job_card, JobCard.STATUS_READY, self.admin)

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_READY)
        self.assertEqual(self.job_card.status_history.last().status, JobCard.STATUS_READY)
        self.assertEqual(str(logs.records[0].exc_info[1]), 'SMTP down')
        self.assertFalse(Notification.objects.filter(notification_type=Notification.TYPE_VEHICLE_READY).exists())

    def test_terminal_status_is_final(self):
        self._walk(JobCard.STATUS_CANCELLED)

        with self.assertRaisesMessage(BusinessRuleViolation, "Job card is already cancelled"):
            lifecycle.transition(self.job_card, JobCard.STATUS_INSPECTION, self.admin)
        with self.assertRaises(BusinessRuleViolation):
            lifecycle.add_item(self.job_card, {'name': 'Wash', 'unit_price': 100})

    def test_adding_items_mid_job_asks_for_approval(self):
        self._walk(JobCard.STATUS_INSPECTION, JobCard.STATUS_APPROVED, JobCard.STATUS_IN_PROGRESS)

        lifecycle.add_item(self.job_card, {'name': 'Coolant top-up', 'unit_price': '150'}, self.admin)

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_AWAITING_APPROVAL)
        self.assertEqual(self.job_card.subtotal, Decimal('1250.00'))

    def test_partial_item_approval_bills_only_approved_items(self):
        self._walk(JobCard.STATUS_AWAITING_APPROVAL)
        oil, pads = list(self.job_card.items.order_by('id'))

        lifecycle.approve_items(self.job_card, [oil.pk])
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.subtotal, Decimal('500.00'))
        self.assertEqual(self.job_card.grand_total, Decimal('550.00'))
        self.assertEqual(self.job_card.status, JobCard.STATUS_AWAITING_APPROVAL)

        lifecycle.approve_items(self.job_card, [pads.pk])
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.grand_total, Decimal('1210.00'))
        self.assertEqual(self.job_card.status, JobCard.STATUS_APPROVED)

    def test_approving_items_outside_approval_stage_fails(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Job card is not awaiting approval"):
            lifecycle.approve_items(self.job_card, [self.job_card.items.first().pk])

    def test_update_details_and_media(self):
        lifecycle.update_details(self.job_card, odometer_reading=42000, diagnostics='Worn pads', fuel_level=None)
        urls = lifecycle.add_media(self.job_card, 'before', ['https://cdn.example.com/a.jpg'] * 2)

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.odometer_reading, 42000)
        self.assertEqual(self.job_card.diagnostics, 'Worn pads')
        self.assertEqual(urls, ['https://cdn.example.com/a.jpg'])
        with self.assertRaises(BusinessRuleViolation):
            lifecycle.add_media(self.job_card, 'audio', ['https://cdn.example.com/a.mp3'])

    def test_create_from_appointment(self):
        job_card = lifecycle.create_from_appointment({
            'appointment_number': 'APT-1001',
            'customer': self.customer,
            'vehicle': self.vehicle,
            'services': [{'name': 'General service', 'price': '2500'}],
            'customer_notes': 'Noise from front left wheel',
        })

        self.assertEqual(job_card.appointment_reference, 'APT-1001')
        self.assertEqual(job_card.customer_complaints, ['Noise from front left wheel'])
        self.assertEqual(job_card.items.get().item_type, 'labour')
        self.assertEqual(job_card.status_history.get().note, 'Auto-created from appointment APT-1001')

    def test_vehicle_must_belong_to_customer(self):
        other, _ = make_customer(name='Bala', email='bala@example.com')

        with self.assertRaises(NotFound):
            lifecycle.create_job_card(other, self.vehicle)


class MechanicAssignmentTests(TestCase):
    def setUp(self):
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS)
        self.user = User.objects.create_user(username='ravi', password='pass1234', email='ravi@example.com')
        self.mechanic = Mechanic.objects.create(name='Ravi', portal_user=self.user)

    def test_unassigned_mechanic_cannot_change_status(self):
        with self.assertRaisesMessage(Forbidden, "You are not assigned to this job card"):
            lifecycle.mechanic_transition(self.mechanic, self.job_card, JobCard.STATUS_INSPECTION)

    def test_assigned_mechanic_can_change_status(self):
        lifecycle.assign_mechanics(self.job_card, [self.mechanic.pk, str(self.mechanic.pk)])
        lifecycle.mechanic_transition(self.mechanic, self.job_card, JobCard.STATUS_INSPECTION, "Started")

        entry = self.job_card.status_history.last()
        self.assertEqual(entry.status, JobCard.STATUS_INSPECTION)
        self.assertEqual(entry.changed_by, self.user)
        self.assertEqual(self.job_card.mechanics.count(), 1)

    def test_assignment_notifies_mechanic_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            lifecycle.assign_mechanics(self.job_card, [self.mechanic.pk])

        notification = self.user.workshop_notifications.get()
        self.assertIn(self.job_card.job_number, notification.title)

    def test_inactive_mechanic_is_rejected(self):
        self.mechanic.is_active = False
        self.mechanic.save()

        with self.assertRaisesMessage(BusinessRuleViolation, "One or more mechanic ids are invalid or inactive"):
            lifecycle.assign_mechanics(self.job_card, [self.mechanic.pk])


class WorkshopAdminTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser(username='owner', password='pass1234')
        self.request = RequestFactory().post('/admin/')
        self.request.user = self.admin
        self.site = AdminSite()
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(
            self.customer, self.vehicle, items=[{'name': 'Clutch overhaul', 'unit_price': '1000'}], tax_rate=10,
        )

    def test_discount_edit_recalculates_billing(self):
        model_admin = JobCardAdmin(JobCard, self.site)
        job_card = JobCard.objects.get(pk=self.job_card.pk)
        job_card.discount_amount = Decimal('500.00')

        model_admin.save_model(self.request, job_card, form=None, change=True)

        job_card.refresh_from_db()
        self.assertEqual(job_card.tax_amount, Decimal('50.00'))
        self.assertEqual(job_card.grand_total, Decimal('550.00'))

    def test_inline_item_edit_recalculates_billing(self):
        model_admin = JobCardAdmin(JobCard, self.site)
        JobItem.objects.create(job_card=self.job_card, name='Wiper blades', quantity=2, unit_price=Decimal('250.00'))
        form = mock.Mock(instance=self.job_card)

        model_admin.save_related(self.request, form, [], change=True)

        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.subtotal, Decimal('1500.00'))
        self.assertEqual(self.job_card.grand_total, Decimal('1650.00'))

    def test_estimates_are_read_only(self):
        model_admin = EstimateAdmin(Estimate, self.site)

        readonly = model_admin.get_readonly_fields(self.request)
        for field in ('discount_amount', 'discount_reason', 'tax_rate', 'notes', 'expires_at', 'grand_total'):
            self.assertIn(field, readonly)
        self.assertFalse(model_admin.has_add_permission(self.request))
        self.assertFalse(model_admin.has_delete_permission(self.request))


class JobCardStatsTests(TestCase):
    def test_stats_count_active_cards(self):
        customer, vehicle = make_customer()
        lifecycle.create_job_card(customer, vehicle, items=TWO_ITEMS)
        cancelled = lifecycle.create_job_card(customer, vehicle)
        lifecycle.transition(cancelled, JobCard.STATUS_CANCELLED)

        stats = lifecycle.job_card_stats()

        self.assertEqual(stats['total_active'], 1)
        self.assertEqual(stats['status_counts'], {'created': 1, 'cancelled': 1})
        self.assertEqual(stats['revenue_collected'], Decimal('0.00'))
