from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from . import estimates, lifecycle
from .exceptions import BusinessRuleViolation, Conflict, NotFound
from .models import Estimate, JobCard, Notification
from .tests import make_customer


class EstimateWorkflowTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(
            username='advisor', password='pass1234', email='advisor@example.com', is_staff=True,
        )
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, user=self.admin)
        lifecycle.transition(self.job_card, JobCard.STATUS_INSPECTION, self.admin)

    def _estimate(self, price='2000', **kwargs):
        kwargs.setdefault('tax_rate', 0)
        return estimates.create_or_revise(
            self.job_card,
            items=[{'name': 'Clutch overhaul', 'quantity': 1, 'unit_price': price}],
            user=self.admin,
            **kwargs,
        )

    def test_first_estimate_moves_job_to_awaiting_approval(self):
        estimate = self._estimate()

        self.job_card.refresh_from_db()
        self.assertEqual(estimate.version, 1)
        self.assertEqual(estimate.status, Estimate.STATUS_PENDING_APPROVAL)
        self.assertEqual(estimate.grand_total, Decimal('2000.00'))
        self.assertEqual(estimate.items[0]['total'], '2000.00')
        self.assertEqual(self.job_card.status, JobCard.STATUS_AWAITING_APPROVAL)
        self.assertEqual(self.job_card.visible_status, JobCard.STATUS_AWAITING_APPROVAL)

    def test_estimate_uses_default_tax_rate(self):
        estimate = estimates.create_or_revise(
            self.job_card,
            items=[{'name': 'Battery', 'item_type': 'part', 'unit_price': '1000'}],
        )

        self.assertEqual(estimate.tax_rate, Decimal('18'))
        self.assertEqual(estimate.grand_total, Decimal('1180.00'))

    def test_approval_copies_totals_and_approves_job(self):
        self._estimate()

        estimate = estimates.approve(self.job_card, self.admin)

        self.job_card.refresh_from_db()
        self.assertEqual(estimate.status, Estimate.STATUS_APPROVED)
        self.assertIsNotNone(estimate.approved_at)
        self.assertEqual(self.job_card.grand_total, Decimal('2000.00'))
        self.assertEqual(self.job_card.status, JobCard.STATUS_APPROVED)
        self.assertEqual(self.job_card.status_history.last().note, "Customer approved cost estimate")

    def test_second_approval_conflicts(self):
        self._estimate()
        estimates.approve(self.job_card, self.admin)

        with self.assertRaisesMessage(Conflict, "Estimate has already been approved"):
            estimates.approve(self.job_card, self.admin)
        with self.assertRaises(Conflict):
            estimates.reject(self.job_card, "Too costly", self.admin)

    def test_revision_supersedes_pending_version(self):
        first = self._estimate('2000')
        second = self._estimate('1800', notes='Reused clutch plate')

        first.refresh_from_db()
        self.assertEqual(first.status, Estimate.STATUS_SUPERSEDED)
        self.assertIsNotNone(first.archived_at)
        self.assertEqual(second.version, 2)
        self.assertEqual(self.job_card.current_estimate, second)
        self.assertEqual(list(self.job_card.estimate_history), [first])
        self.assertEqual(Estimate.objects.filter(status=Estimate.STATUS_PENDING_APPROVAL).count(), 1)

    def test_rejection_archives_estimate_and_allows_revision(self):
        self._estimate()

        rejected = estimates.reject(self.job_card, "Too costly", self.admin)

        self.assertEqual(rejected.status, Estimate.STATUS_REJECTED)
        self.assertEqual(rejected.rejection_reason, "Too costly")
        self.assertIsNotNone(rejected.archived_at)
        revised = self._estimate('1500')
        self.assertEqual(revised.version, 2)

    def test_approved_estimate_cannot_be_revised(self):
        self._estimate()
        estimates.approve(self.job_card, self.admin)

        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot modify an approved estimate"):
            self._estimate('2500')

    def test_expired_estimate_cannot_be_approved(self):
        self._estimate(expires_at=timezone.now() - timedelta(hours=1))

        with self.assertRaisesMessage(BusinessRuleViolation, "This estimate has expired"):
            estimates.approve(self.job_card, self.admin)
        self.job_card.refresh_from_db()
        self.assertEqual(self.job_card.status, JobCard.STATUS_AWAITING_APPROVAL)

    def test_no_estimate_to_approve(self):
        with self.assertRaisesMessage(NotFound, "No estimate available for this job card"):
            estimates.approve(self.job_card, self.admin)

    def test_cancelled_job_rejects_new_estimate(self):
        lifecycle.transition(self.job_card, JobCard.STATUS_CANCELLED, self.admin)

        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot create estimate for completed or cancelled jobs"):
            self._estimate()

    def test_decisions_notify_customer_and_admins(self):
        with self.captureOnCommitCallbacks(execute=True):
            estimate = self._estimate()
        with self.captureOnCommitCallbacks(execute=True):
            estimates.approve(self.job_card, self.admin)

        estimate.refresh_from_db()
        self.assertIsNotNone(estimate.notification_sent_at)
        self.assertTrue(
            Notification.objects.filter(customer=self.customer, notification_type=Notification.TYPE_ESTIMATE).exists()
        )
        self.assertTrue(
            Notification.objects.filter(
                recipient_user=self.admin,
                notification_type=Notification.TYPE_ESTIMATE_DECISION,
            ).exists()
        )
