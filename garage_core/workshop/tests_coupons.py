from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from . import coupons, lifecycle
from .exceptions import BusinessRuleViolation, Conflict, NotFound
from .invoice_utils import create_from_job_card
from .models import Coupon, CouponUsage
from .tests import TWO_ITEMS, make_customer


class CouponValidationTests(TestCase):
    def setUp(self):
        self.customer, self.vehicle = make_customer()
        self.small_job = lifecycle.create_job_card(
            self.customer, self.vehicle, items=[{'name': 'Puncture repair', 'unit_price': '100'}], tax_rate=0,
        )

    def test_minimum_amount_blocks_coupon(self):
        Coupon.objects.create(code='FLAT100', discount_type=Coupon.TYPE_FLAT, value=Decimal('100'),
                              min_invoice_amount=Decimal('150'))

        result = coupons.validate('flat100', self.small_job)

        self.assertEqual(result, {'valid': False, 'reason': "Minimum order amount of ₹150.00 required"})
        with self.assertRaisesMessage(BusinessRuleViolation, "Minimum order amount of ₹150.00 required"):
            coupons.apply('FLAT100', self.small_job)
        self.small_job.refresh_from_db()
        self.assertEqual(self.small_job.discount_amount, Decimal('0.00'))
        self.assertEqual(self.small_job.coupon_code, '')
        self.assertFalse(CouponUsage.objects.exists())

    def test_checks_run_in_order(self):
        now = timezone.now()
        cases = [
            (dict(is_active=False), "Coupon is not active"),
            (dict(valid_from=now + timedelta(days=1)), "Coupon is not valid yet"),
            (dict(valid_till=now - timedelta(days=1)), "Coupon has expired"),
            (dict(usage_limit_total=2, used_count=2), "Coupon usage limit reached"),
        ]
        for index, (fields, reason) in enumerate(cases):
            coupon = Coupon.objects.create(
                code=f'CASE{index}', discount_type=Coupon.TYPE_FLAT, value=Decimal('10'), **fields,
            )
            ok, message = coupons.can_be_used_by(coupon, self.customer, Decimal('100'))
            self.assertFalse(ok)
            self.assertEqual(message, reason)

    def test_unknown_code(self):
        with self.assertRaisesMessage(NotFound, "Coupon not found"):
            coupons.validate('NOPE', self.small_job)

    def test_percentage_discount_is_capped(self):
        coupon = Coupon(code='TENPC', discount_type=Coupon.TYPE_PERCENTAGE, value=Decimal('10'),
                        max_discount_amount=Decimal('50'))

        self.assertEqual(coupons.calculate_discount(coupon, Decimal('1100')), Decimal('50.00'))
        self.assertEqual(coupons.calculate_discount(coupon, Decimal('300')), Decimal('30.00'))

    def test_zero_cap_means_uncapped(self):
        coupon = Coupon(code='FIFTEEN', discount_type=Coupon.TYPE_PERCENTAGE, value=Decimal('15'),
                        max_discount_amount=Decimal('0'))

        self.assertEqual(coupons.calculate_discount(coupon, Decimal('1100')), Decimal('165.00'))

    def test_flat_discount_never_exceeds_order(self):
        coupon = Coupon(code='BIG', discount_type=Coupon.TYPE_FLAT, value=Decimal('500'))

        self.assertEqual(coupons.calculate_discount(coupon, Decimal('120')), Decimal('120.00'))


class CouponApplicationTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username='desk', password='pass1234', is_staff=True)
        self.customer, self.vehicle = make_customer()
        self.job_card = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS, tax_rate=10)
        self.coupon = Coupon.objects.create(code='SAVE100', discount_type=Coupon.TYPE_FLAT, value=Decimal('100'))

    def test_apply_writes_discount_through_billing(self):
        result = coupons.apply('save100', self.job_card, self.admin)

        self.job_card.refresh_from_db()
        self.coupon.refresh_from_db()
        self.assertEqual(result['discount_amount'], Decimal('100.00'))
        self.assertEqual(self.job_card.discount_amount, Decimal('100.00'))
        self.assertEqual(self.job_card.discount_reason, 'COUPON:SAVE100')
        self.assertEqual(self.job_card.coupon_code, 'SAVE100')
        self.assertEqual(self.job_card.grand_total, Decimal('1100.00'))
        self.assertEqual(self.coupon.used_count, 1)

    def test_reapplying_same_coupon_is_idempotent(self):
        coupons.apply('SAVE100', self.job_card)
        coupons.apply('SAVE100', self.job_card)

        self.coupon.refresh_from_db()
        self.assertEqual(self.coupon.used_count, 1)
        self.assertEqual(CouponUsage.objects.filter(job_card=self.job_card).count(), 1)

    def test_second_code_is_rejected(self):
        Coupon.objects.create(code='OTHER', discount_type=Coupon.TYPE_FLAT, value=Decimal('50'))
        coupons.apply('SAVE100', self.job_card)

        with self.assertRaisesMessage(BusinessRuleViolation, "A coupon is already applied to this invoice"):
            coupons.apply('OTHER', self.job_card)

    def test_total_usage_limit(self):
        self.coupon.usage_limit_total = 1
        self.coupon.save()
        other_customer, other_vehicle = make_customer(name='Kiran', email='kiran@example.com')
        other_job = lifecycle.create_job_card(other_customer, other_vehicle, items=TWO_ITEMS)
        coupons.apply('SAVE100', self.job_card)

        with self.assertRaisesMessage(BusinessRuleViolation, "Coupon usage limit reached"):
            coupons.apply('SAVE100', other_job)

    def test_per_customer_limit(self):
        second_job = lifecycle.create_job_card(self.customer, self.vehicle, items=TWO_ITEMS)
        coupons.apply('SAVE100', self.job_card)

        with self.assertRaisesMessage(BusinessRuleViolation, "You have already used this coupon"):
            coupons.apply('SAVE100', second_job)

    def test_coupon_after_invoice_is_rejected(self):
        create_from_job_card(self.job_card, self.admin)

        with self.assertRaisesMessage(BusinessRuleViolation, "Cannot apply a coupon after the invoice has been generated"):
            coupons.apply('SAVE100', self.job_card)

    def test_validate_leaves_billing_untouched(self):
        result = coupons.validate('SAVE100', self.job_card)

        self.job_card.refresh_from_db()
        self.assertTrue(result['valid'])
        self.assertEqual(result['discount_amount'], Decimal('100.00'))
        self.assertEqual(self.job_card.discount_amount, Decimal('0.00'))


class CouponAdminTests(TestCase):
    def test_create_accepts_camel_case_payload(self):
        coupon = coupons.create_coupon({
            'code': ' monsoon ',
            'discountType': 'PERCENT',
            'discountValue': '15',
            'maxDiscount': '300',
            'usageLimit': {'total': 100, 'perUser': 2},
            'validTill': '2030-12-31',
            'isPublic': True,
        })

        self.assertEqual(coupon.code, 'MONSOON')
        self.assertEqual(coupon.discount_type, Coupon.TYPE_PERCENTAGE)
        self.assertEqual(coupon.value, Decimal('15'))
        self.assertEqual(coupon.usage_limit_total, 100)
        self.assertEqual(coupon.usage_limit_per_user, 2)
        self.assertTrue(coupon.is_public)
        self.assertIn(coupon, list(coupons.public_coupons()))

    def test_duplicate_code_conflicts(self):
        coupons.create_coupon({'code': 'DUP', 'type': 'flat', 'value': 10})

        with self.assertRaisesMessage(Conflict, "Coupon code already exists"):
            coupons.create_coupon({'code': 'dup', 'type': 'flat', 'value': 10})

    def test_missing_fields(self):
        with self.assertRaisesMessage(BusinessRuleViolation, "Missing required coupon fields"):
            coupons.create_coupon({'code': 'HALF'})

    def test_toggle_and_analytics(self):
        coupon = coupons.create_coupon({'code': 'TOGGLE', 'type': 'flat', 'value': 10})

        coupons.toggle_coupon(coupon)

        self.assertFalse(coupon.is_active)
        self.assertEqual(
            coupons.coupon_analytics(),
            {'total_coupons': 1, 'active_coupons': 0, 'total_redemptions': 0},
        )
