import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def ensure_decimal(value, default='0.00'):
    """Return a Decimal instance for the given value."""
    if isinstance(value, Decimal):
        return value
    if value in (None, ''):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(default)


def round2(value):
    return ensure_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class Customer(models.Model):
    portal_user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="customer_portal",
        null=True,
        blank=True,
        help_text="Login account for this customer",
    )
    name = models.CharField(max_length=120)
    phone_number = models.CharField(max_length=20, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    address = models.TextField(blank=True, null=True)
    gstin = models.CharField(max_length=20, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    def get_notification_email(self):
        if self.email:
            return self.email
        if self.portal_user_id and self.portal_user.email:
            return self.portal_user.email
        return None

    def snapshot(self):
        return {
            'name': self.name,
            'phone_number': self.phone_number or '',
            'email': self.email or '',
            'address': self.address or '',
            'gstin': self.gstin or '',
        }


class Vehicle(models.Model):
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name='vehicles')
    registration_number = models.CharField(max_length=20)
    brand = models.CharField(max_length=60, blank=True, null=True)
    model = models.CharField(max_length=60, blank=True, null=True)
    year = models.PositiveSmallIntegerField(blank=True, null=True)
    color = models.CharField(max_length=30, blank=True, null=True)
    fuel_type = models.CharField(max_length=20, blank=True, null=True)
    vin = models.CharField(max_length=17, blank=True, null=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.registration_number

    def snapshot(self):
        return {
            'registration_number': self.registration_number,
            'brand': self.brand or '',
            'model': self.model or '',
            'year': self.year,
            'color': self.color or '',
            'fuel_type': self.fuel_type or '',
        }


class Mechanic(models.Model):
    name = models.CharField(max_length=100)
    phone = models.CharField(max_length=20, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    specialization = models.CharField(max_length=100, blank=True, default='')
    is_active = models.BooleanField(default=True)
    portal_user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="mechanic_portal",
        null=True,
        blank=True,
        help_text="Login account for this mechanic",
    )

    def __str__(self):
        return self.name


class NumberSequence(models.Model):
    """Counter row used to hand out period-scoped document numbers."""

    prefix = models.CharField(max_length=10)
    period = models.CharField(max_length=10, blank=True, default='')
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['prefix', 'period'], name='unique_number_sequence'),
        ]

    def __str__(self):
        return f"{self.prefix}{self.period}:{self.last_value}"

    @classmethod
    def next_value(cls, prefix, period=''):
        with transaction.atomic():
            cls.objects.get_or_create(prefix=prefix, period=period)
            sequence = cls.objects.select_for_update().get(prefix=prefix, period=period)
            sequence.last_value += 1
            sequence.save(update_fields=['last_value'])
            return sequence.last_value

    @classmethod
    def next_monthly_number(cls, prefix, when=None):
        when = timezone.localtime(when or timezone.now())
        period = when.strftime('%y%m')
        return f"{prefix}{period}{cls.next_value(prefix, period):04d}"


class JobCard(models.Model):
    STATUS_CREATED = 'created'
    STATUS_INSPECTION = 'inspection'
    STATUS_AWAITING_APPROVAL = 'awaiting-approval'
    STATUS_APPROVED = 'approved'
    STATUS_IN_PROGRESS = 'in-progress'
    STATUS_QUALITY_CHECK = 'quality-check'
    STATUS_READY = 'ready'
    STATUS_DELIVERED = 'delivered'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_CREATED, 'Created'),
        (STATUS_INSPECTION, 'Inspection'),
        (STATUS_AWAITING_APPROVAL, 'Awaiting Approval'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_QUALITY_CHECK, 'Quality Check'),
        (STATUS_READY, 'Ready'),
        (STATUS_DELIVERED, 'Delivered'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    TERMINAL_STATUSES = {STATUS_DELIVERED, STATUS_CANCELLED}

    FUEL_LEVEL_CHOICES = [
        ('empty', 'Empty'),
        ('quarter', '1/4'),
        ('half', '1/2'),
        ('three-quarter', '3/4'),
        ('full', 'Full'),
    ]

    # Written only by workshop.billing
    BILLING_OUTPUT_FIELDS = ('subtotal', 'tax_amount', 'grand_total')

    job_number = models.CharField(max_length=20, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='job_cards')
    vehicle = models.ForeignKey(Vehicle, on_delete=models.SET_NULL, null=True, blank=True, related_name='job_cards')
    vehicle_snapshot = models.JSONField(default=dict, blank=True)
    appointment_reference = models.CharField(max_length=40, blank=True, default='')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_CREATED)
    mechanics = models.ManyToManyField(Mechanic, related_name='job_cards', blank=True)

    odometer_reading = models.PositiveIntegerField(blank=True, null=True)
    fuel_level = models.CharField(max_length=15, choices=FUEL_LEVEL_CHOICES, blank=True, default='')
    customer_complaints = models.JSONField(default=list, blank=True)
    diagnostics = models.TextField(blank=True, default='')
    internal_notes = models.TextField(blank=True, default='')
    estimated_completion = models.DateTimeField(blank=True, null=True)
    before_service_images = models.JSONField(default=list, blank=True)
    after_service_images = models.JSONField(default=list, blank=True)
    videos = models.JSONField(default=list, blank=True)

    # Billing summary
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO, editable=False)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_reason = models.CharField(max_length=120, blank=True, default='')
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('18.00'),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO, editable=False)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO, editable=False)
    coupon = models.ForeignKey('Coupon', on_delete=models.SET_NULL, null=True, blank=True, related_name='job_cards')
    coupon_code = models.CharField(max_length=40, blank=True, default='')

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_job_cards',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.job_number

    def save(self, *args, **kwargs):
        if not self.job_number:
            self.job_number = NumberSequence.next_monthly_number('JC')
        super().save(*args, **kwargs)

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def current_estimate(self):
        return self.estimates.order_by('-version').first()

    @property
    def estimate_history(self):
        return self.estimates.filter(archived_at__isnull=False).order_by('archived_at', 'version')

    @property
    def visible_status(self):
        """Status shown to customers; a pending estimate always reads as awaiting approval."""
        if self.is_terminal:
            return self.status
        if self.estimates.filter(status=Estimate.STATUS_PENDING_APPROVAL).exists():
            return self.STATUS_AWAITING_APPROVAL
        return self.status

    def is_assigned_to(self, mechanic):
        if mechanic is None:
            return False
        return self.mechanics.filter(pk=mechanic.pk).exists()


class JobItem(models.Model):
    TYPE_SERVICE = 'service'
    TYPE_LABOUR = 'labour'
    TYPE_PART = 'part'
    TYPE_CONSUMABLE = 'consumable'
    TYPE_EXTERNAL = 'external'
    TYPE_CHOICES = [
        (TYPE_SERVICE, 'Service'),
        (TYPE_LABOUR, 'Labour'),
        (TYPE_PART, 'Part'),
        (TYPE_CONSUMABLE, 'Consumable'),
        (TYPE_EXTERNAL, 'External'),
    ]

    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name='items')
    item_type = models.CharField(max_length=15, choices=TYPE_CHOICES, default=TYPE_SERVICE)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')
    hsn_code = models.CharField(max_length=20, blank=True, default='')
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('1.00'))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO, editable=False)
    is_approved = models.BooleanField(default=False)
    approved_at = models.DateTimeField(blank=True, null=True)
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.name} x {self.quantity}"


class JobCardStatusHistory(models.Model):
    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name='status_history')
    status = models.CharField(max_length=20, choices=JobCard.STATUS_CHOICES)
    note = models.TextField(blank=True, default='')
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['changed_at', 'id']
        verbose_name_plural = 'job card status history'

    def __str__(self):
        return f"{self.job_card_id} -> {self.status}"


class Estimate(models.Model):
    STATUS_PENDING_APPROVAL = 'PENDING_APPROVAL'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_SUPERSEDED = 'SUPERSEDED'
    STATUS_CHOICES = [
        (STATUS_PENDING_APPROVAL, 'Pending Approval'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_SUPERSEDED, 'Superseded'),
    ]

    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name='estimates')
    version = models.PositiveIntegerField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING_APPROVAL)
    items = models.JSONField(default=list, blank=True)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_reason = models.CharField(max_length=120, blank=True, default='')
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('18.00'))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    notes = models.TextField(blank=True, default='')
    expires_at = models.DateTimeField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(default=timezone.now)
    notification_sent_at = models.DateTimeField(blank=True, null=True)
    approved_at = models.DateTimeField(blank=True, null=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    rejected_at = models.DateTimeField(blank=True, null=True)
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    rejection_reason = models.TextField(blank=True, default='')
    # Set when the version moves into the job card's estimate history
    archived_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ['-version']
        constraints = [
            models.UniqueConstraint(fields=['job_card', 'version'], name='unique_estimate_version'),
            models.UniqueConstraint(
                fields=['job_card'],
                condition=Q(status='PENDING_APPROVAL'),
                name='one_pending_estimate_per_job_card',
            ),
        ]

    def __str__(self):
        return f"{self.job_card.job_number} v{self.version} ({self.status})"

    @property
    def is_expired(self):
        return bool(self.expires_at and self.expires_at < timezone.now())

    @property
    def can_approve(self):
        return (
            self.status == self.STATUS_PENDING_APPROVAL
            and not self.is_expired
            and self.job_card.status in (JobCard.STATUS_INSPECTION, JobCard.STATUS_AWAITING_APPROVAL)
        )

    @property
    def can_reject(self):
        return (
            self.status == self.STATUS_PENDING_APPROVAL
            and self.job_card.status in (JobCard.STATUS_INSPECTION, JobCard.STATUS_AWAITING_APPROVAL)
        )


class Coupon(models.Model):
    TYPE_FLAT = 'flat'
    TYPE_PERCENTAGE = 'percentage'
    TYPE_CHOICES = [
        (TYPE_FLAT, 'Flat amount'),
        (TYPE_PERCENTAGE, 'Percentage'),
    ]
    UNLIMITED = -1

    code = models.CharField(max_length=40, unique=True)
    description = models.CharField(max_length=255, blank=True, default='')
    discount_type = models.CharField(max_length=12, choices=TYPE_CHOICES)
    value = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    max_discount_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    min_invoice_amount = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    valid_from = models.DateTimeField(blank=True, null=True)
    valid_till = models.DateTimeField(blank=True, null=True)
    usage_limit_total = models.IntegerField(default=UNLIMITED, help_text="-1 means unlimited")
    usage_limit_per_user = models.PositiveIntegerField(default=1)
    used_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_public = models.BooleanField(default=False)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)


class CouponUsage(models.Model):
    coupon = models.ForeignKey(Coupon, on_delete=models.CASCADE, related_name='usages')
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name='coupon_usages')
    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name='coupon_usages')
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    used_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['coupon', 'job_card'], name='one_usage_per_coupon_and_job_card'),
        ]

    def __str__(self):
        return f"{self.coupon.code} on {self.job_card.job_number}"


class Invoice(models.Model):
    STATUS_DRAFT = 'DRAFT'
    STATUS_ISSUED = 'ISSUED'
    STATUS_PARTIALLY_PAID = 'PARTIALLY_PAID'
    STATUS_PAID = 'PAID'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_REFUNDED = 'REFUNDED'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_ISSUED, 'Issued'),
        (STATUS_PARTIALLY_PAID, 'Partially Paid'),
        (STATUS_PAID, 'Paid'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_REFUNDED, 'Refunded'),
    ]
    CLOSED_STATUSES = {STATUS_CANCELLED, STATUS_REFUNDED}

    # Only these columns change once the invoice leaves DRAFT
    LEDGER_FIELDS = frozenset({'paid_amount', 'balance_amount', 'status', 'paid_at', 'cancelled_at', 'updated_at'})

    invoice_number = models.CharField(max_length=20, unique=True)
    job_card = models.ForeignKey(JobCard, on_delete=models.PROTECT, related_name='invoices')
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='invoices')
    customer_snapshot = models.JSONField(default=dict, blank=True)
    vehicle_snapshot = models.JSONField(default=dict, blank=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_reason = models.CharField(max_length=120, blank=True, default='')
    taxable_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    cgst_rate = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    cgst_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    sgst_rate = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    sgst_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    balance_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    terms = models.TextField(blank=True, default='')
    notes = models.TextField(blank=True, default='')
    issued_at = models.DateTimeField(blank=True, null=True)
    due_date = models.DateField(blank=True, null=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    generated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['job_card'],
                condition=~Q(status='CANCELLED'),
                name='one_open_invoice_per_job_card',
            ),
        ]

    def __str__(self):
        return self.invoice_number

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.__dict__.get('status')
        return instance

    def save(self, *args, **kwargs):
        loaded_status = getattr(self, '_loaded_status', None)
        if not self._state.adding and loaded_status and loaded_status != self.STATUS_DRAFT:
            update_fields = kwargs.get('update_fields')
            if update_fields is None or not set(update_fields) <= self.LEDGER_FIELDS:
                raise ValueError(f"Invoice {self.invoice_number} is issued; only ledger fields can change")
            kwargs['update_fields'] = set(update_fields) | {'updated_at'}
        super().save(*args, **kwargs)
        self._loaded_status = self.status

    @property
    def is_paid(self):
        return self.status == self.STATUS_PAID


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    item_type = models.CharField(max_length=15, choices=JobItem.TYPE_CHOICES, default=JobItem.TYPE_SERVICE)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')
    hsn_code = models.CharField(max_length=20, blank=True, default='')
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('1.00'))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return self.name


class Payment(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_REFUNDED = 'refunded'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    METHOD_CASH = 'cash'
    METHOD_CARD = 'card'
    METHOD_UPI = 'upi'
    METHOD_NETBANKING = 'netbanking'
    METHOD_WALLET = 'wallet'
    METHOD_BANK_TRANSFER = 'bank-transfer'
    METHOD_OTHER = 'other'
    METHOD_CHOICES = [
        (METHOD_CASH, 'Cash'),
        (METHOD_CARD, 'Card'),
        (METHOD_UPI, 'UPI'),
        (METHOD_NETBANKING, 'Net banking'),
        (METHOD_WALLET, 'Wallet'),
        (METHOD_BANK_TRANSFER, 'Bank transfer'),
        (METHOD_OTHER, 'Other'),
    ]

    TYPE_FULL = 'full'
    TYPE_PARTIAL = 'partial'
    TYPE_CHOICES = [
        (TYPE_FULL, 'Full'),
        (TYPE_PARTIAL, 'Partial'),
    ]

    GATEWAY_RAZORPAY = 'razorpay'

    # Fields a completed payment may still change (refund path only)
    REFUND_FIELDS = frozenset({'refunded_amount', 'status', 'updated_at'})

    payment_number = models.CharField(max_length=20, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='payments')
    job_card = models.ForeignKey(JobCard, on_delete=models.PROTECT, related_name='payments')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, null=True, blank=True, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    payment_type = models.CharField(max_length=10, choices=TYPE_CHOICES, default=TYPE_FULL)
    payment_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=METHOD_CASH)
    gateway = models.CharField(max_length=20, blank=True, default='')
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING)
    transaction_id = models.CharField(max_length=100, blank=True, default='')
    gateway_order_id = models.CharField(max_length=100, blank=True, default='')
    metadata = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True, default='')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    completed_at = models.DateTimeField(blank=True, null=True)
    # Set once the amount has been added to the invoice ledger
    applied_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['transaction_id'],
                condition=~Q(transaction_id=''),
                name='unique_payment_transaction_id',
            ),
        ]

    def __str__(self):
        return f'Payment {self.payment_number} of {self.amount} for {self.job_card_id}'

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.__dict__.get('status')
        return instance

    def save(self, *args, **kwargs):
        if not self.payment_number:
            self.payment_number = f"PAY{NumberSequence.next_value('PAY'):06d}"
        loaded_status = getattr(self, '_loaded_status', None)
        if not self._state.adding and loaded_status in (self.STATUS_COMPLETED, self.STATUS_REFUNDED):
            update_fields = kwargs.get('update_fields')
            allowed = self.REFUND_FIELDS | {'applied_at'}
            if update_fields is None or not set(update_fields) <= allowed:
                raise ValueError(f"Payment {self.payment_number} is settled; only the refund path can change it")
            kwargs['update_fields'] = set(update_fields) | {'updated_at'}
        super().save(*args, **kwargs)
        self._loaded_status = self.status

    @property
    def paid_amount(self):
        """Amount still settled after processed refunds."""
        return max(ZERO, round2(self.amount) - round2(self.refunded_amount))


class RefundRequest(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_PROCESSED = 'PROCESSED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_PROCESSED, 'Processed'),
    ]

    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name='refund_requests')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, null=True, blank=True, related_name='refund_requests')
    job_card = models.ForeignKey(JobCard, on_delete=models.PROTECT, related_name='refund_requests')
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='refund_requests')
    requested_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    reason = models.CharField(max_length=500)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    admin_remarks = models.CharField(max_length=500, blank=True, default='')
    gateway_refund_id = models.CharField(max_length=100, blank=True, default='')
    requested_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(blank=True, null=True)
    logs = models.JSONField(default=list, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-requested_at']

    def __str__(self):
        return f"Refund {self.pk} for {self.payment.payment_number} ({self.status})"

    def add_log(self, action, user=None, remarks=''):
        self.logs = list(self.logs or [])
        self.logs.append({
            'action': action,
            'by': getattr(user, 'pk', None),
            'at': timezone.now().isoformat(),
            'remarks': remarks or '',
        })


class Notification(models.Model):
    TYPE_STATUS_UPDATE = 'STATUS_UPDATE'
    TYPE_ESTIMATE = 'ESTIMATE_APPROVAL'
    TYPE_ESTIMATE_DECISION = 'ESTIMATE_DECISION'
    TYPE_PAYMENT = 'PAYMENT_SUCCESS'
    TYPE_VEHICLE_READY = 'VEHICLE_READY'
    TYPE_ASSIGNMENT = 'MECHANIC_ASSIGNMENT'
    TYPE_REFUND = 'REFUND_UPDATE'
    TYPE_CHOICES = [
        (TYPE_STATUS_UPDATE, 'Status update'),
        (TYPE_ESTIMATE, 'Estimate ready'),
        (TYPE_ESTIMATE_DECISION, 'Estimate decision'),
        (TYPE_PAYMENT, 'Payment received'),
        (TYPE_VEHICLE_READY, 'Vehicle ready'),
        (TYPE_ASSIGNMENT, 'Mechanic assignment'),
        (TYPE_REFUND, 'Refund update'),
    ]

    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, null=True, blank=True, related_name='notifications')
    recipient_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='workshop_notifications',
    )
    notification_type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    title = models.CharField(max_length=200)
    body = models.TextField(blank=True, default='')
    related_entity_type = models.CharField(max_length=30, blank=True, default='')
    related_entity_id = models.PositiveBigIntegerField(blank=True, null=True)
    is_read = models.BooleanField(default=False)
    emailed_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.title
