from decimal import Decimal

from rest_framework import serializers

from workshop import lifecycle
from workshop.models import (
    Coupon,
    Customer,
    Estimate,
    Invoice,
    InvoiceItem,
    JobCard,
    JobCardStatusHistory,
    JobItem,
    Mechanic,
    Notification,
    Payment,
    RefundRequest,
    Vehicle,
)


def _money(value):
    if value is None:
        return "0.00"
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return format(value.quantize(Decimal("0.01")), "f")


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ['id', 'name', 'phone_number', 'email', 'address', 'gstin', 'portal_user', 'created_at']
        read_only_fields = ['created_at']


class VehicleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vehicle
        fields = '__all__'


class MechanicSerializer(serializers.ModelSerializer):
    class Meta:
        model = Mechanic
        fields = '__all__'


class JobItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobItem
        fields = [
            'id', 'item_type', 'name', 'description', 'hsn_code', 'quantity',
            'unit_price', 'discount_percent', 'total', 'is_approved', 'approved_at',
        ]


class StatusHistorySerializer(serializers.ModelSerializer):
    changed_by = serializers.CharField(source='changed_by.username', default=None, read_only=True)

    class Meta:
        model = JobCardStatusHistory
        fields = ['status', 'note', 'changed_by', 'changed_at']


class EstimateSerializer(serializers.ModelSerializer):
    can_approve = serializers.BooleanField(read_only=True)
    can_reject = serializers.BooleanField(read_only=True)
    is_expired = serializers.BooleanField(read_only=True)

    class Meta:
        model = Estimate
        fields = [
            'id', 'version', 'status', 'items', 'subtotal', 'discount_amount',
            'discount_reason', 'tax_rate', 'tax_amount', 'grand_total', 'notes',
            'expires_at', 'created_at', 'approved_at', 'rejected_at',
            'rejection_reason', 'archived_at', 'can_approve', 'can_reject', 'is_expired',
        ]


class BillingSerializer(serializers.Serializer):
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount = serializers.DecimalField(source='discount_amount', max_digits=12, decimal_places=2)
    discount_reason = serializers.CharField()
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2)
    tax_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    grand_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    coupon_code = serializers.CharField()


class JobCardSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.name', read_only=True)
    visible_status = serializers.CharField(read_only=True)
    billing = BillingSerializer(source='*', read_only=True)
    mechanics = serializers.PrimaryKeyRelatedField(many=True, read_only=True)

    class Meta:
        model = JobCard
        fields = [
            'id', 'job_number', 'status', 'visible_status', 'customer', 'customer_name',
            'vehicle', 'vehicle_snapshot', 'appointment_reference', 'billing',
            'mechanics', 'estimated_completion', 'created_at', 'updated_at',
        ]


class JobCardDetailSerializer(JobCardSerializer):
    items = JobItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    estimate = serializers.SerializerMethodField()
    estimate_history = EstimateSerializer(many=True, read_only=True)
    payment_summary = serializers.SerializerMethodField()

    class Meta(JobCardSerializer.Meta):
        fields = JobCardSerializer.Meta.fields + [
            'odometer_reading', 'fuel_level', 'customer_complaints', 'diagnostics',
            'internal_notes', 'before_service_images', 'after_service_images', 'videos',
            'items', 'status_history', 'estimate', 'estimate_history', 'payment_summary',
        ]

    def get_estimate(self, obj):
        estimate = obj.current_estimate
        if estimate is None or estimate.archived_at is not None:
            return None
        return EstimateSerializer(estimate).data

    def get_payment_summary(self, obj):
        summary = lifecycle.payment_summary(obj)
        return {
            'grand_total': _money(summary['grand_total']),
            'total_paid': _money(summary['total_paid']),
            'balance_due': _money(summary['balance_due']),
            'completed_payments_count': summary['completed_payments_count'],
        }

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get('request')
        if request is None or not request.user.is_staff:
            data.pop('internal_notes', None)
        return data


class CouponSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'description', 'discount_type', 'value', 'max_discount_amount',
            'min_invoice_amount', 'valid_from', 'valid_till', 'usage_limit_total',
            'usage_limit_per_user', 'used_count', 'is_active', 'is_public', 'created_at',
        ]


class PublicCouponSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = ['code', 'description', 'discount_type', 'value', 'max_discount_amount', 'min_invoice_amount', 'valid_till']


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        exclude = ['invoice']


class InvoiceSerializer(serializers.ModelSerializer):
    job_number = serializers.CharField(source='job_card.job_number', read_only=True)
    items = InvoiceItemSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'invoice_number', 'job_card', 'job_number', 'customer', 'customer_snapshot',
            'vehicle_snapshot', 'items', 'subtotal', 'discount_amount', 'discount_reason',
            'taxable_amount', 'tax_rate', 'cgst_rate', 'cgst_amount', 'sgst_rate', 'sgst_amount',
            'tax_amount', 'grand_total', 'paid_amount', 'balance_amount', 'status', 'terms',
            'notes', 'issued_at', 'due_date', 'paid_at', 'cancelled_at',
        ]


class PaymentSerializer(serializers.ModelSerializer):
    job_number = serializers.CharField(source='job_card.job_number', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', default=None, read_only=True)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'payment_number', 'customer', 'job_card', 'job_number', 'invoice', 'invoice_number',
            'amount', 'refunded_amount', 'paid_amount', 'payment_type', 'payment_method', 'gateway',
            'status', 'transaction_id', 'gateway_order_id', 'notes', 'completed_at', 'created_at',
        ]


class RefundRequestSerializer(serializers.ModelSerializer):
    payment_number = serializers.CharField(source='payment.payment_number', read_only=True)

    class Meta:
        model = RefundRequest
        fields = [
            'id', 'payment', 'payment_number', 'invoice', 'job_card', 'customer', 'requested_amount',
            'reason', 'status', 'admin_remarks', 'gateway_refund_id', 'requested_at', 'processed_at', 'logs',
        ]


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            'id', 'notification_type', 'title', 'body', 'related_entity_type',
            'related_entity_id', 'is_read', 'created_at',
        ]


# Input payloads

class JobItemInputSerializer(serializers.Serializer):
    item_type = serializers.ChoiceField(choices=JobItem.TYPE_CHOICES, required=False, default=JobItem.TYPE_SERVICE)
    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    hsn_code = serializers.CharField(required=False, allow_blank=True, default='')
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, default=Decimal('1'))
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=Decimal('0'))
    discount_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, default=Decimal('0'))


class JobCardCreateSerializer(serializers.Serializer):
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all())
    vehicle = serializers.PrimaryKeyRelatedField(queryset=Vehicle.objects.all(), required=False, allow_null=True)
    items = JobItemInputSerializer(many=True, required=False)
    mechanic_ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    odometer_reading = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    fuel_level = serializers.ChoiceField(choices=JobCard.FUEL_LEVEL_CHOICES, required=False, allow_blank=True)
    customer_complaints = serializers.ListField(child=serializers.CharField(), required=False)
    internal_notes = serializers.CharField(required=False, allow_blank=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, min_value=0, max_value=100)


class AppointmentServiceSerializer(serializers.Serializer):
    name = serializers.CharField()
    price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=Decimal('0'))


class AppointmentSerializer(serializers.Serializer):
    appointment_number = serializers.CharField()
    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all())
    vehicle = serializers.PrimaryKeyRelatedField(queryset=Vehicle.objects.all(), required=False, allow_null=True)
    services = AppointmentServiceSerializer(many=True, required=False)
    customer_notes = serializers.CharField(required=False, allow_blank=True)


class JobCardDetailsInputSerializer(serializers.Serializer):
    odometer_reading = serializers.IntegerField(required=False, min_value=0)
    fuel_level = serializers.ChoiceField(choices=JobCard.FUEL_LEVEL_CHOICES, required=False, allow_blank=True)
    diagnostics = serializers.CharField(required=False, allow_blank=True)
    internal_notes = serializers.CharField(required=False, allow_blank=True)
    estimated_completion = serializers.DateTimeField(required=False)
    customer_complaints = serializers.ListField(child=serializers.CharField(), required=False)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=JobCard.STATUS_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, default='')
    override = serializers.BooleanField(required=False, default=False)


class ItemApprovalSerializer(serializers.Serializer):
    item_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class MechanicAssignmentSerializer(serializers.Serializer):
    mechanic_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=True)


class MediaInputSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=['before', 'after', 'videos'])
    urls = serializers.ListField(child=serializers.URLField(), allow_empty=False)


class BillingUpdateSerializer(serializers.Serializer):
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    discount_reason = serializers.CharField(required=False, allow_blank=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, min_value=0, max_value=100)


class EstimateInputSerializer(serializers.Serializer):
    items = JobItemInputSerializer(many=True, allow_empty=False)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=Decimal('0'), min_value=0)
    discount_reason = serializers.CharField(required=False, allow_blank=True, default='')
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True, min_value=0, max_value=100)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    expires_at = serializers.DateTimeField(required=False, allow_null=True)


class EstimateRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class CouponCodeSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=40)


class ManualPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES, default=Payment.METHOD_CASH)
    transaction_id = serializers.CharField(required=False, allow_blank=True, default='')
    status = serializers.ChoiceField(
        choices=[Payment.STATUS_PENDING, Payment.STATUS_COMPLETED],
        default=Payment.STATUS_COMPLETED,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class PaymentOrderSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class VerifyPaymentSerializer(serializers.Serializer):
    razorpay_order_id = serializers.CharField()
    razorpay_payment_id = serializers.CharField()
    razorpay_signature = serializers.CharField()


class RefundInputSerializer(serializers.Serializer):
    payment = serializers.PrimaryKeyRelatedField(queryset=Payment.objects.all())
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    reason = serializers.CharField(max_length=500)


class RefundDecisionSerializer(serializers.Serializer):
    remarks = serializers.CharField(required=False, allow_blank=True, default='')
