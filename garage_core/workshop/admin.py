from django.contrib import admin
from django.db.models import DecimalField

from . import billing
from .models import (
    Coupon,
    CouponUsage,
    Customer,
    Estimate,
    Invoice,
    InvoiceItem,
    JobCard,
    JobCardStatusHistory,
    JobItem,
    Mechanic,
    Notification,
    NumberSequence,
    Payment,
    RefundRequest,
    Vehicle,
)


class CustomAdmin(admin.ModelAdmin):
    """Base admin with rupee formatting."""

    @staticmethod
    def format_currency(value):
        if value is None or value == '':
            return "₹0.00"
        try:
            numeric_value = DecimalField().to_python(value)
            return "₹{:,.2f}".format(numeric_value)
        except (ValueError, TypeError):
            return "Invalid Value"


class VehicleInline(admin.TabularInline):
    model = Vehicle
    extra = 0


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ('name', 'phone_number', 'email', 'portal_user')
    search_fields = ('name', 'phone_number', 'email')
    inlines = [VehicleInline]


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ('registration_number', 'customer', 'brand', 'model', 'is_active')
    search_fields = ('registration_number', 'customer__name')
    list_filter = ('is_active',)


@admin.register(Mechanic)
class MechanicAdmin(admin.ModelAdmin):
    list_display = ('name', 'phone', 'specialization', 'is_active')
    list_filter = ('is_active',)


class JobItemInline(admin.TabularInline):
    model = JobItem
    extra = 0
    readonly_fields = ('total',)


class StatusHistoryInline(admin.TabularInline):
    model = JobCardStatusHistory
    extra = 0
    readonly_fields = ('status', 'note', 'changed_by', 'changed_at')
    can_delete = False


@admin.register(JobCard)
class JobCardAdmin(CustomAdmin):
    list_display = ('job_number', 'customer', 'status', 'grand_total_display', 'created_at')
    list_filter = ('status',)
    search_fields = ('job_number', 'customer__name', 'vehicle__registration_number')
    filter_horizontal = ('mechanics',)
    # Status moves through the lifecycle functions so history is always written
    readonly_fields = ('job_number', 'status', 'subtotal', 'tax_amount', 'grand_total', 'coupon', 'coupon_code')
    inlines = [JobItemInline, StatusHistoryInline]

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        billing.update_billing(obj, discount=obj.discount_amount, tax_rate=obj.tax_rate)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        # Inline item edits land after save_model
        billing.recalculate(form.instance)

    def grand_total_display(self, obj):
        return self.format_currency(obj.grand_total)
    grand_total_display.short_description = 'Grand Total'
    grand_total_display.admin_order_field = 'grand_total'


@admin.register(Estimate)
class EstimateAdmin(CustomAdmin):
    list_display = ('job_card', 'version', 'status', 'grand_total', 'created_at', 'expires_at')
    list_filter = ('status',)
    search_fields = ('job_card__job_number',)

    def get_readonly_fields(self, request, obj=None):
        # Versions change only through revise, approve and reject
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ('code', 'discount_type', 'value', 'used_count', 'usage_limit_total', 'is_active', 'is_public')
    list_filter = ('discount_type', 'is_active', 'is_public')
    search_fields = ('code',)
    readonly_fields = ('used_count',)


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ('coupon', 'customer', 'job_card', 'discount_amount', 'used_at')


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0
    can_delete = False

    def has_change_permission(self, request, obj=None):
        return False

    def has_add_permission(self, request, obj=None):
        return False


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ('payment_number', 'amount', 'refunded_amount', 'payment_method', 'status', 'completed_at')
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(CustomAdmin):
    list_display = ('invoice_number', 'customer', 'status', 'grand_total_display', 'balance_display', 'issued_at')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'job_card__job_number', 'customer__name')
    inlines = [InvoiceItemInline, PaymentInline]

    def get_readonly_fields(self, request, obj=None):
        # Issued invoices are frozen; the ledger changes them through payments
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def grand_total_display(self, obj):
        return self.format_currency(obj.grand_total)
    grand_total_display.short_description = 'Grand Total'

    def balance_display(self, obj):
        return self.format_currency(obj.balance_amount)
    balance_display.short_description = 'Balance'


@admin.register(Payment)
class PaymentAdmin(CustomAdmin):
    list_display = ('payment_number', 'job_card', 'invoice', 'amount', 'refunded_amount', 'payment_method', 'status')
    list_filter = ('status', 'payment_method', 'gateway')
    search_fields = ('payment_number', 'transaction_id', 'job_card__job_number')

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    list_display = ('pk', 'payment', 'requested_amount', 'status', 'requested_at', 'processed_at')
    list_filter = ('status',)
    readonly_fields = ('payment', 'invoice', 'job_card', 'customer', 'requested_amount', 'status', 'logs', 'processed_at')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('title', 'notification_type', 'customer', 'recipient_user', 'is_read', 'created_at')
    list_filter = ('notification_type', 'is_read')


admin.site.register(NumberSequence)
