# api/views.py
import logging

from django.db.models import Q
from django.http import HttpResponse
from rest_framework import status, viewsets
from rest_framework.authentication import SessionAuthentication, TokenAuthentication
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import IsAuthenticated

from workshop import coupons, estimates, invoice_utils, lifecycle, payments
from workshop.billing import ensure_fresh, update_billing
from workshop.exceptions import BusinessRuleViolation, Forbidden, NotFound
from workshop.models import (
    Coupon,
    Customer,
    Invoice,
    JobCard,
    Mechanic,
    Notification,
    Payment,
    RefundRequest,
    Vehicle,
)
from workshop.pdf_utils import render_invoice_pdf

from .pagination import PageLimitPagination
from .permissions import (
    IsStaff,
    _require_customer,
    _require_mechanic,
    check_invoice_access,
    check_job_card_access,
    check_job_card_owner,
    require_customer,
    scope_job_cards,
)
from .responses import error, success
from .serializers import (
    AppointmentSerializer,
    BillingUpdateSerializer,
    CouponCodeSerializer,
    CouponSerializer,
    CustomerSerializer,
    EstimateInputSerializer,
    EstimateRejectSerializer,
    EstimateSerializer,
    InvoiceSerializer,
    ItemApprovalSerializer,
    JobCardCreateSerializer,
    JobCardDetailSerializer,
    JobCardDetailsInputSerializer,
    JobCardSerializer,
    JobItemInputSerializer,
    JobItemSerializer,
    ManualPaymentSerializer,
    MechanicAssignmentSerializer,
    MechanicSerializer,
    MediaInputSerializer,
    NotificationSerializer,
    PaymentOrderSerializer,
    PaymentSerializer,
    PublicCouponSerializer,
    RefundDecisionSerializer,
    RefundInputSerializer,
    RefundRequestSerializer,
    StatusUpdateSerializer,
    VehicleSerializer,
    VerifyPaymentSerializer,
)

logger = logging.getLogger(__name__)

AUTHENTICATION = [TokenAuthentication, SessionAuthentication]


class CustomerViewSet(viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsStaff]


class VehicleViewSet(viewsets.ModelViewSet):
    queryset = Vehicle.objects.select_related('customer')
    serializer_class = VehicleSerializer
    permission_classes = [IsStaff]


class MechanicViewSet(viewsets.ModelViewSet):
    queryset = Mechanic.objects.all()
    serializer_class = MechanicSerializer
    permission_classes = [IsStaff]


def _paginate(request, queryset, serializer_class, message=''):
    paginator = PageLimitPagination()
    page = paginator.paginate_queryset(queryset, request)
    data = serializer_class(page, many=True, context={'request': request}).data
    return paginator.get_paginated_response(data, message)


def _validated(serializer_class, request, **kwargs):
    serializer = serializer_class(data=request.data, **kwargs)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _get_job_card(request, pk):
    job_card = JobCard.objects.select_related('customer').filter(pk=pk).first()
    if job_card is None:
        raise NotFound("Job card not found")
    check_job_card_access(request, job_card)
    return job_card


def _get_invoice(request, pk):
    invoice = Invoice.objects.select_related('job_card', 'customer').filter(pk=pk).first()
    if invoice is None:
        raise NotFound("Invoice not found")
    check_invoice_access(request, invoice)
    return invoice


def _job_card_detail(request, job_card, message='', status_code=status.HTTP_200_OK):
    job_card.refresh_from_db()
    data = JobCardDetailSerializer(job_card, context={'request': request}).data
    return success(data, message, status=status_code)


def _require_staff(request):
    if not request.user.is_staff:
        raise Forbidden("Admin access required")


# ------------------------------
# Job cards
# ------------------------------

@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_cards(request):
    if request.method == "POST":
        _require_staff(request)
        data = _validated(JobCardCreateSerializer, request)
        job_card = lifecycle.create_job_card(
            data['customer'],
            data.get('vehicle'),
            items=data.get('items'),
            user=request.user,
            mechanic_ids=data.get('mechanic_ids'),
            odometer_reading=data.get('odometer_reading'),
            fuel_level=data.get('fuel_level', ''),
            customer_complaints=data.get('customer_complaints'),
            internal_notes=data.get('internal_notes', ''),
            tax_rate=data.get('tax_rate'),
        )
        return _job_card_detail(request, job_card, "Job card created", status.HTTP_201_CREATED)

    qs = scope_job_cards(request, JobCard.objects.select_related('customer').prefetch_related('mechanics'))
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)
    search = (request.query_params.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(job_number__icontains=search)
            | Q(customer__name__icontains=search)
            | Q(vehicle_snapshot__registration_number__icontains=search)
        )
    return _paginate(request, qs.order_by('-created_at'), JobCardSerializer)


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def job_card_from_appointment(request):
    data = _validated(AppointmentSerializer, request)
    job_card = lifecycle.create_from_appointment(
        {
            'appointment_number': data['appointment_number'],
            'customer': data['customer'],
            'vehicle': data.get('vehicle'),
            'services': data.get('services') or [],
            'customer_notes': data.get('customer_notes'),
        },
        user=request.user,
    )
    return _job_card_detail(request, job_card, "Job card created from appointment", status.HTTP_201_CREATED)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_detail(request, pk):
    job_card = _get_job_card(request, pk)
    ensure_fresh(job_card)
    return _job_card_detail(request, job_card)


@api_view(["PATCH"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_update_details(request, pk):
    job_card = _get_job_card(request, pk)
    if not request.user.is_staff and _require_mechanic(request) is None:
        raise Forbidden("Only staff and assigned mechanics can edit job card details")
    data = _validated(JobCardDetailsInputSerializer, request)
    lifecycle.update_details(job_card, **data)
    return _job_card_detail(request, job_card, "Job card updated")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_set_status(request, pk):
    job_card = _get_job_card(request, pk)
    data = _validated(StatusUpdateSerializer, request)
    if request.user.is_staff:
        lifecycle.transition(
            job_card,
            data['status'],
            request.user,
            data['note'],
            override=data['override'],
        )
    else:
        mechanic = _require_mechanic(request)
        if mechanic is None:
            raise Forbidden("Only staff and assigned mechanics can change job status")
        lifecycle.mechanic_transition(mechanic, job_card, data['status'], data['note'])
    return _job_card_detail(request, job_card, f"Status updated to {data['status']}")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_add_item(request, pk):
    job_card = _get_job_card(request, pk)
    if not request.user.is_staff:
        mechanic = _require_mechanic(request)
        if mechanic is None:
            raise Forbidden("Only staff and assigned mechanics can add items")
    data = _validated(JobItemInputSerializer, request)
    item = lifecycle.add_item(job_card, data, request.user)
    return success(JobItemSerializer(item).data, "Item added", status=status.HTTP_201_CREATED)


@api_view(["DELETE"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def job_card_remove_item(request, pk, item_id):
    job_card = _get_job_card(request, pk)
    lifecycle.remove_item(job_card, item_id)
    return _job_card_detail(request, job_card, "Item removed")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_approve_items(request, pk):
    job_card = _get_job_card(request, pk)
    check_job_card_owner(request, job_card)
    data = _validated(ItemApprovalSerializer, request)
    lifecycle.approve_items(job_card, data['item_ids'], request.user)
    return _job_card_detail(request, job_card, "Items approved")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def job_card_assign_mechanics(request, pk):
    job_card = _get_job_card(request, pk)
    data = _validated(MechanicAssignmentSerializer, request)
    lifecycle.assign_mechanics(job_card, data['mechanic_ids'])
    return _job_card_detail(request, job_card, "Mechanics assigned")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_add_media(request, pk):
    job_card = _get_job_card(request, pk)
    if not request.user.is_staff and _require_mechanic(request) is None:
        raise Forbidden("Only staff and assigned mechanics can add media")
    data = _validated(MediaInputSerializer, request)
    urls = lifecycle.add_media(job_card, data['kind'], data['urls'])
    return success({'kind': data['kind'], 'urls': urls}, "Media added")


@api_view(["PATCH"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def job_card_update_billing(request, pk):
    job_card = _get_job_card(request, pk)
    if job_card.is_terminal:
        raise BusinessRuleViolation(f"Cannot modify a {job_card.status} job card")
    data = _validated(BillingUpdateSerializer, request)
    update_billing(
        job_card,
        discount=data.get('discount'),
        discount_reason=data.get('discount_reason'),
        tax_rate=data.get('tax_rate'),
    )
    return _job_card_detail(request, job_card, "Billing updated")


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_payment_summary(request, pk):
    job_card = _get_job_card(request, pk)
    ensure_fresh(job_card)
    data = JobCardDetailSerializer(job_card, context={'request': request}).get_payment_summary(job_card)
    return success(data)


# ------------------------------
# Estimates
# ------------------------------

@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_estimate(request, pk):
    job_card = _get_job_card(request, pk)
    if request.method == "POST":
        _require_staff(request)
        data = _validated(EstimateInputSerializer, request)
        estimate = estimates.create_or_revise(
            job_card,
            items=data['items'],
            discount_amount=data['discount_amount'],
            discount_reason=data['discount_reason'],
            tax_rate=data.get('tax_rate'),
            notes=data['notes'],
            expires_at=data.get('expires_at'),
            user=request.user,
        )
        return success(EstimateSerializer(estimate).data, "Estimate saved", status=status.HTTP_201_CREATED)

    current = job_card.current_estimate
    return success({
        'estimate': EstimateSerializer(current).data if current is not None and current.archived_at is None else None,
        'history': EstimateSerializer(job_card.estimate_history, many=True).data,
    })


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_estimate_approve(request, pk):
    job_card = _get_job_card(request, pk)
    check_job_card_owner(request, job_card)
    estimate = estimates.approve(job_card, request.user)
    return success(EstimateSerializer(estimate).data, "Estimate approved")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_estimate_reject(request, pk):
    job_card = _get_job_card(request, pk)
    check_job_card_owner(request, job_card)
    data = _validated(EstimateRejectSerializer, request)
    estimate = estimates.reject(job_card, data['reason'], request.user)
    return success(EstimateSerializer(estimate).data, "Estimate rejected")


# ------------------------------
# Coupons
# ------------------------------

@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_coupon_validate(request, pk):
    job_card = _get_job_card(request, pk)
    check_job_card_owner(request, job_card)
    data = _validated(CouponCodeSerializer, request)
    result = coupons.validate(data['code'], job_card)
    if result.get('discount_amount') is not None:
        result['discount_amount'] = str(result['discount_amount'])
    return success(result, "Coupon is valid" if result['valid'] else result['reason'])


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_coupon_apply(request, pk):
    job_card = _get_job_card(request, pk)
    check_job_card_owner(request, job_card)
    data = _validated(CouponCodeSerializer, request)
    result = coupons.apply(data['code'], job_card, request.user)
    return success({
        'code': result['job_card'].coupon_code,
        'discount_amount': str(result['discount_amount']),
        'grand_total': str(result['grand_total']),
    }, "Coupon applied")


@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def coupon_list(request):
    if request.method == "POST":
        coupon = coupons.create_coupon(request.data, request.user)
        return success(CouponSerializer(coupon).data, "Coupon created", status=status.HTTP_201_CREATED)
    qs = Coupon.objects.all()
    active = request.query_params.get('is_active')
    if active in ('true', 'false'):
        qs = qs.filter(is_active=active == 'true')
    return _paginate(request, qs, CouponSerializer)


@api_view(["PATCH"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def coupon_update(request, pk):
    coupon = Coupon.objects.filter(pk=pk).first()
    if coupon is None:
        raise NotFound("Coupon not found")
    coupon = coupons.update_coupon(coupon, request.data)
    return success(CouponSerializer(coupon).data, "Coupon updated")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def coupon_toggle(request, pk):
    coupon = Coupon.objects.filter(pk=pk).first()
    if coupon is None:
        raise NotFound("Coupon not found")
    coupon = coupons.toggle_coupon(coupon)
    return success(CouponSerializer(coupon).data, "Coupon activated" if coupon.is_active else "Coupon deactivated")


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def coupon_analytics(request):
    return success(coupons.coupon_analytics())


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def coupon_public(request):
    return success(PublicCouponSerializer(coupons.public_coupons(), many=True).data)


# ------------------------------
# Invoices
# ------------------------------

@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_invoice(request, pk):
    job_card = _get_job_card(request, pk)
    if request.method == "POST":
        _require_staff(request)
        invoice = invoice_utils.create_from_job_card(job_card, request.user, notes=request.data.get('notes', ''))
        return success(InvoiceSerializer(invoice).data, "Invoice generated", status=status.HTTP_201_CREATED)
    check_job_card_owner(request, job_card)
    invoice = invoice_utils.get_or_create_for_job_card(job_card, request.user)
    return success(InvoiceSerializer(invoice).data)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def invoice_list(request):
    qs = Invoice.objects.select_related('job_card').prefetch_related('items')
    if not request.user.is_staff:
        qs = qs.filter(customer=require_customer(request))
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)
    return _paginate(request, qs, InvoiceSerializer)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def invoice_detail(request, pk):
    invoice = _get_invoice(request, pk)
    summary = invoice_utils.invoice_with_payments(invoice)
    return success({
        'invoice': InvoiceSerializer(invoice).data,
        'payments': PaymentSerializer(summary['payments'], many=True).data,
        'total_paid': str(summary['total_paid']),
        'balance_amount': str(summary['balance_amount']),
        'is_paid': summary['is_paid'],
    })


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def invoice_pdf(request, pk):
    invoice = _get_invoice(request, pk)
    try:
        pdf_bytes = render_invoice_pdf(invoice)
    except ImportError as e:
        logger.error("Invoice PDF rendering unavailable: %s", e)
        return error("PDF generation is not available", status=status.HTTP_503_SERVICE_UNAVAILABLE)
    response = HttpResponse(pdf_bytes, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{invoice.invoice_number}.pdf"'
    return response


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def invoice_cancel(request, pk):
    invoice = _get_invoice(request, pk)
    invoice = invoice_utils.cancel_invoice(invoice, request.user, request.data.get('reason', ''))
    return success(InvoiceSerializer(invoice).data, "Invoice cancelled")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def invoice_payment_order(request, pk):
    invoice = _get_invoice(request, pk)
    data = _validated(PaymentOrderSerializer, request)
    order = payments.create_payment_order(invoice, data.get('amount'))
    order['amount'] = str(order['amount'])
    return success(order, "Payment order created", status=status.HTTP_201_CREATED)


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def invoice_verify_payment(request, pk):
    invoice = _get_invoice(request, pk)
    data = _validated(VerifyPaymentSerializer, request)
    payment = payments.verify_payment(
        invoice,
        order_id=data['razorpay_order_id'],
        payment_id=data['razorpay_payment_id'],
        signature=data['razorpay_signature'],
    )
    invoice.refresh_from_db()
    return success({
        'payment': PaymentSerializer(payment).data,
        'invoice': InvoiceSerializer(invoice).data,
    }, "Payment verified")


# ------------------------------
# Payments and refunds
# ------------------------------

@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def job_card_payments(request, pk):
    job_card = _get_job_card(request, pk)
    if request.method == "POST":
        _require_staff(request)
        data = _validated(ManualPaymentSerializer, request)
        payment = payments.record_manual_payment(job_card, user=request.user, **data)
        return success(PaymentSerializer(payment).data, "Payment recorded", status=status.HTTP_201_CREATED)
    return _paginate(request, job_card.payments.select_related('job_card', 'invoice'), PaymentSerializer)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def payment_list(request):
    qs = Payment.objects.select_related('job_card', 'invoice')
    if not request.user.is_staff:
        qs = qs.filter(customer=require_customer(request))
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)
    return _paginate(request, qs, PaymentSerializer)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def payment_detail(request, pk):
    payment = payments.get_payment(pk)
    if not request.user.is_staff:
        customer = _require_customer(request)
        if customer is None or payment.customer_id != customer.pk:
            raise NotFound("Payment not found")
    return success(PaymentSerializer(payment).data)


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def payment_complete(request, pk):
    payment = payments.complete_payment(payments.get_payment(pk), request.user)
    return success(PaymentSerializer(payment).data, "Payment completed")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def payment_fail(request, pk):
    payment = payments.fail_payment(payments.get_payment(pk), request.data.get("reason", ""))
    return success(PaymentSerializer(payment).data, "Payment marked failed")


@api_view(["GET", "POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def refund_list(request):
    if request.method == "POST":
        customer = None if request.user.is_staff else require_customer(request)
        data = _validated(RefundInputSerializer, request)
        payment = data['payment']
        if customer is not None and payment.customer_id != customer.pk:
            raise NotFound("Payment not found")
        refund = payments.request_refund(payment, amount=data['amount'], reason=data['reason'], user=request.user)
        return success(RefundRequestSerializer(refund).data, "Refund requested", status=status.HTTP_201_CREATED)

    qs = RefundRequest.objects.select_related('payment')
    if not request.user.is_staff:
        qs = qs.filter(customer=require_customer(request))
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter.upper())
    return _paginate(request, qs, RefundRequestSerializer)


def _get_refund(pk):
    refund = RefundRequest.objects.filter(pk=pk).first()
    if refund is None:
        raise NotFound("Refund request not found")
    return refund


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def refund_approve(request, pk):
    data = _validated(RefundDecisionSerializer, request)
    refund = payments.approve_refund(_get_refund(pk), request.user, data['remarks'])
    return success(RefundRequestSerializer(refund).data, "Refund approved")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def refund_reject(request, pk):
    data = _validated(RefundDecisionSerializer, request)
    refund = payments.reject_refund(_get_refund(pk), request.user, data['remarks'])
    return success(RefundRequestSerializer(refund).data, "Refund rejected")


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def refund_process(request, pk):
    data = _validated(RefundDecisionSerializer, request)
    refund = payments.process_refund(_get_refund(pk), request.user, data['remarks'])
    return success(RefundRequestSerializer(refund).data, "Refund processed")


# ------------------------------
# Notifications and dashboard
# ------------------------------

def _notification_queryset(request):
    customer = _require_customer(request)
    if customer is not None:
        return Notification.objects.filter(Q(customer=customer) | Q(recipient_user=request.user))
    return Notification.objects.filter(recipient_user=request.user)


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def notification_list(request):
    qs = _notification_queryset(request)
    if request.query_params.get('unread') == 'true':
        qs = qs.filter(is_read=False)
    return _paginate(request, qs, NotificationSerializer)


@api_view(["POST"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsAuthenticated])
def notification_mark_read(request, pk):
    notification = _notification_queryset(request).filter(pk=pk).first()
    if notification is None:
        raise NotFound("Notification not found")
    notification.is_read = True
    notification.save(update_fields=['is_read'])
    return success(NotificationSerializer(notification).data, "Notification marked as read")


@api_view(["GET"])
@authentication_classes(AUTHENTICATION)
@permission_classes([IsStaff])
def dashboard_stats(request):
    stats = lifecycle.job_card_stats()
    stats['revenue_collected'] = str(stats['revenue_collected'])
    stats['outstanding_balance'] = str(stats['outstanding_balance'])
    return success(stats)
