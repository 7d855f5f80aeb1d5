# api/urls.py
from django.urls import path, include
from rest_framework.authtoken.views import obtain_auth_token
from rest_framework.routers import DefaultRouter
from .views import (
    CustomerViewSet,
    MechanicViewSet,
    VehicleViewSet,
)
from . import views

router = DefaultRouter()
router.register(r'customers', CustomerViewSet)
router.register(r'vehicles', VehicleViewSet)
router.register(r'mechanics', MechanicViewSet)

urlpatterns = [
    path('auth/login-token/', obtain_auth_token, name='api_token_auth'),

    # Job cards
    path('job-cards/', views.job_cards, name='job_cards'),
    path('job-cards/from-appointment/', views.job_card_from_appointment, name='job_card_from_appointment'),
    path('job-cards/<int:pk>/', views.job_card_detail, name='job_card_detail'),
    path('job-cards/<int:pk>/details/', views.job_card_update_details, name='job_card_update_details'),
    path('job-cards/<int:pk>/status/', views.job_card_set_status, name='job_card_set_status'),
    path('job-cards/<int:pk>/items/', views.job_card_add_item, name='job_card_add_item'),
    path('job-cards/<int:pk>/items/approve/', views.job_card_approve_items, name='job_card_approve_items'),
    path('job-cards/<int:pk>/items/<int:item_id>/', views.job_card_remove_item, name='job_card_remove_item'),
    path('job-cards/<int:pk>/mechanics/', views.job_card_assign_mechanics, name='job_card_assign_mechanics'),
    path('job-cards/<int:pk>/media/', views.job_card_add_media, name='job_card_add_media'),
    path('job-cards/<int:pk>/billing/', views.job_card_update_billing, name='job_card_update_billing'),
    path('job-cards/<int:pk>/payment-summary/', views.job_card_payment_summary, name='job_card_payment_summary'),
    path('job-cards/<int:pk>/estimate/', views.job_card_estimate, name='job_card_estimate'),
    path('job-cards/<int:pk>/estimate/approve/', views.job_card_estimate_approve, name='job_card_estimate_approve'),
    path('job-cards/<int:pk>/estimate/reject/', views.job_card_estimate_reject, name='job_card_estimate_reject'),
    path('job-cards/<int:pk>/coupon/validate/', views.job_card_coupon_validate, name='job_card_coupon_validate'),
    path('job-cards/<int:pk>/coupon/apply/', views.job_card_coupon_apply, name='job_card_coupon_apply'),
    path('job-cards/<int:pk>/invoice/', views.job_card_invoice, name='job_card_invoice'),
    path('job-cards/<int:pk>/payments/', views.job_card_payments, name='job_card_payments'),

    # Invoices
    path('invoices/', views.invoice_list, name='invoice_list'),
    path('invoices/<int:pk>/', views.invoice_detail, name='invoice_detail'),
    path('invoices/<int:pk>/pdf/', views.invoice_pdf, name='invoice_pdf'),
    path('invoices/<int:pk>/cancel/', views.invoice_cancel, name='invoice_cancel'),
    path('invoices/<int:pk>/payment-order/', views.invoice_payment_order, name='invoice_payment_order'),
    path('invoices/<int:pk>/verify-payment/', views.invoice_verify_payment, name='invoice_verify_payment'),

    # Payments and refunds
    path('payments/', views.payment_list, name='payment_list'),
    path('payments/<int:pk>/', views.payment_detail, name='payment_detail'),
    path('payments/<int:pk>/complete/', views.payment_complete, name='payment_complete'),
    path('payments/<int:pk>/fail/', views.payment_fail, name='payment_fail'),
    path('refunds/', views.refund_list, name='refund_list'),
    path('refunds/<int:pk>/approve/', views.refund_approve, name='refund_approve'),
    path('refunds/<int:pk>/reject/', views.refund_reject, name='refund_reject'),
    path('refunds/<int:pk>/process/', views.refund_process, name='refund_process'),

    # Coupons
    path('coupons/', views.coupon_list, name='coupon_list'),
    path('coupons/public/', views.coupon_public, name='coupon_public'),
    path('coupons/analytics/', views.coupon_analytics, name='coupon_analytics'),
    path('coupons/<int:pk>/', views.coupon_update, name='coupon_update'),
    path('coupons/<int:pk>/toggle/', views.coupon_toggle, name='coupon_toggle'),

    # Notifications and dashboard
    path('notifications/', views.notification_list, name='notification_list'),
    path('notifications/<int:pk>/read/', views.notification_mark_read, name='notification_mark_read'),
    path('dashboard/stats/', views.dashboard_stats, name='dashboard_stats'),

    path('', include(router.urls)),
]
