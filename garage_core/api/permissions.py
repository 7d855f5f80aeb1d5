from rest_framework.permissions import BasePermission

from workshop.exceptions import Forbidden, NotFound
from workshop.models import Customer, Invoice, Mechanic


class IsStaff(BasePermission):
    message = "Admin access required"

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_staff)


def _require_customer(request):
    try:
        return request.user.customer_portal
    except Customer.DoesNotExist:
        return None


def _require_mechanic(request):
    try:
        mechanic = request.user.mechanic_portal
    except Mechanic.DoesNotExist:
        return None
    return mechanic if mechanic.is_active else None


def require_customer(request):
    customer = _require_customer(request)
    if customer is None:
        raise Forbidden("Customer account required")
    return customer


def scope_job_cards(request, queryset):
    """Limit a job card queryset to what the caller may see."""
    user = request.user
    if user.is_staff:
        return queryset
    mechanic = _require_mechanic(request)
    if mechanic is not None:
        return queryset.filter(mechanics=mechanic)
    customer = _require_customer(request)
    if customer is not None:
        return queryset.filter(customer=customer)
    return queryset.none()


def check_job_card_access(request, job_card):
    if request.user.is_staff:
        return
    mechanic = _require_mechanic(request)
    if mechanic is not None and job_card.is_assigned_to(mechanic):
        return
    customer = _require_customer(request)
    if customer is not None and job_card.customer_id == customer.pk:
        return
    raise NotFound("Job card not found")


def check_job_card_owner(request, job_card):
    """Customer-only actions; admins act on behalf of the customer."""
    if request.user.is_staff:
        return
    customer = require_customer(request)
    if job_card.customer_id != customer.pk:
        raise NotFound("Job card not found")


def check_invoice_access(request, invoice: Invoice):
    if request.user.is_staff:
        return
    customer = _require_customer(request)
    if customer is None or invoice.customer_id != customer.pk:
        raise Forbidden("You do not have access to this invoice")
