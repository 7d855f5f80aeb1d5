import hashlib
import hmac
import logging

import requests
from django.conf import settings

from .models import ensure_decimal, round2

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.razorpay.com/v1"


class RazorpayApiError(Exception):
    pass


def _api_base_url():
    override = (getattr(settings, "RAZORPAY_API_BASE_URL", "") or "").strip()
    if override:
        return override.rstrip("/")
    return DEFAULT_API_BASE_URL


def _currency():
    return (getattr(settings, "CURRENCY", "INR") or "INR").upper()


def get_key_id() -> str:
    return getattr(settings, "RAZORPAY_KEY_ID", "") or ""


def is_configured() -> bool:
    return bool(get_key_id() and getattr(settings, "RAZORPAY_KEY_SECRET", ""))


def to_subunits(amount) -> int:
    """Rupees to paise."""
    return int(round2(amount) * 100)


def from_subunits(value):
    return round2(ensure_decimal(value) / 100)


def verify_payment_signature(order_id: str, payment_id: str, signature: str) -> bool:
    secret = getattr(settings, "RAZORPAY_KEY_SECRET", "") or ""
    if not signature or not secret or not order_id or not payment_id:
        return False
    expected = hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    def __init__(self, key_id=None, key_secret=None):
        self.api_base_url = _api_base_url()
        self.session = requests.Session()
        self.session.auth = (
            key_id or get_key_id(),
            key_secret or getattr(settings, "RAZORPAY_KEY_SECRET", ""),
        )
        self.session.headers.update({"Content-Type": "application/json"})

    def _request(self, method: str, path: str, *, json=None, params=None):
        url = f"{self.api_base_url}{path}"
        try:
            resp = self.session.request(method, url, json=json, params=params, timeout=20)
        except requests.RequestException as exc:
            raise RazorpayApiError(f"Razorpay request failed: {exc}") from exc
        if not resp.ok:
            raise RazorpayApiError(f"Razorpay API error {resp.status_code}: {resp.text}")
        if not resp.content:
            return {}
        return resp.json()

    def create_order(self, amount, *, receipt: str, notes=None):
        payload = {
            "amount": to_subunits(amount),
            "currency": _currency(),
            "receipt": receipt,
            "notes": notes or {},
        }
        return self._request("POST", "/orders", json=payload)

    def fetch_payment(self, payment_id: str):
        return self._request("GET", f"/payments/{payment_id}")

    def initiate_refund(self, payment_id: str, amount=None, *, notes=None):
        payload = {"notes": notes or {}}
        if amount is not None:
            payload["amount"] = to_subunits(amount)
        return self._request("POST", f"/payments/{payment_id}/refund", json=payload)
