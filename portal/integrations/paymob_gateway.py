"""
Paymob Accept gateway — every outbound call to the payment gateway goes
through this class.  Services never call ``requests`` directly.

Checkout is three sequential calls, each with a fixed timeout and no retry:
    1. POST /auth/tokens                → auth token
    2. POST /ecommerce/orders           → order id
    3. POST /acceptance/payment_keys    → payment key (1 h expiry)
and the citizen is sent to the hosted iframe with that key.

Webhook/redirect authenticity is an HMAC-SHA512 over a fixed field list
(``HMAC_FIELDS``), compared in constant time.

Lifecycle: ``create_app`` builds one instance into
``app.extensions["paymob"]``; ``close()`` releases the HTTP session.

Testability: pass a fake ``session`` to PaymobGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any

import requests
from flask import current_app

from portal.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
PAYMENT_KEY_EXPIRATION = 3600
CURRENCY = "EGP"
MERCHANT_ORDER_PREFIX = "BRD"

# Concatenation order of the signed callback fields
HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)

# (status, arabic message); first truthy flag wins
_STATUS_PRECEDENCE = (
    ("is_voided", "voided", "تم إلغاء العملية"),
    ("is_refunded", "refunded", "تم استرداد المبلغ"),
    ("error_occured", "failed", "فشلت عملية الدفع"),
    ("pending", "pending", "العملية قيد المعالجة"),
    ("success", "success", "تمت عملية الدفع بنجاح"),
)

_DEFAULT_BILLING = {
    "apartment": "NA",
    "floor": "NA",
    "building": "NA",
    "street": "شمال سيناء",
    "shipping_method": "NA",
    "postal_code": "00000",
    "city": "العريش",
    "state": "شمال سيناء",
    "country": "EG",
    "email": "customer@bardawil.gov.eg",
    "phone_number": "01000000000",
    "first_name": "مستخدم",
    "last_name": "البردويل",
}


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _render(value) -> str:
    """Render one signed field the way the gateway does."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return _render(value.get("id"))
    return str(value)


def _field(obj: dict, name: str):
    # Webhook bodies nest source_data; redirect query strings flatten it.
    if name in obj:
        return obj[name]
    if "." in name:
        head, tail = name.split(".", 1)
        nested = obj.get(head)
        if isinstance(nested, dict):
            return nested.get(tail)
    return None


class PaymobGateway:
    """Paymob Accept REST gateway.

    Usage:
        gateway = current_app.extensions["paymob"]
        checkout = gateway.initiate_payment(application_id=42, amount=Decimal("150.00"), ...)
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str = "https://accept.paymob.com/api",
        api_key: str = "",
        integration_id: str = "",
        iframe_id: str = "",
        hmac_secret: str = "",
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self._session: requests.Session | None = session
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.integration_id = integration_id
        self.iframe_id = iframe_id
        self.hmac_secret = hmac_secret or ""
        self.timeout = timeout

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "PaymobGateway":
        return cls(
            session,
            base_url=config.get("PAYMOB_BASE_URL", "https://accept.paymob.com/api"),
            api_key=config.get("PAYMOB_API_KEY", ""),
            integration_id=config.get("PAYMOB_INTEGRATION_ID", ""),
            iframe_id=config.get("PAYMOB_IFRAME_ID", ""),
            hmac_secret=config.get("PAYMOB_HMAC_SECRET", ""),
            timeout=config.get("PAYMOB_TIMEOUT", _DEFAULT_TIMEOUT),
        )

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _post(self, path: str, payload: dict, step: str) -> dict:
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            logger.error("Paymob %s failed: %s", step, exc)
            raise GatewayError(f"Payment gateway error during {step}") from exc
        except ValueError as exc:
            logger.error("Paymob %s returned a non-JSON body", step)
            raise GatewayError(f"Payment gateway returned an invalid response during {step}") from exc
        logger.info("Paymob %s ok (%dms)", step, int((time.monotonic() - start) * 1000))
        return body

    # ── Checkout steps ───────────────────────────────────────────────────────

    def authenticate(self) -> str:
        body = self._post("/auth/tokens", {"api_key": self.api_key}, "authentication")
        token = body.get("token")
        if not token:
            raise GatewayError("Payment gateway did not return an auth token")
        return token

    def create_order(self, auth_token: str, amount_cents: int, merchant_order_id: str,
                     items: list[dict] | None = None) -> dict:
        body = self._post("/ecommerce/orders", {
            "auth_token": auth_token,
            "delivery_needed": False,
            "amount_cents": amount_cents,
            "currency": CURRENCY,
            "merchant_order_id": merchant_order_id,
            "items": items or [],
        }, "order registration")
        if not body.get("id"):
            raise GatewayError("Payment gateway did not return an order id")
        return body

    def get_payment_key(self, auth_token: str, order_id, amount_cents: int,
                        billing_data: dict | None = None,
                        expiration: int = PAYMENT_KEY_EXPIRATION) -> str:
        billing = dict(_DEFAULT_BILLING)
        billing.update({k: v for k, v in (billing_data or {}).items() if v})
        body = self._post("/acceptance/payment_keys", {
            "auth_token": auth_token,
            "amount_cents": amount_cents,
            "expiration": expiration,
            "order_id": order_id,
            "billing_data": billing,
            "currency": CURRENCY,
            "integration_id": int(self.integration_id) if str(self.integration_id).isdigit() else self.integration_id,
        }, "payment key")
        token = body.get("token")
        if not token:
            raise GatewayError("Payment gateway did not return a payment key")
        return token

    def iframe_url(self, payment_key: str) -> str:
        return f"https://accept.paymob.com/api/acceptance/iframes/{self.iframe_id}?payment_token={payment_key}"

    def initiate_payment(self, *, application_id: int, application_number: str, amount,
                         applicant_name: str = "", phone: str = "", email: str = "",
                         description: str = "") -> dict:
        """Run the three checkout calls and return the iframe URL.

        Returns:
            {"order_id", "payment_key", "payment_url", "merchant_order_id",
             "amount_cents"}
        """
        amount_cents = int(round(float(amount) * 100))
        merchant_order_id = build_merchant_order_id(application_id)

        auth_token = self.authenticate()
        order = self.create_order(auth_token, amount_cents, merchant_order_id, items=[{
            "name": description or "ترخيص",
            "amount_cents": amount_cents,
            "description": f"رسوم ترخيص {application_number}",
            "quantity": 1,
        }])

        first, _, last = (applicant_name or "").strip().partition(" ")
        payment_key = self.get_payment_key(auth_token, order["id"], amount_cents, {
            "first_name": first,
            "last_name": last,
            "phone_number": phone,
            "email": email,
        })
        return {
            "order_id": str(order["id"]),
            "payment_key": payment_key,
            "payment_url": self.iframe_url(payment_key),
            "merchant_order_id": merchant_order_id,
            "amount_cents": amount_cents,
        }

    # ── Signatures ───────────────────────────────────────────────────────────

    def compute_hmac(self, obj: dict[str, Any]) -> str:
        message = "".join(_render(_field(obj, name)) for name in HMAC_FIELDS)
        return hmac.new(self.hmac_secret.encode(), message.encode(), hashlib.sha512).hexdigest()

    def verify_hmac(self, obj: dict | None, received: str | None) -> bool:
        if not obj or not received or not self.hmac_secret:
            return False
        return hmac.compare_digest(self.compute_hmac(obj), str(received).lower())


# ── Stateless helpers ───────────────────────────────────────────────────────


def parse_transaction_status(obj: dict) -> dict:
    """Classify a transaction: voided > refunded > failed > pending > success > unknown."""
    for flag, status, message in _STATUS_PRECEDENCE:
        if _truthy(obj.get(flag)):
            return {"status": status, "message": message}
    return {"status": "unknown", "message": "حالة غير معروفة"}


def build_merchant_order_id(application_id: int) -> str:
    return f"{MERCHANT_ORDER_PREFIX}-{application_id}-{int(time.time() * 1000)}"


def extract_application_id(merchant_order_id: str | None) -> int | None:
    """``BRD-<id>-<ms>`` → id; anything else → None."""
    if not merchant_order_id:
        return None
    parts = str(merchant_order_id).split("-")
    if len(parts) >= 2 and parts[0] == MERCHANT_ORDER_PREFIX:
        try:
            return int(parts[1])
        except ValueError:
            return None
    return None


def get_gateway() -> PaymobGateway:
    return current_app.extensions["paymob"]
