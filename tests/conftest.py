"""
Shared pytest fixtures for the licensing portal test suite.

Provides:
    - app: Flask application (session-scoped), uploads in a temp dir
    - session: Per-test DB reset + cache clear + status lookup seed (autouse)
    - client: Flask test client
    - citizen / other_citizen / admin_user / financial_user / super_admin
    - *_headers: Bearer headers for those users
    - fisherman_price: active price row for fisherman/صياد مؤمن عليه
    - application / approved_application / receipt_submitted_application:
      a citizen fisherman application at successive lifecycle stages
    - fake_gateway: PaymobGateway wired to a scripted requests.Session
"""

import io
from datetime import date
from decimal import Decimal

import pytest
import requests

from portal import create_app
from portal.integrations.paymob_gateway import PaymobGateway
from portal.models import db as _db
from portal.models.pricing import LicensePrice
from portal.models.user import (
    ROLE_ADMIN,
    ROLE_CITIZEN,
    ROLE_FINANCIAL_OFFICER,
    ROLE_SUPER_ADMIN,
    User,
)
from portal.services import jwt_service
from portal.services.cache_service import get_cache
from portal.services.seed_service import seed_statuses
from portal.utils.crypto import hash_password

PASSWORD = "Passw0rd!"

CITIZEN_NID = "29001011234567"
OTHER_CITIZEN_NID = "29505053412345"
ADMIN_NID = "28503151912345"
FINANCIAL_NID = "28807072112345"
SUPER_ADMIN_NID = "28001010112345"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed status lookup, reset DB and cache afterwards."""
    with app.app_context():
        get_cache().clear()
        seed_statuses()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        get_cache().clear()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


def _make_user(password_hash, national_id, phone, role, first="محمد", last="أحمد"):
    user = User(
        national_id=national_id,
        phone=phone,
        first_name_ar=first,
        last_name_ar=last,
        password_hash=password_hash,
        role=role,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _bearer(user):
    return {"Authorization": f"Bearer {jwt_service.generate_access_token(user.id, user.role)}"}


@pytest.fixture()
def citizen(password_hash):
    return _make_user(password_hash, CITIZEN_NID, "01012345678", ROLE_CITIZEN)


@pytest.fixture()
def other_citizen(password_hash):
    return _make_user(password_hash, OTHER_CITIZEN_NID, "01087654321", ROLE_CITIZEN, "سعيد", "حسن")


@pytest.fixture()
def admin_user(password_hash):
    return _make_user(password_hash, ADMIN_NID, "01111111111", ROLE_ADMIN, "مراجع", "الجهاز")


@pytest.fixture()
def financial_user(password_hash):
    return _make_user(password_hash, FINANCIAL_NID, "01222222222", ROLE_FINANCIAL_OFFICER, "مسؤول", "مالي")


@pytest.fixture()
def super_admin(password_hash):
    return _make_user(password_hash, SUPER_ADMIN_NID, "01555555555", ROLE_SUPER_ADMIN, "مدير", "النظام")


@pytest.fixture()
def citizen_headers(citizen):
    return _bearer(citizen)


@pytest.fixture()
def other_citizen_headers(other_citizen):
    return _bearer(other_citizen)


@pytest.fixture()
def admin_headers(admin_user):
    return _bearer(admin_user)


@pytest.fixture()
def financial_headers(financial_user):
    return _bearer(financial_user)


@pytest.fixture()
def super_admin_headers(super_admin):
    return _bearer(super_admin)


# ── Reference data ───────────────────────────────────────────────────────


@pytest.fixture()
def fisherman_price():
    """Active 150 EGP quarterly price for fisherman/صياد مؤمن عليه (new licenses)."""
    row = LicensePrice(
        license_type="fisherman",
        category="صياد مؤمن عليه",
        base_duration="3_months",
        price=Decimal("150.00"),
        is_renewal_price=False,
        effective_from=date(2020, 1, 1),
    )
    _db.session.add(row)
    _db.session.commit()
    return row


FISHERMAN_PAYLOAD = {
    "application_type": "fisherman",
    "license_category": "صياد مؤمن عليه",
    "is_renewal": False,
    "data": {"marina": "مرسى التلول"},
}


@pytest.fixture()
def application(client, citizen_headers):
    """A fisherman application submitted through the API (status ``received``)."""
    res = client.post("/api/v1/applications", json=FISHERMAN_PAYLOAD, headers=citizen_headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["application"]


# ── Payment gateway ──────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Stands in for requests.Session: replies by URL suffix and records calls."""

    def __init__(self, replies=None):
        self.replies = replies or {
            "/auth/tokens": {"token": "auth-token"},
            "/ecommerce/orders": {"id": 987654},
            "/acceptance/payment_keys": {"token": "payment-key"},
        }
        self.calls = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        for suffix, reply in self.replies.items():
            if url.endswith(suffix):
                if isinstance(reply, requests.RequestException):
                    raise reply
                if isinstance(reply, FakeResponse):
                    return reply
                return FakeResponse(reply)
        return FakeResponse({}, status_code=404)

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_session():
    return FakeSession()


@pytest.fixture()
def fake_gateway(app, fake_session):
    """Swap the app's gateway for one using the scripted session; restore afterwards."""
    original = app.extensions["paymob"]
    gateway = PaymobGateway.from_config(app.config, session=fake_session)
    app.extensions["paymob"] = gateway
    yield gateway
    app.extensions["paymob"] = original


@pytest.fixture()
def approved_application(client, application, admin_headers, fisherman_price):
    """The ``application`` fixture approved by an admin (status ``approved_payment_pending``)."""
    res = client.post(f"/api/v1/admin/applications/{application['id']}/approve",
                      json={}, headers=admin_headers)
    assert res.status_code == 200, res.get_json()
    return res.get_json()["application"]


@pytest.fixture()
def receipt_submitted_application(client, approved_application, citizen_headers):
    """Approved application with an uploaded payment receipt (status ``payment_submitted``)."""
    res = client.post(
        f"/api/v1/applications/{approved_application['id']}/receipt",
        data={"receipt": (io.BytesIO(b"%PDF-1.4 receipt"), "receipt.pdf")},
        headers=citizen_headers,
        content_type="multipart/form-data",
    )
    assert res.status_code == 200, res.get_json()
    return res.get_json()["application"]
