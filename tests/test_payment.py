"""
Tests for online payment: gateway checkout calls, HMAC verification,
webhook reconciliation (idempotent by transaction id), the browser
redirect and the payment status endpoint.
"""

import pytest
import requests

from portal.core.exceptions import GatewayError
from portal.integrations.paymob_gateway import (
    PaymobGateway,
    build_merchant_order_id,
    extract_application_id,
    parse_transaction_status,
)
from portal.models import db
from portal.models.application import Application
from portal.models.notification import Notification
from portal.models.payment import ProcessedPaymentTransaction
from portal.services import payment_service

CALLBACK_URL = "/api/v1/payments/callback"


def _txn(application_id, txn_id=5001, **overrides):
    obj = {
        "id": txn_id,
        "amount_cents": 15000,
        "created_at": "2026-01-01T10:00:00",
        "currency": "EGP",
        "error_occured": False,
        "has_parent_transaction": False,
        "integration_id": 123456,
        "is_3d_secure": True,
        "is_auth": False,
        "is_capture": False,
        "is_refunded": False,
        "is_standalone_payment": True,
        "is_voided": False,
        "order": {"id": 987654, "merchant_order_id": f"BRD-{application_id}-1700000000000"},
        "owner": 42,
        "pending": False,
        "source_data": {"pan": "2346", "sub_type": "MasterCard", "type": "card"},
        "success": True,
    }
    obj.update(overrides)
    return obj


def _signed(gateway, obj):
    return {"type": "TRANSACTION", "obj": obj, "hmac": gateway.compute_hmac(obj)}


# ═════════════════════════════════════════════════════════════════════════════
# Gateway helpers
# ═════════════════════════════════════════════════════════════════════════════


class TestGatewayHelpers:
    def test_merchant_order_id_round_trip(self):
        assert extract_application_id(build_merchant_order_id(42)) == 42

    @pytest.mark.parametrize("value", [None, "", "XYZ-1-2", "BRD-abc-1", "BRD"])
    def test_unparsable_merchant_order_ids(self, value):
        assert extract_application_id(value) is None

    @pytest.mark.parametrize("flags, status", [
        ({"success": True}, "success"),
        ({"success": True, "pending": True}, "pending"),
        ({"success": True, "error_occured": True}, "failed"),
        ({"success": True, "is_refunded": True}, "refunded"),
        ({"is_refunded": True, "is_voided": True}, "voided"),
        ({"success": "false"}, "unknown"),
    ])
    def test_status_precedence(self, flags, status):
        assert parse_transaction_status(flags)["status"] == status

    def test_hmac_verification(self):
        gateway = PaymobGateway(hmac_secret="s3cret")
        obj = _txn(1)
        digest = gateway.compute_hmac(obj)
        assert len(digest) == 128
        assert gateway.verify_hmac(obj, digest)
        assert gateway.verify_hmac(obj, digest.upper())
        assert not gateway.verify_hmac({**obj, "amount_cents": 1}, digest)
        assert not gateway.verify_hmac(obj, None)

    def test_hmac_matches_flattened_redirect_params(self):
        gateway = PaymobGateway(hmac_secret="s3cret")
        obj = _txn(1)
        flat = {k: v for k, v in obj.items() if k not in ("order", "source_data")}
        flat.update({"order": "987654", "source_data.pan": "2346",
                     "source_data.sub_type": "MasterCard", "source_data.type": "card"})
        flat = {k: ("true" if v is True else "false" if v is False else str(v)) for k, v in flat.items()}
        assert gateway.compute_hmac(flat) == gateway.compute_hmac(obj)

    def test_no_secret_never_verifies(self):
        gateway = PaymobGateway()
        assert not gateway.verify_hmac(_txn(1), gateway.compute_hmac(_txn(1)))

    def test_checkout_calls(self, fake_gateway, fake_session):
        checkout = fake_gateway.initiate_payment(
            application_id=7, application_number="BRD-2026-0007", amount="150.00",
            applicant_name="محمد أحمد", phone="01012345678",
        )
        assert checkout["order_id"] == "987654"
        assert checkout["amount_cents"] == 15000
        assert checkout["payment_url"].endswith("/iframes/7890?payment_token=payment-key")
        assert checkout["merchant_order_id"].startswith("BRD-7-")

        urls = [c["url"] for c in fake_session.calls]
        assert [u.rsplit("/api", 1)[1] for u in urls] == [
            "/auth/tokens", "/ecommerce/orders", "/acceptance/payment_keys",
        ]
        key_call = fake_session.calls[2]["json"]
        assert key_call["integration_id"] == 123456
        assert key_call["billing_data"]["first_name"] == "محمد"
        assert all(c["timeout"] == fake_gateway.timeout for c in fake_session.calls)

    def test_network_failure_becomes_gateway_error(self, fake_gateway, fake_session):
        fake_session.replies["/auth/tokens"] = requests.ConnectionError("down")
        with pytest.raises(GatewayError):
            fake_gateway.authenticate()

    def test_missing_token_is_gateway_error(self, fake_gateway, fake_session):
        fake_session.replies["/auth/tokens"] = {}
        with pytest.raises(GatewayError):
            fake_gateway.authenticate()

    def test_close_releases_session(self, fake_gateway, fake_session):
        fake_gateway.close()
        assert fake_session.closed


# ═════════════════════════════════════════════════════════════════════════════
# Initiate
# ═════════════════════════════════════════════════════════════════════════════


class TestInitiatePayment:
    def test_initiate_for_approved_application(self, client, approved_application, citizen_headers, fake_gateway):
        res = client.post(f"/api/v1/payments/{approved_application['id']}/initiate", headers=citizen_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["amount"] == 150.0
        assert body["payment_url"].startswith("https://accept.paymob.com/api/acceptance/iframes/7890")
        assert db.session.get(Application, approved_application["id"]).paymob_order_id == "987654"

    def test_initiate_requires_awaiting_payment(self, client, application, citizen_headers, fake_gateway):
        res = client.post(f"/api/v1/payments/{application['id']}/initiate", headers=citizen_headers)
        assert res.status_code == 400

    def test_initiate_hidden_from_other_citizen(self, client, approved_application,
                                                other_citizen_headers, fake_gateway):
        res = client.post(f"/api/v1/payments/{approved_application['id']}/initiate",
                          headers=other_citizen_headers)
        assert res.status_code == 404

    def test_gateway_failure_is_502(self, client, approved_application, citizen_headers,
                                    fake_gateway, fake_session):
        fake_session.replies["/ecommerce/orders"] = requests.Timeout("slow")
        res = client.post(f"/api/v1/payments/{approved_application['id']}/initiate", headers=citizen_headers)
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_GATEWAY"
        assert db.session.get(Application, approved_application["id"]).paymob_order_id is None


# ═════════════════════════════════════════════════════════════════════════════
# Webhook
# ═════════════════════════════════════════════════════════════════════════════


class TestCallback:
    def test_success_completes_application(self, client, approved_application, citizen, fake_gateway):
        body = _signed(fake_gateway, _txn(approved_application["id"]))
        res = client.post(CALLBACK_URL, json=body)
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

        app_row = db.session.get(Application, approved_application["id"])
        assert app_row.status == "completed"
        assert app_row.paymob_transaction_id == "5001"
        assert app_row.payment_verified_at is not None
        entry = ProcessedPaymentTransaction.query.filter_by(transaction_id="5001").one()
        assert entry.outcome == "success"
        assert Notification.query.filter_by(user_id=citizen.id, type="payment_verified").count() == 1

    def test_hmac_in_query_string(self, client, approved_application, fake_gateway):
        obj = _txn(approved_application["id"])
        res = client.post(f"{CALLBACK_URL}?hmac={fake_gateway.compute_hmac(obj)}", json={"obj": obj})
        assert res.get_json()["status"] == "success"

    def test_invalid_signature_is_ignored(self, client, approved_application, fake_gateway):
        body = _signed(fake_gateway, _txn(approved_application["id"]))
        body["obj"]["amount_cents"] = 1
        res = client.post(CALLBACK_URL, json=body)
        assert res.status_code == 200
        assert res.get_json() == {"status": "ignored", "reason": "invalid_signature", "application_id": None}
        assert db.session.get(Application, approved_application["id"]).status == "approved_payment_pending"
        assert ProcessedPaymentTransaction.query.count() == 0

    def test_duplicate_delivery_has_no_effect(self, client, approved_application, citizen, fake_gateway):
        body = _signed(fake_gateway, _txn(approved_application["id"]))
        client.post(CALLBACK_URL, json=body)
        version = db.session.get(Application, approved_application["id"]).version

        res = client.post(CALLBACK_URL, json=body)
        assert res.get_json()["status"] == "duplicate"
        assert db.session.get(Application, approved_application["id"]).version == version
        assert ProcessedPaymentTransaction.query.count() == 1
        assert Notification.query.filter_by(user_id=citizen.id, type="payment_verified").count() == 1

    def test_concurrent_delivery_reports_duplicate(self, client, approved_application, fake_gateway,
                                                   monkeypatch):
        # Another worker committed the same transaction after this one checked the ledger
        db.session.add(ProcessedPaymentTransaction(
            transaction_id="5001", application_id=approved_application["id"], outcome="success",
        ))
        db.session.commit()
        monkeypatch.setattr(payment_service, "_already_processed", lambda transaction_id: False)

        res = client.post(CALLBACK_URL, json=_signed(fake_gateway, _txn(approved_application["id"])))
        assert res.status_code == 200
        assert res.get_json() == {"status": "duplicate", "reason": None,
                                  "application_id": approved_application["id"]}
        assert db.session.get(Application, approved_application["id"]).status == "approved_payment_pending"
        assert ProcessedPaymentTransaction.query.count() == 1

    def test_failed_payment_notifies_without_transition(self, client, approved_application, citizen, fake_gateway):
        obj = _txn(approved_application["id"], success=False, error_occured=True)
        res = client.post(CALLBACK_URL, json=_signed(fake_gateway, obj))
        assert res.get_json()["status"] == "failed"
        assert db.session.get(Application, approved_application["id"]).status == "approved_payment_pending"
        assert Notification.query.filter_by(user_id=citizen.id, type="payment_failed").count() == 1
        assert ProcessedPaymentTransaction.query.one().outcome == "failed"

    def test_success_outside_payable_status_is_recorded(self, client, application, fake_gateway):
        res = client.post(CALLBACK_URL, json=_signed(fake_gateway, _txn(application["id"])))
        assert res.get_json()["status"] == "recorded"
        assert db.session.get(Application, application["id"]).status == "received"

    def test_unknown_application_is_ignored(self, client, fake_gateway):
        res = client.post(CALLBACK_URL, json=_signed(fake_gateway, _txn(999)))
        assert res.get_json()["reason"] == "application_not_found"

    def test_unparsable_order_is_ignored(self, client, fake_gateway):
        obj = _txn(1, order={"id": 1, "merchant_order_id": "SOMETHING-ELSE"})
        res = client.post(CALLBACK_URL, json=_signed(fake_gateway, obj))
        assert res.get_json()["reason"] == "unparsable_order"

    def test_empty_body_is_ignored(self, client):
        res = client.post(CALLBACK_URL, data="", content_type="text/plain")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ignored"


# ═════════════════════════════════════════════════════════════════════════════
# Redirect & status
# ═════════════════════════════════════════════════════════════════════════════


class TestRedirect:
    def _params(self, app, application_id, success="true", signed=True):
        params = {"id": "7001", "success": success,
                  "merchant_order_id": f"BRD-{application_id}-1700000000000"}
        if signed:
            params["hmac"] = app.extensions["paymob"].compute_hmac(params)
        return params

    def test_success_redirect_verifies_payment(self, app, client, approved_application):
        res = client.get("/api/v1/payments/redirect", query_string=self._params(app, approved_application["id"]),
                         headers={"Accept": "application/json"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "success"
        assert body["application"]["status"] == "payment_verified"

    def test_failed_redirect_leaves_status(self, app, client, approved_application):
        res = client.get("/api/v1/payments/redirect",
                         query_string=self._params(app, approved_application["id"], success="false"),
                         headers={"Accept": "application/json"})
        assert res.get_json()["status"] == "failed"
        assert res.get_json()["application"]["status"] == "approved_payment_pending"

    def test_tampered_redirect_is_ignored(self, app, client, approved_application):
        params = {**self._params(app, approved_application["id"]), "hmac": "deadbeef"}
        res = client.get("/api/v1/payments/redirect", query_string=params,
                         headers={"Accept": "application/json"})
        assert res.get_json() == {"status": "ignored", "application": None}

    def test_unsigned_redirect_changes_nothing(self, app, client, approved_application):
        params = self._params(app, approved_application["id"], signed=False)
        res = client.get("/api/v1/payments/redirect", query_string=params,
                         headers={"Accept": "application/json"})
        assert res.status_code == 200
        assert res.get_json() == {"status": "ignored", "application": None}
        app_row = db.session.get(Application, approved_application["id"])
        assert app_row.status == "approved_payment_pending"
        assert app_row.payment_verified_at is None

    def test_browser_is_sent_to_application_page(self, app, client, approved_application):
        res = client.get("/api/v1/payments/redirect", query_string=self._params(app, approved_application["id"]),
                         headers={"Accept": "text/html"})
        assert res.status_code == 302
        assert f"/applications/{approved_application['id']}?payment=success" in res.headers["Location"]

    def test_redirect_after_webhook_keeps_completed(self, client, approved_application, fake_gateway):
        client.post(CALLBACK_URL, json=_signed(fake_gateway, _txn(approved_application["id"])))
        params = {"id": "7001", "success": "true",
                  "merchant_order_id": f"BRD-{approved_application['id']}-1700000000000"}
        params["hmac"] = fake_gateway.compute_hmac(params)
        res = client.get("/api/v1/payments/redirect", query_string=params,
                         headers={"Accept": "application/json"})
        assert res.get_json()["application"]["status"] == "completed"


class TestPaymentStatus:
    def test_status_progression(self, client, application, citizen_headers, admin_headers,
                                fisherman_price, fake_gateway):
        url = f"/api/v1/payments/{application['id']}/status"
        assert client.get(url, headers=citizen_headers).get_json()["payment_status"] == "not_required"

        client.post(f"/api/v1/admin/applications/{application['id']}/approve", json={}, headers=admin_headers)
        body = client.get(url, headers=citizen_headers).get_json()
        assert body["payment_status"] == "pending"
        assert body["amount"] == 150.0

        client.post(CALLBACK_URL, json=_signed(fake_gateway, _txn(application["id"])))
        body = client.get(url, headers=citizen_headers).get_json()
        assert body["payment_status"] == "paid"
        assert body["paid_at"] is not None

    def test_status_hidden_from_other_citizen(self, client, application, other_citizen_headers):
        res = client.get(f"/api/v1/payments/{application['id']}/status", headers=other_citizen_headers)
        assert res.status_code == 404
