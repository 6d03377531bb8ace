"""
Tests for citizen applications: numbering, submission validation
(category whitelist, durations, per-type payloads, uploads), listing,
detail visibility, public tracking, documents and cancellation.
"""

import io
import json
import os
from datetime import datetime, timezone

import pytest

from portal.core.exceptions import ConflictError
from portal.models import db
from portal.models.application import LICENSE_CATEGORIES, Application, ApplicationStatusHistory
from portal.models.audit import AuditLog
from portal.models.document import Document
from portal.services import application_service

URL = "/api/v1/applications"


def _payload(**overrides):
    payload = {
        "application_type": "fisherman",
        "license_category": "صياد مؤمن عليه",
        "data": {"marina": "مرسى التلول"},
    }
    payload.update(overrides)
    return payload


def _file(name="doc.pdf", content=b"%PDF-1.4 test"):
    return io.BytesIO(content), name


def _stored_files(app):
    folder = os.path.join(app.config["UPLOAD_FOLDER"], "applications")
    return set(os.listdir(folder)) if os.path.isdir(folder) else set()


# ═════════════════════════════════════════════════════════════════════════════
# Numbering
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicationNumber:
    def test_first_number_of_year(self):
        year = datetime.now(timezone.utc).year
        assert application_service.generate_application_number() == f"BRD-{year}-0001"

    def test_sequence_follows_last_number(self, application):
        year = datetime.now(timezone.utc).year
        assert application["application_number"] == f"BRD-{year}-0001"
        assert application_service.generate_application_number() == f"BRD-{year}-0002"

    def test_sequence_is_per_year(self, application):
        assert application_service.generate_application_number(1999) == "BRD-1999-0001"

    def test_sequence_passes_four_digits(self, citizen):
        year = datetime.now(timezone.utc).year
        for number in (f"BRD-{year}-9999", f"BRD-{year}-10000"):
            db.session.add(Application(
                application_number=number, user_id=citizen.id,
                application_type="fisherman", license_category="صياد مؤمن عليه",
            ))
        db.session.commit()
        assert application_service.generate_application_number() == f"BRD-{year}-10001"

    def test_collision_retries_with_next_number(self, client, citizen_headers, application, monkeypatch):
        taken = application["application_number"]
        numbers = iter([taken, "BRD-2000-0042"])
        monkeypatch.setattr(application_service, "generate_application_number", lambda: next(numbers))

        res = client.post(URL, json=_payload(), headers=citizen_headers)
        assert res.status_code == 201
        assert res.get_json()["application"]["application_number"] == "BRD-2000-0042"

    def test_gives_up_after_max_attempts(self, client, citizen_headers, application, monkeypatch):
        taken = application["application_number"]
        monkeypatch.setattr(application_service, "generate_application_number", lambda: taken)

        res = client.post(URL, json=_payload(), headers=citizen_headers)
        assert res.status_code == 400
        assert Application.query.count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateApplication:
    def test_create_writes_history_notification_and_audit(self, client, citizen, citizen_headers):
        res = client.post(URL, json=_payload(), headers=citizen_headers)
        assert res.status_code == 201
        app_data = res.get_json()["application"]
        assert app_data["status"] == "received"
        assert app_data["status_info"]["code"] == "received"
        assert app_data["duration"] == "3_months"
        assert app_data["license_holder_name"] == citizen.full_name_ar
        assert app_data["license_holder_national_id"] == citizen.national_id
        assert app_data["version"] == 1

        history = ApplicationStatusHistory.query.filter_by(application_id=app_data["id"]).all()
        assert [(h.old_status, h.new_status) for h in history] == [(None, "received")]
        assert AuditLog.query.filter_by(entity_id=str(app_data["id"]), action="application.create").count() == 1

    def test_price_estimate_when_price_configured(self, client, citizen_headers, fisherman_price):
        res = client.post(URL, json=_payload(duration="season"), headers=citizen_headers)
        estimate = res.get_json()["price_estimate"]
        assert estimate["base_price"] == 150.0
        assert estimate["duration"] == "season"
        assert estimate["amount"] == 450.0

    def test_no_estimate_without_price(self, client, citizen_headers):
        res = client.post(URL, json=_payload(), headers=citizen_headers)
        assert res.get_json()["price_estimate"] is None

    @pytest.mark.parametrize("app_type,category", [
        (app_type, category) for app_type, categories in LICENSE_CATEGORIES.items() for category in categories
    ])
    def test_every_whitelisted_category_is_accepted(self, client, citizen_headers, app_type, category):
        payload = _payload(application_type=app_type, license_category=category,
                           data={"marina": "مرسى التلول", "plate_number": "س ص 1234"})
        res = client.post(URL, json=payload, headers=citizen_headers)
        assert res.status_code == 201, res.get_json()
        app_data = res.get_json()["application"]
        assert (app_data["application_type"], app_data["license_category"]) == (app_type, category)

    @pytest.mark.parametrize("app_type,category", [
        ("fisherman", "مركب خاص"),
        ("trade", "صياد مؤمن عليه"),
        ("entry", "تاجر"),
        ("boat", "سيارة"),
        ("vehicle", "شيال"),
    ])
    def test_category_from_another_type_is_rejected(self, client, citizen_headers, app_type, category):
        payload = _payload(application_type=app_type, license_category=category,
                           data={"marina": "مرسى التلول", "plate_number": "س ص 1234"})
        res = client.post(URL, json=payload, headers=citizen_headers)
        assert res.status_code == 400
        assert res.get_json()["details"]["license_category"] == list(LICENSE_CATEGORIES[app_type])
        assert Application.query.count() == 0

    def test_category_must_match_type(self, client, citizen_headers):
        res = client.post(URL, json=_payload(license_category="تاجر"), headers=citizen_headers)
        assert res.status_code == 400
        assert "license_category" in res.get_json()["details"]

    def test_other_type_accepts_free_category(self, client, citizen_headers):
        res = client.post(URL, json=_payload(application_type="other", license_category="خدمة خاصة"),
                          headers=citizen_headers)
        assert res.status_code == 201

    def test_unknown_type_rejected(self, client, citizen_headers):
        res = client.post(URL, json=_payload(application_type="spaceship"), headers=citizen_headers)
        assert res.status_code == 400

    def test_duration_shorter_than_base_rejected(self, client, citizen_headers):
        res = client.post(URL, json=_payload(duration="1_month"), headers=citizen_headers)
        assert res.status_code == 400
        assert res.get_json()["details"]["duration"] == ["3_months", "6_months", "season"]

    def test_seasonal_category_only_allows_season(self, client, citizen_headers):
        res = client.post(URL, json=_payload(
            application_type="boat", license_category="مركب خاص", duration="3_months",
        ), headers=citizen_headers)
        assert res.status_code == 400

    def test_boat_defaults_to_private(self, client, citizen_headers):
        res = client.post(URL, json=_payload(
            application_type="boat", license_category="مركب خاص", data={},
        ), headers=citizen_headers)
        assert res.status_code == 201
        body = res.get_json()["application"]
        assert body["boat_type"] == "private"
        assert body["duration"] == "season"

    def test_invalid_boat_type_rejected(self, client, citizen_headers):
        res = client.post(URL, json=_payload(
            application_type="boat", license_category="مركب خاص", boat_type="yacht",
        ), headers=citizen_headers)
        assert res.status_code == 400

    def test_vehicle_requires_plate_number(self, client, citizen_headers):
        res = client.post(URL, json=_payload(
            application_type="vehicle", license_category="سيارة", data={},
        ), headers=citizen_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"plate_number": "required"}

    def test_fisherman_renewal_requires_previous_license(self, client, citizen_headers):
        res = client.post(URL, json=_payload(is_renewal=True), headers=citizen_headers)
        assert res.status_code == 400
        assert "previous_license_number" in res.get_json()["details"]

    def test_camel_case_fields_and_unknown_keys(self, client, citizen_headers):
        res = client.post(URL, json={
            "applicationType": "fisherman",
            "licenseCategory": "صياد مؤمن عليه",
            "licenseHolderName": "سعيد حسن",
            "data": {"marina": "الزرانيق", "unionCardNumber": "77", "isAdmin": "yes"},
        }, headers=citizen_headers)
        assert res.status_code == 201
        body = res.get_json()["application"]
        assert body["license_holder_name"] == "سعيد حسن"
        assert body["data"] == {"marina": "الزرانيق", "union_card_number": "77"}

    def test_multipart_submission_stores_documents(self, client, citizen_headers):
        res = client.post(URL, data={
            "application_type": "fisherman",
            "license_category": "صياد مؤمن عليه",
            "data": json.dumps({"marina": "مرسى التلول"}),
            "personalPhoto": _file("photo.jpg", b"\xff\xd8\xff"),
            "nationalIdImage": _file("id.pdf"),
        }, headers=citizen_headers, content_type="multipart/form-data")
        assert res.status_code == 201
        docs = res.get_json()["application"]["documents"]
        assert sorted(d["document_type"] for d in docs) == ["national_id_copy", "personal_photo"]
        assert all(d["file_path"].startswith("applications/") for d in docs)

    def test_multipart_with_bad_data_json(self, client, citizen_headers):
        res = client.post(URL, data={
            "application_type": "fisherman",
            "license_category": "صياد مؤمن عليه",
            "data": "{not json",
        }, headers=citizen_headers, content_type="multipart/form-data")
        assert res.status_code == 400

    def test_disallowed_extension_rejected(self, client, citizen_headers):
        res = client.post(URL, data={
            "application_type": "fisherman",
            "license_category": "صياد مؤمن عليه",
            "data": json.dumps({"marina": "مرسى التلول"}),
            "personalPhoto": _file("virus.exe"),
        }, headers=citizen_headers, content_type="multipart/form-data")
        assert res.status_code == 400
        assert Application.query.count() == 0

    def test_rejected_file_removes_earlier_uploads(self, app, client, citizen_headers):
        before = _stored_files(app)
        res = client.post(URL, data={
            "application_type": "fisherman",
            "license_category": "صياد مؤمن عليه",
            "data": json.dumps({"marina": "مرسى التلول"}),
            "personalPhoto": _file("photo.jpg", b"\xff\xd8\xff"),
            "nationalIdImage": _file("virus.exe"),
        }, headers=citizen_headers, content_type="multipart/form-data")
        assert res.status_code == 400
        assert _stored_files(app) == before

    def test_failed_commit_removes_uploads(self, app, client, citizen_headers, monkeypatch):
        def fail_commit(resource):
            raise ConflictError(resource, message="Duplicate or constraint violation")

        monkeypatch.setattr(application_service, "commit_or_raise", fail_commit)
        before = _stored_files(app)
        res = client.post(URL, data={
            "application_type": "fisherman",
            "license_category": "صياد مؤمن عليه",
            "data": json.dumps({"marina": "مرسى التلول"}),
            "personalPhoto": _file("photo.jpg", b"\xff\xd8\xff"),
        }, headers=citizen_headers, content_type="multipart/form-data")
        assert res.status_code == 409
        assert _stored_files(app) == before
        assert Application.query.count() == 0
        assert Document.query.count() == 0

    def test_requires_login(self, client):
        assert client.post(URL, json=_payload()).status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════


class TestReadApplications:
    def test_list_only_own(self, client, application, other_citizen_headers, citizen_headers):
        mine = client.get(URL, headers=citizen_headers).get_json()
        assert mine["pagination"]["total"] == 1
        theirs = client.get(URL, headers=other_citizen_headers).get_json()
        assert theirs["items"] == []

    def test_list_filters_by_status(self, client, application, citizen_headers):
        res = client.get(f"{URL}?status=rejected", headers=citizen_headers)
        assert res.get_json()["pagination"]["total"] == 0

    def test_detail_for_owner(self, client, application, citizen_headers):
        res = client.get(f"{URL}/{application['id']}", headers=citizen_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["history"][0]["new_status"] == "received"
        assert body["available_events"] == ["cancel"]

    def test_detail_hidden_from_other_citizen(self, client, application, other_citizen_headers):
        res = client.get(f"{URL}/{application['id']}", headers=other_citizen_headers)
        assert res.status_code == 404

    def test_staff_can_view_detail(self, client, application, admin_headers):
        res = client.get(f"{URL}/{application['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert "approve" in res.get_json()["available_events"]

    def test_dashboard_counts(self, client, application, citizen_headers):
        stats = client.get(f"{URL}/dashboard", headers=citizen_headers).get_json()
        assert stats["total"] == 1
        assert stats["under_review"] == 1
        assert stats["by_status"] == {"received": 1}
        assert len(stats["recent"]) == 1

    def test_required_documents_for_new_license(self, client, citizen_headers):
        res = client.get(f"{URL}/required-documents?type=fisherman", headers=citizen_headers)
        types = [d["document_type"] for d in res.get_json()["items"]]
        assert "police_clearance" in types
        assert "old_fishing_card" not in types

    def test_required_documents_for_renewal(self, client, citizen_headers):
        res = client.get(f"{URL}/required-documents?type=fisherman&is_renewal=true", headers=citizen_headers)
        types = [d["document_type"] for d in res.get_json()["items"]]
        assert "old_fishing_card" in types

    def test_required_documents_needs_type(self, client, citizen_headers):
        assert client.get(f"{URL}/required-documents", headers=citizen_headers).status_code == 400


class TestTracking:
    def test_track_masks_holder_name(self, client, application):
        res = client.get(f"/api/v1/public/track/{application['application_number']}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "received"
        assert body["license_holder_name"] == "م*** أ***"
        assert "license_holder_national_id" not in body
        assert [h["status"] for h in body["history"]] == ["received"]

    def test_track_unknown_number(self, client):
        assert client.get("/api/v1/public/track/BRD-1999-0001").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════════


class TestDocuments:
    def _upload(self, client, app_id, headers, **files):
        return client.post(f"{URL}/{app_id}/documents", data=files, headers=headers,
                           content_type="multipart/form-data")

    def test_add_list_delete(self, client, application, citizen_headers, app):
        res = self._upload(client, application["id"], citizen_headers, taxReceipt=_file("tax.png", b"\x89PNG"))
        assert res.status_code == 201
        doc = res.get_json()["items"][0]
        assert doc["document_type"] == "tax_receipt"

        listed = client.get(f"{URL}/{application['id']}/documents", headers=citizen_headers).get_json()
        assert [d["id"] for d in listed["items"]] == [doc["id"]]

        res = client.delete(f"{URL}/{application['id']}/documents/{doc['id']}", headers=citizen_headers)
        assert res.status_code == 200
        assert db.session.get(Document, doc["id"]) is None

    def test_other_citizen_cannot_upload(self, client, application, other_citizen_headers):
        res = self._upload(client, application["id"], other_citizen_headers, taxReceipt=_file())
        assert res.status_code == 404

    def test_upload_without_files(self, client, application, citizen_headers):
        res = client.post(f"{URL}/{application['id']}/documents", data={}, headers=citizen_headers,
                          content_type="multipart/form-data")
        assert res.status_code == 400

    def test_documents_locked_after_approval(self, client, application, citizen_headers,
                                             admin_headers, fisherman_price):
        client.post(f"/api/v1/admin/applications/{application['id']}/approve", headers=admin_headers, json={})
        res = self._upload(client, application["id"], citizen_headers, taxReceipt=_file())
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Cancel
# ═════════════════════════════════════════════════════════════════════════════


class TestCancel:
    def test_cancel_received_application(self, client, application, citizen_headers):
        res = client.post(f"{URL}/{application['id']}/cancel", headers=citizen_headers, json={})
        assert res.status_code == 200
        body = res.get_json()
        assert body["previous_status"] == "received"
        assert body["new_status"] == "rejected"
        assert body["application"]["rejection_reason"] == "تم إلغاء الطلب بواسطة المستخدم"

    def test_cancel_twice_is_invalid_transition(self, client, application, citizen_headers):
        client.post(f"{URL}/{application['id']}/cancel", headers=citizen_headers, json={})
        res = client.post(f"{URL}/{application['id']}/cancel", headers=citizen_headers, json={})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_other_citizen_cannot_cancel(self, client, application, other_citizen_headers):
        res = client.post(f"{URL}/{application['id']}/cancel", headers=other_citizen_headers, json={})
        assert res.status_code == 404

    @pytest.mark.parametrize("version, expected", [(1, 200), (7, 409)])
    def test_cancel_honours_if_match(self, client, application, citizen_headers, version, expected):
        headers = {**citizen_headers, "If-Match": f'"{version}"'}
        res = client.post(f"{URL}/{application['id']}/cancel", headers=headers, json={})
        assert res.status_code == expected
