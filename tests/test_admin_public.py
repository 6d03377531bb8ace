"""
Tests for the admin desk (dashboard, application search, news, required
documents, users, audit log) and the unauthenticated public endpoints.
"""

import pytest

from portal.models import db
from portal.models.audit import AuditLog
from portal.models.user import RefreshSession, User
from portal.services import jwt_service

ADMIN = "/api/v1/admin"
PUBLIC = "/api/v1/public"


# ═════════════════════════════════════════════════════════════════════════════
# Review desk
# ═════════════════════════════════════════════════════════════════════════════


class TestAdminApplications:
    def test_dashboard(self, client, application, admin_headers):
        stats = client.get(f"{ADMIN}/dashboard", headers=admin_headers).get_json()
        assert stats["total"] == 1
        assert stats["pending_review"] == 1
        assert stats["by_type"] == {"fisherman": 1}

    def test_dashboard_refreshes_after_transition(self, client, application, admin_headers):
        client.get(f"{ADMIN}/dashboard", headers=admin_headers)
        client.post(f"{ADMIN}/applications/{application['id']}/start-review", json={}, headers=admin_headers)
        stats = client.get(f"{ADMIN}/dashboard", headers=admin_headers).get_json()
        assert stats["by_status"] == {"under_review": 1}

    def test_list_and_search(self, client, application, admin_headers):
        body = client.get(f"{ADMIN}/applications", headers=admin_headers).get_json()
        assert body["pagination"]["total"] == 1

        res = client.get(f"{ADMIN}/applications?search={application['application_number']}", headers=admin_headers)
        assert res.get_json()["pagination"]["total"] == 1
        res = client.get(f"{ADMIN}/applications?status=completed", headers=admin_headers)
        assert res.get_json()["pagination"]["total"] == 0
        res = client.get(f"{ADMIN}/applications?type=boat", headers=admin_headers)
        assert res.get_json()["pagination"]["total"] == 0

    def test_detail_includes_applicant(self, client, application, admin_headers, citizen):
        body = client.get(f"{ADMIN}/applications/{application['id']}", headers=admin_headers).get_json()
        assert body["applicant"]["id"] == citizen.id
        assert body["available_events"] == ["start_review", "approve", "reject"]

    def test_financial_officer_cannot_review(self, client, application, financial_headers):
        assert client.get(f"{ADMIN}/applications", headers=financial_headers).status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# News
# ═════════════════════════════════════════════════════════════════════════════


class TestNews:
    def _create(self, client, headers, **overrides):
        payload = {"title_ar": "فتح موسم الصيد", "content_ar": "يبدأ موسم الصيد في أبريل", **overrides}
        return client.post(f"{ADMIN}/news", json=payload, headers=headers)

    def test_draft_is_not_public(self, client, admin_headers):
        res = self._create(client, admin_headers)
        assert res.status_code == 201
        news = res.get_json()
        assert news["is_published"] is False
        assert client.get(f"{PUBLIC}/news").get_json()["items"] == []
        assert client.get(f"{PUBLIC}/news/{news['id']}").status_code == 404

    def test_publish_toggle(self, client, admin_headers):
        news = self._create(client, admin_headers).get_json()
        client.get(f"{PUBLIC}/news")  # warm the cache

        toggled = client.post(f"{ADMIN}/news/{news['id']}/toggle-publish", headers=admin_headers).get_json()
        assert toggled["is_published"] is True
        assert toggled["published_at"] is not None

        items = client.get(f"{PUBLIC}/news").get_json()["items"]
        assert [n["id"] for n in items] == [news["id"]]
        assert "excerpt_ar" in items[0]

        detail = client.get(f"{PUBLIC}/news/{news['id']}").get_json()
        assert detail["view_count"] == 1
        assert detail["content_ar"] == "يبدأ موسم الصيد في أبريل"

    def test_pinned_first_and_category_filter(self, client, admin_headers):
        self._create(client, admin_headers, is_published=True)
        pinned = self._create(client, admin_headers, title_ar="تنبيه", category="alert",
                              is_published=True, is_pinned=True).get_json()
        items = client.get(f"{PUBLIC}/news").get_json()["items"]
        assert items[0]["id"] == pinned["id"]
        alerts = client.get(f"{PUBLIC}/news?category=alert").get_json()["items"]
        assert [n["id"] for n in alerts] == [pinned["id"]]

    def test_update_and_delete(self, client, admin_headers):
        news = self._create(client, admin_headers).get_json()
        res = client.put(f"{ADMIN}/news/{news['id']}", json={"title_ar": "عنوان جديد"}, headers=admin_headers)
        assert res.get_json()["title_ar"] == "عنوان جديد"
        assert client.delete(f"{ADMIN}/news/{news['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"{ADMIN}/news/{news['id']}", headers=admin_headers).status_code == 404

    @pytest.mark.parametrize("payload", [
        {"title_ar": "", "content_ar": "x"},
        {"title_ar": "x", "content_ar": ""},
        {"title_ar": "x", "content_ar": "y", "category": "gossip"},
    ])
    def test_invalid_news(self, client, admin_headers, payload):
        assert client.post(f"{ADMIN}/news", json=payload, headers=admin_headers).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Required documents
# ═════════════════════════════════════════════════════════════════════════════


class TestRequiredDocuments:
    def test_configured_rows_replace_defaults(self, client, admin_headers):
        res = client.post(f"{ADMIN}/required-documents", headers=admin_headers, json={
            "service_category": "fisherman", "document_type": "personal_photo", "name_ar": "صورة حديثة",
        })
        assert res.status_code == 201
        row = res.get_json()

        items = client.get(f"{PUBLIC}/required-documents/fisherman").get_json()["items"]
        assert [i["document_type"] for i in items] == ["personal_photo"]

        client.put(f"{ADMIN}/required-documents/{row['id']}", json={"renewal_only": True}, headers=admin_headers)
        assert client.get(f"{PUBLIC}/required-documents/fisherman").get_json()["items"] == []
        items = client.get(f"{PUBLIC}/required-documents/fisherman?is_renewal=true").get_json()["items"]
        assert len(items) == 1

        assert client.delete(f"{ADMIN}/required-documents/{row['id']}", headers=admin_headers).status_code == 200
        defaults = client.get(f"{PUBLIC}/required-documents/fisherman").get_json()["items"]
        assert len(defaults) == 5

    def test_invalid_document_type(self, client, admin_headers):
        res = client.post(f"{ADMIN}/required-documents", headers=admin_headers, json={
            "service_category": "fisherman", "document_type": "selfie", "name_ar": "x",
        })
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


class TestUsers:
    def test_profile_update(self, client, citizen_headers):
        res = client.patch("/api/v1/users/profile", headers=citizen_headers,
                           json={"first_name_ar": "محمود", "email": "m@bardawil-lake.gov.eg"})
        assert res.status_code == 200
        assert res.get_json()["first_name_ar"] == "محمود"
        assert res.get_json()["email"] == "m@bardawil-lake.gov.eg"

    def test_profile_phone_clash(self, client, citizen_headers, other_citizen):
        res = client.patch("/api/v1/users/profile", headers=citizen_headers, json={"phone": other_citizen.phone})
        assert res.status_code == 409

    def test_profile_invalid_email(self, client, citizen_headers):
        res = client.patch("/api/v1/users/profile", headers=citizen_headers, json={"email": "not-an-email"})
        assert res.status_code == 400

    def test_admin_lists_users(self, client, citizen, admin_headers):
        body = client.get("/api/v1/users?role=citizen", headers=admin_headers).get_json()
        assert [u["id"] for u in body["items"]] == [citizen.id]

    def test_suspend_revokes_sessions(self, client, citizen, admin_headers):
        tokens = jwt_service.generate_token_pair(citizen.id, citizen.role)
        jwt_service.create_session(citizen.id, tokens["token_hash"], None, None, tokens["expires_at"])
        db.session.commit()

        res = client.post(f"/api/v1/users/{citizen.id}/suspend", headers=admin_headers)
        assert res.get_json()["status"] == "suspended"
        assert RefreshSession.query.filter_by(user_id=citizen.id, is_active=True).count() == 0

        res = client.post(f"/api/v1/users/{citizen.id}/activate", headers=admin_headers)
        assert res.get_json()["status"] == "active"

    def test_cannot_suspend_self(self, client, admin_user, admin_headers):
        assert client.post(f"/api/v1/users/{admin_user.id}/suspend", headers=admin_headers).status_code == 400

    def test_only_super_admin_changes_roles(self, client, citizen, admin_headers, super_admin_headers):
        url = f"/api/v1/users/{citizen.id}"
        assert client.put(url, json={"role": "admin"}, headers=admin_headers).status_code == 403
        res = client.put(url, json={"role": "financial_officer"}, headers=super_admin_headers)
        assert res.get_json()["role"] == "financial_officer"
        assert client.put(url, json={"role": "king"}, headers=super_admin_headers).status_code == 400

    def test_delete_user_with_applications_refused(self, client, application, citizen, super_admin_headers):
        res = client.delete(f"/api/v1/users/{citizen.id}", headers=super_admin_headers)
        assert res.status_code == 400

    def test_delete_user(self, client, other_citizen, super_admin_headers):
        user_id = other_citizen.id
        assert client.delete(f"/api/v1/users/{user_id}", headers=super_admin_headers).status_code == 200
        assert db.session.get(User, user_id) is None


# ═════════════════════════════════════════════════════════════════════════════
# Audit log
# ═════════════════════════════════════════════════════════════════════════════


class TestAuditLog:
    def test_super_admin_only(self, client, admin_headers):
        assert client.get(f"{ADMIN}/audit-logs", headers=admin_headers).status_code == 403

    def test_filters(self, client, application, super_admin_headers):
        body = client.get(f"{ADMIN}/audit-logs?entity_type=application", headers=super_admin_headers).get_json()
        assert body["pagination"]["total"] == 1
        assert body["items"][0]["action"] == "application.create"

        body = client.get(f"{ADMIN}/audit-logs?action=application.approve", headers=super_admin_headers).get_json()
        assert body["items"] == []

        options = client.get(f"{ADMIN}/audit-logs/filters", headers=super_admin_headers).get_json()
        assert "application.create" in options["actions"]
        assert "license_price" in options["entity_types"]
        assert "required_document" in options["entity_types"]

    def test_rows_carry_diff(self, application):
        row = AuditLog.query.filter_by(action="application.create").one()
        assert row.to_dict()["diff"] == {"status": {"old": None, "new": "received"}}


# ═════════════════════════════════════════════════════════════════════════════
# Public & health
# ═════════════════════════════════════════════════════════════════════════════


class TestPublic:
    def test_info(self, client):
        body = client.get(f"{PUBLIC}/info").get_json()
        types = {t["id"]: t for t in body["license_types"]}
        assert set(types) == {"fisherman", "boat", "vehicle", "trade", "entry", "other"}
        assert "صياد مؤمن عليه" in types["fisherman"]["categories"]
        assert types["other"]["categories"] == []

    def test_statuses(self, client):
        items = client.get(f"{PUBLIC}/statuses").get_json()["items"]
        assert [s["code"] for s in items][0] == "received"
        assert len(items) == 8
        payment = client.get(f"{PUBLIC}/statuses?category=payment").get_json()["items"]
        assert {s["code"] for s in payment} == {"approved_payment_pending", "payment_submitted", "payment_verified"}

    def test_status_next_statuses_follow_transitions(self, client):
        items = {s["code"]: s for s in client.get(f"{PUBLIC}/statuses").get_json()["items"]}
        assert items["completed"]["next_statuses"] == []
        assert "approved_payment_pending" in items["received"]["next_statuses"]


class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["cache"] == {"status": "ok", "backend": "memory"}
        assert checks["app"]["env"] == "testing"

    def test_security_headers(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["Cache-Control"] == "no-store"
        assert "X-Request-ID" in res.headers

    def test_pages_get_csp(self, client):
        csp = client.get("/login").headers["Content-Security-Policy"]
        assert "form-action 'self' https://accept.paymob.com" in csp
