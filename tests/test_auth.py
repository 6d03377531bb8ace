"""
Tests for authentication: registration, national-id login with lockout,
refresh token rotation, logout, password reset/change and the auth
guards on protected endpoints.
"""

from datetime import datetime, timedelta, timezone

from portal.models import db
from portal.models.user import RefreshSession, User
from portal.services import jwt_service

PASSWORD = "Passw0rd!"
CITIZEN_NID = "29001011234567"

NEW_NID = "30101010112345"


def _register_payload(**overrides):
    payload = {
        "national_id": NEW_NID,
        "phone": "01099999999",
        "first_name_ar": "أحمد",
        "last_name_ar": "سالم",
        "password": "Secret123",
        "password_confirm": "Secret123",
    }
    payload.update(overrides)
    return payload


def _login(client, national_id=CITIZEN_NID, password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"national_id": national_id, "password": password})


# ═════════════════════════════════════════════════════════════════════════════
# Registration
# ═════════════════════════════════════════════════════════════════════════════


class TestRegister:
    def test_register_creates_citizen_and_returns_tokens(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(email="Ahmed@Example.com"))
        assert res.status_code == 201
        body = res.get_json()
        assert body["user"]["role"] == "citizen"
        assert body["user"]["national_id"] == NEW_NID
        assert body["access_token"] and body["refresh_token"]
        assert body["token_type"] == "Bearer"

        user = User.query.filter_by(national_id=NEW_NID).one()
        assert user.password_hash != "Secret123"
        assert RefreshSession.query.filter_by(user_id=user.id, is_active=True).count() == 1

    def test_register_sets_httponly_cookies(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload())
        cookies = res.headers.getlist("Set-Cookie")
        assert any(c.startswith("access_token=") and "HttpOnly" in c for c in cookies)
        assert any(c.startswith("refresh_token=") and "Path=/api/v1/auth" in c for c in cookies)

    def test_invalid_national_id_rejected(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(national_id="19001011234567"))
        assert res.status_code == 400
        assert "national_id" in res.get_json()["details"]

    def test_bad_governorate_rejected(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(national_id="29001019912345"))
        assert res.status_code == 400

    def test_invalid_phone_rejected(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(phone="0123"))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"phone": "invalid"}

    def test_password_mismatch_rejected(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(password_confirm="Other1234"))
        assert res.status_code == 400

    def test_short_password_rejected(self, client):
        res = client.post("/api/v1/auth/register", json=_register_payload(password="short", password_confirm="short"))
        assert res.status_code == 400

    def test_duplicate_national_id_conflicts(self, client, citizen):
        res = client.post("/api/v1/auth/register", json=_register_payload(national_id=CITIZEN_NID))
        assert res.status_code == 409

    def test_duplicate_phone_conflicts(self, client, citizen):
        res = client.post("/api/v1/auth/register", json=_register_payload(phone=citizen.phone))
        assert res.status_code == 409


# ═════════════════════════════════════════════════════════════════════════════
# Login & lockout
# ═════════════════════════════════════════════════════════════════════════════


class TestLogin:
    def test_login_success(self, client, citizen):
        res = _login(client)
        assert res.status_code == 200
        body = res.get_json()
        assert body["user"]["id"] == citizen.id
        payload = jwt_service.decode_access_token(body["access_token"])
        assert payload["sub"] == str(citizen.id)
        assert payload["role"] == "citizen"

    def test_login_accepts_spaced_national_id(self, client, citizen):
        res = _login(client, national_id="2900101 1234567")
        assert res.status_code == 200

    def test_wrong_password_is_401(self, client, citizen):
        res = _login(client, password="wrong-password")
        assert res.status_code == 401
        assert db.session.get(User, citizen.id).login_attempts == 1

    def test_unknown_user_is_401(self, client):
        assert _login(client, national_id=NEW_NID).status_code == 401

    def test_missing_fields_is_400(self, client):
        res = client.post("/api/v1/auth/login", json={})
        assert res.status_code == 400

    def test_lockout_after_max_attempts(self, client, citizen, app):
        attempts = app.config["LOGIN_MAX_ATTEMPTS"]
        for _ in range(attempts):
            assert _login(client, password="wrong-password").status_code == 401

        res = _login(client)
        assert res.status_code == 423
        body = res.get_json()
        assert body["code"] == "ERR_ACCOUNT_LOCKED"
        assert "lock_until" in body

    def test_expired_lock_allows_login(self, client, citizen):
        citizen.lock_until = datetime.now(timezone.utc) - timedelta(minutes=1)
        citizen.login_attempts = 3
        db.session.commit()

        assert _login(client).status_code == 200
        user = db.session.get(User, citizen.id)
        assert user.login_attempts == 0
        assert user.lock_until is None

    def test_suspended_user_cannot_login(self, client, citizen):
        citizen.status = "suspended"
        db.session.commit()
        assert _login(client).status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Refresh / logout
# ═════════════════════════════════════════════════════════════════════════════


class TestRefreshAndLogout:
    def test_refresh_rotates_token(self, client, citizen):
        tokens = _login(client).get_json()
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert res.status_code == 200
        rotated = res.get_json()
        assert rotated["refresh_token"] != tokens["refresh_token"]

        # The presented token is now revoked
        again = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == 401

    def test_refresh_with_access_token_rejected(self, client, citizen):
        tokens = _login(client).get_json()
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert res.status_code == 401

    def test_refresh_requires_token(self, client):
        res = client.post("/api/v1/auth/refresh", json={})
        assert res.status_code == 400

    def test_logout_revokes_refresh_session(self, client, citizen):
        tokens = _login(client).get_json()
        res = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        assert res.status_code == 200
        assert res.get_json()["revoked_sessions"] == 1
        assert client.post("/api/v1/auth/refresh",
                           json={"refresh_token": tokens["refresh_token"]}).status_code == 401

    def test_logout_everywhere(self, client, citizen):
        _login(client)
        tokens = _login(client).get_json()
        res = client.post(
            "/api/v1/auth/logout",
            json={"all": True},
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        assert res.get_json()["revoked_sessions"] == 2
        assert RefreshSession.query.filter_by(user_id=citizen.id, is_active=True).count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Password flows
# ═════════════════════════════════════════════════════════════════════════════


class TestPasswordFlows:
    def test_forgot_password_hides_unknown_accounts(self, client):
        res = client.post("/api/v1/auth/forgot-password", json={"national_id": NEW_NID})
        assert res.status_code == 200
        assert "reset_token" not in res.get_json()

    def test_reset_password_round_trip(self, client, citizen):
        _login(client)
        res = client.post("/api/v1/auth/forgot-password", json={"national_id": CITIZEN_NID})
        token = res.get_json()["reset_token"]

        res = client.post("/api/v1/auth/reset-password", json={
            "token": token, "password": "NewSecret99", "password_confirm": "NewSecret99",
        })
        assert res.status_code == 200
        assert RefreshSession.query.filter_by(user_id=citizen.id, is_active=True).count() == 0
        assert _login(client, password="NewSecret99").status_code == 200
        assert _login(client).status_code == 401

    def test_reset_token_is_single_use(self, client, citizen):
        token = client.post("/api/v1/auth/forgot-password",
                            json={"national_id": CITIZEN_NID}).get_json()["reset_token"]
        body = {"token": token, "password": "NewSecret99", "password_confirm": "NewSecret99"}
        assert client.post("/api/v1/auth/reset-password", json=body).status_code == 200
        assert client.post("/api/v1/auth/reset-password", json=body).status_code == 400

    def test_expired_reset_token_rejected(self, client, citizen):
        token = client.post("/api/v1/auth/forgot-password",
                            json={"national_id": CITIZEN_NID}).get_json()["reset_token"]
        user = db.session.get(User, citizen.id)
        user.password_reset_expires = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        res = client.post("/api/v1/auth/reset-password", json={
            "token": token, "password": "NewSecret99", "password_confirm": "NewSecret99",
        })
        assert res.status_code == 400

    def test_change_password(self, client, citizen, citizen_headers):
        res = client.post("/api/v1/auth/change-password", headers=citizen_headers, json={
            "current_password": PASSWORD,
            "new_password": "Changed123",
            "new_password_confirm": "Changed123",
        })
        assert res.status_code == 200
        assert _login(client, password="Changed123").status_code == 200

    def test_change_password_wrong_current(self, client, citizen_headers):
        res = client.post("/api/v1/auth/change-password", headers=citizen_headers, json={
            "current_password": "nope-nope",
            "new_password": "Changed123",
            "new_password_confirm": "Changed123",
        })
        assert res.status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════


class TestGuards:
    def test_me_requires_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_me_returns_profile(self, client, citizen, citizen_headers):
        res = client.get("/api/v1/auth/me", headers=citizen_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["national_id"] == CITIZEN_NID
        assert body["national_id_info"]["birth_date"] == "1990-01-01"

    def test_access_cookie_is_accepted(self, client, citizen):
        _login(client)
        assert client.get("/api/v1/auth/me").status_code == 200

    def test_garbage_token_is_401(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_refresh_token_not_accepted_as_access(self, client, citizen):
        raw, _, _ = jwt_service.generate_refresh_token(citizen.id)
        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {raw}"})
        assert res.status_code == 401

    def test_suspended_user_token_stops_working(self, client, citizen, citizen_headers):
        citizen.status = "suspended"
        db.session.commit()
        assert client.get("/api/v1/auth/me", headers=citizen_headers).status_code == 401

    def test_citizen_cannot_reach_admin(self, client, citizen_headers):
        res = client.get("/api/v1/admin/applications", headers=citizen_headers)
        assert res.status_code == 403

    def test_super_admin_passes_role_checks(self, client, super_admin_headers):
        assert client.get("/api/v1/admin/applications", headers=super_admin_headers).status_code == 200
        assert client.get("/api/v1/financial/dashboard", headers=super_admin_headers).status_code == 200
