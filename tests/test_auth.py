"""Tests for authentication endpoints."""

from datetime import timedelta

import pytest
from fastapi import status

from app.core.exceptions import InvalidRefreshTokenError
from app.core.revocation import DatabaseRevocationStore, InMemoryRevocationStore, RevocationRegistry
from app.core.security import TOKEN_TYPE_REFRESH, create_token, utcnow
from app.models import AuditLog
from app.services.auth_service import AuthService


class InterleavingRegistry(RevocationRegistry):
    """Runs a competing exchange to completion right after the first pre-check."""

    def __init__(self, store, competitor=None):
        super().__init__(store)
        self.competitor = competitor

    def is_revoked(self, token: str) -> bool:
        revoked = super().is_revoked(token)
        competitor, self.competitor = self.competitor, None
        if competitor is not None:
            competitor()
        return revoked


class TestLogin:
    """Test the login flow."""

    def test_login_success(self, client, login, admin_user):
        """Successful login returns a token pair, session id and cookies."""
        response = login(admin_user.email)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["session_id"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 24 * 3600
        assert data["user"]["email"] == admin_user.email
        assert data["user"]["role"] == "SUPER_ADMIN"
        assert "refresh_token" in response.cookies
        assert "session_id" in response.cookies

    def test_login_email_is_case_insensitive(self, client, login, admin_user):
        response = login("ADMIN@Example.com")
        assert response.status_code == status.HTTP_200_OK

    def test_login_remember_me_extends_lifetime(self, client, login, admin_user):
        response = login(admin_user.email, remember_me=True)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["expires_in"] == 30 * 24 * 3600

    def test_login_wrong_password(self, client, login, admin_user):
        response = login(admin_user.email, "WrongPassw0rd")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_CREDENTIALS"

    def test_login_unknown_email_is_indistinguishable(self, client, login, admin_user):
        """Unknown emails get the same response as a wrong password."""
        unknown = login("nobody@example.com", "WrongPassw0rd")
        wrong = login(admin_user.email, "WrongPassw0rd")

        assert unknown.status_code == wrong.status_code == status.HTTP_401_UNAUTHORIZED
        assert unknown.json() == wrong.json()

    def test_login_deactivated_account(self, client, login, make_user):
        user = make_user("gone@example.com", role="SUPER_ADMIN", is_active=False)

        response = login(user.email)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "ACCOUNT_DEACTIVATED"

    def test_failed_login_is_audited(self, client, login, admin_user, db_session):
        login(admin_user.email, "WrongPassw0rd")

        entry = db_session.query(AuditLog).filter(
            AuditLog.entity_id == str(admin_user.id),
            AuditLog.action == "LOGIN_FAILED",
        ).first()
        assert entry is not None
        assert entry.details["success"] is False
        assert entry.details["reason"] == "invalid_password"

    def test_successful_login_resets_attempts(self, client, login, admin_user, db_session):
        login(admin_user.email, "WrongPassw0rd")
        login(admin_user.email, "WrongPassw0rd")

        response = login(admin_user.email)

        assert response.status_code == status.HTTP_200_OK
        db_session.refresh(admin_user)
        assert admin_user.login_attempts == 0
        assert admin_user.lock_until is None
        assert admin_user.last_login is not None


class TestAuditContext:
    """Client-supplied request details are fitted to the audit columns."""

    def test_oversized_client_values_still_give_invalid_credentials(self, client, db_session):
        email = "a" * 60 + "@" + "b" * 60 + ".com"

        response = client.post(
            "/api/auth/login",
            json={"email": email, "password": "Wr0ngPassword"},
            headers={"X-Forwarded-For": "9" * 60, "X-Session-Id": "s" * 500},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_CREDENTIALS"
        entry = db_session.query(AuditLog).filter(AuditLog.action == "LOGIN_FAILED").one()
        assert entry.ip_address is None
        assert len(entry.session_id) == 200
        assert len(entry.entity_id) == 64

    def test_forwarded_address_is_recorded(self, client, admin_user, db_session):
        client.post(
            "/api/auth/login",
            json={"email": admin_user.email, "password": "Wr0ngPassword"},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )

        entry = db_session.query(AuditLog).filter(
            AuditLog.entity_id == str(admin_user.id),
            AuditLog.action == "LOGIN_FAILED",
        ).first()
        assert entry.ip_address == "203.0.113.7"


class TestAccountLockout:
    """Test progressive lockout through the login endpoint."""

    def test_sixth_attempt_is_locked_even_with_correct_password(self, client, login, admin_user):
        for _ in range(5):
            response = login(admin_user.email, "WrongPassw0rd")
            assert response.json()["error_code"] == "INVALID_CREDENTIALS"

        response = login(admin_user.email)

        assert response.status_code == status.HTTP_423_LOCKED
        assert response.json()["error_code"] == "ACCOUNT_LOCKED"

    def test_four_failures_do_not_lock(self, client, login, admin_user):
        for _ in range(4):
            login(admin_user.email, "WrongPassw0rd")

        response = login(admin_user.email)
        assert response.status_code == status.HTTP_200_OK

    def test_expired_lock_allows_login(self, client, login, admin_user, db_session):
        admin_user.login_attempts = 5
        admin_user.lock_until = utcnow() - timedelta(minutes=1)
        db_session.commit()

        response = login(admin_user.email)
        assert response.status_code == status.HTTP_200_OK

    def test_unlock_endpoint_clears_lock(self, client, login, auth_headers, admin_user, make_user, db_session):
        target = make_user("locked@example.com", role="SUPER_ADMIN")
        headers = auth_headers(admin_user)
        for _ in range(5):
            login(target.email, "WrongPassw0rd")
        assert login(target.email).status_code == status.HTTP_423_LOCKED

        response = client.post(f"/api/users/{target.id}/unlock", headers=headers)

        assert response.status_code == status.HTTP_200_OK
        assert login(target.email).status_code == status.HTTP_200_OK


class TestAuthenticate:
    """Test bearer token checks on protected endpoints."""

    def test_get_current_user(self, client, auth_headers, admin_user):
        response = client.get("/api/auth/me", headers=auth_headers(admin_user))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["email"] == admin_user.email

    def test_no_token(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "NO_TOKEN"

    def test_malformed_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "MALFORMED_TOKEN"

    def test_rejected_token_is_revoked(self, client, admin_user, revocation_registry):
        """A token that failed verification stays rejected as blacklisted."""
        expired = create_token(str(admin_user.id), "access", timedelta(seconds=-30))

        first = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
        second = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})

        assert first.json()["error_code"] == "TOKEN_EXPIRED"
        assert second.json()["error_code"] == "TOKEN_BLACKLISTED"
        assert revocation_registry.is_revoked(expired)

    def test_refresh_token_rejected_as_access_token(self, client, login, admin_user):
        refresh_token = login(admin_user.email).json()["refresh_token"]

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh_token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "WRONG_TOKEN_TYPE"

    def test_deactivated_user_token_rejected(self, client, auth_headers, admin_user, db_session):
        headers = auth_headers(admin_user)
        admin_user.is_active = False
        db_session.commit()

        response = client.get("/api/auth/me", headers=headers)

        assert response.json()["error_code"] == "ACCOUNT_DEACTIVATED"

    def test_deleted_user_token_rejected(self, client, auth_headers, make_user, db_session):
        user = make_user("temp@example.com", role="IT_STAFF")
        headers = auth_headers(user)
        db_session.delete(user)
        db_session.commit()

        response = client.get("/api/auth/me", headers=headers)

        assert response.json()["error_code"] == "USER_NOT_FOUND"


class TestRefreshToken:
    """Test refresh token rotation."""

    def test_refresh_returns_new_pair(self, client, login, admin_user):
        tokens = login(admin_user.email).json()

        response = client.post("/api/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["access_token"] != tokens["access_token"]
        assert data["refresh_token"] != tokens["refresh_token"]
        assert data["user"]["id"] == str(admin_user.id)

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.status_code == status.HTTP_200_OK

    def test_refresh_token_is_single_use(self, client, login, admin_user):
        refresh_token = login(admin_user.email).json()["refresh_token"]

        first = client.post("/api/auth/refresh-token", json={"refresh_token": refresh_token})
        second = client.post("/api/auth/refresh-token", json={"refresh_token": refresh_token})

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_401_UNAUTHORIZED
        assert second.json()["error_code"] == "INVALID_REFRESH_TOKEN"

    def test_access_token_cannot_refresh(self, client, login, admin_user, revocation_registry):
        access_token = login(admin_user.email).json()["access_token"]

        response = client.post("/api/auth/refresh-token", json={"refresh_token": access_token})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_REFRESH_TOKEN"
        assert revocation_registry.is_revoked(access_token)

    def test_refresh_for_locked_user_fails(self, client, admin_user, db_session):
        refresh_token = create_token(str(admin_user.id), TOKEN_TYPE_REFRESH, "7d")
        admin_user.lock_until = utcnow() + timedelta(hours=1)
        db_session.commit()

        response = client.post("/api/auth/refresh-token", json={"refresh_token": refresh_token})

        assert response.json()["error_code"] == "INVALID_REFRESH_TOKEN"

    def test_missing_refresh_token(self, client):
        client.cookies.clear()
        response = client.post("/api/auth/refresh-token", json={})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_REFRESH_TOKEN"


class TestConcurrentRefresh:
    """Two exchanges of one refresh token that both pass the revocation pre-check."""

    @pytest.mark.parametrize("backend", ["memory", "database"])
    def test_only_one_exchange_wins(self, db_session, session_factory, admin_user, backend):
        if backend == "memory":
            store = InMemoryRevocationStore()
        else:
            store = DatabaseRevocationStore(session_factory)
        registry = InterleavingRegistry(store)
        refresh_token = create_token(str(admin_user.id), TOKEN_TYPE_REFRESH, "7d")
        other_session = session_factory()
        outcomes = []

        def competing_exchange():
            outcomes.append(AuthService.refresh_tokens(other_session, refresh_token, registry))

        registry.competitor = competing_exchange
        try:
            with pytest.raises(InvalidRefreshTokenError):
                AuthService.refresh_tokens(db_session, refresh_token, registry)
        finally:
            other_session.close()

        assert len(outcomes) == 1
        user, pair = outcomes[0]
        assert user.id == admin_user.id
        assert registry.is_revoked(refresh_token)
        assert not registry.is_revoked(pair.refresh_token)
        reuse = db_session.query(AuditLog).filter(
            AuditLog.action == "TOKEN_REFRESH",
            AuditLog.performed_by == admin_user.id,
        ).all()
        assert sorted(entry.details["success"] for entry in reuse) == [False, True]


class TestLogout:
    def test_logout_revokes_access_token(self, client, auth_headers, admin_user):
        headers = auth_headers(admin_user)

        response = client.post("/api/auth/logout", headers=headers)
        assert response.status_code == status.HTTP_200_OK

        after = client.get("/api/auth/me", headers=headers)
        assert after.status_code == status.HTTP_401_UNAUTHORIZED
        assert after.json()["error_code"] == "TOKEN_BLACKLISTED"

    def test_logout_is_audited(self, client, auth_headers, admin_user, db_session):
        client.post("/api/auth/logout", headers=auth_headers(admin_user))

        assert db_session.query(AuditLog).filter(
            AuditLog.entity_id == str(admin_user.id),
            AuditLog.action == "LOGOUT",
        ).count() == 1

    def test_logout_requires_token(self, client):
        response = client.post("/api/auth/logout")
        assert response.json()["error_code"] == "NO_TOKEN"


class TestChangePassword:
    """Test password change and token invalidation."""

    def _change(self, client, headers, current, new):
        return client.patch(
            "/api/auth/change-password",
            headers=headers,
            json={"current_password": current, "new_password": new, "confirm_password": new},
        )

    def test_change_password_invalidates_existing_tokens(self, client, login, admin_user):
        tokens = login(admin_user.email).json()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}

        response = self._change(client, headers, "Passw0rd123", "N3wPassword!")
        assert response.status_code == status.HTTP_200_OK

        after = client.get("/api/auth/me", headers=headers)
        assert after.status_code == status.HTTP_401_UNAUTHORIZED
        assert after.json()["error_code"] == "PASSWORD_CHANGED"

        refresh = client.post("/api/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == status.HTTP_401_UNAUTHORIZED

    def test_new_password_works_after_change(self, client, login, auth_headers, admin_user):
        self._change(client, auth_headers(admin_user), "Passw0rd123", "N3wPassword!")

        assert login(admin_user.email).status_code == status.HTTP_401_UNAUTHORIZED
        response = login(admin_user.email, "N3wPassword!")
        assert response.status_code == status.HTTP_200_OK

        me = client.get(
            "/api/auth/me",
            headers={"Authorization": f"Bearer {response.json()['access_token']}"},
        )
        assert me.status_code == status.HTTP_200_OK

    def test_wrong_current_password(self, client, auth_headers, admin_user):
        response = self._change(client, auth_headers(admin_user), "WrongPassw0rd", "N3wPassword!")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_CREDENTIALS"

    def test_same_password_rejected(self, client, auth_headers, admin_user):
        response = self._change(client, auth_headers(admin_user), "Passw0rd123", "Passw0rd123")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "PASSWORD_UNCHANGED"

    def test_weak_password_rejected(self, client, auth_headers, admin_user):
        response = self._change(client, auth_headers(admin_user), "Passw0rd123", "alllowercase")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_confirmation_mismatch(self, client, auth_headers, admin_user):
        response = client.patch(
            "/api/auth/change-password",
            headers=auth_headers(admin_user),
            json={
                "current_password": "Passw0rd123",
                "new_password": "N3wPassword!",
                "confirm_password": "Different1!",
            },
        )
        assert response.status_code == 422


class TestProfile:
    def test_update_name(self, client, auth_headers, admin_user):
        response = client.patch(
            "/api/auth/profile",
            headers=auth_headers(admin_user),
            json={"name": "<b>Head</b> Admin"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["name"] == "Head Admin"
