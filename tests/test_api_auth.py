"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/* routes.

Uses the module-scoped app from conftest.py: alice (no MFA), bob (MFA) and
root (admin) are seeded once. Tests that change a user's state register
their own account so the seeded users stay predictable.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import ADMIN_PASSWORD, ALICE_PASSWORD, BOB_PASSWORD


def _login(client: TestClient, email: str, password: str):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _fresh_account(client: TestClient) -> tuple[str, str]:
    """Register a throwaway user and return (email, password)."""
    tag = uuid.uuid4().hex[:8]
    email, password = f"user-{tag}@example.com", "throwaway-pass-1"
    resp = client.post("/api/v1/auth/register", json={"email": email, "username": f"user_{tag}", "password": password})
    assert resp.status_code == 201
    return email, password


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_201_without_secrets(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "Carol@Example.com", "username": "carol", "password": "carol-password"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["email"] == "carol@example.com"
        assert body["role"] == "user"
        assert "password_hash" not in body
        assert "mfa_secret" not in body
        assert "refresh_token" not in body

    def test_duplicate_email_is_409(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "alice@example.com", "username": "alice-again", "password": "whatever-123"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_already_exists"

    def test_duplicate_username_is_409(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "new-alice@example.com", "username": "alice", "password": "whatever-123"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_already_exists"

    def test_anonymous_cannot_choose_role(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "mallory@example.com", "username": "mallory", "password": "mallory-pass", "role": "admin"},
        )
        assert resp.status_code == 401

    def test_plain_user_cannot_choose_role(self, client: TestClient) -> None:
        token = _login(client, "alice@example.com", ALICE_PASSWORD).json()["access_token"]
        client.cookies.clear()
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "mallory2@example.com", "username": "mallory2", "password": "mallory-pass", "role": "editor"},
            headers=_bearer(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "insufficient_permissions"

    def test_admin_creates_editor(self, client: TestClient) -> None:
        token = _login(client, "root@example.com", ADMIN_PASSWORD).json()["access_token"]
        client.cookies.clear()
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "ed@example.com", "username": "ed", "password": "editor-pass", "role": "Editor"},
            headers=_bearer(token),
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "editor"
        assert resp.json()["roles"] == ["editor"]

    def test_short_password_is_422(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "short@example.com", "username": "shorty", "password": "short"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_password_limit_counts_bytes_not_characters(self, client: TestClient) -> None:
        # 40 characters, 80 UTF-8 bytes
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "accent@example.com", "username": "accent", "password": "\u00e9" * 40},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_alice_logs_in(self, client: TestClient, users) -> None:
        resp = _login(client, "alice@example.com", ALICE_PASSWORD)
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 3600
        assert body["user"]["id"] == users["alice"].id
        assert resp.headers["cache-control"] == "no-store"
        assert "access_token" in resp.cookies
        assert "refresh_token" in resp.cookies

    def test_bob_needs_second_factor(self, client: TestClient, users) -> None:
        resp = _login(client, "bob@example.com", BOB_PASSWORD)
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "mfa_required"
        assert error["user_id"] == users["bob"].id
        assert "access_token" not in resp.cookies

    def test_wrong_password_and_unknown_email_match(self, client: TestClient) -> None:
        wrong = _login(client, "alice@example.com", "not-the-password")
        unknown = _login(client, "nobody@example.com", "not-the-password")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"
        assert wrong.headers["www-authenticate"] == "Bearer"

    def test_login_is_rate_limited(self, client: TestClient) -> None:
        statuses = [_login(client, "alice@example.com", "not-the-password").status_code for _ in range(25)]
        assert statuses[0] == 401
        assert 429 in statuses

        resp = _login(client, "alice@example.com", "not-the-password")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limit_exceeded"
        assert "retry-after" in resp.headers


class TestRefresh:
    def test_refresh_with_body(self, client: TestClient) -> None:
        email, password = _fresh_account(client)
        first = _login(client, email, password).json()
        client.cookies.clear()

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

        me = client.get("/api/v1/auth/me", headers=_bearer(second["access_token"]))
        assert me.json()["email"] == email

    def test_refresh_with_cookie(self, client: TestClient) -> None:
        email, password = _fresh_account(client)
        _login(client, email, password)
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200
        assert resp.json()["refresh_token"]

    def test_reused_refresh_token_is_mismatch(self, client: TestClient) -> None:
        email, password = _fresh_account(client)
        old = _login(client, email, password).json()["refresh_token"]
        client.cookies.clear()

        assert client.post("/api/v1/auth/refresh", json={"refresh_token": old}).status_code == 200
        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": old})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "token_mismatch"

    def test_access_token_is_not_a_refresh_token(self, client: TestClient) -> None:
        email, password = _fresh_account(client)
        access = _login(client, email, password).json()["access_token"]
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid"

    def test_missing_token(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/refresh", json={})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid"


class TestSession:
    def test_me_requires_authentication(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_me_with_garbage_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me", headers=_bearer("not-a-jwt"))
        assert resp.status_code == 401

    def test_me_with_cookie(self, client: TestClient, users) -> None:
        _login(client, "alice@example.com", ALICE_PASSWORD)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["id"] == users["alice"].id
        assert resp.json()["last_login"] is not None

    def test_logout_revokes_refresh_token(self, client: TestClient) -> None:
        email, password = _fresh_account(client)
        tokens = _login(client, email, password).json()
        client.cookies.clear()

        out = client.post("/api/v1/auth/logout", headers=_bearer(tokens["access_token"]))
        assert out.status_code == 200
        assert out.json()["message"] == "Logged out."

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_mismatch"

    def test_logout_requires_authentication(self, client: TestClient) -> None:
        assert client.post("/api/v1/auth/logout").status_code == 401


class TestAdminGuard:
    def test_admin_lists_users(self, client: TestClient) -> None:
        token = _login(client, "root@example.com", ADMIN_PASSWORD).json()["access_token"]
        client.cookies.clear()
        resp = client.get("/api/v1/auth/users", headers=_bearer(token))
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json()}
        assert {"alice@example.com", "bob@example.com", "root@example.com"} <= emails

    def test_plain_user_is_forbidden(self, client: TestClient) -> None:
        token = _login(client, "alice@example.com", ALICE_PASSWORD).json()["access_token"]
        client.cookies.clear()
        resp = client.get("/api/v1/auth/users", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "insufficient_permissions"

    def test_anonymous_is_unauthenticated(self, client: TestClient) -> None:
        assert client.get("/api/v1/auth/users").status_code == 401
