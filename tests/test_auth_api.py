"""
tests/test_auth_api.py -- Integration tests for /api/v1/auth/* and /api/v1/activity.

Runs through the real ASGI stack (session middleware included) against the
seeded users from conftest: alice (no MFA) and mallory (MFA required).

Coverage:
  - Login: success body + cookies, identical 401 for wrong password and unknown user,
    a fresh session id on every login
  - /me: 401 without a session, 403 while the MFA gate is closed
  - Remember-me: cookie restores a session, a newer login revokes the older token
  - Logout: session gone, remember-me cookie expired and its token revoked
  - Recovery: always 202, mail sent only for existing accounts
  - Activity listing: auth required, newest first, relative time field
  - Session and recovery store calls run in worker threads, not on the event loop
"""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

ALICE_PASSWORD = "correct-horse"
MALLORY_PASSWORD = "battery-staple"


def _login(client: TestClient, username: str, password: str, remember: bool = False):
    return client.post(
        "/api/v1/auth/login",
        json={"username": username, "password": password, "remember": remember},
    )


def _deleted(resp, cookie_name: str) -> bool:
    """True if the response carries a Set-Cookie that expires cookie_name."""
    return any(
        h.startswith(f"{cookie_name}=") and "max-age=0" in h.lower() for h in resp.headers.get_list("set-cookie")
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_returns_user_and_session_cookie(self, client: TestClient, app_env) -> None:
        resp = _login(client, "alice", ALICE_PASSWORD)
        assert resp.status_code == 200
        assert resp.json() == {"user_id": app_env.user_ids["alice"], "username": "alice", "mfa_required": False}
        assert resp.headers["cache-control"] == "no-store"
        assert "session_id" in resp.cookies
        assert "remember_me" not in resp.cookies

    def test_session_cookie_is_http_only(self, client: TestClient) -> None:
        resp = _login(client, "alice", ALICE_PASSWORD)
        header = next(h for h in resp.headers.get_list("set-cookie") if h.startswith("session_id="))
        assert "httponly" in header.lower()

    def test_wrong_password_and_unknown_user_look_the_same(self, client: TestClient) -> None:
        wrong = _login(client, "alice", "not-her-password")
        unknown = _login(client, "nobody", "whatever")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"
        assert "session_id" not in wrong.cookies

    def test_empty_username_is_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"username": "", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_injection_shaped_username_is_just_a_wrong_username(self, client: TestClient) -> None:
        resp = _login(client, "alice' OR '1'='1", ALICE_PASSWORD)
        assert resp.status_code == 401

    def test_username_comes_from_the_account(self, client: TestClient, app_env) -> None:
        resp = _login(client, "  alice  ", ALICE_PASSWORD)
        assert resp.status_code == 200
        stored = app_env.users.get_by_id(app_env.user_ids["alice"])
        assert resp.json()["username"] == stored.username == "alice"

    def test_login_never_adopts_the_presented_session_id(self, client: TestClient) -> None:
        planted = _login(client, "alice", ALICE_PASSWORD).cookies.get("session_id")
        assert planted

        client.cookies.clear()
        resp = client.post(
            "/api/v1/auth/login",
            json={"username": "mallory", "password": MALLORY_PASSWORD},
            cookies={"session_id": planted},
        )
        assert resp.status_code == 200
        fresh = resp.cookies.get("session_id")
        assert fresh and fresh != planted

        client.cookies.clear()
        assert client.get("/api/v1/auth/me", cookies={"session_id": planted}).status_code == 401


# ---------------------------------------------------------------------------
# /me and the MFA gate
# ---------------------------------------------------------------------------


class TestMe:
    def test_requires_session(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_returns_current_user(self, client: TestClient, app_env) -> None:
        _login(client, "alice", ALICE_PASSWORD)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == app_env.user_ids["alice"]
        assert data["first_name"] == "Alice"
        assert data["last_name"] == "Liddell"

    def test_mfa_pending_is_forbidden_but_session_kept(self, client: TestClient) -> None:
        login = _login(client, "mallory", MALLORY_PASSWORD)
        assert login.status_code == 200
        assert login.json()["mfa_required"] is True

        first = client.get("/api/v1/auth/me")
        second = client.get("/api/v1/auth/me")
        assert first.status_code == second.status_code == 403
        assert second.json()["error"]["code"] == "mfa_required"

    def test_unknown_session_cookie_is_cleared(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me", cookies={"session_id": "forged-session-id"})
        assert resp.status_code == 401
        assert _deleted(resp, "session_id")

    def test_docs_require_auth(self, client: TestClient) -> None:
        assert client.get("/docs").status_code == 401
        _login(client, "alice", ALICE_PASSWORD)
        assert client.get("/docs").status_code == 200


# ---------------------------------------------------------------------------
# Remember-me
# ---------------------------------------------------------------------------


class TestRememberMe:
    def test_remember_cookie_restores_session(self, client: TestClient, app_env) -> None:
        resp = _login(client, "alice", ALICE_PASSWORD, remember=True)
        token = resp.cookies.get("remember_me")
        assert token and len(token) == 32

        client.cookies.clear()
        restored = client.get("/api/v1/auth/me", cookies={"remember_me": token})
        assert restored.status_code == 200
        assert restored.json()["user_id"] == app_env.user_ids["alice"]
        assert "session_id" in restored.cookies

    def test_newer_login_revokes_older_token(self, client: TestClient) -> None:
        t1 = _login(client, "alice", ALICE_PASSWORD, remember=True).cookies.get("remember_me")
        client.cookies.clear()
        t2 = _login(client, "alice", ALICE_PASSWORD, remember=True).cookies.get("remember_me")
        assert t1 != t2

        client.cookies.clear()
        assert client.get("/api/v1/auth/me", cookies={"remember_me": t1}).status_code == 401
        client.cookies.clear()
        assert client.get("/api/v1/auth/me", cookies={"remember_me": t2}).status_code == 200

    def test_restore_replaces_presented_session_id(self, client: TestClient) -> None:
        login = _login(client, "alice", ALICE_PASSWORD, remember=True)
        old_session = login.cookies.get("session_id")
        token = login.cookies.get("remember_me")

        client.cookies.clear()
        restored = client.get("/api/v1/auth/me", cookies={"session_id": old_session, "remember_me": token})
        assert restored.status_code == 200
        assert restored.cookies.get("session_id") not in (None, old_session)

        client.cookies.clear()
        assert client.get("/api/v1/auth/me", cookies={"session_id": old_session}).status_code == 401

    def test_stale_remember_cookie_is_expired(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me", cookies={"remember_me": "f" * 32})
        assert resp.status_code == 401
        assert _deleted(resp, "remember_me")


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_ends_session(self, client: TestClient) -> None:
        _login(client, "alice", ALICE_PASSWORD)
        assert client.get("/api/v1/auth/me").status_code == 200

        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out."
        assert _deleted(resp, "session_id")
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_logout_expires_and_revokes_remember_token(self, client: TestClient, app_env) -> None:
        token = _login(client, "alice", ALICE_PASSWORD, remember=True).cookies.get("remember_me")
        resp = client.post("/api/v1/auth/logout")
        assert _deleted(resp, "remember_me")
        assert app_env.users.get_by_id(app_env.user_ids["alice"]).remember_token is None

        client.cookies.clear()
        assert client.get("/api/v1/auth/me", cookies={"remember_me": token}).status_code == 401

    def test_logout_without_session(self, client: TestClient) -> None:
        assert client.post("/api/v1/auth/logout").status_code == 200

    def test_logout_clears_stray_remember_cookie(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/logout", cookies={"remember_me": "e" * 32})
        assert resp.status_code == 200
        assert _deleted(resp, "remember_me")


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


class TestRecover:
    def test_existing_account_gets_mail(self, client: TestClient, app_env) -> None:
        before = len(app_env.mailer.sent)
        resp = client.post("/api/v1/auth/recover", json={"username": "alice"})
        assert resp.status_code == 202
        assert len(app_env.mailer.sent) == before + 1
        user, token = app_env.mailer.sent[-1]
        assert user.username == "alice"
        assert app_env.users.get_by_id(user.id).recovery_token == token

    def test_unknown_account_gets_same_answer(self, client: TestClient, app_env) -> None:
        before = len(app_env.mailer.sent)
        known = client.post("/api/v1/auth/recover", json={"username": "alice"})
        unknown = client.post("/api/v1/auth/recover", json={"username": "nobody"})
        assert unknown.status_code == 202
        assert unknown.json() == known.json()
        assert len(app_env.mailer.sent) == before + 1

    def test_mail_failure_is_not_revealed(self, client: TestClient, app_env) -> None:
        app_env.mailer.fail = True
        resp = client.post("/api/v1/auth/recover", json={"username": "alice"})
        assert resp.status_code == 202


# ---------------------------------------------------------------------------
# Activity listing
# ---------------------------------------------------------------------------


class TestActivity:
    def test_requires_auth(self, client: TestClient) -> None:
        assert client.get("/api/v1/activity").status_code == 401

    def test_lists_newest_first(self, client: TestClient, app_env) -> None:
        _login(client, "nobody", "whatever")
        _login(client, "alice", ALICE_PASSWORD)
        resp = client.get("/api/v1/activity", params={"limit": 2})
        assert resp.status_code == 200
        entries = resp.json()
        assert len(entries) == 2
        newest, older = entries
        assert newest["id"] > older["id"]
        assert newest["username"] == "alice"
        assert newest["status"] == "succeeded"
        assert newest["description"] == "Log user in"
        assert newest["os"] == "Unknown OS Platform"
        assert newest["when"].endswith("ago")
        assert older["status"] == "failed"
        assert older["user_id"] is None

    def test_mine_filters_to_caller(self, client: TestClient, app_env) -> None:
        _login(client, "mallory", "wrong-password")
        _login(client, "alice", ALICE_PASSWORD)
        entries = client.get("/api/v1/activity", params={"mine": "true"}).json()
        assert entries
        assert {e["user_id"] for e in entries} == {app_env.user_ids["alice"]}

    def test_limit_is_bounded(self, client: TestClient) -> None:
        _login(client, "alice", ALICE_PASSWORD)
        assert client.get("/api/v1/activity", params={"limit": 0}).status_code == 422
        assert client.get("/api/v1/activity", params={"limit": 201}).status_code == 422


# ---------------------------------------------------------------------------
# Record store calls from async code
# ---------------------------------------------------------------------------


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _spy(monkeypatch, target, name: str, calls: list) -> None:
    """Wrap target.name so each call records whether it ran on the event loop thread."""
    original = getattr(target, name)

    def wrapper(*args, **kwargs):
        calls.append(_on_event_loop())
        return original(*args, **kwargs)

    monkeypatch.setattr(target, name, wrapper)


class TestStoreCallsRunInWorkerThreads:
    def test_session_load_and_save(self, client: TestClient, monkeypatch) -> None:
        store = client.app.state.session_store
        calls: list[bool] = []
        _spy(monkeypatch, store, "load", calls)
        _spy(monkeypatch, store, "save", calls)

        _login(client, "alice", ALICE_PASSWORD)
        assert client.get("/api/v1/auth/me").status_code == 200
        assert len(calls) >= 3
        assert not any(calls)

    def test_recovery_lookups_and_writes(self, client: TestClient, monkeypatch) -> None:
        users = client.app.state.user_store
        calls: list[bool] = []
        for name in ("get_by_username", "get_by_id", "set_recovery_token"):
            _spy(monkeypatch, users, name, calls)

        assert client.post("/api/v1/auth/recover", json={"username": "alice"}).status_code == 202
        assert len(calls) == 3
        assert not any(calls)
