"""Tests for auth/session.py -- issuing, resolving and ending sessions.

Both strategies run against a real UserStore and real Starlette Request and
Response objects; only the strategy setting is patched.

Covers:
- jwt: cookie attributes, round trip, tampered and expired tokens
- database: row written on issue, expired rows deleted on sight,
  sliding expiry once the session is older than SESSION_UPDATE_AGE,
  sign-out deletes the row
- auth() caches its answer on request.state
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional
from unittest.mock import patch

import pytest
from starlette.requests import Request
from starlette.responses import Response

from auth.models import Session, User
from auth.session import REFRESHED_TOKEN_ATTR, auth, end_session, issue_session, refresh_cookie_if_extended
from auth.store import to_iso
from auth.tokens import SESSION_COOKIE, create_session_token
from core.config import get_settings


def _request(store, token: Optional[str] = None) -> Request:
    headers = []
    if token:
        headers.append((b"cookie", f"{SESSION_COOKIE}={token}".encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/settings",
        "query_string": b"",
        "headers": headers,
        "app": SimpleNamespace(state=SimpleNamespace(user_store=store)),
    }
    return Request(scope)


def _set_cookie_headers(response: Response) -> list[str]:
    return [v.decode() for k, v in response.raw_headers if k == b"set-cookie"]


def _cookie_token(response: Response) -> str:
    (header,) = [h for h in _set_cookie_headers(response) if h.startswith(f"{SESSION_COOKIE}=")]
    return header.split(";", 1)[0].split("=", 1)[1]


@pytest.fixture
def user(store) -> User:
    uid = store.create_user(User(email="barbara@example.com", username="Barbara", image="https://img.example.com/b.png"))
    return store.get_by_id(uid)


@pytest.fixture
def database_strategy():
    with patch.object(get_settings(), "session_strategy", "database"):
        yield


class TestJwtSessions:
    def test_issue_sets_http_only_cookie(self, store, user) -> None:
        response = Response()
        info = issue_session(store, response, user)
        assert info.user.id == user.id
        assert info.user.email == user.email

        (header,) = _set_cookie_headers(response)
        lowered = header.lower()
        assert lowered.startswith(SESSION_COOKIE)
        assert "httponly" in lowered
        assert "samesite=lax" in lowered
        assert "path=/" in lowered
        assert f"max-age={get_settings().session_max_age}" in lowered

    def test_round_trip(self, store, user) -> None:
        response = Response()
        issue_session(store, response, user)
        info = auth(_request(store, _cookie_token(response)))
        assert info is not None
        assert info.user.id == user.id
        assert info.user.name == "Barbara"
        assert info.user.image == "https://img.example.com/b.png"
        # Nothing is persisted for JWT sessions.
        assert store.delete_expired_sessions() == 0

    def test_no_cookie_is_anonymous(self, store) -> None:
        assert auth(_request(store)) is None

    def test_tampered_token_is_anonymous(self, store, user) -> None:
        token = create_session_token(user, datetime.now(timezone.utc) + timedelta(hours=1))
        head, payload, signature = token.split(".")
        forged = ".".join([head, payload, signature[::-1]])
        assert auth(_request(store, forged)) is None

    def test_expired_token_is_anonymous(self, store, user) -> None:
        token = create_session_token(user, datetime.now(timezone.utc) - timedelta(seconds=5))
        assert auth(_request(store, token)) is None

    def test_result_is_cached_per_request(self, store, user) -> None:
        token = create_session_token(user, datetime.now(timezone.utc) + timedelta(hours=1))
        request = _request(store, token)
        assert auth(request) is auth(request)

    def test_end_session_clears_cookie(self, store, user) -> None:
        token = create_session_token(user, datetime.now(timezone.utc) + timedelta(hours=1))
        request = _request(store, token)
        response = Response()
        end_session(request, response)
        (header,) = _set_cookie_headers(response)
        assert "max-age=0" in header.lower()
        assert auth(request) is None


class TestDatabaseSessions:
    def test_issue_persists_row(self, store, user, database_strategy) -> None:
        response = Response()
        info = issue_session(store, response, user)
        token = _cookie_token(response)
        session, stored_user = store.get_session_and_user(token)
        assert stored_user.id == user.id
        assert session.expires == info.expires

    def test_round_trip(self, store, user, database_strategy) -> None:
        response = Response()
        issue_session(store, response, user)
        request = _request(store, _cookie_token(response))
        info = auth(request)
        assert info is not None
        assert info.user.email == user.email
        # A fresh session is not slid forward.
        assert getattr(request.state, REFRESHED_TOKEN_ATTR, None) is None

    def test_unknown_token_is_anonymous(self, store, database_strategy) -> None:
        assert auth(_request(store, "unknown-token")) is None

    def test_jwt_cookie_is_not_a_database_session(self, store, user, database_strategy) -> None:
        token = create_session_token(user, datetime.now(timezone.utc) + timedelta(hours=1))
        assert auth(_request(store, token)) is None

    def test_expired_row_is_deleted(self, store, user, database_strategy) -> None:
        expired = to_iso(datetime.now(timezone.utc) - timedelta(minutes=1))
        store.create_session(Session(user_id=user.id, session_token="stale", expires=expired))
        assert auth(_request(store, "stale")) is None
        assert store.get_session_and_user("stale") is None

    def test_old_session_slides_forward(self, store, user, database_strategy) -> None:
        settings = get_settings()
        # Issued just over update_age ago.
        issued = datetime.now(timezone.utc) - timedelta(seconds=settings.session_update_age + 60)
        old_expiry = to_iso(issued + timedelta(seconds=settings.session_max_age))
        store.create_session(Session(user_id=user.id, session_token="aging", expires=old_expiry))

        request = _request(store, "aging")
        info = auth(request)
        assert info is not None
        new_expiry = store.get_session_and_user("aging")[0].expires
        assert new_expiry > old_expiry
        assert info.expires == new_expiry

        response = Response()
        refresh_cookie_if_extended(request, response)
        assert _cookie_token(response) == "aging"

    def test_end_session_deletes_row(self, store, user, database_strategy) -> None:
        response = Response()
        issue_session(store, response, user)
        token = _cookie_token(response)

        request = _request(store, token)
        end_session(request, Response())
        assert store.get_session_and_user(token) is None
        assert auth(request) is None

    def test_deleted_user_ends_session(self, store, user, database_strategy) -> None:
        response = Response()
        issue_session(store, response, user)
        token = _cookie_token(response)
        store.delete_user(user.id)
        assert auth(_request(store, token)) is None
