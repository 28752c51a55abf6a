"""Tests for auth/dependencies.py -- session-backed FastAPI dependencies."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from auth.dependencies import get_current_user, get_session, try_get_current_user
from auth.models import User
from auth.tokens import SESSION_COOKIE, create_session_token


def _request(store, token=None) -> Request:
    headers = [(b"cookie", f"{SESSION_COOKIE}={token}".encode())] if token else []
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": headers,
            "app": SimpleNamespace(state=SimpleNamespace(user_store=store)),
        }
    )


def _token(user: User) -> str:
    return create_session_token(user, datetime.now(timezone.utc) + timedelta(hours=1))


def test_signed_in_user_is_loaded(store):
    user = store.get_by_id(store.create_user(User(email="edsger@example.com", username="Edsger")))
    request = _request(store, _token(user))
    assert get_session(request).user.id == user.id
    assert try_get_current_user(request).email == "edsger@example.com"
    assert get_current_user(request).id == user.id


def test_anonymous_request(store):
    request = _request(store)
    assert get_session(request) is None
    assert try_get_current_user(request) is None
    with pytest.raises(HTTPException) as exc_info:
        get_current_user(request)
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail["code"] == "unauthorized"


def test_token_for_deleted_user_is_anonymous(store):
    """A JWT can outlive its user; the lookup makes it read as signed out."""
    user = store.get_by_id(store.create_user(User(email="edsger@example.com")))
    token = _token(user)
    store.delete_user(user.id)
    assert try_get_current_user(_request(store, token)) is None
