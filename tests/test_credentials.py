"""Tests for auth/credentials.py authorize_credentials() and the sign_in action.

Covers:
- a registered email with the matching password returns that user
- wrong password, unknown email and OAuth-only users return None
- unknown emails still pay for a bcrypt comparison (timing equalization)
- input that fails SignInSchema never reaches the store
- database errors during lookup read as "no such user"
"""

from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from auth.actions import SIGN_IN_FAILED, SIGN_IN_INVALID, SIGN_IN_SUCCESS, sign_in
from auth.credentials import authorize_credentials
from auth.models import User
from auth.tokens import hash_password
from conftest import PASSWORD


def _register(store, email: str = "grace@example.com") -> str:
    return store.create_user(User(email=email, username="Grace", hashed_password=hash_password(PASSWORD)))


class TestAuthorizeCredentials:
    def test_valid_pair_returns_user(self, store) -> None:
        uid = _register(store)
        user = authorize_credentials(store, {"email": "grace@example.com", "password": PASSWORD})
        assert user is not None
        assert user.id == uid
        assert user.email == "grace@example.com"

    def test_wrong_password_returns_none(self, store) -> None:
        _register(store)
        assert authorize_credentials(store, {"email": "grace@example.com", "password": "Wr0ng!Passw0rd#2"}) is None

    def test_unknown_email_runs_dummy_comparison(self, store) -> None:
        with patch("auth.credentials.burn_password_check") as burn:
            user = authorize_credentials(store, {"email": "nobody@example.com", "password": PASSWORD})
        assert user is None
        burn.assert_called_once_with(PASSWORD)

    def test_oauth_only_user_cannot_use_credentials(self, store) -> None:
        store.create_user(User(email="oauth@example.com", username="OAuth"))
        with patch("auth.credentials.burn_password_check") as burn:
            user = authorize_credentials(store, {"email": "oauth@example.com", "password": PASSWORD})
        assert user is None
        burn.assert_called_once()

    def test_schema_failure_skips_lookup(self) -> None:
        store = MagicMock()
        assert authorize_credentials(store, {"email": "grace@example.com", "password": "short"}) is None
        assert authorize_credentials(store, {"email": "nope", "password": PASSWORD}) is None
        assert authorize_credentials(store, {}) is None
        store.get_by_email.assert_not_called()

    def test_database_error_returns_none(self) -> None:
        store = MagicMock()
        store.get_by_email.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        assert authorize_credentials(store, {"email": "grace@example.com", "password": PASSWORD}) is None


class TestSignInAction:
    def test_success_carries_user(self, store) -> None:
        uid = _register(store)
        result = sign_in(store, {"email": "grace@example.com", "password": PASSWORD})
        assert result.ok
        assert result.success == SIGN_IN_SUCCESS
        assert result.user.id == uid

    def test_invalid_fields(self, store) -> None:
        result = sign_in(store, {"email": "grace@example.com", "password": "short"})
        assert result.error == SIGN_IN_INVALID
        assert result.user is None
        assert "password" in result.field_errors

    def test_wrong_credentials_message_is_generic(self, store) -> None:
        """Unknown email and wrong password produce the same message."""
        _register(store)
        wrong_pw = sign_in(store, {"email": "grace@example.com", "password": "Wr0ng!Passw0rd#2"})
        unknown = sign_in(store, {"email": "nobody@example.com", "password": PASSWORD})
        assert wrong_pw.error == unknown.error == SIGN_IN_FAILED
        assert wrong_pw.field_errors == unknown.field_errors == {}
