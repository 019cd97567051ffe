"""
tests/test_service.py -- Tests for the AuthService flows in auth/service.py.

Covers the token lifecycle properties end to end against a real database:
- login returns a pair whose access token names the user
- a refresh token works exactly once, including under a thread race
- logout consumes the refresh token; unknown tokens are 404
- reset-password consumes every outstanding reset token
- verify-email sets the flag and consumes every verify token
- every collapsed flow reports one fixed message
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from jose import jwt
from sqlalchemy.exc import OperationalError

from auth.errors import AuthenticationError, ConflictError, NotFoundError
from auth.models import ExternalProfile, TokenType
from auth.passwords import verify_password
from auth.service import AuthService
from auth.store import TokenStore, UserStore, create_db_engine


def _token_from_email(email_sender: MagicMock) -> str:
    """Pull the token out of the link in the last email sent."""
    _to, _subject, text = email_sender.send.call_args.args
    link = next(word for word in text.split() if word.startswith("http"))
    return parse_qs(urlparse(link).query)["token"][0]


class TestLogin:
    def test_access_token_subject_is_user(self, service, make_user, settings) -> None:
        user = make_user("alice@example.com", "password1")
        logged_in, tokens = service.login("alice@example.com", "password1")
        claims = jwt.decode(tokens.access.token, settings.secret_key, algorithms=["HS256"])
        assert logged_in.id == user.id
        assert int(claims["sub"]) == user.id

    def test_unknown_user(self, service) -> None:
        with pytest.raises(AuthenticationError) as excinfo:
            service.login("a@x.com", "secret")
        assert excinfo.value.message == "Incorrect email or password"
        assert excinfo.value.status_code == 401

    def test_register_then_login(self, service) -> None:
        user, tokens = service.register("new@example.com", "password1", "New")
        assert user.email == "new@example.com"
        assert tokens.refresh.token
        assert service.login("new@example.com", "password1")[0].id == user.id

    def test_register_duplicate_email(self, service, make_user) -> None:
        make_user("taken@example.com")
        with pytest.raises(ConflictError):
            service.register("Taken@example.com", "password1")


class TestLogout:
    def test_logout_consumes_refresh_token(self, service, make_user) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        service.logout(tokens.refresh.token)
        with pytest.raises(AuthenticationError):
            service.refresh_auth(tokens.refresh.token)

    def test_logout_unknown_token(self, service) -> None:
        with pytest.raises(NotFoundError):
            service.logout("unknown-token")

    def test_logout_twice(self, service, make_user) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        service.logout(tokens.refresh.token)
        with pytest.raises(NotFoundError):
            service.logout(tokens.refresh.token)


class TestRefresh:
    def test_refresh_token_is_single_use(self, service, make_user) -> None:
        make_user()
        _, token_a = service.login("alice@example.com", "password1")
        token_b = service.refresh_auth(token_a.refresh.token)
        assert token_b.refresh.token != token_a.refresh.token

        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh_auth(token_a.refresh.token)
        assert excinfo.value.message == "Please authenticate"

        # The rotated token is still good, once.
        service.refresh_auth(token_b.refresh.token)

    def test_access_token_cannot_refresh(self, service, make_user) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        with pytest.raises(AuthenticationError):
            service.refresh_auth(tokens.access.token)

    def test_deleted_user_collapses_to_generic_error(self, service, make_user, settings) -> None:
        user = make_user()
        orphan = service.issuer.generate_token(
            user.id + 1000, datetime.now(timezone.utc) + timedelta(days=1), TokenType.REFRESH
        )
        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh_auth(orphan)
        assert excinfo.value.message == "Please authenticate"

    def test_storage_error_collapses_to_generic_error(self, service, make_user) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        service.token_store = MagicMock(wraps=service.token_store)
        service.token_store.consume.side_effect = OperationalError("DELETE", {}, Exception("db down"))
        with pytest.raises(AuthenticationError) as excinfo:
            service.refresh_auth(tokens.refresh.token)
        assert excinfo.value.message == "Please authenticate"

    def test_stale_record_after_rotation_is_rejected(self, service, make_user, token_store) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        stale = token_store.find(tokens.refresh.token, TokenType.REFRESH)
        rotated = service.refresh_auth(tokens.refresh.token)
        # A request that read the old record before the rotation must lose.
        assert token_store.consume(stale) is False
        assert token_store.find(rotated.refresh.token, TokenType.REFRESH) is not None
        service.refresh_auth(rotated.refresh.token)

    def test_concurrent_refresh_has_single_winner(self, tmp_path, settings) -> None:
        """Two threads presenting the same refresh token: one pair issued, one 401."""
        engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
        service = AuthService.from_stores(settings, UserStore(engine), TokenStore(engine), MagicMock())
        service.register("race@example.com", "password1")
        _, tokens = service.login("race@example.com", "password1")
        barrier = threading.Barrier(2)

        def attempt(_: int) -> str:
            barrier.wait()
            try:
                service.refresh_auth(tokens.refresh.token)
                return "ok"
            except AuthenticationError:
                return "denied"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = sorted(pool.map(attempt, range(2)))
        engine.dispose()
        assert results == ["denied", "ok"]


class TestResetPassword:
    def test_forgot_password_emails_reset_link(self, service, make_user, email_sender) -> None:
        make_user()
        service.forgot_password("alice@example.com")
        to, subject, text = email_sender.send.call_args.args
        assert to == "alice@example.com"
        assert subject == "Reset password"
        assert "http://testserver/reset-password?token=" in text

    def test_forgot_password_unknown_email_is_silent(self, service, email_sender) -> None:
        service.forgot_password("ghost@example.com")
        email_sender.send.assert_not_called()

    def test_reset_changes_password(self, service, make_user, user_store) -> None:
        user = make_user()
        token = service.issuer.issue_reset_password_token(user)
        service.reset_password(token, "newpassword2")
        stored = user_store.get_by_id(user.id)
        assert verify_password("newpassword2", stored.hashed_password)
        with pytest.raises(AuthenticationError):
            service.login("alice@example.com", "password1")

    def test_reset_consumes_all_outstanding_tokens(self, service, make_user) -> None:
        user = make_user()
        first = service.issuer.issue_reset_password_token(user)
        second = service.issuer.issue_reset_password_token(user)
        service.reset_password(first, "newpassword2")
        with pytest.raises(AuthenticationError) as excinfo:
            service.reset_password(second, "newpassword3")
        assert excinfo.value.message == "Password reset failed"

    def test_verify_email_token_cannot_reset(self, service, make_user) -> None:
        user = make_user()
        token = service.issuer.issue_verify_email_token(user)
        with pytest.raises(AuthenticationError) as excinfo:
            service.reset_password(token, "newpassword2")
        assert excinfo.value.message == "Password reset failed"

    def test_emailed_token_works(self, service, make_user, email_sender) -> None:
        make_user()
        service.forgot_password("alice@example.com")
        service.reset_password(_token_from_email(email_sender), "newpassword2")
        assert service.login("alice@example.com", "newpassword2")


class TestVerifyEmail:
    def test_verify_sets_flag(self, service, make_user, user_store, email_sender) -> None:
        user = make_user()
        service.send_verification_email(user)
        assert email_sender.send.call_args.args[1] == "Email Verification"
        service.verify_email(_token_from_email(email_sender))
        assert user_store.get_by_id(user.id).is_email_verified is True

    def test_reused_token_fails_reissued_succeeds(self, service, make_user, user_store) -> None:
        user = make_user()
        old = service.issuer.issue_verify_email_token(user)
        service.verify_email(old)
        with pytest.raises(AuthenticationError) as excinfo:
            service.verify_email(old)
        assert excinfo.value.message == "Email verification failed"

        service.verify_email(service.issuer.issue_verify_email_token(user))
        assert user_store.get_by_id(user.id).is_email_verified is True

    def test_verify_consumes_all_outstanding_tokens(self, service, make_user) -> None:
        user = make_user()
        first = service.issuer.issue_verify_email_token(user)
        second = service.issuer.issue_verify_email_token(user)
        service.verify_email(first)
        with pytest.raises(AuthenticationError):
            service.verify_email(second)

    def test_flag_set_even_if_token_cleanup_fails(self, service, make_user, user_store) -> None:
        user = make_user()
        token = service.issuer.issue_verify_email_token(user)
        service.token_store = MagicMock(wraps=service.token_store)
        service.token_store.delete_all_for_user.side_effect = OperationalError("DELETE", {}, Exception("db down"))
        service.verify_email(token)
        assert user_store.get_by_id(user.id).is_email_verified is True

    def test_garbage_token(self, service) -> None:
        with pytest.raises(AuthenticationError) as excinfo:
            service.verify_email("garbage")
        assert excinfo.value.message == "Email verification failed"


class TestOAuthLogin:
    def test_oauth_login_issues_pair(self, service) -> None:
        profile = ExternalProfile(id="g-9", display_name="Gus", emails=["gus@example.com"])
        user, tokens = service.oauth_login(profile)
        again, _ = service.oauth_login(profile)
        assert user.id == again.id
        assert service.user_for_access_token(tokens.access.token).id == user.id


class TestMaintenance:
    def test_user_for_access_token_rejects_refresh_token(self, service, make_user) -> None:
        make_user()
        _, tokens = service.login("alice@example.com", "password1")
        with pytest.raises(AuthenticationError):
            service.user_for_access_token(tokens.refresh.token)

    def test_purge_expired_tokens(self, service, make_user, token_store) -> None:
        user = make_user()
        service.issuer.issue_single_use_token(user, TokenType.RESET_PASSWORD, timedelta(seconds=-1))
        assert service.purge_expired_tokens() == 1
