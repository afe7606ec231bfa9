"""Unit tests for auth/service.py -- the AuthService workflows.

Covers:
- EXTERNAL_KIND: every internal cause maps to exactly one client-facing kind
- register / create_user: defaults, duplicate email, code emailed
- login: verified user succeeds; wrong password, unknown email and unverified
  account all fail Unauthorized with the same message but distinct causes
- logout and refresh rotation: each refresh token works exactly once
- forgot / reset password: single use, tampered token leaves hash unchanged
- verify_email / verify_code: verified exactly once, second attempt fails
- Google: provisional user, register vs login, provider rejection
- store outages propagate as StoreIOError instead of collapsing
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import text

from auth.errors import EXTERNAL_KIND, Cause, collapse
from auth.models import TokenKind, UserType
from auth.tokens import generate_token, password_matches
from core.errors import (
    BadRequest,
    ErrorKind,
    ExternalVerificationFailed,
    NotFound,
    StoreIOError,
    Unauthorized,
)

PASSWORD = "Passw0rd!"
GOOGLE_CLAIMS = {
    "email": "runner@gmail.com",
    "email_verified": True,
    "name": "Road Runner",
    "given_name": "Road",
    "family_name": "Runner",
    "picture": "https://lh3.googleusercontent.com/a/runner",
}


# ---------------------------------------------------------------------------
# Collapsing table
# ---------------------------------------------------------------------------


class TestExternalKind:
    def test_every_cause_has_exactly_one_kind(self):
        assert set(EXTERNAL_KIND) == set(Cause)

    @pytest.mark.parametrize(
        "cause",
        [
            Cause.BAD_CREDENTIALS,
            Cause.EMAIL_NOT_VERIFIED,
            Cause.INVALID_TOKEN,
            Cause.TOKEN_NOT_FOUND,
            Cause.TOKEN_EXPIRED,
            Cause.OWNER_NOT_FOUND,
        ],
    )
    def test_token_and_credential_causes_are_unauthorized(self, cause):
        assert EXTERNAL_KIND[cause] is ErrorKind.unauthorized

    def test_lookup_causes_are_not_found(self):
        assert EXTERNAL_KIND[Cause.UNKNOWN_REFRESH_TOKEN] is ErrorKind.not_found
        assert EXTERNAL_KIND[Cause.UNKNOWN_EMAIL] is ErrorKind.not_found

    def test_provider_rejection_is_external_verification_failed(self):
        assert EXTERNAL_KIND[Cause.PROVIDER_REJECTED] is ErrorKind.external_verification_failed

    def test_collapse_keeps_cause_and_message(self):
        error = collapse(Cause.TOKEN_EXPIRED, "Password reset failed")
        assert isinstance(error, Unauthorized)
        assert error.message == "Password reset failed"
        assert error.cause is Cause.TOKEN_EXPIRED


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_applies_defaults(self, auth_service):
        user = auth_service.register("new@fittrack.app", PASSWORD, first_name="Ada", last_name="Lovelace")

        assert len(user.id) == 32
        assert user.name == "Ada Lovelace"
        assert user.type == UserType.EMAIL.value
        assert user.is_email_verified is False
        assert user.rank == "beginner"
        assert user.role == "user"
        assert user.picture_url == auth_service.default_picture_url()
        assert password_matches(user, PASSWORD)

    def test_register_emails_the_stored_code(self, auth_service, outbox, stores):
        _, tokens = stores
        user = auth_service.register("code@fittrack.app", PASSWORD, name="Coder")

        code = outbox.code_for("code@fittrack.app")
        assert tokens.find_by_owner(user.id, TokenKind.VERIFY_OTP).token == code

    def test_register_duplicate_email(self, auth_service):
        auth_service.register("dup@fittrack.app", PASSWORD, name="One")
        with pytest.raises(BadRequest, match="Email already taken"):
            auth_service.register("dup@fittrack.app", PASSWORD, name="Two")

    def test_resend_overwrites_code(self, auth_service, outbox, stores):
        _, tokens = stores
        user = auth_service.register("resend@fittrack.app", PASSWORD, name="Re")
        auth_service.resend_verification_code("resend@fittrack.app")

        assert len([m for m in outbox.messages if m.to == "resend@fittrack.app"]) == 2
        assert tokens.count(user.id, TokenKind.VERIFY_OTP) == 1
        assert tokens.find_by_owner(user.id, TokenKind.VERIFY_OTP).token == outbox.code_for("resend@fittrack.app")

    def test_resend_unknown_email(self, auth_service):
        with pytest.raises(NotFound):
            auth_service.resend_verification_code("ghost@fittrack.app")

    def test_resend_already_verified(self, auth_service, make_user):
        make_user("done@fittrack.app")
        with pytest.raises(BadRequest, match="already verified"):
            auth_service.resend_verification_code("done@fittrack.app")


# ---------------------------------------------------------------------------
# Login / logout / refresh
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_verified_user(self, auth_service, make_user):
        created = make_user("a@b.com")
        assert auth_service.login("a@b.com", PASSWORD).id == created.id

    def test_login_wrong_password(self, auth_service, make_user):
        make_user("a@b.com")
        with pytest.raises(Unauthorized) as excinfo:
            auth_service.login("a@b.com", "wrong")
        assert excinfo.value.cause is Cause.BAD_CREDENTIALS
        assert excinfo.value.message == "Incorrect email or password"

    def test_login_unknown_email(self, auth_service):
        with pytest.raises(Unauthorized) as excinfo:
            auth_service.login("nobody@b.com", PASSWORD)
        assert excinfo.value.cause is Cause.BAD_CREDENTIALS

    def test_login_unverified_has_distinct_cause_same_message(self, auth_service, make_user):
        make_user("unverified@b.com", verified=False)
        with pytest.raises(Unauthorized) as excinfo:
            auth_service.login("unverified@b.com", PASSWORD)
        assert excinfo.value.cause is Cause.EMAIL_NOT_VERIFIED
        assert excinfo.value.message == "Incorrect email or password"

    def test_issued_pair_expiries_and_persistence(self, auth_service, make_user, stores):
        _, tokens = stores
        user = make_user("a@b.com")
        before = datetime.now(timezone.utc)
        pair = auth_service.issue_auth_tokens(auth_service.login("a@b.com", PASSWORD))
        settings = auth_service.settings

        access_ttl = timedelta(minutes=settings.access_expiration_minutes)
        refresh_ttl = timedelta(days=settings.refresh_expiration_days)
        assert abs(pair.access.expires - (before + access_ttl)) < timedelta(seconds=5)
        assert abs(pair.refresh.expires - (before + refresh_ttl)) < timedelta(seconds=5)
        assert tokens.find_one(pair.refresh.token, TokenKind.REFRESH, user_id=user.id) is not None


class TestRefresh:
    def test_refresh_token_is_single_use(self, auth_service, make_user):
        user = make_user("rotate@b.com")
        pair = auth_service.issue_auth_tokens(user)

        rotated = auth_service.refresh_auth(pair.refresh.token)
        assert rotated.refresh.token != pair.refresh.token

        with pytest.raises(Unauthorized, match="Please authenticate") as excinfo:
            auth_service.refresh_auth(pair.refresh.token)
        assert excinfo.value.cause is Cause.TOKEN_NOT_FOUND

    def test_rotated_token_works_once_more(self, auth_service, make_user):
        user = make_user("chain@b.com")
        first = auth_service.issue_auth_tokens(user)
        second = auth_service.refresh_auth(first.refresh.token)
        third = auth_service.refresh_auth(second.refresh.token)
        assert third.refresh.token not in (first.refresh.token, second.refresh.token)

    def test_refresh_with_access_token_fails(self, auth_service, make_user):
        user = make_user("kind@b.com")
        pair = auth_service.issue_auth_tokens(user)
        with pytest.raises(Unauthorized) as excinfo:
            auth_service.refresh_auth(pair.access.token)
        assert excinfo.value.cause is Cause.INVALID_TOKEN

    def test_refresh_for_deleted_owner(self, auth_service, make_user, stores):
        users, tokens = stores
        user = make_user("gone@b.com")
        pair = auth_service.issue_auth_tokens(user)
        # Remove only the owner; the refresh row stays behind.
        with users.engine.connect() as conn:
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user.id})
            conn.commit()

        with pytest.raises(Unauthorized) as excinfo:
            auth_service.refresh_auth(pair.refresh.token)
        assert excinfo.value.cause is Cause.OWNER_NOT_FOUND

    def test_concurrent_refresh_second_caller_fails(self, auth_service, make_user):
        """Two refreshes of one token: the first delete wins, the other is rejected."""
        user = make_user("race-refresh@b.com")
        pair = auth_service.issue_auth_tokens(user)
        real_delete = auth_service.tokens.delete_one

        def other_request_deletes_first(record):
            assert real_delete(record) is True
            return real_delete(record)

        with patch.object(auth_service.tokens, "delete_one", side_effect=other_request_deletes_first):
            with pytest.raises(Unauthorized, match="Please authenticate") as excinfo:
                auth_service.refresh_auth(pair.refresh.token)
        assert excinfo.value.cause is Cause.TOKEN_NOT_FOUND


class TestLogout:
    def test_logout_deletes_refresh_row(self, auth_service, make_user, stores):
        _, tokens = stores
        user = make_user("out@b.com")
        pair = auth_service.issue_auth_tokens(user)

        auth_service.logout(pair.refresh.token)
        assert tokens.count(user.id, TokenKind.REFRESH) == 0

    def test_logout_twice_is_not_found(self, auth_service, make_user):
        user = make_user("out2@b.com")
        pair = auth_service.issue_auth_tokens(user)
        auth_service.logout(pair.refresh.token)
        with pytest.raises(NotFound) as excinfo:
            auth_service.logout(pair.refresh.token)
        assert excinfo.value.cause is Cause.UNKNOWN_REFRESH_TOKEN

    def test_refresh_after_logout_fails(self, auth_service, make_user):
        user = make_user("out3@b.com")
        pair = auth_service.issue_auth_tokens(user)
        auth_service.logout(pair.refresh.token)
        with pytest.raises(Unauthorized):
            auth_service.refresh_auth(pair.refresh.token)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_forgot_password_unknown_email(self, auth_service):
        with pytest.raises(NotFound, match="No users found with this email"):
            auth_service.forgot_password("ghost@b.com")

    def test_forgot_password_emails_link(self, auth_service, make_user, outbox):
        make_user("forgot@b.com")
        token = auth_service.forgot_password("forgot@b.com")
        assert outbox.token_for("forgot@b.com") == token
        assert "/reset-password?token=" in outbox.last_to("forgot@b.com").text

    def test_reset_updates_hash_and_clears_rows(self, auth_service, make_user, stores):
        users, tokens = stores
        user = make_user("reset@b.com")
        auth_service.forgot_password("reset@b.com")
        token = auth_service.forgot_password("reset@b.com")
        assert tokens.count(user.id, TokenKind.RESET_PASSWORD) == 2

        auth_service.reset_password(token, "N3wPassw0rd!")

        assert tokens.count(user.id, TokenKind.RESET_PASSWORD) == 0
        refreshed = users.get_by_id(user.id)
        assert password_matches(refreshed, "N3wPassw0rd!")
        assert not password_matches(refreshed, PASSWORD)

    def test_reset_token_is_single_use(self, auth_service, make_user):
        make_user("once@b.com")
        token = auth_service.forgot_password("once@b.com")
        auth_service.reset_password(token, "N3wPassw0rd!")
        with pytest.raises(Unauthorized, match="Password reset failed"):
            auth_service.reset_password(token, "An0therPass!")

    def test_tampered_token_leaves_password(self, auth_service, make_user, stores):
        users, _ = stores
        user = make_user("tamper@b.com")
        token = auth_service.forgot_password("tamper@b.com")
        tampered = token[:-2] + ("AA" if token[-2:] != "AA" else "BB")

        with pytest.raises(Unauthorized, match="Password reset failed") as excinfo:
            auth_service.reset_password(tampered, "N3wPassw0rd!")
        assert excinfo.value.cause is Cause.INVALID_TOKEN
        assert password_matches(users.get_by_id(user.id), PASSWORD)

    def test_expired_token_leaves_password(self, auth_service, make_user, stores):
        users, _ = stores
        user = make_user("expired@b.com")
        expires = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = generate_token(user.id, expires, TokenKind.RESET_PASSWORD, auth_service.settings.secret_key)
        auth_service.issuer.save_token(token, user.id, expires, TokenKind.RESET_PASSWORD)

        with pytest.raises(Unauthorized, match="Password reset failed"):
            auth_service.reset_password(token, "N3wPassw0rd!")
        assert password_matches(users.get_by_id(user.id), PASSWORD)

    def test_reset_loses_race_to_concurrent_reset(self, auth_service, make_user, stores):
        """Rows consumed between verification and deletion fail the slower request."""
        users, tokens = stores
        user = make_user("race-reset@b.com")
        token = auth_service.forgot_password("race-reset@b.com")
        real_verify = auth_service.issuer.verify_token

        def verify_then_lose_race(value, kind):
            record = real_verify(value, kind)
            tokens.delete_many(record.user_id, kind)
            return record

        with patch.object(auth_service.issuer, "verify_token", side_effect=verify_then_lose_race):
            with pytest.raises(Unauthorized, match="Password reset failed") as excinfo:
                auth_service.reset_password(token, "N3wPassw0rd!")
        assert excinfo.value.cause is Cause.TOKEN_NOT_FOUND
        assert password_matches(users.get_by_id(user.id), PASSWORD)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerification:
    def test_verify_email_once(self, auth_service, make_user, stores, outbox):
        _, tokens = stores
        user = make_user("verify@b.com", verified=False)
        token = auth_service.send_verification_email(user)
        assert outbox.token_for("verify@b.com") == token

        verified = auth_service.verify_email(token)
        assert verified.is_email_verified is True
        assert tokens.count(user.id, TokenKind.VERIFY_EMAIL) == 0

        with pytest.raises(Unauthorized, match="Email verification failed"):
            auth_service.verify_email(token)

    def test_verify_code_scenario(self, auth_service, make_user, stores):
        """Unverified user, fresh code, verified once; the same code then fails."""
        _, tokens = stores
        user = make_user("otp@b.com", verified=False)
        code = auth_service.issuer.generate_user_verify_otp(user)
        assert 100000 <= code <= 999999

        verified, pair = auth_service.verify_code(user.id, code)
        assert verified.id == user.id
        assert verified.is_email_verified is True
        assert pair.access.token and pair.refresh.token
        assert tokens.count(user.id, TokenKind.VERIFY_OTP) == 0

        with pytest.raises(Unauthorized, match="User verification failed"):
            auth_service.verify_code(user.id, code)

    def test_original_code_fails_after_reissue(self, auth_service, make_user):
        user = make_user("reissue@b.com", verified=False)
        original = auth_service.issuer.generate_user_verify_otp(user)
        latest = auth_service.issuer.generate_user_verify_otp(user)
        if original == latest:
            pytest.skip("both draws produced the same code")

        with pytest.raises(Unauthorized) as excinfo:
            auth_service.verify_code(user.id, original)
        assert excinfo.value.cause is Cause.TOKEN_NOT_FOUND
        verified, _ = auth_service.verify_code(user.id, latest)
        assert verified.is_email_verified is True

    def test_expired_code_collapses(self, auth_service, make_user, stores):
        _, tokens = stores
        user = make_user("late@b.com", verified=False)
        tokens.upsert_otp(user.id, "123456", datetime.now(timezone.utc) - timedelta(seconds=1))

        with pytest.raises(Unauthorized) as excinfo:
            auth_service.verify_code(user.id, "123456")
        assert excinfo.value.cause is Cause.TOKEN_EXPIRED


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class TestGoogle:
    def test_provisional_user_is_unsaved(self, auth_service, stores):
        users, _ = stores
        with patch("auth.service.fetch_google_userinfo", return_value=GOOGLE_CLAIMS):
            user = auth_service.verify_google_token("ya29.token")

        assert user.id is None
        assert user.type == UserType.GOOGLE.value
        assert user.is_email_verified is True
        assert user.first_name == "Road"
        assert users.get_by_email("runner@gmail.com") is None

    def test_register_then_login(self, auth_service):
        with patch("auth.service.fetch_google_userinfo", return_value=GOOGLE_CLAIMS):
            registered = auth_service.login_with_google("ya29.token", register=True)
            logged_in = auth_service.login_with_google("ya29.token")

        assert registered.id is not None
        assert logged_in.id == registered.id
        assert registered.picture_url == GOOGLE_CLAIMS["picture"]

    def test_login_without_account(self, auth_service):
        with patch("auth.service.fetch_google_userinfo", return_value=GOOGLE_CLAIMS):
            with pytest.raises(NotFound, match="User not found"):
                auth_service.login_with_google("ya29.token")

    def test_register_existing_email(self, auth_service, make_user):
        make_user("runner@gmail.com")
        with patch("auth.service.fetch_google_userinfo", return_value=GOOGLE_CLAIMS):
            with pytest.raises(BadRequest, match="Email already taken"):
                auth_service.login_with_google("ya29.token", register=True)

    def test_provider_rejection_propagates(self, auth_service):
        rejected = collapse(Cause.PROVIDER_REJECTED, "Google verification failed")
        with patch("auth.service.fetch_google_userinfo", side_effect=rejected):
            with pytest.raises(ExternalVerificationFailed, match="Google verification failed"):
                auth_service.verify_google_token("bad")


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


def test_store_outage_is_not_collapsed(auth_service, make_user):
    """A store timeout during refresh surfaces as StoreIOError, not Unauthorized."""
    user = make_user("outage@b.com")
    pair = auth_service.issue_auth_tokens(user)
    outage = StoreIOError("The data store is temporarily unavailable. Retry the request.")

    with patch.object(auth_service.tokens, "find_one", side_effect=outage):
        with pytest.raises(StoreIOError) as excinfo:
            auth_service.refresh_auth(pair.refresh.token)
    assert excinfo.value.retryable is True
