"""
auth/service.py -- Auth orchestrator: the login / token lifecycle workflows.

AuthService composes the credential store (UserStore), the token issuer
(TokenIssuer over TokenStore), the Google bridge and the email collaborator.
Every public method is one request's worth of work: validate, touch the
stores, return a plain result or raise an AppError.

Collapsing:
  Token-consuming flows catch only TokenVerificationError (bad signature,
  expired, wrong kind, missing row, missing owner) and pass its cause to
  auth.errors.collapse() with the flow's single public message. StoreIOError
  is not part of that family and propagates untouched -- a database outage
  must not look like a bad token.

Single use under concurrency:
  Consumption deletes before it mutates. refresh_auth() compare-and-deletes
  the exact row; reset_password(), verify_email() and verify_code() delete
  all rows of their kind for the owner and treat "0 rows deleted" as the
  token already being consumed. Whichever concurrent request deletes first
  wins; the other sees TOKEN_NOT_FOUND.

Layer rule: no imports from api/ or workouts/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.email import EmailService
from auth.errors import Cause, OwnerNotFound, TokenNotFound, TokenVerificationError, collapse
from auth.models import AuthTokens, Token, TokenKind, User, UserRank, UserType
from auth.oauth import fetch_google_userinfo
from auth.store import TokenStore, UserStore
from auth.tokens import (
    _DUMMY_HASH,
    TokenIssuer,
    generate_password,
    hash_password,
    password_matches,
    verify_password,
)
from core.config import Settings, get_settings
from core.errors import BadRequest, NotFound

logger = logging.getLogger("fittrack.auth")

# One public message for both login causes [C1].
_LOGIN_FAILED = "Incorrect email or password"


class AuthService:
    def __init__(
        self,
        users: UserStore,
        tokens: TokenStore,
        mailer: EmailService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.users = users
        self.tokens = tokens
        self.issuer = TokenIssuer(tokens, self.settings)
        self.mailer = mailer or EmailService()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def default_picture_url(self) -> str:
        return f"{self.settings.public_url}/user/default_user.png"

    def create_user(self, user: User) -> User:
        """Persist `user` and return the stored record.

        The UNIQUE(email) constraint is the authoritative duplicate check;
        the lookup beforehand only avoids a wasted bcrypt round on the
        common case.
        """
        if self.users.get_by_email(user.email) is not None:
            raise BadRequest("Email already taken")
        if not user.picture_url:
            user.picture_url = self.default_picture_url()
        try:
            user_id = self.users.create_user(user)
        except IntegrityError:
            raise BadRequest("Email already taken") from None
        return self.users.get_by_id(user_id)

    def register(
        self,
        email: str,
        password: str,
        name: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        picture_url: str | None = None,
    ) -> User:
        """Create an unverified email account and send it a verification code."""
        display_name = name or " ".join(p for p in (first_name, last_name) if p)
        user = self.create_user(
            User(
                email=email,
                hashed_password=hash_password(password),
                name=display_name,
                first_name=first_name,
                last_name=last_name,
                picture_url=picture_url,
                type=UserType.EMAIL.value,
                is_email_verified=False,
                rank=UserRank.BEGINNER.value,
            )
        )
        code = self.issuer.generate_user_verify_otp(user)
        self.mailer.send_verification_code(user.email, code)
        logger.info("Registered user %s", user.id)
        return user

    def resend_verification_code(self, email: str) -> None:
        """Overwrite the pending code of an unverified account and send it again."""
        user = self.users.get_by_email(email)
        if user is None:
            raise collapse(Cause.UNKNOWN_EMAIL, "No users found with this email")
        if user.is_email_verified:
            raise BadRequest("Email already verified")
        code = self.issuer.generate_user_verify_otp(user)
        self.mailer.send_verification_code(user.email, code)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> User:
        """Return the user for valid credentials on a verified account.

        Always runs bcrypt, even for unknown emails, so response time does
        not reveal whether the account exists [C1].
        """
        user = self.users.get_by_email(email)
        if user is None:
            verify_password(password, _DUMMY_HASH)
            raise collapse(Cause.BAD_CREDENTIALS, _LOGIN_FAILED)
        if not password_matches(user, password):
            raise collapse(Cause.BAD_CREDENTIALS, _LOGIN_FAILED)
        if not user.is_email_verified:
            raise collapse(Cause.EMAIL_NOT_VERIFIED, _LOGIN_FAILED)
        logger.info("Login: %s", user.id)
        return user

    def issue_auth_tokens(self, user: User) -> AuthTokens:
        return self.issuer.generate_auth_tokens(user)

    def logout(self, refresh_token: str) -> None:
        record = self.tokens.find_one(refresh_token, TokenKind.REFRESH, blacklisted=False)
        if record is None or not self.tokens.delete_one(record):
            raise collapse(Cause.UNKNOWN_REFRESH_TOKEN, "Not found")

    def refresh_auth(self, refresh_token: str) -> AuthTokens:
        """Rotate: consume the refresh token, then issue a fresh pair."""
        try:
            record = self.issuer.verify_token(refresh_token, TokenKind.REFRESH)
            user = self._owner_of(record)
            if not self.tokens.delete_one(record):
                raise TokenNotFound("consumed by a concurrent refresh")
        except TokenVerificationError as exc:
            raise collapse(exc.cause, "Please authenticate") from None
        return self.issuer.generate_auth_tokens(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Issue a reset-password token, email it, and return it."""
        user = self.users.get_by_email(email)
        if user is None:
            raise collapse(Cause.UNKNOWN_EMAIL, "No users found with this email")
        token = self.issuer.generate_reset_password_token(user)
        self.mailer.send_reset_password_email(user.email, token)
        return token

    def reset_password(self, reset_token: str, new_password: str) -> None:
        try:
            record = self.issuer.verify_token(reset_token, TokenKind.RESET_PASSWORD)
            user = self._owner_of(record)
            self._consume_all(user, TokenKind.RESET_PASSWORD)
        except TokenVerificationError as exc:
            raise collapse(exc.cause, "Password reset failed") from None
        self.users.update_user(user.id, hashed_password=hash_password(new_password))
        logger.info("Password reset for user %s", user.id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def send_verification_email(self, user: User) -> str:
        token = self.issuer.generate_verify_email_token(user)
        self.mailer.send_verification_email(user.email, token)
        return token

    def verify_email(self, verify_email_token: str) -> User:
        try:
            record = self.issuer.verify_token(verify_email_token, TokenKind.VERIFY_EMAIL)
            user = self._owner_of(record)
            self._consume_all(user, TokenKind.VERIFY_EMAIL)
        except TokenVerificationError as exc:
            raise collapse(exc.cause, "Email verification failed") from None
        return self.users.update_user(user.id, is_email_verified=True)

    def verify_code(self, user_id: str, code: str | int) -> tuple[User, AuthTokens]:
        """Consume a 6-digit code, mark the account verified and sign the user in."""
        try:
            record = self.issuer.verify_code(user_id, code, TokenKind.VERIFY_OTP)
            user = self._owner_of(record)
            self._consume_all(user, TokenKind.VERIFY_OTP)
        except TokenVerificationError as exc:
            raise collapse(exc.cause, "User verification failed") from None
        verified = self.users.update_user(user.id, is_email_verified=True)
        return verified, self.issuer.generate_auth_tokens(verified)

    # ------------------------------------------------------------------
    # Google
    # ------------------------------------------------------------------

    def verify_google_token(self, access_token: str) -> User:
        """Exchange a Google access token for a provisional, unsaved User.

        The password is a random placeholder: Google accounts sign in through
        this flow, and the placeholder only exists so the column is never NULL.
        """
        claims = fetch_google_userinfo(access_token)
        return User(
            email=claims["email"],
            hashed_password=hash_password(generate_password()),
            name=claims.get("name") or "",
            first_name=claims.get("given_name"),
            last_name=claims.get("family_name"),
            picture_url=claims.get("picture"),
            type=UserType.GOOGLE.value,
            is_email_verified=bool(claims.get("email_verified", False)),
            rank=UserRank.BEGINNER.value,
        )

    def login_with_google(self, access_token: str, register: bool = False) -> User:
        """Register the provisional Google user, or find the existing account by email."""
        google_user = self.verify_google_token(access_token)
        if register:
            return self.create_user(google_user)
        user = self.users.get_by_email(google_user.email)
        if user is None:
            raise NotFound("User not found")
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owner_of(self, record: Token) -> User:
        user = self.users.get_by_id(record.user_id)
        if user is None:
            raise OwnerNotFound()
        return user

    def _consume_all(self, user: User, kind: TokenKind) -> None:
        if self.tokens.delete_many(user.id, kind) == 0:
            raise TokenNotFound("consumed by a concurrent request")
