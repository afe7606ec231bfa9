"""
api/routes/v1/auth.py -- Authentication and token lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register                 -- create account, email a 6-digit code
  POST /api/v1/auth/login                    -- password login; returns user + token pair
  POST /api/v1/auth/logout                   -- revoke a refresh token; 204
  POST /api/v1/auth/refresh-tokens           -- rotate a refresh token into a new pair
  POST /api/v1/auth/forgot-password          -- email a reset-password link; 204
  POST /api/v1/auth/reset-password?token=    -- consume the reset token; 204
  POST /api/v1/auth/send-verification-email  -- email a verify link (requires auth); 204
  POST /api/v1/auth/verify-email?token=      -- consume the verify-email token; 204
  POST /api/v1/auth/verify-code              -- consume the 6-digit code; signs the user in
  POST /api/v1/auth/resend-verification-code -- overwrite and re-send the code; 204
  POST /api/v1/auth/google                   -- register or sign in with a Google access token
  GET  /api/v1/auth/me                       -- current user (requires auth)

Every handler is a thin shell: validate the body (pydantic), make one
AuthService call, map the result to a response model. AppErrors raised by
the service propagate to the handler in api/main.py unchanged.

Handlers are plain `def`: AuthService does blocking bcrypt, SQLAlchemy and
requests work, so FastAPI runs them in its threadpool.

Security:
  [H2] login, forgot-password, verify-code and google are rate-limited per IP.
  [C1] AuthService.login() provides timing equalization -- never inline it.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter
from api.models import (
    AuthResponse,
    AuthTokensResponse,
    EmailRequest,
    GoogleTokenRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserResponse,
    VerifyCodeRequest,
)
from auth.dependencies import get_current_user
from auth.models import AuthTokens, User
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /auth/send-verification-email: requires auth (get_current_user)
# - GET  /auth/me:                      requires auth (get_current_user)
# - everything else is public; the token or code in the body is the credential
router = APIRouter(prefix="/auth")


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


def _auth_response(user: User, tokens: AuthTokens) -> AuthResponse:
    return AuthResponse(user=UserResponse.from_user(user), tokens=AuthTokensResponse.from_tokens(tokens))


# ---------------------------------------------------------------------------
# Registration and sign-in
# ---------------------------------------------------------------------------


@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an unverified email account.

    The verification code goes out by email only; the client follows up with
    POST /auth/verify-code using the returned user id.
    """
    user = _service(request).register(
        email=body.email,
        password=body.password,
        name=body.name,
        first_name=body.first_name,
        last_name=body.last_name,
        picture_url=body.picture_url,
    )
    return RegisterResponse(user=UserResponse.from_user(user))


@limiter.limit(_login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Wrong password, unknown email and unverified account all return the same
    401 "Incorrect email or password".
    """
    service = _service(request)
    user = service.login(body.email, body.password)
    tokens = service.issue_auth_tokens(user)
    _no_store(response)
    return _auth_response(user, tokens)


@router.post("/logout", status_code=204)
def logout(request: Request, body: RefreshTokenRequest) -> Response:
    _service(request).logout(body.refresh_token)
    return Response(status_code=204)


@router.post("/refresh-tokens", response_model=AuthTokensResponse)
def refresh_tokens(request: Request, response: Response, body: RefreshTokenRequest) -> AuthTokensResponse:
    """Rotate a refresh token. The presented token is single-use."""
    tokens = _service(request).refresh_auth(body.refresh_token)
    _no_store(response)
    return AuthTokensResponse.from_tokens(tokens)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit("5/minute")
@router.post("/forgot-password", status_code=204)
def forgot_password(request: Request, body: EmailRequest) -> Response:
    _service(request).forgot_password(body.email)
    return Response(status_code=204)


@router.post("/reset-password", status_code=204)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    token: str = Query(..., min_length=1),
) -> Response:
    _service(request).reset_password(token, body.password)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@router.post("/send-verification-email", status_code=204)
def send_verification_email(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> Response:
    _service(request).send_verification_email(current_user)
    return Response(status_code=204)


@router.post("/verify-email", status_code=204)
def verify_email(request: Request, token: str = Query(..., min_length=1)) -> Response:
    _service(request).verify_email(token)
    return Response(status_code=204)


@limiter.limit("10/minute")  # [H2] a 6-digit code is guessable without a limit
@router.post("/verify-code", response_model=AuthResponse)
def verify_code(request: Request, response: Response, body: VerifyCodeRequest) -> AuthResponse:
    """Consume the emailed code; on success the account is verified and signed in."""
    user, tokens = _service(request).verify_code(body.user_id, body.code)
    _no_store(response)
    return _auth_response(user, tokens)


@limiter.limit("5/minute")
@router.post("/resend-verification-code", status_code=204)
def resend_verification_code(request: Request, body: EmailRequest) -> Response:
    _service(request).resend_verification_code(body.email)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@limiter.limit(_login_limit)
@router.post("/google", response_model=AuthResponse)
def google(request: Request, response: Response, body: GoogleTokenRequest) -> AuthResponse:
    """Sign in (or, with register=true, sign up) using a Google OAuth access token.

    The access token is exchanged server-side for the user's Google profile;
    the client never sends an email address we would have to trust.
    """
    service = _service(request)
    user = service.login_with_google(body.access_token, register=body.register_account)
    tokens = service.issue_auth_tokens(user)
    _no_store(response)
    return _auth_response(user, tokens)


# ---------------------------------------------------------------------------
# Authenticated
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)
