"""
auth/oauth.py -- Google identity bridge.

The mobile/web client completes Google sign-in on its own and posts us the
resulting OAuth access token. We never see an authorization code, so there
is no redirect flow here -- only a bearer call to Google's userinfo endpoint
through authlib's requests-based OAuth2Session, which places the token in
the Authorization header.

Failure mapping:
  Timeout / connection error -> UpstreamIOError (retryable, 503).
  Any non-200 response, non-JSON body, or a body without an email
      -> ExternalVerificationFailed via collapse(PROVIDER_REJECTED).

The returned claims are not trusted for anything beyond building a
provisional user; email_verified is copied through as the provider states it.

Layer rule: no imports from api/ or workouts/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import requests
from authlib.integrations.requests_client import OAuth2Session

from auth.errors import Cause, collapse
from core.config import get_settings
from core.errors import UpstreamIOError

logger = logging.getLogger("fittrack.auth.oauth")

_FAILED = "Google verification failed"


def fetch_google_userinfo(access_token: str) -> dict:
    """Return Google's userinfo claims for `access_token`.

    Claims used downstream: email, email_verified, name, given_name,
    family_name, picture.
    """
    cfg = get_settings()
    session = OAuth2Session(token={"access_token": access_token, "token_type": "Bearer"})
    try:
        resp = session.get(cfg.google_userinfo_url, timeout=cfg.oauth_timeout_seconds)
    except (requests.Timeout, requests.ConnectionError) as exc:
        logger.warning("Google userinfo unreachable: %s", exc.__class__.__name__)
        raise UpstreamIOError("Identity provider is temporarily unavailable. Retry the request.") from exc
    except requests.RequestException as exc:
        logger.warning("Google userinfo request failed: %s", exc)
        raise collapse(Cause.PROVIDER_REJECTED, _FAILED) from exc
    finally:
        session.close()

    if resp.status_code != 200:
        logger.info("Google userinfo rejected token (status %d)", resp.status_code)
        raise collapse(Cause.PROVIDER_REJECTED, _FAILED)
    try:
        claims = resp.json()
    except ValueError as exc:
        raise collapse(Cause.PROVIDER_REJECTED, _FAILED) from exc
    if not isinstance(claims, dict) or not claims.get("email"):
        raise collapse(Cause.PROVIDER_REJECTED, _FAILED)
    return claims
