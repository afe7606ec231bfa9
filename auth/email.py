"""
auth/email.py -- Outbound email collaborator.

EmailService composes the three messages the auth flows send and hands each
one to a transport callable. Delivery itself is out of scope: the default
transport writes the message to the log, which is what local development
and CI want. A deployment plugs in a real transport by passing any
callable(OutboundEmail) -> None.

From the service's point of view sending is fire-and-forget: a transport
that raises is logged and swallowed so a mail outage cannot undo a token
that was already issued and persisted.

Layer rule: no imports from api/ or workouts/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from core.config import get_settings

logger = logging.getLogger("fittrack.email")


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    text: str
    sender: str = ""


Transport = Callable[[OutboundEmail], None]


def log_transport(message: OutboundEmail) -> None:
    """Default transport: record the message instead of delivering it."""
    logger.info("Email to=%s subject=%r\n%s", message.to, message.subject, message.text)


class EmailService:
    def __init__(self, transport: Transport = log_transport) -> None:
        self.transport = transport

    def send(self, to: str, subject: str, text: str) -> None:
        message = OutboundEmail(to=to, subject=subject, text=text, sender=get_settings().mail_from)
        try:
            self.transport(message)
        except Exception:
            logger.exception("Email transport failed for subject %r", subject)

    def send_verification_code(self, to: str, code: int | str) -> None:
        text = (
            "Dear user,\n"
            f"Your FitTrack verification code is {code}.\n"
            "If you did not create an account, then ignore this email."
        )
        self.send(to, "Verification code", text)

    def send_reset_password_email(self, to: str, token: str) -> None:
        url = f"{get_settings().app_url}/reset-password?token={token}"
        text = (
            "Dear user,\n"
            f"To reset your password, click on this link: {url}\n"
            "If you did not request any password resets, then ignore this email."
        )
        self.send(to, "Reset password", text)

    def send_verification_email(self, to: str, token: str) -> None:
        url = f"{get_settings().app_url}/verify-email?token={token}"
        text = (
            "Dear user,\n"
            f"To verify your email, click on this link: {url}\n"
            "If you did not create an account, then ignore this email."
        )
        self.send(to, "Email Verification", text)
