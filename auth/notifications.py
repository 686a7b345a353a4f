"""
auth/notifications.py -- Out-of-band delivery of single-use tokens.

AuthService hands raw verification and reset tokens to a Notifier and never
returns them to the HTTP caller. Anything with these three methods can be
passed to AuthService.

  SmtpNotifier  plain-text mail over SMTP (STARTTLS by default). Links point
                at the front end: {base_url}/verify-email?token=... and
                {base_url}/reset-password?token=...
  LogNotifier   development only. Sends nothing and says so in the log,
                keyed by account id. Raw tokens are never logged.

notifier_from_settings() picks one for the API process: SMTP when SMTP_HOST
is set, LogNotifier under DEBUG, and a startup failure otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any
from urllib.parse import urlencode

logger = logging.getLogger("credguard.notify")


class Notifier:
    """Delivery interface. Subclasses raise on delivery failure."""

    def send_verification(self, user_id: str, email: str, raw_token: str) -> None:
        raise NotImplementedError

    def send_password_reset(self, user_id: str, email: str, raw_token: str) -> None:
        raise NotImplementedError

    def send_password_changed(self, user_id: str, email: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    def send_verification(self, user_id: str, email: str, raw_token: str) -> None:
        logger.warning("Verification email NOT delivered (no mail server configured) for user_id=%s", user_id)

    def send_password_reset(self, user_id: str, email: str, raw_token: str) -> None:
        logger.warning("Password reset email NOT delivered (no mail server configured) for user_id=%s", user_id)

    def send_password_changed(self, user_id: str, email: str) -> None:
        logger.warning("Password changed notice NOT delivered (no mail server configured) for user_id=%s", user_id)


class SmtpNotifier(Notifier):
    """Send account mail through an SMTP relay.

    One connection per message. smtplib.SMTPException and OSError propagate
    to AuthService, which decides whether the failure matters.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "no-reply@localhost",
        base_url: str = "http://localhost:3000",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.starttls = starttls
        self.timeout = timeout

    def send_verification(self, user_id: str, email: str, raw_token: str) -> None:
        link = self._link("verify-email", raw_token)
        self._send(
            email,
            "Verify your email address",
            f"Welcome!\n\nConfirm your email address by opening this link:\n{link}\n\n"
            "If you did not create an account, ignore this message.",
        )
        logger.info("Verification email sent for user_id=%s", user_id)

    def send_password_reset(self, user_id: str, email: str, raw_token: str) -> None:
        link = self._link("reset-password", raw_token)
        self._send(
            email,
            "Password reset request",
            f"Use the following link to choose a new password:\n{link}\n\n"
            "If you did not request this, ignore this message. Your password stays unchanged.",
        )
        logger.info("Password reset email sent for user_id=%s", user_id)

    def send_password_changed(self, user_id: str, email: str) -> None:
        self._send(
            email,
            "Your password was changed",
            "The password for your account was just changed and all other sessions were signed out.\n\n"
            "If this was not you, reset your password immediately.",
        )
        logger.info("Password changed notice sent for user_id=%s", user_id)

    def _link(self, path: str, raw_token: str) -> str:
        return f"{self.base_url}/{path}?{urlencode({'token': raw_token})}"

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)


def notifier_from_settings(settings: Any) -> Notifier:
    """Choose the mail transport for a Settings object (see core/config.py).

    Raises RuntimeError when no SMTP_HOST is set outside DEBUG mode: without
    mail, nobody could verify an email address or reset a password.
    """
    if settings.smtp_host:
        logger.info("Sending account mail via SMTP %s:%d", settings.smtp_host, settings.smtp_port)
        return SmtpNotifier(
            settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_from,
            base_url=settings.app_base_url,
            starttls=settings.smtp_starttls,
        )
    if not settings.debug:
        raise RuntimeError("SMTP_HOST is required in production mode. To run without mail, set DEBUG=true.")
    logger.warning("SMTP_HOST not set; account mail is logged and NOT delivered (development only).")
    return LogNotifier()
