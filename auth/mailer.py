"""
auth/mailer.py -- Outbound email port for reset-password and verification links.

The core depends only on the EmailSender protocol. build_email_sender()
picks SMTP when SMTP_HOST is configured and a logging sender otherwise, so
local development and tests never need a mail server.

The token is embedded in the link query string and is never logged: the
logging sender records recipient and subject only.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol
from urllib.parse import urlencode

from core.config import Settings

logger = logging.getLogger("authcore.auth.mailer")


class EmailSender(Protocol):
    def send(self, to: str, subject: str, text: str) -> None: ...


class LoggingEmailSender:
    """Records outgoing mail in the log instead of delivering it."""

    def send(self, to: str, subject: str, text: str) -> None:
        logger.info("Email to %s not delivered (SMTP not configured): %s", to, subject)


class SmtpEmailSender:
    def __init__(self, host: str, port: int, username: str, password: str, sender: str) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    def send(self, to: str, subject: str, text: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("Email sent to %s: %s", to, subject)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.smtp_host:
        return SmtpEmailSender(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_username,
            settings.smtp_password,
            settings.email_from,
        )
    return LoggingEmailSender()


def send_reset_password_email(sender: EmailSender, to: str, token: str, base_url: str) -> None:
    link = f"{base_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"
    text = (
        "Dear user,\n\n"
        f"To reset your password, click on this link: {link}\n\n"
        "If you did not request any password resets, then ignore this email."
    )
    sender.send(to, "Reset password", text)


def send_verification_email(sender: EmailSender, to: str, token: str, base_url: str) -> None:
    link = f"{base_url.rstrip('/')}/verify-email?{urlencode({'token': token})}"
    text = (
        "Dear user,\n\n"
        f"To verify your email, click on this link: {link}\n\n"
        "If you did not create an account, then ignore this email."
    )
    sender.send(to, "Email Verification", text)
