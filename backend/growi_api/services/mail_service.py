"""Transactional email delivery over SMTP"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from growi_api.config import settings

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Redact an email address for log lines"""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class MailService:
    """
    Send account emails.

    When SMTP_HOST is not configured the message is logged instead of sent,
    which is the expected local development setup. Send methods never raise;
    they return False on delivery failure so callers decide what to do.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        mail_from: Optional[str] = None,
    ) -> None:
        self.smtp_host = settings.SMTP_HOST if smtp_host is None else smtp_host
        self.smtp_port = smtp_port or settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER if smtp_user is None else smtp_user
        self.smtp_password = settings.SMTP_PASSWORD if smtp_password is None else smtp_password
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.mail_from = mail_from or settings.MAIL_FROM

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    def _send(self, to_email: str, subject: str, text_body: str, html_body: str) -> bool:
        if not self.is_configured:
            logger.info(
                f"SMTP not configured, email not sent: to={redact_email(to_email)} subject={subject!r}"
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.mail_from, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send email to {redact_email(to_email)}: {exc}")
            return False

        logger.info(f"Email sent to {redact_email(to_email)}: {subject!r}")
        return True

    def send_password_reset_email(self, email: str, first_name: Optional[str], reset_url: str) -> bool:
        name = first_name or "gardener"
        subject = "Reset your Growi password"
        text = (
            f"Hello {name},\n\n"
            "You asked to reset the password of your Growi account.\n"
            f"Follow this link to choose a new password:\n{reset_url}\n\n"
            "This link is valid for 1 hour. If you did not ask for it, ignore this "
            "email; your current password stays unchanged.\n\n"
            "The Growi team"
        )
        html = (
            f"<p>Hello {name},</p>"
            "<p>You asked to reset the password of your Growi account.</p>"
            f'<p><a href="{reset_url}">Choose a new password</a></p>'
            "<p><strong>This link is valid for 1 hour.</strong></p>"
            "<p>If you did not ask for it, ignore this email; your current password stays unchanged.</p>"
            "<p>The Growi team</p>"
        )
        return self._send(email, subject, text, html)

    def send_welcome_email(self, email: str, first_name: Optional[str]) -> bool:
        name = first_name or "gardener"
        subject = "Welcome to Growi!"
        text = (
            f"Hello {name},\n\n"
            "Your Growi account has been created. You can now track your gardens, "
            "plan your projects and browse the Plant Bible.\n\n"
            "The Growi team"
        )
        html = (
            f"<p>Hello {name},</p>"
            "<p>Your Growi account has been created. You can now track your gardens, "
            "plan your projects and browse the Plant Bible.</p>"
            "<p>The Growi team</p>"
        )
        return self._send(email, subject, text, html)

    def send_temporary_password_email(
        self, email: str, first_name: Optional[str], temporary_password: str
    ) -> bool:
        name = first_name or "gardener"
        subject = "Your temporary Growi password"
        text = (
            f"Hello {name},\n\n"
            "An administrator reset the password of your Growi account.\n"
            f"Temporary password: {temporary_password}\n\n"
            "Sign in and change it as soon as possible.\n\n"
            "The Growi team"
        )
        html = (
            f"<p>Hello {name},</p>"
            "<p>An administrator reset the password of your Growi account.</p>"
            f"<p>Temporary password: <code>{temporary_password}</code></p>"
            "<p>Sign in and change it as soon as possible.</p>"
            "<p>The Growi team</p>"
        )
        return self._send(email, subject, text, html)


mail_service = MailService()
