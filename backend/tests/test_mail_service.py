import smtplib

from growi_api.services import mail_service as mail_module
from growi_api.services.mail_service import MailService, redact_email


class RecordingSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, sender, recipients, message):
        self.sent.append((sender, recipients, message))


class RefusingSMTP(RecordingSMTP):
    def sendmail(self, sender, recipients, message):
        raise smtplib.SMTPRecipientsRefused({recipients[0]: (550, b"no such user")})


def test_redact_email_keeps_domain_only():
    assert redact_email("alice@example.com") == "al***@example.com"
    assert redact_email("not-an-email") == "redacted"


def test_unconfigured_service_logs_instead_of_sending(monkeypatch):
    monkeypatch.setattr(mail_module.smtplib, "SMTP", RefusingSMTP)
    service = MailService(smtp_host="")

    assert service.is_configured is False
    assert service.send_welcome_email("alice@example.com", "Alice") is True


def test_reset_email_is_sent_with_link(monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(mail_module.smtplib, "SMTP", RecordingSMTP)
    service = MailService(
        smtp_host="smtp.example.com", smtp_port=2525, smtp_user="mailer", smtp_password="pw",
        use_tls=True, mail_from="Growi <no-reply@example.com>",
    )

    link = "https://growi.example.com/reset-password/new?token=abc123"
    assert service.send_password_reset_email("alice@example.com", None, link) is True

    smtp = RecordingSMTP.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
    assert smtp.started_tls
    assert smtp.logged_in == ("mailer", "pw")
    sender, recipients, message = smtp.sent[0]
    assert recipients == ["alice@example.com"]
    assert "Reset your Growi password" in message


def test_delivery_failure_returns_false(monkeypatch):
    monkeypatch.setattr(mail_module.smtplib, "SMTP", RefusingSMTP)
    service = MailService(smtp_host="smtp.example.com", use_tls=False)

    assert service.send_temporary_password_email("alice@example.com", "Alice", "Tmp12345abcd") is False
