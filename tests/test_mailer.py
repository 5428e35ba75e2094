"""Tests for the SMTP report mailer, with smtplib replaced by fakes."""

import smtplib
from datetime import date

import pytest

from sitelog.config import Settings
from sitelog.mailer import Mailer, MailError
from sitelog.tasks import mail_report

DAY = date(2026, 3, 2)


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def send_message(self, msg):
        self.calls.append("send")
        self.messages.append(msg)


class BrokenSMTP(FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPRecipientsRefused({"office@example.com": (550, b"no")})


@pytest.fixture(autouse=True)
def reset_fakes():
    FakeSMTP.instances = []


@pytest.fixture
def pdf(tmp_path):
    p = tmp_path / "Baustellenprotokoll_260016_2026-03-02.pdf"
    p.write_bytes(b"%PDF-1.4 fake")
    return p


def make_mailer(**kwargs):
    params = dict(host="smtp.example.com", port=587, user="bot", password="pw", sender="bot@example.com", recipient="office@example.com")
    params.update(kwargs)
    return Mailer(**params)


def test_build_message_has_subject_and_attachment(pdf):
    msg = make_mailer().build_message("260016", DAY, pdf)
    assert msg["Subject"] == "Baustellenprotokoll #260016 - 2026-03-02"
    assert msg["To"] == "office@example.com"
    attachments = [p for p in msg.walk() if p.get_filename()]
    assert [a.get_filename() for a in attachments] == [pdf.name]
    assert attachments[0].get_payload(decode=True) == b"%PDF-1.4 fake"


def test_send_uses_starttls(monkeypatch, pdf):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    make_mailer().send_report("260016", DAY, pdf)
    [server] = FakeSMTP.instances
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.calls == ["starttls", ("login", "bot", "pw"), "send"]


def test_send_uses_ssl_on_465(monkeypatch, pdf):
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    make_mailer(port=465, user="").send_report("260016", DAY, pdf)
    [server] = FakeSMTP.instances
    assert server.calls == ["send"]


def test_smtp_errors_become_mail_error(monkeypatch, pdf):
    monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)
    with pytest.raises(MailError):
        make_mailer().send_report("260016", DAY, pdf)


def test_unconfigured_mailer_refuses(pdf):
    mailer = make_mailer(host="")
    assert not mailer.configured
    with pytest.raises(MailError):
        mailer.send_report("260016", DAY, pdf)


def test_from_settings_falls_back_to_user_as_sender():
    mailer = Mailer.from_settings(Settings(smtp_host="h", smtp_user="bot@example.com", mail_to="office@example.com"))
    assert mailer.sender == "bot@example.com"
    assert mailer.configured


@pytest.mark.asyncio
async def test_mail_report_logs_and_continues_on_failure(monkeypatch, pdf):
    monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)
    # must not raise
    await mail_report(make_mailer(), "260016", DAY, pdf)


@pytest.mark.asyncio
async def test_mail_report_skips_without_mailer(pdf):
    await mail_report(None, "260016", DAY, pdf)
    await mail_report(make_mailer(recipient=""), "260016", DAY, pdf)


@pytest.mark.asyncio
async def test_send_report_async(monkeypatch, pdf):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    await make_mailer().send_report_async("260016", DAY, pdf)
    assert FakeSMTP.instances[0].messages[0]["Subject"].startswith("Baustellenprotokoll #260016")
