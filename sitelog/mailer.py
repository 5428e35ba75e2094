import asyncio
import smtplib
from datetime import date
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from pathlib import Path

from .config import Settings
from .logs import json_log


class MailError(Exception):
    """Raised when a report mail cannot be submitted."""


class Mailer:
    def __init__(self, host: str, port: int, user: str, password: str, sender: str, recipient: str, timeout: float = 60.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.recipient = recipient
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_pass,
            sender=settings.mail_from,
            recipient=settings.mail_to,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender and self.recipient)

    def build_message(self, site: str, day: date, pdf_path: Path) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["Subject"] = f"Baustellenprotokoll #{site} - {day.isoformat()}"
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(f"Im Anhang das Baustellenprotokoll für Baustelle #{site} vom {day.isoformat()}.\n", "plain", "utf-8"))

        part = MIMEApplication(Path(pdf_path).read_bytes(), _subtype="pdf")
        part.add_header("Content-Disposition", "attachment", filename=Path(pdf_path).name)
        msg.attach(part)
        return msg

    def send_report(self, site: str, day: date, pdf_path: Path) -> None:
        if not self.configured:
            raise MailError("SMTP_HOST, MAIL_FROM and MAIL_TO required to send reports")
        try:
            msg = self.build_message(site, day, pdf_path)
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                    if self.user:
                        server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls()
                    if self.user:
                        server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(str(e)) from e
        json_log("report_mailed", site=site, date=day.isoformat(), to=self.recipient, pdf=str(pdf_path))

    async def send_report_async(self, site: str, day: date, pdf_path: Path) -> None:
        await asyncio.to_thread(self.send_report, site, day, pdf_path)
