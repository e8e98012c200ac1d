from __future__ import annotations

import logging
import smtplib
import threading
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Any

from . import store
from .auth import lookup_user
from .config import SmtpSettings


logger = logging.getLogger(__name__)

DEFAULT_FROM = "no-reply@aorta.invalid"


def _utcnow_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def build_message(*, from_email: str, to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Date"] = formatdate(localtime=False)
    msg["Message-ID"] = make_msgid(domain=from_email.split("@")[-1] if "@" in from_email else None)
    msg["Subject"] = subject
    msg.set_content(body or "")
    return msg


class Notifier:
    """Sends report notices to order creators without holding up the request."""

    def __init__(self, smtp: SmtpSettings, outbox_dir: Path):
        self.smtp = smtp
        self.outbox_dir = outbox_dir

    def send(self, *, to_email: str, subject: str, body: str) -> str:
        msg = build_message(
            from_email=self.smtp.from_email or DEFAULT_FROM,
            to_email=to_email,
            subject=subject,
            body=body,
        )
        if not self.smtp.configured:
            # Dev outbox: keep the message on disk instead of sending it.
            self.outbox_dir.mkdir(parents=True, exist_ok=True)
            path = self.outbox_dir / f"{_utcnow_stamp()}.eml"
            path.write_bytes(bytes(msg))
            logger.info("SMTP not configured; wrote %s", path)
            return str(path)

        with smtplib.SMTP(host=self.smtp.host, port=int(self.smtp.port), timeout=30) as s:
            s.ehlo()
            if self.smtp.use_tls:
                s.starttls()
                s.ehlo()
            if self.smtp.username:
                s.login(self.smtp.username, self.smtp.password)
            s.send_message(msg)
        logger.info("sent %r to %s", subject, to_email)
        return str(msg["Message-ID"] or "")

    def _send_logged(self, **kwargs) -> None:
        try:
            self.send(**kwargs)
        except Exception:
            logger.exception("notification to %s failed", kwargs.get("to_email"))

    def send_later(self, *, to_email: str, subject: str, body: str) -> threading.Thread:
        t = threading.Thread(
            target=self._send_logged,
            kwargs={"to_email": to_email, "subject": subject, "body": body},
            name="aorta-notify",
            daemon=True,
        )
        t.start()
        return t

    def notify_report(self, conn: store.StoreConnection, report: dict[str, Any]) -> threading.Thread | None:
        creator = report.get("creator")
        if not creator:
            return None
        user = lookup_user(conn, str(creator))
        email = None if not user else user.get("email")
        if not email:
            logger.info("no email address for %r; report %s not announced", creator, report.get("id"))
            return None
        report_id = report.get("id")
        script_name = report.get("scriptName") or "a script"
        subject = f"AORTA report {report_id} is ready"
        body = (
            f"The job you ordered with {script_name} has been completed by {report.get('tester')}.\n"
            f"Its report is {report_id}.\n"
        )
        return self.send_later(to_email=str(email), subject=subject, body=body)
