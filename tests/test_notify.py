from email import message_from_bytes
from pathlib import Path
from unittest import mock

from _support_api import StoreTestCase

from aorta_server.config import SmtpSettings
from aorta_server.notify import Notifier


class TestNotifier(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.outbox = self.data_dir / "outbox"
        self.notifier = Notifier(SmtpSettings(), self.outbox)

    def test_outbox_when_smtp_not_configured(self):
        path = self.notifier.send(to_email="x@example.org", subject="hello", body="text")
        self.assertEqual(Path(path).parent, self.outbox)
        msg = message_from_bytes(Path(path).read_bytes())
        self.assertEqual(msg["To"], "x@example.org")
        self.assertEqual(msg["Subject"], "hello")

    def test_report_notice_goes_to_creator(self):
        with self.connect() as conn:
            t = self.notifier.notify_report(conn, {"id": "r1", "creator": "alice", "tester": "bob", "scriptName": "asp09"})
        t.join(timeout=5)
        files = list(self.outbox.glob("*.eml"))
        self.assertEqual(len(files), 1)
        msg = message_from_bytes(files[0].read_bytes())
        self.assertEqual(msg["To"], "alice@example.org")
        self.assertIn("r1", msg["Subject"])

    def test_no_notice_without_address(self):
        with self.connect() as conn:
            self.assertIsNone(self.notifier.notify_report(conn, {"id": "r1"}))
            self.assertIsNone(self.notifier.notify_report(conn, {"id": "r1", "creator": "bob"}))
            self.assertIsNone(self.notifier.notify_report(conn, {"id": "r1", "creator": "gone"}))
        self.assertFalse(self.outbox.exists())

    def test_smtp_failure_is_logged(self):
        notifier = Notifier(SmtpSettings(host="mail.invalid", port=25), self.outbox)
        with mock.patch("aorta_server.notify.smtplib.SMTP", side_effect=OSError("refused")):
            with self.assertLogs("aorta_server.notify", level="ERROR") as logs:
                t = notifier.send_later(to_email="x@example.org", subject="s", body="b")
                t.join(timeout=5)
        self.assertIn("notification to x@example.org failed", logs.output[0])

    def test_smtp_send(self):
        notifier = Notifier(
            SmtpSettings(host="mail.example", port=587, username="u", password="p", from_email="aorta@example.org"),
            self.outbox,
        )
        with mock.patch("aorta_server.notify.smtplib.SMTP") as smtp:
            notifier.send(to_email="x@example.org", subject="s", body="b")
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        sent = server.send_message.call_args[0][0]
        self.assertEqual(sent["From"], "aorta@example.org")
