"""Tests for delivery sinks (no real SMTP calls)."""

import csv
import smtplib
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from apps.notify._tests.factories import make_incident
from apps.notify.drivers import DeliveryMessage, EmailSink, SpreadsheetSink


def _email_config(**overrides):
    cfg = {
        "smtp_host": "smtp.example.local",
        "from_address": "noreply@example.local",
        "to_addresses": ["safety@example.local"],
    }
    cfg.update(overrides)
    return cfg


class DeliveryMessageTests(SimpleTestCase):
    def test_from_incident(self):
        message = DeliveryMessage.from_incident(make_incident(severity_label="Critical"))

        self.assertEqual(message.severity, "critical")
        self.assertEqual(message.title, "Critical infrastructure routed to LogOnly")
        self.assertEqual(message.context["created_at"], "2024-05-01T12:00:00+00:00")

    def test_unknown_severity_normalized(self):
        message = DeliveryMessage(incident_id="1", title="t", severity="WHATEVER")
        self.assertEqual(message.severity, "info")

    def test_summary_falls_back_to_text(self):
        message = DeliveryMessage.from_incident(make_incident(summary="", text="x" * 150))
        self.assertEqual(message.context["summary"], "x" * 100)


class EmailSinkTests(SimpleTestCase):
    def test_validate_config(self):
        sink = EmailSink()
        self.assertFalse(sink.validate_config({}))
        self.assertFalse(sink.validate_config({"smtp_host": "h"}))
        self.assertTrue(sink.validate_config(_email_config()))

    def test_build_email_renders_templates(self):
        message = DeliveryMessage.from_incident(make_incident())
        email = EmailSink()._build_email(message, _email_config())

        self.assertEqual(email["Subject"], "[INFO] Medium infrastructure routed to LogOnly")
        self.assertEqual(email["To"], "safety@example.local")
        text_part, html_part = email.get_payload()
        self.assertIn("Route:    LogOnly", text_part.get_payload())
        self.assertIn("- Dispatch maintenance", text_part.get_payload())
        self.assertIn("<li>Dispatch maintenance</li>", html_part.get_payload())

    def test_html_is_escaped(self):
        message = DeliveryMessage.from_incident(make_incident(summary="<script>x</script>"))
        email = EmailSink()._build_email(message, _email_config())
        html_part = email.get_payload()[1]
        self.assertNotIn("<script>", html_part.get_payload())

    def test_route_recipients_added(self):
        message = DeliveryMessage.from_incident(make_incident(route="Immediate"))
        config = _email_config(route_recipients={"Immediate": ["oncall@example.local", "safety@example.local"]})

        self.assertEqual(
            EmailSink().recipients(message, config),
            ["safety@example.local", "oncall@example.local"],
        )
        email = EmailSink()._build_email(message, config)
        self.assertEqual(email["X-Incident-Route"], "Immediate")

    def test_subject_template(self):
        message = DeliveryMessage.from_incident(make_incident())
        email = EmailSink()._build_email(
            message, _email_config(subject_template="Incident {{ incident_id }} needs {{ route }}")
        )
        self.assertEqual(email["Subject"], f"Incident {message.incident_id} needs LogOnly")
        self.assertEqual(email["X-Incident-Id"], message.incident_id)

    def test_invalid_config_returns_error(self):
        result = EmailSink().send(DeliveryMessage.from_incident(make_incident()), {})
        self.assertFalse(result["success"])

    @patch("apps.notify.drivers.email.smtplib.SMTP")
    def test_send_success(self, mock_smtp):
        server = MagicMock()
        mock_smtp.return_value = server

        result = EmailSink().send(
            DeliveryMessage.from_incident(make_incident()),
            _email_config(username="u", password="p"),
        )

        self.assertTrue(result["success"])
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        server.sendmail.assert_called_once()
        server.quit.assert_called_once()

    @patch("apps.notify.drivers.email.smtplib.SMTP")
    def test_send_smtp_error_is_reported(self, mock_smtp):
        server = MagicMock()
        server.sendmail.side_effect = smtplib.SMTPException("rejected")
        mock_smtp.return_value = server

        result = EmailSink().send(DeliveryMessage.from_incident(make_incident()), _email_config())

        self.assertFalse(result["success"])
        self.assertIn("rejected", result["error"])


class SpreadsheetSinkTests(SimpleTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "exports" / "incidents.csv"

    def tearDown(self):
        self.tmp.cleanup()

    def test_appends_rows_with_single_header(self):
        sink = SpreadsheetSink()
        first = sink.send(DeliveryMessage.from_incident(make_incident()), {"path": str(self.path)})
        second = sink.send(
            DeliveryMessage.from_incident(make_incident(id="second", route="Escalate")),
            {"path": str(self.path)},
        )

        self.assertTrue(first["success"])
        self.assertTrue(second["success"])
        with self.path.open(newline="", encoding="utf-8") as handle:
            rows = list(csv.reader(handle))
        self.assertEqual(rows[0][0], "incident_id")
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[1][1:4], ["Medium", "30", "LogOnly"])
        self.assertEqual(rows[2][0], "second")
        self.assertEqual(rows[2][3], "Escalate")

    def test_missing_path(self):
        result = SpreadsheetSink().send(DeliveryMessage.from_incident(make_incident()), {})
        self.assertFalse(result["success"])
