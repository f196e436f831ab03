"""
Email delivery sink.

Config keys:
- smtp_host, from_address (required)
- to_addresses: recipients for every incident
- route_recipients: extra recipients per route, e.g. {"Immediate": ["oncall@..."]}
- subject_template: Jinja2 string rendered with the incident context
- smtp_port, use_tls, use_ssl, username, password, timeout
"""

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from apps.notify.drivers.base import BaseDeliverySink, DeliveryMessage
from apps.notify.templating import render_string, render_template

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "[{{ severity | upper }}] {{ title }}"


class EmailSink(BaseDeliverySink):
    """Emails the incident summary to the safety team and any route-specific recipients."""

    name = "email"

    text_template = "incident_email.txt.j2"
    html_template = "incident_email.html.j2"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return bool(config.get("smtp_host") and config.get("from_address"))

    def recipients(self, message: DeliveryMessage, config: dict[str, Any]) -> list[str]:
        route = message.context.get("route")
        addresses = list(config.get("to_addresses") or [])
        for address in (config.get("route_recipients") or {}).get(route, []):
            if address not in addresses:
                addresses.append(address)
        return addresses or [config["from_address"]]

    def _build_email(self, message: DeliveryMessage, config: dict[str, Any]) -> MIMEMultipart:
        subject = render_string(
            config.get("subject_template") or DEFAULT_SUBJECT,
            {**message.context, "severity": message.severity, "title": message.title},
        )

        email = MIMEMultipart("alternative")
        email["Subject"] = subject.strip()
        email["From"] = config["from_address"]
        email["To"] = ", ".join(self.recipients(message, config))
        email["X-Priority"] = self.PRIORITY_MAP.get(message.severity, "3")
        email["X-Incident-Id"] = message.incident_id
        if message.context.get("route"):
            email["X-Incident-Route"] = message.context["route"]

        email.attach(MIMEText(render_template(self.text_template, message.context), "plain"))
        email.attach(MIMEText(render_template(self.html_template, message.context), "html"))
        return email

    @staticmethod
    def _connect(config: dict[str, Any]) -> smtplib.SMTP:
        host = config["smtp_host"]
        port = config.get("smtp_port", 587)
        timeout = config.get("timeout", 30)
        if config.get("use_ssl"):
            return smtplib.SMTP_SSL(host, port, timeout=timeout)

        server = smtplib.SMTP(host, port, timeout=timeout)
        if config.get("use_tls", True):
            server.starttls()
        return server

    def send(self, message: DeliveryMessage, config: dict[str, Any]) -> dict[str, Any]:
        if not self.validate_config(config):
            return {
                "success": False,
                "error": "Invalid email configuration (smtp_host and from_address required)",
            }

        try:
            email = self._build_email(message, config)
            message_id = f"{uuid.uuid4()}@{config['smtp_host']}"
            email["Message-ID"] = f"<{message_id}>"
            recipients = self.recipients(message, config)

            server = self._connect(config)
            try:
                if config.get("username") and config.get("password"):
                    server.login(config["username"], config["password"])
                server.sendmail(config["from_address"], recipients, email.as_string())
            finally:
                try:
                    server.quit()
                except smtplib.SMTPException:
                    logger.debug("SMTP quit failed", exc_info=True)
        except smtplib.SMTPAuthenticationError as e:
            return self._handle_exception(e, "Email", "authenticate SMTP")
        except smtplib.SMTPException as e:
            return self._handle_exception(e, "Email", "send SMTP")
        except Exception as e:
            return self._handle_exception(e, "Email", "send email")

        logger.info(f"Incident {message.incident_id} emailed to {len(recipients)} recipient(s)")
        return {
            "success": True,
            "message_id": message_id,
            "metadata": {"to": recipients, "subject": email["Subject"]},
        }
