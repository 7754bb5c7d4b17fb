"""
WasteWatch - Email Sender
Delivers notification emails over SMTP.
"""

import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, List, Optional

from src.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP account used for outgoing mail."""
    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_address: str
    from_name: str = "WasteWatch"
    use_tls: bool = True

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_user or "",
            password=settings.smtp_password or "",
            from_address=settings.smtp_user or "noreply@wastewatch.local",
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class EmailSender:
    """Builds a plain text message with an optional HTML part and submits it."""

    def __init__(self, config: Optional[EmailConfig] = None):
        self.config = config or EmailConfig.from_settings()

    def build_message(
        self,
        to_addresses: List[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.config.from_name, self.config.from_address))
        message["To"] = ", ".join(to_addresses)
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        return message

    def send_email(
        self,
        to_addresses: List[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Submit one message to every address.

        Never raises for delivery problems; the result carries
        success and, on failure, an error string.
        """
        if not self.config.has_credentials:
            return {"success": False, "error": "Email credentials not configured", "sent_to": []}

        message = self.build_message(to_addresses, subject, body_text, body_html)
        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                if self.config.use_tls:
                    server.starttls()
                server.login(self.config.username, self.config.password)
                server.send_message(message, from_addr=self.config.from_address, to_addrs=to_addresses)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery of '{subject}' failed: {e}")
            return {"success": False, "error": f"SMTP error: {e}", "sent_to": []}

        logger.info(f"Email '{subject}' sent to {len(to_addresses)} recipient(s)")
        return {"success": True, "sent_to": list(to_addresses)}


def generate_notification_email_html(title: str, message: str) -> str:
    """HTML body for a user notification; title and message are escaped."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="utf-8"></head>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; margin: 0;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="background-color: #2e7d32; color: white; margin: 0; padding: 16px;
                       font-size: 22px; text-align: center;">WasteWatch</h1>
            <div style="background-color: #f8f9fa; padding: 20px; border: 1px solid #ddd;">
                <h2 style="color: #333; margin-top: 0;">{html.escape(title)}</h2>
                <p style="margin: 0; white-space: pre-line;">{html.escape(message)}</p>
            </div>
        </div>
    </body>
    </html>
    """
