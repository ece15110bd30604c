"""SMTP delivery for seller-facing moderation emails."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from listing_guard.config import ModerationConfig

log = logging.getLogger("listing_guard.notify.email")


class EmailService:
    """Sends moderation emails; a no-op when SMTP is not configured."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    @classmethod
    def from_config(cls, config: ModerationConfig) -> EmailService:
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            sender=config.smtp_from,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)

    @staticmethod
    def build_moderation_blocked_message(sender: str, to_email: str, title: str) -> EmailMessage:
        # Wording stays neutral; policy detail would help sellers tune evasion.
        message = EmailMessage()
        message["From"] = sender
        message["To"] = to_email
        message["Subject"] = "Listing update: review required"
        message.set_content(
            "Hello,\n\n"
            f'Your listing "{title}" needs a quick manual review before it can be published.\n\n'
            "Status: Pending review\n\n"
            "No action is needed from you. Our team will release it once the review is complete.\n\n"
            "- Trust & Safety"
        )
        return message

    def send_moderation_blocked_email(
        self, to_email: str, title: str, summary: str = "", severity: str = ""
    ) -> Optional[EmailMessage]:
        """Send the pending-review email. Returns the sent message, or *None* when skipped."""
        to_email = to_email.strip()
        if not to_email:
            return None
        if not self.configured:
            log.info("SMTP not configured, skipping moderation email")
            return None

        message = self.build_moderation_blocked_message(self.sender, to_email, title)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        log.info("Sent moderation email for listing %r (severity=%s)", title, severity or "n/a")
        return message
