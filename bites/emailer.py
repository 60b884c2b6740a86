# bites/emailer.py
from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage
from typing import Any, Dict, Optional

import aiosmtplib

from .config import Settings

logger = logging.getLogger("bites.emailer")

# template id -> (subject, body); bodies are str.format templates
TEMPLATES: Dict[str, tuple[str, str]] = {
    "verify_email": (
        "Verify your account",
        "Hi {user_name},\n\nConfirm your email address by opening:\n{link}\n\n"
        "The link expires in 24 hours.\n\nQuestions? Write to {support_email}.",
    ),
    "reset_password": (
        "Reset your password",
        "Hi {user_name},\n\nReset your password here:\n{link}\n\n"
        "The link expires in {expiry_hours} hour(s). If you did not ask for this, ignore this email.",
    ),
    "order_confirmation": (
        "Order Confirmed - {order_number}",
        "Your order {order_number} from {restaurant_name} is confirmed.\n\n"
        "{items}\n\nTotal: {total_amount:.2f}\nEstimated delivery: {estimated_time} minutes\n"
        "Delivering to: {delivery_address}",
    ),
}


class EmailSendError(Exception):
    pass


class Emailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def render(self, template_id: str, data: Dict[str, Any]) -> tuple[str, str]:
        if template_id not in TEMPLATES:
            raise EmailSendError(f"Unknown email template: {template_id}")
        subject, body = TEMPLATES[template_id]
        try:
            return subject.format(**data), body.format(**data)
        except (KeyError, ValueError) as e:
            raise EmailSendError(f"Template {template_id} is missing data: {e}") from e

    def send(self, to: str, template_id: str, data: Dict[str, Any]) -> None:
        subject, body = self.render(template_id, data)

        if not self.settings.smtp_host:
            # No SMTP configured: log instead of sending
            logger.info("Email (not sent, SMTP_HOST unset) to=%s subject=%r\n%s", to, subject, body)
            return

        msg = EmailMessage()
        msg["From"] = self.settings.mail_from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            # handlers are sync and run in worker threads, so each send gets its own loop
            asyncio.run(self._deliver(msg))
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("SMTP error sending %s to %s: %s", template_id, to, e)
            raise EmailSendError(f"Failed to send {template_id} email") from e

        logger.info("Email %s sent to %s", template_id, to)

    async def _deliver(self, msg: EmailMessage) -> None:
        await aiosmtplib.send(
            msg,
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_user or None,
            password=self.settings.smtp_password or None,
            start_tls=True,
            timeout=10,
        )

    # -------------------
    # Transactional helpers
    # -------------------
    def send_verification_email(self, email: str, token: str, name: Optional[str] = None) -> None:
        self.send(
            email,
            "verify_email",
            {
                "link": f"{self.settings.app_url}/verify-email?token={token}",
                "user_name": name or email.split("@")[0],
                "support_email": self.settings.mail_from,
            },
        )

    def send_password_reset_email(self, email: str, token: str, name: Optional[str] = None) -> None:
        self.send(
            email,
            "reset_password",
            {
                "link": f"{self.settings.app_url}/reset-password?token={token}",
                "user_name": name or email.split("@")[0],
                "expiry_hours": max(1, self.settings.reset_ttl_seconds // 3600),
            },
        )

    def send_order_confirmation(self, email: str, order_details: Dict[str, Any]) -> None:
        self.send(email, "order_confirmation", order_details)
