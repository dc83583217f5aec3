import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email utility for TeamFlow.
    Sends billing notifications, reminders and invitations via SendGrid.
    """

    def __init__(self, sendgrid_api_key: Optional[str], sender_email: Optional[str]):
        self.sendgrid_api_key = sendgrid_api_key
        self.sender_email = sender_email

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    # ============================================================
    # ✅ Send Email (synchronous, safe to call after commit)
    # ============================================================
    def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        """Send one email. Failures are logged and reported as False, never raised."""

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {to_email} | Subject: {subject}")
            return True

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"✅ Email '{subject}' sent to {to_email}. Status: {response.status_code}")
            return True
        except Exception as e:
            logger.exception("❌ Failed to send email to %s: %s", to_email, e)
            return False
