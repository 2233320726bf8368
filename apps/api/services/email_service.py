"""
Email Service

Outbound mail for account onboarding (gym credentials).
Delivery is mocked by default: with EMAIL_ENABLED off, or without SMTP
credentials, the message is logged instead of sent.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent (or logged in mock mode), False on SMTP failure.
        """
        if not self.enabled or not (self.smtp_username and self.smtp_password):
            logger.info(
                f"Mock email to {to_email}: {subject}",
                extra={"extra_fields": {"to": to_email, "subject": subject, "mock": True}},
            )
            return True

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False

    def send_gym_credentials(self, gym_email: str, gym_name: str, temporary_password: str) -> bool:
        """Welcome mail for a newly onboarded gym, with its temporary password."""
        subject = "Welcome to FitFlow - Your Gym Dashboard Access"
        dashboard_url = f"{settings.FRONTEND_URL}/gym-dashboard"

        html_content = "\n".join([
            "<h2>Welcome to FitFlow!</h2>",
            f"<p>Dear {gym_name} Team,</p>",
            "<p>Your gym has been registered on the FitFlow platform. Your login credentials:</p>",
            f"<p><strong>Email:</strong> {gym_email}<br>",
            f"<strong>Temporary Password:</strong> {temporary_password}<br>",
            f"<strong>Dashboard URL:</strong> {dashboard_url}</p>",
            "<p><strong>Important:</strong> Please change your password after your first login.</p>",
            "<p>Best regards,<br>The FitFlow Team</p>",
        ])
        text_content = (
            f"Dear {gym_name} Team,\n\n"
            f"Email: {gym_email}\n"
            f"Temporary Password: {temporary_password}\n"
            f"Dashboard URL: {dashboard_url}\n\n"
            "Please change your password after your first login.\n"
            "- The FitFlow Team"
        )
        return self.send_email(gym_email, subject, html_content, text_content)


# Singleton instance
email_service = EmailService()
