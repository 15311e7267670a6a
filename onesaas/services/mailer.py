"""Transactional email over SMTP.

Every send is best effort: failures are logged and reported as ``False``,
never raised into the request that triggered them.
"""

import html
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import quote

import aiosmtplib

from onesaas.config import Settings
from onesaas.utils.security import mask_email, sanitize_log_message

logger = logging.getLogger(__name__)


class Mailer:
    """SMTP mailer for account notifications."""

    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_user: Optional[str],
        smtp_password: Optional[str],
        from_address: Optional[str],
        backend_url: str,
        app_name: str = "OneSaaS",
        use_tls: bool = True,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address or smtp_user
        self.backend_url = backend_url.rstrip("/")
        self.app_name = app_name
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            smtp_host=settings.email_host,
            smtp_port=settings.email_port,
            smtp_user=settings.email_user,
            smtp_password=settings.email_password,
            from_address=settings.email_from,
            backend_url=settings.backend_url,
            app_name=settings.app_name,
            use_tls=settings.email_use_tls,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user)

    async def send_verification_email(self, email: str, username: str, token: str) -> bool:
        link = f"{self.backend_url}/api/v1/auth/verify-email?token={quote(token)}"
        return await self.send(
            email,
            f"Verify your {self.app_name} account",
            f"Hello {username},\n\n"
            f"Thanks for signing up. Confirm your email address by opening this link:\n\n{link}\n\n"
            "If you did not create an account you can ignore this message.",
        )

    async def send_2fa_enabled_email(self, email: str, username: str) -> bool:
        return await self.send(
            email,
            "Two-factor authentication enabled",
            f"Hello {username},\n\n"
            f"Two-factor authentication is now active on your {self.app_name} account. "
            "Keep your backup codes somewhere safe.\n\n"
            "If this was not you, contact support immediately.",
        )

    async def send_subscription_email(self, email: str, username: str, plan_name: str, price: float) -> bool:
        return await self.send(
            email,
            f"Your {plan_name} subscription",
            f"Hello {username},\n\n"
            f"Your subscription to {plan_name} (${price:.2f}/month) is now active.\n\n"
            f"Thank you for choosing {self.app_name}.",
        )

    async def send(self, to_address: str, subject: str, message: str) -> bool:
        """Send one email.

        Returns:
            True if the message was handed to the SMTP server
        """
        if not self.enabled:
            logger.info("[email] SMTP not configured, skipping '%s' to %s",
                        sanitize_log_message(subject), mask_email(to_address))
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = f"[{self.app_name}] {subject}"
            msg["From"] = self.from_address
            msg["To"] = to_address

            text_body = f"{message}\n\n--\nSent by {self.app_name}"
            html_body = (
                "<html><body style=\"font-family: sans-serif; padding: 20px;\">"
                f"<h2>{html.escape(subject)}</h2>"
                f"<p style=\"white-space: pre-wrap;\">{html.escape(message)}</p>"
                f"<p style=\"color: #666; font-size: 12px;\">Sent by {self.app_name}</p>"
                "</body></html>"
            )
            msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            # Port 465 is implicit TLS; other ports upgrade with STARTTLS
            await aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                use_tls=self.use_tls and self.smtp_port == 465,
                start_tls=self.use_tls and self.smtp_port != 465,
            )

            logger.info("[email] Sent '%s' to %s", sanitize_log_message(subject), mask_email(to_address))
            return True

        except aiosmtplib.SMTPException as e:
            logger.error("[email] SMTP error: %s", e)
            return False
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error("[email] Connection error: %s", e)
            return False
        except (ValueError, KeyError) as e:
            logger.error("[email] Invalid data: %s", e)
            return False
