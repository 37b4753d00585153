"""
Out-of-band delivery of password reset links.
SMTP (STARTTLS or implicit TLS) when SMTP_HOST is configured; otherwise the
message is only logged with a redacted recipient (development).
"""
from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    if "@" not in (email or ""):
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class ResetMailer:
    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Auth API",
        frontend_url: str = "http://localhost:3000",
        timeout: int = 30,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "ResetMailer":
        return cls(
            smtp_host=config.get("SMTP_HOST") or None,
            smtp_port=int(config.get("SMTP_PORT", 587)),
            smtp_user=config.get("SMTP_USER") or None,
            smtp_password=config.get("SMTP_PASSWORD") or None,
            smtp_use_tls=bool(config.get("SMTP_USE_TLS", True)),
            from_email=config.get("MAIL_FROM") or None,
            frontend_url=config.get("FRONTEND_URL", "http://localhost:3000"),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def reset_link(self, token: str) -> str:
        return f"{self.frontend_url}/reset-password?{urlencode({'token': token})}"

    def send_password_reset(self, to_email: str, name: Optional[str], token: str) -> bool:
        """Send the reset link. Returns False on delivery failure, never raises."""
        link = self.reset_link(token)
        greeting = f"Hello {name}," if name else "Hello,"
        text = (
            f"{greeting}\n\nWe received a request to reset your password. "
            f"Open the link below within the next hour to choose a new one:\n\n{link}\n\n"
            "If you did not ask for this, you can ignore this message."
        )
        html = (
            f"<p>{greeting}</p><p>We received a request to reset your password.</p>"
            f'<p><a href="{link}">Choose a new password</a></p>'
            "<p>If you did not ask for this, you can ignore this message.</p>"
        )
        return self._send(to_email, "Password reset", text, html)

    def _send(self, to_email: str, subject: str, text_body: str, html_body: str) -> bool:
        if not self.is_configured:
            logger.info("Email not configured, skipping delivery | to=%s | subject=%s", redact_email(to_email), subject)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email | to=%s | error=%s", redact_email(to_email), exc)
            return False

        logger.info("Email sent | to=%s | subject=%s", redact_email(to_email), subject)
        return True
