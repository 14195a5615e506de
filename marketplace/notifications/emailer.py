from __future__ import annotations

import smtplib
from email.message import EmailMessage

import structlog

from ..config import Settings

logger = structlog.get_logger(__name__)


class SmtpEmailer:
    """Plain-text mail over SMTP. Reports failure instead of raising when unconfigured."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        sender: str = "no-reply@example.com",
        use_tls: bool = True,
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpEmailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
            timeout=settings.notify_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def send(self, *, to_email: str, subject: str, body: str) -> bool:
        if not self.configured:
            logger.warning("email.not_configured", to=to_email, subject=subject)
            return False

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

        logger.info("email.sent", to=to_email, subject=subject)
        return True
