import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Optional, Protocol

from constants import CODE_TTL_SECONDS, IS_PRODUCTION, SMTP_FROM, SMTP_HOST, SMTP_PASS, SMTP_PORT, SMTP_USER
from errors import DeliveryFailure
from logging_config import get_logger, mask_email

logger = get_logger(__name__)

OTP_SUBJECT = "Your Secure Meeting Room OTP"
OTP_HTML = """
<div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; padding: 20px;">
  <h2>Your One-Time Password</h2>
  <p>Your OTP code is: <strong style="font-size: 24px; letter-spacing: 4px;">{code}</strong></p>
  <p>This code will expire in {minutes} minutes.</p>
  <p style="color: #666; font-size: 12px;">If you didn't request this code, please ignore this email.</p>
</div>
"""


class CodeDelivery(Protocol):
    async def deliver(self, email: str, code: str) -> None:
        ...


class ConsoleCodeDelivery:
    """Development delivery: the code only ever reaches the server console."""

    async def deliver(self, email: str, code: str) -> None:
        logger.info(f"OTP for {mask_email(email)}: {code}")


class SmtpCodeDelivery:
    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: Optional[str] = SMTP_USER,
        password: Optional[str] = SMTP_PASS,
        sender: str = SMTP_FROM,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, email: str, code: str) -> MIMEText:
        body = OTP_HTML.format(code=code, minutes=CODE_TTL_SECONDS // 60)
        message = MIMEText(body, "html")
        message["Subject"] = OTP_SUBJECT
        message["From"] = self.sender
        message["To"] = email
        return message

    def _send(self, email: str, code: str) -> None:
        message = self._build_message(email, code)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.sender, [email], message.as_string())

    async def deliver(self, email: str, code: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            # smtplib blocks, keep it off the event loop
            await loop.run_in_executor(None, self._send, email, code)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send error for {mask_email(email)}: {e}", exc_info=True)
            raise DeliveryFailure("Failed to send OTP email") from e
        logger.info(f"OTP email dispatched to {mask_email(email)}")


def build_delivery() -> CodeDelivery:
    if IS_PRODUCTION:
        logger.info(f"Using SMTP code delivery via {SMTP_HOST}:{SMTP_PORT}")
        return SmtpCodeDelivery()
    logger.info("Using console code delivery")
    return ConsoleCodeDelivery()
