import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from constants import CODE_SWEEP_INTERVAL_SECONDS, CODE_TTL_SECONDS, TOKEN_TTL_SECONDS
from delivery import CodeDelivery
from errors import CodeExpired, CodeMismatch, CodeNotFound
from logging_config import get_logger, mask_email

logger = get_logger(__name__)


@dataclass
class CodeRecord:
    code: str
    expires_at: float


class CredentialService:
    """One-time codes per e-mail and the set of currently valid bearer tokens.

    Tokens are deliberately never mapped back to the e-mail that produced them,
    so the service cannot tell who holds a given token.
    """

    def __init__(
        self,
        delivery: CodeDelivery,
        code_ttl: float = CODE_TTL_SECONDS,
        token_ttl: float = TOKEN_TTL_SECONDS,
        sweep_interval: float = CODE_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.delivery = delivery
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        self.sweep_interval = sweep_interval
        self.clock = clock
        # email -> CodeRecord, at most one live code per e-mail
        self._codes: Dict[str, CodeRecord] = {}
        # token -> revocation time
        self._tokens: Dict[str, float] = {}
        self._revocations: Dict[str, asyncio.TimerHandle] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    @staticmethod
    def generate_code() -> str:
        return str(100000 + secrets.randbelow(900000))

    async def issue_code(self, email: str) -> str:
        code = self.generate_code()
        self._codes[email] = CodeRecord(code=code, expires_at=self.clock() + self.code_ttl)
        logger.info(f"Issued OTP for {mask_email(email)}, expires in {self.code_ttl}s")
        # A delivery failure surfaces to the caller, the stored code stays valid
        await self.delivery.deliver(email, code)
        return code

    def verify_code(self, email: str, code: str) -> str:
        record = self._codes.get(email)
        if record is None:
            logger.warning(f"OTP verification failed for {mask_email(email)}: no live code")
            raise CodeNotFound()

        if self.clock() > record.expires_at:
            del self._codes[email]
            logger.warning(f"OTP verification failed for {mask_email(email)}: code expired")
            raise CodeExpired()

        if not secrets.compare_digest(record.code.encode(), str(code).encode()):
            logger.warning(f"OTP verification failed for {mask_email(email)}: code mismatch")
            raise CodeMismatch()

        # Single use: gone before the token exists
        del self._codes[email]
        token = self._mint_token()
        logger.info(f"OTP verified for {mask_email(email)}, token issued")
        return token

    def _mint_token(self) -> str:
        token = secrets.token_hex(32)
        self._tokens[token] = self.clock() + self.token_ttl
        loop = asyncio.get_running_loop()
        self._revocations[token] = loop.call_later(self.token_ttl, self.revoke, token)
        return token

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)
        handle = self._revocations.pop(token, None)
        if handle is not None:
            handle.cancel()

    def is_valid(self, token: Optional[str]) -> bool:
        if not token:
            return False
        expires_at = self._tokens.get(token)
        return expires_at is not None and self.clock() < expires_at

    def sweep(self) -> int:
        """Drop expired code records and any token past its revocation time."""
        now = self.clock()
        expired_emails = [email for email, record in self._codes.items() if now > record.expires_at]
        for email in expired_emails:
            del self._codes[email]

        expired_tokens = [token for token, expires_at in self._tokens.items() if now >= expires_at]
        for token in expired_tokens:
            self.revoke(token)

        if expired_emails or expired_tokens:
            logger.info(f"Credential sweep removed {len(expired_emails)} codes and {len(expired_tokens)} tokens")
        return len(expired_emails)

    def pending_code_count(self) -> int:
        return len(self._codes)

    def token_count(self) -> int:
        return len(self._tokens)

    async def _sweep_loop(self):
        logger.info(f"Starting credential sweep every {self.sweep_interval}s")
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Error during credential sweep: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Credential sweep task cancelled")
            raise

    def start(self):
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        for handle in self._revocations.values():
            handle.cancel()
        self._revocations.clear()
