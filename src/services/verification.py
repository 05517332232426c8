"""
Email verification with short-lived, single-use codes.

Codes live in a ``CodeStore`` (in-memory or Redis) and are mailed
fire-and-forget: a mail failure is logged, the code stays valid and the
caller can ask for another one.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config import settings
from src.domain.entities import AuthContext
from src.domain.errors import ConflictError, NotFoundError, ValidationError
from src.infrastructure.codes import CodeStore
from src.infrastructure.database import unit_of_work
from src.infrastructure.mailer import Mailer, OutgoingMail, deliver_quietly
from src.infrastructure.repositories import UserRepository

logger = logging.getLogger(__name__)

PURPOSE = "verify"


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


class VerificationService:
    def __init__(
        self,
        codes: CodeStore,
        mailer: Mailer,
        session_factory: Optional[async_sessionmaker] = None,
        ttl_seconds: int = settings.verification_code_ttl_seconds,
    ):
        self.codes = codes
        self.mailer = mailer
        self.sessions = session_factory
        self.ttl_seconds = ttl_seconds

    async def send_code(self, actor: AuthContext) -> OutgoingMail:
        async with unit_of_work(self.sessions) as session:
            user = await UserRepository(session).get_by_id(actor.user_id)
            if user is None:
                raise NotFoundError("User", actor.user_id)
            if user.is_verified:
                raise ConflictError("Email is already verified")

        code = generate_code()
        await self.codes.put(PURPOSE, actor.user_id, code, self.ttl_seconds)
        mail = OutgoingMail(
            recipient=user.email,
            subject="Your verification code",
            body=(
                f"Hi {user.name},\n\nYour verification code is {code}. "
                f"It expires in {self.ttl_seconds // 60} minutes."
            ),
        )
        await deliver_quietly(self.mailer, mail)
        logger.info("Verification code issued for user %s", actor.user_id)
        return mail

    async def confirm(self, actor: AuthContext, code: str) -> None:
        if not await self.codes.consume(PURPOSE, actor.user_id, code.strip()):
            raise ValidationError("Invalid or expired verification code")
        async with unit_of_work(self.sessions) as session:
            await UserRepository(session).set_flags(actor.user_id, is_verified=True)
        logger.info("User %s verified", actor.user_id)
