"""
auth/recovery.py -- Password recovery initiation.

initiate() mints a recovery token, stores it on the account and hands the
account plus token to a Mailer. What the mail looks like is the mailer's
business; SmtpMailer sends a short plain-text message via aiosmtplib.

Recovery tokens are secrets.token_hex(32) (256 bits). Redeeming a token and
setting a new password happen outside this module.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from email.message import EmailMessage
from typing import Optional, Protocol

import aiosmtplib

from activity.logger import ActivityLogger
from activity.models import ClientInfo
from auth.models import User
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("nevi.auth")


def generate_recovery_token() -> str:
    return secrets.token_hex(32)


def _full_name(user: User) -> str:
    return f"{user.first_name or ''} {user.last_name or ''}".strip() or user.username


class Mailer(Protocol):
    async def send_password_reset(self, user: User, token: str) -> None:
        """Deliver the recovery token to the user. Raise on delivery failure."""


class SmtpMailer:
    """Mailer that sends through an SMTP relay configured in Settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send_password_reset(self, user: User, token: str) -> None:
        message = EmailMessage()
        message["From"] = self.settings.mail_from
        message["To"] = f"{_full_name(user)} <{user.email}>"
        message["Subject"] = f"Password Recovery - {self.settings.site_name}"
        message.set_content(
            f"Hello {_full_name(user)},\n\n"
            f"Use this code to reset your {self.settings.site_name} password:\n\n"
            f"    {token}\n\n"
            "If you did not ask for a password reset you can ignore this message.\n"
        )
        await aiosmtplib.send(
            message,
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_username or None,
            password=self.settings.smtp_password or None,
            use_tls=self.settings.smtp_use_tls,
        )


class PasswordRecovery:
    def __init__(self, users: UserStore, mailer: Mailer, activity: Optional[ActivityLogger] = None) -> None:
        self.users = users
        self.mailer = mailer
        self.activity = activity

    async def initiate(self, user_id: int, client: Optional[ClientInfo] = None) -> bool:
        """Start recovery for user_id. Returns True if the mail went out.

        Accounts without an e-mail address cannot be recovered and return
        False without touching the database. Record store calls run in a
        worker thread; only the mail delivery is awaited on the event loop.
        """
        user = await asyncio.to_thread(self.users.get_by_id, user_id)
        if user is None or not user.email:
            return False
        token = generate_recovery_token()
        await asyncio.to_thread(self.users.set_recovery_token, user.email, token)
        name = _full_name(user)
        try:
            await self.mailer.send_password_reset(user, token)
        except Exception:
            logger.exception("Password reset mail to user %s failed", user.id)
            await asyncio.to_thread(
                self._record, user.id, "failed", f'Couldn\'t send Password Reset Email: "{name}"', client
            )
            return False
        await asyncio.to_thread(self._record, user.id, "succeeded", f'Send Password Reset Email: "{name}"', client)
        return True

    def _record(self, user_id: int, status: str, detail: str, client: Optional[ClientInfo]) -> None:
        if self.activity is not None:
            self.activity.record(user_id, "email", status, detail, page="settings", client=client)
