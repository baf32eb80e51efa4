# src/PACE/services/notifications.py
"""
Outbound messaging.

The engine only ever talks to a ``MessagingGateway``: ``send(recipient,
message) -> bool``. Dispatch happens after the triggering transaction has
committed; a failed or raising gateway is logged and never surfaces to the
caller.
"""
from __future__ import annotations

from typing import Optional, Protocol

import httpx

from PACE.app_logger import get_logger
from PACE.core.config import Settings, settings as default_settings
from PACE.db.session import PostCommitHooks

log = get_logger("notifications")


class MessagingGateway(Protocol):
    async def send(self, recipient: str, message: str) -> bool: ...


class SmsGateway:
    """mNotify quick-SMS client."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        sender_id: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "SmsGateway":
        cfg = cfg or default_settings
        return cls(cfg.SMS_API_URL, cfg.SMS_API_KEY, cfg.SMS_SENDER_ID, cfg.SMS_TIMEOUT_SECONDS)

    async def send(self, recipient: str, message: str) -> bool:
        if not self.api_key:
            log.warning("SMS API not configured; dropping message to %s", recipient)
            return False

        payload = {"recipient": [recipient], "sender": self.sender_id, "message": message}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.api_url, json=payload, headers=headers)
        if resp.is_success:
            log.info("SMS sent to %s", recipient)
            return True
        log.warning("SMS to %s rejected: %s %s", recipient, resp.status_code, resp.text[:200])
        return False


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

def welcome_message(name: str) -> str:
    return (
        f"Welcome, {name}! We're excited to have you join our church family. "
        "May God bless you on your spiritual journey."
    )


def stage_completion_message(name: str, stage_name: str) -> str:
    return f"Great job {name}! You've completed: {stage_name}. Keep growing in your faith!"


def attendance_goal_message(name: str, goal: int) -> str:
    return (
        f"Congratulations {name}! You've completed {goal} church attendances. "
        "We're proud of your commitment to your faith journey!"
    )


class Notifier:
    """Queues gateway dispatches onto a transaction's post-commit hooks."""

    def __init__(self, gateway: Optional[MessagingGateway]) -> None:
        self.gateway = gateway

    async def dispatch(self, recipient: Optional[str], message: str, trigger: str) -> bool:
        if self.gateway is None or not recipient:
            log.debug("skipping %s notification (gateway=%s recipient=%s)", trigger, self.gateway, recipient)
            return False
        try:
            ok = await self.gateway.send(recipient, message)
        except Exception:
            log.warning("%s notification to %s failed", trigger, recipient, exc_info=True)
            return False
        if not ok:
            log.warning("%s notification to %s was not delivered", trigger, recipient)
        return bool(ok)

    def queue(self, hooks: PostCommitHooks, recipient: Optional[str], message: str, trigger: str) -> None:
        async def _send() -> None:
            await self.dispatch(recipient, message, trigger)

        hooks.add(_send, name=f"notify:{trigger}")
