"""Best-effort, account-addressed client notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

SHOW_FAVORITE_LOADED = "show_favorite_loaded"


@dataclass(slots=True)
class Notification:
    event: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "payload": self.payload,
            "createdAt": self.created_at.isoformat(),
        }


class NotificationHub:
    """Per-account bounded mailboxes that clients drain or await.

    Delivery is best effort: when a mailbox is full the oldest message is
    dropped, and :meth:`notify` never raises.
    """

    def __init__(self, max_pending: int = 50):
        self._max_pending = max_pending
        self._mailboxes: dict[int, asyncio.Queue[Notification]] = {}

    def _mailbox(self, account_id: int) -> asyncio.Queue[Notification]:
        mailbox = self._mailboxes.get(account_id)
        if mailbox is None:
            mailbox = asyncio.Queue(maxsize=self._max_pending)
            self._mailboxes[account_id] = mailbox
        return mailbox

    async def notify(self, account_id: int, event: str, payload: dict[str, Any]) -> bool:
        """Queue a message for the account; return whether it was accepted."""

        try:
            mailbox = self._mailbox(account_id)
            if mailbox.full():
                dropped = mailbox.get_nowait()
                logger.info(
                    "Dropping undelivered %s notification for account %s",
                    dropped.event,
                    account_id,
                )
            mailbox.put_nowait(Notification(event=event, payload=payload))
        except Exception:  # pragma: no cover - background safety net
            logger.exception("Failed to queue %s notification for account %s", event, account_id)
            return False
        return True

    def drain(self, account_id: int) -> list[Notification]:
        """Return and remove every pending message for the account."""

        mailbox = self._mailboxes.get(account_id)
        if mailbox is None:
            return []
        drained: list[Notification] = []
        while not mailbox.empty():
            drained.append(mailbox.get_nowait())
        return drained

    async def wait(self, account_id: int, timeout: float) -> Notification | None:
        """Wait up to ``timeout`` seconds for the next message."""

        try:
            return await asyncio.wait_for(self._mailbox(account_id).get(), timeout)
        except asyncio.TimeoutError:
            return None
