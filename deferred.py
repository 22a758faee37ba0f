"""
Deferred deletions: a time-ordered list of pending message deletions,
swept once per check cycle instead of relying on runtime timers.
"""

import logging
import time
from typing import Callable, List, Optional

from state import ChatId, DeleteKind, ItemKey, MessageId, PendingDelete

logger = logging.getLogger(__name__)


class DeferredDeleteScheduler:
    """Pending deletions; cancelled or renewed by the lifecycle manager"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.entries: List[PendingDelete] = []

    def schedule(self, chat_id: ChatId, message_id: MessageId, delay_seconds: float,
                 kind: DeleteKind, key: Optional[ItemKey] = None) -> PendingDelete:
        entry = PendingDelete(
            chat_id=chat_id,
            message_id=message_id,
            due=self.clock() + delay_seconds,
            kind=kind,
            key=key
        )
        self.entries.append(entry)
        return entry

    def cancel(self, predicate: Callable[[PendingDelete], bool]) -> int:
        """Remove every entry matching predicate; returns how many were removed"""
        before = len(self.entries)
        self.entries = [entry for entry in self.entries if not predicate(entry)]
        return before - len(self.entries)

    def pending(self, kind: Optional[DeleteKind] = None, chat_id: Optional[ChatId] = None,
                key: Optional[ItemKey] = None) -> List[PendingDelete]:
        return [
            entry for entry in self.entries
            if (kind is None or entry.kind is kind)
            and (chat_id is None or entry.chat_id == chat_id)
            and (key is None or entry.key == key)
        ]

    async def sweep(self, notifier, now: Optional[float] = None) -> List[PendingDelete]:
        """Fire every due entry (best effort) and drop it whatever the outcome"""
        if not self.entries:
            return []
        if now is None:
            now = self.clock()

        due = [entry for entry in self.entries if entry.due <= now]
        if not due:
            return []
        self.entries = [entry for entry in self.entries if entry.due > now]

        for entry in due:
            try:
                deleted = await notifier.delete(entry.chat_id, entry.message_id)
            except Exception as e:
                logger.warning(
                    f"⚠️ Deferred delete ({entry.kind.value}) failed for chat {entry.chat_id} "
                    f"message {entry.message_id}: {e}"
                )
                continue
            logger.debug(
                f"🗑 Deferred delete ({entry.kind.value}) chat={entry.chat_id} "
                f"message={entry.message_id} ok={deleted}"
            )
        return due

    def __len__(self) -> int:
        return len(self.entries)
