"""
In-memory state for the stock monitor.
Everything here is reset on restart; nothing is persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

ChatId = str
ItemKey = str
MessageId = int


class DeleteKind(Enum):
    """Why a message is scheduled for deletion"""
    SOLD_OUT = "soldout"
    RESTOCK_IDLE = "restock_idle"
    SUMMARY = "summary"


@dataclass
class ItemState:
    """Last known stock of one tracked item"""
    last_stock: Optional[int] = None  # None until the first observation
    in_stock_notified: bool = False


@dataclass
class PendingDelete:
    """A message deletion due at `due` (clock seconds)"""
    chat_id: ChatId
    message_id: MessageId
    due: float
    kind: DeleteKind
    key: Optional[ItemKey] = None


@dataclass
class MonitorState:
    """Active message maps, keyed flat by (chat, item key) / chat"""
    restock_messages: Dict[Tuple[ChatId, ItemKey], MessageId] = field(default_factory=dict)
    summary_messages: Dict[ChatId, MessageId] = field(default_factory=dict)
    summary_refreshed_at: Dict[ChatId, float] = field(default_factory=dict)

    def restock_message(self, chat_id: ChatId, key: ItemKey) -> Optional[MessageId]:
        return self.restock_messages.get((chat_id, key))

    def forget_message(self, chat_id: ChatId, message_id: MessageId) -> None:
        """Drop every active-message mapping that points at a deleted message"""
        if self.summary_messages.get(chat_id) == message_id:
            del self.summary_messages[chat_id]
            self.summary_refreshed_at.pop(chat_id, None)
        stale = [pair for pair, mid in self.restock_messages.items()
                 if pair[0] == chat_id and mid == message_id]
        for pair in stale:
            del self.restock_messages[pair]
