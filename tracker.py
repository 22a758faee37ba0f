"""
Item tracker: remembers the last stock reading per item and classifies
each new reading into a stock transition.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from state import ItemKey, ItemState

logger = logging.getLogger(__name__)


class TransitionType(Enum):
    NONE = "none"
    RESTOCKED = "restocked"
    SOLD_OUT = "soldout"
    IN_STOCK_CHANGED = "in_stock_changed"


@dataclass(frozen=True)
class Transition:
    type: TransitionType
    previous: Optional[int] = None
    current: int = 0

    @property
    def fired(self) -> bool:
        return self.type is not TransitionType.NONE


def make_item_key(url: str, title: str) -> ItemKey:
    """Stable identity of a (target page, item title) pair"""
    return f"{url}#{title}"


def normalize_stock(value: Any) -> int:
    """Coerce a parsed stock reading to a non-negative int (0 if unusable)"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def classify(previous: Optional[int], current: int) -> Transition:
    if previous is None:
        # First sighting never notifies
        return Transition(TransitionType.NONE, previous, current)
    if previous == 0 and current > 0:
        return Transition(TransitionType.RESTOCKED, previous, current)
    if previous > 0 and current == 0:
        return Transition(TransitionType.SOLD_OUT, previous, current)
    if previous != current and previous > 0 and current > 0:
        return Transition(TransitionType.IN_STOCK_CHANGED, previous, current)
    return Transition(TransitionType.NONE, previous, current)


class ItemTracker:
    """Per-item stock cache plus the once-per-in-stock-run notification flag"""

    def __init__(self, items: Optional[Dict[ItemKey, ItemState]] = None):
        self.items: Dict[ItemKey, ItemState] = items if items is not None else {}

    def state_for(self, key: ItemKey) -> ItemState:
        state = self.items.get(key)
        if state is None:
            state = self.items[key] = ItemState()
        return state

    def observe(self, key: ItemKey, stock: Any) -> Transition:
        """Compare against the cached value, then overwrite it unconditionally"""
        current = normalize_stock(stock)
        state = self.state_for(key)
        transition = classify(state.last_stock, current)
        state.last_stock = current
        if transition.fired:
            logger.debug(f"🔁 {key}: {transition.type.value} {transition.previous} -> {transition.current}")
        return transition

    def last_stock(self, key: ItemKey) -> Optional[int]:
        state = self.items.get(key)
        return state.last_stock if state else None

    def restock_notified(self, key: ItemKey) -> bool:
        state = self.items.get(key)
        return bool(state and state.in_stock_notified)

    def mark_restock_notified(self, key: ItemKey) -> None:
        self.state_for(key).in_stock_notified = True

    def clear_restock_notified(self, key: ItemKey) -> None:
        self.state_for(key).in_stock_notified = False
