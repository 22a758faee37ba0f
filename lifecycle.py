"""
Notification lifecycle manager.

Owns the active restock / summary message maps and every deferred deletion.
Rules:
  - sold out: delete the active restock message first, then send a sold-out
    message that is deleted after a fixed grace period
  - restocked: one restock message per in-stock run, auto-deleted after an
    idle window unless the stock keeps changing
  - in-stock change: edit the restock message in place (resend on failure)
    and restart the idle window
  - summary: one per chat, refreshed in place; scheduled for deletion only
    while every item reads zero
"""

import logging
from typing import Iterable, List, Optional

from deferred import DeferredDeleteScheduler
from formatting import RestockNotice, SoldOutNotice, SummaryView, local_now_str, render
from scrapers import brand_of
from state import ChatId, DeleteKind, ItemKey, MessageId, MonitorState
from tracker import ItemTracker, Transition, TransitionType

logger = logging.getLogger(__name__)


class NotificationLifecycleManager:
    """Applies stock transitions and summary requests to Telegram messages"""

    def __init__(self, notifier, summary_builder, tracker: ItemTracker,
                 deletions: DeferredDeleteScheduler, chat_ids: Iterable[ChatId],
                 soldout_grace_seconds: float = 120,
                 restock_idle_seconds: float = 300,
                 summary_refresh_seconds: float = 120,
                 summary_zero_grace_seconds: float = 600,
                 tz_offset_hours: int = 8,
                 state: Optional[MonitorState] = None):
        self.notifier = notifier
        self.summary_builder = summary_builder
        self.tracker = tracker
        self.deletions = deletions
        self.chat_ids: List[ChatId] = [str(c) for c in chat_ids]
        self.soldout_grace_seconds = soldout_grace_seconds
        self.restock_idle_seconds = restock_idle_seconds
        self.summary_refresh_seconds = summary_refresh_seconds
        self.summary_zero_grace_seconds = summary_zero_grace_seconds
        self.tz_offset_hours = tz_offset_hours
        self.state = state if state is not None else MonitorState()

    @property
    def clock(self):
        return self.deletions.clock

    # Stock transitions

    async def apply_transition(self, url: str, title: str, key: ItemKey, transition: Transition):
        """Dispatch one classified observation to every configured chat"""
        if transition.type is TransitionType.NONE:
            return

        brand = brand_of(url)
        timestamp = local_now_str(self.tz_offset_hours)

        if transition.type is TransitionType.SOLD_OUT:
            notice = SoldOutNotice(brand, title, url, transition.previous, transition.current, timestamp)
            for chat_id in self.chat_ids:
                await self.on_sold_out(chat_id, key, notice)
            # Unlock the next in-stock run
            self.tracker.clear_restock_notified(key)
            logger.info(f"🔴 Sold out: {title} ({brand})")

        elif transition.type is TransitionType.RESTOCKED:
            notice = RestockNotice(brand, title, url, transition.previous, transition.current, timestamp)
            for chat_id in self.chat_ids:
                await self.on_restocked(chat_id, key, notice)
            # Set once per call, after every chat was processed
            self.tracker.mark_restock_notified(key)
            logger.info(f"🟢 Restocked: {title} ({brand}) stock={transition.current}")

        elif transition.type is TransitionType.IN_STOCK_CHANGED:
            notice = RestockNotice(brand, title, url, transition.previous, transition.current, timestamp)
            for chat_id in self.chat_ids:
                await self.on_in_stock_changed(chat_id, key, notice)
            logger.info(f"↕️ Stock changed: {title} ({brand}) {transition.previous} -> {transition.current}")

    async def on_sold_out(self, chat_id: ChatId, key: ItemKey, notice: SoldOutNotice):
        old_mid = self.state.restock_messages.pop((chat_id, key), None)
        if old_mid is not None:
            self._cancel_restock_idle(chat_id, key)
            await self.notifier.delete(chat_id, old_mid)

        mid = await self.notifier.send(chat_id, render(notice))
        if mid is not None:
            self.deletions.schedule(chat_id, mid, self.soldout_grace_seconds, DeleteKind.SOLD_OUT)

    async def on_restocked(self, chat_id: ChatId, key: ItemKey, notice: RestockNotice):
        if self.tracker.restock_notified(key):
            return
        mid = await self.notifier.send(chat_id, render(notice))
        if mid is not None:
            self.state.restock_messages[(chat_id, key)] = mid
            self._arm_restock_idle(chat_id, key, mid)

    async def on_in_stock_changed(self, chat_id: ChatId, key: ItemKey, notice: RestockNotice):
        mid = self.state.restock_message(chat_id, key)
        if mid is None:
            return

        message = render(notice)
        if not await self.notifier.edit(chat_id, mid, message):
            new_mid = await self.notifier.send(chat_id, message)
            if new_mid is not None:
                self.state.restock_messages[(chat_id, key)] = new_mid
                await self.notifier.delete(chat_id, mid)

        current = self.state.restock_message(chat_id, key)
        if current is not None:
            self._arm_restock_idle(chat_id, key, current)

    def _cancel_restock_idle(self, chat_id: ChatId, key: ItemKey) -> int:
        return self.deletions.cancel(
            lambda e: e.kind is DeleteKind.RESTOCK_IDLE and e.chat_id == chat_id and e.key == key
        )

    def _arm_restock_idle(self, chat_id: ChatId, key: ItemKey, mid: MessageId):
        """Renew: the full idle window restarts on every change"""
        self._cancel_restock_idle(chat_id, key)
        self.deletions.schedule(chat_id, mid, self.restock_idle_seconds, DeleteKind.RESTOCK_IDLE, key)

    # Summary

    async def new_summary(self, chat_id: ChatId) -> Optional[MessageId]:
        """User asked for a fresh summary: replace whatever is shown"""
        old_mid = self.state.summary_messages.pop(chat_id, None)
        if old_mid is not None:
            self.state.summary_refreshed_at.pop(chat_id, None)
            self.deletions.cancel(lambda e: e.kind is DeleteKind.SUMMARY and e.chat_id == chat_id)
            await self.notifier.delete(chat_id, old_mid)

        view = await self.summary_builder.build()
        mid = await self.notifier.send(chat_id, render(view))
        if mid is None:
            return None
        self.state.summary_messages[chat_id] = mid
        self.state.summary_refreshed_at[chat_id] = self.clock()
        self.apply_summary_delete_policy(chat_id, mid, view.has_any_stock)
        return mid

    async def refresh_summary(self, chat_id: ChatId, view: Optional[SummaryView] = None) -> Optional[MessageId]:
        """Edit the chat's summary in place, falling back to a new message"""
        if view is None:
            view = await self.summary_builder.build()
        message = render(view)

        mid = self.state.summary_messages.get(chat_id)
        if mid is None or not await self.notifier.edit(chat_id, mid, message):
            new_mid = await self.notifier.send(chat_id, message)
            if new_mid is None:
                return None
            if mid is not None:
                await self.notifier.delete(chat_id, mid)
            self.state.summary_messages[chat_id] = new_mid
            mid = new_mid

        self.state.summary_refreshed_at[chat_id] = self.clock()
        self.apply_summary_delete_policy(chat_id, mid, view.has_any_stock)
        return mid

    async def auto_refresh_summaries(self, now: Optional[float] = None) -> List[ChatId]:
        """Refresh every active summary whose refresh interval has elapsed"""
        if now is None:
            now = self.clock()
        due = [
            chat_id for chat_id in list(self.state.summary_messages)
            if now - self.state.summary_refreshed_at.get(chat_id, 0.0) >= self.summary_refresh_seconds
        ]
        if not due:
            return []

        view = await self.summary_builder.build()
        for chat_id in due:
            await self.refresh_summary(chat_id, view)
        return due

    def apply_summary_delete_policy(self, chat_id: ChatId, mid: MessageId, has_any_stock: bool):
        """Any stock cancels the countdown; all zero (re)arms it"""
        self.deletions.cancel(lambda e: e.kind is DeleteKind.SUMMARY and e.chat_id == chat_id)
        if not has_any_stock:
            self.deletions.schedule(chat_id, mid, self.summary_zero_grace_seconds, DeleteKind.SUMMARY)

    # Deferred deletions

    async def run_pending_deletes(self, now: Optional[float] = None):
        fired = await self.deletions.sweep(self.notifier, now)
        for entry in fired:
            self.state.forget_message(entry.chat_id, entry.message_id)
        if fired:
            logger.info(f"🧹 Deleted {len(fired)} expired messages")
        return fired
