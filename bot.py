"""
ZJMF Stock Monitor Telegram Bot - Main Bot Logic
Using python-telegram-bot with an APScheduler stock check loop
"""

import asyncio
import logging
from typing import Any, Dict, Optional

# Telegram Bot API
from telegram import Bot, Update, InlineKeyboardMarkup
from telegram.ext import Application, CommandHandler, CallbackQueryHandler, ContextTypes
from telegram.constants import ParseMode
from telegram.error import TelegramError, NetworkError

# Async Task Scheduling
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

# Local imports
from config import config, BotConfig, BOT_MESSAGES, CALLBACK_SUMMARY_NEW, CALLBACK_SUMMARY_REFRESH
from deferred import DeferredDeleteScheduler
from formatting import summary_button_row
from lifecycle import NotificationLifecycleManager
from notifier import TelegramNotifier
from scrapers import FetchError, StockScraper
from summary import SummaryBuilder
from tracker import ItemTracker, make_item_key

logger = logging.getLogger(__name__)


class StockMonitorBot:
    """Main bot class: drives the stock check cycle and handles summary buttons"""

    def __init__(self, settings: Optional[BotConfig] = None, scraper: Optional[StockScraper] = None):
        self.settings = settings or config
        self.scraper = scraper or StockScraper(self.settings)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.bot: Optional[Bot] = None
        self.notifier: Optional[TelegramNotifier] = None
        self.lifecycle: Optional[NotificationLifecycleManager] = None

        self.tracker = ItemTracker()
        self.deletions = DeferredDeleteScheduler()
        self.summary_builder = SummaryBuilder(
            self.scraper,
            self.settings.TARGETS,
            refresh_seconds=self.settings.SUMMARY_REFRESH_SEC,
            tz_offset_hours=self.settings.TZ_OFFSET_HOURS
        )

        # Serializes the check cycle and inbound events over the shared state
        self._lock = asyncio.Lock()
        self.cycle_count = 0

    def attach_notifier(self, notifier) -> NotificationLifecycleManager:
        self.notifier = notifier
        self.lifecycle = NotificationLifecycleManager(
            notifier,
            self.summary_builder,
            self.tracker,
            self.deletions,
            self.settings.CHAT_IDS,
            soldout_grace_seconds=self.settings.DELETE_AFTER_SOLDOUT_SEC,
            restock_idle_seconds=self.settings.RESTOCK_IDLE_DELETE_SEC,
            summary_refresh_seconds=self.settings.SUMMARY_REFRESH_SEC,
            summary_zero_grace_seconds=self.settings.SUMMARY_DELETE_IF_ALL_ZERO_SEC,
            tz_offset_hours=self.settings.TZ_OFFSET_HOURS
        )
        return self.lifecycle

    async def start_scheduler(self):
        """Start the background scheduler for stock checks"""
        try:
            jobstores = {'default': MemoryJobStore()}
            executors = {'default': AsyncIOExecutor()}
            job_defaults = {
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 30
            }

            self.scheduler = AsyncIOScheduler(
                jobstores=jobstores,
                executors=executors,
                job_defaults=job_defaults
            )

            self.scheduler.add_job(
                self.check_all,
                'interval',
                seconds=self.settings.check_interval_seconds,
                id='stock_checker',
                replace_existing=True
            )

            self.scheduler.start()
            logger.info(f"⏰ Scheduler started (every {self.settings.check_interval_seconds:g}s)")

        except Exception as e:
            logger.error(f"❌ Failed to start scheduler: {e}")
            raise

    async def stop_scheduler(self):
        """Stop new ticks, then wait for any in-flight cycle or event to finish"""
        if self.scheduler:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            logger.info("⏰ Scheduler stopped")
        async with self._lock:
            pass

    def setup_handlers(self, application: Application):
        """Setup all bot command and callback handlers"""
        self.bot = application.bot
        if self.notifier is None:
            self.attach_notifier(TelegramNotifier(application.bot))

        # Command handlers
        application.add_handler(CommandHandler("start", self.start_command))
        application.add_handler(CommandHandler("summary", self.summary_command))
        application.add_handler(CommandHandler("status", self.status_command))

        # Callback query handlers
        application.add_handler(CallbackQueryHandler(self.handle_summary_new, pattern=rf"^{CALLBACK_SUMMARY_NEW}$"))
        application.add_handler(CallbackQueryHandler(self.handle_summary_refresh, pattern=rf"^{CALLBACK_SUMMARY_REFRESH}$"))

        # Error handler
        application.add_error_handler(self.error_handler)

        logger.info("🎛️ Bot handlers configured successfully")

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start command"""
        await update.effective_message.reply_text(
            BOT_MESSAGES['welcome'],
            reply_markup=InlineKeyboardMarkup([summary_button_row()])
        )

    async def summary_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /summary command (same as the view summary button)"""
        chat_id = str(update.effective_chat.id)
        async with self._lock:
            await self.lifecycle.new_summary(chat_id)

    async def status_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Show tracker statistics"""
        stats = await self.get_stats()
        message = (
            f"📊 <b>监控状态</b>\n\n"
            f"🎯 监控页面：{stats['targets']}\n"
            f"📦 已跟踪条目：{stats['items']['tracked']}（有货 {stats['items']['in_stock']}）\n"
            f"🔔 在售提醒：{stats['messages']['restock']}\n"
            f"📋 汇总消息：{stats['messages']['summary']}\n"
            f"🗑 待删除：{stats['pending_deletes']}\n"
            f"⏰ 下次检查：{stats['next_check']}"
        )
        await update.effective_message.reply_text(message, parse_mode=ParseMode.HTML)

    async def handle_summary_new(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        await self._answer(query, BOT_MESSAGES['answer_summary_new'])
        chat_id = str(query.message.chat.id)
        async with self._lock:
            await self.lifecycle.new_summary(chat_id)

    async def handle_summary_refresh(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        await self._answer(query, BOT_MESSAGES['answer_summary_refresh'])
        chat_id = str(query.message.chat.id)
        async with self._lock:
            await self.lifecycle.refresh_summary(chat_id)

    async def _answer(self, query, text: str):
        try:
            await query.answer(text)
        except TelegramError as e:
            logger.debug(f"Callback answer failed: {e}")

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        """Handle errors"""
        if isinstance(context.error, NetworkError):
            logger.warning(f"Transient Telegram network error: {context.error}")
            return
        logger.error("❌ Telegram handler error", exc_info=context.error)

    # Stock checking logic
    async def check_all(self):
        """One stock check cycle: fetch, classify, notify, refresh summaries, sweep deletions"""
        if self.lifecycle is None:
            logger.warning("⚠️ Notifier not attached; skipping stock check")
            return

        async with self._lock:
            try:
                targets = self.settings.TARGETS
                results = await self.scraper.fetch_many(targets)

                observed = 0
                for target, result in zip(targets, results):
                    if isinstance(result, FetchError):
                        # No observation this cycle; last good value is kept
                        continue
                    for item in result:
                        key = make_item_key(target.url, item.title)
                        transition = self.tracker.observe(key, item.stock)
                        observed += 1
                        await self.lifecycle.apply_transition(target.url, item.title, key, transition)

                await self.lifecycle.auto_refresh_summaries()
                self.cycle_count += 1
                logger.debug(f"🔍 Cycle {self.cycle_count}: {observed} items observed")

            except Exception as e:
                logger.error(f"❌ Error in stock check cycle: {e}", exc_info=True)
            finally:
                try:
                    await self.lifecycle.run_pending_deletes()
                except Exception as e:
                    logger.error(f"❌ Error sweeping deferred deletions: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        """Get tracker statistics"""
        next_check = "不可用"
        if self.scheduler:
            job = self.scheduler.get_job('stock_checker')
            if job and job.next_run_time:
                next_check = job.next_run_time.strftime('%H:%M:%S')

        items = self.tracker.items.values()
        state = self.lifecycle.state if self.lifecycle else None
        return {
            'targets': len(self.settings.TARGETS),
            'chats': len(self.settings.CHAT_IDS),
            'cycles': self.cycle_count,
            'items': {
                'tracked': len(self.tracker.items),
                'in_stock': sum(1 for s in items if s.last_stock)
            },
            'messages': {
                'restock': len(state.restock_messages) if state else 0,
                'summary': len(state.summary_messages) if state else 0
            },
            'pending_deletes': len(self.deletions),
            'next_check': next_check
        }
