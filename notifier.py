"""
Telegram notifier: send / edit / delete primitives with fire-and-forget semantics.
Telegram errors are logged and turned into None / False results.
"""

import logging
from typing import Optional

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError

from formatting import RenderedMessage
from state import ChatId, MessageId

logger = logging.getLogger(__name__)

NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


class TelegramNotifier:
    """Outbound notification channel backed by a python-telegram-bot Bot"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, chat_id: ChatId, message: RenderedMessage) -> Optional[MessageId]:
        kwargs = {}
        if message.notify is not None:
            kwargs['disable_notification'] = not message.notify
        try:
            sent = await self.bot.send_message(
                chat_id=chat_id,
                text=message.text,
                parse_mode=ParseMode.HTML,
                link_preview_options=NO_PREVIEW,
                reply_markup=message.keyboard,
                **kwargs
            )
            return sent.message_id
        except Forbidden as e:
            logger.warning(f"🚫 Bot cannot post to chat {chat_id}: {e}")
        except TelegramError as e:
            logger.warning(f"⚠️ Send failed for chat {chat_id}: {e}")
        return None

    async def edit(self, chat_id: ChatId, message_id: MessageId, message: RenderedMessage) -> bool:
        try:
            await self.bot.edit_message_text(
                text=message.text,
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=ParseMode.HTML,
                link_preview_options=NO_PREVIEW,
                reply_markup=message.keyboard
            )
            return True
        except BadRequest as e:
            if 'message is not modified' in str(e).lower():
                return True
            logger.warning(f"⚠️ Edit failed for chat {chat_id} message {message_id}: {e}")
        except TelegramError as e:
            logger.warning(f"⚠️ Edit failed for chat {chat_id} message {message_id}: {e}")
        return False

    async def delete(self, chat_id: ChatId, message_id: MessageId) -> bool:
        try:
            return bool(await self.bot.delete_message(chat_id=chat_id, message_id=message_id))
        except TelegramError as e:
            logger.warning(f"⚠️ Delete failed for chat {chat_id} message {message_id}: {e}")
            return False
