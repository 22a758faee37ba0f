"""
Notification content and rendering.
Content is built as plain dataclasses and rendered to Telegram HTML separately
from any transport call.
"""

import html
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from config import BOT_MESSAGES, CALLBACK_SUMMARY_NEW, CALLBACK_SUMMARY_REFRESH

LINE = "━━━━━━━━━━━━━━━━━━━━"


def local_now_str(offset_hours: int = 8, now: Optional[datetime] = None) -> str:
    tz = timezone(timedelta(hours=offset_hours))
    moment = now.astimezone(tz) if now else datetime.now(tz)
    return moment.strftime('%Y-%m-%d %H:%M:%S')


def esc(value) -> str:
    return html.escape(str(value), quote=True)


def alink(url: str, text: str) -> str:
    return f'<a href="{esc(url)}">{text}</a>'


@dataclass(frozen=True)
class RestockNotice:
    brand: str
    title: str
    url: str
    previous: Optional[int]
    current: int
    timestamp: str


@dataclass(frozen=True)
class SoldOutNotice:
    brand: str
    title: str
    url: str
    previous: Optional[int]
    current: int
    timestamp: str


@dataclass
class TargetSnapshot:
    """One target's items, or the error that prevented reading them"""
    url: str
    items: List = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SummaryView:
    groups: Dict[str, List[TargetSnapshot]]
    has_any_stock: bool
    timestamp: str
    refresh_seconds: int = 120


@dataclass
class RenderedMessage:
    text: str
    keyboard: Optional[InlineKeyboardMarkup] = None
    notify: Optional[bool] = None  # None leaves the chat default


Content = Union[RestockNotice, SoldOutNotice, SummaryView]


def title_banner(title: str) -> str:
    return f"{BOT_MESSAGES['banner'].format(title=title)}\n{LINE}"


def kv(key: str, value: str) -> str:
    return f"• <b>{key}：</b>{value}"


def summary_button_row() -> List[InlineKeyboardButton]:
    return [InlineKeyboardButton(BOT_MESSAGES['button_view_summary'], callback_data=CALLBACK_SUMMARY_NEW)]


def in_stock_keyboard(url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(BOT_MESSAGES['button_buy_now'], url=url)],
        summary_button_row()
    ])


def out_of_stock_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([summary_button_row()])


def summary_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(BOT_MESSAGES['button_refresh'], callback_data=CALLBACK_SUMMARY_REFRESH)]
    ])


def _stock_change_text(heading: str, status: str, notice) -> str:
    previous = '-' if notice.previous is None else notice.previous
    return "\n".join([
        title_banner(heading),
        kv(BOT_MESSAGES['brand'], esc(notice.brand)),
        kv(BOT_MESSAGES['product'], esc(notice.title)),
        status,
        BOT_MESSAGES['change'].format(previous=previous, current=notice.current),
        BOT_MESSAGES['time'].format(time=notice.timestamp),
    ])


def render_summary_text(view: SummaryView) -> str:
    minutes = max(1, round(view.refresh_seconds / 60))
    text = (
        f"{title_banner(BOT_MESSAGES['summary_title'])}\n"
        f"{BOT_MESSAGES['summary_refresh_hint'].format(minutes=minutes)}\n\n"
    )
    for brand in sorted(view.groups):
        text += f"🏪 <b>{esc(brand)}</b>\n"
        for snapshot in view.groups[brand]:
            if snapshot.error:
                text += f"  • ❗<i>{esc(snapshot.error)}</i>\n"
                continue
            for item in snapshot.items:
                dot = "🟢" if item.stock > 0 else "⚪"
                text += (
                    f"  {dot} <b>{esc(item.title)}</b>：<code>{item.stock}</code>　"
                    f"{alink(snapshot.url, BOT_MESSAGES['buy'])}\n"
                )
        text += "\n"
    text += BOT_MESSAGES['summary_updated'].format(time=view.timestamp)
    return text


def render(content: Content) -> RenderedMessage:
    """Render a content variant to message text plus inline keyboard"""
    if isinstance(content, RestockNotice):
        status = BOT_MESSAGES['restock_status'].format(stock=content.current)
        return RenderedMessage(
            text=_stock_change_text(BOT_MESSAGES['restock_title'], status, content),
            keyboard=in_stock_keyboard(content.url),
            notify=True
        )
    if isinstance(content, SoldOutNotice):
        return RenderedMessage(
            text=_stock_change_text(BOT_MESSAGES['soldout_title'], BOT_MESSAGES['soldout_status'], content),
            keyboard=out_of_stock_keyboard(),
            notify=True
        )
    if isinstance(content, SummaryView):
        return RenderedMessage(text=render_summary_text(content), keyboard=summary_keyboard())
    raise TypeError(f"Unknown notification content: {type(content).__name__}")
