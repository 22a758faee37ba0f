"""
Bot Configuration - ZJMF Stock Monitor
Configuration management for Telegram bot deployment on Render
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
env_path = Path('.') / '.env'
if env_path.exists():
    load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class Target:
    """A product page to monitor"""
    url: str
    title_regex: Optional[str] = None


def parse_chat_ids(raw: str) -> List[str]:
    """Accept a JSON array or a comma separated list of chat ids"""
    raw = (raw or '').strip()
    if not raw:
        return []
    if raw.startswith('['):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"CHAT_IDS is not valid JSON: {e}")
        if not isinstance(data, list):
            raise ValueError("CHAT_IDS must be a JSON array or a comma separated string")
        return [str(x).strip() for x in data if str(x).strip()]
    return [part.strip() for part in raw.split(',') if part.strip()]


def parse_targets(raw: str) -> List[Target]:
    """Parse TARGETS_JSON, e.g. [{"url": "...", "titleRegex": "..."}]"""
    raw = (raw or '').strip()
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"TARGETS_JSON is not valid JSON: {e}")
    if not isinstance(data, list):
        raise ValueError("TARGETS_JSON must be a JSON array")

    targets = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get('url'):
            raise ValueError("TARGETS_JSON contains an entry without url")
        targets.append(Target(
            url=str(entry['url']),
            title_regex=entry.get('titleRegex') or entry.get('title_regex') or None
        ))
    return targets


@dataclass
class BotConfig:
    """Main bot configuration"""
    # Telegram Bot Settings
    TELEGRAM_TOKEN: str = field(default_factory=lambda: os.getenv('TELEGRAM_TOKEN') or os.getenv('BOT_TOKEN', ''))
    CHAT_IDS: List[str] = field(default_factory=lambda: parse_chat_ids(os.getenv('CHAT_IDS', '')))
    PORT: int = field(default_factory=lambda: _env_int('PORT', 0))  # 0 = worker mode, no keepalive server

    # Monitored pages
    TARGETS: List[Target] = field(default_factory=lambda: parse_targets(os.getenv('TARGETS_JSON', '')))

    # Scraping Settings
    SCRAPER_TIMEOUT: int = field(default_factory=lambda: _env_int('SCRAPER_TIMEOUT', 30))
    MAX_CONCURRENT_REQUESTS: int = field(default_factory=lambda: _env_int('MAX_CONCURRENT_REQUESTS', 10))
    USER_AGENT: str = field(default_factory=lambda: os.getenv('USER_AGENT', 'Mozilla/5.0'))

    # Scheduling Configuration
    INTERVAL_MS: int = field(default_factory=lambda: _env_int('INTERVAL_MS', 5000))
    DELETE_AFTER_SOLDOUT_SEC: int = field(default_factory=lambda: _env_int('DELETE_AFTER_SOLDOUT_SEC', 120))
    RESTOCK_IDLE_DELETE_SEC: int = field(default_factory=lambda: _env_int('RESTOCK_IDLE_DELETE_SEC', 300))
    SUMMARY_REFRESH_SEC: int = field(default_factory=lambda: _env_int('SUMMARY_REFRESH_SEC', 120))
    SUMMARY_DELETE_IF_ALL_ZERO_SEC: int = field(default_factory=lambda: _env_int('SUMMARY_DELETE_IF_ALL_ZERO_SEC', 600))

    # Display
    TZ_OFFSET_HOURS: int = field(default_factory=lambda: _env_int('TZ_OFFSET_HOURS', 8))  # Asia/Shanghai

    # Environment
    ENVIRONMENT: str = field(default_factory=lambda: os.getenv('ENVIRONMENT', 'development'))
    DEBUG: bool = field(default_factory=lambda: os.getenv('DEBUG', 'False').lower() == 'true')

    # Logging
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv('LOG_LEVEL', 'INFO'))
    LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.TELEGRAM_TOKEN:
            raise ValueError("TELEGRAM_TOKEN is required")
        if not self.CHAT_IDS:
            raise ValueError("CHAT_IDS is required (at least one private or group chat id)")
        if not self.TARGETS:
            raise ValueError("TARGETS_JSON is required and must not be empty")
        if self.INTERVAL_MS <= 0:
            raise ValueError("INTERVAL_MS must be positive")

    @property
    def check_interval_seconds(self) -> float:
        return self.INTERVAL_MS / 1000.0


# Inline keyboard callback payloads
CALLBACK_SUMMARY_NEW = 'SUMMARY_NEW'
CALLBACK_SUMMARY_REFRESH = 'SUMMARY_REFRESH'

# Bot messages and interface
BOT_MESSAGES: Dict[str, str] = {
    'banner': '🧩 <b>ZJMF 监控</b> ｜ <b>{title}</b>',
    'restock_title': '库存变动提醒',
    'soldout_title': '缺货提醒',
    'summary_title': '实时库存汇总',
    'summary_refresh_hint': '⏱ 每 {minutes} 分钟自动刷新',
    'brand': '商家',
    'product': '商品',
    'restock_status': '🟢 <b>状态：</b>补货　　📦 <b>库存：</b>{stock}',
    'soldout_status': '🔴 <b>状态：</b>缺货　　📦 <b>库存：</b>0',
    'change': '↕️ <b>变化：</b>{previous} ➜ {current}',
    'time': '🕒 <b>时间：</b>{time}',
    'summary_updated': '🕒 <b>更新时间：</b>{time}',
    'buy': '购买',
    'button_buy_now': '🛒 立即购买',
    'button_view_summary': '📊 查看汇总',
    'button_refresh': '🔄 刷新库存',
    'answer_summary_new': '正在生成新汇总…',
    'answer_summary_refresh': '已刷新',
    'welcome': '🤖 ZJMF 库存监控已启动。\n\n补货、缺货时会自动提醒；点击下方按钮查看实时库存汇总。',
    'placeholder_title': '条目#{index}',
}

# Initialize configuration
config = BotConfig()

# Export for easy importing
__all__ = ['config', 'BotConfig', 'Target', 'BOT_MESSAGES', 'CALLBACK_SUMMARY_NEW', 'CALLBACK_SUMMARY_REFRESH']
