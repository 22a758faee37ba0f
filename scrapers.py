"""
Stock Scrapers for ZJMF-style shop pages
HTTP fetching with aiohttp, stock/title extraction with regex and BeautifulSoup
"""

import asyncio
import logging
import re
from typing import List, Optional, Sequence, Union
from dataclasses import dataclass
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from config import config, BotConfig, Target, BOT_MESSAGES
from tracker import normalize_stock

logger = logging.getLogger(__name__)

STOCK_PATTERN = re.compile(r'库存\s*[:：]\s*(\d+)', re.IGNORECASE)
COMMON_HOST_PREFIXES = {'www', 'idc', 'shop', 'app', 'api', 'cart', 'store'}
TITLE_CLASS_PATTERN = re.compile(r'card-title|product-title|plan-name', re.IGNORECASE)

# Context windows around a stock match used for title lookup
LOCAL_BEFORE = 2000
LOCAL_AFTER = 400
FALLBACK_BEFORE = 1000


class FetchError(Exception):
    """Target page unreachable or returned a non-success status"""


@dataclass
class StockItem:
    """One stock reading extracted from a page"""
    title: str
    stock: int


def hostname(url: str) -> str:
    try:
        return urlparse(url).hostname or url
    except ValueError:
        return url


def brand_of(url: str) -> str:
    """Brand-like label from the host, e.g. https://idc.example.com -> EXAMPLE"""
    host = hostname(url)
    parts = [p for p in host.split('.') if p]
    if len(parts) >= 2 and parts[0] in COMMON_HOST_PREFIXES:
        pick = parts[-2]
    else:
        pick = parts[0] if parts else ''
    return (pick or host).upper()


def _compile_title_regex(title_regex: Optional[str]) -> Optional[re.Pattern]:
    if not title_regex:
        return None
    try:
        return re.compile(title_regex, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"⚠️ Ignoring invalid titleRegex {title_regex!r}: {e}")
        return None


def _match_text(match: re.Match) -> str:
    text = match.group(1) if match.re.groups and match.group(1) else match.group(0)
    return (text or '').strip()


def _nearest_text(texts: List[str], max_len: int) -> Optional[str]:
    for text in reversed(texts):
        if 2 <= len(text) <= max_len:
            return text
    return None


def _title_from_markup(fragment: str) -> Optional[str]:
    """Nearest heading, product-title div or data-title attribute in a fragment"""
    soup = BeautifulSoup(fragment, 'html.parser')

    headings = [h.get_text(' ', strip=True) for h in soup.find_all(['h1', 'h2', 'h3', 'h4', 'h5', 'h6'])]
    title = _nearest_text(headings, 80)
    if title:
        return title

    divs = [d.get_text(' ', strip=True) for d in soup.find_all('div', class_=TITLE_CLASS_PATTERN)]
    title = _nearest_text(divs, 120)
    if title:
        return title

    tagged = [str(t['data-title']).strip() for t in soup.find_all(attrs={'data-title': True})]
    return _nearest_text(tagged, 120)


def _local_title(title_re: re.Pattern, html: str, pos: int) -> str:
    """Group 1 of the titleRegex match closest before pos, else the first one after it"""
    if not title_re.groups:
        return ''
    start = max(0, pos - LOCAL_BEFORE)
    before = None
    after = None
    for match in title_re.finditer(html[start:pos + LOCAL_AFTER]):
        if not match.group(1):
            continue
        if start + match.start() < pos:
            before = match
        elif after is None:
            after = match
    chosen = before or after
    return chosen.group(1).strip() if chosen else ''


def parse_items(html: str, title_regex: Optional[str] = None) -> List[StockItem]:
    """Extract ordered (title, stock) pairs from a page body. Never raises."""
    items: List[StockItem] = []
    title_re = _compile_title_regex(title_regex)

    global_titles: List[str] = []
    if title_re:
        global_titles = [_match_text(m) for m in title_re.finditer(html)]

    for index, match in enumerate(STOCK_PATTERN.finditer(html)):
        stock = normalize_stock(match.group(1))
        pos = match.start()
        title = ''

        if title_re:
            title = _local_title(title_re, html, pos)

        if not title and index < len(global_titles):
            title = global_titles[index]

        if not title:
            title = _title_from_markup(html[max(0, pos - FALLBACK_BEFORE):pos]) or ''

        if not title:
            title = BOT_MESSAGES['placeholder_title'].format(index=index + 1)

        items.append(StockItem(title=title, stock=stock))

    return items


class StockScraper:
    """Fetches target pages over a shared aiohttp session"""

    def __init__(self, settings: Optional[BotConfig] = None):
        self.settings = settings or config
        self.session: Optional[aiohttp.ClientSession] = None

        self.headers = {
            'User-Agent': self.settings.USER_AGENT,
            'Accept-Language': 'zh-CN,zh;q=0.9',
        }

    async def __aenter__(self):
        await self.init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init_session(self):
        connector = aiohttp.TCPConnector(
            limit=self.settings.MAX_CONCURRENT_REQUESTS,
            limit_per_host=5,
            ttl_dns_cache=300,
            use_dns_cache=True,
        )
        timeout = aiohttp.ClientTimeout(total=self.settings.SCRAPER_TIMEOUT)
        self.session = aiohttp.ClientSession(
            headers=self.headers,
            connector=connector,
            timeout=timeout
        )
        logger.info("🔗 HTTP session initialized")

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, url: str) -> str:
        """Return the page body or raise FetchError. No retries: the next tick retries."""
        if not self.session:
            await self.init_session()
        try:
            async with self.session.get(url) as response:
                if response.status < 200 or response.status >= 300:
                    raise FetchError(f"HTTP {response.status}")
                return await response.text()
        except asyncio.TimeoutError:
            raise FetchError("HTTP Timeout")
        except aiohttp.ClientError as e:
            raise FetchError(str(e) or e.__class__.__name__)

    async def fetch_items(self, target: Target) -> List[StockItem]:
        html = await self.fetch(target.url)
        return parse_items(html, target.title_regex)

    async def fetch_many(self, targets: Sequence[Target]) -> List[Union[List[StockItem], FetchError]]:
        """Fetch and parse all targets concurrently, in bounded batches, preserving order"""
        results: List[Union[List[StockItem], FetchError]] = []
        batch_size = max(1, self.settings.MAX_CONCURRENT_REQUESTS)
        for i in range(0, len(targets), batch_size):
            batch = targets[i:i + batch_size]
            batch_results = await asyncio.gather(
                *[self.fetch_items(t) for t in batch],
                return_exceptions=True
            )
            for target, result in zip(batch, batch_results):
                if isinstance(result, FetchError):
                    logger.warning(f"⚠️ Fetch failed for {target.url}: {result}")
                    results.append(result)
                elif isinstance(result, Exception):
                    logger.error(f"❌ Unexpected scrape error for {target.url}: {result}")
                    results.append(FetchError(str(result) or result.__class__.__name__))
                else:
                    results.append(result)
        return results
