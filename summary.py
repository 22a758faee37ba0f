"""
Summary builder: aggregates current stock of every target, grouped by brand.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from config import Target
from formatting import SummaryView, TargetSnapshot, local_now_str
from scrapers import FetchError, brand_of

logger = logging.getLogger(__name__)


class SummaryBuilder:
    """Fetches all targets and produces a SummaryView; one failed target never aborts the rest"""

    def __init__(self, scraper, targets: Sequence[Target], refresh_seconds: int = 120,
                 tz_offset_hours: int = 8, now_text: Optional[Callable[[], str]] = None):
        self.scraper = scraper
        self.targets = list(targets)
        self.refresh_seconds = refresh_seconds
        self.now_text = now_text or (lambda: local_now_str(tz_offset_hours))

    async def build(self) -> SummaryView:
        groups: Dict[str, List[TargetSnapshot]] = {}
        has_any_stock = False

        results = await self.scraper.fetch_many(self.targets)
        for target, result in zip(self.targets, results):
            brand = brand_of(target.url)
            if isinstance(result, FetchError):
                snapshot = TargetSnapshot(url=target.url, error=str(result))
            else:
                snapshot = TargetSnapshot(url=target.url, items=list(result))
                if any(item.stock > 0 for item in result):
                    has_any_stock = True
            groups.setdefault(brand, []).append(snapshot)

        logger.debug(f"📊 Summary built: {len(self.targets)} targets, has_any_stock={has_any_stock}")
        return SummaryView(
            groups=groups,
            has_any_stock=has_any_stock,
            timestamp=self.now_text(),
            refresh_seconds=self.refresh_seconds
        )
