"""
Shared fixtures. The environment is seeded before any project module
(and therefore config) is imported.
"""

import os

os.environ['TELEGRAM_TOKEN'] = 'test_token'
os.environ['CHAT_IDS'] = '1001,1002'
os.environ['TARGETS_JSON'] = (
    '[{"url": "https://idc.example.com/cart?fid=1", "titleRegex": "<h3>(.*?)</h3>"},'
    ' {"url": "https://shop.other.net/store"}]'
)
os.environ['ENVIRONMENT'] = 'testing'

import pytest
from unittest.mock import AsyncMock, Mock

from deferred import DeferredDeleteScheduler
from formatting import SummaryView, TargetSnapshot
from scrapers import StockItem


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeNotifier:
    """Records every transport call in order; message ids are sequential"""

    def __init__(self):
        self.calls = []
        self.next_id = 100
        self.fail_send = False
        self.fail_edit = False
        self.fail_delete = False

    async def send(self, chat_id, message):
        self.calls.append(('send', chat_id, message))
        if self.fail_send:
            return None
        self.next_id += 1
        return self.next_id

    async def edit(self, chat_id, message_id, message):
        self.calls.append(('edit', chat_id, message_id, message))
        return not self.fail_edit

    async def delete(self, chat_id, message_id):
        self.calls.append(('delete', chat_id, message_id))
        return not self.fail_delete

    def of(self, kind):
        return [c for c in self.calls if c[0] == kind]


def make_view(stocks, timestamp='2025-01-01 00:00:00'):
    """SummaryView with one brand and one item per stock value"""
    items = [StockItem(title=f'Plan {i}', stock=s) for i, s in enumerate(stocks)]
    return SummaryView(
        groups={'EXAMPLE': [TargetSnapshot(url='https://idc.example.com/cart', items=items)]},
        has_any_stock=any(s > 0 for s in stocks),
        timestamp=timestamp
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def deletions(clock):
    return DeferredDeleteScheduler(clock=clock)


@pytest.fixture
def summary_builder():
    builder = Mock()
    builder.build = AsyncMock(return_value=make_view([0, 0]))
    return builder
