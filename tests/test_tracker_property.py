"""
Property-based tests for stock transition classification and the
restock message lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

from hypothesis import given, settings, strategies as st

from deferred import DeferredDeleteScheduler
from lifecycle import NotificationLifecycleManager
from state import DeleteKind
from tracker import ItemTracker, TransitionType, classify, normalize_stock

from conftest import FakeClock, FakeNotifier, make_view

URL = 'https://idc.example.com/cart?fid=1'
CHATS = ['1001', '1002']

stock_strategy = st.integers(min_value=0, max_value=5)
title_strategy = st.sampled_from(['Plan A', 'Plan B'])

# One step: an observation, a clock advance, or a flip of transport failure flags
step_strategy = st.one_of(
    st.tuples(st.just('observe'), title_strategy, stock_strategy),
    st.tuples(st.just('advance'), st.integers(min_value=1, max_value=400)),
    st.tuples(st.just('fail'), st.booleans(), st.booleans(), st.booleans()),
)


def expected_type(previous, current):
    if previous is None:
        return TransitionType.NONE
    if previous == 0 and current > 0:
        return TransitionType.RESTOCKED
    if previous > 0 and current == 0:
        return TransitionType.SOLD_OUT
    if previous != current:
        return TransitionType.IN_STOCK_CHANGED
    return TransitionType.NONE


@settings(max_examples=200)
@given(stocks=st.lists(stock_strategy, min_size=1, max_size=30))
def test_observe_matches_classification(stocks):
    """Each reading is classified against the previous one and then cached"""
    tracker = ItemTracker()
    previous = None
    for stock in stocks:
        transition = tracker.observe('k', stock)
        assert transition.type is expected_type(previous, stock)
        assert transition.previous == previous
        assert tracker.last_stock('k') == stock
        previous = stock


@given(previous=st.none() | stock_strategy, current=stock_strategy)
def test_classify_fires_only_on_changes(previous, current):
    transition = classify(previous, current)
    if previous is None or previous == current:
        assert not transition.fired


@given(value=st.one_of(
    st.integers(min_value=-1000, max_value=1000),
    st.floats(allow_nan=True, allow_infinity=True),
    st.text(max_size=5),
    st.none(),
))
def test_normalize_stock_is_non_negative_int(value):
    result = normalize_stock(value)
    assert isinstance(result, int)
    assert result >= 0


async def run_steps(steps):
    clock = FakeClock()
    notifier = FakeNotifier()
    deletions = DeferredDeleteScheduler(clock=clock)
    tracker = ItemTracker()
    summary_builder = Mock()
    summary_builder.build = AsyncMock(return_value=make_view([0]))
    manager = NotificationLifecycleManager(notifier, summary_builder, tracker, deletions, CHATS)

    for step in steps:
        if step[0] == 'observe':
            _, title, stock = step
            key = f'{URL}#{title}'
            transition = tracker.observe(key, stock)
            await manager.apply_transition(URL, title, key, transition)

            if transition.type is TransitionType.SOLD_OUT:
                for chat_id in CHATS:
                    assert manager.state.restock_message(chat_id, key) is None
                    assert deletions.pending(kind=DeleteKind.RESTOCK_IDLE, chat_id=chat_id, key=key) == []
        elif step[0] == 'advance':
            clock.advance(step[1])
            await manager.run_pending_deletes()
        else:
            _, notifier.fail_send, notifier.fail_edit, notifier.fail_delete = step

        for (chat_id, key), mid in manager.state.restock_messages.items():
            idle = deletions.pending(kind=DeleteKind.RESTOCK_IDLE, chat_id=chat_id, key=key)
            assert len(idle) == 1
            assert idle[0].message_id == mid

        pairs = [(e.chat_id, e.key) for e in deletions.pending(kind=DeleteKind.RESTOCK_IDLE)]
        assert len(pairs) == len(set(pairs))


@settings(max_examples=150, deadline=None)
@given(steps=st.lists(step_strategy, max_size=40))
def test_restock_idle_timer_unique_per_message(steps):
    """Every active restock message has exactly one idle timer, and sold-out leaves none"""
    asyncio.run(run_steps(steps))
