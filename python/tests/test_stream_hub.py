"""Tests for the in-process stream wakeup hub.

Tests cover:
- notify() wakes every holder of the current event
- Entries are released by their last holder
- A release after notify() does not touch the replacement entry
"""

import asyncio

import pytest

from polychat.services.stream_hub import StreamHub

pytestmark = pytest.mark.asyncio


class TestStreamHub:
    async def test_notify_wakes_all_holders(self):
        hub = StreamHub()
        first = hub.subscribe("s1")
        second = hub.subscribe("s1")

        hub.notify("s1")

        assert first is second
        assert first.is_set()

    async def test_last_holder_releases_entry(self):
        hub = StreamHub()
        first = hub.subscribe("s1")
        second = hub.subscribe("s1")

        hub.unsubscribe("s1", first)
        assert hub.subscribed_streams() == {"s1"}

        hub.unsubscribe("s1", second)
        assert hub.subscribed_streams() == set()

    async def test_repeated_notify_cycles_do_not_accumulate(self):
        hub = StreamHub()

        for _ in range(100):
            event = hub.subscribe("s1")
            hub.notify("s1")
            hub.unsubscribe("s1", event)

        assert hub.subscribed_streams() == set()

    async def test_stale_release_keeps_newer_entry(self):
        hub = StreamHub()
        stale = hub.subscribe("s1")
        hub.notify("s1")
        current = hub.subscribe("s1")

        hub.unsubscribe("s1", stale)

        assert hub.subscribed_streams() == {"s1"}
        hub.notify("s1")
        assert current.is_set()

    async def test_wait_returns_after_timeout(self):
        hub = StreamHub()
        event = hub.subscribe("s1")

        await asyncio.wait_for(hub.wait(event, 0.01), timeout=1)

        assert not event.is_set()
