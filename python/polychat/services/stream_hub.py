"""In-process wakeups for stream followers.

Followers tail the durable chunk log. To avoid busy polling, they wait on a
per-stream asyncio.Event that the producer sets after every durable append
and once more after sealing. The wait is bounded by the poll interval, so a
follower also converges when the producer lives in another process.

Ordering: a follower must call subscribe() BEFORE reading the log. Any
notify() after the read then sets the event the follower is holding, so no
wakeup is lost between read and wait. Every subscribe() is paired with an
unsubscribe(); the entry for a stream is dropped once its last holder
leaves, so streams nobody notifies again do not stay in the map.
"""

import asyncio
from dataclasses import dataclass, field


@dataclass
class _Slot:
    event: asyncio.Event = field(default_factory=asyncio.Event)
    holders: int = 0


class StreamHub:
    """Per-stream wakeup events. Single event loop only."""

    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    def subscribe(self, stream_id: str) -> asyncio.Event:
        """Return the event the next notify() for this stream will set."""
        slot = self._slots.get(stream_id)
        if slot is None:
            slot = _Slot()
            self._slots[stream_id] = slot
        slot.holders += 1
        return slot.event

    def unsubscribe(self, stream_id: str, event: asyncio.Event) -> None:
        """Release an event returned by subscribe()."""
        slot = self._slots.get(stream_id)
        # The slot was already replaced by a notify()
        if slot is None or slot.event is not event:
            return
        slot.holders -= 1
        if slot.holders <= 0:
            del self._slots[stream_id]

    def notify(self, stream_id: str) -> None:
        """Wake every follower currently subscribed to the stream."""
        slot = self._slots.pop(stream_id, None)
        if slot is not None:
            slot.event.set()

    def subscribed_streams(self) -> set[str]:
        return set(self._slots)

    async def wait(self, event: asyncio.Event, timeout_s: float) -> None:
        """Wait for `event` or until `timeout_s` elapses, whichever is first."""
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout_s)
        except TimeoutError:
            pass
