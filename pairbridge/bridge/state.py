"""In-memory state for one bridge session.

Holds the activity log, the feedback queue and the set of connections
blocked in ``wait``. Nothing here performs I/O: waiters are resolved by
completing their futures, and the connection handler that owns each
waiter does the actual write.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Deque, Dict, List, Optional, Union

from pairbridge.bridge.events import (
    ActivityEvent,
    BridgeStatus,
    ControlEvent,
    FeedbackEvent,
)

WaitResult = Union[List[ActivityEvent], ControlEvent]


@dataclass(eq=False)
class Waiter:
    """A pending long-poll: resolved with its unseen slice or a stop event."""
    last_seen: int
    future: "asyncio.Future[WaitResult]" = field(repr=False)

    @property
    def resolved(self) -> bool:
        return self.future.done()


class SessionState:
    """
    State for a single bridge session.

    Sequence numbers come from a counter that never resets, so they stay
    stable even when ``history_limit`` evicts old events from memory.

    Thread safety: This class is NOT thread-safe. The bridge runs on one
    asyncio loop and every method here is synchronous, so no two calls
    interleave and no locking is needed.
    """

    def __init__(self, session_id: str, history_limit: int = 0):
        """
        Args:
            session_id: Opaque session identifier
            history_limit: Max activities kept in memory (0 = unbounded)
        """
        if history_limit < 0:
            raise ValueError("history_limit must be >= 0")

        self.session_id = session_id
        self.history_limit = history_limit
        self.started_at = time.monotonic()

        self.activities: Deque[ActivityEvent] = deque(maxlen=history_limit or None)
        self.feedback_queue: Deque[FeedbackEvent] = deque()
        self.waiters: List[Waiter] = []
        self._next_sequence = 0

    @property
    def activity_count(self) -> int:
        """Total activities ever appended (not just those retained)."""
        return self._next_sequence

    @property
    def first_retained_sequence(self) -> int:
        return self._next_sequence - len(self.activities)

    def append(self, payload: Dict[str, Any]) -> ActivityEvent:
        """
        Record an activity/prompt and hand it to current waiters.

        Every waiter whose own unseen slice is now non-empty is resolved
        and dropped from the waiter set in this same call, so a waiter can
        never be both registered and resolved by one append.
        """
        event = ActivityEvent.from_payload(
            payload,
            sequence=self._next_sequence,
            session_id=self.session_id,
        )
        self.activities.append(event)
        self._next_sequence += 1

        still_waiting = []
        for waiter in self.waiters:
            if waiter.resolved:
                continue
            unseen = self.unseen_since(waiter.last_seen)
            if unseen:
                waiter.future.set_result(unseen)
            else:
                still_waiting.append(waiter)
        self.waiters = still_waiting

        return event

    def enqueue_feedback(self, payload: Dict[str, Any]) -> FeedbackEvent:
        """Queue feedback for the main agent. Raises ValueError if malformed."""
        event = FeedbackEvent.from_payload(payload)
        self.feedback_queue.append(event)
        return event

    def dequeue_feedback(self) -> Optional[FeedbackEvent]:
        """Pop the oldest feedback event, or None. Each item is returned once."""
        if not self.feedback_queue:
            return None
        return self.feedback_queue.popleft()

    def unseen_since(self, last_seen: int) -> List[ActivityEvent]:
        """
        Activities with ``sequence >= last_seen``.

        A cursor past the end yields an empty list. A cursor older than the
        retained window yields the whole retained window.
        """
        if last_seen >= self._next_sequence:
            return []
        start = max(last_seen - self.first_retained_sequence, 0)
        return list(islice(self.activities, start, None))

    def register_waiter(self, last_seen: int) -> Waiter:
        """
        Park a ``wait`` call until new activity arrives.

        Must run on the event loop; only call when ``unseen_since`` is empty.
        """
        loop = asyncio.get_running_loop()
        waiter = Waiter(last_seen=last_seen, future=loop.create_future())
        self.waiters.append(waiter)
        return waiter

    def remove_waiter(self, waiter: Waiter) -> None:
        """Drop a waiter (client went away). Safe to call more than once."""
        if waiter in self.waiters:
            self.waiters.remove(waiter)
        if not waiter.future.done():
            waiter.future.cancel()

    def tail(self, n: int) -> List[ActivityEvent]:
        """Last ``n`` retained activities, oldest first."""
        if n <= 0:
            return []
        return list(self.activities)[-n:]

    def snapshot(self) -> BridgeStatus:
        return BridgeStatus(
            session_id=self.session_id,
            activity_count=self.activity_count,
            pending_feedback=len(self.feedback_queue),
            pair_connected=len(self.waiters) > 0,
            uptime_seconds=int(time.monotonic() - self.started_at),
        )

    def close(self) -> int:
        """
        Resolve every waiter with a stop event and clear the set.

        Returns:
            Number of waiters that were notified
        """
        notified = 0
        for waiter in self.waiters:
            if not waiter.resolved:
                waiter.future.set_result(
                    ControlEvent(type="stop", session_id=self.session_id)
                )
                notified += 1
        self.waiters = []
        return notified
