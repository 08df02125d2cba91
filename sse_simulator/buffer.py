from collections import deque
from itertools import islice
from typing import Deque, Iterator, List, Optional

from sse_simulator.event import Event


class ReplayBuffer:
    """Bounded history of a stream's events, kept for catch-up after reconnect.

    Events are appended in increasing id order. When the buffer is full the oldest
    event is evicted, so the retained ids are always a contiguous suffix of the
    stream's history.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._events: Deque[Event] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def append(self, event: Event) -> Optional[Event]:
        """Append ``event`` and return the evicted event, if any."""
        tail = self.tail_id
        if tail is not None and event.id <= tail:
            raise ValueError(f"event id {event.id} does not follow {tail}")
        evicted = self._events[0] if len(self._events) == self.capacity else None
        self._events.append(event)
        return evicted

    @property
    def head_id(self) -> Optional[int]:
        return self._events[0].id if self._events else None

    @property
    def tail_id(self) -> Optional[int]:
        return self._events[-1].id if self._events else None

    def contains(self, event_id: int) -> bool:
        head, tail = self.head_id, self.tail_id
        if head is None or tail is None:
            return False
        if not head <= event_id <= tail:
            return False
        # ids are usually contiguous, but scan when they are not
        index = event_id - head
        if index < len(self._events) and self._events[index].id == event_id:
            return True
        return any(event.id == event_id for event in self._events)

    def after(self, event_id: int) -> List[Event]:
        """Return every buffered event with an id greater than ``event_id``, oldest first."""
        tail = self.tail_id
        if tail is None or event_id >= tail:
            return []
        head = self.head_id
        if event_id < head:
            return list(self._events)
        start = event_id - head + 1
        if start < len(self._events) and self._events[start - 1].id == event_id:
            return list(islice(self._events, start, None))
        return [event for event in self._events if event.id > event_id]
