import dataclasses
import logging
from typing import Any, Dict, Generic, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar

import anyio

from sse_simulator.buffer import ReplayBuffer
from sse_simulator.event import Event
from sse_simulator.exceptions import InvalidStreamConfig, StreamNotFound
from sse_simulator.scheduler import Handle, Scheduler

logger = logging.getLogger(__name__)

# Reasons a stream leaves its registry. Tails drain pending events only for COMPLETED.
COMPLETED = "completed"
DELETED = "deleted"
EXPIRED = "expired"
SHUTDOWN = "shutdown"

C = TypeVar("C")


class StreamState(Generic[C]):
    """Everything one logical stream owns.

    Mutated only from synchronous code running on the event loop (generator ticks,
    connection attach, sweeps), so no mutation is ever interleaved with another.
    Attached tails wait on :meth:`wait_for_change` and are woken on every append
    and when the stream closes.
    """

    def __init__(self, stream_id: str, config: C, events: ReplayBuffer, now: float) -> None:
        self.stream_id = stream_id
        self.config = config
        self.events = events
        self.last_id = 0
        self.event_count = 0
        self.created_at = now
        self.last_activity = now
        self.last_seen = now
        self.viewers = 0
        self.generator_handle: Optional[Handle] = None
        self.expiry_handle: Optional[Handle] = None
        self.halted = False
        self.closed_reason: Optional[str] = None
        self._waiters: List[anyio.Event] = []

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.stream_id!r}, last_id={self.last_id}, "
            f"event_count={self.event_count}, closed={self.closed_reason!r})"
        )

    @property
    def active(self) -> bool:
        return self.generator_handle is not None

    @property
    def ended(self) -> bool:
        """True once no further events will ever be appended."""
        return self.halted or self.closed_reason is not None

    def touch(self, now: float) -> None:
        """Record a connect or reconnect."""
        self.last_activity = now
        self.last_seen = now

    def add_viewer(self) -> None:
        self.viewers += 1

    def remove_viewer(self, now: float) -> None:
        self.viewers -= 1
        self.last_seen = now

    def next_id(self) -> int:
        self.last_id += 1
        return self.last_id

    def append(self, event: Event, now: float) -> None:
        evicted = self.events.append(event)
        if evicted is not None:
            logger.debug(f"{self.stream_id}: evicted event {evicted.id}")
        self.last_activity = now
        self.notify()

    def notify(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.set()

    async def wait_for_change(self) -> None:
        waiter = anyio.Event()
        self._waiters.append(waiter)
        try:
            await waiter.wait()
        finally:
            if not waiter.is_set():
                self._waiters.remove(waiter)

    def stop_generator(self) -> None:
        if self.generator_handle is not None:
            self.generator_handle.cancel()
            self.generator_handle = None

    def close(self, reason: str) -> None:
        self.stop_generator()
        if self.expiry_handle is not None:
            self.expiry_handle.cancel()
            self.expiry_handle = None
        if self.closed_reason is None:
            self.closed_reason = reason
        self.notify()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "streamId": self.stream_id,
            "active": self.active,
            "halted": self.halted,
            "eventCount": self.event_count,
            "lastId": self.last_id,
            "buffered": len(self.events),
            "viewers": self.viewers,
            "config": dataclasses.asdict(self.config),
        }


class StreamRegistry(Generic[C]):
    """Stream id to :class:`StreamState` mapping with get-or-create and delete.

    ``defaults`` is the configuration a stream gets for every parameter its first
    requester did not supply. Once created, a stream's configuration never changes.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        defaults: C,
        capacity: int,
        name: str = "streams",
        state_class: Type[StreamState] = StreamState,
    ) -> None:
        self.scheduler = scheduler
        self.defaults = defaults
        self.capacity = capacity
        self.name = name
        self.state_class = state_class
        self._states: Dict[str, StreamState[C]] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, stream_id: str) -> bool:
        return stream_id in self._states

    def __iter__(self) -> Iterator[StreamState[C]]:
        return iter(list(self._states.values()))

    def build_config(self, requested: Mapping[str, Any]) -> C:
        try:
            return dataclasses.replace(self.defaults, **requested)
        except TypeError as e:
            raise InvalidStreamConfig(str(e)) from e

    def get(self, stream_id: str) -> Optional[StreamState[C]]:
        return self._states.get(stream_id)

    def get_or_create(
        self, stream_id: str, requested: Optional[Mapping[str, Any]] = None
    ) -> Tuple[StreamState[C], bool]:
        """Return the stream for ``stream_id``, creating it from ``requested`` if unknown.

        ``requested`` holds only the parameters the caller supplied explicitly. For an
        existing stream they are compared to the locked configuration and any
        difference is logged; the locked value always wins.
        """
        requested = dict(requested or {})
        config = self.build_config(requested)
        state = self._states.get(stream_id)
        if state is not None:
            for key, value in requested.items():
                locked = getattr(state.config, key)
                if locked != value:
                    logger.warning(
                        f"{self.name}/{stream_id}: requested {key}={value!r} ignored, "
                        f"stream is locked to {locked!r}"
                    )
            return state, False

        state = self.state_class(
            stream_id, config, ReplayBuffer(self.capacity), self.scheduler.now()
        )
        self._states[stream_id] = state
        logger.info(f"{self.name}/{stream_id}: created with {config}")
        return state, True

    def delete(self, stream_id: str, reason: str = DELETED) -> StreamState[C]:
        state = self._states.pop(stream_id, None)
        if state is None:
            raise StreamNotFound(stream_id)
        state.close(reason)
        logger.info(
            f"{self.name}/{stream_id}: removed ({reason}) after {state.event_count} events"
        )
        return state

    def discard(self, state: StreamState[C], reason: str) -> None:
        """Remove ``state`` if it is still the registered stream for its id."""
        if self._states.get(state.stream_id) is state:
            self.delete(state.stream_id, reason)
        else:
            state.close(reason)

    def close_all(self, reason: str) -> None:
        for state in self:
            self.delete(state.stream_id, reason)

    def list(self) -> List[Dict[str, Any]]:
        return [state.snapshot() for state in self]
