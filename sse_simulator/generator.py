import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sse_simulator.event import ERROR, Event
from sse_simulator.exceptions import InvalidStreamConfig
from sse_simulator.scheduler import Scheduler
from sse_simulator.state import COMPLETED, StreamRegistry, StreamState

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 2000
LARGE_PAYLOAD_BYTES = 1024 * 1024


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class PeriodicConfig:
    """Generation parameters of a periodic stream, fixed by its first requester."""

    interval_ms: int = DEFAULT_INTERVAL_MS
    max_events: Optional[int] = None
    event_type: Optional[str] = None
    large_payload: bool = False
    error_after: Optional[int] = None

    def __post_init__(self) -> None:
        if self.interval_ms < 1:
            raise InvalidStreamConfig("interval must be at least 1 ms")
        if self.max_events is not None and self.max_events < 0:
            raise InvalidStreamConfig("maxEvents must not be negative")
        if self.error_after is not None and self.error_after < 1:
            raise InvalidStreamConfig("errorAfter must be at least 1")


class EventGenerator(ABC):
    """Connection-independent producer for one stream.

    Ticks on the scheduler until the stream is exhausted (then removes it from the
    registry) or halts itself. Whatever the number of viewers, a stream has at
    most one running generator: :meth:`start` is a no-op while one is scheduled.
    """

    def __init__(self, state: StreamState, registry: StreamRegistry, scheduler: Scheduler) -> None:
        self.state = state
        self.registry = registry
        self.scheduler = scheduler

    @property
    @abstractmethod
    def interval(self) -> float:
        """Seconds between ticks."""

    @abstractmethod
    def exhausted(self) -> bool:
        """True once the stream has produced everything it was asked to."""

    @abstractmethod
    def emit(self) -> None:
        """Produce and append the next event."""

    def start(self) -> bool:
        state = self.state
        if state.generator_handle is not None or state.ended:
            return False
        state.generator_handle = self.scheduler.call_every(
            self.interval, self.tick, name=f"{self.registry.name}/{state.stream_id}"
        )
        logger.debug(f"{state.stream_id}: generator started, every {self.interval}s")
        return True

    def stop(self) -> None:
        self.state.stop_generator()

    def tick(self) -> None:
        state = self.state
        if state.closed_reason is not None:
            self.stop()
            return
        if self.exhausted():
            self.stop()
            logger.info(f"{state.stream_id}: finished after {state.event_count} events")
            self.registry.discard(state, COMPLETED)
            return
        self.emit()


class PeriodicGenerator(EventGenerator):
    def __init__(
        self,
        state: StreamState[PeriodicConfig],
        registry: StreamRegistry,
        scheduler: Scheduler,
        large_payload_bytes: int = LARGE_PAYLOAD_BYTES,
    ) -> None:
        super().__init__(state, registry, scheduler)
        self.large_payload_bytes = large_payload_bytes

    @property
    def interval(self) -> float:
        return self.state.config.interval_ms / 1000

    def exhausted(self) -> bool:
        max_events = self.state.config.max_events
        return max_events is not None and self.state.event_count >= max_events

    def payload(self, count: int) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "time": utc_timestamp(),
            "count": count,
            "message": "Test event",
        }
        if self.state.config.large_payload:
            payload["largeData"] = "x" * self.large_payload_bytes
        return payload

    def emit(self) -> None:
        state = self.state
        config = state.config
        state.event_count += 1
        count = state.event_count
        event_id = state.next_id()

        if config.error_after is not None and config.error_after == count:
            # headers are already committed on every attached connection, so the
            # failure can only travel as a named event
            self.stop()
            state.halted = True
            event = Event(
                event_id,
                {"time": utc_timestamp(), "count": count, "message": "Simulated server error"},
                ERROR,
            )
            logger.warning(f"{state.stream_id}: simulated error at event {count}, generator halted")
        else:
            event = Event(event_id, self.payload(count), config.event_type)
            logger.debug(f"{state.stream_id}: generated event {event_id}")

        state.append(event, self.scheduler.now())
