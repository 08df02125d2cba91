import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import anyio

from sse_simulator.event import CONNECTED, NOT_FOUND, RESUMED, ServerSentEvent, control_message
from sse_simulator.state import COMPLETED, StreamState

logger = logging.getLogger(__name__)


def parse_event_id(raw: Optional[str]) -> Optional[int]:
    """Interpret a client supplied last event id; ``None`` if it cannot be one of ours."""
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value >= 1 else None


class ConnectionTail:
    """Delivers one stream's events to one client connection.

    On attach it runs the resumption handshake against the replay buffer, then
    follows the buffer live: whenever the stream signals a change, every event
    newer than the cursor is delivered in id order. Cancelling the iteration (client
    disconnect) detaches only this tail; the generator and the other tails carry on.

    The tail ends by itself once the stream can produce nothing more: after
    draining what is left for a completed or halted stream, and at once for a
    stream that was deleted, expired or shut down.
    """

    def __init__(
        self,
        state: StreamState,
        last_event_id: Optional[str] = None,
        retry: Optional[int] = None,
        delay_ms: int = 0,
        info: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = state
        self.last_event_id = last_event_id
        self.retry = retry
        self.delay = delay_ms / 1000
        self.info = info or {}
        self.clock = clock
        self.cursor = 0
        self._frames: Optional[List[ServerSentEvent]] = None

    def __repr__(self) -> str:
        return f"ConnectionTail({self.state.stream_id!r}, cursor={self.cursor})"

    def attach(self) -> List[ServerSentEvent]:
        """Run the resumption handshake once and return the frames to send first.

        The engine calls it at connect time, so events generated before the
        response starts iterating are still delivered.
        """
        if self._frames is None:
            self._frames = self._handshake()
        return self._frames

    def _handshake(self) -> List[ServerSentEvent]:
        state = self.state
        if self.last_event_id is None:
            self.cursor = state.last_id
            logger.debug(f"{state.stream_id}: new connection at {self.cursor}")
            return [
                control_message(
                    CONNECTED,
                    "Connected to test SSE server",
                    retry=self.retry,
                    streamId=state.stream_id,
                    lastId=state.last_id,
                    **self.info,
                )
            ]

        seen = parse_event_id(self.last_event_id)
        if seen is None or not state.events.contains(seen):
            # never splice partial history: the client starts live
            self.cursor = state.last_id
            logger.info(
                f"{state.stream_id}: last event id {self.last_event_id!r} not in buffer, "
                f"starting live at {self.cursor}"
            )
            return [
                control_message(
                    NOT_FOUND,
                    f"Event ID {self.last_event_id} not found, starting live",
                    retry=self.retry,
                    streamId=state.stream_id,
                    lastId=state.last_id,
                )
            ]

        missed = state.events.after(seen)
        self.cursor = missed[-1].id if missed else seen
        logger.info(f"{state.stream_id}: resuming after {seen}, replaying {len(missed)} events")
        frames: List[ServerSentEvent] = [event.to_sse() for event in missed]
        frames.append(
            control_message(
                RESUMED,
                f"Reconnected after ID {seen}",
                retry=self.retry,
                streamId=state.stream_id,
                replayed=len(missed),
            )
        )
        return frames

    def __aiter__(self) -> AsyncIterator[ServerSentEvent]:
        return self._follow()

    async def _follow(self) -> AsyncIterator[ServerSentEvent]:
        state = self.state
        frames = self.attach()
        state.add_viewer()
        try:
            for frame in frames:
                yield frame
            while True:
                if state.closed_reason is not None and state.closed_reason != COMPLETED:
                    break
                pending = state.events.after(self.cursor)
                if pending:
                    if pending[0].id != self.cursor + 1:
                        logger.warning(
                            f"{state.stream_id}: tail fell behind the buffer, "
                            f"skipping ids {self.cursor + 1}..{pending[0].id - 1}"
                        )
                    for event in pending:
                        if state.closed_reason is not None and state.closed_reason != COMPLETED:
                            break
                        if self.delay:
                            await anyio.sleep(self.delay)
                        self.cursor = event.id
                        yield event.to_sse()
                    continue
                if state.ended:
                    break
                await state.wait_for_change()
        finally:
            state.remove_viewer(self.clock())
            logger.debug(
                f"{state.stream_id}: tail detached at {self.cursor} ({state.closed_reason})"
            )
