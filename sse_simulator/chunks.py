"""
Chunked-transfer variant of the stream engine.

Instead of periodic JSON events a chunk stream emits fixed-size blocks of synthetic
content until a byte budget is spent. Each stream expires on its own single-shot
timer, re-armed on every connect and every chunk emitted.
"""
import base64
import json
import logging
import os
import string
from dataclasses import dataclass
from typing import Tuple

from sse_simulator.event import Event
from sse_simulator.exceptions import InvalidStreamConfig
from sse_simulator.generator import EventGenerator
from sse_simulator.scheduler import Scheduler
from sse_simulator.state import EXPIRED, StreamRegistry, StreamState

logger = logging.getLogger(__name__)

CHUNK_EVENT = "chunk"

PLAIN = "plain"
NDJSON = "ndjson"
BASE64 = "base64"
FORMATS = (PLAIN, NDJSON, BASE64)

DEFAULT_TOTAL_BYTES = 1024 * 1024
DEFAULT_CHUNK_SIZE = 16 * 1024
DEFAULT_DELAY_MS = 100

_PLAIN_LINE_WIDTH = 64
_NDJSON_LINE_WIDTH = 96


@dataclass(frozen=True)
class ChunkConfig:
    total_bytes: int = DEFAULT_TOTAL_BYTES
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: int = DEFAULT_DELAY_MS
    format: str = PLAIN

    def __post_init__(self) -> None:
        if self.total_bytes < 1:
            raise InvalidStreamConfig("totalBytes must be at least 1")
        if self.chunk_size < 1:
            raise InvalidStreamConfig("chunkSize must be at least 1")
        if self.delay_ms < 0:
            raise InvalidStreamConfig("delay must not be negative")
        if self.format not in FORMATS:
            raise InvalidStreamConfig(
                f"format must be one of {', '.join(FORMATS)}, got: {self.format}"
            )


class ChunkStreamState(StreamState[ChunkConfig]):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.bytes_sent = 0

    def snapshot(self):
        snapshot = super().snapshot()
        snapshot["bytesSent"] = self.bytes_sent
        return snapshot


def plain_chunk(seq: int, size: int) -> str:
    """Printable text of exactly ``size`` bytes, broken into lines."""
    alphabet = string.ascii_letters + string.digits
    offset = seq % len(alphabet)
    rotated = alphabet[offset:] + alphabet[:offset]
    line = (rotated * 2)[:_PLAIN_LINE_WIDTH - 1] + "\n"
    return (line * (size // len(line) + 1))[:size]


def _ndjson_record(seq: int, index: int, pad: str = "") -> str:
    return json.dumps({"chunk": seq, "line": index, "pad": pad}, separators=(",", ":"))


def ndjson_chunk(seq: int, size: int) -> str:
    """Newline-delimited JSON records of exactly ``size`` bytes.

    A record that would leave too little room for the next one absorbs the rest
    as padding. A size too small for any record becomes a single JSON string.
    """
    if size < len(_ndjson_record(seq, 0)):
        return "0" if size == 1 else '"' + "x" * (size - 2) + '"'

    lines = []
    remaining = size
    index = 0
    while remaining > 0:
        newline = 1 if lines else 0
        bare = len(_ndjson_record(seq, index))
        width = min(max(bare, _NDJSON_LINE_WIDTH), remaining - newline)
        leftover = remaining - newline - width
        if leftover and leftover <= len(_ndjson_record(seq, index + 1)):
            width += leftover
        lines.append(_ndjson_record(seq, index, "x" * (width - bare)))
        remaining -= width + newline
        index += 1
    return "\n".join(lines)


def base64_chunk(size: int) -> str:
    return base64.b64encode(os.urandom(size)).decode("ascii")


def build_chunk(fmt: str, seq: int, size: int) -> Tuple[str, int]:
    """Return the chunk content and the number of payload bytes it accounts for."""
    if fmt == BASE64:
        # the budget counts the wrapped binary, not its base64 text
        return base64_chunk(size), size
    if fmt == NDJSON:
        content = ndjson_chunk(seq, size)
    else:
        content = plain_chunk(seq, size)
    return content, len(content.encode("utf-8"))


class ChunkExpiry:
    """Single-shot idle timer per chunk stream."""

    def __init__(self, registry: StreamRegistry, scheduler: Scheduler, idle_timeout: float) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.idle_timeout = idle_timeout

    def arm(self, state: StreamState) -> None:
        if state.closed_reason is not None:
            return
        if state.expiry_handle is not None:
            state.expiry_handle.cancel()
        state.expiry_handle = self.scheduler.call_later(
            self.idle_timeout,
            lambda: self._expire(state),
            name=f"{self.registry.name}/{state.stream_id}/expiry",
        )

    def _expire(self, state: StreamState) -> None:
        state.expiry_handle = None
        logger.info(f"{state.stream_id}: chunk stream idle for {self.idle_timeout}s")
        self.registry.discard(state, EXPIRED)


class ChunkGenerator(EventGenerator):
    def __init__(
        self,
        state: ChunkStreamState,
        registry: StreamRegistry,
        scheduler: Scheduler,
        expiry: ChunkExpiry,
    ) -> None:
        super().__init__(state, registry, scheduler)
        self.expiry = expiry

    @property
    def interval(self) -> float:
        # a zero delay still yields to the loop between chunks
        return max(self.state.config.delay_ms, 1) / 1000

    def exhausted(self) -> bool:
        return self.state.bytes_sent >= self.state.config.total_bytes

    def emit(self) -> None:
        state = self.state
        config = state.config
        size = min(config.chunk_size, config.total_bytes - state.bytes_sent)
        state.event_count += 1
        content, accounted = build_chunk(config.format, state.event_count, size)
        state.bytes_sent += accounted
        event = Event(state.next_id(), content, CHUNK_EVENT)
        logger.debug(
            f"{state.stream_id}: chunk {event.id} ({accounted} bytes, "
            f"{state.bytes_sent}/{config.total_bytes})"
        )
        state.append(event, self.scheduler.now())
        self.expiry.arm(state)
