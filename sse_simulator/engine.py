import logging
from typing import Any, Dict, Mapping, Optional

from sse_simulator.chunks import ChunkConfig, ChunkExpiry, ChunkGenerator, ChunkStreamState
from sse_simulator.config import Settings
from sse_simulator.generator import PeriodicConfig, PeriodicGenerator
from sse_simulator.scheduler import Scheduler
from sse_simulator.state import DELETED, SHUTDOWN, StreamRegistry, StreamState
from sse_simulator.sweeper import ExpirationSweeper
from sse_simulator.tail import ConnectionTail

logger = logging.getLogger(__name__)


class Engine:
    """Owns every stream of the serving process.

    One instance lives for the lifetime of the application; it holds the scheduler,
    the periodic and chunk registries and the sweeper. Connections only ever go
    through :meth:`open_stream` / :meth:`open_chunk_stream`.
    """

    def __init__(self, settings: Settings, scheduler: Scheduler) -> None:
        self.settings = settings
        self.scheduler = scheduler
        self.streams: StreamRegistry[PeriodicConfig] = StreamRegistry(
            scheduler,
            PeriodicConfig(interval_ms=settings.default_interval_ms),
            settings.buffer_capacity,
            name="streams",
        )
        self.chunks: StreamRegistry[ChunkConfig] = StreamRegistry(
            scheduler,
            ChunkConfig(),
            settings.chunk_buffer_capacity,
            name="chunks",
            state_class=ChunkStreamState,
        )
        self.sweeper = ExpirationSweeper(
            self.streams, scheduler, settings.idle_timeout, settings.sweep_interval
        )
        self.chunk_expiry = ChunkExpiry(self.chunks, scheduler, settings.idle_timeout)

    def start(self) -> None:
        self.sweeper.start()
        logger.info(
            f"Stream engine started (idle timeout {self.settings.idle_timeout}s, "
            f"sweep every {self.settings.sweep_interval}s)"
        )

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.streams.close_all(SHUTDOWN)
        self.chunks.close_all(SHUTDOWN)
        logger.info("Stream engine stopped")

    def open_stream(
        self,
        stream_id: str,
        requested: Optional[Mapping[str, Any]] = None,
        last_event_id: Optional[str] = None,
        retry: Optional[int] = None,
        delay_ms: int = 0,
    ) -> ConnectionTail:
        """Attach a connection to a periodic stream, creating and starting it if needed."""
        state, _ = self.streams.get_or_create(stream_id, requested)
        state.touch(self.scheduler.now())
        tail = ConnectionTail(
            state, last_event_id, retry=retry, delay_ms=delay_ms, clock=self.scheduler.now
        )
        tail.attach()
        PeriodicGenerator(
            state, self.streams, self.scheduler, self.settings.large_payload_bytes
        ).start()
        return tail

    def open_chunk_stream(
        self,
        stream_id: str,
        requested: Optional[Mapping[str, Any]] = None,
        last_event_id: Optional[str] = None,
        retry: Optional[int] = None,
    ) -> ConnectionTail:
        state, _ = self.chunks.get_or_create(stream_id, requested)
        state.touch(self.scheduler.now())
        self.chunk_expiry.arm(state)
        config = state.config
        info = {
            "totalBytes": config.total_bytes,
            "chunkSize": config.chunk_size,
            "format": config.format,
            "bytesSent": state.bytes_sent,
        }
        tail = ConnectionTail(
            state, last_event_id, retry=retry, info=info, clock=self.scheduler.now
        )
        tail.attach()
        ChunkGenerator(state, self.chunks, self.scheduler, self.chunk_expiry).start()
        return tail

    @staticmethod
    def _report(state: StreamState, was_active: bool) -> Dict[str, Any]:
        return {
            "streamId": state.stream_id,
            "active": was_active,
            "eventCount": state.event_count,
            "lastId": state.last_id,
        }

    def delete_stream(self, stream_id: str) -> Dict[str, Any]:
        """Remove a periodic stream at once; raises StreamNotFound if unknown."""
        state = self.streams.get(stream_id)
        was_active = state is not None and state.active
        return self._report(self.streams.delete(stream_id, DELETED), was_active)

    def delete_chunk_stream(self, stream_id: str) -> Dict[str, Any]:
        state = self.chunks.get(stream_id)
        was_active = state is not None and state.active
        return self._report(self.chunks.delete(stream_id, DELETED), was_active)

    def list_streams(self) -> Dict[str, Any]:
        return {"streams": self.streams.list(), "chunks": self.chunks.list()}
