import logging
from typing import List, Optional

from sse_simulator.scheduler import Handle, Scheduler
from sse_simulator.state import EXPIRED, StreamRegistry

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_SWEEP_INTERVAL = 60.0


class ExpirationSweeper:
    """Periodically reclaims streams nobody has touched for ``idle_timeout`` seconds.

    A stream with an attached viewer is never idle. Otherwise the idle time runs
    from the last connect or the last viewer leaving; generated events do not
    count, so a stream that keeps generating for nobody is reclaimed. A client
    going away never reclaims anything by itself.
    """

    def __init__(
        self,
        registry: StreamRegistry,
        scheduler: Scheduler,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.idle_timeout = idle_timeout
        self.interval = interval
        self._handle: Optional[Handle] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._handle is None:
            self._handle = self.scheduler.call_every(
                self.interval, self.sweep, name=f"{self.registry.name}/sweeper"
            )

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def sweep(self) -> List[str]:
        """Remove every idle stream and return their ids."""
        now = self.scheduler.now()
        expired = []
        for state in self.registry:
            if state.viewers:
                continue
            idle = now - state.last_seen
            if idle > self.idle_timeout:
                logger.info(f"{state.stream_id}: idle for {idle:.0f}s, reclaiming")
                self.registry.delete(state.stream_id, EXPIRED)
                expired.append(state.stream_id)
        if expired:
            logger.debug(f"Sweep reclaimed {len(expired)} of {len(expired) + len(self.registry)} streams")
        return expired
