import logging
from typing import Optional

import anyio

logger = logging.getLogger(__name__)


class AppStatus:
    """Process-wide shutdown flag so open SSE streams can end when the server stops.

    The server entrypoint calls :meth:`handle_exit` from its signal handling; every
    streaming response waits on :meth:`listen_for_exit_signal`.
    """

    should_exit = False
    should_exit_event: Optional[anyio.Event] = None

    @classmethod
    def handle_exit(cls) -> None:
        """Set the shutdown flag and wake every waiting stream."""
        logger.debug("AppStatus.handle_exit called")
        cls.should_exit = True
        if cls.should_exit_event is not None:
            cls.should_exit_event.set()

    @classmethod
    def reset(cls) -> None:
        """Reset AppStatus state (useful for testing)."""
        cls.should_exit = False
        cls.should_exit_event = None

    @classmethod
    async def listen_for_exit_signal(cls) -> None:
        """Return once shutdown has been requested."""
        # Check if should_exit was set before anybody started waiting
        if cls.should_exit:
            return

        if cls.should_exit_event is None:
            cls.should_exit_event = anyio.Event()

        # Check if should_exit got set while we set up the event
        if cls.should_exit:
            return

        await cls.should_exit_event.wait()
