class SimulatorError(Exception):
    """Base class for errors raised by the stream engine."""


class InvalidStreamConfig(SimulatorError, ValueError):
    """Raised before streaming starts when request parameters cannot be honoured."""


class StreamNotFound(SimulatorError, KeyError):
    def __init__(self, stream_id: str) -> None:
        super().__init__(stream_id)
        self.stream_id = stream_id

    def __str__(self) -> str:
        return f"stream not found: {self.stream_id!r}"
