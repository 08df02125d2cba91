from sse_simulator.engine import Engine
from sse_simulator.event import Event, ServerSentEvent
from sse_simulator.sse import EventSourceResponse

__version__ = "0.1.0"

__all__ = ["Engine", "Event", "EventSourceResponse", "ServerSentEvent", "__version__"]
