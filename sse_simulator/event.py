import io
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

# Control message event names. They never carry an id so the client's last event id
# keeps pointing at the last substantive event it has seen.
CONNECTED = "connected"
RESUMED = "resumed"
NOT_FOUND = "not-found"
ERROR = "error"


def encode_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class ServerSentEvent:
    """
    Helper class to format data for Server-Sent Events (SSE).

    Non-string data is serialised as compact JSON; string data is written as is,
    one ``data:`` line per line of text.
    """

    _LINE_SEP_EXPR = re.compile(r"\r\n|\r|\n")
    DEFAULT_SEPARATOR = "\n"

    TAG_COMMENT = ": "
    TAG_ID = "id: "
    TAG_EVENT = "event: "
    TAG_DATA = "data: "
    TAG_RETRY = "retry: "

    def __init__(
        self,
        data: Optional[Any] = None,
        *,
        event: Optional[str] = None,
        id: Optional[Union[int, str]] = None,
        retry: Optional[int] = None,
        comment: Optional[str] = None,
        sep: Optional[str] = None,
    ) -> None:
        if data is None or isinstance(data, str):
            self.data = data
        else:
            self.data = encode_json(data)
        self.event = event
        self.id = str(id) if id is not None else None
        self.retry = retry
        self.comment = comment
        self._sep = sep if sep is not None else self.DEFAULT_SEPARATOR

    def __repr__(self) -> str:
        return f"ServerSentEvent(id={self.id!r}, event={self.event!r}, retry={self.retry!r})"

    def _encode_impl(self, write_fn: Callable[[str], Any]) -> None:
        if self.comment is not None:
            for chunk in self._LINE_SEP_EXPR.split(self.comment):
                write_fn(f"{self.TAG_COMMENT}{chunk}{self._sep}")

        if self.id is not None:
            # Clean newlines in the event id
            clean_id = self._LINE_SEP_EXPR.sub("", self.id)
            write_fn(f"{self.TAG_ID}{clean_id}{self._sep}")

        if self.event is not None:
            # Clean newlines in the event name
            clean_event = self._LINE_SEP_EXPR.sub("", self.event)
            write_fn(f"{self.TAG_EVENT}{clean_event}{self._sep}")

        if self.retry is not None:
            if not isinstance(self.retry, int) or isinstance(self.retry, bool):
                raise TypeError("retry argument must be int")
            write_fn(f"{self.TAG_RETRY}{self.retry}{self._sep}")

        if self.data is not None:
            # Break multi-line data into multiple data: lines
            for chunk in self._LINE_SEP_EXPR.split(self.data):
                write_fn(f"{self.TAG_DATA}{chunk}{self._sep}")

        write_fn(self._sep)

    def encode(self) -> bytes:
        buffer = io.StringIO()
        self._encode_impl(buffer.write)
        return buffer.getvalue().encode("utf-8")


@dataclass(frozen=True)
class Event:
    """One substantive event of a stream. Immutable once appended to a buffer."""

    id: int
    payload: Any
    event_type: Optional[str] = None

    def to_sse(self, retry: Optional[int] = None, sep: Optional[str] = None) -> ServerSentEvent:
        return ServerSentEvent(
            self.payload, id=self.id, event=self.event_type, retry=retry, sep=sep
        )


def control_message(
    name: str, message: str, retry: Optional[int] = None, **extra: Any
) -> ServerSentEvent:
    """Build a protocol signalling frame (connected, resumed, not-found)."""
    payload = {"message": message}
    payload.update(extra)
    return ServerSentEvent(payload, event=name, retry=retry)


def ensure_bytes(data: Union[bytes, dict, ServerSentEvent, Event, Any], sep: str) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, ServerSentEvent):
        data._sep = sep
        return data.encode()
    if isinstance(data, Event):
        return data.to_sse(sep=sep).encode()
    if isinstance(data, dict):
        data["sep"] = sep
        return ServerSentEvent(**data).encode()
    return ServerSentEvent(data, sep=sep).encode()
