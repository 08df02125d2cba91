import logging

import anyio
import anyio.lowlevel
import pytest
from starlette.testclient import TestClient

from sse_simulator.appstatus import AppStatus
from sse_simulator.event import ServerSentEvent
from sse_simulator.sse import EventSourceResponse, SendTimeoutError

_log = logging.getLogger(__name__)


@pytest.mark.parametrize(
    "input,sep,expected",
    [
        ("integer", "\n", b"data: 1\n\n"),
        ("dict1", "\n", b"data: 1\n\n"),
        ("dict2", "\r\n", b"event: message\r\ndata: 1\r\n\r\n"),
        ("dict2", "\r", b"event: message\rdata: 1\r\r"),
    ],
)
def test_event_source_response_with_ping(input, sep, expected):
    async def app(scope, receive, send):
        async def numbers(minimum, maximum):
            for i in range(minimum, maximum + 1):
                await anyio.sleep(0.1)
                if input == "integer":
                    yield i
                elif input == "dict1":
                    yield dict(data=i)
                elif input == "dict2":
                    yield dict(data=i, event="message")

        response = EventSourceResponse(numbers(1, 5), ping=0.2, sep=sep)
        await response(scope, receive, send)

    client = TestClient(app)
    response = client.get("/")
    assert response.content.decode().count("ping") == 2
    assert expected in response.content


def test_ping_disabled():
    async def app(scope, receive, send):
        async def numbers():
            for i in range(3):
                await anyio.sleep(0.1)
                yield i

        await EventSourceResponse(numbers(), ping=0)(scope, receive, send)

    response = TestClient(app).get("/")
    assert "ping" not in response.text


def test_custom_ping_message():
    async def app(scope, receive, send):
        async def slow():
            await anyio.sleep(0.25)
            yield "done"

        response = EventSourceResponse(
            slow(), ping=0.1, ping_message_factory=lambda: ServerSentEvent(comment="still here")
        )
        await response(scope, receive, send)

    response = TestClient(app).get("/")
    assert ": still here\n\n" in response.text


def test_header_charset():
    async def numbers():
        yield 1

    response = EventSourceResponse(numbers(), ping=0)
    content_type = [h for h in response.raw_headers if h[0].decode() == "content-type"]
    assert content_type == [(b"content-type", b"text/event-stream; charset=utf-8")]


def test_invalid_separator():
    async def numbers():
        yield 1

    with pytest.raises(ValueError):
        EventSourceResponse(numbers(), sep="\t")


@pytest.mark.parametrize("ping,error", [("1", TypeError), (-1, ValueError)])
def test_invalid_ping(ping, error):
    async def numbers():
        yield 1

    with pytest.raises(error):
        EventSourceResponse(numbers(), ping=ping)


@pytest.mark.anyio
async def test_send_timeout():
    # Timeout is set to 0.5s, but `send` will take 1s. Expect SendTimeoutError.
    cleanup = False

    async def event_publisher():
        try:
            yield {"event": "some", "data": "any"}
            assert False  # never reached
        finally:
            nonlocal cleanup
            cleanup = True

    async def send(*args, **kwargs):
        await anyio.sleep(1.0)

    async def receive():
        await anyio.lowlevel.checkpoint()
        return {"type": "something"}

    response = EventSourceResponse(event_publisher(), ping=0, send_timeout=0.5)
    with pytest.raises(Exception) as exc_info:
        await response({}, receive, send)
    # anyio task groups wrap the failure in an exception group
    assert exc_info.group_contains(SendTimeoutError)

    assert cleanup


@pytest.mark.anyio
async def test_exit_signal_ends_stream():
    sent = []

    async def endless():
        i = 0
        while True:
            i += 1
            yield i
            await anyio.sleep(0.01)

    async def send(message):
        sent.append(message)

    async def receive():
        await anyio.sleep_forever()

    async def trigger_exit():
        await anyio.sleep(0.1)
        AppStatus.handle_exit()

    with anyio.fail_after(2):
        async with anyio.create_task_group() as tg:
            tg.start_soon(trigger_exit)
            await EventSourceResponse(endless(), ping=0)({}, receive, send)

    assert AppStatus.should_exit
    assert sent[0]["type"] == "http.response.start"
    assert len(sent) > 2
