import base64
import json

import anyio
import pytest

from sse_simulator.chunks import (
    BASE64,
    CHUNK_EVENT,
    NDJSON,
    PLAIN,
    ChunkConfig,
    build_chunk,
    ndjson_chunk,
    plain_chunk,
)
from sse_simulator.event import CONNECTED, NOT_FOUND, RESUMED
from sse_simulator.exceptions import InvalidStreamConfig
from sse_simulator.state import COMPLETED, EXPIRED


def test_plain_chunk_has_exact_size():
    for size in (1, 63, 64, 65, 1000):
        content = plain_chunk(1, size)
        assert len(content.encode()) == size


def test_ndjson_chunk_lines_are_json():
    content, accounted = build_chunk(NDJSON, 3, 500)
    lines = content.split("\n")
    assert all(json.loads(line)["chunk"] == 3 for line in lines)
    assert accounted == len(content.encode())
    assert accounted == 500


@pytest.mark.parametrize("size", [1, 2, 10, 29, 30, 31, 60, 97, 100, 129, 1000, 16 * 1024])
def test_ndjson_chunk_has_exact_size(size):
    content = ndjson_chunk(7, size)
    assert len(content.encode()) == size
    for line in content.split("\n"):
        json.loads(line)


def test_ndjson_stream_stays_within_budget(engine, scheduler):
    engine.open_chunk_stream(
        "n", {"total_bytes": 100, "chunk_size": 100, "delay_ms": 10, "format": NDJSON}
    )
    state = engine.chunks.get("n")

    scheduler.advance(0.015)

    (event,) = state.events
    assert len(event.payload.encode()) == 100
    assert state.bytes_sent == 100


def test_base64_chunk_accounts_binary_size():
    content, accounted = build_chunk(BASE64, 1, 300)
    assert accounted == 300
    assert len(base64.b64decode(content)) == 300


@pytest.mark.parametrize(
    "kwargs",
    [{"total_bytes": 0}, {"chunk_size": 0}, {"delay_ms": -1}, {"format": "xml"}],
)
def test_invalid_config(kwargs):
    with pytest.raises(InvalidStreamConfig):
        ChunkConfig(**kwargs)


def test_chunks_until_total_bytes(engine, scheduler):
    engine.open_chunk_stream("c", {"total_bytes": 250, "chunk_size": 100, "delay_ms": 10})
    state = engine.chunks.get("c")

    scheduler.advance(0.035)

    events = list(state.events)
    assert [e.id for e in events] == [1, 2, 3]
    assert all(e.event_type == CHUNK_EVENT for e in events)
    assert [len(e.payload) for e in events] == [100, 100, 50]
    assert state.bytes_sent == 250

    scheduler.advance(0.01)
    assert "c" not in engine.chunks
    assert state.closed_reason == COMPLETED


def test_chunk_namespace_is_separate(engine):
    engine.open_stream("same")
    engine.open_chunk_stream("same")
    assert engine.streams.get("same") is not engine.chunks.get("same")


def test_expiry_timer_is_rearmed_per_chunk(engine, scheduler):
    # idle timeout is 300s
    engine.open_chunk_stream("c", {"total_bytes": 15, "chunk_size": 5, "delay_ms": 100_000})
    state = engine.chunks.get("c")

    scheduler.advance(250)
    assert "c" in engine.chunks
    scheduler.advance(100)  # chunks at t=100, 200 and 300 re-armed the timer
    assert "c" in engine.chunks
    scheduler.advance(150)
    # the stream completed at t=400 on its own
    assert "c" not in engine.chunks
    assert state.closed_reason == COMPLETED


def test_idle_chunk_stream_expires(engine, scheduler):
    engine.open_chunk_stream("c", {"total_bytes": 10, "chunk_size": 5, "delay_ms": 1_000_000})
    state = engine.chunks.get("c")
    scheduler.advance(300)
    assert "c" not in engine.chunks
    assert state.closed_reason == EXPIRED


def test_delete_chunk_stream_reports(engine, scheduler):
    engine.open_chunk_stream("c", {"total_bytes": 100, "chunk_size": 10, "delay_ms": 10})
    scheduler.advance(0.025)
    assert engine.delete_chunk_stream("c") == {
        "streamId": "c",
        "active": True,
        "eventCount": 2,
        "lastId": 2,
    }


@pytest.mark.anyio
async def test_chunk_resumption_mirrors_events(engine, scheduler):
    first = engine.open_chunk_stream("c", {"total_bytes": 1000, "chunk_size": 100, "delay_ms": 10, "format": PLAIN})
    with anyio.fail_after(1):
        connected = await first.__aiter__().__anext__()
    assert connected.event == CONNECTED
    assert json.loads(connected.data)["totalBytes"] == 1000

    scheduler.advance(0.045)

    resumed = engine.open_chunk_stream("c", last_event_id="2").__aiter__()
    with anyio.fail_after(1):
        frames = [await resumed.__anext__() for _ in range(3)]
    assert [f.id for f in frames[:2]] == ["3", "4"]
    assert frames[2].event == RESUMED

    missing = engine.open_chunk_stream("c", last_event_id="42").__aiter__()
    with anyio.fail_after(1):
        frame = await missing.__anext__()
    assert frame.event == NOT_FOUND
