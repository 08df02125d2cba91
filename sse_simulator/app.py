"""
HTTP surface of the simulator.

- /sse/test     periodic event stream on the shared stream engine
- /sse/chunks   chunked synthetic data transfer
- /sse/streams  list streams, DELETE to remove one
- /sse/echo, /sse/error, /sse/timeout, /sse/multi  single-purpose failure and framing probes
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import anyio
from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.cors import CORSMiddleware

from sse_simulator import __version__, chunks
from sse_simulator.config import Settings, get_settings
from sse_simulator.engine import Engine
from sse_simulator.event import ServerSentEvent
from sse_simulator.exceptions import InvalidStreamConfig, StreamNotFound
from sse_simulator.scheduler import TaskGroupScheduler
from sse_simulator.sse import EventSourceResponse

logger = logging.getLogger(__name__)

# query parameter -> locked configuration field
PERIODIC_PARAMS = {
    "interval": "interval_ms",
    "maxEvents": "max_events",
    "eventType": "event_type",
    "largePayload": "large_payload",
    "errorAfter": "error_after",
}
CHUNK_PARAMS = {
    "totalBytes": "total_bytes",
    "chunkSize": "chunk_size",
    "delay": "delay_ms",
    "format": "format",
}

MULTI_EVENT_TYPES = ("ping", "update", "alert")


def supplied(request: Request, params: Dict[str, str], values: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the parameters the client actually put in the query string."""
    return {
        field: values[name] for name, field in params.items() if name in request.query_params
    }


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = TaskGroupScheduler()
        async with scheduler.running():
            engine = Engine(settings, scheduler)
            engine.start()
            app.state.engine = engine
            try:
                yield
            finally:
                engine.shutdown()

    app = FastAPI(
        title="SSE Simulator",
        version=__version__,
        description="Server-Sent Events test source for clients, proxies and middleware.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidStreamConfig)
    async def invalid_config_handler(request: Request, exc: InvalidStreamConfig):
        logger.info(f"Rejected {request.url.path}: {exc}")
        return JSONResponse({"detail": str(exc)}, status_code=400)

    @app.exception_handler(StreamNotFound)
    async def not_found_handler(request: Request, exc: StreamNotFound):
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.get("/sse/test")
    async def periodic_stream(
        request: Request,
        interval: int = Query(settings.default_interval_ms, ge=1, description="ms between events, locked"),
        event_type: Optional[str] = Query(None, alias="eventType", min_length=1),
        retry: Optional[int] = Query(None, ge=0, description="client reconnection hint in ms"),
        max_events: Optional[int] = Query(None, alias="maxEvents", ge=0, description="locked"),
        large_payload: bool = Query(False, alias="largePayload"),
        error_after: Optional[int] = Query(None, alias="errorAfter", ge=1),
        delay: int = Query(0, ge=0, description="per connection delay before each event, ms"),
        stream_id: str = Query("default", alias="streamId", min_length=1),
        ping: Optional[float] = Query(None, ge=0, description="keep-alive comment interval, 0 disables"),
        last_event_id_query: Optional[str] = Query(None, alias="lastEventId"),
        last_event_id: Optional[str] = Header(None, alias="Last-Event-ID"),
        engine: Engine = Depends(get_engine),
        app_settings: Settings = Depends(get_app_settings),
    ) -> EventSourceResponse:
        """Periodic JSON events from a stream shared by every client using the same streamId."""
        requested = supplied(
            request,
            PERIODIC_PARAMS,
            {
                "interval": interval,
                "maxEvents": max_events,
                "eventType": event_type,
                "largePayload": large_payload,
                "errorAfter": error_after,
            },
        )
        tail = engine.open_stream(
            stream_id,
            requested,
            last_event_id=last_event_id if last_event_id is not None else last_event_id_query,
            retry=retry,
            delay_ms=delay,
        )
        return EventSourceResponse(
            tail,
            ping=app_settings.ping_interval if ping is None else ping,
            sep=app_settings.separator,
        )

    @app.get("/sse/chunks")
    async def chunk_stream(
        request: Request,
        total_bytes: int = Query(chunks.DEFAULT_TOTAL_BYTES, alias="totalBytes", ge=1),
        chunk_size: int = Query(chunks.DEFAULT_CHUNK_SIZE, alias="chunkSize", ge=1),
        delay: int = Query(chunks.DEFAULT_DELAY_MS, ge=0, description="ms between chunks"),
        format: str = Query(chunks.PLAIN, description="plain, ndjson or base64"),
        stream_id: str = Query("default", alias="streamId", min_length=1),
        retry: Optional[int] = Query(None, ge=0),
        ping: Optional[float] = Query(None, ge=0),
        last_event_id_query: Optional[str] = Query(None, alias="lastEventId"),
        last_event_id: Optional[str] = Header(None, alias="Last-Event-ID"),
        engine: Engine = Depends(get_engine),
        app_settings: Settings = Depends(get_app_settings),
    ) -> EventSourceResponse:
        """Fixed-size synthetic chunks until totalBytes have been sent."""
        requested = supplied(
            request,
            CHUNK_PARAMS,
            {
                "totalBytes": total_bytes,
                "chunkSize": chunk_size,
                "delay": delay,
                "format": format,
            },
        )
        tail = engine.open_chunk_stream(
            stream_id,
            requested,
            last_event_id=last_event_id if last_event_id is not None else last_event_id_query,
            retry=retry,
        )
        return EventSourceResponse(
            tail,
            ping=app_settings.ping_interval if ping is None else ping,
            sep=app_settings.separator,
        )

    @app.get("/sse/streams")
    async def list_streams(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
        return engine.list_streams()

    @app.delete("/sse/streams/{stream_id}")
    async def delete_stream(stream_id: str, engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
        return engine.delete_stream(stream_id)

    @app.delete("/sse/chunks/{stream_id}")
    async def delete_chunk_stream(stream_id: str, engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
        return engine.delete_chunk_stream(stream_id)

    @app.post("/sse/echo")
    async def echo(data: Any = Body(None)) -> EventSourceResponse:
        """Stream the posted JSON body back as a single `echo` event."""

        async def echo_once():
            yield ServerSentEvent({"echoed": data}, event="echo")

        return EventSourceResponse(echo_once(), ping=0, sep=settings.separator)

    @app.get("/sse/error")
    async def error(code: int = Query(500, ge=400, le=599)) -> PlainTextResponse:
        return PlainTextResponse("Simulated SSE error", status_code=code)

    @app.get("/sse/timeout")
    async def timeout(seconds: float = Query(30.0, ge=0)) -> PlainTextResponse:
        """Hold the request open, then answer 408."""
        await anyio.sleep(seconds)
        return PlainTextResponse("Simulated timeout", status_code=408)

    @app.get("/sse/multi")
    async def multi(spacing: int = Query(5000, ge=0, description="ms between events")) -> EventSourceResponse:
        """One event of each custom type, then the stream ends."""

        async def typed_events():
            for index, event_type in enumerate(MULTI_EVENT_TYPES):
                if index:
                    await anyio.sleep(spacing / 1000)
                yield ServerSentEvent(
                    {"message": f"Event of type: {event_type}"}, event=event_type, id=index + 1
                )

        return EventSourceResponse(typed_events(), ping=0, sep=settings.separator)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "healthy"}

    return app
