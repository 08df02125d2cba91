import logging

import httpx
import pytest
from asgi_lifespan import LifespanManager

from sse_simulator.app import create_app
from sse_simulator.appstatus import AppStatus
from sse_simulator.config import Settings
from sse_simulator.engine import Engine
from sse_simulator.scheduler import ManualScheduler

_log = logging.getLogger(__name__)
log_fmt = r"%(asctime)-15s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
datefmt = "%Y-%m-%d %H:%M:%S"
logging.basicConfig(format=log_fmt, level=logging.DEBUG, datefmt=datefmt)

logging.getLogger("httpx").setLevel(logging.INFO)
logging.getLogger("httpcore").setLevel(logging.INFO)


@pytest.fixture
def anyio_backend():
    """Exclude trio from tests"""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_appstatus():
    # avoid: RuntimeError: <asyncio.locks.Event object at 0x1046a0a30 [unset]> is bound to a different event loop
    AppStatus.reset()
    yield
    AppStatus.reset()


@pytest.fixture
def settings():
    return Settings(
        idle_timeout=300,
        sweep_interval=60,
        default_interval_ms=1000,
        buffer_capacity=10,
        chunk_buffer_capacity=5,
        large_payload_bytes=1024,
        ping_interval=0,
        _env_file=None,
    )


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def engine(settings, scheduler):
    engine = Engine(settings, scheduler)
    engine.start()
    yield engine
    engine.shutdown()


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    async with LifespanManager(app):
        _log.info("We're in!")
        yield app
        _log.info("We're out!")


@pytest.fixture
async def httpx_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost:8000") as client:
        _log.info("Yielding Client")
        yield client
