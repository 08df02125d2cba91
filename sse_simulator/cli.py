"""SSE simulator command line interface."""

import logging
from typing import Optional

import typer
import uvicorn

from sse_simulator.appstatus import AppStatus
from sse_simulator.config import get_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = r"%(asctime)-15s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENDPOINTS = (
    "/sse/test?interval=1000&eventType=custom&retry=5000&maxEvents=10&largePayload=true&errorAfter=5&streamId=demo",
    "/sse/chunks?totalBytes=1048576&chunkSize=16384&delay=100&format=ndjson",
    "GET /sse/streams, DELETE /sse/streams/{streamId}, DELETE /sse/chunks/{streamId}",
    "POST /sse/echo (send JSON body)",
    "/sse/error?code=404",
    "/sse/timeout",
    "/sse/multi",
)

app = typer.Typer(help="Server-Sent Events test source", no_args_is_help=True)


class SimulatorServer(uvicorn.Server):
    """uvicorn server that ends open SSE streams when asked to shut down."""

    def handle_exit(self, sig, frame) -> None:
        AppStatus.handle_exit()
        super().handle_exit(sig, frame)


@app.callback()
def main() -> None:
    """SSE simulator."""


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    log_level: Optional[str] = typer.Option(None, help="Log level"),
    https: Optional[bool] = typer.Option(None, "--https/--no-https", help="Serve over TLS"),
) -> None:
    """Run the simulator under uvicorn."""
    from sse_simulator.app import create_app

    overrides = {
        key: value
        for key, value in {
            "host": host,
            "port": port,
            "log_level": log_level.lower() if log_level else None,
            "use_https": https,
        }.items()
        if value is not None
    }
    settings = get_settings().model_copy(update=overrides)

    level = "DEBUG" if settings.log_level == "trace" else settings.log_level.upper()
    logging.basicConfig(format=LOG_FORMAT, level=level, datefmt=DATE_FORMAT)

    ssl_options = {}
    scheme = "http"
    if settings.use_https:
        ssl_options = {
            "ssl_certfile": settings.ssl_certfile,
            "ssl_keyfile": settings.ssl_keyfile,
            "ssl_keyfile_password": settings.ssl_keyfile_password,
        }
        scheme = "https"

    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        **ssl_options,
    )
    logger.info(f"SSE simulator running on {scheme}://{settings.host}:{settings.port}")
    for endpoint in ENDPOINTS:
        logger.info(f"- {endpoint}")
    SimulatorServer(config).run()


if __name__ == "__main__":
    app()
