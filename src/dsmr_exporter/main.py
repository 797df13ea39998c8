"""FastAPI application for the DSMR exporter."""

import argparse
import logging
from contextlib import asynccontextmanager

import uvicorn
import yaml
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from dsmr_exporter.backends import create_backend
from dsmr_exporter.config import AppConfig, load_config
from dsmr_exporter.frontends import create_frontend
from dsmr_exporter.metrics import MetricStore

logger = logging.getLogger("dsmr_exporter")

# Module-level config, set before the server starts
_config: AppConfig | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _config is None:
        raise RuntimeError("Configuration not loaded; start the app through run()")
    config = _config

    store = MetricStore(ttl=config.metrics.ttl)

    # Create and start backend
    backend_type = config.backend.type
    backend_conf = config.serial.model_dump()
    backend_conf["backoff"] = config.backoff.model_dump()

    backend = create_backend(backend_type, store, backend_conf)
    logger.info("Starting backend (%s)...", backend_type)
    await backend.start()

    # Create and start frontend
    frontend_type = config.frontend.type
    frontend = create_frontend(frontend_type, store, config.metrics.model_dump())
    app.include_router(frontend.get_router())
    await frontend.start()

    logger.info(
        "DSMR exporter ready — serving %s on %s:%d",
        config.metrics.path,
        config.server.host,
        config.server.port,
    )

    yield

    # Shutdown: uvicorn has already drained in-flight requests
    await frontend.stop()
    await backend.stop()


app = FastAPI(title="DSMR Exporter", lifespan=lifespan)


@app.exception_handler(404)
async def not_found(request: Request, exc: Exception) -> PlainTextResponse:
    return PlainTextResponse("not found", status_code=404)


def run() -> None:
    """CLI entry point."""
    global _config

    parser = argparse.ArgumentParser(description="Prometheus exporter for DSMR 5 smart meters")
    parser.add_argument("device", nargs="?", help="Serial device path, e.g. /dev/ttyUSB0")
    parser.add_argument("--host", help="Address to bind to (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Port to bind to (default 3000)")
    parser.add_argument("-c", "--config", help="Path to config YAML file")
    args = parser.parse_args()

    overrides = {
        "serial.device": args.device,
        "server.host": args.host,
        "server.port": args.port,
    }
    try:
        config = load_config(args.config, overrides)
    except (OSError, ValueError, yaml.YAMLError) as err:
        parser.error(str(err))

    _config = config

    logging.basicConfig(
        level=config.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        log_level=config.log_level.lower(),
    )
