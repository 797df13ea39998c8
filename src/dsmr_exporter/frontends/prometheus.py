"""Prometheus scrape endpoint with a freshness gate."""

import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from dsmr_exporter.exceptions import EncodingFailure
from dsmr_exporter.frontends.base import Frontend
from dsmr_exporter.metrics import MetricStore

logger = logging.getLogger(__name__)


class PrometheusFrontend(Frontend):
    """Serves the metric store in the Prometheus text format.

    When no telegram has been applied within the store's TTL the endpoint
    answers with an empty body, so a scrape never reports readings from a
    meter that has gone silent.
    """

    def __init__(self, store: MetricStore, config: dict) -> None:
        super().__init__(store, config)
        self._path: str = config.get("path", "/metrics")
        self._router = self._build_router()

    def get_router(self) -> APIRouter:
        return self._router

    def _build_router(self) -> APIRouter:
        router = APIRouter()
        store = self._store

        @router.get(self._path)
        async def metrics() -> Response:
            async with store.lock:
                if not store.is_fresh():
                    return Response(content="", media_type=CONTENT_TYPE_LATEST)
                try:
                    body = store.encode()
                except EncodingFailure:
                    logger.exception("Error while encoding metrics")
                    return Response(status_code=500)
            return Response(content=body, media_type=CONTENT_TYPE_LATEST)

        return router
