"""Abstract base class for metric exposition frontends."""

from abc import ABC, abstractmethod

from fastapi import APIRouter

from dsmr_exporter.metrics import MetricStore


class Frontend(ABC):
    """A frontend exposes the metric store over a specific protocol/API."""

    def __init__(self, store: MetricStore, config: dict) -> None:
        self._store = store

    @abstractmethod
    def get_router(self) -> APIRouter:
        """Return the APIRouter with this frontend's HTTP endpoints."""

    async def start(self) -> None:
        """Start frontend services."""

    async def stop(self) -> None:
        """Stop frontend services."""
