from abc import ABC, abstractmethod

from dsmr_exporter.metrics import MetricStore


class Backend(ABC):
    """Abstract base class for meter data sources feeding the metric store."""

    def __init__(self, store: MetricStore, config: dict) -> None:
        self._store = store

    @abstractmethod
    async def start(self) -> None:
        """Start the backend (e.g., begin reading)."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the backend and clean up resources."""
