from dsmr_exporter.backends.base import Backend
from dsmr_exporter.backends.serial_port import SerialBackend
from dsmr_exporter.metrics import MetricStore

_BACKENDS: dict[str, type[Backend]] = {
    "serial": SerialBackend,
}


def create_backend(backend_type: str, store: MetricStore, config: dict) -> Backend:
    """Create a backend instance by type name."""
    cls = _BACKENDS.get(backend_type)
    if cls is None:
        raise ValueError(
            f"Unknown backend type: {backend_type!r}. Available: {', '.join(_BACKENDS)}"
        )
    return cls(store, config)
