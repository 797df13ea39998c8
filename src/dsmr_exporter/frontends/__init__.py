"""Frontend registry and factory."""

from dsmr_exporter.frontends.base import Frontend
from dsmr_exporter.frontends.prometheus import PrometheusFrontend
from dsmr_exporter.metrics import MetricStore

_FRONTENDS: dict[str, type[Frontend]] = {
    "prometheus": PrometheusFrontend,
}


def create_frontend(frontend_type: str, store: MetricStore, config: dict) -> Frontend:
    """Create a frontend instance by type name."""
    cls = _FRONTENDS.get(frontend_type)
    if cls is None:
        raise ValueError(
            f"Unknown frontend type: {frontend_type!r}. Available: {', '.join(_FRONTENDS)}"
        )
    return cls(store, config)
