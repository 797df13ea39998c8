"""Metric instruments and reconciliation of absolute meter readings."""

import asyncio
import logging
import time

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from dsmr_exporter.exceptions import EncodingFailure
from dsmr_exporter.telegram import Telegram

logger = logging.getLogger(__name__)

METRICS_TTL = 10.0
JOULES_PER_KWH = 3_600_000.0
WATTS_PER_KW = 1000.0


class MetricStore:
    """Owns every exported instrument.

    Counters are driven from the meter's absolute readings: each update moves
    the counter up to the newly reported value. A reported value lower than
    the highest one seen so far is ignored (and logged), so exported counters
    never decrease and a repeated reading never changes anything.

    ``lock`` guards both the read loop's ``update`` and a scrape's
    ``is_fresh``/``encode``. It is a plain ``asyncio.Lock`` rather than a
    reader/writer lock: both critical sections are synchronous and never
    await, so concurrent scrapes could not overlap anyway.
    """

    def __init__(self, ttl: float = METRICS_TTL) -> None:
        self.ttl = ttl
        self.registry = CollectorRegistry(auto_describe=True)
        self.lock = asyncio.Lock()
        self.last_update: float | None = None
        # Highest absolute value reported per (counter, labels)
        self._baselines: dict[tuple[str, tuple[str, ...]], float] = {}

        r = self.registry
        self.energy_delivered_joules_total = Counter(
            "energy_delivered_joules_total",
            "The amount of energy delivered to client in joules",
            ["tariff"],
            registry=r,
        )
        self.energy_received_joules_total = Counter(
            "energy_received_joules_total",
            "The amount of energy delivered by client in joules",
            ["tariff"],
            registry=r,
        )
        self.energy_tariff = Gauge("energy_tariff", "The currently active tariff", registry=r)
        self.power_delivered_watts = Gauge(
            "power_delivered_watts",
            "The amount of power that is currently being delivered to client in Watts",
            registry=r,
        )
        self.power_received_watts = Gauge(
            "power_received_watts",
            "The amount of power that is currently being delivered by client in Watts",
            registry=r,
        )
        self.power_failures_total = Counter(
            "power_failures_total", "Number of power failures in any phase", registry=r
        )
        self.power_long_failures_total = Counter(
            "power_long_failures_total", "Number of long power failures in any phase", registry=r
        )
        self.phase_voltage_sags_total = Counter(
            "phase_voltage_sags_total",
            "Number of voltage sags in specified phase",
            ["phase"],
            registry=r,
        )
        self.phase_voltage_swells_total = Counter(
            "phase_voltage_swells_total",
            "Number of voltage swells in specified phase",
            ["phase"],
            registry=r,
        )
        self.phase_voltage_volts = Gauge(
            "phase_voltage_volts",
            "Instantaneous voltage in specified phase in Volts",
            ["phase"],
            registry=r,
        )
        self.phase_current_amperes = Gauge(
            "phase_current_amperes",
            "Instantaneous current in specified phase in Ampères",
            ["phase"],
            registry=r,
        )
        self.phase_active_power_positive_watts = Gauge(
            "phase_active_power_positive_watts",
            "Instantaneous active power (+P) in specified phase in Watts",
            ["phase"],
            registry=r,
        )
        self.phase_active_power_negative_watts = Gauge(
            "phase_active_power_negative_watts",
            "Instantaneous active power (-P) in specified phase in Watts",
            ["phase"],
            registry=r,
        )
        self.gas_delivered_cubic_meters_total = Counter(
            "gas_delivered_cubic_meters_total",
            "Amount of natural gas delivered to client in cubic meters",
            registry=r,
        )

    def _advance(self, counter: Counter, name: str, value: float, *labels: str) -> None:
        """Move ``counter`` up to the absolute ``value``."""
        child = counter.labels(*labels) if labels else counter
        key = (name, labels)
        baseline = self._baselines.get(key, 0.0)

        if value < baseline:
            logger.warning(
                "Ignoring decrease of %s%s from %s to %s",
                name,
                list(labels) if labels else "",
                baseline,
                value,
            )
            return

        if value > baseline:
            child.inc(value - baseline)
            self._baselines[key] = value

    def update(self, telegram: Telegram) -> None:
        """Apply one decoded telegram to the instruments."""
        for i, reading in enumerate(telegram.meter_readings):
            tariff = str(i + 1)
            if reading.delivered is not None:
                self._advance(
                    self.energy_delivered_joules_total,
                    "energy_delivered_joules_total",
                    reading.delivered * JOULES_PER_KWH,
                    tariff,
                )
            if reading.received is not None:
                self._advance(
                    self.energy_received_joules_total,
                    "energy_received_joules_total",
                    reading.received * JOULES_PER_KWH,
                    tariff,
                )

        if telegram.tariff_indicator is not None:
            self.energy_tariff.set(int.from_bytes(telegram.tariff_indicator, "big"))

        if telegram.power_delivered is not None:
            self.power_delivered_watts.set(telegram.power_delivered * WATTS_PER_KW)

        if telegram.power_received is not None:
            self.power_received_watts.set(telegram.power_received * WATTS_PER_KW)

        if telegram.power_failures is not None:
            self._advance(
                self.power_failures_total, "power_failures_total", telegram.power_failures
            )

        if telegram.long_power_failures is not None:
            self._advance(
                self.power_long_failures_total,
                "power_long_failures_total",
                telegram.long_power_failures,
            )

        for i, line in enumerate(telegram.lines):
            phase = str(i + 1)
            if line.voltage_sags is not None:
                self._advance(
                    self.phase_voltage_sags_total,
                    "phase_voltage_sags_total",
                    line.voltage_sags,
                    phase,
                )
            if line.voltage_swells is not None:
                self._advance(
                    self.phase_voltage_swells_total,
                    "phase_voltage_swells_total",
                    line.voltage_swells,
                    phase,
                )
            if line.voltage is not None:
                self.phase_voltage_volts.labels(phase).set(line.voltage)
            if line.current is not None:
                self.phase_current_amperes.labels(phase).set(line.current)
            if line.active_power_plus is not None:
                self.phase_active_power_positive_watts.labels(phase).set(
                    line.active_power_plus * WATTS_PER_KW
                )
            if line.active_power_neg is not None:
                self.phase_active_power_negative_watts.labels(phase).set(
                    line.active_power_neg * WATTS_PER_KW
                )

        gas = telegram.gas_slave()
        if gas is not None and gas.meter_reading is not None:
            self._advance(
                self.gas_delivered_cubic_meters_total,
                "gas_delivered_cubic_meters_total",
                gas.meter_reading[1],
            )

        self.last_update = time.monotonic()

    def is_fresh(self) -> bool:
        """Whether the last update happened within the TTL."""
        if self.last_update is None:
            return False
        return time.monotonic() - self.last_update <= self.ttl

    def encode(self) -> str:
        """Render all instruments in the Prometheus text format."""
        try:
            return generate_latest(self.registry).decode("utf-8")
        except Exception as err:
            raise EncodingFailure(f"Failed to encode metrics: {err}") from err
