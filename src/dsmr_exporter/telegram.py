"""DSMR 5 telegram parsing: checksum validation and OBIS field decoding."""

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from dsmr_exporter.exceptions import MalformedTelegram

START_MARKER = b"/"
END_MARKER = b"!"
# Four hex CRC digits and CRLF follow the end marker
CHECKSUM_WIDTH = 6

GAS_DEVICE_TYPE = 3

TARIFFS = 2
PHASES = 3
SLAVE_CHANNELS = 4

_OBIS_LINE = re.compile(r"^(\d+-\d+:\d+\.\d+\.\d+)((?:\([^()]*\))+)$")
_VALUE = re.compile(r"\(([^()]*)\)")
_CHECKSUM = re.compile(rb"[0-9A-Fa-f]{4}")


@dataclass
class MeterReading:
    """Cumulative energy for one tariff (kWh)."""

    delivered: float | None = None
    received: float | None = None


@dataclass
class Line:
    """Readings for a single phase."""

    voltage_sags: int | None = None
    voltage_swells: int | None = None
    voltage: float | None = None  # V
    current: float | None = None  # A
    active_power_plus: float | None = None  # kW
    active_power_neg: float | None = None  # kW


@dataclass
class Slave:
    """A sub-device (gas, water, heat) reporting through the meter."""

    device_type: int | None = None
    meter_reading: tuple[str, float] | None = None  # (timestamp, value)


@dataclass
class Telegram:
    """Decoded state of one telegram. Every field is optional."""

    header: str = ""
    version: str | None = None
    timestamp: str | None = None
    equipment_id: str | None = None
    text_message: str | None = None
    meter_readings: list[MeterReading] = field(
        default_factory=lambda: [MeterReading() for _ in range(TARIFFS)]
    )
    tariff_indicator: bytes | None = None
    power_delivered: float | None = None  # kW
    power_received: float | None = None  # kW
    power_failures: int | None = None
    long_power_failures: int | None = None
    lines: list[Line] = field(default_factory=lambda: [Line() for _ in range(PHASES)])
    slaves: list[Slave] = field(default_factory=lambda: [Slave() for _ in range(SLAVE_CHANNELS)])

    def gas_slave(self) -> Slave | None:
        """Return the first attached gas meter, if any."""
        for slave in self.slaves:
            if slave.device_type == GAS_DEVICE_TYPE:
                return slave
        return None


def crc16(data: bytes) -> int:
    """CRC-16/ARC (reflected polynomial 0xA001, initial value 0)."""
    crc = 0
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc


# ── Value decoders ───────────────────────────────────────────────────


def _float(value: str, unit: str) -> float:
    """Decode ``"001234.567*kWh"`` into a float, checking the unit."""
    number, _, found_unit = value.partition("*")
    if found_unit and found_unit != unit:
        raise MalformedTelegram(f"expected unit {unit!r}, got {found_unit!r}")
    try:
        return float(number)
    except ValueError:
        raise MalformedTelegram(f"invalid number {value!r}") from None


def _int(value: str) -> int:
    number = value.partition("*")[0]
    if not number.isdigit():
        raise MalformedTelegram(f"invalid integer {value!r}")
    return int(number)


def _octets(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise MalformedTelegram(f"invalid octet string {value!r}") from None


def _text(value: str) -> str:
    return _octets(value).decode("ascii", errors="replace")


def _tariff(value: str) -> bytes:
    octets = _octets(value)
    if len(octets) != 2:
        raise MalformedTelegram(f"tariff indicator must be 2 octets, got {value!r}")
    return octets


# ── OBIS dispatch table ──────────────────────────────────────────────

_Handler = Callable[[Telegram, list[str]], None]


def _build_handlers() -> dict[str, _Handler]:
    handlers: dict[str, _Handler] = {}

    def set_version(t: Telegram, v: list[str]) -> None:
        t.version = v[0]

    def set_timestamp(t: Telegram, v: list[str]) -> None:
        t.timestamp = v[0]

    def set_equipment_id(t: Telegram, v: list[str]) -> None:
        t.equipment_id = _text(v[0])

    def set_text_message(t: Telegram, v: list[str]) -> None:
        t.text_message = _text(v[0])

    def set_tariff(t: Telegram, v: list[str]) -> None:
        t.tariff_indicator = _tariff(v[0])

    def set_power_delivered(t: Telegram, v: list[str]) -> None:
        t.power_delivered = _float(v[0], "kW")

    def set_power_received(t: Telegram, v: list[str]) -> None:
        t.power_received = _float(v[0], "kW")

    def set_power_failures(t: Telegram, v: list[str]) -> None:
        t.power_failures = _int(v[0])

    def set_long_power_failures(t: Telegram, v: list[str]) -> None:
        t.long_power_failures = _int(v[0])

    handlers["1-3:0.2.8"] = set_version
    handlers["0-0:1.0.0"] = set_timestamp
    handlers["0-0:96.1.1"] = set_equipment_id
    handlers["0-0:96.13.0"] = set_text_message
    handlers["0-0:96.14.0"] = set_tariff
    handlers["1-0:1.7.0"] = set_power_delivered
    handlers["1-0:2.7.0"] = set_power_received
    handlers["0-0:96.7.21"] = set_power_failures
    handlers["0-0:96.7.9"] = set_long_power_failures

    for tariff in range(TARIFFS):

        def set_delivered(t: Telegram, v: list[str], i: int = tariff) -> None:
            t.meter_readings[i].delivered = _float(v[0], "kWh")

        def set_received(t: Telegram, v: list[str], i: int = tariff) -> None:
            t.meter_readings[i].received = _float(v[0], "kWh")

        handlers[f"1-0:1.8.{tariff + 1}"] = set_delivered
        handlers[f"1-0:2.8.{tariff + 1}"] = set_received

    # Phase n uses 32/52/72 for voltage codes, 31/51/71 for current,
    # 21/41/61 for +P and 22/42/62 for -P.
    for phase in range(PHASES):
        base = 20 * phase

        def set_sags(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].voltage_sags = _int(v[0])

        def set_swells(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].voltage_swells = _int(v[0])

        def set_voltage(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].voltage = _float(v[0], "V")

        def set_current(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].current = _float(v[0], "A")

        def set_plus(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].active_power_plus = _float(v[0], "kW")

        def set_neg(t: Telegram, v: list[str], i: int = phase) -> None:
            t.lines[i].active_power_neg = _float(v[0], "kW")

        handlers[f"1-0:{32 + base}.32.0"] = set_sags
        handlers[f"1-0:{32 + base}.36.0"] = set_swells
        handlers[f"1-0:{32 + base}.7.0"] = set_voltage
        handlers[f"1-0:{31 + base}.7.0"] = set_current
        handlers[f"1-0:{21 + base}.7.0"] = set_plus
        handlers[f"1-0:{22 + base}.7.0"] = set_neg

    for channel in range(SLAVE_CHANNELS):

        def set_device_type(t: Telegram, v: list[str], i: int = channel) -> None:
            t.slaves[i].device_type = _int(v[0])

        def set_reading(t: Telegram, v: list[str], i: int = channel) -> None:
            if len(v) != 2:
                raise MalformedTelegram(f"sub-device reading needs 2 values, got {len(v)}")
            t.slaves[i].meter_reading = (v[0], _float(v[1], "m3"))

        handlers[f"0-{channel + 1}:24.1.0"] = set_device_type
        handlers[f"0-{channel + 1}:24.2.1"] = set_reading

    return handlers


_HANDLERS = _build_handlers()


def verify_checksum(data: bytes) -> int:
    """Check the CRC after the end marker. Returns the offset of the end marker."""
    end = data.find(END_MARKER)
    if end == -1:
        raise MalformedTelegram("telegram has no end marker")

    checksum = data[end + 1 : end + 5]
    if not _CHECKSUM.fullmatch(checksum):
        raise MalformedTelegram(f"invalid checksum field {checksum!r}")

    expected = int(checksum, 16)
    computed = crc16(data[: end + 1])
    if expected != computed:
        raise MalformedTelegram(
            f"checksum mismatch: telegram says {expected:04X}, computed {computed:04X}"
        )
    return end


def parse_telegram(frame: bytes) -> Telegram:
    """Decode a complete (optionally zero-padded) frame into a Telegram.

    Raises:
        MalformedTelegram: on a checksum mismatch or any line that is not a
            valid OBIS object, or a known object with an invalid value.
    """
    data = bytes(frame).rstrip(b"\0")
    if not data.startswith(START_MARKER):
        raise MalformedTelegram("telegram does not start with '/'")

    end = verify_checksum(data)

    try:
        text = data[1:end].decode("ascii")
    except UnicodeDecodeError:
        raise MalformedTelegram("telegram contains non-ASCII bytes") from None

    lines = text.splitlines()
    telegram = Telegram(header=lines[0] if lines else "")

    for line in lines[1:]:
        if not line:
            continue
        match = _OBIS_LINE.match(line)
        if match is None:
            raise MalformedTelegram(f"invalid telegram line {line!r}")
        obis, raw_values = match.groups()
        handler = _HANDLERS.get(obis)
        if handler is not None:
            handler(telegram, _VALUE.findall(raw_values))

    return telegram
