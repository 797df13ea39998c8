import asyncio
import logging
import random
from dataclasses import dataclass, field

import serial_asyncio

from dsmr_exporter.backends.base import Backend
from dsmr_exporter.exceptions import ConnectionFailure, MalformedTelegram, ProtocolViolation
from dsmr_exporter.framing import TelegramDecoder
from dsmr_exporter.metrics import MetricStore
from dsmr_exporter.telegram import Telegram

logger = logging.getLogger(__name__)

READ_SIZE = 1024


@dataclass
class ExponentialBackoff:
    """Retry delay policy: grows by ``multiplier`` up to ``max_interval``, forever."""

    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 5.0
    randomization_factor: float = 0.0
    _current: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._current = self.initial_interval

    def reset(self) -> None:
        self._current = self.initial_interval

    def next_interval(self) -> float:
        """Return the next delay in seconds and grow the interval."""
        interval = self._current
        if self.randomization_factor:
            delta = self.randomization_factor * interval
            interval = random.uniform(interval - delta, interval + delta)
        self._current = min(self._current * self.multiplier, self.max_interval)
        return min(interval, self.max_interval)


class SerialBackend(Backend):
    """Backend that reads DSMR telegrams from a serial port (P1 port).

    A single supervisor task opens the port, decodes telegrams into the
    metric store and reopens the port with exponential backoff whenever it
    can not be opened, stops delivering data or breaks framing.
    """

    def __init__(self, store: MetricStore, config: dict) -> None:
        super().__init__(store, config)
        self._device: str = config["device"]
        self._baudrate: int = config.get("baudrate", 115200)
        self._backoff = ExponentialBackoff(**config.get("backoff", {}))
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._supervise())
        logger.info(
            "Serial backend started — reading %s at %d baud", self._device, self._baudrate
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Serial backend stopped")

    async def _wait(self) -> None:
        delay = self._backoff.next_interval()
        logger.info("Reopening serial port in %.2fs", delay)
        await asyncio.sleep(delay)

    async def _supervise(self) -> None:
        """Open, read and reopen the port until cancelled."""
        while True:
            logger.info("Opening serial port %s", self._device)
            try:
                reader, writer = await serial_asyncio.open_serial_connection(
                    url=self._device, baudrate=self._baudrate
                )
            except OSError as err:
                logger.warning("Failed to open serial port %s: %s", self._device, err)
                await self._wait()
                continue
            except Exception:
                logger.exception("Unexpected error opening serial port %s", self._device)
                await self._wait()
                continue

            logger.info("Serial port %s open", self._device)
            try:
                await self._read_loop(reader)
            except (ConnectionFailure, ProtocolViolation, OSError) as err:
                logger.warning("Serial connection to %s lost: %s", self._device, err)
            except Exception:
                logger.exception("Unexpected error reading serial port %s", self._device)
            finally:
                writer.close()

            await self._wait()

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        """Decode telegrams from ``reader`` until the stream fails."""
        buffer = bytearray()
        decoder = TelegramDecoder()

        while True:
            chunk = await reader.read(READ_SIZE)
            if not chunk:
                raise ConnectionFailure("serial read stream ended")
            buffer += chunk

            while True:
                try:
                    telegram = decoder.decode(buffer)
                except MalformedTelegram as err:
                    logger.warning("Error reading frame: %s", err)
                    continue
                if telegram is None:
                    break
                await self._apply(telegram)

    async def _apply(self, telegram: Telegram) -> None:
        logger.debug("Telegram received: %s", telegram)
        async with self._store.lock:
            self._store.update(telegram)
        self._backoff.reset()
