"""Telegram framing over an arbitrarily chunked serial byte stream."""

import logging

from dsmr_exporter.exceptions import ProtocolViolation
from dsmr_exporter.telegram import (
    CHECKSUM_WIDTH,
    END_MARKER,
    START_MARKER,
    Telegram,
    parse_telegram,
)

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 2048


class TelegramDecoder:
    """Extracts telegrams from a connection's receive buffer.

    ``decode`` consumes bytes from the front of the buffer it is given and is
    called repeatedly until it returns ``None``. One decoder (and one buffer)
    belongs to one connection attempt.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self._max_frame_size = max_frame_size
        self.discarded_bytes = 0

    def _discard(self, buffer: bytearray, count: int) -> None:
        if count <= 0:
            return
        del buffer[:count]
        self.discarded_bytes += count
        logger.debug("Discarded %d bytes while looking for a telegram start", count)

    def next_frame(self, buffer: bytearray) -> bytes | None:
        """Remove and return the next complete frame, zero-padded.

        Returns None when more data is needed.

        Raises:
            ProtocolViolation: more than the maximum frame size is buffered
                without a complete frame, with or without a start marker. The
                buffer can not be resynchronised; the caller has to drop the
                connection.
        """
        start = buffer.find(START_MARKER)
        if start == -1:
            if len(buffer) > self._max_frame_size:
                raise ProtocolViolation(
                    f"Received {len(buffer)} bytes without a telegram start"
                )
            return None
        self._discard(buffer, start)

        end = buffer.find(END_MARKER)
        if end == -1:
            if len(buffer) > self._max_frame_size:
                raise ProtocolViolation(
                    f"Received frame longer than {self._max_frame_size} bytes"
                )
            return None

        frame_length = end + 1 + CHECKSUM_WIDTH
        if frame_length > self._max_frame_size:
            raise ProtocolViolation(
                f"Received frame of {frame_length} bytes, max is {self._max_frame_size}"
            )
        if len(buffer) < frame_length:
            return None

        frame = bytes(buffer[:frame_length])
        del buffer[:frame_length]
        return frame.ljust(self._max_frame_size, b"\0")

    def decode(self, buffer: bytearray) -> Telegram | None:
        """Extract and parse the next telegram from ``buffer``.

        Raises:
            ProtocolViolation: see ``next_frame``.
            MalformedTelegram: the frame was consumed but failed to decode.
        """
        frame = self.next_frame(buffer)
        if frame is None:
            return None
        return parse_telegram(frame)
