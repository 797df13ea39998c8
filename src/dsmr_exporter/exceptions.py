"""Errors raised while reading telegrams and serving metrics."""


class DsmrExporterError(Exception):
    """Base class for all exporter errors."""


class ProtocolViolation(DsmrExporterError):
    """The stream broke framing rules; the connection must be reopened."""


class MalformedTelegram(DsmrExporterError):
    """A complete frame failed checksum or content decoding."""


class ConnectionFailure(DsmrExporterError):
    """The serial connection could not be opened or ended unexpectedly."""


class EncodingFailure(DsmrExporterError):
    """The metric registry could not be rendered to text."""
