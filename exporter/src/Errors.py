"""Exception types raised by the exporter."""


class ExporterError(Exception):
    """Base exception for exporter errors."""

    pass


class OracleValidationError(ExporterError):
    """Raised when the configured oracle contract cannot be confirmed."""

    pass
