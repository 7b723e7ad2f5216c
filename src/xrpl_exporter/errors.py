"""Exception hierarchy for the exporter."""


class ExporterError(Exception):
    """Base class for all exporter errors."""


class FatalExporterError(ExporterError):
    """Unrecoverable condition; the process must exit."""


class ConfigError(FatalExporterError):
    """Invalid or missing configuration value."""


class EndpointsExhaustedError(FatalExporterError):
    """Every configured node endpoint has failed."""


class FinalityViolationError(FatalExporterError):
    """A transaction in a batch is explicitly not validated."""


class IncompleteTransactionError(FatalExporterError):
    """A transaction in a batch carries no metadata."""


class RecordTooLargeError(FatalExporterError):
    """A single record exceeds what the stream accepts."""


class NodeRequestError(ExporterError):
    """A request to a rippled node failed."""

    def __init__(self, message: str, error_code: str = None):
        super().__init__(message)
        self.error_code = error_code


class NodeNotFoundError(NodeRequestError):
    """The node does not know the requested transaction."""


class LedgerNotClosedError(NodeRequestError):
    """The node returned a ledger header that is not closed."""


class SinkError(ExporterError):
    """Publishing to the downstream stream failed."""
