"""
Export Errors

Exception hierarchy shared by the extract, transform, load and finalize steps.
"""


class ExportError(Exception):
    """Base class for all export failures."""


class ConfigurationError(ExportError):
    """Required configuration is missing or invalid."""


class ValidationError(ExportError):
    """Input could not be validated (e.g. a malformed month identifier)."""


class UpstreamError(ExportError):
    """A Zendesk API call failed."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EnrichmentError(ExportError):
    """Requester or comment lookup failed for a single ticket."""

    def __init__(self, record_id, message):
        super().__init__(f"ticket {record_id}: {message}")
        self.record_id = record_id


class PersistenceError(ExportError):
    """A write to the export store failed."""


class FinalizationError(ExportError):
    """Report creation, sharing or notification failed."""


class ExportLockedError(ExportError):
    """Another worker is already exporting the same window."""
