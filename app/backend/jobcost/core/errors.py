"""Exceptions raised by the report engine."""


class ReportEngineError(Exception):
    """Base class for report engine failures."""


class ConfigurationError(ReportEngineError):
    """Organization configuration needed for a rebuild is missing or invalid."""


class AggregateNotFoundError(ReportEngineError):
    """A report aggregate referenced by id or key does not exist."""
