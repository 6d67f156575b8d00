"""Error taxonomy shared by the analytics and audit packages.

Too little data is never an exception: engines report it with the
``INSUFFICIENT_DATA`` status value.  The exceptions below are caught inside
the core and replaced by documented fallbacks, so they only reach callers
through log records.  ``ExportFailure`` is the exception: an export has no
meaningful fallback, so it is raised to the caller.
"""

from __future__ import annotations

INSUFFICIENT_DATA = "insufficient_data"


class CadenceError(Exception):
    """Base class for errors raised inside the Cadence core."""


class ComputationFailure(CadenceError):
    """Unexpected fault while computing statistics or recommendations.

    Attributes:
        component: Name of the engine or rule source that failed.
        cause:     The original exception.
    """

    def __init__(self, component: str, cause: BaseException) -> None:
        super().__init__(f"{component} failed: {cause}")
        self.component = component
        self.cause = cause


class AuditLoggingFailure(CadenceError):
    """The security logging sink could not accept an audit record."""


class ExportFailure(CadenceError):
    """A secure export could not be assembled from the user's records."""
