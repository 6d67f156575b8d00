"""Logging setup for the Cadence analytics core.

Diagnostic records go through ordinary module loggers
(``cadence.analytics.*``, ``cadence.audit.*``).  Security records go to the
``cadence.security`` channel and carry their structured payload on the
``audit`` attribute of the log record, which ``SecurityLogFormatter`` appends
as JSON.
"""

from __future__ import annotations

import json
import logging
import sys

from src.config import Settings, get_settings

SECURITY_LOGGER_NAME = "cadence.security"

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SecurityLogFormatter(logging.Formatter):
    """Append the ``audit`` payload of a record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        payload = getattr(record, "audit", None)
        if not payload:
            return base
        return f"{base} {json.dumps(payload, sort_keys=True, default=str)}"


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """Configure root logging and the security channel.

    Safe to call more than once; the security handler is only attached the
    first time.

    Args:
        settings: Optional settings override.

    Returns:
        The ``cadence`` package logger.
    """
    s = settings or get_settings()
    level = logging.DEBUG if s.debug else getattr(logging, s.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stdout,
    )

    security = logging.getLogger(SECURITY_LOGGER_NAME)
    if not any(getattr(h, "_cadence_security", False) for h in security.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(SecurityLogFormatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        handler._cadence_security = True  # type: ignore[attr-defined]
        security.addHandler(handler)
        security.propagate = False

    logger = logging.getLogger("cadence")
    logger.info("Logging configured for %s v%s [%s]", s.app_name, s.app_version, s.environment)
    return logger
