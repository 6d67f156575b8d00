"""Health-data access auditing for Cadence.

Modules:
    auditor — AccessAuditor (rolling-window anomaly detection, escalation,
              access statistics), hash_identifier(), sanitize_context()
"""

from src.audit.auditor import (
    AccessAuditor,
    AuditVerdict,
    hash_identifier,
    sanitize_context,
)

__all__ = [
    "AccessAuditor",
    "AuditVerdict",
    "hash_identifier",
    "sanitize_context",
]
