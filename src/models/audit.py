"""Pydantic model for health-data access events fed to the auditor."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.models.base import CadenceBase, utc_now


class AccessEvent(CadenceBase):
    """One read of health data, as described by the request layer.

    IP address and user agent arrive already hashed; the auditor never sees
    raw values.
    """

    user_id: str
    action: str = Field(min_length=1)
    ip_hash: str
    user_agent_hash: str
    timestamp: datetime = Field(default_factory=utc_now)
