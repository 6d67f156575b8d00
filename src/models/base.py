"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CadenceBase(BaseModel):
    """Base model with shared config for all Cadence record schemas.

    Records handed to the analytics core are read-only snapshots, so the
    models are frozen.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
    )
