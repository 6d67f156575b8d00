"""Secure export of a user's logged cycle history.

An export is a snapshot of the user's logged (non-predicted) cycles, tagged
with its data classification and the requested encryption level.  When
``anonymize`` is set the user id is replaced by ``anonymous_`` plus the
first eight hex digits of its MD5 digest and per-cycle ids are dropped.
Serialization into the requested format belongs to the caller; the export
only carries the suggested file name.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Sequence

from src.analytics.prediction import ForecastedCycle
from src.analytics.statistics import actual_cycles
from src.models.tracking import CycleRecord

EXPORT_FORMATS = ("json", "csv", "pdf")
DATA_CLASSIFICATION = "health_sensitive"
EXPORT_DATA_TYPE = "cycles"

_FILENAMES = {
    "csv": "period_data_{day}.csv",
    "pdf": "period_report_{day}.pdf",
}


def anonymize_user_id(user_id: str) -> str:
    digest = hashlib.md5(user_id.encode("utf-8")).hexdigest()
    return f"anonymous_{digest[:8]}"


@dataclass(frozen=True)
class ExportOptions:
    """What to export and how.

    Attributes:
        export_format:       'json', 'csv' or 'pdf'.
        start:               Earliest cycle start to include (inclusive).
        end:                 Latest cycle start to include (inclusive).
        include_predictions: Attach a forecast of the next cycles.
        anonymize:           Replace the user id and drop cycle ids.
        encryption_level:    Passed through to the export metadata.

    Raises:
        ValueError: On an unknown format or a start after the end.
    """

    export_format: str = "json"
    start: date | None = None
    end: date | None = None
    include_predictions: bool = False
    anonymize: bool = False
    encryption_level: str = "standard"

    def __post_init__(self) -> None:
        if self.export_format not in EXPORT_FORMATS:
            raise ValueError(
                f"export_format must be one of {EXPORT_FORMATS}, got {self.export_format!r}"
            )
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start ({self.start}) is after end ({self.end})")

    def in_range(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        return self.end is None or day <= self.end


@dataclass
class ExportedCycle:
    """One cycle as it appears in an export.

    ``cycle_length`` is the number of days until the next logged start; it
    is None for the most recent cycle.
    """

    id: str | None
    start_date: date
    end_date: date | None
    cycle_length: int | None
    flow_intensity: str | None


@dataclass
class SecureExport:
    user_id: str
    export_format: str
    export_date: datetime
    data_classification: str
    encryption_level: str
    cycles: list[ExportedCycle] = field(default_factory=list)
    predictions: list[ForecastedCycle] | None = None

    @property
    def filename(self) -> str | None:
        """Suggested file name for csv and pdf exports."""
        template = _FILENAMES.get(self.export_format)
        if template is None:
            return None
        return template.format(day=self.export_date.date().isoformat())


def build_export(
    user_id: str,
    records: Sequence[CycleRecord],
    options: ExportOptions,
    predictions: list[ForecastedCycle] | None = None,
    exported_at: datetime | None = None,
) -> SecureExport:
    """Assemble an export from the user's records.

    Args:
        user_id:     Owner of the records.
        records:     Cycle records in any order; they may extend past
                     ``options.end`` so the last cycle in range has a length.
        options:     Export options.
        predictions: Forecast to attach; only used with ``include_predictions``.
        exported_at: Timestamp override (defaults to now, UTC).

    Returns:
        SecureExport with cycles newest first.
    """
    logged = actual_cycles(records)
    cycles: list[ExportedCycle] = []
    for i, record in enumerate(logged):
        if not options.in_range(record.start_date):
            continue
        length = (logged[i - 1].start_date - record.start_date).days if i > 0 else None
        cycles.append(
            ExportedCycle(
                id=None if options.anonymize else record.id,
                start_date=record.start_date,
                end_date=record.end_date,
                cycle_length=length,
                flow_intensity=record.flow_intensity.value if record.flow_intensity else None,
            )
        )

    return SecureExport(
        user_id=anonymize_user_id(user_id) if options.anonymize else user_id,
        export_format=options.export_format,
        export_date=exported_at or datetime.now(timezone.utc),
        data_classification=DATA_CLASSIFICATION,
        encryption_level=options.encryption_level,
        cycles=cycles,
        predictions=list(predictions or []) if options.include_predictions else None,
    )
