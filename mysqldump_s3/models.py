"""
Value objects shared by the backup run.

None of these are persisted; they are built once per run (or once per
database per run) and never mutated afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


STAMP_FORMAT = '%Y%m%dT%H%MZ'
ARTIFACT_SUFFIX = '.sql.gz'


@dataclass(frozen=True)
class ClockSnapshot:
    """
    A single UTC instant with the calendar fields the rotation rules need.

    Captured once before the database loop so every tier decision and every
    artifact key in a run refers to the same moment.
    """

    instant: datetime
    weekday: int
    day: int
    month: int
    year: int

    @classmethod
    def from_datetime(cls, instant: datetime) -> 'ClockSnapshot':
        """
        Build a snapshot from an aware UTC datetime.

        Args:
            instant: Timezone-aware datetime in UTC

        Returns:
            ClockSnapshot with ISO weekday (1=Monday..7=Sunday)

        Raises:
            ValueError: If the datetime is naive or not UTC
        """
        offset = instant.utcoffset()
        if offset is None:
            raise ValueError("ClockSnapshot requires a timezone-aware datetime")
        if offset.total_seconds() != 0:
            raise ValueError(f"ClockSnapshot requires a UTC datetime, got offset {offset}")

        return cls(
            instant=instant,
            weekday=instant.isoweekday(),
            day=instant.day,
            month=instant.month,
            year=instant.year
        )

    @property
    def stamp(self) -> str:
        """Sortable run stamp, e.g. 20240103T0415Z."""
        return self.instant.strftime(STAMP_FORMAT)


@dataclass(frozen=True)
class RotationDecision:
    """Which retention tiers receive a copy of today's daily artifact."""

    weekly: bool = False
    monthly: bool = False
    latest: bool = False


@dataclass(frozen=True)
class ArtifactKey:
    """
    Name of one database dump within a run.

    The filename is ``<database>_<YYYYMMDD>T<HHMM>Z.sql.gz``; when
    ``folder_per_db`` is set, tiers other than latest nest it under a
    folder named after the database.
    """

    database: str
    stamp: str
    folder_per_db: bool = False

    @property
    def filename(self) -> str:
        return f"{self.database}_{self.stamp}{ARTIFACT_SUFFIX}"

    @property
    def relative_path(self) -> str:
        if self.folder_per_db:
            return f"{self.database}/{self.filename}"
        return self.filename


def join_key(*parts: Optional[str]) -> str:
    """
    Join S3 key segments, skipping empty ones and stray slashes.

    Args:
        parts: Key segments (None or empty segments are ignored)

    Returns:
        Object key without leading or trailing slash
    """
    cleaned = [part.strip('/') for part in parts if part and part.strip('/')]
    return '/'.join(cleaned)


@dataclass
class DatabaseOutcome:
    """Result of backing up a single database."""

    database: str
    daily_key: str
    status: str = 'pending'
    copies: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class RunResult:
    """
    Summary of one backup run.

    ``status`` is ``'done'`` when every selected database was backed up and
    ``'failed'`` when at least one of them was not.
    """

    stamp: str
    status: str = 'running'
    dry_run: bool = False
    decision: Optional[RotationDecision] = None
    databases: List[str] = field(default_factory=list)
    outcomes: List[DatabaseOutcome] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [o.database for o in self.outcomes if o.status == 'success']

    @property
    def failed(self) -> List[str]:
        return [o.database for o in self.outcomes if o.status == 'failed']
