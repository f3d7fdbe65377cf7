"""
UTC clock used to stamp a backup run.
"""

from datetime import datetime, timezone

from mysqldump_s3.models import ClockSnapshot


class ClockSource:
    """Supplies the current UTC instant as a ClockSnapshot."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def snapshot(self) -> ClockSnapshot:
        """
        Capture the current instant.

        Seconds and microseconds are kept on the instant but the run stamp
        only has minute resolution.
        """
        return ClockSnapshot.from_datetime(self.now())
