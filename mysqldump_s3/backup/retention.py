"""
Retention tier rules for backup rotation.

Decides which tiers (weekly, monthly, latest) receive a copy of the daily
artifact for a given run, and which objects under the latest prefix are
stale once a new latest copy has been written.

Everything in this module is pure: no I/O and no clock access.
"""

import calendar
import re
from typing import Iterable, List

from mysqldump_s3.models import ARTIFACT_SUFFIX, ClockSnapshot, RotationDecision


def last_day_of_month(month: int, year: int) -> int:
    """
    Number of days in a month of the Gregorian calendar.

    Args:
        month: Month number (1-12)
        year: Four digit year

    Returns:
        28, 29, 30 or 31

    Raises:
        ValueError: If month is out of range
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    return calendar.monthrange(year, month)[1]


def is_weekly_day(clock: ClockSnapshot, weekly_day: int) -> bool:
    """True when weekly rotation is enabled and today is the trigger weekday."""
    return weekly_day != 0 and weekly_day == clock.weekday


def is_monthly_day(clock: ClockSnapshot, monthly_day: int) -> bool:
    """
    True when today should receive the monthly copy.

    Fires on the configured day of month. In months shorter than the
    configured day (e.g. 31 in April) it fires on the month's last day
    instead, and only on that day.
    """
    if monthly_day == 0:
        return False
    if clock.day == monthly_day:
        return True

    last_day = last_day_of_month(clock.month, clock.year)
    return clock.day == last_day and last_day < monthly_day


def decide(clock: ClockSnapshot, config) -> RotationDecision:
    """
    Compute the tier decision for a run.

    Args:
        clock: Snapshot captured at the start of the run
        config: BackupRunConfig (reads weekly_day, monthly_day, latest_enabled)

    Returns:
        RotationDecision shared by every database in the run
    """
    return RotationDecision(
        weekly=is_weekly_day(clock, config.weekly_day),
        monthly=is_monthly_day(clock, config.monthly_day),
        latest=bool(config.latest_enabled)
    )


def latest_artifact_pattern(database: str) -> 're.Pattern[str]':
    # <database>_YYYYMMDDTHHMMZ.sql.gz
    return re.compile(
        rf'{re.escape(database)}_\d{{8}}T\d{{4}}Z{re.escape(ARTIFACT_SUFFIX)}'
    )


def is_latest_artifact(database: str, name: str) -> bool:
    """
    Check whether a filename is a latest-tier artifact of ``database``.

    Args:
        database: Database name
        name: Object name relative to the latest prefix

    Returns:
        True if the whole name matches the artifact filename format
    """
    return latest_artifact_pattern(database).fullmatch(name) is not None


def stale_latest_keys(database: str, latest_dir: str, keys: Iterable[str], keep_key: str) -> List[str]:
    """
    Select the latest-tier objects of a database that should be deleted.

    Args:
        database: Database name
        latest_dir: Latest prefix without trailing slash ('' for bucket root)
        keys: Object keys found under the latest prefix
        keep_key: Key of the copy just written

    Returns:
        Keys to delete, in listing order
    """
    base = f"{latest_dir}/" if latest_dir else ''
    stale = []

    for key in keys:
        if key == keep_key or not key.startswith(base):
            continue
        if is_latest_artifact(database, key[len(base):]):
            stale.append(key)

    return stale
