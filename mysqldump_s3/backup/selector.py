"""
Resolution of the databases a run backs up.
"""

import logging
from typing import Callable, List

from mysqldump_s3.config import SYSTEM_SCHEMAS


logger = logging.getLogger(__name__)


class DatabaseNotFoundError(Exception):
    """Raised when an included database does not exist on the server."""

    def __init__(self, database: str):
        super().__init__(f"database {database} not found")
        self.database = database


def select_databases(config, list_databases: Callable[[], List[str]]) -> List[str]:
    """
    Resolve the ordered list of databases to back up.

    With an include list, every named database must exist and the user's
    order is kept. Otherwise every listed database is returned in server
    order, minus the system schemas and the configured exclusions.

    Args:
        config: BackupRunConfig
        list_databases: Callable returning the server's databases

    Returns:
        Database names to back up

    Raises:
        DatabaseNotFoundError: If an included database is missing
        ConnectivityError: If the listing fails
    """
    available = list_databases()

    if config.included_dbs:
        existing = set(available)
        for database in config.included_dbs:
            if database not in existing:
                raise DatabaseNotFoundError(database)
        selected = list(config.included_dbs)
    else:
        skipped = SYSTEM_SCHEMAS | set(config.excluded_dbs)
        selected = [database for database in available if database not in skipped]

    logger.info(f"Selected {len(selected)} database(s): {', '.join(selected) or '(none)'}")
    return selected
