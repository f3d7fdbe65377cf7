"""
Backup module for mysqldump-s3.

This module handles the core backup functionality including:
- Retention tier decisions (weekly, monthly, latest)
- Replication pause/resume around a run
- Database selection
- Streaming dumps and S3 storage
- Execution orchestration
"""

from .cancel import Cancellation
from .clock import ClockSource
from .dump import DumpError, DumpPipeline
from .errors import ConnectivityError, ReplicationControlError, RunTerminated
from .executor import BackupOrchestrator, execute_backup
from .mysql import MySQLClient
from .replication import PauseState, ReplicationGuard
from .retention import decide, last_day_of_month
from .selector import DatabaseNotFoundError, select_databases
from .storage import S3Storage, StorageError

__all__ = [
    'BackupOrchestrator',
    'Cancellation',
    'ClockSource',
    'ConnectivityError',
    'DatabaseNotFoundError',
    'DumpError',
    'DumpPipeline',
    'MySQLClient',
    'PauseState',
    'ReplicationControlError',
    'ReplicationGuard',
    'RunTerminated',
    'S3Storage',
    'StorageError',
    'decide',
    'execute_backup',
    'last_day_of_month',
    'select_databases'
]
