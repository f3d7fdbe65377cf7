"""
Replication guard for backups taken from a replica.

Pauses the SQL thread (or the RDS-managed replication) before the databases
are dumped and resumes it when the guarded block exits, whichever way it
exits: normal return, exception, KeyboardInterrupt or a termination signal
turned into an exception by the CLI.
"""

import logging
from enum import Enum
from typing import Callable, Optional, TypeVar

from mysqldump_s3.config import ReplicationMode
from .errors import ConnectivityError, ReplicationControlError
from .mysql import RDS_START_REPLICATION, RDS_STOP_REPLICATION, START_SLAVE, STOP_SLAVE
from .protocols import ReplicationControl


logger = logging.getLogger(__name__)

T = TypeVar('T')


class PauseState(Enum):
    NOT_APPLICABLE = 'not_applicable'
    PAUSED = 'paused'
    RESUMED = 'resumed'


class ReplicationGuard:
    """
    Scoped replication pause for one backup run.

    Usage::

        with ReplicationGuard(ReplicationMode.SLAVE_LOCAL, mysql):
            ...dump databases...

    The pause state belongs to this instance; a new guard is created per
    run. In dry-run mode the collaborator is never called and the
    statements are only echoed.
    """

    def __init__(self, mode: ReplicationMode, control: ReplicationControl,
                 dry_run: bool = False, echo: Optional[Callable[[str], None]] = None):
        """
        Initialize replication guard.

        Args:
            mode: Which kind of replica this is (or NONE)
            control: Collaborator issuing the pause/resume statements
            dry_run: Only describe the statements
            echo: Sink for dry-run descriptions (default: print)
        """
        self.mode = mode
        self.control = control
        self.dry_run = dry_run
        self.echo = echo or print
        self.state = PauseState.NOT_APPLICABLE
        self._entered = False
        self._exited = False

    def __enter__(self) -> 'ReplicationGuard':
        if self._entered:
            raise RuntimeError("ReplicationGuard cannot be entered twice")
        self._entered = True
        self.pause()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self._exited:
            return False
        self._exited = True
        self.resume()
        return False

    def run(self, body: Callable[[], T]) -> T:
        """Call ``body`` with replication paused and return its result."""
        with self:
            return body()

    def pause(self):
        if self.mode is ReplicationMode.NONE:
            return

        statement = STOP_SLAVE if self.mode is ReplicationMode.SLAVE_LOCAL else RDS_STOP_REPLICATION

        if self.dry_run:
            self.echo(f"execute '{statement}'")
            return

        logger.info(f"Pausing replication ({self.mode.value})")
        try:
            if self.mode is ReplicationMode.SLAVE_LOCAL:
                self.control.pause_local()
            else:
                self.control.pause_managed()
        except ReplicationControlError:
            raise
        except ConnectivityError as e:
            raise ReplicationControlError(f"Failed to pause replication: {e}") from e

        self.state = PauseState.PAUSED

    def resume(self):
        if self.mode is ReplicationMode.NONE:
            return

        statement = START_SLAVE if self.mode is ReplicationMode.SLAVE_LOCAL else RDS_START_REPLICATION

        if self.dry_run:
            self.echo(f"execute '{statement}'")
            return

        if self.state is not PauseState.PAUSED:
            return

        logger.info(f"Resuming replication ({self.mode.value})")
        try:
            if self.mode is ReplicationMode.SLAVE_LOCAL:
                self.control.resume_local()
            else:
                self.control.resume_managed()
        except ConnectivityError as e:
            logger.critical(f"REPLICATION WAS NOT RESUMED, run '{statement}' manually: {e}")
            if isinstance(e, ReplicationControlError):
                raise
            raise ReplicationControlError(f"Failed to resume replication: {e}") from e

        self.state = PauseState.RESUMED
