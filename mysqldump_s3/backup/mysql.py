"""
MySQL administration through the ``mysql`` command-line client.

Credentials are written to a private temporary defaults-file which is passed
with ``--defaults-file`` to every ``mysql`` and ``mysqldump`` invocation, so
the password never appears on a command line or in the log.
"""

import logging
import os
import subprocess
import tempfile
from typing import List, Optional

from mysqldump_s3.config import Config, Credentials
from .errors import ConnectivityError, ReplicationControlError


logger = logging.getLogger(__name__)

# Replication statements
STOP_SLAVE = 'STOP SLAVE SQL_THREAD'
START_SLAVE = 'START SLAVE SQL_THREAD'
RDS_STOP_REPLICATION = 'call mysql.rds_stop_replication()'
RDS_START_REPLICATION = 'call mysql.rds_start_replication()'


def _quote_option(value: str) -> str:
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


class MySQLClient:
    """
    Runs administrative statements against a MySQL server.

    Use as a context manager: the defaults-file is created on enter and
    removed on exit.
    """

    def __init__(self, credentials: Credentials, mysql_bin: Optional[str] = None):
        """
        Initialize MySQL client.

        Args:
            credentials: Host, port, user and password to connect with
            mysql_bin: Path to the mysql client (default: Config.MYSQL_BIN)
        """
        self.credentials = credentials
        self.mysql_bin = mysql_bin or Config.MYSQL_BIN
        self.defaults_file = None

    def __enter__(self) -> 'MySQLClient':
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def open(self) -> str:
        """
        Write the temporary defaults-file.

        Returns:
            Path of the defaults-file
        """
        if self.defaults_file:
            return self.defaults_file

        fd, path = tempfile.mkstemp(prefix='mysqldump-s3.', suffix='.cnf')
        with os.fdopen(fd, 'w', encoding='utf-8') as handle:
            handle.write('[client]\n')
            handle.write(f'user={_quote_option(self.credentials.user)}\n')
            handle.write(f'password={_quote_option(self.credentials.password)}\n')
            handle.write(f'host={self.credentials.host}\n')
            handle.write(f'port={self.credentials.port}\n')

        self.defaults_file = path
        logger.debug(f"Wrote MySQL defaults-file {path}")
        return path

    def close(self):
        """Remove the defaults-file."""
        if self.defaults_file:
            try:
                os.remove(self.defaults_file)
            except FileNotFoundError:
                pass
            self.defaults_file = None

    def execute(self, statement: str) -> str:
        """
        Run one statement in batch mode.

        Args:
            statement: SQL statement to execute

        Returns:
            Raw stdout (tab separated, no column names)

        Raises:
            ConnectivityError: If the client is missing or the statement fails
        """
        defaults_file = self.open()
        cmd = [
            self.mysql_bin,
            f'--defaults-file={defaults_file}',
            '--batch',
            '--skip-column-names',
            '-e',
            statement,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ConnectivityError(f"Unable to run {self.mysql_bin}: {e}") from e

        if result.returncode != 0:
            message = result.stderr.strip()[:500] or f"exit status {result.returncode}"
            raise ConnectivityError(
                f"'{statement}' failed on {self.credentials.host}:{self.credentials.port}: {message}"
            )

        return result.stdout

    def list_databases(self) -> List[str]:
        """
        List databases in server order.

        Returns:
            Database names as returned by SHOW DATABASES
        """
        output = self.execute('SHOW DATABASES')
        return [line.strip() for line in output.splitlines() if line.strip()]

    def pause_local(self):
        self._replication(STOP_SLAVE)

    def resume_local(self):
        self._replication(START_SLAVE)

    def pause_managed(self):
        self._replication(RDS_STOP_REPLICATION)

    def resume_managed(self):
        self._replication(RDS_START_REPLICATION)

    def _replication(self, statement: str):
        logger.info(f"Executing '{statement}'")
        try:
            self.execute(statement)
        except ConnectivityError as e:
            raise ReplicationControlError(str(e)) from e
