"""
Streaming database dumps.

Runs ``mysqldump --single-transaction <db> | gzip -c`` and hands the
compressed stdout to the caller as a file object, so the dump can be
uploaded while it is produced without touching local disk.
"""

import logging
import subprocess
import tempfile
from contextlib import contextmanager
from typing import IO, Iterator, Optional

from mysqldump_s3.config import Config, Credentials
from .cancel import Cancellation


logger = logging.getLogger(__name__)


class DumpError(Exception):
    """Raised when mysqldump or gzip fails."""
    pass


def _terminate(process: subprocess.Popen):
    if process.poll() is None:
        process.kill()
    process.wait()


def _kill(*processes: subprocess.Popen):
    # Runs in the cancelling thread; the owning thread waits on them
    for process in processes:
        if process.returncode is None:
            process.kill()


class DumpPipeline:
    """
    Produces gzip-compressed SQL dumps as byte streams.
    """

    def __init__(self, defaults_file: str, mysqldump_bin: Optional[str] = None, gzip_bin: Optional[str] = None,
                 cancellation: Optional[Cancellation] = None):
        """
        Initialize dump pipeline.

        Args:
            defaults_file: MySQL defaults-file holding the credentials
            mysqldump_bin: Path to mysqldump (default: Config.MYSQLDUMP_BIN)
            gzip_bin: Path to gzip (default: Config.GZIP_BIN)
            cancellation: Kills the running processes when cancelled
        """
        self.defaults_file = defaults_file
        self.mysqldump_bin = mysqldump_bin or Config.MYSQLDUMP_BIN
        self.gzip_bin = gzip_bin or Config.GZIP_BIN
        self.cancellation = cancellation

    def dump_command(self, database: str) -> list:
        return [
            self.mysqldump_bin,
            f'--defaults-file={self.defaults_file}',
            '--single-transaction',
            database,
        ]

    def replay_command(self, database: str, credentials: Credentials) -> list:
        """
        Command line an operator can run by hand.

        The temporary defaults-file only exists during a run, so the
        connection is spelled out and the password is prompted for.
        """
        return [
            self.mysqldump_bin,
            f'--host={credentials.host}',
            f'--port={credentials.port}',
            f'--user={credentials.user}',
            '-p',
            '--single-transaction',
            database,
        ]

    def compress_command(self) -> list:
        return [self.gzip_bin, '-c']

    @contextmanager
    def open_stream(self, database: str) -> Iterator[IO[bytes]]:
        """
        Dump a database and yield the compressed output stream.

        Both processes are checked once the caller is done reading; a
        non-zero exit status of either one raises DumpError. If the caller
        raises while reading, or the run is cancelled, both processes are
        killed.

        Args:
            database: Database to dump

        Yields:
            Readable binary stream of gzip data

        Raises:
            DumpError: If a process cannot be started or exits non-zero
        """
        logger.debug(f"Starting dump of {database}")

        with tempfile.TemporaryFile() as dump_errors:
            try:
                dump = subprocess.Popen(
                    self.dump_command(database),
                    stdout=subprocess.PIPE,
                    stderr=dump_errors
                )
            except OSError as e:
                raise DumpError(f"Unable to run {self.mysqldump_bin}: {e}") from e

            try:
                compressor = subprocess.Popen(
                    self.compress_command(),
                    stdin=dump.stdout,
                    stdout=subprocess.PIPE
                )
            except OSError as e:
                _terminate(dump)
                raise DumpError(f"Unable to run {self.gzip_bin}: {e}") from e

            # gzip owns the read end now; lets mysqldump see SIGPIPE if gzip dies
            dump.stdout.close()

            handle = None
            if self.cancellation is not None:
                handle = self.cancellation.add_callback(lambda: _kill(compressor, dump))

            try:
                yield compressor.stdout
            except BaseException:
                _terminate(compressor)
                _terminate(dump)
                raise
            finally:
                if handle is not None:
                    self.cancellation.remove_callback(handle)

            compressor.stdout.close()
            compress_status = compressor.wait()
            dump_status = dump.wait()

            if dump_status != 0:
                dump_errors.seek(0)
                message = dump_errors.read().decode('utf-8', errors='replace').strip()[:500]
                raise DumpError(f"mysqldump of {database} failed (exit status {dump_status}): {message}")
            if compress_status != 0:
                raise DumpError(f"gzip of {database} failed (exit status {compress_status})")

        logger.debug(f"Dump of {database} finished")
