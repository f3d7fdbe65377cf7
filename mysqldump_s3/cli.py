"""Command line interface for mysqldump-s3."""

import argparse
import getpass
import logging
import signal
import sys
from typing import Dict, List, Optional

from mysqldump_s3 import __version__, configure_logging
from mysqldump_s3.backup import Cancellation, execute_backup
from mysqldump_s3.backup.dump import DumpError
from mysqldump_s3.backup.errors import ConnectivityError, ReplicationControlError, RunTerminated
from mysqldump_s3.backup.selector import DatabaseNotFoundError
from mysqldump_s3.config import (
    BackupRunConfig,
    Config,
    ConfigValidationError,
    build_run_config,
    load_settings_file,
)
from mysqldump_s3.utils.crypto import CredentialCipher, CredentialError


logger = logging.getLogger(__name__)

TERMINATED_EXIT_CODE = 143
INTERRUPTED_EXIT_CODE = 130


def install_signal_handlers(cancellation: Cancellation):
    """
    Cancel the run on SIGTERM or SIGINT.

    The handler runs in the main thread. It cancels the shared token, which
    stops a backup running in a scheduler worker and kills its dump
    processes, then raises RunTerminated to unwind the main thread.
    """
    def handle(signum, frame):
        code = TERMINATED_EXIT_CODE if signum == signal.SIGTERM else INTERRUPTED_EXIT_CODE
        cancellation.cancel(code)
        raise RunTerminated(code)

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mysqldump-s3',
        description=(
            "Dump MySQL databases to S3 with daily/weekly/monthly/latest rotation. "
            "UTC is used when calculating day of week and month."
        ),
    )
    parser.add_argument('action', nargs='?', default='run', choices=['run', 'encrypt-password'],
                        help="'run' a backup (default) or 'encrypt-password' for a settings file.")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    parser.add_argument('-f', dest='config_file', metavar='PATH',
                        help="Settings file to use rather than specifying CLI arguments.")
    parser.add_argument('-u', dest='user', metavar='USER', help="MySQL username.")
    parser.add_argument('-p', dest='password', metavar='PWD', help="MySQL password.")
    parser.add_argument('-H', dest='host', metavar='HOST', help="MySQL host (default: 127.0.0.1).")
    parser.add_argument('-P', dest='port', metavar='PORT', help="MySQL port (default: 3306).")
    parser.add_argument('-e', dest='excluded_dbs', metavar='DB', action='append',
                        help="Database to exclude; repeatable or comma-delimited. "
                             "information_schema and performance_schema are always excluded. "
                             "Cannot be used with -i.")
    parser.add_argument('-i', dest='included_dbs', metavar='DB', action='append',
                        help="Database to include; repeatable or comma-delimited. "
                             "Only these are backed up. Cannot be used with -e.")
    parser.add_argument('-s', dest='slave', action='store_const', const='true',
                        help="This is a replica; pause the SQL thread during the backup.")
    parser.add_argument('-S', dest='rds_slave', action='store_const', const='true',
                        help="This is an RDS read replica; stop replication during the backup.")
    parser.add_argument('-b', dest='bucket', metavar='BKT', help="S3 bucket name.")
    parser.add_argument('-d', dest='s3_prefix', metavar='DIR',
                        help="S3 prefix (daily/weekly/monthly are appended if rotation is enabled).")
    parser.add_argument('-F', dest='folder_per_db', action='store_const', const='true',
                        help="Put each database in its own S3 folder.")
    parser.add_argument('-R', dest='region', metavar='RGN', help="AWS region (default: us-east-1).")
    parser.add_argument('-r', dest='rotate', action='store_const', const='true',
                        help="Enable weekly/monthly/latest rotation (copies).")
    parser.add_argument('-m', dest='do_monthly', metavar='INT',
                        help="Day of month for the monthly copy (01 to 31, 0 disables; default: 01).")
    parser.add_argument('-w', dest='do_weekly', metavar='INT',
                        help="Day of week for the weekly copy (1-7, 1 is Monday, 0 disables; default: 6).")
    parser.add_argument('-l', dest='do_latest', action='store_const', const='false',
                        help="Do not keep a copy under the latest prefix.")
    parser.add_argument('-D', dest='dry_run', action='store_const', const='true',
                        help="Dry run: print commands only, do not pause replication or back up.")
    parser.add_argument('--schedule', metavar='CRON',
                        help="Run periodically on this crontab schedule (UTC) instead of once.")

    parser.add_argument('-v', '--verbose', action='count', default=0, help="Increase logging verbosity.")
    parser.add_argument('--log-file', metavar='PATH', help="Also log to this file (rotated at 10MB).")
    parser.add_argument('--stdin', action='store_true',
                        help="encrypt-password: read the password from STDIN.")
    return parser


def collect_overrides(args: argparse.Namespace) -> Dict[str, str]:
    """Settings given explicitly on the command line."""
    overrides = {}
    for key in ('user', 'password', 'host', 'port', 'slave', 'rds_slave', 'bucket', 's3_prefix',
                'folder_per_db', 'region', 'rotate', 'do_monthly', 'do_weekly', 'do_latest',
                'dry_run', 'schedule'):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value

    for key in ('excluded_dbs', 'included_dbs'):
        values: Optional[List[str]] = getattr(args, key)
        if values:
            overrides[key] = ','.join(values)

    return overrides


def _error(message) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def run_backup(config: BackupRunConfig, cancellation: Optional[Cancellation] = None) -> int:
    """
    Run one backup and map the outcome to an exit status.
    """
    try:
        result = execute_backup(config, cancellation=cancellation)
    except ReplicationControlError as e:
        logger.critical(f"Replication control failed: {e}")
        return _error(e)
    except (ConfigValidationError, DatabaseNotFoundError, ConnectivityError, DumpError) as e:
        return _error(e)
    except RunTerminated as e:
        logger.warning("Backup terminated by signal")
        return e.code
    except KeyboardInterrupt:
        logger.warning("Backup interrupted")
        return INTERRUPTED_EXIT_CODE

    if result.status == 'failed':
        return _error(f"backup failed for: {', '.join(result.failed)}")
    return 0


def encrypt_password(args: argparse.Namespace) -> int:
    """Print an encrypted password for the password_encrypted setting."""
    if not Config.PASSPHRASE:
        return _error("MYSQLDUMP_S3_PASSPHRASE must be set to encrypt a password")

    if args.stdin:
        password = sys.stdin.readline().rstrip('\n')
    else:
        password = getpass.getpass('MySQL password: ')
        if password != getpass.getpass('Repeat password: '):
            return _error("passwords do not match")

    if not password:
        return _error("password must not be empty")

    try:
        token = CredentialCipher(Config.PASSPHRASE).encrypt(password)
    except CredentialError as e:
        return _error(e)

    print(f"password_encrypted={token}")
    return 0


def _log_level(verbose: int) -> str:
    if verbose >= 1:
        return 'DEBUG'
    return Config.LOG_LEVEL


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(_log_level(args.verbose), args.log_file or Config.LOG_FILE)

    if args.action == 'encrypt-password':
        return encrypt_password(args)

    try:
        settings = load_settings_file(args.config_file) if args.config_file else {}
        config = build_run_config(settings, collect_overrides(args))
    except ConfigValidationError as e:
        return _error(e)

    cancellation = Cancellation()
    install_signal_handlers(cancellation)

    if config.schedule:
        from mysqldump_s3.scheduler import init_scheduler, start_scheduler

        try:
            init_scheduler(lambda: execute_backup(config, cancellation=cancellation), config.schedule)
        except ConfigValidationError as e:
            return _error(e)

        logger.info(f"Running backups on schedule '{config.schedule}' (UTC)")
        start_scheduler()
        return cancellation.exit_code or 0

    return run_backup(config, cancellation)


if __name__ == '__main__':
    raise SystemExit(main())
