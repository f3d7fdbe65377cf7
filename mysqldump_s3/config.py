import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple


class Config:
    """Process-level settings, read from the environment"""

    # Logging
    LOG_LEVEL = os.environ.get('MYSQLDUMP_S3_LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('MYSQLDUMP_S3_LOG_FILE') or None

    # External programs
    MYSQL_BIN = os.environ.get('MYSQL_BIN', 'mysql')
    MYSQLDUMP_BIN = os.environ.get('MYSQLDUMP_BIN', 'mysqldump')
    GZIP_BIN = os.environ.get('GZIP_BIN', 'gzip')

    # S3-compatible endpoint (MinIO, Wasabi, ...); None means AWS
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL') or None

    # Passphrase for password_encrypted in settings files
    PASSPHRASE = os.environ.get('MYSQLDUMP_S3_PASSPHRASE') or None


class ConfigValidationError(Exception):
    """Raised when run options are missing, malformed or contradictory."""
    pass


class ReplicationMode(Enum):
    NONE = 'none'
    SLAVE_LOCAL = 'slave'
    SLAVE_MANAGED = 'rds_slave'


# Always excluded when backing up "everything except ..."
SYSTEM_SCHEMAS = frozenset({'information_schema', 'performance_schema'})

# Settings file keys and their defaults (names follow the shell tool)
DEFAULTS: Dict[str, str] = {
    'host': '127.0.0.1',
    'port': '3306',
    'user': '',
    'password': '',
    'password_encrypted': '',
    'excluded_dbs': '',
    'included_dbs': '',
    'rotate': 'false',
    'do_monthly': '01',
    'do_weekly': '6',
    'do_latest': 'true',
    'bucket': '',
    'region': 'us-east-1',
    's3_prefix': '',
    's3_daily_prefix': 'daily',
    's3_weekly_prefix': 'weekly',
    's3_monthly_prefix': 'monthly',
    's3_latest_prefix': 'latest',
    'slave': 'false',
    'rds_slave': 'false',
    'dry_run': 'false',
    'folder_per_db': 'false',
    'schedule': '',
}

_WEEKDAY_PATTERN = re.compile(r'^[0-7]$')
_MONTHDAY_PATTERN = re.compile(r'^(0|0[0-9]|[12][0-9]|3[01])$')
_DATABASE_NAME_PATTERN = re.compile(r'^[^\s,/]+$')
_TRUE_VALUES = {'true', '1', 'yes', 'on'}
_FALSE_VALUES = {'false', '0', 'no', 'off', ''}


@dataclass(frozen=True)
class Credentials:
    """MySQL connection parameters. The password is kept out of repr()."""

    host: str
    user: str
    port: int = 3306
    password: str = field(default='', repr=False)


@dataclass(frozen=True)
class BackupRunConfig:
    """
    Immutable options for a single backup run.

    Validation happens at construction so an invalid combination never
    reaches a MySQL or S3 call.
    """

    credentials: Credentials
    bucket: str
    included_dbs: Tuple[str, ...] = ()
    excluded_dbs: Tuple[str, ...] = ()
    rotate: bool = False
    monthly_day: int = 1
    weekly_day: int = 6
    latest_enabled: bool = True
    folder_per_db: bool = False
    prefix: str = ''
    region: str = 'us-east-1'
    replication_mode: ReplicationMode = ReplicationMode.NONE
    dry_run: bool = False
    daily_prefix: str = 'daily'
    weekly_prefix: str = 'weekly'
    monthly_prefix: str = 'monthly'
    latest_prefix: str = 'latest'
    schedule: Optional[str] = None

    def __post_init__(self):
        if not self.credentials.host:
            raise ConfigValidationError("host is required")
        if not self.credentials.user:
            raise ConfigValidationError("username is required")
        if not self.bucket:
            raise ConfigValidationError("bucket is required")
        if self.included_dbs and self.excluded_dbs:
            raise ConfigValidationError("specifying included *and* excluded databases is not supported")
        if not 0 <= self.weekly_day <= 7:
            raise ConfigValidationError(f"invalid weekday: {self.weekly_day}")
        if not 0 <= self.monthly_day <= 31:
            raise ConfigValidationError(f"invalid month day: {self.monthly_day}")
        if not isinstance(self.replication_mode, ReplicationMode):
            raise ConfigValidationError(f"invalid replication mode: {self.replication_mode!r}")

        for name in self.included_dbs + self.excluded_dbs:
            validate_database_name(name)


def validate_database_name(name: str) -> str:
    if not _DATABASE_NAME_PATTERN.match(name or ''):
        raise ConfigValidationError(f"invalid database name: {name!r}")
    return name


def parse_database_list(value: str) -> Tuple[str, ...]:
    """
    Split a comma-delimited database list.

    Empty entries are dropped and duplicates removed, keeping the first
    occurrence so the user's order is preserved.
    """
    names = []
    for raw in (value or '').split(','):
        name = raw.strip()
        if name and name not in names:
            names.append(validate_database_name(name))
    return tuple(names)


def parse_bool(key: str, value: str) -> bool:
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigValidationError(f"invalid boolean for {key}: {value!r}")


def load_settings_file(path) -> Dict[str, str]:
    """
    Read a ``key=value`` settings file.

    Accepts comments, blank lines, an optional ``export`` prefix and single
    or double quotes around values.

    Args:
        path: Path to the settings file

    Returns:
        Dict of setting name to raw string value

    Raises:
        ConfigValidationError: If the file is missing, unreadable or has
            unknown keys
    """
    settings_path = Path(path).expanduser()

    if not settings_path.is_file():
        raise ConfigValidationError(f"config file '{path}' does not exist")

    try:
        content = settings_path.read_text(encoding='utf-8')
    except OSError as e:
        raise ConfigValidationError(f"unable to access config file '{path}': {e}") from e

    values = {}
    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].strip()
        if '=' not in line:
            raise ConfigValidationError(f"{path}:{line_number}: expected key=value")

        key, value = line.split('=', 1)
        key = key.strip()
        value = _strip_inline_comment(value.strip())

        if key not in DEFAULTS:
            raise ConfigValidationError(f"{path}:{line_number}: unknown setting '{key}'")

        values[key] = value

    return values


def _strip_inline_comment(value: str) -> str:
    if value[:1] in ('"', "'"):
        quote = value[0]
        end = value.find(quote, 1)
        if end != -1:
            return value[1:end]
        return value[1:]
    return re.split(r'\s+#', value, maxsplit=1)[0].strip()


def build_run_config(settings: Optional[Dict[str, str]] = None, overrides: Optional[Dict[str, str]] = None) -> BackupRunConfig:
    """
    Build a validated BackupRunConfig from layered string settings.

    Precedence is defaults < settings (from a file) < overrides (explicit
    command-line flags).

    Args:
        settings: Values loaded with load_settings_file()
        overrides: Values taken from command-line flags

    Returns:
        BackupRunConfig

    Raises:
        ConfigValidationError: If any value is invalid
    """
    values = dict(DEFAULTS)
    values.update(settings or {})
    values.update(overrides or {})

    slave = parse_bool('slave', values['slave'])
    rds_slave = parse_bool('rds_slave', values['rds_slave'])
    if slave and rds_slave:
        raise ConfigValidationError("slave option must be either slave or RDS slave, not both")

    if slave:
        replication_mode = ReplicationMode.SLAVE_LOCAL
    elif rds_slave:
        replication_mode = ReplicationMode.SLAVE_MANAGED
    else:
        replication_mode = ReplicationMode.NONE

    weekly = values['do_weekly'].strip()
    if not _WEEKDAY_PATTERN.match(weekly):
        raise ConfigValidationError("invalid weekday")

    monthly = values['do_monthly'].strip()
    if not _MONTHDAY_PATTERN.match(monthly):
        raise ConfigValidationError(f"invalid month day: {monthly}")

    try:
        port = int(values['port'])
    except ValueError as e:
        raise ConfigValidationError(f"invalid port: {values['port']!r}") from e

    credentials = Credentials(
        host=values['host'].strip(),
        user=values['user'].strip(),
        port=port,
        password=_resolve_password(values)
    )

    return BackupRunConfig(
        credentials=credentials,
        bucket=values['bucket'].strip(),
        included_dbs=parse_database_list(values['included_dbs']),
        excluded_dbs=parse_database_list(values['excluded_dbs']),
        rotate=parse_bool('rotate', values['rotate']),
        monthly_day=int(monthly),
        weekly_day=int(weekly),
        latest_enabled=parse_bool('do_latest', values['do_latest']),
        folder_per_db=parse_bool('folder_per_db', values['folder_per_db']),
        prefix=values['s3_prefix'].strip().strip('/'),
        region=values['region'].strip(),
        replication_mode=replication_mode,
        dry_run=parse_bool('dry_run', values['dry_run']),
        daily_prefix=values['s3_daily_prefix'].strip().strip('/'),
        weekly_prefix=values['s3_weekly_prefix'].strip().strip('/'),
        monthly_prefix=values['s3_monthly_prefix'].strip().strip('/'),
        latest_prefix=values['s3_latest_prefix'].strip().strip('/'),
        schedule=values['schedule'].strip() or None
    )


def _resolve_password(values: Dict[str, str]) -> str:
    password = values['password']
    encrypted = values['password_encrypted'].strip()

    if not encrypted:
        return password
    if password:
        raise ConfigValidationError("password and password_encrypted cannot both be set")
    if not Config.PASSPHRASE:
        raise ConfigValidationError("password_encrypted requires MYSQLDUMP_S3_PASSPHRASE to be set")

    from mysqldump_s3.utils.crypto import CredentialCipher, CredentialError

    try:
        return CredentialCipher(Config.PASSPHRASE).decrypt(encrypted)
    except CredentialError as e:
        raise ConfigValidationError(f"unable to decrypt password_encrypted: {e}") from e
