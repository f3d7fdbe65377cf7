"""
Shared pytest fixtures for mysqldump-s3 tests.

This module provides fixtures for:
- Run configuration factories
- Clock snapshots
- Collaborator doubles (MySQL, dump pipeline)
- Mock S3 using moto
"""

import gzip
import io
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
import boto3
from moto import mock_aws

from mysqldump_s3.backup.dump import DumpError
from mysqldump_s3.backup.errors import ReplicationControlError
from mysqldump_s3.backup.storage import S3Storage
from mysqldump_s3.config import BackupRunConfig, Credentials
from mysqldump_s3.models import ClockSnapshot


class FakeMySQL:
    """
    Records every call made to it.

    ``calls`` holds method names in call order, so tests can check that
    replication was paused before any dump and resumed exactly once.
    """

    def __init__(self, databases=None, calls=None, fail_on=None):
        self.databases = list(databases or [])
        self.calls = calls if calls is not None else []
        self.fail_on = set(fail_on or [])

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise ReplicationControlError(f"{name} failed")

    def list_databases(self):
        self.calls.append('list_databases')
        return list(self.databases)

    def pause_local(self):
        self._record('pause_local')

    def resume_local(self):
        self._record('resume_local')

    def pause_managed(self):
        self._record('pause_managed')

    def resume_managed(self):
        self._record('resume_managed')


class FakeDumpPipeline:
    """
    Yields an in-memory gzip stream per database.

    Databases in ``failing`` raise DumpError before any data is produced;
    databases in ``truncated`` yield partial data and raise DumpError once
    the caller has read it; databases in ``interrupted`` raise
    KeyboardInterrupt. Databases in ``cancelled_on`` cancel ``cancellation``
    and then fail the way a killed mysqldump does.
    """

    def __init__(self, calls=None, failing=None, truncated=None, interrupted=None,
                 cancelled_on=None, cancellation=None):
        self.calls = calls if calls is not None else []
        self.failing = set(failing or [])
        self.truncated = set(truncated or [])
        self.interrupted = set(interrupted or [])
        self.cancelled_on = set(cancelled_on or [])
        self.cancellation = cancellation

    def dump_command(self, database):
        return ['mysqldump', '--defaults-file=/tmp/mysqldump-s3.test.cnf', '--single-transaction', database]

    def replay_command(self, database, credentials):
        return ['mysqldump', f'--host={credentials.host}', f'--port={credentials.port}',
                f'--user={credentials.user}', '-p', '--single-transaction', database]

    def compress_command(self):
        return ['gzip', '-c']

    @contextmanager
    def open_stream(self, database):
        self.calls.append(f'dump:{database}')
        if database in self.interrupted:
            raise KeyboardInterrupt()
        if database in self.cancelled_on:
            self.cancellation.cancel(143)
            raise DumpError(f"mysqldump of {database} failed (exit status -9): ")
        if database in self.failing:
            raise DumpError(f"mysqldump of {database} failed (exit status 2): Access denied")
        if database in self.truncated:
            yield io.BytesIO(b"partial")
            raise DumpError(f"mysqldump of {database} failed (exit status 2): Lost connection")
        yield io.BytesIO(gzip.compress(f"-- dump of {database}\n".encode()))


@pytest.fixture
def make_config():
    """
    Factory for BackupRunConfig with test credentials and bucket.

    Keyword arguments override the defaults.
    """
    def _make(**overrides):
        values = {
            'credentials': Credentials(host='db.example.com', user='backup', password='s3cret'),
            'bucket': 'test-bucket',
        }
        values.update(overrides)
        return BackupRunConfig(**values)

    return _make


@pytest.fixture
def saturday_first():
    """Saturday 1 January 2022, 03:30 UTC (weekday 6, day 1)."""
    return ClockSnapshot.from_datetime(datetime(2022, 1, 1, 3, 30, tzinfo=timezone.utc))


@pytest.fixture
def tuesday():
    """Tuesday 3 January 2023, 04:15 UTC: no weekly or monthly copy by default."""
    return ClockSnapshot.from_datetime(datetime(2023, 1, 3, 4, 15, tzinfo=timezone.utc))


@pytest.fixture
def calls():
    """Shared call log for collaborator doubles."""
    return []


@pytest.fixture
def make_mysql(calls):
    """Factory for FakeMySQL sharing the ``calls`` log."""
    def _make(databases, fail_on=None):
        return FakeMySQL(databases=databases, calls=calls, fail_on=fail_on)

    return _make


@pytest.fixture
def make_dump(calls):
    """Factory for FakeDumpPipeline sharing the ``calls`` log."""
    def _make(**kwargs):
        return FakeDumpPipeline(calls=calls, **kwargs)

    return _make


@pytest.fixture
def fake_mysql(make_mysql):
    return make_mysql(['information_schema', 'orders', 'customers', 'performance_schema'])


@pytest.fixture
def fake_dump(make_dump):
    return make_dump()


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    """S3Storage bound to the moto 'test-bucket'."""
    return S3Storage(
        bucket_name='test-bucket',
        region='us-east-1',
        access_key='test_access_key',
        secret_key='test_secret_key'
    )
