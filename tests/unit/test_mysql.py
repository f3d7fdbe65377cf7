"""
Unit tests for the MySQL client (mysqldump_s3/backup/mysql.py).

subprocess.run is patched; no MySQL server is needed.
"""

import os
import subprocess
from unittest.mock import patch

import pytest

from mysqldump_s3.backup.errors import ConnectivityError, ReplicationControlError
from mysqldump_s3.backup.mysql import MySQLClient
from mysqldump_s3.config import Credentials


CREDENTIALS = Credentials(host='db.example.com', user='backup', port=3307, password='pa"ss')


def completed(stdout='', stderr='', returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestDefaultsFile:
    """Test the temporary credentials file."""

    def test_written_and_removed(self):
        with MySQLClient(CREDENTIALS) as client:
            path = client.defaults_file
            with open(path, encoding='utf-8') as handle:
                content = handle.read()

            assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)

        assert content == (
            '[client]\n'
            'user="backup"\n'
            'password="pa\\"ss"\n'
            'host=db.example.com\n'
            'port=3307\n'
        )
        assert not os.path.exists(path)
        assert client.defaults_file is None

    def test_removed_when_body_raises(self):
        client = MySQLClient(CREDENTIALS)

        with pytest.raises(RuntimeError):
            with client:
                path = client.defaults_file
                raise RuntimeError("boom")

        assert not os.path.exists(path)

    def test_open_is_idempotent(self):
        client = MySQLClient(CREDENTIALS)
        try:
            assert client.open() == client.open()
        finally:
            client.close()


class TestExecute:
    """Test statement execution."""

    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_command_line(self, mock_run):
        mock_run.return_value = completed(stdout='')

        with MySQLClient(CREDENTIALS, mysql_bin='/usr/bin/mysql') as client:
            client.execute('SELECT 1')
            defaults_file = client.defaults_file

        cmd = mock_run.call_args.args[0]
        assert cmd == [
            '/usr/bin/mysql',
            f'--defaults-file={defaults_file}',
            '--batch',
            '--skip-column-names',
            '-e',
            'SELECT 1',
        ]
        assert 'pa"ss' not in ' '.join(cmd)

    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_list_databases(self, mock_run):
        mock_run.return_value = completed(stdout='information_schema\norders\n\ncustomers\n')

        with MySQLClient(CREDENTIALS) as client:
            assert client.list_databases() == ['information_schema', 'orders', 'customers']

        assert mock_run.call_args.args[0][-1] == 'SHOW DATABASES'

    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = completed(stderr="ERROR 2003 (HY000): Can't connect", returncode=1)

        with MySQLClient(CREDENTIALS) as client:
            with pytest.raises(ConnectivityError, match="Can't connect"):
                client.list_databases()

    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_missing_client(self, mock_run):
        mock_run.side_effect = FileNotFoundError("mysql")

        with MySQLClient(CREDENTIALS) as client:
            with pytest.raises(ConnectivityError, match="Unable to run"):
                client.execute('SELECT 1')


class TestReplicationStatements:
    """Test pause and resume statements."""

    @pytest.mark.parametrize('method,statement', [
        ('pause_local', 'STOP SLAVE SQL_THREAD'),
        ('resume_local', 'START SLAVE SQL_THREAD'),
        ('pause_managed', 'call mysql.rds_stop_replication()'),
        ('resume_managed', 'call mysql.rds_start_replication()'),
    ])
    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_statements(self, mock_run, method, statement):
        mock_run.return_value = completed()

        with MySQLClient(CREDENTIALS) as client:
            getattr(client, method)()

        assert mock_run.call_args.args[0][-1] == statement

    @patch('mysqldump_s3.backup.mysql.subprocess.run')
    def test_failure_is_replication_error(self, mock_run):
        mock_run.return_value = completed(stderr="ERROR 1227: Access denied", returncode=1)

        with MySQLClient(CREDENTIALS) as client:
            with pytest.raises(ReplicationControlError, match="Access denied"):
                client.pause_local()
