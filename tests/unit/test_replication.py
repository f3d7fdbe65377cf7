"""
Unit tests for the replication guard (mysqldump_s3/backup/replication.py).
"""

from unittest.mock import MagicMock

import pytest

from mysqldump_s3.backup.errors import ConnectivityError, ReplicationControlError
from mysqldump_s3.backup.replication import PauseState, ReplicationGuard
from mysqldump_s3.config import ReplicationMode


class TestReplicationGuardLocal:
    """Test guard for a locally managed replica."""

    def test_pause_and_resume(self):
        control = MagicMock()

        with ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control) as guard:
            assert guard.state is PauseState.PAUSED
            control.pause_local.assert_called_once()
            control.resume_local.assert_not_called()

        control.resume_local.assert_called_once()
        control.pause_managed.assert_not_called()
        control.resume_managed.assert_not_called()
        assert guard.state is PauseState.RESUMED

    def test_resume_when_body_raises(self):
        control = MagicMock()
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        with pytest.raises(RuntimeError, match="dump exploded"):
            with guard:
                raise RuntimeError("dump exploded")

        control.resume_local.assert_called_once()
        assert guard.state is PauseState.RESUMED

    def test_resume_on_keyboard_interrupt(self):
        control = MagicMock()
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        def interrupted():
            raise KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            guard.run(interrupted)

        control.resume_local.assert_called_once()

    def test_resume_on_early_return(self):
        control = MagicMock()

        def body():
            with ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control):
                return 'early'

        assert body() == 'early'
        control.resume_local.assert_called_once()

    def test_run_returns_body_result(self):
        control = MagicMock()
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        assert guard.run(lambda: 42) == 42
        control.pause_local.assert_called_once()
        control.resume_local.assert_called_once()

    def test_resume_failure_propagates(self):
        control = MagicMock()
        control.resume_local.side_effect = ReplicationControlError("server gone away")
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        with pytest.raises(ReplicationControlError, match="server gone away"):
            with guard:
                pass

        control.resume_local.assert_called_once()
        assert guard.state is PauseState.PAUSED

    def test_resume_failure_wins_over_body_error(self):
        control = MagicMock()
        control.resume_local.side_effect = ConnectivityError("connection refused")
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        with pytest.raises(ReplicationControlError) as exc_info:
            with guard:
                raise ValueError("body failed")

        assert isinstance(exc_info.value.__context__, (ConnectivityError, ValueError))
        control.resume_local.assert_called_once()

    def test_pause_failure_skips_body_and_resume(self):
        control = MagicMock()
        control.pause_local.side_effect = ReplicationControlError("access denied")
        body = MagicMock()
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        with pytest.raises(ReplicationControlError):
            guard.run(body)

        body.assert_not_called()
        control.resume_local.assert_not_called()
        assert guard.state is PauseState.NOT_APPLICABLE

    def test_guard_cannot_be_reused(self):
        control = MagicMock()
        guard = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)

        with guard:
            pass

        with pytest.raises(RuntimeError):
            with guard:
                pass

        control.pause_local.assert_called_once()
        control.resume_local.assert_called_once()


class TestReplicationGuardManaged:
    """Test guard for an RDS read replica."""

    def test_managed_procedures(self):
        control = MagicMock()

        with ReplicationGuard(ReplicationMode.SLAVE_MANAGED, control) as guard:
            assert guard.state is PauseState.PAUSED

        control.pause_managed.assert_called_once()
        control.resume_managed.assert_called_once()
        control.pause_local.assert_not_called()
        control.resume_local.assert_not_called()

    def test_managed_resume_when_body_raises(self):
        control = MagicMock()

        with pytest.raises(OSError):
            with ReplicationGuard(ReplicationMode.SLAVE_MANAGED, control):
                raise OSError("broken pipe")

        control.resume_managed.assert_called_once()


class TestReplicationGuardNotApplicable:
    """Test guard when the server is not a replica."""

    def test_no_calls(self):
        control = MagicMock()

        with ReplicationGuard(ReplicationMode.NONE, control) as guard:
            pass

        assert control.method_calls == []
        assert guard.state is PauseState.NOT_APPLICABLE


class TestReplicationGuardDryRun:
    """Test dry-run behaviour."""

    def test_local_dry_run_only_describes(self):
        control = MagicMock()
        echo = MagicMock()

        with ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control, dry_run=True, echo=echo) as guard:
            assert guard.state is PauseState.NOT_APPLICABLE

        assert control.method_calls == []
        assert [c.args[0] for c in echo.call_args_list] == [
            "execute 'STOP SLAVE SQL_THREAD'",
            "execute 'START SLAVE SQL_THREAD'",
        ]
        assert guard.state is PauseState.NOT_APPLICABLE

    def test_managed_dry_run_only_describes(self):
        control = MagicMock()
        echo = MagicMock()

        with pytest.raises(RuntimeError):
            with ReplicationGuard(ReplicationMode.SLAVE_MANAGED, control, dry_run=True, echo=echo):
                raise RuntimeError("fails mid-run")

        assert control.method_calls == []
        assert [c.args[0] for c in echo.call_args_list] == [
            "execute 'call mysql.rds_stop_replication()'",
            "execute 'call mysql.rds_start_replication()'",
        ]

    def test_separate_guards_do_not_share_state(self):
        control = MagicMock()
        first = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control)
        second = ReplicationGuard(ReplicationMode.SLAVE_LOCAL, control, dry_run=True, echo=MagicMock())

        with first:
            pass
        with second:
            pass

        assert first.state is PauseState.RESUMED
        assert second.state is PauseState.NOT_APPLICABLE
        assert control.resume_local.call_count == 1
