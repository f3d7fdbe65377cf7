"""
Backup orchestrator - drives a complete backup run.

Workflow:
1. Decide the retention tiers for today (once per run)
2. Select the databases to back up
3. Pause replication (if this is a replica)
4. For each database: stream mysqldump | gzip to the daily key, then copy
   to the weekly/monthly/latest tiers and prune stale latest copies
5. Resume replication, whatever happened in step 4
"""

import logging
import shlex
from datetime import datetime, timezone
from typing import Callable, List, Optional

from mysqldump_s3.config import BackupRunConfig, Config
from mysqldump_s3.models import (
    ArtifactKey,
    ClockSnapshot,
    DatabaseOutcome,
    RotationDecision,
    RunResult,
    join_key,
)
from .cancel import Cancellation
from .clock import ClockSource
from .dump import DumpError, DumpPipeline
from .errors import RunTerminated
from .mysql import MySQLClient
from .protocols import DumpSource, MySQLControl, ObjectStore
from .replication import ReplicationGuard
from .retention import decide, stale_latest_keys
from .selector import select_databases
from .storage import S3Storage, StorageError


logger = logging.getLogger(__name__)

# Same wildcard the aws cli filter uses for the run stamp
STAMP_WILDCARD = '????????T????Z'


class BackupOrchestrator:
    """
    Runs one backup of the selected databases.

    Databases are processed one at a time. A dump or upload failure is
    recorded and the run moves on to the next database, except when it
    happens on the first database, which aborts the run.

    A cancelled run stops before the next database; a dump cut short by
    cancellation raises RunTerminated instead of being recorded as failed.
    """

    def __init__(self, config: BackupRunConfig, mysql: MySQLControl, dump_pipeline: DumpSource,
                 storage: ObjectStore, echo: Optional[Callable[[str], None]] = None,
                 cancellation: Optional[Cancellation] = None):
        """
        Initialize backup orchestrator.

        Args:
            config: Validated run configuration
            mysql: Database lister and replication control (MySQLClient)
            dump_pipeline: Produces compressed dump streams
            storage: Object store the artifacts are written to
            echo: Sink for dry-run command descriptions (default: print)
            cancellation: Checked before each database
        """
        self.config = config
        self.mysql = mysql
        self.dump_pipeline = dump_pipeline
        self.storage = storage
        self.echo = echo or print
        self.cancellation = cancellation or Cancellation()
        self.result = None

    def execute(self, clock: ClockSnapshot) -> RunResult:
        """
        Execute the backup run.

        Args:
            clock: Snapshot shared by every database in the run

        Returns:
            RunResult with status 'done' or 'failed'

        Raises:
            DatabaseNotFoundError: If an included database does not exist
            ConnectivityError: If listing databases or pausing fails
            ReplicationControlError: If replication could not be resumed
            DumpError, StorageError: If the first database fails
            RunTerminated: If the run was cancelled
        """
        self.result = RunResult(stamp=clock.stamp, dry_run=self.config.dry_run)

        if self.config.dry_run:
            self.echo("Dry run enabled")

        decision = decide(clock, self.config)
        self.result.decision = decision
        logger.info(
            f"Run {clock.stamp}: weekly={decision.weekly} monthly={decision.monthly} "
            f"latest={decision.latest} rotate={self.config.rotate}"
        )

        databases = select_databases(self.config, self.mysql.list_databases)
        self.result.databases = databases

        guard = ReplicationGuard(
            self.config.replication_mode,
            self.mysql,
            dry_run=self.config.dry_run,
            echo=self._describe
        )
        with guard:
            self._backup_all(databases, clock, decision)

        self.result.status = 'failed' if self.result.failed else 'done'
        logger.info(
            f"Backup complete: {len(self.result.succeeded)} succeeded, "
            f"{len(self.result.failed)} failed"
        )
        return self.result

    def _backup_all(self, databases: List[str], clock: ClockSnapshot, decision: RotationDecision):
        processed = 0

        for database in databases:
            self.cancellation.check()

            artifact = ArtifactKey(database, clock.stamp, self.config.folder_per_db)
            outcome = DatabaseOutcome(database=database, daily_key=self.daily_key(artifact))
            self.result.outcomes.append(outcome)

            try:
                self._backup_database(artifact, outcome, decision)
                outcome.status = 'success'
            except (DumpError, StorageError) as e:
                outcome.status = 'failed'
                outcome.error = str(e)
                if self.cancellation.cancelled:
                    logger.warning(f"Backup of {database} cancelled")
                    raise RunTerminated(self.cancellation.exit_code) from e
                if processed == 0:
                    logger.error(f"Backup of {database} failed, aborting run: {e}")
                    raise
                logger.error(f"Backup of {database} failed: {e}")

            processed += 1

    def _backup_database(self, artifact: ArtifactKey, outcome: DatabaseOutcome, decision: RotationDecision):
        database = artifact.database
        daily_uri = self._uri(outcome.daily_key)

        logger.info(f"Dumping {database} to {daily_uri}")
        if self.config.dry_run:
            dump_cmd = shlex.join(self.dump_pipeline.replay_command(database, self.config.credentials))
            gzip_cmd = shlex.join(self.dump_pipeline.compress_command())
            self._describe(
                f'{dump_cmd} | {gzip_cmd} | aws s3 cp - "{daily_uri}" --region "{self.config.region}"'
            )
        else:
            self._upload_dump(database, outcome.daily_key)

        if not self.config.rotate:
            return

        if decision.weekly:
            weekly_key = join_key(self.config.prefix, self.config.weekly_prefix, artifact.relative_path)
            self._copy(outcome.daily_key, weekly_key)
            outcome.copies.append(weekly_key)

        if decision.monthly:
            monthly_key = join_key(self.config.prefix, self.config.monthly_prefix, artifact.relative_path)
            self._copy(outcome.daily_key, monthly_key)
            outcome.copies.append(monthly_key)

        if decision.latest:
            latest_key = join_key(self.latest_dir, artifact.filename)
            self._copy(outcome.daily_key, latest_key)
            outcome.copies.append(latest_key)
            outcome.pruned.extend(self._prune_latest(artifact, latest_key))

    def _upload_dump(self, database: str, key: str):
        try:
            with self.dump_pipeline.open_stream(database) as stream:
                self.storage.put(key, stream)
        except DumpError:
            self._discard_partial(key)
            raise

        logger.info(f"Uploaded {database} to {self._uri(key)}")

    def _discard_partial(self, key: str):
        try:
            self.storage.delete(key)
            logger.warning(f"Deleted incomplete dump {self._uri(key)}")
        except StorageError as e:
            logger.warning(f"Could not delete incomplete dump {self._uri(key)}: {e}")

    def _copy(self, source_key: str, dest_key: str):
        if self.config.dry_run:
            self._describe(
                f'aws s3 cp "{self._uri(source_key)}" "{self._uri(dest_key)}" --region "{self.config.region}"'
            )
            return

        self.storage.copy(source_key, dest_key)
        logger.info(f"Copied {self._uri(source_key)} to {self._uri(dest_key)}")

    def _prune_latest(self, artifact: ArtifactKey, keep_key: str) -> List[str]:
        """
        Delete every other latest-tier copy of this database.

        Returns:
            Keys that were deleted
        """
        if self.config.dry_run:
            latest_uri = self._uri(f"{self.latest_dir}/" if self.latest_dir else '')
            self._describe(
                f'aws s3 rm "{latest_uri}" --recursive --exclude="*" '
                f'--include="{artifact.database}_{STAMP_WILDCARD}.sql.gz" '
                f'--exclude="{artifact.filename}" --region "{self.config.region}"'
            )
            return []

        list_prefix = join_key(self.latest_dir, f"{artifact.database}_")
        keys = [obj['Key'] for obj in self.storage.list_objects(list_prefix)]
        stale = stale_latest_keys(artifact.database, self.latest_dir, keys, keep_key)

        for key in stale:
            self.storage.delete(key)
            logger.info(f"Pruned {self._uri(key)}")

        return stale

    @property
    def latest_dir(self) -> str:
        return join_key(self.config.prefix, self.config.latest_prefix)

    def daily_key(self, artifact: ArtifactKey) -> str:
        """
        Object key of the daily artifact.

        ``daily/`` is only inserted when rotation is enabled.
        """
        if self.config.rotate:
            return join_key(self.config.prefix, self.config.daily_prefix, artifact.relative_path)
        return join_key(self.config.prefix, artifact.relative_path)

    def _uri(self, key: str) -> str:
        return f"s3://{self.config.bucket}/{key}"

    def _describe(self, command: str):
        if self.result is not None:
            self.result.commands.append(command)
        self.echo(command)


def execute_backup(config: BackupRunConfig, clock: Optional[ClockSnapshot] = None,
                   echo: Optional[Callable[[str], None]] = None,
                   cancellation: Optional[Cancellation] = None) -> RunResult:
    """
    Run a backup with the real MySQL, mysqldump and S3 collaborators.

    Args:
        config: Validated run configuration
        clock: Snapshot for the run (default: now)
        echo: Sink for dry-run command descriptions (default: print)
        cancellation: Shared with the signal handlers (default: a private one)

    Returns:
        RunResult of the run

    Raises:
        StorageError: If the bucket is not reachable (checked before any pause)
    """
    storage = S3Storage(
        bucket_name=config.bucket,
        region=config.region,
        endpoint_url=Config.S3_ENDPOINT_URL
    )
    if not config.dry_run:
        storage.test_connection()

    with MySQLClient(config.credentials) as mysql:
        pipeline = DumpPipeline(mysql.defaults_file, cancellation=cancellation)
        orchestrator = BackupOrchestrator(config, mysql, pipeline, storage, echo=echo, cancellation=cancellation)
        result = orchestrator.execute(clock or ClockSource().snapshot())

    completed = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    (echo or print)(f"Done. Completed at {completed}")
    return result
