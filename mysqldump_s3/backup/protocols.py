"""
Interfaces the backup core expects from its collaborators.

MySQLClient, DumpPipeline and S3Storage implement these; tests substitute
doubles.
"""

from typing import IO, ContextManager, List, Protocol


class DatabaseLister(Protocol):
    def list_databases(self) -> List[str]:
        ...


class ReplicationControl(Protocol):
    def pause_local(self) -> None:
        ...

    def resume_local(self) -> None:
        ...

    def pause_managed(self) -> None:
        ...

    def resume_managed(self) -> None:
        ...


class MySQLControl(DatabaseLister, ReplicationControl, Protocol):
    """Database listing and replication control on one connection."""


class DumpSource(Protocol):
    def dump_command(self, database: str) -> list:
        ...

    def replay_command(self, database: str, credentials) -> list:
        ...

    def compress_command(self) -> list:
        ...

    def open_stream(self, database: str) -> ContextManager[IO[bytes]]:
        ...


class ObjectStore(Protocol):
    def put(self, key: str, stream: IO[bytes]) -> None:
        ...

    def copy(self, source_key: str, dest_key: str) -> None:
        ...

    def list_objects(self, prefix: str) -> List[dict]:
        ...

    def delete(self, key: str) -> None:
        ...
