"""
Shared exception types for the backup collaborators.
"""


class ConnectivityError(Exception):
    """Raised when a MySQL or object store call cannot be completed."""
    pass


class ReplicationControlError(ConnectivityError):
    """Raised when replication could not be paused or resumed."""
    pass


class RunTerminated(SystemExit):
    """
    Raised when a run is cancelled by SIGTERM or SIGINT.

    A SystemExit so that ``except Exception`` handlers let it through and
    context managers (the replication guard) unwind on the way out.
    """

    def __init__(self, code: int = 143):
        super().__init__(code)
