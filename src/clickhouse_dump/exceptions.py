"""Error taxonomy for backup and restore runs.

Fatal errors (``ServerConnectionError``, ``ConfigError``) stop a run.
Recoverable errors (``QueryError``, ``CopyError``,
``OrderingPreconditionError``) are caught at the item boundary -- one
partition, one table, one object -- and accumulated into the run summary.
"""


class DumpError(Exception):
    """Base exception for all clickhouse-dump errors."""

    pass


class ServerConnectionError(DumpError):
    """Raised when the server cannot be reached or rejects authentication."""

    pass


class ConfigError(DumpError):
    """Raised when a required path or argument is missing or invalid."""

    pass


class ProfileNotFoundError(ConfigError):
    """Raised when no server profile is configured."""

    pass


class QueryError(DumpError):
    """Raised when a single introspection or DDL statement fails.

    Attributes:
        statement: The SQL text that was rejected.
        message: Server or driver error message.
    """

    def __init__(self, statement: str, message: str) -> None:
        self.statement = statement
        self.message = message
        super().__init__(f"{message} (statement: {statement})")


class CopyError(DumpError):
    """Raised when a filesystem copy or rewrite fails.

    Attributes:
        path: The source or destination path that failed.
        message: Underlying OS error message.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class OrderingPreconditionError(DumpError):
    """Raised when a step depends on a table whose CREATE did not succeed."""

    pass
