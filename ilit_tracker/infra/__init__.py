"""Infrastructure layer: SQLite storage, workbook I/O, logging and the CLI."""

from ilit_tracker.infra.errors import (
    DatabaseOperationError,
    InfraError,
    SchemaVersionMismatchError,
    SourceReadError,
)
from ilit_tracker.infra.sqlite_config import configure_connection

__all__ = [
    "DatabaseOperationError",
    "InfraError",
    "SchemaVersionMismatchError",
    "SourceReadError",
    "configure_connection",
]
