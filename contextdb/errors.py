"""
Exceptions and error logging for contextdb.

Write paths raise these; read paths catch them and degrade to empty
results. The CLI logs full stack traces to a file while showing clean
messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ContextDBError(Exception):
    """Base class for contextdb failures."""


class ConfigError(ContextDBError, ValueError):
    """Malformed or unsupported configuration."""


class StoreNotInitializedError(ContextDBError):
    """The store directory or one of its collections does not exist."""

    def __init__(self, path: Path, collection: Optional[str] = None):
        self.path = path
        self.collection = collection
        if collection:
            msg = f"Collection '{collection}' not found in store {path}"
        else:
            msg = f"No context store at {path}"
        super().__init__(f"{msg}. Run `contextdb init` (or initialize()) first.")


class EmbeddingError(ContextDBError):
    """The embedding provider could not be reached or returned bad vectors."""


class IndexingError(ContextDBError):
    """
    A batch of records could not be embedded or written.

    Attributes:
        collection: Target collection
        failed_ids: Ids of the records in the failing batch
        written: Records already written by earlier batches of the same call
    """

    def __init__(self, collection: str, failed_ids: list[str], written: int, cause: BaseException):
        self.collection = collection
        self.failed_ids = failed_ids
        self.written = written
        shown = ", ".join(failed_ids[:5])
        if len(failed_ids) > 5:
            shown += f", ... ({len(failed_ids)} total)"
        super().__init__(
            f"Failed to index into '{collection}' [{shown}] after {written} "
            f"record(s) were written: {cause}"
        )


def _error_log_path() -> Path:
    """Resolve error log path, respecting CONTEXTDB_STORE_PATH."""
    store = os.environ.get("CONTEXTDB_STORE_PATH")
    if store:
        return Path(store) / "contextdb-errors.log"
    return Path.cwd() / ".contextdb" / "contextdb-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
