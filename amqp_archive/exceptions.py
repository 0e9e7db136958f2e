"""
Exception classes raised by the archiver.
Per-message failures stay inside the pipeline; startup failures end the process.
"""


class ArchiveError(Exception):
    """Base exception for archiver errors."""


class PersistError(ArchiveError):
    """Raised when the document store rejects an insert."""

    def __init__(self, collection: str, error: Exception):
        super().__init__(f"Failed to insert into collection '{collection}': {error}")
        self.collection = collection
        self.error = error


class StartupError(ArchiveError):
    """Raised when the broker or the store cannot be reached at startup."""

    def __init__(self, target: str, error: Exception):
        super().__init__(f"Failed to connect to {target}: {error}")
        self.target = target
        self.error = error
