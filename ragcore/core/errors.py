"""
Error taxonomy for the ingestion and retrieval pipeline.

Every pipeline failure is a RagError. `retryable` decides whether the worker
requeues the job (bounded by max attempts) or fails the document immediately.
"""


class RagError(Exception):
    retryable = False


class UnsupportedFormatError(RagError):
    """File type is not one of pdf, docx, txt, md or csv."""


class ExtractionError(RagError):
    """Input bytes are malformed or corrupt for their declared format."""


class EmbeddingProviderError(RagError):
    """Embedding endpoint failed, timed out or returned an invalid payload."""
    retryable = True


class EmbeddingBatchError(EmbeddingProviderError):
    """A batch stopped partway; nothing from it may be persisted."""

    def __init__(self, message: str, succeeded: int, total: int):
        super().__init__(message)
        self.succeeded = succeeded
        self.total = total


class DimensionMismatchError(RagError):
    """Vector dimensionality differs from the one configured for the owner."""

    def __init__(self, expected: int, actual: int, owner_id: str | None = None):
        scope = f" for owner {owner_id}" if owner_id else ""
        super().__init__(f"Dimension mismatch{scope}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
        self.owner_id = owner_id


class EmbeddingModelMismatchError(RagError):
    """Owner already holds embeddings from a different model; clear them first."""

    def __init__(self, expected: str, actual: str, owner_id: str):
        super().__init__(
            f"Owner {owner_id} has embeddings from '{expected}', refusing to mix in '{actual}'. "
            f"Clear the owner's embeddings before switching models."
        )
        self.expected = expected
        self.actual = actual
        self.owner_id = owner_id


class StorageWriteError(RagError):
    """Bulk insert failed and was rolled back."""
    retryable = True


class DownloadError(RagError):
    """Source file could not be fetched (HTTP error, missing path or timeout)."""
    retryable = True


class JobTimeoutError(RagError):
    """Job ran past its wall-clock budget."""
    retryable = True


class JobStaleError(RagError):
    """Job stopped heartbeating while in processing. Resolved by the recovery sweep."""
    retryable = True
