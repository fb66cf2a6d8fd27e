"""
Error taxonomy for the vector store.
Validation errors are raised before any mutation; invariant violations indicate bugs.
"""


class VectorStoreError(Exception):
    """Base class for all vector store errors."""


class UnsupportedDimension(VectorStoreError, ValueError):
    """Vector length is not one of the registry's supported dimensions."""

    def __init__(self, dimension: int, supported=()):
        self.dimension = dimension
        self.supported = tuple(supported)
        message = f"Unsupported embedding dimension: {dimension}"
        if self.supported:
            message += f" (supported: {', '.join(str(d) for d in self.supported)})"
        super().__init__(message)


class InvalidRecord(VectorStoreError, ValueError):
    """Write rejected by the ingestion gate for a reason other than dimension."""


class InvalidQuery(VectorStoreError, ValueError):
    """Search parameters are malformed."""


class DimensionMismatch(VectorStoreError):
    """A populated slot's length differs from the declared dimension."""

    def __init__(self, record_id: str, declared: int, actual: int):
        self.record_id = record_id
        self.declared = declared
        self.actual = actual
        super().__init__(
            f"Record {record_id!r} declares dimension {declared} but its slot holds {actual} values"
        )


class SearchCancelled(VectorStoreError):
    """Query was cancelled before completion."""


class SearchTimeout(VectorStoreError):
    """Query exceeded its deadline."""


class IndexBuildError(VectorStoreError):
    """Index rebuild failed; the bucket keeps its previous state."""


class UnknownCollection(VectorStoreError, KeyError):
    """No collection is registered under the requested name."""

    def __str__(self):
        return f"Unknown collection: {self.args[0]}" if self.args else "Unknown collection"
