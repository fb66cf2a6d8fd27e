"""
dimstore - multi-dimensional embedding storage and similarity search.
"""

from .core.errors import (
    VectorStoreError,
    UnsupportedDimension,
    InvalidRecord,
    InvalidQuery,
    DimensionMismatch,
    SearchCancelled,
    SearchTimeout,
    IndexBuildError,
    UnknownCollection
)
from .vector import DimensionRegistry, VectorCollection, ScoredId, EmbeddingRecord

__version__ = "1.0.0"
