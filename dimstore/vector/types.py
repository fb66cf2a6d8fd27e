"""
Record and result types shared by the store, index manager and query planner.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple
import numpy as np


class IndexStrategy(str, Enum):
    APPROXIMATE = "approximate"
    EXACT = "exact"


class BucketState(str, Enum):
    ABSENT = "absent"
    BUILDING = "building"
    READY = "ready"
    STALE = "stale"


@dataclass(frozen=True)
class DimensionBucket:
    """Static configuration of one dimension partition."""

    dimension: int
    """Vector length held by this bucket"""

    slot: str
    """Storage slot name, e.g. embedding_1536"""

    max_index_dimension: int
    """Widest vector the approximate index accepts"""

    lists: int = 100
    """IVF cluster count used when the bucket is built"""

    probes: int = 10
    """IVF lists probed per query"""

    @property
    def index_strategy(self) -> IndexStrategy:
        if self.dimension <= self.max_index_dimension:
            return IndexStrategy.APPROXIMATE
        return IndexStrategy.EXACT


@dataclass
class EmbeddingRecord:
    """One content chunk with exactly one populated, dimension-tagged vector slot."""

    id: str
    """Opaque record identifier"""

    embedding: np.ndarray
    """The populated slot's vector (float32)"""

    embedding_model: str
    """Model that produced the embedding"""

    embedding_dimension: int
    """Declared vector length; always equals len(embedding)"""

    content: str = ""
    """Textual payload"""

    source_id: Optional[str] = None
    """Owning source; deleting the source cascades to its records"""

    metadata: Dict[str, object] = field(default_factory=dict)
    """Free-form metadata (url, title, chunk index, ...)"""

    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def slot(self) -> str:
        return f"embedding_{self.embedding_dimension}"

    def slots(self, dimensions: Tuple[int, ...]) -> Dict[str, Optional[np.ndarray]]:
        """Per-dimension slot view: the populated slot holds the vector, all others are None."""
        return {
            f"embedding_{d}": (self.embedding if d == self.embedding_dimension else None)
            for d in dimensions
        }


@dataclass(frozen=True)
class ScoredId:
    """Represents a ranked search result."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Cosine similarity of the match"""


@dataclass
class BucketStatus:
    """Runtime view of one bucket's index state."""

    dimension: int
    slot: str
    strategy: IndexStrategy
    state: BucketState
    record_count: int
    lists: int
    model_hint: Optional[str] = None
    built_at: Optional[datetime] = None
