"""
Dimension registry - static map of supported embedding lengths to storage slots.
Immutable once constructed; supporting a new dimension means building a new registry at start-up.
"""

from types import MappingProxyType
from typing import Iterable, Optional, Sequence, Tuple

from ..core.errors import UnsupportedDimension
from .types import DimensionBucket, IndexStrategy


class DimensionRegistry:
    """Resolves vector lengths to their DimensionBucket."""

    def __init__(self, dimensions: Iterable[int] = (768, 1024, 1536, 3072),
                 max_index_dimension: int = 2000, lists: int = 100, probes: int = 10,
                 default_dimension: Optional[int] = None):
        buckets = {}
        for dimension in sorted(set(int(d) for d in dimensions)):
            if dimension < 1:
                raise ValueError(f"Dimension must be positive: {dimension}")
            buckets[dimension] = DimensionBucket(
                dimension=dimension,
                slot=f"embedding_{dimension}",
                max_index_dimension=max_index_dimension,
                lists=lists,
                probes=probes,
            )
        if not buckets:
            raise ValueError("Registry needs at least one supported dimension")

        self._buckets = MappingProxyType(buckets)
        self._supported = tuple(buckets)

        if default_dimension is None:
            default_dimension = 1536 if 1536 in buckets else self._supported[0]
        if default_dimension not in buckets:
            raise UnsupportedDimension(default_dimension, self._supported)
        self._default_dimension = default_dimension

    @classmethod
    def from_config(cls) -> "DimensionRegistry":
        """Build the registry from environment configuration."""
        from ..core import config

        dimensions = config.get_supported_dimensions()
        default_dimension = config.DEFAULT_EMBEDDING_DIMENSION
        if default_dimension not in dimensions:
            # validate_vector_config reports this; fall back to the first supported length
            default_dimension = None

        return cls(
            dimensions=dimensions,
            max_index_dimension=config.MAX_INDEX_DIMENSION,
            lists=config.IVF_LISTS,
            probes=config.IVF_PROBES,
            default_dimension=default_dimension,
        )

    @property
    def supported_dimensions(self) -> Tuple[int, ...]:
        return self._supported

    @property
    def default_dimension(self) -> int:
        return self._default_dimension

    @property
    def buckets(self):
        """Read-only mapping of dimension -> DimensionBucket."""
        return self._buckets

    def is_supported(self, dimension: int) -> bool:
        return dimension in self._buckets

    def resolve(self, dimension: int) -> DimensionBucket:
        """Return the bucket for a dimension or raise UnsupportedDimension."""
        try:
            return self._buckets[dimension]
        except (KeyError, TypeError):
            raise UnsupportedDimension(dimension, self._supported) from None

    def detect_dimension(self, vector: Sequence[float]) -> int:
        """Dimension of a vector is simply its length."""
        return len(vector)

    def resolve_vector(self, vector: Sequence[float]) -> DimensionBucket:
        return self.resolve(self.detect_dimension(vector))

    def slot_name(self, dimension: int) -> str:
        return self.resolve(dimension).slot

    def strategy(self, dimension: int) -> IndexStrategy:
        return self.resolve(dimension).index_strategy

    def __iter__(self):
        return iter(self._buckets.values())

    def __len__(self):
        return len(self._buckets)

    def __contains__(self, dimension):
        return dimension in self._buckets
