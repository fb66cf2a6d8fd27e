"""
Ingestion gate - validates writes against the registry before they reach the record store.
"""

from typing import Dict, Optional, Sequence
import numpy as np

from ..core.errors import InvalidRecord, UnsupportedDimension
from ..util.logging import logger
from .record_store import RecordStore
from .registry import DimensionRegistry
from .types import EmbeddingRecord


class IngestionGate:
    """Rejects malformed writes without touching storage."""

    def __init__(self, registry: DimensionRegistry, store: RecordStore):
        self.registry = registry
        self.store = store

    def admit(self, record_id: str, vector: Sequence[float], model_name: str, content: str = "",
              source_id: Optional[str] = None, metadata: Optional[Dict[str, object]] = None) -> EmbeddingRecord:
        """Validate a write and return the record it would store. Nothing is mutated."""
        try:
            if not isinstance(record_id, str) or not record_id.strip():
                raise InvalidRecord("record id cannot be empty")
            if not isinstance(model_name, str) or not model_name.strip():
                raise InvalidRecord("embedding model cannot be empty")

            try:
                embedding = np.asarray(vector, dtype=np.float32)
            except (TypeError, ValueError) as e:
                raise InvalidRecord(f"vector must be a sequence of floats: {e}") from e
            if embedding.ndim != 1:
                raise InvalidRecord("vector must be one-dimensional")

            dimension = self.registry.detect_dimension(embedding)
            if not self.registry.is_supported(dimension):
                raise UnsupportedDimension(dimension, self.registry.supported_dimensions)

            if not np.all(np.isfinite(embedding)):
                raise InvalidRecord("vector contains non-finite values")
        except (InvalidRecord, UnsupportedDimension) as e:
            logger.log_vector_operation("upsert", str(record_id), {"reason": str(e)}, status="rejected")
            raise

        return self.store.build_record(record_id, embedding, model_name, content, source_id, metadata)

    def upsert(self, record_id: str, vector: Sequence[float], model_name: str, content: str = "",
               source_id: Optional[str] = None, metadata: Optional[Dict[str, object]] = None) -> EmbeddingRecord:
        record = self.admit(record_id, vector, model_name, content, source_id, metadata)
        self.store.put(record)
        return record
