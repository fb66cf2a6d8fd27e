"""
Multi-dimensional vector storage - one logical collection, one bucket per embedding length.
"""

# Package initialization for vector module
from .types import BucketState, BucketStatus, DimensionBucket, EmbeddingRecord, IndexStrategy, ScoredId
from .registry import DimensionRegistry
from .record_store import BucketSnapshot, RecordStore
from .index_manager import IndexManager
from .query_planner import QueryPlanner, cosine_scores
from .ingestion import IngestionGate
from .collection import VectorCollection

__all__ = [
    'BucketState',
    'BucketStatus',
    'DimensionBucket',
    'EmbeddingRecord',
    'IndexStrategy',
    'ScoredId',
    'DimensionRegistry',
    'BucketSnapshot',
    'RecordStore',
    'IndexManager',
    'QueryPlanner',
    'cosine_scores',
    'IngestionGate',
    'VectorCollection'
]
