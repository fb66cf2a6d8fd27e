"""
Request/response models for the vector store HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.config import SEARCH_SIMILARITY_THRESHOLD, SEARCH_RESULT_LIMIT


class UpsertRequest(BaseModel):
    vector: List[float]
    model: str
    content: str = ""
    source_id: Optional[str] = None
    metadata: Dict[str, Any] = {}

    @field_validator('vector')
    @classmethod
    def vector_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('vector cannot be empty')
        return v

    @field_validator('model')
    @classmethod
    def model_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('model cannot be empty')
        return v


class UpsertResponse(BaseModel):
    success: bool
    id: str
    embedding_dimension: int
    slot: str


class RecordResponse(BaseModel):
    id: str
    source_id: Optional[str] = None
    content: str
    metadata: Dict[str, Any]
    embedding_model: str
    embedding_dimension: int
    slot: str
    updated_at: datetime


class DeleteResponse(BaseModel):
    success: bool
    id: str


class SourceDeleteResponse(BaseModel):
    source_id: str
    deleted: int


class SearchRequest(BaseModel):
    vector: List[float]
    threshold: float = SEARCH_SIMILARITY_THRESHOLD
    limit: int = SEARCH_RESULT_LIMIT
    source_id: Optional[str] = None
    timeout_ms: Optional[int] = None

    @field_validator('vector')
    @classmethod
    def vector_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('vector cannot be empty')
        return v

    @field_validator('limit')
    @classmethod
    def limit_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('limit must be positive')
        return v

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_in_range(cls, v):
        if not -1.0 <= v <= 1.0:
            raise ValueError('threshold must be between -1 and 1')
        return v

    @field_validator('timeout_ms')
    @classmethod
    def timeout_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('timeout_ms must be positive')
        return v


class SearchHit(BaseModel):
    id: str
    score: float
    content: str
    source_id: Optional[str] = None
    embedding_model: str
    metadata: Dict[str, Any]


class SearchResponse(BaseModel):
    collection: str
    dimension: int
    results: List[SearchHit]


class BucketStatusResponse(BaseModel):
    dimension: int
    slot: str
    strategy: str
    state: str
    record_count: int
    lists: int
    model_hint: Optional[str] = None
    built_at: Optional[datetime] = None


class BucketListResponse(BaseModel):
    collection: str
    buckets: List[BucketStatusResponse]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    persistence_enabled: bool
    supported_dimensions: List[int]
    collections: Dict[str, int]


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
