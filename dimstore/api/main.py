"""
HTTP API over the vector store: upsert, delete, search and index rebuild per collection.
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from typing import Optional

from .schemas import (
    UpsertRequest,
    UpsertResponse,
    RecordResponse,
    DeleteResponse,
    SourceDeleteResponse,
    SearchRequest,
    SearchHit,
    SearchResponse,
    BucketStatusResponse,
    BucketListResponse,
    HealthResponse,
    ErrorResponse
)
from ..core.config import VERSION, debug_enabled
from ..core.errors import (
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
from ..core.vector_service import VectorDatabase, open_database
from ..util.logging import logger
from ..vector.types import BucketStatus

_database: Optional[VectorDatabase] = None


def get_database() -> VectorDatabase:
    """Lazily open the configured database (overridden in tests)."""
    global _database
    if _database is None:
        _database = open_database()
    return _database


# Initialize the FastAPI application
app = FastAPI(
    title="dimstore",
    version=VERSION,
    description="Multi-dimensional embedding storage and similarity search",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

ERROR_STATUS = {
    UnsupportedDimension: 400,
    InvalidRecord: 400,
    InvalidQuery: 400,
    UnknownCollection: 404,
    SearchTimeout: 408,
    # routes never pass a cancel_event; raised when an embedding app cancels a collection search
    SearchCancelled: 409,
    IndexBuildError: 500,
    DimensionMismatch: 500,
}


@app.exception_handler(VectorStoreError)
async def vector_store_error_handler(request: Request, exc: VectorStoreError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    details = None
    if isinstance(exc, UnsupportedDimension):
        details = {"dimension": exc.dimension, "supported": list(exc.supported)}
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    body = ErrorResponse(error_type=type(exc).__name__, message=str(exc), details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _bucket_response(status: BucketStatus) -> BucketStatusResponse:
    return BucketStatusResponse(
        dimension=status.dimension,
        slot=status.slot,
        strategy=status.strategy.value,
        state=status.state.value,
        record_count=status.record_count,
        lists=status.lists,
        model_hint=status.model_hint,
        built_at=status.built_at
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(db: VectorDatabase = Depends(get_database)):
    """Check system health."""
    db_health = db.healthy()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        persistence_enabled=db.persist,
        supported_dimensions=list(db.registry.supported_dimensions),
        collections={name: len(db.collection(name)) for name in db.collection_names}
    )


@app.put("/collections/{name}/records/{record_id}", response_model=UpsertResponse)
def upsert_record(name: str, record_id: str, req: UpsertRequest, db: VectorDatabase = Depends(get_database)):
    record = db.collection(name).upsert(
        record_id,
        req.vector,
        req.model,
        content=req.content,
        source_id=req.source_id,
        metadata=req.metadata
    )
    return UpsertResponse(success=True, id=record.id, embedding_dimension=record.embedding_dimension,
                          slot=record.slot)


@app.get("/collections/{name}/records/{record_id}", response_model=RecordResponse)
def get_record(name: str, record_id: str, db: VectorDatabase = Depends(get_database)):
    record = db.collection(name).get(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")

    return RecordResponse(
        id=record.id,
        source_id=record.source_id,
        content=record.content,
        metadata=record.metadata,
        embedding_model=record.embedding_model,
        embedding_dimension=record.embedding_dimension,
        slot=record.slot,
        updated_at=record.updated_at
    )


@app.delete("/collections/{name}/records/{record_id}", response_model=DeleteResponse)
def delete_record(name: str, record_id: str, db: VectorDatabase = Depends(get_database)):
    if not db.collection(name).delete(record_id):
        raise HTTPException(status_code=404, detail="Record not found")
    return DeleteResponse(success=True, id=record_id)


@app.delete("/collections/{name}/sources/{source_id}", response_model=SourceDeleteResponse)
def delete_source(name: str, source_id: str, db: VectorDatabase = Depends(get_database)):
    deleted = db.collection(name).delete_by_source(source_id)
    return SourceDeleteResponse(source_id=source_id, deleted=deleted)


@app.post("/collections/{name}/search", response_model=SearchResponse)
def search_collection(name: str, req: SearchRequest, db: VectorDatabase = Depends(get_database)):
    collection = db.collection(name)
    timeout = req.timeout_ms / 1000.0 if req.timeout_ms else None
    scored = collection.search(req.vector, threshold=req.threshold, limit=req.limit,
                               source_id=req.source_id, timeout=timeout)

    results = []
    for hit in scored:
        record = collection.get(hit.id)
        if record is None:
            # deleted between ranking and presentation
            continue
        results.append(SearchHit(
            id=hit.id,
            score=hit.score,
            content=record.content,
            source_id=record.source_id,
            embedding_model=record.embedding_model,
            metadata=record.metadata
        ))

    return SearchResponse(collection=name, dimension=len(req.vector), results=results)


@app.post("/collections/{name}/buckets/{dimension}/rebuild", response_model=BucketStatusResponse)
def rebuild_bucket(name: str, dimension: int, db: VectorDatabase = Depends(get_database)):
    status = db.collection(name).rebuild_index(dimension)
    return _bucket_response(status)


@app.get("/collections/{name}/buckets", response_model=BucketListResponse)
def list_buckets(name: str, db: VectorDatabase = Depends(get_database)):
    statuses = db.collection(name).bucket_status()
    return BucketListResponse(collection=name, buckets=[_bucket_response(s) for s in statuses])
