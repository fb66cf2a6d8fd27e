"""
Persistence tests - records and bucket metadata survive a restart.
"""

import sqlite3
import threading
import pytest
import numpy as np
from datetime import datetime
from dimstore.core.dao import VectorDAO
from dimstore.core.db import get_db, health_check, init_db, records_table
from dimstore.core.vector_service import VectorDatabase
from dimstore.core.errors import UnknownCollection
from dimstore.vector.collection import VectorCollection
from dimstore.vector.registry import DimensionRegistry
from dimstore.vector.types import BucketState, EmbeddingRecord


def make_vector(dimension, seed=0):
    rng = np.random.default_rng(seed)
    vector = rng.standard_normal(dimension).astype(np.float32)
    return vector / np.linalg.norm(vector)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "vectors.db")


def open_db(db_path):
    return VectorDatabase(collections=["documents", "code_examples"], registry=DimensionRegistry(),
                          persist=True, db_path=db_path).open()


def test_init_db_creates_tables(db_path):
    init_db(["documents"], db_path)

    assert health_check(db_path) is True
    with get_db(db_path) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"vector_buckets", "documents_records"} <= tables


def test_invalid_collection_name():
    with pytest.raises(ValueError):
        records_table("documents; DROP TABLE x")


def test_blob_length_must_match_dimension(db_path):
    """Test that the schema refuses a slot whose length differs from the declared dimension."""
    init_db(["documents"], db_path)
    dao = VectorDAO(db_path)
    broken = EmbeddingRecord(
        id="broken",
        embedding=np.zeros(10, dtype=np.float32),
        embedding_model="m",
        embedding_dimension=768,
        updated_at=datetime.now()
    )

    with pytest.raises(sqlite3.IntegrityError):
        dao.save_record("documents", broken)


def test_records_survive_restart(db_path):
    database = open_db(db_path)
    documents = database.collection("documents")
    documents.upsert("doc-1", make_vector(768, 1), "nomic-embed-text", content="first",
                     source_id="site-1", metadata={"url": "https://example.com/a", "chunk_index": 0})
    documents.upsert("doc-2", make_vector(3072, 2), "text-embedding-3-large", content="second")
    database.collection("code_examples").upsert("code-1", make_vector(1536, 3), "text-embedding-3-small")

    reopened = open_db(db_path)
    record = reopened.collection("documents").get("doc-1")

    assert record.content == "first"
    assert record.source_id == "site-1"
    assert record.metadata == {"url": "https://example.com/a", "chunk_index": 0}
    assert record.embedding_dimension == 768
    assert np.allclose(record.embedding, make_vector(768, 1))
    assert reopened.collection("documents").get("doc-2").embedding_dimension == 3072
    assert reopened.collection("code_examples").get("code-1").embedding_model == "text-embedding-3-small"
    assert len(reopened.collection("documents")) == 2


def test_ready_index_survives_restart(db_path):
    """Test that a built bucket reopens ready and answers identically."""
    database = open_db(db_path)
    documents = database.collection("documents")
    for i in range(50):
        documents.upsert(f"doc-{i:02d}", make_vector(768, i), "model")
    documents.rebuild_index(768)
    query = make_vector(768, 500)
    expected = documents.search(query, threshold=-1.0, limit=5)

    reopened = open_db(db_path).collection("documents")

    assert reopened.index_manager.state(768) == BucketState.READY
    assert reopened.search(query, threshold=-1.0, limit=5) == expected


def test_stale_state_survives_restart(db_path):
    database = open_db(db_path)
    documents = database.collection("documents")
    documents.upsert("doc-1", make_vector(768, 1), "model")
    documents.rebuild_index(768)
    documents.upsert("doc-2", make_vector(768, 2), "model")

    reopened = open_db(db_path).collection("documents")

    assert reopened.index_manager.state(768) == BucketState.STALE
    assert reopened.search(make_vector(768, 2))[0].id == "doc-2"


def test_bucket_metadata_persisted(db_path):
    database = open_db(db_path)
    documents = database.collection("documents")
    documents.upsert("doc-1", make_vector(1024, 1), "mxbai-embed-large")
    documents.rebuild_index(1024)

    rows = {row.dimension: row for row in VectorDAO(db_path).load_buckets("documents")}

    assert set(rows) == {768, 1024, 1536, 3072}
    assert rows[1024].state == BucketState.READY
    assert rows[1024].model_hint == "mxbai-embed-large"
    assert rows[1024].index_blob is not None
    assert rows[1024].index_ids == ("doc-1",)
    assert rows[3072].strategy == "exact"
    assert rows[768].state == BucketState.ABSENT


def test_delete_and_source_cascade_persisted(db_path):
    database = open_db(db_path)
    documents = database.collection("documents")
    documents.upsert("a", make_vector(768, 1), "m", source_id="site-1")
    documents.upsert("b", make_vector(1024, 2), "m", source_id="site-1")
    documents.upsert("c", make_vector(768, 3), "m", source_id="site-2")

    assert documents.delete("c") is True
    assert documents.delete_by_source("site-1") == 2

    dao = VectorDAO(db_path)
    assert dao.count_records("documents") == 0
    assert len(open_db(db_path).collection("documents")) == 0


def test_unknown_collection(db_path):
    database = open_db(db_path)
    with pytest.raises(UnknownCollection):
        database.collection("projects")


def test_in_memory_database_skips_persistence():
    database = VectorDatabase(collections=["documents"], registry=DimensionRegistry(), persist=False).open()

    database.collection("documents").upsert("doc-1", make_vector(768), "m")

    assert database.dao is None
    assert database.healthy() is True
    assert database.collection_names == ["documents"]


class BlockingRepository:
    """Repository stand-in whose first save waits until released."""

    def __init__(self):
        self.saved = {}
        self.entered = threading.Event()
        self.release = threading.Event()
        self._first = True

    def save_record(self, collection, record):
        if self._first:
            self._first = False
            self.entered.set()
            self.release.wait(timeout=5)
        self.saved[record.id] = record.embedding.copy()

    def save_bucket(self, collection, status, index_blob=None, index_ids=()):
        pass


def test_concurrent_upserts_keep_repository_and_memory_in_step():
    """Test that racing writers of one id leave the same vector on disk and in memory."""
    repository = BlockingRepository()
    collection = VectorCollection("documents", registry=DimensionRegistry(), repository=repository)
    first, second = make_vector(768, 1), make_vector(768, 2)

    writer_a = threading.Thread(target=collection.upsert, args=("doc-1", first, "m"))
    writer_a.start()
    assert repository.entered.wait(timeout=5)

    writer_b = threading.Thread(target=collection.upsert, args=("doc-1", second, "m"))
    writer_b.start()
    writer_b.join(timeout=0.2)
    repository.release.set()
    writer_a.join(timeout=5)
    writer_b.join(timeout=5)

    in_memory = collection.get("doc-1").embedding
    assert np.allclose(in_memory, repository.saved["doc-1"])
    assert np.allclose(in_memory, second)
