"""
Index manager tests - bucket state machine, exact-strategy buckets and all-or-nothing rebuilds.
"""

import pytest
import numpy as np
from dimstore.core.errors import IndexBuildError, UnsupportedDimension
from dimstore.vector.collection import VectorCollection
from dimstore.vector.index_manager import IndexManager, effective_lists, normalize_rows
from dimstore.vector.record_store import RecordStore
from dimstore.vector.registry import DimensionRegistry
from dimstore.vector.types import BucketState, IndexStrategy


def make_vector(dimension, seed=0):
    rng = np.random.default_rng(seed)
    vector = rng.standard_normal(dimension).astype(np.float32)
    return vector / np.linalg.norm(vector)


@pytest.fixture
def store():
    return RecordStore(DimensionRegistry())


@pytest.fixture
def manager(store):
    return IndexManager(store.registry, store, collection="documents")


def test_initial_states(manager):
    """Test that approximate buckets start absent and exact buckets start ready."""
    assert manager.state(768) == BucketState.ABSENT
    assert manager.state(1024) == BucketState.ABSENT
    assert manager.state(1536) == BucketState.ABSENT
    assert manager.state(3072) == BucketState.READY
    assert manager.strategy(3072) == IndexStrategy.EXACT


def test_rebuild_transitions_to_ready(store, manager):
    for i in range(10):
        store.upsert(f"doc-{i}", make_vector(768, i), "m")

    status = manager.rebuild(768)

    assert status.state == BucketState.READY
    assert status.record_count == 10
    assert status.lists == 1
    assert status.built_at is not None
    assert manager.state(768) == BucketState.READY


def test_write_marks_ready_bucket_stale(store, manager):
    store.upsert("doc-1", make_vector(768, 1), "m")
    manager.rebuild(768)

    store.upsert("doc-2", make_vector(768, 2), "m")

    assert manager.state(768) == BucketState.STALE
    # Other buckets are untouched
    assert manager.state(1024) == BucketState.ABSENT


def test_write_to_absent_bucket_stays_absent(store, manager):
    store.upsert("doc-1", make_vector(1024), "m")
    assert manager.state(1024) == BucketState.ABSENT


def test_delete_marks_bucket_stale(store, manager):
    store.upsert("doc-1", make_vector(768, 1), "m")
    manager.rebuild(768)

    store.delete("doc-1")

    assert manager.state(768) == BucketState.STALE


def test_rebuild_stale_bucket(store, manager):
    store.upsert("doc-1", make_vector(768, 1), "m")
    manager.rebuild(768)
    store.upsert("doc-2", make_vector(768, 2), "m")

    status = manager.rebuild(768)

    assert status.state == BucketState.READY
    assert status.record_count == 2


def test_rebuild_is_idempotent(store, manager):
    for i in range(5):
        store.upsert(f"doc-{i}", make_vector(768, i), "m")

    first = manager.rebuild(768)
    second = manager.rebuild(768)
    query = make_vector(768, 3)

    assert first.state == second.state == BucketState.READY
    assert manager.shortlist(768, query, 5) == manager.shortlist(768, query, 5)


def test_rebuild_exact_bucket_is_noop(store, manager):
    """Test that oversized buckets have nothing to build."""
    store.upsert("wide", make_vector(3072), "text-embedding-3-large")

    status = manager.rebuild(3072)

    assert status.state == BucketState.READY
    assert status.strategy == IndexStrategy.EXACT
    assert status.lists == 0
    assert status.built_at is None
    # Exact buckets never serve a shortlist
    assert manager.shortlist(3072, make_vector(3072), 10) is None


def test_exact_bucket_never_goes_stale(store, manager):
    store.upsert("wide-1", make_vector(3072, 1), "m")
    store.upsert("wide-2", make_vector(3072, 2), "m")
    assert manager.state(3072) == BucketState.READY


def test_rebuild_unsupported_dimension(manager):
    with pytest.raises(UnsupportedDimension):
        manager.rebuild(512)


def test_rebuild_empty_bucket(manager):
    status = manager.rebuild(1536)

    assert status.state == BucketState.READY
    assert status.record_count == 0
    assert manager.shortlist(1536, make_vector(1536), 10) == []


def test_shortlist_requires_ready_bucket(store, manager):
    store.upsert("doc-1", make_vector(768), "m")
    assert manager.shortlist(768, make_vector(768), 10) is None


def test_shortlist_finds_self(store, manager):
    for i in range(200):
        store.upsert(f"doc-{i:03d}", make_vector(768, i), "m")
    status = manager.rebuild(768)

    # 200 vectors support 5 lists; all of them are probed
    assert status.lists == 5
    shortlist = manager.shortlist(768, make_vector(768, 42), 4)
    assert shortlist[0] == "doc-042"


def test_failed_rebuild_keeps_prior_state(store, manager, monkeypatch):
    """Test that a failing build leaves the bucket exactly as it was."""
    store.upsert("doc-1", make_vector(768, 1), "m")
    manager.rebuild(768)
    store.upsert("doc-2", make_vector(768, 2), "m")
    assert manager.state(768) == BucketState.STALE

    def failing_build(bucket, snapshot):
        raise MemoryError("out of memory")

    monkeypatch.setattr(manager, "_build", failing_build)

    with pytest.raises(IndexBuildError):
        manager.rebuild(768)

    assert manager.state(768) == BucketState.STALE


def test_failed_rebuild_of_ready_bucket_keeps_index(store, manager, monkeypatch):
    store.upsert("doc-1", make_vector(768, 1), "m")
    manager.rebuild(768)
    before = manager.shortlist(768, make_vector(768, 1), 1)

    monkeypatch.setattr(manager, "_build", lambda bucket, snapshot: 1 / 0)

    with pytest.raises(IndexBuildError):
        manager.rebuild(768)

    assert manager.state(768) == BucketState.READY
    assert manager.shortlist(768, make_vector(768, 1), 1) == before == ["doc-1"]


def test_failed_rebuild_with_concurrent_write_goes_stale(store, manager, monkeypatch):
    """Test that a write landing during a failed build is not hidden behind the old index."""
    store.upsert("old", make_vector(768, 1), "m")
    manager.rebuild(768)

    def write_then_fail(bucket, snapshot):
        store.upsert("new", make_vector(768, 2), "m")
        raise MemoryError("out of memory")

    monkeypatch.setattr(manager, "_build", write_then_fail)

    with pytest.raises(IndexBuildError):
        manager.rebuild(768)

    assert manager.state(768) == BucketState.STALE
    assert manager.shortlist(768, make_vector(768, 2), 4) is None


def test_failed_rebuild_in_collection_keeps_new_record_searchable(monkeypatch):
    collection = VectorCollection("documents")
    collection.upsert("old", make_vector(768, 1), "m")
    collection.rebuild_index(768)
    fresh = make_vector(768, 2)

    def write_then_fail(bucket, snapshot):
        collection.upsert("new", fresh, "m")
        raise MemoryError("out of memory")

    monkeypatch.setattr(collection.index_manager, "_build", write_then_fail)

    with pytest.raises(IndexBuildError):
        collection.rebuild_index(768)

    assert [r.id for r in collection.search(fresh)] == ["new"]


def test_shortlist_widens_past_ties(store, manager):
    """Test that the shortlist keeps a whole tied group instead of an arbitrary slice."""
    vector = make_vector(768, 5)
    for i in reversed(range(50)):
        store.upsert(f"doc-{i:02d}", vector, "m")
    manager.rebuild(768)

    shortlist = manager.shortlist(768, vector, 4, keep=1)

    assert len(shortlist) == 50
    assert "doc-00" in shortlist


def test_write_during_rebuild_leaves_bucket_stale(store, manager, monkeypatch):
    """Test that upserts landing mid-build are not reported as indexed."""
    store.upsert("doc-1", make_vector(768, 1), "m")
    original_build = manager._build

    def build_with_concurrent_write(bucket, snapshot):
        store.upsert("doc-2", make_vector(768, 2), "m")
        return original_build(bucket, snapshot)

    monkeypatch.setattr(manager, "_build", build_with_concurrent_write)

    status = manager.rebuild(768)

    assert status.state == BucketState.STALE
    assert store.count(768) == 2


def test_transition_listener(store, manager):
    seen = []
    manager.add_transition_listener(seen.append)

    store.upsert("doc-1", make_vector(768), "m")
    manager.rebuild(768)
    store.delete("doc-1")

    # building, ready, stale
    assert seen == [768, 768, 768]


def test_export_and_restore(store, manager):
    """Test that a serialised index restores to a ready bucket."""
    for i in range(20):
        store.upsert(f"doc-{i}", make_vector(768, i), "m")
    manager.rebuild(768)
    blob, ids = manager.export_artifact(768)
    query = make_vector(768, 7)
    expected = manager.shortlist(768, query, 3)

    restored = IndexManager(store.registry, store, collection="documents")
    restored.restore(768, BucketState.READY, blob, ids)

    assert restored.state(768) == BucketState.READY
    assert restored.shortlist(768, query, 3) == expected


def test_restore_interrupted_build_is_stale(store, manager):
    store.upsert("doc-1", make_vector(768), "m")
    manager.restore(768, BucketState.BUILDING)
    assert manager.state(768) == BucketState.STALE


def test_restore_ready_without_index_is_stale(store, manager):
    store.upsert("doc-1", make_vector(768), "m")
    manager.restore(768, BucketState.READY)
    assert manager.state(768) == BucketState.STALE


def test_effective_lists():
    assert effective_lists(100, 0) == 1
    assert effective_lists(100, 10) == 1
    assert effective_lists(100, 390) == 10
    assert effective_lists(100, 1_000_000) == 100


def test_normalize_rows_handles_zero_rows():
    vectors = np.array([[3.0, 4.0], [0.0, 0.0]], dtype=np.float32)
    normalized = normalize_rows(vectors)

    assert np.allclose(normalized[0], [0.6, 0.8])
    assert np.allclose(normalized[1], [0.0, 0.0])
