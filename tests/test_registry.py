"""
Dimension registry tests - supported lengths, slot names and strategy eligibility.
"""

import pytest
import numpy as np
from dimstore.core.errors import UnsupportedDimension
from dimstore.vector.registry import DimensionRegistry
from dimstore.vector.types import IndexStrategy


def test_default_registry_dimensions():
    """Test that the stock registry supports the four embedding lengths."""
    registry = DimensionRegistry()

    assert registry.supported_dimensions == (768, 1024, 1536, 3072)
    assert registry.default_dimension == 1536
    assert len(registry) == 4
    assert 1024 in registry
    assert 512 not in registry


def test_resolve_returns_bucket():
    """Test resolving a supported dimension."""
    registry = DimensionRegistry()

    bucket = registry.resolve(768)
    assert bucket.dimension == 768
    assert bucket.slot == "embedding_768"
    assert bucket.lists == 100


def test_resolve_unsupported_dimension():
    """Test that unknown lengths raise UnsupportedDimension."""
    registry = DimensionRegistry()

    with pytest.raises(UnsupportedDimension) as exc_info:
        registry.resolve(512)

    assert exc_info.value.dimension == 512
    assert exc_info.value.supported == (768, 1024, 1536, 3072)
    # Also a ValueError for callers that only know the builtin
    assert isinstance(exc_info.value, ValueError)


def test_slot_names():
    registry = DimensionRegistry()

    assert registry.slot_name(1024) == "embedding_1024"
    assert registry.slot_name(3072) == "embedding_3072"
    with pytest.raises(UnsupportedDimension):
        registry.slot_name(100)


def test_index_strategy_by_width():
    """Test that buckets wider than the index limit use exact scan."""
    registry = DimensionRegistry()

    assert registry.strategy(768) == IndexStrategy.APPROXIMATE
    assert registry.strategy(1024) == IndexStrategy.APPROXIMATE
    assert registry.strategy(1536) == IndexStrategy.APPROXIMATE
    assert registry.strategy(3072) == IndexStrategy.EXACT


def test_custom_index_limit():
    registry = DimensionRegistry(dimensions=(4, 8), max_index_dimension=4)

    assert registry.strategy(4) == IndexStrategy.APPROXIMATE
    assert registry.strategy(8) == IndexStrategy.EXACT
    assert registry.default_dimension == 4


def test_detect_dimension():
    registry = DimensionRegistry()

    assert registry.detect_dimension([0.1] * 768) == 768
    assert registry.detect_dimension(np.zeros(3072)) == 3072
    assert registry.resolve_vector(np.zeros(1024)).dimension == 1024


def test_registry_is_immutable():
    """Test that buckets cannot be added at runtime."""
    registry = DimensionRegistry()

    with pytest.raises(TypeError):
        registry.buckets[512] = registry.resolve(768)


def test_default_dimension_must_be_supported():
    with pytest.raises(UnsupportedDimension):
        DimensionRegistry(dimensions=(768,), default_dimension=1536)


def test_registry_from_config(monkeypatch):
    """Test building the registry from environment configuration."""
    monkeypatch.setenv("SUPPORTED_EMBEDDING_DIMENSIONS", "768, 1536")

    registry = DimensionRegistry.from_config()

    assert registry.supported_dimensions == (768, 1536)
    assert registry.default_dimension == 1536
