"""
Configuration for the multi-dimensional vector store.
All values come from the environment; defaults mirror the stock collection setup.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/vectors.db")

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Write-through SQLite persistence (default disabled, in-memory only)
PERSISTENCE_ENABLED = os.getenv("PERSISTENCE_ENABLED", "false").lower() == "true"

# Dimension registry configuration
SUPPORTED_EMBEDDING_DIMENSIONS = os.getenv("SUPPORTED_EMBEDDING_DIMENSIONS", "768,1024,1536,3072")
DEFAULT_EMBEDDING_DIMENSION = int(os.getenv("DEFAULT_EMBEDDING_DIMENSION", "1536"))
MAX_INDEX_DIMENSION = int(os.getenv("MAX_INDEX_DIMENSION", "2000"))  # widest vector the IVF index accepts

# Approximate index parameters
IVF_LISTS = int(os.getenv("IVF_LISTS", "100"))
IVF_PROBES = int(os.getenv("IVF_PROBES", "10"))

# Query defaults
SEARCH_SIMILARITY_THRESHOLD = float(os.getenv("SEARCH_SIMILARITY_THRESHOLD", "0.7"))
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", "10"))
SCAN_CHUNK_SIZE = int(os.getenv("SCAN_CHUNK_SIZE", "4096"))

# Logical entity types, one record collection each
COLLECTIONS = os.getenv("COLLECTIONS", "documents,code_examples")

# Version string
VERSION = "1.0.0"


def get_supported_dimensions():
    """Parse SUPPORTED_EMBEDDING_DIMENSIONS into a sorted tuple of ints."""
    values = os.getenv("SUPPORTED_EMBEDDING_DIMENSIONS", SUPPORTED_EMBEDDING_DIMENSIONS)
    return tuple(sorted({int(v) for v in values.split(",") if v.strip()}))


def get_collection_names():
    """Parse COLLECTIONS into a list of collection names, order preserved."""
    values = os.getenv("COLLECTIONS", COLLECTIONS)
    names = []
    for name in values.split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


def is_persistence_enabled():
    """Check if SQLite write-through persistence is enabled."""
    return os.getenv("PERSISTENCE_ENABLED", "false").lower() == "true"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_db_path():
    """Current database path (re-read so tests can point at a temp file)."""
    return os.getenv("DB_PATH", DB_PATH)


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_vector_config():
    """Validate vector store configuration and return any issues."""
    issues = []

    try:
        dimensions = get_supported_dimensions()
    except ValueError:
        issues.append(f"Invalid SUPPORTED_EMBEDDING_DIMENSIONS: {SUPPORTED_EMBEDDING_DIMENSIONS}")
        dimensions = ()

    if dimensions and any(d < 1 for d in dimensions):
        issues.append("SUPPORTED_EMBEDDING_DIMENSIONS must contain positive integers")

    if dimensions and DEFAULT_EMBEDDING_DIMENSION not in dimensions:
        issues.append(f"DEFAULT_EMBEDDING_DIMENSION {DEFAULT_EMBEDDING_DIMENSION} is not a supported dimension")

    if MAX_INDEX_DIMENSION < 1:
        issues.append("MAX_INDEX_DIMENSION must be >= 1")

    if IVF_LISTS < 1:
        issues.append("IVF_LISTS must be >= 1")

    if IVF_PROBES < 1:
        issues.append("IVF_PROBES must be >= 1")

    if not -1.0 <= SEARCH_SIMILARITY_THRESHOLD <= 1.0:
        issues.append("SEARCH_SIMILARITY_THRESHOLD must be within [-1, 1]")

    if SEARCH_RESULT_LIMIT < 1:
        issues.append("SEARCH_RESULT_LIMIT must be >= 1")

    if SCAN_CHUNK_SIZE < 1:
        issues.append("SCAN_CHUNK_SIZE must be >= 1")

    if not get_collection_names():
        issues.append("COLLECTIONS must name at least one collection")

    return issues
