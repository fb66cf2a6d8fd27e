#!/usr/bin/env python3
"""
Index Rebuild Utility
Rebuilds dimension bucket indexes from the persisted records of each collection.
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import dotenv

from dimstore.core.config import is_persistence_enabled, validate_vector_config
from dimstore.core.errors import IndexBuildError, UnknownCollection, UnsupportedDimension
from dimstore.core.vector_service import open_database


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Rebuild vector indexes per dimension bucket")
    parser.add_argument("--collection", action="append",
                        help="Collection to rebuild (repeatable, default: all)")
    parser.add_argument("--dimension", type=int, action="append",
                        help="Dimension bucket to rebuild (repeatable, default: all)")
    return parser.parse_args(argv)


def main(argv=None):
    """Rebuild bucket indexes from the SQLite record tables."""
    dotenv.load_dotenv()
    args = parse_args(argv)

    if not is_persistence_enabled():
        print("ERROR: Persistence disabled. Set PERSISTENCE_ENABLED=true")
        sys.exit(1)

    issues = validate_vector_config()
    if issues:
        print(f"ERROR: Invalid vector configuration: {issues}")
        sys.exit(1)

    print("Starting vector index rebuild...")
    database = open_database()

    try:
        collections = [database.collection(name) for name in (args.collection or database.collection_names)]
    except UnknownCollection as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    dimensions = args.dimension or list(database.registry.supported_dimensions)
    failures = 0

    for collection in collections:
        print(f"Collection '{collection.name}': {len(collection)} records")
        for dimension in dimensions:
            try:
                status = collection.rebuild_index(dimension)
            except UnsupportedDimension as e:
                print(f"ERROR: {e}")
                failures += 1
                continue
            except IndexBuildError as e:
                print(f"ERROR: Failed to rebuild {collection.name}/{dimension}: {e}")
                failures += 1
                continue

            print(f"✓ {collection.name}/{status.slot}: {status.strategy.value} strategy, "
                  f"state={status.state.value}, records={status.record_count}, lists={status.lists}")

            # Quick smoke test - the first record should find itself
            snapshot = collection.store.snapshot(dimension)
            if len(snapshot):
                results = collection.search(snapshot.vectors[0], threshold=-1.0, limit=1)
                found = bool(results) and results[0].id == snapshot.ids[0]
                print(f"  verification search {'passed' if found else 'did not return the probe record'}")

    if failures:
        print(f"Index rebuild finished with {failures} failure(s)")
        sys.exit(1)

    print("Index rebuild complete!")


if __name__ == "__main__":
    main()
