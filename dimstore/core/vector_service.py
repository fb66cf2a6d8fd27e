"""
Vector database service - named collections sharing one dimension registry and
one (optional) SQLite file.
"""

from typing import Dict, Iterable, List, Optional

from . import config
from .dao import VectorDAO
from .db import init_db, health_check, records_table
from .errors import UnknownCollection
from ..util.logging import logger
from ..vector.collection import VectorCollection
from ..vector.registry import DimensionRegistry


class VectorDatabase:
    """Holds every collection of the corpus."""

    def __init__(self, collections: Optional[Iterable[str]] = None, registry: Optional[DimensionRegistry] = None,
                 persist: Optional[bool] = None, db_path: Optional[str] = None, chunk_size: Optional[int] = None):
        self.registry = registry or DimensionRegistry.from_config()
        self.persist = config.is_persistence_enabled() if persist is None else persist
        self.db_path = db_path
        self.dao = VectorDAO(db_path) if self.persist else None

        names = list(collections) if collections is not None else config.get_collection_names()
        for name in names:
            records_table(name)  # validates the name

        self._collections: Dict[str, VectorCollection] = {
            name: VectorCollection(name, self.registry, repository=self.dao,
                                   chunk_size=chunk_size or config.SCAN_CHUNK_SIZE)
            for name in names
        }

    def open(self) -> "VectorDatabase":
        """Create tables and load persisted state. No-op without persistence."""
        if not self.persist:
            return self

        init_db(self._collections, self.db_path)
        for collection in self._collections.values():
            collection.load()
        logger.log_operation("database.open", "success",
                             {"collections": list(self._collections), "db_path": self.db_path or config.get_db_path()})
        return self

    def collection(self, name: str) -> VectorCollection:
        try:
            return self._collections[name]
        except KeyError:
            raise UnknownCollection(name) from None

    @property
    def collection_names(self) -> List[str]:
        return list(self._collections)

    def healthy(self) -> bool:
        if not self.persist:
            return True
        return health_check(self.db_path)


def open_database(**kwargs) -> VectorDatabase:
    """Construct a VectorDatabase from configuration and load persisted state."""
    return VectorDatabase(**kwargs).open()
