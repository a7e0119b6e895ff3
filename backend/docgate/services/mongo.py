import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.results import DeleteResult, UpdateResult

from ..exceptions import InvalidTarget
from ..utils import build_type_registry

logger = logging.getLogger("docgate.mongo")

_DB_FORBIDDEN = set('/\\. "$*<>:|?\x00')
_DB_MAX_BYTES = 63
_NS_MAX_BYTES = 255


class ConnectionManager:
    """
    Owns the process-wide MongoClient (and with it pymongo's connection pool).
    The client is created on first use and closed on shutdown.
    """

    def __init__(
        self,
        uri: str,
        server_selection_timeout_ms: int = 5000,
        client_factory: Callable[..., Any] = MongoClient,
    ) -> None:
        self._uri = uri
        self._timeout_ms = server_selection_timeout_ms
        self._factory = client_factory
        self._lock = threading.Lock()
        self._client: Optional[Any] = None

    def client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = self._factory(
                    self._uri,
                    serverSelectionTimeoutMS=self._timeout_ms,
                    type_registry=build_type_registry(),
                    tz_aware=True,
                )
                logger.info("MongoDB client created")
            return self._client

    def close(self) -> bool:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
            logger.info("MongoDB client closed")
            return True
        return False


def validate_target(database: Any, collection: Any) -> None:
    """Raise InvalidTarget unless both names are usable MongoDB names."""
    if not isinstance(database, str) or not database:
        raise InvalidTarget("database is required and must be a non-empty string")
    if not isinstance(collection, str) or not collection:
        raise InvalidTarget("collection is required and must be a non-empty string")
    bad = sorted(set(database) & _DB_FORBIDDEN)
    if bad:
        raise InvalidTarget(f"Invalid database name {database!r}: contains {''.join(bad)!r}")
    if len(database.encode("utf-8")) > _DB_MAX_BYTES:
        raise InvalidTarget(f"Invalid database name {database!r}: longer than {_DB_MAX_BYTES} bytes")
    if "$" in collection or "\x00" in collection:
        raise InvalidTarget(f"Invalid collection name {collection!r}: contains '$' or a null character")
    if collection.startswith("system."):
        raise InvalidTarget(f"Invalid collection name {collection!r}: the 'system.' prefix is reserved")
    if len(f"{database}.{collection}".encode("utf-8")) > _NS_MAX_BYTES:
        raise InvalidTarget(f"Invalid namespace {database}.{collection}: longer than {_NS_MAX_BYTES} bytes")


def _sort_spec(sort: Any) -> Any:
    if isinstance(sort, Mapping):
        return list(sort.items())
    if isinstance(sort, list):
        return [tuple(item) if isinstance(item, (list, tuple)) else item for item in sort]
    return sort


class CollectionHandle:
    """Bound reference to one (database, collection) pair.

    Carries no request state; two handles for the same pair behave the same.
    """

    __slots__ = ("database", "collection", "_col")

    def __init__(self, database: str, collection: str, col: Collection) -> None:
        self.database = database
        self.collection = collection
        self._col = col

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.collection}"

    def insert_one(self, document: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(document, dict):
            return None
        res = self._col.insert_one(document)
        if not res.acknowledged:
            return None
        return document

    def insert_many(self, documents: Any) -> List[Dict[str, Any]]:
        if not documents:
            return []
        res = self._col.insert_many(documents)
        if not res.acknowledged:
            return []
        return list(documents)

    def find_one(self, filter: Any = None, projection: Any = None) -> Optional[Dict[str, Any]]:
        return self._col.find_one(filter, projection)

    def find(self, filter: Any = None, projection: Any = None, sort: Any = None, limit: Any = None) -> List[Dict[str, Any]]:
        cursor = self._col.find(filter, projection)
        if sort:
            cursor = cursor.sort(_sort_spec(sort))
        if limit is not None:
            cursor = cursor.limit(limit)
        return list(cursor)

    def update_one(self, filter: Any, update: Any, upsert: bool = False) -> UpdateResult:
        return self._col.update_one(filter, update, upsert=upsert)

    def update_many(self, filter: Any, update: Any) -> UpdateResult:
        return self._col.update_many(filter, update)

    def delete_one(self, filter: Any) -> DeleteResult:
        return self._col.delete_one(filter)

    def delete_many(self, filter: Any) -> DeleteResult:
        return self._col.delete_many(filter)

    def aggregate(self, pipeline: Any) -> List[Dict[str, Any]]:
        return list(self._col.aggregate(pipeline))

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, CollectionHandle) and other.namespace == self.namespace

    def __hash__(self) -> int:
        return hash(("CollectionHandle", self.database, self.collection))

    def __repr__(self) -> str:
        return f"CollectionHandle({self.database!r}, {self.collection!r})"


class CollectionBinder:
    """
    Resolves (database, collection) pairs into CollectionHandles and
    memoizes them for the process lifetime.
    """

    def __init__(self, conn: ConnectionManager) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._handles: Dict[Tuple[str, str], CollectionHandle] = {}

    def bind(self, database: Any, collection: Any) -> CollectionHandle:
        validate_target(database, collection)
        key = (database, collection)
        handle = self._handles.get(key)
        if handle is not None:
            return handle
        with self._lock:
            # another thread may have won the first bind
            handle = self._handles.get(key)
            if handle is None:
                col = self._conn.client()[database][collection]
                handle = CollectionHandle(database, collection, col)
                self._handles[key] = handle
                logger.debug("Bound %s", handle.namespace)
        return handle

    def cached_pairs(self) -> List[Tuple[str, str]]:
        with self._lock:
            return sorted(self._handles)

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()
