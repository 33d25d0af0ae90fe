from __future__ import annotations

import abc
import contextlib
import logging
import operator
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterator, Mapping, Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import BulkWriteError, ConnectionFailure, OperationFailure, PyMongoError

LOGGER = logging.getLogger("bookbench.store")

NAMESPACE_NOT_FOUND = 26
DUPLICATE_KEY = 11000
SERVER_SELECTION_TIMEOUT_MS_DEFAULT = 10_000

IndexKeys = Sequence[tuple[str, Any]]


class StorageError(Exception):
    """Base class for failures raised by a storage driver."""


class StorageConnectionError(StorageError, ConnectionError):
    """Raised when the backing store cannot be reached. Fatal for a benchmark run."""


class CollectionNotFound(StorageError):
    """Raised when dropping a collection that does not exist."""


class StatsUnavailable(StorageError):
    """The store cannot report a statistic for a collection."""


@dataclass(frozen=True)
class DocumentFailure:
    index: int | None
    code: int | None
    message: str


class PartialBatchFailure(StorageError):
    """Some documents of an unordered batch were rejected; the rest were written."""

    def __init__(
        self, collection: str, inserted: int, failures: Sequence[DocumentFailure]
    ) -> None:
        super().__init__(
            f"{len(failures)} document(s) rejected by {collection} ({inserted} inserted)"
        )
        self.collection = collection
        self.inserted = inserted
        self.failures = list(failures)


@dataclass(frozen=True)
class PlanStats:
    docs_examined: int | None = None
    keys_examined: int | None = None


@dataclass(frozen=True)
class StatsResult:
    """Either a statistic value or the reason it is unavailable."""

    value: float | None = None
    error: StatsUnavailable | None = None

    @classmethod
    def ok(cls, value: float) -> "StatsResult":
        return cls(value=value)

    @classmethod
    def failed(cls, error: StatsUnavailable) -> "StatsResult":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def map(self, func: Callable[[float], float]) -> "StatsResult":
        if self.error is not None:
            return self
        return StatsResult.ok(func(self.value))

    def unwrap_or_else(self, fallback: Callable[[StatsUnavailable], float]) -> float:
        if self.error is not None:
            return fallback(self.error)
        return self.value


class StorageDriver(abc.ABC):
    """Minimal capability set the benchmark harness needs from a document store."""

    @contextlib.asynccontextmanager
    async def connected(self) -> AsyncIterator["StorageDriver"]:
        await self.connect()
        try:
            yield self
        finally:
            await self.disconnect()

    @abc.abstractmethod
    async def connect(self) -> None: ...

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    async def insert_many(self, collection: str, documents: Sequence[dict]) -> int:
        """Insert documents unordered; raise PartialBatchFailure if some were rejected."""

    @abc.abstractmethod
    async def find(self, collection: str, predicate: Mapping[str, Any]) -> list[dict]: ...

    @abc.abstractmethod
    async def distinct(
        self, collection: str, field: str, predicate: Mapping[str, Any]
    ) -> list[Any]: ...

    @abc.abstractmethod
    async def explain(self, collection: str, predicate: Mapping[str, Any]) -> PlanStats: ...

    @abc.abstractmethod
    async def create_index(self, collection: str, keys: IndexKeys) -> str:
        """Create an index; creating an existing index is a no-op."""

    @abc.abstractmethod
    async def count(self, collection: str) -> int: ...

    @abc.abstractmethod
    async def estimated_count(self, collection: str) -> int: ...

    @abc.abstractmethod
    async def collection_size_bytes(self, collection: str) -> StatsResult: ...

    @abc.abstractmethod
    async def drop_collection(self, collection: str) -> None:
        """Drop a collection; raise CollectionNotFound when it does not exist."""


@contextlib.contextmanager
def _connection_guard(operation: str) -> Iterator[None]:
    try:
        yield
    except ConnectionFailure as exc:
        raise StorageConnectionError(f"lost connection to MongoDB during {operation}") from exc


class MongoStorageDriver(StorageDriver):
    """Storage driver backed by MongoDB through motor."""

    def __init__(
        self,
        uri: str,
        database: str,
        server_selection_timeout_ms: int = SERVER_SELECTION_TIMEOUT_MS_DEFAULT,
    ) -> None:
        self._uri = uri
        self._database_name = database
        self._server_selection_timeout_ms = server_selection_timeout_ms
        self._client: AsyncIOMotorClient | None = None
        self._db = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        LOGGER.info("Connecting to MongoDB...")
        client = AsyncIOMotorClient(
            self._uri,
            serverSelectionTimeoutMS=self._server_selection_timeout_ms,
            tz_aware=True,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            raise StorageConnectionError("failed to connect to MongoDB") from exc
        self._client = client
        self._db = client[self._database_name]
        LOGGER.info("Connected to MongoDB database %s", self._database_name)

    async def disconnect(self) -> None:
        if self._client is None:
            return
        self._client.close()
        self._client = None
        self._db = None
        LOGGER.info("Disconnected from MongoDB")

    def _database(self):
        if self._db is None:
            raise StorageConnectionError("MongoDB driver is not connected")
        return self._db

    async def insert_many(self, collection: str, documents: Sequence[dict]) -> int:
        with _connection_guard("insert"):
            try:
                result = await self._database()[collection].insert_many(
                    list(documents), ordered=False
                )
            except BulkWriteError as exc:
                details = exc.details or {}
                failures = [
                    DocumentFailure(
                        index=error.get("index"),
                        code=error.get("code"),
                        message=error.get("errmsg", ""),
                    )
                    for error in details.get("writeErrors", [])
                ]
                raise PartialBatchFailure(
                    collection, details.get("nInserted", 0), failures
                ) from exc
        return len(result.inserted_ids)

    async def find(self, collection: str, predicate: Mapping[str, Any]) -> list[dict]:
        with _connection_guard("find"):
            cursor = self._database()[collection].find(dict(predicate))
            return await cursor.to_list(length=None)

    async def distinct(
        self, collection: str, field: str, predicate: Mapping[str, Any]
    ) -> list[Any]:
        with _connection_guard("distinct"):
            return await self._database()[collection].distinct(field, dict(predicate))

    async def explain(self, collection: str, predicate: Mapping[str, Any]) -> PlanStats:
        with _connection_guard("explain"):
            result = await self._database().command(
                {
                    "explain": {"find": collection, "filter": dict(predicate)},
                    "verbosity": "executionStats",
                }
            )
        stats = result.get("executionStats", {})
        return PlanStats(
            docs_examined=stats.get("totalDocsExamined"),
            keys_examined=stats.get("totalKeysExamined"),
        )

    async def create_index(self, collection: str, keys: IndexKeys) -> str:
        with _connection_guard("create_index"):
            return await self._database()[collection].create_index(list(keys))

    async def count(self, collection: str) -> int:
        with _connection_guard("count"):
            return await self._database()[collection].count_documents({})

    async def estimated_count(self, collection: str) -> int:
        with _connection_guard("estimated_count"):
            return await self._database()[collection].estimated_document_count()

    async def collection_size_bytes(self, collection: str) -> StatsResult:
        with _connection_guard("collStats"):
            try:
                stats = await self._database().command("collStats", collection)
            except OperationFailure as exc:
                return StatsResult.failed(
                    StatsUnavailable(f"collStats failed for {collection}: {exc}")
                )
        size = stats.get("size")
        if size is None:
            return StatsResult.failed(StatsUnavailable(f"collStats for {collection} has no size"))
        return StatsResult.ok(float(size))

    async def drop_collection(self, collection: str) -> None:
        with _connection_guard("drop"):
            try:
                await self._database().command("drop", collection)
            except OperationFailure as exc:
                if exc.code == NAMESPACE_NOT_FOUND:
                    raise CollectionNotFound(collection) from exc
                raise StorageError(f"failed to drop {collection}: {exc}") from exc


_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$gt": operator.gt,
    "$gte": operator.ge,
}


def _lookup(values: Sequence[Any]):
    try:
        return frozenset(values)
    except TypeError:
        return tuple(values)


def _compile_condition(field: str, condition: Any) -> Callable[[dict], bool]:
    if not (isinstance(condition, Mapping) and condition and all(k.startswith("$") for k in condition)):
        return lambda document: document.get(field) == condition

    checks: list[Callable[[Any], bool]] = []
    for op, operand in condition.items():
        if op in _COMPARISONS:
            compare = _COMPARISONS[op]
            if op in ("$eq", "$ne"):
                checks.append(lambda value, c=compare, o=operand: c(value, o))
            else:
                checks.append(
                    lambda value, c=compare, o=operand: value is not None and c(value, o)
                )
        elif op == "$in":
            members = _lookup(operand)
            checks.append(lambda value, m=members: value in m)
        elif op == "$nin":
            members = _lookup(operand)
            checks.append(lambda value, m=members: value not in m)
        else:
            raise ValueError(f"Unsupported query operator: {op}")

    return lambda document: all(check(document.get(field)) for check in checks)


def compile_predicate(predicate: Mapping[str, Any]) -> Callable[[dict], bool]:
    """Turn a MongoDB-style filter into a document matcher."""
    clauses: list[Callable[[dict], bool]] = []
    for key, condition in predicate.items():
        if key == "$or":
            branches = [compile_predicate(branch) for branch in condition]
            clauses.append(lambda document, b=branches: any(m(document) for m in b))
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level operator: {key}")
        else:
            clauses.append(_compile_condition(key, condition))
    return lambda document: all(clause(document) for clause in clauses)


def index_name(keys: IndexKeys) -> str:
    return "_".join(f"{field}_{direction}" for field, direction in keys)


class InMemoryStorageDriver(StorageDriver):
    """Dict-backed store understanding the filters the harness emits.

    Queries are full scans, so plan statistics report every stored document as
    examined and no index keys. Storage size is never available.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[dict]] = {}
        self._ids: dict[str, set[Any]] = {}
        self._indexes: dict[str, dict[str, list[tuple[str, Any]]]] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        LOGGER.info("Using in-memory storage")

    async def disconnect(self) -> None:
        self._connected = False

    def _documents(self, collection: str) -> list[dict]:
        if not self._connected:
            raise StorageConnectionError("in-memory driver is not connected")
        return self._collections.get(collection, [])

    def index_information(self, collection: str) -> dict[str, list[tuple[str, Any]]]:
        return dict(self._indexes.get(collection, {}))

    async def insert_many(self, collection: str, documents: Sequence[dict]) -> int:
        self._documents(collection)
        stored = self._collections.setdefault(collection, [])
        ids = self._ids.setdefault(collection, set())
        failures: list[DocumentFailure] = []
        inserted = 0
        for index, document in enumerate(documents):
            document_id = document.setdefault("_id", ObjectId())
            if document_id in ids:
                failures.append(
                    DocumentFailure(
                        index=index,
                        code=DUPLICATE_KEY,
                        message=f"duplicate key: {{ _id: {document_id!r} }}",
                    )
                )
                continue
            ids.add(document_id)
            stored.append(dict(document))
            inserted += 1
        if failures:
            raise PartialBatchFailure(collection, inserted, failures)
        return inserted

    async def find(self, collection: str, predicate: Mapping[str, Any]) -> list[dict]:
        matcher = compile_predicate(predicate)
        return [dict(doc) for doc in self._documents(collection) if matcher(doc)]

    async def distinct(
        self, collection: str, field: str, predicate: Mapping[str, Any]
    ) -> list[Any]:
        matcher = compile_predicate(predicate)
        seen: dict[Any, None] = {}
        for document in self._documents(collection):
            if matcher(document) and field in document:
                seen.setdefault(document[field], None)
        return list(seen)

    async def explain(self, collection: str, predicate: Mapping[str, Any]) -> PlanStats:
        compile_predicate(predicate)
        return PlanStats(docs_examined=len(self._documents(collection)), keys_examined=0)

    async def create_index(self, collection: str, keys: IndexKeys) -> str:
        self._documents(collection)
        name = index_name(keys)
        self._indexes.setdefault(collection, {}).setdefault(name, list(keys))
        return name

    async def count(self, collection: str) -> int:
        return len(self._documents(collection))

    async def estimated_count(self, collection: str) -> int:
        return len(self._documents(collection))

    async def collection_size_bytes(self, collection: str) -> StatsResult:
        self._documents(collection)
        return StatsResult.failed(
            StatsUnavailable("in-memory storage does not track collection size")
        )

    async def drop_collection(self, collection: str) -> None:
        self._documents(collection)
        if collection not in self._collections and collection not in self._indexes:
            raise CollectionNotFound(collection)
        self._collections.pop(collection, None)
        self._ids.pop(collection, None)
        self._indexes.pop(collection, None)


__all__ = [
    "CollectionNotFound",
    "DocumentFailure",
    "InMemoryStorageDriver",
    "MongoStorageDriver",
    "PartialBatchFailure",
    "PlanStats",
    "StatsResult",
    "StatsUnavailable",
    "StorageConnectionError",
    "StorageDriver",
    "StorageError",
    "compile_predicate",
]
