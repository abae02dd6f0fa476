"""SQLite document store for journal entities and their embeddings"""

import json
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from journal_memory.errors import InvalidRecordError, StoreUnavailableError
from journal_memory.models.embedding import Embedding, is_legacy_record
from journal_memory.models.entities import Message, Note
from journal_memory.models.queue import EntityType

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Selector = dict[str, Any]


class ChangeOperation(str, Enum):
    """Kind of write that produced a change event"""

    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass
class ChangeEvent:
    """Notification emitted after a committed write"""

    collection: str
    operation: ChangeOperation
    document_id: str
    document: BaseModel | None = None
    previous: BaseModel | None = None


ChangeListener = Callable[[ChangeEvent], Awaitable[None]]


def _compare(op: str, value: Any, operand: Any) -> bool:
    if op == "$eq":
        return value == operand
    if op == "$ne":
        return value != operand
    if op == "$in":
        return value in operand
    if op == "$nin":
        return value not in operand
    if value is None:
        return False
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    if op == "$lte":
        return value <= operand
    raise ValueError(f"Unsupported selector operator: {op}")


def matches(document: dict[str, Any], selector: Selector | None) -> bool:
    """
    Check a document against a selector

    A selector maps field names to either a literal (equality) or a dict of
    operators: ``$eq``, ``$ne``, ``$in``, ``$nin``, ``$gt``, ``$gte``,
    ``$lt``, ``$lte``. All fields must match.
    """
    if not selector:
        return True

    for field, condition in selector.items():
        value = document.get(field)
        if isinstance(condition, dict) and condition and all(
            str(k).startswith("$") for k in condition
        ):
            for op, operand in condition.items():
                if not _compare(op, value, operand):
                    return False
        elif value != condition:
            return False
    return True


class Collection(Generic[T]):
    """A named set of documents validated by one pydantic model"""

    def __init__(self, store: "DocumentStore", name: str, model: type[T]):
        self.store = store
        self.name = name
        self.model = model
        self._listeners: list[ChangeListener] = []

    def _validate(self, document: T | dict[str, Any]) -> T:
        """Validate a write at the store boundary"""
        try:
            if isinstance(document, BaseModel):
                return self.model.model_validate(document.model_dump())
            return self.model.model_validate(document)
        except ValidationError as e:
            raise InvalidRecordError(f"Invalid {self.name} document: {e}") from e

    def _load(self, raw: str) -> T:
        return self.model.model_validate_json(raw)

    async def _notify(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                await listener(event)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """
        Register a coroutine called after every committed write

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def insert(self, document: T | dict[str, Any]) -> T:
        """
        Insert a new document

        Raises:
            InvalidRecordError: If validation fails or the id already exists
        """
        return (await self.bulk_insert([document]))[0]

    async def bulk_insert(self, documents: Iterable[T | dict[str, Any]]) -> list[T]:
        """
        Insert several documents in a single transaction

        Nothing is written when any document is invalid.
        """
        validated = [self._validate(doc) for doc in documents]
        if not validated:
            return []

        with self.store.connection() as conn:
            try:
                conn.executemany(
                    f"INSERT INTO {self.name} (id, document) VALUES (?, ?)",
                    [(doc.id, doc.model_dump_json()) for doc in validated],
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise InvalidRecordError(f"Duplicate {self.name} id: {e}") from e

        await self._notify(
            ChangeEvent(self.name, ChangeOperation.INSERT, doc.id, document=doc)
            for doc in validated
        )
        return validated

    async def upsert(self, document: T | dict[str, Any]) -> T:
        """Insert a document or replace the existing one with the same id"""
        doc = self._validate(document)
        previous = await self.find_one(doc.id)

        with self.store.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.name} (id, document) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET document = excluded.document
                """,
                (doc.id, doc.model_dump_json()),
            )
            conn.commit()

        operation = ChangeOperation.UPDATE if previous else ChangeOperation.INSERT
        await self._notify(
            [ChangeEvent(self.name, operation, doc.id, document=doc, previous=previous)]
        )
        return doc

    async def find_one(self, doc_id: str) -> T | None:
        """Retrieve a document by id"""
        with self.store.connection() as conn:
            row = conn.execute(
                f"SELECT document FROM {self.name} WHERE id = ?", (doc_id,)
            ).fetchone()

        if not row:
            return None
        return self._load(row["document"])

    async def find(self, selector: Selector | None = None) -> list[T]:
        """
        Retrieve documents matching a selector, in insertion order

        Args:
            selector: Field conditions (see ``matches``); None returns everything
        """
        with self.store.connection() as conn:
            if selector and set(selector) == {"id"} and isinstance(selector["id"], str):
                cursor = conn.execute(
                    f"SELECT document FROM {self.name} WHERE id = ? ORDER BY seq",
                    (selector["id"],),
                )
            else:
                cursor = conn.execute(f"SELECT document FROM {self.name} ORDER BY seq")
            rows = cursor.fetchall()

        documents = [self._load(row["document"]) for row in rows]
        if not selector:
            return documents
        return [doc for doc in documents if matches(doc.model_dump(), selector)]

    async def count(self, selector: Selector | None = None) -> int:
        if selector:
            return len(await self.find(selector))

        with self.store.connection() as conn:
            result = conn.execute(f"SELECT COUNT(*) FROM {self.name}").fetchone()
        return result[0] if result else 0

    async def remove(self, doc_id: str) -> bool:
        """Remove a document by id; returns False if it did not exist"""
        previous = await self.find_one(doc_id)
        if previous is None:
            return False

        with self.store.connection() as conn:
            conn.execute(f"DELETE FROM {self.name} WHERE id = ?", (doc_id,))
            conn.commit()

        await self._notify(
            [ChangeEvent(self.name, ChangeOperation.REMOVE, doc_id, previous=previous)]
        )
        return True

    async def remove_where(self, selector: Selector | None = None) -> int:
        """Remove every document matching a selector; returns the count removed"""
        doomed = await self.find(selector)
        if not doomed:
            return 0

        with self.store.connection() as conn:
            conn.executemany(
                f"DELETE FROM {self.name} WHERE id = ?", [(doc.id,) for doc in doomed]
            )
            conn.commit()

        await self._notify(
            ChangeEvent(self.name, ChangeOperation.REMOVE, doc.id, previous=doc) for doc in doomed
        )
        return len(doomed)


class DocumentStore:
    """SQLite-backed store holding embeddings, messages and notes"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        # For :memory: databases, we need to keep a persistent connection
        # because each connection gets a separate in-memory database
        self._memory_conn: sqlite3.Connection | None = None
        self._initialized = False

        self.embeddings: Collection[Embedding] = Collection(self, "embeddings", Embedding)
        self.messages: Collection[Message] = Collection(self, "messages", Message)
        self.notes: Collection[Note] = Collection(self, "notes", Note)

    @property
    def collections(self) -> list[Collection]:
        return [self.embeddings, self.messages, self.notes]

    def entities(self, entity_type: EntityType) -> Collection:
        """Collection holding source entities of the given type"""
        if entity_type is EntityType.MESSAGE:
            return self.messages
        if entity_type is EntityType.NOTE:
            return self.notes
        raise ValueError(f"Unknown entity type: {entity_type}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Create and configure a new database connection

        For :memory: databases, returns the persistent connection.
        For file databases, creates a new connection.

        Raises:
            StoreUnavailableError: If the store is not initialized or was closed
        """
        if not self._initialized:
            raise StoreUnavailableError(f"Document store is not initialized: {self.db_path}")
        return self._open()

    def _open(self) -> sqlite3.Connection:
        if self.db_path == ":memory:":
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(self.db_path)
                self._memory_conn.row_factory = sqlite3.Row
            return self._memory_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, closing it afterwards for file databases"""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            # Never close :memory: connections (they're persistent)
            if self.db_path != ":memory:":
                conn.close()

    async def initialize(self) -> None:
        """Create the database file and one table per collection"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = self._open()
        try:
            for collection in self.collections:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {collection.name} (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        document TEXT NOT NULL
                    )
                """)
            conn.commit()
        finally:
            if self.db_path != ":memory:":
                conn.close()

        self._initialized = True
        logger.info(f"Document store initialized: {self.db_path}")

    async def migrate_legacy_embeddings(self) -> int:
        """
        Rewrite embedding rows stored in the legacy single-``messageId`` shape

        Returns:
            Number of rows upgraded
        """
        with self.connection() as conn:
            rows = conn.execute("SELECT id, document FROM embeddings").fetchall()

            upgraded = 0
            for row in rows:
                data = json.loads(row["document"])
                if not is_legacy_record(data):
                    continue
                embedding = Embedding.model_validate(data)
                conn.execute(
                    "UPDATE embeddings SET document = ? WHERE id = ?",
                    (embedding.model_dump_json(), row["id"]),
                )
                upgraded += 1
            conn.commit()

        if upgraded:
            logger.info(f"Migrated {upgraded} legacy embedding records")
        return upgraded

    async def health_check(self) -> bool:
        """Check if database is properly initialized"""
        try:
            with self.connection() as conn:
                conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()
            return True
        except (StoreUnavailableError, sqlite3.Error):
            return False

    def close(self) -> None:
        """
        Close the store

        For :memory: databases, closes the persistent connection (and drops
        its contents). Further use raises StoreUnavailableError.
        """
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
        self._initialized = False
