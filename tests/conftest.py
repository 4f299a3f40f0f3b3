"""Shared pytest fixtures."""

from copy import deepcopy
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
import pytest_asyncio
from pymongo import errors as mongo_errors

from sessionstore.core.modules.session.models import DefaultSession
from sessionstore.core.modules.session.service import SessionService


class FakeCursor:
    """Async-iterable stand-in for pymongo cursors."""

    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self.docs = docs

    async def _iterate(self):
        for doc in self.docs:
            yield doc

    def __aiter__(self):
        return self._iterate()


def make_collection(name: str) -> MagicMock:
    collection = MagicMock()
    collection.name = name
    collection.create_index = AsyncMock(return_value=f"{name}_index")
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_delete = AsyncMock(return_value=None)
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    collection.find = MagicMock(return_value=FakeCursor([]))
    collection.aggregate = AsyncMock(return_value=FakeCursor([]))
    return collection


@pytest.fixture
def user_id():
    return UUID("87654321-4321-8765-4321-876543218765")


@pytest.fixture
def session_id():
    return UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def sessions_collection():
    return make_collection("session")


@pytest.fixture
def last_enter_collection():
    return make_collection("last_enter")


@pytest.fixture
def mock_database(sessions_collection, last_enter_collection):
    """Database whose collections record every call."""
    collections = {"session": sessions_collection, "last_enter": last_enter_collection}
    database = MagicMock()
    database.get_collection = MagicMock(side_effect=collections.__getitem__)
    return database


@pytest.fixture
def service(mock_database):
    return SessionService(mock_database, session_model=DefaultSession)


@pytest.fixture
def stored_session(session_id, user_id):
    """Session document as MongoDB returns it."""
    return DefaultSession(
        id=session_id,
        secret="s3cret",
        user_id=user_id,
        ip_addresses=["10.0.0.1"],
        user_agent="Mozilla/5.0",
        auth_method="password",
    ).to_mongo()


@pytest.fixture
def cursor_of():
    """Build an async cursor over the given documents."""
    return FakeCursor


_MISSING = object()


def _resolve(doc: Any, path: str) -> Any:
    """Walk a dotted path, fanning out over arrays the way MongoDB does."""
    value = doc
    for part in path.split("."):
        if isinstance(value, list):
            value = [item[part] for item in value if isinstance(item, dict) and part in item]
        elif isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _matches_value(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(key.startswith("$") for key in condition):
        for operator, operand in condition.items():
            if operator == "$ne":
                if value is not _MISSING and (value == operand or (isinstance(value, list) and operand in value)):
                    return False
            elif operator == "$exists":
                if (value is not _MISSING) != operand:
                    return False
            else:
                raise NotImplementedError(operator)
        return True
    return value == condition or (isinstance(value, list) and condition in value)


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    return all(_matches_value(_resolve(doc, path), condition) for path, condition in query.items())


def _container(doc: dict[str, Any], path: str) -> tuple[dict[str, Any], str]:
    *parents, leaf = path.split(".")
    for part in parents:
        doc = doc.setdefault(part, {})
    return doc, leaf


def _apply_update(doc: dict[str, Any], update: dict[str, Any]) -> None:
    for operator, fields in update.items():
        for path, operand in fields.items():
            parent, leaf = _container(doc, path)
            if operator == "$set":
                parent[leaf] = deepcopy(operand)
            elif operator == "$addToSet":
                items = parent.setdefault(leaf, [])
                if operand not in items:
                    items.append(deepcopy(operand))
            elif operator == "$push":
                parent.setdefault(leaf, []).append(deepcopy(operand))
            elif operator == "$pull":
                if isinstance(parent.get(leaf), list):
                    parent[leaf] = [item for item in parent[leaf] if not _matches(item, operand)]
            else:
                raise NotImplementedError(operator)


class MemoryCollection:
    """In-memory collection implementing the MongoDB operations the session store uses."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.unique_fields: set[str] = set()

    def _check_unique(self, doc: dict[str, Any]) -> None:
        for field in {"_id", *self.unique_fields}:
            if any(other[field] == doc.get(field) for other in self.docs if field in other):
                raise mongo_errors.DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}", code=11000)

    def _first(self, query: dict[str, Any]) -> dict[str, Any] | None:
        return next((doc for doc in self.docs if _matches(doc, query)), None)

    @staticmethod
    def _project(doc: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
        result = deepcopy(doc)
        for field, include in (projection or {}).items():
            if not include:
                result.pop(field, None)
        return result

    async def create_index(self, keys: list[tuple[str, int]], unique: bool = False) -> str:
        if unique:
            self.unique_fields.update(field for field, _ in keys)
        return "_".join(f"{field}_{direction}" for field, direction in keys)

    async def insert_one(self, doc: dict[str, Any]) -> MagicMock:
        self._check_unique(doc)
        self.docs.append(deepcopy(doc))
        return MagicMock(inserted_id=doc["_id"])

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> MagicMock:
        doc = self._first(query)
        if doc is None:
            if upsert:
                doc = {path: value for path, value in query.items() if not isinstance(value, dict)}
                _apply_update(doc, update)
                self.docs.append(doc)
            return MagicMock(matched_count=0, modified_count=0)
        _apply_update(doc, update)
        return MagicMock(matched_count=1, modified_count=1)

    async def find_one(self, query: dict[str, Any], projection: dict[str, int] | None = None) -> dict[str, Any] | None:
        doc = self._first(query)
        return None if doc is None else self._project(doc, projection)

    def find(self, query: dict[str, Any], projection: dict[str, int] | None = None) -> FakeCursor:
        return FakeCursor([self._project(doc, projection) for doc in self.docs if _matches(doc, query)])

    async def find_one_and_delete(self, query: dict[str, Any]) -> dict[str, Any] | None:
        doc = self._first(query)
        if doc is not None:
            self.docs.remove(doc)
        return doc

    async def delete_many(self, query: dict[str, Any]) -> MagicMock:
        kept = [doc for doc in self.docs if not _matches(doc, query)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return MagicMock(deleted_count=deleted)

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> FakeCursor:
        docs = deepcopy(self.docs)
        for stage in pipeline:
            ((operator, argument),) = stage.items()
            if operator == "$match":
                docs = [doc for doc in docs if _matches(doc, argument)]
            elif operator == "$project":
                docs = [
                    {field: _resolve(doc, ref[1:]) for field, ref in argument.items() if isinstance(ref, str)} for doc in docs
                ]
            elif operator == "$unwind":
                field = argument[1:]
                docs = [{**doc, field: item} for doc in docs for item in doc.get(field) or []]
            elif operator == "$replaceRoot":
                docs = [_resolve(doc, argument["newRoot"][1:]) for doc in docs]
            else:
                raise NotImplementedError(operator)
        return FakeCursor(docs)


@pytest.fixture
def memory_database():
    collections = {name: MemoryCollection(name) for name in ("session", "last_enter")}
    database = MagicMock()
    database.get_collection = MagicMock(side_effect=collections.__getitem__)
    database.collections = collections
    return database


@pytest_asyncio.fixture
async def memory_store(memory_database):
    """Session service over in-memory collections, indexes created."""
    store = SessionService(memory_database, session_model=DefaultSession)
    await store.on_start()
    return store
