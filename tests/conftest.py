"""
Shared fixtures: a MagicMock stand-in for MongoClient whose collections
behave like pymongo's for the calls the gateway makes.
"""

from typing import Any, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.results import DeleteResult, UpdateResult

from docgate.config import Settings
from docgate.main import create_app
from docgate.services.mongo import CollectionBinder, ConnectionManager


def make_cursor(docs: List[Dict[str, Any]]) -> MagicMock:
    cursor = MagicMock(name="Cursor")
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__iter__.side_effect = lambda: iter(list(docs))
    return cursor


def update_result(matched: int, modified: int, upserted_id: Any = None) -> UpdateResult:
    raw: Dict[str, Any] = {"n": matched, "nModified": modified}
    if upserted_id is not None:
        raw["n"] = 1
        raw["upserted"] = upserted_id
    return UpdateResult(raw, True)


def delete_result(deleted: int) -> DeleteResult:
    return DeleteResult({"n": deleted}, True)


def _insert_one(document):
    document.setdefault("_id", ObjectId())
    return MagicMock(acknowledged=True, inserted_id=document["_id"])


def _insert_many(documents):
    for doc in documents:
        doc.setdefault("_id", ObjectId())
    return MagicMock(acknowledged=True, inserted_ids=[d["_id"] for d in documents])


class FakeMongo:
    """Records one MagicMock collection per (database, collection) pair."""

    def __init__(self) -> None:
        self.collections: Dict[Tuple[str, str], MagicMock] = {}
        self.client = MagicMock(name="MongoClient")
        self.client.__getitem__.side_effect = self._database
        self.factory_calls: List[Tuple[tuple, dict]] = []

    def factory(self, *args, **kwargs):
        self.factory_calls.append((args, kwargs))
        return self.client

    def _database(self, db_name: str) -> MagicMock:
        db = MagicMock(name=f"Database({db_name})")
        db.__getitem__.side_effect = lambda coll: self.collection(db_name, coll)
        return db

    def collection(self, db_name: str, coll: str) -> MagicMock:
        key = (db_name, coll)
        if key not in self.collections:
            col = MagicMock(name=f"Collection({db_name}.{coll})")
            col.insert_one.side_effect = _insert_one
            col.insert_many.side_effect = _insert_many
            col.find_one.return_value = None
            col.find.return_value = make_cursor([])
            col.aggregate.return_value = make_cursor([])
            col.update_one.return_value = update_result(0, 0)
            col.update_many.return_value = update_result(0, 0)
            col.delete_one.return_value = delete_result(0)
            col.delete_many.return_value = delete_result(0)
            self.collections[key] = col
        return self.collections[key]


@pytest.fixture
def fake_mongo() -> FakeMongo:
    return FakeMongo()


@pytest.fixture
def conn_mgr(fake_mongo) -> ConnectionManager:
    return ConnectionManager("mongodb://test:27017", client_factory=fake_mongo.factory)


@pytest.fixture
def binder(conn_mgr) -> CollectionBinder:
    return CollectionBinder(conn_mgr)


@pytest.fixture
def settings() -> Settings:
    return Settings(log_dir="", rate_limit_max=0)


@pytest.fixture
def client(settings, conn_mgr):
    app = create_app(settings, conn_mgr)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def sample_collection(fake_mongo) -> MagicMock:
    return fake_mongo.collection("test", "sample")
