import asyncio
from datetime import datetime, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from todo_api.db import MongoConnection, MongoRepository, build_filter, document_to_entity
from todo_api.main import app
from todo_api.repositories import MAX_LIMIT, InMemoryRepository, ListQuery, get_repository
from todo_api.schemas import parse_fields
from todo_api.settings import ConfigurationError, Settings


def make_settings(**overrides):
    values = dict(
        persistence_backend="mongodb",
        mongodb_url=None,
        mongodb_db=None,
        mongodb_collection="todos",
        mongodb_max_pool_size=10,
        cors_allow_origins=["*"],
        log_level="INFO",
        host="127.0.0.1",
        port=3000,
    )
    values.update(overrides)
    return Settings(**values)


class TestBuildFilter:
    def test_empty_query(self):
        assert build_filter(ListQuery()) == {}

    def test_all_filters(self):
        flt = build_filter(ListQuery(completed=False, status="pending", tag="urgent", search="a.b"))
        assert flt == {
            "completed": False,
            "status": "pending",
            "tags": "urgent",
            "$or": [
                {"title": {"$regex": r"a\.b", "$options": "i"}},
                {"description": {"$regex": r"a\.b", "$options": "i"}},
            ],
        }


class TestDocumentMapping:
    def test_object_id_becomes_string_id(self):
        oid = ObjectId()
        now = datetime.now(timezone.utc)
        doc = {"_id": oid, "title": "t", "createdAt": now, "updatedAt": now, "__v": 0}
        entity = document_to_entity(doc)
        assert entity["id"] == str(oid)
        assert "_id" not in entity
        assert "__v" not in entity
        assert entity["title"] == "t"


class TestConfiguration:
    def test_require_mongodb(self):
        with pytest.raises(ConfigurationError):
            make_settings(mongodb_url="mongodb://localhost:27017").require_mongodb()
        assert make_settings(mongodb_url="mongodb://h", mongodb_db="d").require_mongodb() == (
            "mongodb://h",
            "d",
        )

    def test_connect_without_settings_fails_fast(self):
        conn = MongoConnection(make_settings())
        with pytest.raises(ConfigurationError):
            asyncio.run(conn.connect())
        assert not conn.is_connected

    def test_missing_configuration_fails_request(self):
        repo = MongoRepository(make_settings())
        app.dependency_overrides[get_repository] = lambda: repo
        try:
            with TestClient(app) as client:
                res = client.get("/todos")
        finally:
            app.dependency_overrides.clear()
        assert res.status_code == 500
        body = res.json()
        assert body["status"] == "error"
        assert "MONGODB_URL" in body["message"]


class CountingRepository(InMemoryRepository):
    def __init__(self):
        super().__init__()
        self.connects = 0

    async def connect(self):
        self.connects += 1


class TestConnectionDependency:
    def test_connect_awaited_before_each_request(self):
        repo = CountingRepository()
        app.dependency_overrides[get_repository] = lambda: repo
        try:
            with TestClient(app) as client:
                client.post("/todos", json={"title": "a"})
                client.get("/todos")
                client.get("/todos/missing")
        finally:
            app.dependency_overrides.clear()
        assert repo.connects == 3

    def test_unexpected_storage_error_is_500(self):
        class BrokenRepository(InMemoryRepository):
            async def list(self, query=None):
                raise RuntimeError("storage unreachable")

        app.dependency_overrides[get_repository] = lambda: BrokenRepository()
        try:
            with TestClient(app, raise_server_exceptions=False) as client:
                res = client.get("/todos")
        finally:
            app.dependency_overrides.clear()
        assert res.status_code == 500
        assert res.json() == {"status": "error", "message": "Internal server error"}


def run(coro):
    return asyncio.run(coro)


class CountingClientFactory:
    def __init__(self):
        self.calls = 0

    def __call__(self, url, **kwargs):
        self.calls += 1
        return AsyncMongoMockClient(tz_aware=True)


@pytest.fixture
def client_factory():
    return CountingClientFactory()


@pytest.fixture
def mongo_repo(client_factory):
    settings = make_settings(mongodb_url="mongodb://localhost:27017", mongodb_db="todos_test")
    return MongoRepository(settings, MongoConnection(settings, client_factory=client_factory))


class TestMongoRepository:
    def test_create_returns_stored_timestamps(self, mongo_repo):
        created = run(mongo_repo.create(parse_fields({"title": "Buy milk"})))
        assert ObjectId.is_valid(created["id"])
        assert created["createdAt"].microsecond % 1000 == 0

        stored = run(mongo_repo.get(created["id"]))
        assert stored["createdAt"] == created["createdAt"]
        assert stored["updatedAt"] == created["updatedAt"]
        assert stored["status"] == "pending"
        assert stored["tags"] == []
        assert "description" not in stored

    def test_connects_once(self, mongo_repo, client_factory):
        run(mongo_repo.connect())
        run(mongo_repo.create(parse_fields({"title": "a"})))
        run(mongo_repo.list(ListQuery()))
        assert client_factory.calls == 1

    def test_close_then_reconnect(self, mongo_repo, client_factory):
        run(mongo_repo.connect())
        run(mongo_repo.close())
        run(mongo_repo.connect())
        assert client_factory.calls == 2

    def test_replace_overwrites_and_unsets(self, mongo_repo):
        created = run(
            mongo_repo.create(
                parse_fields(
                    {
                        "title": "Initial",
                        "description": "A",
                        "dueDate": "2100-01-01",
                        "completed": True,
                        "tags": ["x"],
                        "followersCount": 4,
                    }
                )
            )
        )
        replaced = run(mongo_repo.replace(created["id"], parse_fields({"title": "Replaced"})))
        assert replaced["title"] == "Replaced"
        assert replaced["completed"] is False
        assert replaced["tags"] == []
        assert replaced["followersCount"] == 0
        assert "description" not in replaced
        assert "dueDate" not in replaced
        assert replaced["createdAt"] == created["createdAt"]
        assert run(mongo_repo.get(created["id"])) == replaced

    def test_update_merges_and_clears(self, mongo_repo):
        created = run(
            mongo_repo.create(parse_fields({"title": "Keep", "description": "drop", "priority": "high"}))
        )
        updated = run(
            mongo_repo.update(created["id"], parse_fields({"completed": True, "description": None}))
        )
        assert updated["title"] == "Keep"
        assert updated["priority"] == "high"
        assert updated["completed"] is True
        assert "description" not in updated
        assert updated["createdAt"] == created["createdAt"]

    def test_delete_returns_last_state(self, mongo_repo):
        created = run(mongo_repo.create(parse_fields({"title": "Gone"})))
        deleted = run(mongo_repo.delete(created["id"]))
        assert deleted["title"] == "Gone"
        assert run(mongo_repo.get(created["id"])) is None
        assert run(mongo_repo.delete(created["id"])) is None

    def test_missing_and_malformed_ids(self, mongo_repo):
        fields = parse_fields({"title": "x"})
        for todo_id in ["not-an-id", str(ObjectId())]:
            assert run(mongo_repo.get(todo_id)) is None
            assert run(mongo_repo.replace(todo_id, fields)) is None
            assert run(mongo_repo.update(todo_id, fields)) is None
            assert run(mongo_repo.delete(todo_id)) is None

    def test_list_sort_skip_limit(self, mongo_repo):
        created = [run(mongo_repo.create(parse_fields({"title": f"T{i}"}))) for i in range(5)]
        newest_first = [t["id"] for t in reversed(created)]

        items, total = run(mongo_repo.list(ListQuery(limit=2, offset=1)))
        assert total == 5
        assert [t["id"] for t in items] == newest_first[1:3]

    def test_list_filters(self, mongo_repo):
        for payload in [
            {"title": "Buy FOOD", "tags": ["urgent"], "completed": True},
            {"title": "Other", "description": "some foo", "status": "in_progress"},
            {"title": "Nothing"},
        ]:
            run(mongo_repo.create(parse_fields(payload)))

        items, total = run(mongo_repo.list(ListQuery(search="foo")))
        assert total == 2
        assert {t["title"] for t in items} == {"Buy FOOD", "Other"}

        items, _ = run(mongo_repo.list(ListQuery(tag="urgent", completed=True)))
        assert [t["title"] for t in items] == ["Buy FOOD"]

        items, _ = run(mongo_repo.list(ListQuery(status="in_progress")))
        assert [t["title"] for t in items] == ["Other"]

    def test_list_zero_limit_and_cap(self, mongo_repo):
        for i in range(MAX_LIMIT + 3):
            run(mongo_repo.create(parse_fields({"title": f"Bulk {i}"})))

        items, total = run(mongo_repo.list(ListQuery(limit=0)))
        assert items == []
        assert total == MAX_LIMIT + 3

        items, total = run(mongo_repo.list(ListQuery(limit=10_000)))
        assert len(items) == MAX_LIMIT
        assert total == MAX_LIMIT + 3
