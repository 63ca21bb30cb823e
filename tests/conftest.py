import asyncio
import os
from dataclasses import replace

# Use the in-memory backend for tests to avoid needing a MongoDB server.
# Must happen before importing the app, which reads settings at import time.
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

from todo_api.db import MongoConnection, MongoRepository  # noqa: E402
from todo_api.main import app  # noqa: E402
from todo_api.repositories import InMemoryRepository, get_repository  # noqa: E402
from todo_api.schemas import parse_fields  # noqa: E402
from todo_api.settings import get_settings  # noqa: E402


def mock_mongo_client(url, **kwargs):
    return AsyncMongoMockClient(tz_aware=True)


def make_mongo_repository():
    """MongoRepository running against an in-process mongomock server."""
    settings = replace(
        get_settings(),
        persistence_backend="mongodb",
        mongodb_url="mongodb://localhost:27017",
        mongodb_db="todos_test",
    )
    return MongoRepository(settings, MongoConnection(settings, client_factory=mock_mongo_client))


@pytest.fixture(params=["memory", "mongodb"])
def repo(request):
    """A fresh, empty repository per test, for each backend."""
    if request.param == "mongodb":
        return make_mongo_repository()
    return InMemoryRepository()


@pytest.fixture
def client(repo):
    app.dependency_overrides[get_repository] = lambda: repo
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def seed(repo):
    """Insert todos straight into the repository; returns the created entities in order."""

    def _seed(*payloads):
        return [asyncio.run(repo.create(parse_fields(p, require_title=True))) for p in payloads]

    return _seed
