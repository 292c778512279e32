"""Shared fixtures: an app wired to an in-memory Mongo and a logged-in user."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from main import create_app
from utils.config import Settings
from utils.database import ensure_indexes

AUTH_HEADER = "X-Authorization"
PASSWORD = "pw123456"


@pytest.fixture
def settings() -> Settings:
    return Settings(database_name="forum_test", environment="test", log_level="WARNING", enable_maintenance=True)


@pytest_asyncio.fixture
async def db():
    database = AsyncMongoMockClient()["forum_test"]
    await ensure_indexes(database)
    return database


@pytest_asyncio.fixture
async def client(db, settings):
    app = create_app(db=db, settings=settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def register(client, username, email, password=PASSWORD, **extra):
    r = await client.post("/users", json={"username": username, "email": email, "plaintextPassword": password, **extra})
    if r.status_code != 201:
        pytest.fail(f"Registering {username} failed: {r.status_code} {r.text}")
    return r.json()


def auth(user: dict) -> dict:
    return {AUTH_HEADER: user["authToken"]}


@pytest_asyncio.fixture
async def bob(client):
    return await register(client, "Bob123", "bob@example.com", displayName="Bobby")


@pytest_asyncio.fixture
async def alice(client):
    return await register(client, "alice", "alice@example.com", displayName="Alice")


@pytest_asyncio.fixture
async def community(client, bob):
    r = await client.post("/communities", json={"name": "python", "description": "All things Python"}, headers=auth(bob))
    assert r.status_code == 201
    return r.json()


@pytest_asyncio.fixture
async def post(client, bob, community):
    r = await client.post(
        f"/communities/{community['id']}/posts",
        json={"title": "Hello forum", "bodyText": "First post"},
        headers=auth(bob),
    )
    assert r.status_code == 201
    return r.json()
