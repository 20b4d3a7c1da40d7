"""Shared fixtures for the CardDAV test suite."""

import base64
from datetime import UTC, datetime, timedelta

import pytest
from starlette.testclient import TestClient

from life_carddav.auth import MemoryUserDirectory
from life_carddav.carddav import CardDAVEngine, MemoryCardDAVStore
from life_carddav.config import CardDAVConfig
from life_carddav.server import create_app

USER_ID = "user-1"
USER_EMAIL = "alice@example.com"
USER_PASSWORD = "correct horse: battery staple"

OTHER_USER_ID = "user-2"
OTHER_EMAIL = "bob@example.com"
OTHER_PASSWORD = "hunter2"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


def basic_auth(email: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{email}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryCardDAVStore()


@pytest.fixture
def engine(store, clock):
    return CardDAVEngine(store, clock=clock)


@pytest.fixture
async def address_book(engine):
    """The default address book of USER_ID."""
    books = await engine.address_books(USER_ID)
    return books[0]


@pytest.fixture
def users():
    directory = MemoryUserDirectory()
    directory.add_user(USER_EMAIL, USER_PASSWORD, user_id=USER_ID)
    directory.add_user(OTHER_EMAIL, OTHER_PASSWORD, user_id=OTHER_USER_ID)
    return directory


@pytest.fixture
def auth_headers():
    return basic_auth(USER_EMAIL, USER_PASSWORD)


@pytest.fixture
def other_auth_headers():
    return basic_auth(OTHER_EMAIL, OTHER_PASSWORD)


@pytest.fixture
def config():
    return CardDAVConfig()


@pytest.fixture
def client(store, users, config, clock):
    app = create_app(store, users, config, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
