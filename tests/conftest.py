"""Shared fixtures: a throwaway sqlite store, the app wired to it, and fakes."""
import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TRACING_ENABLED", "false")

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from socialhub.auth import Identity, create_access_token
from socialhub.database import build_engine, build_sessionmaker, init_db
from socialhub.main import create_app
from socialhub.models import User
from socialhub.realtime.hub import EventHub


class RecordingSession:
    """Stands in for a live connection; remembers what it was handed."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.events = []

    def deliver(self, event, payload):
        if not self.accept:
            return False
        self.events.append((event, payload))
        return True

    def named(self, event):
        return [payload for name, payload in self.events if name == event]


class FakeMedia:
    """In-memory media store with the MediaStore call surface."""

    def __init__(self):
        self.uploaded = []
        self.deleted = []

    async def upload(self, content):
        url = f"http://media.test/media/images/{len(self.uploaded)}.jpg"
        self.uploaded.append(url)
        return url

    async def upload_many(self, contents):
        return [await self.upload(content) for content in contents]

    async def delete(self, urls):
        self.deleted.extend([urls] if isinstance(urls, str) else urls)
        return True


def _store_down(statement):
    return OperationalError(statement, {}, Exception("store unavailable"))


class BrokenSession:
    """An AsyncSession whose every round-trip to the store fails."""

    def add(self, obj):
        pass

    async def get(self, *args, **kwargs):
        raise _store_down("SELECT")

    async def execute(self, *args, **kwargs):
        raise _store_down("UPDATE")

    async def commit(self):
        raise _store_down("COMMIT")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def broken_sessions():
    return BrokenSession()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.user_id)}"}


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'socialhub.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def app(sessions, media):
    return create_app(session_factory=sessions, media=media)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user(sessions):
    counter = itertools.count(1)

    async def _make(name=None, **fields):
        name = name or f"user{next(counter)}"
        async with sessions() as db:
            user = User(email=f"{name}@example.com", name=name, **fields)
            db.add(user)
            await db.commit()
        return user

    return _make


@pytest.fixture
def identity_of():
    return Identity.from_user
