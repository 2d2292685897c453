import uuid

import pytest
import pytest_asyncio
from fastapi import Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_db
from main import app
from models import Base
from routers.auth.auth import get_current_user
from utils.realtime import sales_events


class Actor:
    """The user every request in a test is made as"""

    def __init__(self):
        self.current = None

    def as_role(self, role: str, user_id=None, name=None) -> dict:
        self.current = {
            "user_id": str(user_id or uuid.uuid4()),
            "email": f"{role.replace(' ', '.')}@vintora.test",
            "name": name or role.title(),
            "role": role,
        }
        return self.current


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def actor():
    return Actor()


@pytest_asyncio.fixture
async def client(session_factory, actor):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_current_user(request: Request):
        request.state.current_user = actor.current
        return actor.current

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture
def sales_queue():
    queue = sales_events.subscribe()
    yield queue
    sales_events.unsubscribe(queue)
