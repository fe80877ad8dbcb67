"""Global pytest fixtures for the Agent Marketplace.

This module provides shared fixtures for testing including:
- A per-test SQLite database (aiosqlite) with the full schema
- Service-level sessions and an HTTP client over the ASGI app
- Buyers, sellers, agents and admins with their principals
"""

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.infrastructure.database.models import Base
from marketplace.infrastructure.database.session import create_session_factory, get_db
from marketplace.security.auth import Principal
from tests.factories import AgentFactory, UserFactory


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """A fresh SQLite database file with every table created."""
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        poolclass=pool.NullPool,
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests. Tests commit explicitly."""
    async with session_factory() as session:
        yield session


# ===========================================
# HTTP CLIENT
# ===========================================


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, each request on its own session."""
    from marketplace.main import create_app

    app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


# ===========================================
# PARTIES
# ===========================================


@pytest_asyncio.fixture
async def buyer(session_factory):
    async with session_factory() as session:
        user = await UserFactory.create(session, username="buyer")
        await session.commit()
        return user


@pytest_asyncio.fixture
async def seller(session_factory):
    async with session_factory() as session:
        user = await UserFactory.create(session, username="seller")
        await session.commit()
        return user


@pytest_asyncio.fixture
async def admin(session_factory):
    async with session_factory() as session:
        user = await UserFactory.create_admin(session)
        await session.commit()
        return user


@pytest_asyncio.fixture
async def agent_with_key(session_factory, seller):
    """An active agent owned by ``seller`` and its plaintext API key."""
    async with session_factory() as session:
        agent, api_key = await AgentFactory.create(
            session,
            seller_id=seller.id,
            name="CodeBot",
            tags=["python", "testing"],
            base_price=Decimal("50.00"),
        )
        await session.commit()
        return agent, api_key


@pytest.fixture
def buyer_principal(buyer) -> Principal:
    return Principal(user_id=buyer.id, role=buyer.role)


@pytest.fixture
def admin_principal(admin) -> Principal:
    return Principal(user_id=admin.id, role=admin.role)


@pytest.fixture
def agent_principal(agent_with_key) -> Principal:
    agent, _ = agent_with_key
    return Principal(user_id=agent.seller_id, role="agent", agent_id=agent.id)

