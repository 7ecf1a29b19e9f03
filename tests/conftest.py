from __future__ import annotations

from dataclasses import dataclass

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from app.tickets.assignment import RoundRobinAssignmentPolicy
from app.tickets.directory import SqlUserDirectory
from app.tickets.models import Principal, Role, User
from app.tickets.repository import SqlTicketStore
from app.tickets.service import TicketService


@dataclass
class Accounts:
    customer: User
    other_customer: User
    agents: list[User]

    def principal(self, user: User) -> Principal:
        return Principal(id=user.id, role=user.role)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    # File backed so concurrent sessions get their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory: async_sessionmaker, engine: AsyncEngine) -> SqlTicketStore:
    return SqlTicketStore(session_factory, engine=engine)


@pytest.fixture
def directory(session_factory: async_sessionmaker) -> SqlUserDirectory:
    return SqlUserDirectory(session_factory)


@pytest.fixture
def service(store: SqlTicketStore, directory: SqlUserDirectory) -> TicketService:
    return TicketService(store, directory, assignment_policy=RoundRobinAssignmentPolicy())


@pytest_asyncio.fixture
async def accounts(directory: SqlUserDirectory) -> Accounts:
    customer = await directory.create_user(name="Carla Customer", email="carla@example.com")
    other_customer = await directory.create_user(name="Omar Customer", email="omar@example.com")
    agents = [
        await directory.create_user(name=f"Agent {index}", email=f"agent{index}@example.com", role=Role.AGENT)
        for index in (1, 2, 3)
    ]
    return Accounts(customer=customer, other_customer=other_customer, agents=agents)
