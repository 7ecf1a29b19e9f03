from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping, Protocol, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import UserTable

from .errors import DuplicateEmailError, NotAnAgentError, UserNotFoundError
from .models import Role, User, UserSummary


class AgentDirectory(Protocol):
    async def list_agents(self) -> Sequence[UserSummary]:
        ...

    async def list_agents_excluding(self, agent_id: str) -> Sequence[UserSummary]:
        ...

    async def get_agent(self, agent_id: str) -> User:
        ...

    async def get_user(self, user_id: str) -> User:
        ...

    async def get_summaries(self, user_ids: Iterable[str]) -> Mapping[str, UserSummary]:
        ...


class SqlUserDirectory:
    """Read access to the `users` table, plus registration for the identity layer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_user(
        self,
        *,
        name: str,
        email: str,
        role: Role = Role.CUSTOMER,
        password_hash: str | None = None,
        age: int | None = None,
        user_id: str | None = None,
    ) -> User:
        now = datetime.now(timezone.utc)
        row = UserTable(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            role=Role(role).value,
            age=age,
            created_at=now,
            updated_at=now,
        )
        if user_id is not None:
            row.id = user_id
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as exc:
            raise DuplicateEmailError(f"User already exists with email {email}") from exc
        return self._table_to_user(row)

    async def list_agents(self) -> Sequence[UserSummary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserTable)
                .where(UserTable.role == Role.AGENT.value)
                .order_by(UserTable.created_at.asc(), UserTable.id.asc())
            )
            return [self._table_to_summary(row) for row in result.scalars().all()]

    async def list_agents_excluding(self, agent_id: str) -> Sequence[UserSummary]:
        return [agent for agent in await self.list_agents() if agent.id != agent_id]

    async def get_user(self, user_id: str) -> User:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        if row is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return self._table_to_user(row)

    async def get_agent(self, agent_id: str) -> User:
        user = await self.get_user(agent_id)
        if user.role is not Role.AGENT:
            raise NotAnAgentError(f"User {agent_id} is not an agent")
        return user

    async def get_summaries(self, user_ids: Iterable[str]) -> Mapping[str, UserSummary]:
        wanted = sorted(set(user_ids))
        if not wanted:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(UserTable.id.in_(wanted)))
            return {row.id: self._table_to_summary(row) for row in result.scalars().all()}

    @staticmethod
    def _table_to_summary(row: UserTable) -> UserSummary:
        return UserSummary(id=row.id, name=row.name, email=row.email)

    @staticmethod
    def _table_to_user(row: UserTable) -> User:
        return User(
            id=row.id,
            name=row.name,
            email=row.email,
            role=Role(row.role),
            age=row.age,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
