from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import TicketReassignmentTable, TicketTable

from .errors import TicketConflictError, TicketNotFoundError
from .models import MAX_REASSIGNMENTS, ReassignmentRecord, Ticket, TicketMutation
from .state import TicketStatus


class TicketStore(Protocol):
    async def create(self, ticket: Ticket) -> Ticket:
        ...

    async def get_by_id(self, ticket_id: str) -> Ticket | None:
        ...

    async def find_by_customer(self, customer_id: str) -> Sequence[Ticket]:
        ...

    async def find_by_agent(self, agent_id: str) -> Sequence[Ticket]:
        ...

    async def update(self, ticket_id: str, mutation: TicketMutation, *, expected_version: int) -> Ticket:
        ...


class SqlTicketStore:
    """Persistence helper wrapping the `tickets` and `ticket_reassignments` tables.

    Mutations are compare-and-swap writes keyed on the ticket's ``version``.
    Reassignments additionally require ``reassignment_count`` to be below the
    cap inside the same ``UPDATE`` statement, so two concurrent reassignments
    can never both commit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    TicketTable(
                        id=ticket.id,
                        customer_id=ticket.customer_id,
                        assigned_agent_id=ticket.assigned_agent_id,
                        issue_details=ticket.issue_details,
                        status=ticket.status.value,
                        reassignment_count=0,
                        version=ticket.version,
                        created_at=ticket.created_at,
                        updated_at=ticket.updated_at,
                    )
                )
        return Ticket(
            id=ticket.id,
            customer_id=ticket.customer_id,
            assigned_agent_id=ticket.assigned_agent_id,
            issue_details=ticket.issue_details,
            status=ticket.status,
            reassignment_count=0,
            reassignment_history=(),
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    async def get_by_id(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            history = await self._load_history(session, [row.id])
        return self._table_to_ticket(row, history.get(row.id, ()))

    async def find_by_customer(self, customer_id: str) -> Sequence[Ticket]:
        return await self._find(TicketTable.customer_id == customer_id)

    async def find_by_agent(self, agent_id: str) -> Sequence[Ticket]:
        return await self._find(TicketTable.assigned_agent_id == agent_id)

    async def update(self, ticket_id: str, mutation: TicketMutation, *, expected_version: int) -> Ticket:
        now = datetime.now(timezone.utc)
        conditions: list[Any] = [TicketTable.id == ticket_id, TicketTable.version == expected_version]
        values: dict[str, Any] = {"version": TicketTable.version + 1, "updated_at": now}

        if mutation.expected_agent_id is not None:
            conditions.append(TicketTable.assigned_agent_id == mutation.expected_agent_id)
        if mutation.status is not None:
            values["status"] = mutation.status.value
        record = mutation.reassignment
        if record is not None:
            conditions.append(TicketTable.reassignment_count < MAX_REASSIGNMENTS)
            values["assigned_agent_id"] = record.to_agent_id
            values["reassignment_count"] = TicketTable.reassignment_count + 1

        async with self._session_factory() as session:
            async with session.begin():
                statement = (
                    update(TicketTable)
                    .where(*conditions)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(statement)
                if result.rowcount != 1:
                    if await session.get(TicketTable, ticket_id) is None:
                        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                    raise TicketConflictError(f"Ticket {ticket_id} was modified concurrently")

                row = await session.get(TicketTable, ticket_id)
                if row is None:  # pragma: no cover - row was just updated
                    raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                if record is not None:
                    session.add(
                        TicketReassignmentTable(
                            ticket_id=ticket_id,
                            position=row.reassignment_count - 1,
                            from_agent_id=record.from_agent_id,
                            to_agent_id=record.to_agent_id,
                            created_at=record.timestamp,
                        )
                    )
                    await session.flush()
                history = await self._load_history(session, [ticket_id])
                return self._table_to_ticket(row, history.get(ticket_id, ()))

    async def _find(self, condition: Any) -> Sequence[Ticket]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable)
                .where(condition)
                .order_by(TicketTable.created_at.desc(), TicketTable.id.desc())
            )
            rows = list(result.scalars().all())
            history = await self._load_history(session, [row.id for row in rows])
        return [self._table_to_ticket(row, history.get(row.id, ())) for row in rows]

    @staticmethod
    async def _load_history(
        session: AsyncSession, ticket_ids: Sequence[str]
    ) -> dict[str, list[ReassignmentRecord]]:
        if not ticket_ids:
            return {}
        result = await session.execute(
            select(TicketReassignmentTable)
            .where(TicketReassignmentTable.ticket_id.in_(ticket_ids))
            .order_by(TicketReassignmentTable.position.asc())
        )
        history: dict[str, list[ReassignmentRecord]] = {}
        for row in result.scalars().all():
            history.setdefault(row.ticket_id, []).append(
                ReassignmentRecord(
                    from_agent_id=row.from_agent_id,
                    to_agent_id=row.to_agent_id,
                    timestamp=_ensure_datetime(row.created_at),
                )
            )
        return history

    @staticmethod
    def _table_to_ticket(row: TicketTable, history: Sequence[ReassignmentRecord]) -> Ticket:
        return Ticket(
            id=row.id,
            customer_id=row.customer_id,
            assigned_agent_id=row.assigned_agent_id,
            issue_details=row.issue_details,
            status=TicketStatus(row.status),
            reassignment_count=row.reassignment_count,
            reassignment_history=tuple(history),
            version=row.version,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
