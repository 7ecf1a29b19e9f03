from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.tickets.errors import TicketConflictError, TicketNotFoundError
from app.tickets.models import ReassignmentRecord, Ticket, TicketMutation
from app.tickets.repository import SqlTicketStore
from app.tickets.state import TicketStatus


def _new_ticket(customer_id: str, agent_id: str, *, created_at: datetime | None = None) -> Ticket:
    now = created_at or datetime.now(timezone.utc)
    return Ticket(
        id=str(uuid.uuid4()),
        customer_id=customer_id,
        assigned_agent_id=agent_id,
        issue_details="printer broken",
        status=TicketStatus.OPEN,
        reassignment_count=0,
        reassignment_history=(),
        version=1,
        created_at=now,
        updated_at=now,
    )


def _handoff(from_agent: str, to_agent: str) -> TicketMutation:
    record = ReassignmentRecord(from_agent_id=from_agent, to_agent_id=to_agent, timestamp=datetime.now(timezone.utc))
    return TicketMutation(reassignment=record, expected_agent_id=from_agent)


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables(engine):
    store = SqlTicketStore(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    await store.ensure_schema()

    async with engine.begin() as conn:
        tables = await conn.run_sync(lambda sync_conn: set(sa_inspect(sync_conn).get_table_names()))
    assert {"users", "tickets", "ticket_reassignments"} <= tables


@pytest.mark.asyncio
async def test_ensure_schema_requires_engine(session_factory):
    with pytest.raises(RuntimeError):
        await SqlTicketStore(session_factory).ensure_schema()


@pytest.mark.asyncio
async def test_create_and_get_round_trip(store, accounts):
    agent = accounts.agents[0]
    created = await store.create(_new_ticket(accounts.customer.id, agent.id))

    loaded = await store.get_by_id(created.id)

    assert loaded is not None
    assert loaded.assigned_agent_id == agent.id
    assert loaded.status is TicketStatus.OPEN
    assert loaded.reassignment_count == 0
    assert loaded.reassignment_history == ()
    assert loaded.version == 1


@pytest.mark.asyncio
async def test_get_missing_ticket_returns_none(store):
    assert await store.get_by_id("missing") is None


@pytest.mark.asyncio
async def test_find_by_customer_and_agent_newest_first(store, accounts):
    agent_a, agent_b = accounts.agents[0], accounts.agents[1]
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    older = await store.create(_new_ticket(accounts.customer.id, agent_a.id, created_at=base))
    newer = await store.create(_new_ticket(accounts.customer.id, agent_a.id, created_at=base + timedelta(hours=1)))
    await store.create(_new_ticket(accounts.other_customer.id, agent_b.id, created_at=base))

    by_customer = await store.find_by_customer(accounts.customer.id)
    by_agent = await store.find_by_agent(agent_b.id)

    assert [ticket.id for ticket in by_customer] == [newer.id, older.id]
    assert [ticket.customer_id for ticket in by_agent] == [accounts.other_customer.id]


@pytest.mark.asyncio
async def test_update_status_bumps_version_and_timestamp(store, accounts):
    agent = accounts.agents[0]
    created = await store.create(_new_ticket(accounts.customer.id, agent.id))

    updated = await store.update(
        created.id,
        TicketMutation(status=TicketStatus.IN_PROGRESS, expected_agent_id=agent.id),
        expected_version=1,
    )

    assert updated.status is TicketStatus.IN_PROGRESS
    assert updated.version == 2
    assert updated.updated_at >= created.updated_at
    assert updated.customer_id == accounts.customer.id


@pytest.mark.asyncio
async def test_update_with_stale_version_conflicts(store, accounts):
    agent = accounts.agents[0]
    created = await store.create(_new_ticket(accounts.customer.id, agent.id))
    await store.update(created.id, TicketMutation(status=TicketStatus.RESOLVED), expected_version=1)

    with pytest.raises(TicketConflictError):
        await store.update(created.id, TicketMutation(status=TicketStatus.CLOSED), expected_version=1)

    current = await store.get_by_id(created.id)
    assert current is not None
    assert current.status is TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_update_missing_ticket_raises_not_found(store):
    with pytest.raises(TicketNotFoundError):
        await store.update("missing", TicketMutation(status=TicketStatus.CLOSED), expected_version=1)


@pytest.mark.asyncio
async def test_update_requires_expected_agent(store, accounts):
    agent, other = accounts.agents[0], accounts.agents[1]
    created = await store.create(_new_ticket(accounts.customer.id, agent.id))

    with pytest.raises(TicketConflictError):
        await store.update(
            created.id,
            TicketMutation(status=TicketStatus.CLOSED, expected_agent_id=other.id),
            expected_version=1,
        )


@pytest.mark.asyncio
async def test_reassignment_appends_history_and_moves_agent(store, accounts):
    agent, target = accounts.agents[0], accounts.agents[1]
    created = await store.create(_new_ticket(accounts.customer.id, agent.id))

    updated = await store.update(created.id, _handoff(agent.id, target.id), expected_version=1)

    assert updated.assigned_agent_id == target.id
    assert updated.reassignment_count == 1
    assert [(r.from_agent_id, r.to_agent_id) for r in updated.reassignment_history] == [(agent.id, target.id)]

    reloaded = await store.get_by_id(created.id)
    assert reloaded is not None
    assert reloaded.reassignment_count == len(reloaded.reassignment_history) == 1


@pytest.mark.asyncio
async def test_second_reassignment_is_refused_by_storage(store, accounts):
    first, second, third = accounts.agents
    created = await store.create(_new_ticket(accounts.customer.id, first.id))
    updated = await store.update(created.id, _handoff(first.id, second.id), expected_version=1)

    # Even with a fresh version the count guard holds the write back.
    with pytest.raises(TicketConflictError):
        await store.update(created.id, _handoff(second.id, third.id), expected_version=updated.version)

    current = await store.get_by_id(created.id)
    assert current is not None
    assert current.assigned_agent_id == second.id
    assert current.reassignment_count == 1
    assert len(current.reassignment_history) == 1
