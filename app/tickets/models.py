from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from .state import TicketStatus

MAX_REASSIGNMENTS = 1


class Role(str, Enum):
    """Supported roles."""

    CUSTOMER = "CUSTOMER"
    AGENT = "AGENT"


@dataclass(frozen=True, slots=True)
class Principal:
    """The authenticated caller of an engine operation."""

    id: str
    role: Role


@dataclass(slots=True)
class User:
    """Account record as exposed by the user directory."""

    id: str
    name: str
    email: str
    role: Role
    age: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class UserSummary:
    """Display form of a user reference."""

    id: str
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True, slots=True)
class ReassignmentRecord:
    """A single hand-off of a ticket from one agent to another."""

    from_agent_id: str
    to_agent_id: str
    timestamp: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket."""

    id: str
    customer_id: str
    assigned_agent_id: str
    issue_details: str
    status: TicketStatus
    reassignment_count: int
    reassignment_history: Sequence[ReassignmentRecord]
    version: int
    created_at: datetime
    updated_at: datetime

    def was_handed_off_by(self, agent_id: str) -> bool:
        return any(record.from_agent_id == agent_id for record in self.reassignment_history)


@dataclass(frozen=True, slots=True)
class TicketMutation:
    """Changes applied atomically to a single ticket by the store.

    ``expected_agent_id`` is a precondition: the write only applies while the
    ticket is still assigned to that agent.
    """

    status: TicketStatus | None = None
    reassignment: ReassignmentRecord | None = None
    expected_agent_id: str | None = None


@dataclass(frozen=True, slots=True)
class CreateTicketCommand:
    issue_details: str


@dataclass(frozen=True, slots=True)
class UpdateStatusCommand:
    status: TicketStatus | str


@dataclass(frozen=True, slots=True)
class ReassignTicketCommand:
    new_agent_id: str | None


@dataclass(frozen=True, slots=True)
class ResolvedReassignment:
    from_agent: UserSummary
    to_agent: UserSummary
    timestamp: datetime


@dataclass(slots=True)
class ResolvedTicket:
    """Ticket with every user reference expanded to its display form."""

    id: str
    customer: UserSummary
    assigned_agent: UserSummary
    issue_details: str
    status: TicketStatus
    reassignment_count: int
    reassignment_history: list[ResolvedReassignment] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
