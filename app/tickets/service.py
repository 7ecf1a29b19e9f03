from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from opentelemetry import trace

from .assignment import AssignmentPolicy, RoundRobinAssignmentPolicy
from .directory import AgentDirectory
from .errors import (
    DirectoryError,
    InvalidAgentError,
    NoAgentsAvailableError,
    PermissionDeniedError,
    ReassignmentLimitExceededError,
    SelfReassignmentError,
    TicketConflictError,
    TicketNotFoundError,
    TicketValidationError,
)
from .models import (
    MAX_REASSIGNMENTS,
    CreateTicketCommand,
    Principal,
    ReassignmentRecord,
    ReassignTicketCommand,
    ResolvedReassignment,
    ResolvedTicket,
    Role,
    Ticket,
    TicketMutation,
    UpdateStatusCommand,
    User,
    UserSummary,
)
from .repository import TicketStore
from .state import TicketStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _require_role(principal: Principal, role: Role) -> None:
    if principal.role is not role:
        raise PermissionDeniedError(f"Access denied. {role.value} role required.")


def _normalize_id(value: object) -> str:
    return str(value).strip()


class TicketService:
    """Ticket lifecycle engine: creation, status changes and the one-time reassignment.

    Every operation receives the authenticated :class:`Principal` and checks its
    role before touching storage. Business rule violations are raised as
    :class:`~app.tickets.errors.TicketServiceError` subclasses.
    """

    def __init__(
        self,
        store: TicketStore,
        directory: AgentDirectory,
        *,
        assignment_policy: AssignmentPolicy | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._assignment_policy = assignment_policy or RoundRobinAssignmentPolicy()

    async def create_ticket(self, principal: Principal, command: CreateTicketCommand) -> ResolvedTicket:
        _require_role(principal, Role.CUSTOMER)
        issue_details = (command.issue_details or "").strip()
        if not issue_details:
            raise TicketValidationError("Issue details are required")

        with tracer.start_as_current_span("tickets.create"):
            agents = await self._directory.list_agents()
            if not agents:
                logger.warning("Ticket rejected for customer %s: no agents registered", principal.id)
                raise NoAgentsAvailableError("No agents available. Please contact administrator.")
            agent = self._assignment_policy.select(agents)

            now = datetime.now(timezone.utc)
            ticket = await self._store.create(
                Ticket(
                    id=str(uuid.uuid4()),
                    customer_id=principal.id,
                    assigned_agent_id=agent.id,
                    issue_details=issue_details,
                    status=TicketStateMachine.initial_state(),
                    reassignment_count=0,
                    reassignment_history=(),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.info("Ticket %s created by customer %s, assigned to agent %s", ticket.id, principal.id, agent.id)
            return await self._resolve(ticket)

    async def update_status(
        self, principal: Principal, ticket_id: str, command: UpdateStatusCommand
    ) -> ResolvedTicket:
        _require_role(principal, Role.AGENT)
        new_status = TicketStateMachine.parse(command.status)

        with tracer.start_as_current_span("tickets.update_status") as span:
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._store.get_by_id(ticket_id)
            if ticket is None or ticket.assigned_agent_id != principal.id:
                raise TicketNotFoundError("Ticket not found or not assigned to you")
            TicketStateMachine.assert_transition(ticket.status, new_status)

            try:
                updated = await self._store.update(
                    ticket_id,
                    TicketMutation(status=new_status, expected_agent_id=principal.id),
                    expected_version=ticket.version,
                )
            except (TicketConflictError, TicketNotFoundError):
                current = await self._store.get_by_id(ticket_id)
                logger.warning("Status update of ticket %s by agent %s lost a concurrent write", ticket_id, principal.id)
                if current is None or current.assigned_agent_id != principal.id:
                    raise TicketNotFoundError("Ticket not found or not assigned to you") from None
                raise

            logger.info("Ticket %s moved %s -> %s by agent %s", ticket_id, ticket.status.value, new_status.value, principal.id)
            return await self._resolve(updated)

    async def reassign(
        self, principal: Principal, ticket_id: str, command: ReassignTicketCommand
    ) -> ResolvedTicket:
        _require_role(principal, Role.AGENT)
        if command.new_agent_id is None or not _normalize_id(command.new_agent_id):
            raise TicketValidationError("New agent ID is required")
        new_agent_id = _normalize_id(command.new_agent_id)

        with tracer.start_as_current_span("tickets.reassign") as span:
            span.set_attribute("ticket.id", ticket_id)
            ticket = self._check_reassignable(await self._store.get_by_id(ticket_id), principal)

            try:
                await self._directory.get_agent(new_agent_id)
            except DirectoryError as exc:
                raise InvalidAgentError("New agent not found or not an agent") from exc
            if new_agent_id == principal.id:
                raise SelfReassignmentError("Cannot reassign ticket to yourself")

            record = ReassignmentRecord(
                from_agent_id=principal.id,
                to_agent_id=new_agent_id,
                timestamp=datetime.now(timezone.utc),
            )
            try:
                updated = await self._store.update(
                    ticket_id,
                    TicketMutation(reassignment=record, expected_agent_id=principal.id),
                    expected_version=ticket.version,
                )
            except (TicketConflictError, TicketNotFoundError):
                logger.warning("Reassignment of ticket %s by agent %s lost a concurrent write", ticket_id, principal.id)
                self._check_reassignable(await self._store.get_by_id(ticket_id), principal)
                raise

            logger.info("Ticket %s reassigned from agent %s to agent %s", ticket_id, principal.id, new_agent_id)
            return await self._resolve(updated)

    async def list_tickets(self, principal: Principal, *, role: Role | None = None) -> list[ResolvedTicket]:
        if role is not None:
            _require_role(principal, role)
        if principal.role is Role.CUSTOMER:
            tickets = await self._store.find_by_customer(principal.id)
        else:
            tickets = await self._store.find_by_agent(principal.id)
        return await self._resolve_many(tickets)

    async def list_reassignment_candidates(self, principal: Principal) -> Sequence[UserSummary]:
        _require_role(principal, Role.AGENT)
        return await self._directory.list_agents_excluding(principal.id)

    async def get_profile(self, principal: Principal) -> User:
        try:
            return await self._directory.get_user(principal.id)
        except DirectoryError as exc:
            raise TicketNotFoundError("User not found") from exc

    @staticmethod
    def _check_reassignable(ticket: Ticket | None, principal: Principal) -> Ticket:
        """Return ``ticket`` if ``principal`` may reassign it, else raise the matching error.

        The agent who already handed the ticket off still learns that the cap
        was hit; everyone else who is not the assignee gets a plain not-found.
        """

        if ticket is None:
            raise TicketNotFoundError("Ticket not found or not assigned to you")
        if ticket.assigned_agent_id != principal.id and not ticket.was_handed_off_by(principal.id):
            raise TicketNotFoundError("Ticket not found or not assigned to you")
        if ticket.reassignment_count >= MAX_REASSIGNMENTS:
            logger.warning("Ticket %s already reassigned; rejecting request from agent %s", ticket.id, principal.id)
            raise ReassignmentLimitExceededError(
                "Ticket can only be reassigned once. Further reassignments are not allowed."
            )
        if ticket.assigned_agent_id != principal.id:
            raise TicketNotFoundError("Ticket not found or not assigned to you")
        return ticket

    async def _resolve(self, ticket: Ticket) -> ResolvedTicket:
        summaries = await self._directory.get_summaries(_referenced_user_ids([ticket]))
        return _to_resolved(ticket, summaries)

    async def _resolve_many(self, tickets: Sequence[Ticket]) -> list[ResolvedTicket]:
        summaries = await self._directory.get_summaries(_referenced_user_ids(tickets))
        return [_to_resolved(ticket, summaries) for ticket in tickets]


def _referenced_user_ids(tickets: Iterable[Ticket]) -> set[str]:
    ids: set[str] = set()
    for ticket in tickets:
        ids.update((ticket.customer_id, ticket.assigned_agent_id))
        for record in ticket.reassignment_history:
            ids.update((record.from_agent_id, record.to_agent_id))
    return ids


def _to_resolved(ticket: Ticket, summaries: Mapping[str, UserSummary]) -> ResolvedTicket:
    def lookup(user_id: str) -> UserSummary:
        return summaries.get(user_id) or UserSummary(id=user_id)

    return ResolvedTicket(
        id=ticket.id,
        customer=lookup(ticket.customer_id),
        assigned_agent=lookup(ticket.assigned_agent_id),
        issue_details=ticket.issue_details,
        status=ticket.status,
        reassignment_count=ticket.reassignment_count,
        reassignment_history=[
            ResolvedReassignment(
                from_agent=lookup(record.from_agent_id),
                to_agent=lookup(record.to_agent_id),
                timestamp=record.timestamp,
            )
            for record in ticket.reassignment_history
        ],
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )
