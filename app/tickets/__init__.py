"""Ticket lifecycle domain: models, storage, agent directory and the engine."""

from .assignment import AssignmentPolicy, RoundRobinAssignmentPolicy
from .directory import AgentDirectory, SqlUserDirectory
from .errors import (
    InvalidAgentError,
    NoAgentsAvailableError,
    PermissionDeniedError,
    ReassignmentLimitExceededError,
    SelfReassignmentError,
    TicketConflictError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
)
from .models import Principal, ResolvedTicket, Role, Ticket, UserSummary
from .repository import SqlTicketStore, TicketStore
from .service import TicketService
from .state import TicketStateMachine, TicketStatus

__all__ = [
    "AgentDirectory",
    "AssignmentPolicy",
    "InvalidAgentError",
    "NoAgentsAvailableError",
    "PermissionDeniedError",
    "Principal",
    "ReassignmentLimitExceededError",
    "ResolvedTicket",
    "Role",
    "RoundRobinAssignmentPolicy",
    "SelfReassignmentError",
    "SqlTicketStore",
    "SqlUserDirectory",
    "Ticket",
    "TicketConflictError",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStore",
    "TicketValidationError",
    "UserSummary",
]
