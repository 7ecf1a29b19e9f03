"""Error taxonomy of the ticket lifecycle engine."""

from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketValidationError(TicketServiceError):
    """Raised when a command carries malformed or empty input."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located for the caller.

    Also used when the ticket exists but is not visible to the caller, so the
    existence of other agents' tickets is not leaked.
    """


class ReassignmentLimitExceededError(TicketServiceError):
    """Raised when a ticket that was already reassigned is reassigned again."""


class InvalidAgentError(TicketServiceError):
    """Raised when a reassignment target is missing or not an agent."""


class SelfReassignmentError(TicketServiceError):
    """Raised when an agent tries to reassign a ticket to themselves."""


class NoAgentsAvailableError(TicketServiceError):
    """Raised when a ticket is filed while no agent exists."""


class TicketConflictError(TicketServiceError):
    """Raised when a concurrent write changed the ticket first."""


class PermissionDeniedError(TicketServiceError):
    """Raised when the principal's role does not allow the operation."""


class DirectoryError(RuntimeError):
    """Base error for user directory lookups."""


class UserNotFoundError(DirectoryError):
    """Raised when no user exists with the requested id."""


class NotAnAgentError(DirectoryError):
    """Raised when the requested user exists but is not an agent."""


class DuplicateEmailError(DirectoryError):
    """Raised when registering a user with an email already in use."""
