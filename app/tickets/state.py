from __future__ import annotations

from enum import Enum

from .errors import TicketValidationError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketStateMachine:
    """Validate ticket status changes.

    Agents may move a ticket between any of the known statuses, in any order.
    Only membership in :class:`TicketStatus` is checked.
    """

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def parse(cls, value: TicketStatus | str | None) -> TicketStatus:
        if isinstance(value, TicketStatus):
            return value
        try:
            return TicketStatus(str(value).strip())
        except ValueError:
            allowed = ", ".join(status.value for status in TicketStatus)
            raise TicketValidationError(f"Invalid status. Must be one of: {allowed}") from None

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return isinstance(current, TicketStatus) and isinstance(new, TicketStatus)

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise TicketValidationError(f"Invalid ticket status transition: {current!s} -> {new!s}")
