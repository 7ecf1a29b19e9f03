"""Database models and utilities."""

from .models import TicketReassignmentTable, TicketTable, UserTable

__all__ = [
    "TicketReassignmentTable",
    "TicketTable",
    "UserTable",
]
