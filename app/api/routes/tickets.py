from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from app.dependencies.auth import CurrentPrincipal
from app.dependencies.tickets import get_ticket_service
from app.tickets.errors import (
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
from app.tickets.models import (
    CreateTicketCommand,
    ReassignTicketCommand,
    ResolvedTicket,
    Role,
    UpdateStatusCommand,
)
from app.tickets.service import TicketService
from app.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

_ERROR_STATUS: dict[type[TicketServiceError], int] = {
    TicketValidationError: status.HTTP_400_BAD_REQUEST,
    ReassignmentLimitExceededError: status.HTTP_400_BAD_REQUEST,
    SelfReassignmentError: status.HTTP_400_BAD_REQUEST,
    NoAgentsAvailableError: status.HTTP_400_BAD_REQUEST,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    TicketNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAgentError: status.HTTP_404_NOT_FOUND,
    TicketConflictError: status.HTTP_409_CONFLICT,
}


class TicketCreateRequest(BaseModel):
    issue_details: str = Field(..., max_length=5000)


class TicketStatusChangeRequest(BaseModel):
    status: str


class TicketReassignRequest(BaseModel):
    new_agent_id: str | None = Field(default=None)


class UserSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str | None
    email: str | None


class ReassignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_agent: UserSummaryResponse
    to_agent: UserSummaryResponse
    timestamp: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer: UserSummaryResponse
    assigned_agent: UserSummaryResponse
    issue_details: str
    status: TicketStatus
    reassignment_count: int
    reassignment_history: list[ReassignmentResponse]
    created_at: datetime
    updated_at: datetime


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _to_response(ticket: ResolvedTicket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def to_http_error(exc: TicketServiceError) -> HTTPException:
    """Translate an engine error into the matching HTTP error."""

    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Ticket service error")


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> TicketResponse:
    try:
        ticket = await service.create_ticket(principal, CreateTicketCommand(issue_details=payload.issue_details))
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(service: TicketServiceDep, principal: CurrentPrincipal) -> list[TicketResponse]:
    tickets = await service.list_tickets(principal)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/my-tickets", response_model=list[TicketResponse])
async def list_my_tickets(service: TicketServiceDep, principal: CurrentPrincipal) -> list[TicketResponse]:
    try:
        tickets = await service.list_tickets(principal, role=Role.CUSTOMER)
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return [_to_response(ticket) for ticket in tickets]


@router.get("/assigned", response_model=list[TicketResponse])
async def list_assigned_tickets(service: TicketServiceDep, principal: CurrentPrincipal) -> list[TicketResponse]:
    try:
        tickets = await service.list_tickets(principal, role=Role.AGENT)
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return [_to_response(ticket) for ticket in tickets]


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> TicketResponse:
    try:
        ticket = await service.update_status(principal, ticket_id, UpdateStatusCommand(status=payload.status))
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return _to_response(ticket)


@router.patch("/{ticket_id}/reassign", response_model=TicketResponse)
async def reassign_ticket(
    ticket_id: str,
    payload: TicketReassignRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> TicketResponse:
    try:
        ticket = await service.reassign(principal, ticket_id, ReassignTicketCommand(new_agent_id=payload.new_agent_id))
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return _to_response(ticket)
