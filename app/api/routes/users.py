from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict

from app.api.routes.tickets import TicketServiceDep, UserSummaryResponse, to_http_error
from app.dependencies.auth import CurrentPrincipal
from app.tickets.errors import TicketServiceError
from app.tickets.models import Role

router = APIRouter(tags=["users"])


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: Role
    age: int | None
    created_at: datetime


@router.get("/me", response_model=ProfileResponse)
async def get_me(service: TicketServiceDep, principal: CurrentPrincipal) -> ProfileResponse:
    try:
        user = await service.get_profile(principal)
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return ProfileResponse.model_validate(user)


@router.get("/agents", response_model=list[UserSummaryResponse], summary="Reassignment targets")
async def list_agents(service: TicketServiceDep, principal: CurrentPrincipal) -> list[UserSummaryResponse]:
    try:
        agents = await service.list_reassignment_candidates(principal)
    except TicketServiceError as exc:
        raise to_http_error(exc) from exc
    return [UserSummaryResponse.model_validate(agent) for agent in agents]
