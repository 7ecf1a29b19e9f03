import pytest

from app.tickets.assignment import RoundRobinAssignmentPolicy
from app.tickets.errors import NoAgentsAvailableError
from app.tickets.models import UserSummary


def _agents(*ids: str) -> list[UserSummary]:
    return [UserSummary(id=agent_id, name=agent_id.upper(), email=f"{agent_id}@example.com") for agent_id in ids]


def test_round_robin_cycles_through_agents():
    policy = RoundRobinAssignmentPolicy()
    agents = _agents("a1", "a2", "a3")

    picked = [policy.select(agents).id for _ in range(5)]

    assert picked == ["a1", "a2", "a3", "a1", "a2"]


def test_round_robin_wraps_when_agent_list_shrinks():
    policy = RoundRobinAssignmentPolicy(start=4)

    assert policy.select(_agents("a1", "a2")).id == "a1"
    assert policy.select(_agents("a1")).id == "a1"


def test_single_agent_always_selected():
    policy = RoundRobinAssignmentPolicy()
    agents = _agents("only")

    assert {policy.select(agents).id for _ in range(3)} == {"only"}


def test_empty_agent_list_is_rejected():
    with pytest.raises(NoAgentsAvailableError):
        RoundRobinAssignmentPolicy().select([])
