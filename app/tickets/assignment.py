from __future__ import annotations

import itertools
from typing import Protocol, Sequence

from .errors import NoAgentsAvailableError
from .models import UserSummary


class AssignmentPolicy(Protocol):
    def select(self, agents: Sequence[UserSummary]) -> UserSummary:
        ...


class RoundRobinAssignmentPolicy:
    """Hand new tickets to agents in turn.

    The directory lists agents in a stable order (oldest account first), so a
    single shared cursor spreads tickets evenly. Agents added later join the
    rotation on the next lap.
    """

    def __init__(self, *, start: int = 0) -> None:
        self._cursor = itertools.count(start)

    def select(self, agents: Sequence[UserSummary]) -> UserSummary:
        if not agents:
            raise NoAgentsAvailableError("No agents available. Please contact administrator.")
        return agents[next(self._cursor) % len(agents)]
