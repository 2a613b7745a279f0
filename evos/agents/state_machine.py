"""Agent status machine — enforces valid lifecycle transitions."""

from __future__ import annotations

from typing import Callable

from evos.types import AgentId, AgentStatus
from evos.exceptions import AgentStateError

TransitionCallback = Callable[[AgentId, AgentStatus, AgentStatus], None]

# Any status may fall into ERROR; leaving ERROR needs an explicit reset.
VALID_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.DORMANT: {AgentStatus.ACTIVE, AgentStatus.ERROR},
    AgentStatus.ACTIVE: {AgentStatus.EVOLVING, AgentStatus.ERROR},
    AgentStatus.EVOLVING: {AgentStatus.ACTIVE, AgentStatus.ERROR},
    AgentStatus.ERROR: set(),
}

RESET_STATUS = AgentStatus.DORMANT


class AgentStatusMachine:
    """Tracks the status of a single agent.

    Only valid transitions occur and listeners hear about every change.
    """

    def __init__(self, agent_id: AgentId, initial: AgentStatus = AgentStatus.DORMANT):
        self.agent_id = agent_id
        self._status = initial
        self._listeners: list[TransitionCallback] = []

    @property
    def status(self) -> AgentStatus:
        return self._status

    def can_transition(self, target: AgentStatus) -> bool:
        return target in VALID_TRANSITIONS.get(self._status, set())

    def transition(self, target: AgentStatus) -> None:
        if not self.can_transition(target):
            raise AgentStateError(
                f"Cannot transition agent {self.agent_id} "
                f"from {self._status.value} to {target.value}"
            )
        self._set(target)

    def reset(self) -> None:
        """Leave the terminal ERROR status."""
        if self._status != AgentStatus.ERROR:
            raise AgentStateError(
                f"Agent {self.agent_id} is {self._status.value}, only error can be reset"
            )
        self._set(RESET_STATUS)

    def on_transition(self, callback: TransitionCallback) -> None:
        self._listeners.append(callback)

    def _set(self, target: AgentStatus) -> None:
        old = self._status
        self._status = target
        for listener in self._listeners:
            listener(self.agent_id, old, target)
