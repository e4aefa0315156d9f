"""
Explicit transition tables for the engine's lifecycles.

Each lifecycle is a closed ``str`` enum plus a ``StatusMachine`` that lists
every allowed move. Anything not in the table is rejected.
"""

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Generic, TypeVar

from waypoint.domain.errors import InvalidTransition, TerminalState

S = TypeVar("S", bound=Enum)


class StatusMachine(Generic[S]):
    def __init__(
        self,
        name: str,
        transitions: Mapping[S, Iterable[S]],
        terminal: Iterable[S] = (),
    ):
        self.name = name
        self.transitions = {src: frozenset(dsts) for src, dsts in transitions.items()}
        self.terminal = frozenset(terminal)

    def can(self, current: S, target: S) -> bool:
        return target in self.transitions.get(current, frozenset())

    def ensure(self, current: S, target: S) -> None:
        """Raise unless ``current -> target`` is in the table."""
        if self.can(current, target):
            return
        if current in self.terminal:
            raise TerminalState(current.value, target.value, lifecycle=self.name)
        raise InvalidTransition(current.value, target.value, lifecycle=self.name)

    def sources_for(self, target: S) -> list[S]:
        """All statuses from which ``target`` may be reached (for conditional updates)."""
        return [src for src, dsts in self.transitions.items() if target in dsts]
