from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .errors import InvalidTransition


class TournamentStatus(str, Enum):
    DRAFT = "draft"
    REGISTRATION = "registration"
    CLOSED = "closed"
    GROUPING = "grouping"
    IN_PROGRESS = "in_progress"
    SCORING = "scoring"
    COMPLETED = "completed"
    ARCHIVED = "archived"


ALLOWED_TRANSITIONS: Dict[TournamentStatus, FrozenSet[TournamentStatus]] = {
    TournamentStatus.DRAFT: frozenset({TournamentStatus.REGISTRATION, TournamentStatus.ARCHIVED}),
    TournamentStatus.REGISTRATION: frozenset({TournamentStatus.CLOSED, TournamentStatus.ARCHIVED}),
    # Reopening registration is permitted
    TournamentStatus.CLOSED: frozenset({TournamentStatus.GROUPING, TournamentStatus.REGISTRATION}),
    TournamentStatus.GROUPING: frozenset({TournamentStatus.IN_PROGRESS, TournamentStatus.CLOSED}),
    TournamentStatus.IN_PROGRESS: frozenset({TournamentStatus.SCORING}),
    TournamentStatus.SCORING: frozenset({TournamentStatus.COMPLETED}),
    TournamentStatus.COMPLETED: frozenset({TournamentStatus.ARCHIVED}),
    TournamentStatus.ARCHIVED: frozenset(),
}

ALLOWED_ACTIONS: Dict[TournamentStatus, List[str]] = {
    TournamentStatus.DRAFT: ["view", "edit", "delete"],
    TournamentStatus.REGISTRATION: ["view", "edit", "register", "update_registration", "cancel_registration"],
    TournamentStatus.CLOSED: ["view", "edit", "update_registration", "cancel_registration", "auto_group"],
    TournamentStatus.GROUPING: ["view", "update_registration", "cancel_registration", "auto_group", "edit_group"],
    TournamentStatus.IN_PROGRESS: ["view", "edit_group", "record_score", "finalize"],
    TournamentStatus.SCORING: ["view", "record_score", "finalize"],
    TournamentStatus.COMPLETED: ["view"],
    TournamentStatus.ARCHIVED: ["view", "delete"],
}

INITIAL_STATUS = TournamentStatus.DRAFT
TERMINAL_STATUS = TournamentStatus.ARCHIVED


def parse_status(value) -> TournamentStatus:
    """Coerce a raw status value, raising InvalidTransition for unknown names."""
    if isinstance(value, TournamentStatus):
        return value
    try:
        return TournamentStatus(value)
    except ValueError:
        raise InvalidTransition(str(value), str(value), f"Unknown tournament status '{value}'")


def is_allowed(from_status, to_status) -> bool:
    return parse_status(to_status) in ALLOWED_TRANSITIONS[parse_status(from_status)]


class TournamentStateMachine:
    """Status holder for one tournament; validates every move against the table."""

    def __init__(self, initial_state: TournamentStatus = INITIAL_STATUS):
        self._state = initial_state

    @property
    def state(self) -> TournamentStatus:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return list(ALLOWED_ACTIONS[self._state])

    @property
    def next_states(self) -> List[TournamentStatus]:
        return sorted(ALLOWED_TRANSITIONS[self._state], key=lambda s: list(TournamentStatus).index(s))

    def can_transition(self, to_status) -> bool:
        try:
            return is_allowed(self._state, to_status)
        except InvalidTransition:
            return False

    def can_perform(self, action: str) -> bool:
        return action in ALLOWED_ACTIONS[self._state]

    def require(self, action: str):
        if not self.can_perform(action):
            raise InvalidTransition(
                self._state.value,
                action,
                f"Action '{action}' is not allowed while tournament is {self._state.value}"
            )

    def transition(self, to_status) -> TournamentStatus:
        target = parse_status(to_status)
        if target not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidTransition(self._state.value, target.value)

        self._state = target
        return self._state

    def force(self, to_status: TournamentStatus):
        """Move without consulting the table; used only by finalize."""
        self._state = parse_status(to_status)

    @classmethod
    def from_state_string(cls, state_str: Optional[str]) -> "TournamentStateMachine":
        return cls(initial_state=parse_status(state_str or INITIAL_STATUS.value))
