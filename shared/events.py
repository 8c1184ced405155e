from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import json


class EventType(str, Enum):
    # Lifecycle notifications to confirmed registrants
    TOURNAMENT_REG_OPEN = "tournament_reg_open"
    TOURNAMENT_REG_CLOSE = "tournament_reg_close"
    TOURNAMENT_GROUPED = "tournament_grouped"
    TOURNAMENT_STARTED = "tournament_started"
    TOURNAMENT_RESULTS = "tournament_results"
    TOURNAMENT_AWARD = "tournament_award"

    # Points ledger
    POINTS_CREDIT = "points.credit"


NOTIFICATION_TYPES = frozenset({
    EventType.TOURNAMENT_REG_OPEN,
    EventType.TOURNAMENT_REG_CLOSE,
    EventType.TOURNAMENT_GROUPED,
    EventType.TOURNAMENT_STARTED,
    EventType.TOURNAMENT_RESULTS,
    EventType.TOURNAMENT_AWARD,
})

# Status entered -> notification emitted
STATUS_NOTIFICATIONS = {
    "registration": EventType.TOURNAMENT_REG_OPEN,
    "closed": EventType.TOURNAMENT_REG_CLOSE,
    "grouping": EventType.TOURNAMENT_GROUPED,
    "in_progress": EventType.TOURNAMENT_STARTED,
    "completed": EventType.TOURNAMENT_RESULTS,
}


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    @property
    def is_notification(self) -> bool:
        return self.type in NOTIFICATION_TYPES

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class Outcome:
    """Result of a core operation plus the side effects it wants delivered."""
    result: object = None
    events: List[Event] = field(default_factory=list)


def lifecycle_event(status: str, tournament: dict, recipient_ids: List[str]) -> Optional[Event]:
    event_type = STATUS_NOTIFICATIONS.get(status)
    if event_type is None:
        return None
    return Event(
        type=event_type,
        tournament_id=tournament["tournament_id"],
        data={
            "club_id": tournament.get("club_id"),
            "tournament": tournament,
            "recipient_ids": list(recipient_ids),
        }
    )


def award_event(tournament: dict, award: dict) -> Event:
    return Event(
        type=EventType.TOURNAMENT_AWARD,
        tournament_id=tournament["tournament_id"],
        data={
            "club_id": tournament.get("club_id"),
            "tournament": tournament,
            "recipient_ids": [award["player_id"]],
            "award": award,
        }
    )


def points_credit_event(tournament: dict, award: dict) -> Event:
    return Event(
        type=EventType.POINTS_CREDIT,
        tournament_id=tournament["tournament_id"],
        data={
            "club_id": tournament.get("club_id"),
            "player_id": award["player_id"],
            "player_name": award.get("player_name"),
            "amount": award["points"],
            "source_type": "tournament",
            "source_id": tournament["tournament_id"],
            "description": f"Tournament {tournament.get('name')} {award['award_title']} award points",
        }
    )
