import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

from shared.events import EventType
from shared.pubsub import PubSubClient

logger = logging.getLogger(__name__)

TITLES = {
    EventType.TOURNAMENT_REG_OPEN: "Registration open: {name}",
    EventType.TOURNAMENT_REG_CLOSE: "Registration closed: {name}",
    EventType.TOURNAMENT_GROUPED: "Groups published: {name}",
    EventType.TOURNAMENT_STARTED: "Tournament started: {name}",
    EventType.TOURNAMENT_RESULTS: "Results published: {name}",
    EventType.TOURNAMENT_AWARD: "Award won: {name}",
}


class NotificationDispatcher:
    """
    Delivers tournament notifications to players.
    Publishes over redis when a PubSubClient is configured; otherwise runs in
    local mode and only logs what would have been sent.
    """

    def __init__(self, pubsub: Optional[PubSubClient] = None):
        self.pubsub = pubsub
        self.is_local = pubsub is None
        if self.is_local:
            logger.info("NotificationDispatcher running in local mode (no redis)")

    def build_message(self, club_id: str, event_type: EventType, tournament: Dict, extra: Dict = None) -> Dict:
        name = tournament.get('name') or ''
        title = TITLES.get(event_type, "Tournament notice: {name}").format(name=name)
        content = " | ".join(filter(None, [
            tournament.get('tournament_no'),
            tournament.get('start_date'),
            tournament.get('course_name'),
        ]))
        message = {
            'club_id': club_id,
            'type': event_type.value if isinstance(event_type, EventType) else event_type,
            'title': title,
            'content': content,
            'category': 'tournament',
            'source_type': 'tournament',
            'source_id': tournament.get('tournament_id'),
            'extra': {
                'tournament_id': tournament.get('tournament_id'),
                'tournament_no': tournament.get('tournament_no'),
            },
            'created_at': datetime.utcnow().isoformat() + "Z",
        }
        if extra:
            message['extra'].update(extra)
        return message

    def notify_tournament(
        self,
        club_id: str,
        event_type: EventType,
        tournament: Dict,
        recipient_ids: List[str],
        extra: Dict = None
    ) -> int:
        """Send one notification per recipient, or a club-wide one when there are none."""
        message = self.build_message(club_id, event_type, tournament, extra)
        payload = json.dumps(message, default=str)

        if self.is_local:
            logger.info(
                f"Local mode: {message['type']} for {tournament.get('tournament_id')} "
                f"to {len(recipient_ids) or 'all'} recipients"
            )
            return len(recipient_ids) or 1

        if recipient_ids:
            for player_id in recipient_ids:
                self.pubsub.publish_user_notification(player_id, payload)
            return len(recipient_ids)

        self.pubsub.publish(f"club:{club_id}:notifications", payload)
        return 1
