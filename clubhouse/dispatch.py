import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from shared.events import Event, EventType
from shared.pubsub import PubSubClient
from .directory import PointsLedger
from .models import db
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    delivered: List[Event] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            'delivered': len(self.delivered),
            'failed': self.failed,
        }


class OutboxDispatcher:
    """
    Delivers the events a core operation returned, after its state change is
    committed. Every event is attempted; a failure is logged and recorded in
    the report, never raised.
    """

    def __init__(
        self,
        notifier: NotificationDispatcher,
        ledger: PointsLedger,
        pubsub: Optional[PubSubClient] = None
    ):
        self.notifier = notifier
        self.ledger = ledger
        self.pubsub = pubsub

    def dispatch(self, events: Iterable[Event]) -> DispatchReport:
        report = DispatchReport()
        for event in events:
            if event is None:
                continue
            try:
                self._deliver(event)
                report.delivered.append(event)
            except Exception as e:
                db.session.rollback()
                logger.warning(f"Dispatch of {event.type} for {event.tournament_id} failed: {e}")
                report.failed.append({'event': event.to_dict(), 'error': str(e)})
        return report

    def _deliver(self, event: Event):
        if event.type == EventType.POINTS_CREDIT:
            data = event.data
            self.ledger.credit(
                club_id=data['club_id'],
                player_id=data['player_id'],
                amount=data['amount'],
                source_type=data.get('source_type', 'tournament'),
                source_id=data.get('source_id', event.tournament_id),
                description=data.get('description', ''),
                player_name=data.get('player_name') or ''
            )
        elif event.is_notification:
            data = event.data
            extra = {'award': data['award']} if 'award' in data else None
            self.notifier.notify_tournament(
                data.get('club_id'),
                event.type,
                data.get('tournament', {}),
                data.get('recipient_ids', []),
                extra=extra
            )
        else:
            raise ValueError(f"No handler for event type {event.type}")

        if self.pubsub is not None:
            self.pubsub.publish_tournament_event(event.tournament_id, event)
            self.pubsub.log_event(event.tournament_id, event)
