import random
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from shared.errors import NotFound, ValidationError
from shared.events import Outcome, lifecycle_event
from shared.state_machine import TournamentStateMachine, TournamentStatus
from .locks import TournamentLocks
from .models import db, Registration, Tournament, TournamentGroup

logger = logging.getLogger(__name__)

GROUPING_METHODS = ('handicap', 'random', 'seeded')
SHOTGUN_HOLES = 18


@dataclass
class GroupPlan:
    group_no: int
    tee_time: Optional[str]
    starting_hole: int
    members: List[Dict] = field(default_factory=list)


def order_entries(entries: Sequence[Dict], method: str, rng: random.Random = None) -> List[Dict]:
    """Entries arrive in registration order; 'seeded' and unknown methods keep it."""
    if method == 'handicap':
        return sorted(entries, key=lambda e: e.get('handicap') or 0)
    if method == 'random':
        shuffled = list(entries)
        (rng or random.Random()).shuffle(shuffled)
        return shuffled
    return list(entries)


def starting_hole_for(group_no: int, start_type: str) -> int:
    if start_type == 'shotgun':
        return ((group_no - 1) % SHOTGUN_HOLES) + 1
    return 1


def compute_grouping(
    entries: Sequence[Dict],
    method: str = 'handicap',
    group_size: int = 4,
    tee_times: Sequence[str] = (),
    start_type: str = 'tee_times',
    rng: random.Random = None
) -> List[GroupPlan]:
    """Full replacement group set for the given confirmed entries."""
    if group_size < 1:
        raise ValidationError("group_size must be at least 1")

    ordered = order_entries(entries, method, rng)
    tee_times = list(tee_times or [])
    plans = []
    for start in range(0, len(ordered), group_size):
        index = len(plans)
        group_no = index + 1
        chunk = ordered[start:start + group_size]
        plans.append(GroupPlan(
            group_no=group_no,
            tee_time=tee_times[index] if index < len(tee_times) else None,
            starting_hole=starting_hole_for(group_no, start_type),
            members=[
                {
                    'reg_id': e['reg_id'],
                    'player_id': e.get('player_id'),
                    'player_name': e.get('player_name'),
                    'player_no': e.get('player_no', ''),
                    'handicap': e.get('handicap'),
                    'order_in_group': position + 1,
                }
                for position, e in enumerate(chunk)
            ]
        ))
    return plans


class GroupingEngine:
    def __init__(self, locks: TournamentLocks):
        self.locks = locks

    def list_groups(self, tournament_id: str) -> List[TournamentGroup]:
        tournament = Tournament.get_or_404(tournament_id)
        return TournamentGroup.query.filter_by(tournament_id=tournament.id) \
            .order_by(TournamentGroup.group_no).all()

    def auto_group(
        self,
        tournament_id: str,
        method: str = 'handicap',
        group_size: int = None,
        seed: int = None
    ) -> Outcome:
        with self.locks.hold(tournament_id):
            tournament = Tournament.get_or_404(tournament_id)
            sm = TournamentStateMachine.from_state_string(tournament.status)
            sm.require('auto_group')

            registrations = Registration.query.filter_by(tournament_id=tournament.id, status='confirmed') \
                .order_by(Registration.registered_at, Registration.id).all()
            if not registrations:
                raise ValidationError("No confirmed registrations to group")

            size = int(group_size) if group_size else tournament.group_size
            plans = compute_grouping(
                [self._entry(r) for r in registrations],
                method=method,
                group_size=size,
                tee_times=tournament.tee_times or [],
                start_type=tournament.start_type,
                rng=random.Random(seed) if seed is not None else None
            )

            groups = self._replace_groups(tournament, plans, {r.id: r for r in registrations})

            entering = sm.state != TournamentStatus.GROUPING
            if entering:
                sm.transition(TournamentStatus.GROUPING)
            tournament.status = sm.state.value
            tournament.group_count = len(groups)
            db.session.commit()

        logger.info(f"{tournament.tournament_no} auto-grouped: {len(groups)} groups by {method}")
        outcome = Outcome(result=groups)
        if entering:
            event = lifecycle_event(TournamentStatus.GROUPING.value, tournament.snapshot(),
                                    tournament.confirmed_player_ids())
            outcome.events.append(event)
        return outcome

    def update_group(self, tournament_id: str, group_id: int, data: Dict) -> TournamentGroup:
        with self.locks.hold(tournament_id):
            tournament = Tournament.get_or_404(tournament_id)
            TournamentStateMachine.from_state_string(tournament.status).require('edit_group')

            group = TournamentGroup.query.filter_by(id=group_id, tournament_id=tournament.id).first()
            if group is None:
                raise NotFound('Group', group_id)

            if 'players' in data:
                if not isinstance(data['players'], list):
                    raise ValidationError("players must be a list")
                group.players = [
                    dict(p, order_in_group=p.get('order_in_group') or i + 1)
                    for i, p in enumerate(data['players'])
                ]
            if 'tee_time' in data:
                group.tee_time = data['tee_time']
            if 'starting_hole' in data:
                try:
                    hole = int(data['starting_hole'])
                except (TypeError, ValueError):
                    raise ValidationError("starting_hole must be a number")
                if not 1 <= hole <= SHOTGUN_HOLES:
                    raise ValidationError(f"starting_hole must be between 1 and {SHOTGUN_HOLES}")
                group.starting_hole = hole

            self._link_members(tournament, group)
            db.session.commit()

        logger.info(f"{tournament.tournament_no} group {group.group_no} updated")
        return group

    @staticmethod
    def _entry(registration: Registration) -> Dict:
        return {
            'reg_id': registration.id,
            'player_id': registration.player_id,
            'player_name': registration.player_name,
            'player_no': registration.player_no,
            'handicap': registration.handicap,
        }

    def _replace_groups(self, tournament: Tournament, plans: List[GroupPlan], by_id: Dict) -> List[TournamentGroup]:
        """Swap the whole group set inside the caller's transaction."""
        TournamentGroup.query.filter_by(tournament_id=tournament.id).delete(synchronize_session='fetch')
        db.session.flush()

        groups = []
        for plan in plans:
            group = TournamentGroup(
                tournament_id=tournament.id,
                group_no=plan.group_no,
                tee_time=plan.tee_time,
                starting_hole=plan.starting_hole,
                players=plan.members,
                status='pending'
            )
            db.session.add(group)
            groups.append(group)
        db.session.flush()

        now = datetime.utcnow()
        for group in groups:
            for member in group.players:
                registration = by_id[member['reg_id']]
                registration.group_id = group.id
                registration.group_no = group.group_no
                registration.tee_time = group.tee_time
                registration.starting_hole = group.starting_hole
                registration.updated_at = now
        return groups

    @staticmethod
    def _link_members(tournament: Tournament, group: TournamentGroup):
        reg_ids = [p.get('reg_id') for p in group.players or [] if p.get('reg_id')]
        if not reg_ids:
            return
        for registration in Registration.query.filter(
            Registration.tournament_id == tournament.id,
            Registration.id.in_(reg_ids)
        ).all():
            registration.group_id = group.id
            registration.group_no = group.group_no
            registration.tee_time = group.tee_time
            registration.starting_hole = group.starting_hole
