import logging
import math
import uuid
from collections import Counter
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from shared.errors import ValidationError
from shared.events import Outcome, award_event, lifecycle_event, points_credit_event
from shared.state_machine import TournamentStateMachine, TournamentStatus
from .leaderboard import LeaderboardRanker, SORT_METRICS, resolve_metric
from .models import db, Registration, Tournament

logger = logging.getLogger(__name__)

FORMATS = ('stroke', 'match', 'stableford', 'scramble', 'best_ball', 'shotgun')
HOLE_COUNTS = (18, 36, 54, 72)

UPCOMING_STATUSES = (
    TournamentStatus.DRAFT.value,
    TournamentStatus.REGISTRATION.value,
    TournamentStatus.CLOSED.value,
    TournamentStatus.GROUPING.value,
)

# Fields a PUT may change; everything else is owned by the lifecycle
EDITABLE_FIELDS = (
    'name', 'format', 'start_date', 'end_date', 'course_id', 'course_name', 'tee_times',
    'max_players', 'member_only', 'handicap_min', 'handicap_max', 'registration_deadline',
    'entry_fee', 'rules', 'awards', 'description', 'sponsor_info', 'contact_name', 'contact_phone',
)
DATE_FIELDS = ('start_date', 'end_date', 'registration_deadline')


def parse_date(value, field_name: str) -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be a YYYY-MM-DD date")


def _optional_float(value, field_name: str) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number")


def _positive_int(value, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")
    if number < 1:
        raise ValidationError(f"{field_name} must be at least 1")
    return number


def _tee_times(value) -> List:
    if value in (None, ''):
        return []
    if not isinstance(value, list):
        raise ValidationError("tee_times must be a list")
    return list(value)


def default_rules(tournament_format: str, rules: Dict = None) -> Dict:
    rules = dict(rules or {})
    merged = {
        'scoring_method': tournament_format,
        'handicap_allowed': rules.get('handicap_allowed') is not False,
        'tie_breaker': rules.get('tie_breaker') or 'countback',
        'group_size': rules.get('group_size') or 4,
        'start_type': rules.get('start_type') or 'tee_times',
    }
    merged.update({k: v for k, v in rules.items() if k not in merged})
    return merged


def resolve_awards(ranking: List[Dict], award_rules: List[Dict], metric: str) -> List[Dict]:
    """
    Hand each award to the player at its 1-based position in the ranking.
    Positions beyond the ranked field are skipped.
    """
    score_field, _ = SORT_METRICS[metric]
    results = []
    for rule in award_rules:
        try:
            position = int(rule.get('position') or rule.get('rank') or 0)
        except (TypeError, ValueError):
            position = 0
        if position < 1 or position > len(ranking):
            continue
        winner = ranking[position - 1]
        results.append({
            'award_title': rule.get('title') or rule.get('name') or f"Position {position}",
            'position': position,
            'player_key': winner['player_key'],
            'player_id': winner['player_id'],
            'player_name': winner['player_name'],
            'score': winner[score_field],
            'points': int(rule.get('points') or 0),
        })
    return results


class TournamentRegistry:
    """
    Tournament lifecycle:
    - Create/update/delete tournament records
    - Status changes validated by the state machine
    - Finalize: ranking, awards and points payout
    Side effects are returned as events for the dispatcher, never sent here.
    """

    def __init__(self, ranker: LeaderboardRanker, config: Dict = None):
        self.ranker = ranker
        config = config or {}
        self.auto_awards = list(config.get('AUTO_AWARDS') or [])
        self.snapshot_size = int(config.get('LEADERBOARD_SNAPSHOT_SIZE', 20))
        self.top_n = int(config.get('FINALIZE_TOP_N', 10))

    def _next_tournament_no(self, club_id: str) -> str:
        prefix = f"T{datetime.utcnow().year}"
        count = Tournament.query.filter(
            Tournament.club_id == club_id,
            Tournament.tournament_no.like(f"{prefix}%")
        ).count()
        return f"{prefix}{count + 1:04d}"

    def create_tournament(self, data: Dict, club_id: str) -> Tournament:
        """Create a new tournament in draft state."""
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("name is required")
        start_date = parse_date(data.get('start_date'), 'start_date')
        if start_date is None:
            raise ValidationError("start_date is required")

        tournament_format = data.get('format') or 'stroke'
        if tournament_format not in FORMATS:
            raise ValidationError(f"format must be one of {', '.join(FORMATS)}")

        total_holes = _positive_int(data.get('holes', data.get('total_holes', 18)), 'holes')
        if total_holes not in HOLE_COUNTS:
            raise ValidationError(f"holes must be one of {', '.join(str(h) for h in HOLE_COUNTS)}")

        tournament = Tournament(
            tournament_id=f"t_{uuid.uuid4().hex[:12]}",
            club_id=club_id,
            tournament_no=self._next_tournament_no(club_id),
            name=name,
            format=tournament_format,
            start_date=start_date,
            end_date=parse_date(data.get('end_date'), 'end_date') or start_date,
            total_holes=total_holes,
            round_count=math.ceil(total_holes / 18),
            course_id=data.get('course_id'),
            course_name=data.get('course_name') or '',
            tee_times=_tee_times(data.get('tee_times')),
            max_players=_positive_int(data.get('max_players', 72), 'max_players'),
            member_only=bool(data.get('member_only', False)),
            handicap_min=_optional_float(data.get('handicap_min'), 'handicap_min'),
            handicap_max=_optional_float(data.get('handicap_max'), 'handicap_max'),
            registration_deadline=parse_date(data.get('registration_deadline'), 'registration_deadline')
            or start_date,
            entry_fee=_optional_float(data.get('entry_fee'), 'entry_fee') or 0,
            rules=default_rules(tournament_format, data.get('rules')),
            awards=list(data.get('awards') or []),
            description=data.get('description') or '',
            sponsor_info=data.get('sponsor_info') or {},
            contact_name=data.get('contact_name') or '',
            contact_phone=data.get('contact_phone') or '',
            status=TournamentStatus.DRAFT.value,
            registered_count=0,
            group_count=0,
            results_published=False,
            leaderboard=[],
            award_results=[],
        )

        db.session.add(tournament)
        db.session.commit()

        logger.info(f"Tournament created: {tournament.tournament_no} - {tournament.name}")
        return tournament

    def get_tournament(self, tournament_id: str) -> Tournament:
        """Get tournament by its public ID."""
        return Tournament.get_or_404(tournament_id)

    def describe(self, tournament_id: str) -> Dict:
        """Detail view with the live confirmed count and what can be done next."""
        tournament = Tournament.get_or_404(tournament_id)
        sm = TournamentStateMachine.from_state_string(tournament.status)
        data = tournament.to_dict()
        data['registered_count'] = Registration.query.filter_by(
            tournament_id=tournament.id, status='confirmed'
        ).count()
        data['allowed_actions'] = sm.allowed_actions
        data['next_statuses'] = [s.value for s in sm.next_states]
        return data

    def list_tournaments(
        self,
        club_id: str,
        status: str = None,
        year: str = None,
        keyword: str = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Tournament], int]:
        """List tournaments with optional filtering, newest start date first."""
        page = max(int(page or 1), 1)
        page_size = max(int(page_size or 20), 1)

        query = Tournament.query.filter_by(club_id=club_id)
        if status:
            query = query.filter_by(status=status)
        if year:
            try:
                year_num = int(year)
            except (TypeError, ValueError):
                raise ValidationError("year must be a number")
            query = query.filter(
                Tournament.start_date >= date(year_num, 1, 1),
                Tournament.start_date <= date(year_num, 12, 31)
            )
        if keyword:
            pattern = f"%{keyword.lower()}%"
            query = query.filter(db.or_(
                db.func.lower(Tournament.name).like(pattern),
                db.func.lower(Tournament.tournament_no).like(pattern)
            ))

        total = query.count()
        items = query.order_by(Tournament.start_date.desc(), Tournament.id.desc()) \
            .offset((page - 1) * page_size).limit(page_size).all()
        return items, total

    def update_tournament(self, tournament_id: str, data: Dict) -> Tournament:
        tournament = Tournament.get_or_404(tournament_id)
        TournamentStateMachine.from_state_string(tournament.status).require('edit')

        changes = {}
        for name in EDITABLE_FIELDS:
            if name not in data:
                continue
            value = data[name]
            if name in DATE_FIELDS:
                value = parse_date(value, name)
                if name == 'start_date' and value is None:
                    raise ValidationError("start_date is required")
            elif name == 'name':
                value = (value or '').strip()
                if not value:
                    raise ValidationError("name is required")
            elif name == 'format' and value not in FORMATS:
                raise ValidationError(f"format must be one of {', '.join(FORMATS)}")
            elif name == 'max_players':
                value = _positive_int(value, name)
                confirmed = Registration.query.filter_by(
                    tournament_id=tournament.id, status='confirmed'
                ).count()
                if value < confirmed:
                    raise ValidationError(
                        f"max_players cannot be below the {confirmed} confirmed registrations"
                    )
            elif name == 'tee_times':
                value = _tee_times(value)
            elif name in ('handicap_min', 'handicap_max'):
                value = _optional_float(value, name)
            elif name == 'entry_fee':
                value = _optional_float(value, name) or 0
            elif name == 'rules':
                value = default_rules(data.get('format', tournament.format), value)
            changes[name] = value

        # Applied only once every field has validated
        for name, value in changes.items():
            setattr(tournament, name, value)

        db.session.commit()
        logger.info(f"Tournament updated: {tournament.tournament_no}")
        return tournament

    def delete_tournament(self, tournament_id: str):
        """Delete a tournament (only allowed in draft or archived state)."""
        tournament = Tournament.get_or_404(tournament_id)
        TournamentStateMachine.from_state_string(tournament.status).require('delete')

        tournament_no = tournament.tournament_no
        db.session.delete(tournament)
        db.session.commit()
        logger.info(f"Tournament deleted: {tournament_no}")

    def change_status(self, tournament_id: str, new_status) -> Outcome:
        """
        Move a tournament along the transition table. An illegal move raises
        InvalidTransition before anything is written.
        """
        if not new_status:
            raise ValidationError("status is required")

        tournament = Tournament.get_or_404(tournament_id)
        sm = TournamentStateMachine.from_state_string(tournament.status)
        old_state = sm.state
        new_state = sm.transition(new_status)

        tournament.status = new_state.value
        db.session.commit()
        logger.info(f"Tournament {tournament.tournament_no}: {old_state.value} -> {new_state.value}")

        event = lifecycle_event(new_state.value, tournament.snapshot(), tournament.confirmed_player_ids())
        return Outcome(result=tournament, events=[event] if event else [])

    def finalize(self, tournament_id: str) -> Outcome:
        """
        Rank every round, resolve awards, publish results and complete the
        tournament. Points credits and award notices go out as events.
        """
        tournament = Tournament.get_or_404(tournament_id)
        sm = TournamentStateMachine.from_state_string(tournament.status)
        sm.require('finalize')

        metric = resolve_metric('net', tournament.format)
        ranking = self.ranker.ranking(tournament, 'net')
        award_results = resolve_awards(ranking, self.auto_awards + list(tournament.awards or []), metric)

        now = datetime.utcnow()
        sm.force(TournamentStatus.COMPLETED)
        tournament.status = sm.state.value
        tournament.results_published = True
        tournament.leaderboard = [
            {
                'rank': entry['rank'],
                'rank_display': entry['rank_display'],
                'player_key': entry['player_key'],
                'player_id': entry['player_id'],
                'player_name': entry['player_name'],
                'total_gross': entry['total_gross'],
                'total_net': entry['total_net'],
                'total_stableford': entry['total_stableford'],
            }
            for entry in ranking[:self.snapshot_size]
        ]
        tournament.award_results = award_results
        tournament.finalized_at = now
        db.session.commit()

        logger.info(f"Tournament {tournament.tournament_no} finalized, {len(award_results)} awards")

        snapshot = tournament.snapshot()
        events = []
        results = lifecycle_event(tournament.status, snapshot, tournament.confirmed_player_ids())
        if results:
            events.append(results)
        for award in award_results:
            if not award['player_id']:
                continue
            events.append(award_event(snapshot, award))
            if award['points'] > 0:
                events.append(points_credit_event(snapshot, award))

        return Outcome(
            result={
                'tournament': tournament.to_dict(),
                'award_results': award_results,
                'leaderboard_top': ranking[:self.top_n],
            },
            events=events
        )

    def stats_summary(self, club_id: str) -> Dict:
        tournaments = Tournament.query.filter_by(club_id=club_id).all()
        this_year = datetime.utcnow().year
        by_status = Counter(t.status for t in tournaments)
        by_format = Counter(t.format for t in tournaments)
        return {
            'total_events': len(tournaments),
            'this_year_events': sum(1 for t in tournaments if t.start_date and t.start_date.year == this_year),
            'upcoming': sum(by_status[s] for s in UPCOMING_STATUSES),
            'completed': by_status[TournamentStatus.COMPLETED.value],
            'by_status': dict(by_status),
            'by_format': dict(by_format),
        }
