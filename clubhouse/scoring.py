import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from shared.errors import NotFound, TournamentError, ValidationError
from shared.state_machine import TournamentStateMachine
from .locks import TournamentLocks
from .models import db, Registration, ScoreCard, Tournament

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayerKey:
    """
    Identity a scorecard is filed under. Resolved once when the card is
    written: registration id, else player id, else player name.
    """
    kind: str
    value: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"

    @classmethod
    def from_fields(cls, reg_id=None, player_id=None, player_name=None) -> "PlayerKey":
        if reg_id:
            return cls("reg", str(reg_id))
        if player_id:
            return cls("player", str(player_id))
        if player_name:
            return cls("name", str(player_name))
        raise ValidationError("reg_id or player_id is required")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def net_score(gross_score, handicap, holes: int = 18) -> Optional[int]:
    """Gross minus handicap allowance; half allowance on 9-hole rounds."""
    if not gross_score or gross_score <= 0:
        return None
    hcp = float(handicap or 0)
    factor = 0.5 if holes == 9 else 1
    return _round_half_up(gross_score - hcp * factor)


def points_for_diff(diff) -> int:
    if diff >= 4:
        return 6
    if diff == 3:
        return 5
    if diff == 2:
        return 4
    if diff == 1:
        return 3
    if diff == 0:
        return 2
    if diff == -1:
        return 1
    return 0


def allocate_strokes(handicap, num_holes: int) -> List[float]:
    """
    Spread handicap strokes evenly by hole position: every hole gets
    floor(hcp / n) and the first hcp % n holes one more. Stroke index is
    not consulted. The remainder truncates toward zero, so a plus
    handicap smaller than n gives back a stroke on every hole.
    """
    if num_holes <= 0:
        return []
    hcp = float(handicap or 0)
    per_hole = math.floor(hcp / num_holes)
    extra = math.fmod(hcp, num_holes)
    return [per_hole + 1 if i < extra else per_hole for i in range(num_holes)]


def stableford_points(hole_scores: Sequence, hole_pars: Sequence, handicap) -> int:
    if not hole_scores or not hole_pars:
        return 0
    strokes = allocate_strokes(handicap, len(hole_pars))
    total = 0
    for i, gross in enumerate(hole_scores):
        if i >= len(hole_pars):
            break
        par = hole_pars[i]
        # Missing holes are skipped rather than scored as zero
        if not gross or not par:
            continue
        diff = par - (gross - strokes[i])
        total += points_for_diff(diff)
    return total


def _as_number(value, field: str, cast=float):
    if value is None or value == '':
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


def _as_hole_list(value, field: str) -> List:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return [_as_number(v, field) for v in value]


class ScoringEngine:
    def __init__(self, locks: TournamentLocks):
        self.locks = locks

    def list_scores(self, tournament_id: str, round_num: int = None, group_id: int = None) -> List[ScoreCard]:
        tournament = Tournament.get_or_404(tournament_id)
        query = ScoreCard.query.filter_by(tournament_id=tournament.id)
        if round_num:
            query = query.filter_by(round_num=round_num)
        if group_id:
            query = query.filter_by(group_id=group_id)
        return query.order_by(ScoreCard.gross_score.asc(), ScoreCard.id).all()

    def record_score(self, tournament_id: str, data: Dict) -> ScoreCard:
        with self.locks.hold(tournament_id):
            tournament = Tournament.get_or_404(tournament_id)
            TournamentStateMachine.from_state_string(tournament.status).require('record_score')

            card = self._upsert(tournament, data)
            db.session.commit()

        logger.info(
            f"{tournament.tournament_no} R{card.round_num} {card.player_name}: "
            f"gross {card.gross_score} net {card.net_score}"
        )
        return card

    def record_batch(self, tournament_id: str, items: List[Dict]) -> List[Dict]:
        """Record each card independently; failures are reported per item."""
        if not items:
            raise ValidationError("scores must not be empty")

        results = []
        with self.locks.hold(tournament_id):
            tournament = Tournament.get_or_404(tournament_id)
            TournamentStateMachine.from_state_string(tournament.status).require('record_score')

            for item in items:
                if not isinstance(item, dict):
                    logger.warning(f"Batch score in {tournament_id} rejected: entry is not an object")
                    results.append({'player_name': None, 'error': 'score entry must be an object'})
                    continue
                player_name = item.get('player_name')
                try:
                    card = self._upsert(tournament, item)
                    db.session.commit()
                    results.append({
                        'id': card.id,
                        'player_name': card.player_name,
                        'round': card.round_num,
                        'gross_score': card.gross_score,
                        'net_score': card.net_score,
                    })
                except TournamentError as e:
                    db.session.rollback()
                    logger.warning(f"Batch score for {player_name} in {tournament_id} rejected: {e.message}")
                    results.append({'player_name': player_name, 'error': e.message})
                except SQLAlchemyError as e:
                    db.session.rollback()
                    logger.warning(f"Batch score for {player_name} in {tournament_id} failed: {e}")
                    results.append({'player_name': player_name, 'error': str(e)})

        logger.info(f"{tournament.tournament_no} batch scoring: {len(results)} cards processed")
        return results

    def _upsert(self, tournament: Tournament, data: Dict) -> ScoreCard:
        reg_id = _as_number(data.get('reg_id'), 'reg_id', int)
        player_id = data.get('player_id') or None
        player_name = data.get('player_name') or ''
        registration = None

        if reg_id is not None:
            registration = Registration.query.filter_by(id=reg_id, tournament_id=tournament.id).first()
            if registration is None:
                raise NotFound('Registration', reg_id)
            player_id = player_id or registration.player_id
            player_name = player_name or registration.player_name
        elif not player_id:
            raise ValidationError("reg_id or player_id is required")

        key = PlayerKey.from_fields(reg_id, player_id, player_name)

        round_num = _as_number(data.get('round'), 'round', int)
        if round_num is None:
            round_num = 1
        if round_num < 1 or round_num > (tournament.round_count or 1):
            raise ValidationError(f"round must be between 1 and {tournament.round_count or 1}")

        handicap = _as_number(data.get('handicap'), 'handicap')
        if handicap is None:
            handicap = registration.handicap if registration is not None and registration.handicap is not None else 0

        gross = _as_number(data.get('gross_score'), 'gross_score', int)
        hole_scores = _as_hole_list(data.get('hole_scores'), 'hole_scores')
        hole_pars = _as_hole_list(data.get('hole_pars'), 'hole_pars')

        stableford = None
        if tournament.format == 'stableford':
            stableford = stableford_points(hole_scores, hole_pars, handicap)

        card = ScoreCard.query.filter_by(
            tournament_id=tournament.id,
            round_num=round_num,
            player_key=str(key)
        ).first()
        if card is None:
            card = ScoreCard(tournament_id=tournament.id, round_num=round_num, player_key=str(key))
            db.session.add(card)

        # Last write wins: every field is overwritten
        card.club_id = tournament.club_id
        card.reg_id = reg_id
        card.player_id = player_id
        card.player_name = player_name
        card.handicap = handicap
        card.gross_score = gross or 0
        card.net_score = net_score(gross, handicap, len(hole_scores) or 18)
        card.hole_scores = hole_scores
        card.hole_pars = hole_pars
        card.stableford_points = stableford
        card.group_id = _as_number(data.get('group_id'), 'group_id', int) or \
            (registration.group_id if registration is not None else None)
        card.attested_by = data.get('attested_by') or ''
        card.attested_by_name = data.get('attested_by_name') or ''
        db.session.flush()
        return card
