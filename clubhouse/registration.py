import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm.exc import StaleDataError

from shared.errors import (
    DeadlinePassed, DuplicateRegistration, NotEligible, NotFound,
    NotInRegistrationPhase, TournamentBusy, ValidationError
)
from shared.state_machine import TournamentStateMachine, TournamentStatus
from .directory import PlayerDirectory
from .models import db, Registration, Tournament

logger = logging.getLogger(__name__)

CONFIRMED = 'confirmed'
WAITLISTED = 'waitlisted'
CANCELLED = 'cancelled'

DEFAULT_HANDICAP = 24
DEFAULT_IDENTITY = 'walkin'

EDITABLE_FIELDS = ('note', 'phone_number', 'team_name', 'entry_fee_paid')


@dataclass
class Cancellation:
    cancelled: Registration
    promoted: Optional[Registration] = None

    def to_dict(self) -> dict:
        return {
            'cancelled': self.cancelled.to_dict(),
            'promoted': self.promoted.to_dict() if self.promoted else None,
        }


def _handicap(value) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError("handicap must be a number")


def is_member(identity_code: str) -> bool:
    return (identity_code or '').startswith('member')


class RegistrationLedger:
    """
    Per-player entries into a tournament. Capacity checks and waitlist
    promotion write the tournament row, whose version column turns a
    concurrent writer's commit into a StaleDataError; those are retried.
    """

    def __init__(
        self,
        directory: PlayerDirectory,
        retry_limit: int = 3,
        clock: Callable[[], date] = date.today
    ):
        self.directory = directory
        self.retry_limit = retry_limit
        self.clock = clock

    def list_registrations(self, tournament_id: str, status: str = None) -> List[Registration]:
        tournament = Tournament.get_or_404(tournament_id)
        query = Registration.query.filter_by(tournament_id=tournament.id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Registration.registered_at, Registration.id).all()

    def register(self, tournament_id: str, data: Dict) -> Registration:
        for attempt in range(1, self.retry_limit + 1):
            try:
                return self._register_once(tournament_id, data)
            except StaleDataError:
                db.session.rollback()
                logger.warning(f"Registration for {tournament_id} conflicted, retry {attempt}/{self.retry_limit}")
        raise TournamentBusy(f"Tournament {tournament_id} is busy, try again")

    def cancel(self, tournament_id: str, reg_id: int) -> Cancellation:
        for attempt in range(1, self.retry_limit + 1):
            try:
                return self._cancel_once(tournament_id, reg_id)
            except StaleDataError:
                db.session.rollback()
                logger.warning(f"Cancellation in {tournament_id} conflicted, retry {attempt}/{self.retry_limit}")
        raise TournamentBusy(f"Tournament {tournament_id} is busy, try again")

    def update_registration(self, tournament_id: str, reg_id: int, data: Dict) -> Registration:
        tournament = Tournament.get_or_404(tournament_id)
        TournamentStateMachine.from_state_string(tournament.status).require('update_registration')
        registration = self._get(tournament, reg_id)

        if 'handicap' in data:
            hcp = _handicap(data['handicap'])
            if hcp is None:
                raise ValidationError("handicap must be a number")
            registration.handicap = hcp
        for name in EDITABLE_FIELDS:
            if name in data:
                setattr(registration, name, data[name])

        db.session.commit()
        return registration

    def _get(self, tournament: Tournament, reg_id) -> Registration:
        registration = Registration.query.filter_by(id=reg_id, tournament_id=tournament.id).first()
        if registration is None:
            raise NotFound('Registration', reg_id)
        return registration

    def _count(self, tournament: Tournament, status: str) -> int:
        return Registration.query.filter_by(tournament_id=tournament.id, status=status).count()

    def _check_eligibility(self, tournament: Tournament, identity_code: str, handicap: float):
        if tournament.member_only and not is_member(identity_code):
            raise NotEligible("This tournament is open to members only")
        if tournament.handicap_min is not None and handicap < tournament.handicap_min:
            raise NotEligible(f"Handicap below the minimum of {tournament.handicap_min:g}")
        if tournament.handicap_max is not None and handicap > tournament.handicap_max:
            raise NotEligible(f"Handicap above the maximum of {tournament.handicap_max:g}")

    def _register_once(self, tournament_id: str, data: Dict) -> Registration:
        tournament = Tournament.get_or_404(tournament_id)

        if tournament.status != TournamentStatus.REGISTRATION.value:
            raise NotInRegistrationPhase("Tournament is not open for registration")

        # Deadline is a date; the whole day is inclusive
        if tournament.registration_deadline and self.clock() > tournament.registration_deadline:
            raise DeadlinePassed("Registration deadline has passed")

        player_id = data.get('player_id') or None
        profile = self.directory.get_profile(tournament.club_id, player_id)

        player_name = data.get('player_name') or (profile.player_name if profile else None)
        if not player_name:
            raise ValidationError("player_name is required")

        handicap = _handicap(data.get('handicap'))
        if handicap is None:
            handicap = profile.handicap if profile and profile.handicap is not None else DEFAULT_HANDICAP
        identity_code = data.get('identity_code') or (profile.identity_code if profile else None) \
            or DEFAULT_IDENTITY

        self._check_eligibility(tournament, identity_code, handicap)

        if player_id:
            existing = Registration.query.filter(
                Registration.tournament_id == tournament.id,
                Registration.player_id == player_id,
                Registration.status.in_([CONFIRMED, WAITLISTED])
            ).first()
            if existing is not None:
                raise DuplicateRegistration(f"Player {player_id} is already registered ({existing.reg_no})")

        confirmed = self._count(tournament, CONFIRMED)
        waitlisted = confirmed >= tournament.max_players
        reg_no = f"R{Registration.query.filter_by(tournament_id=tournament.id).count() + 1:04d}"
        now = datetime.utcnow()

        registration = Registration(
            tournament_id=tournament.id,
            club_id=tournament.club_id,
            reg_no=reg_no,
            player_id=player_id,
            player_name=player_name,
            player_no=data.get('player_no') or (profile.player_no if profile else '') or '',
            phone_number=data.get('phone_number') or (profile.phone_number if profile else '') or '',
            handicap=handicap,
            identity_code=identity_code,
            is_guest=bool(data.get('is_guest', False)),
            invited_by=data.get('invited_by') or '',
            team_name=data.get('team_name') or '',
            note=data.get('note') or '',
            entry_fee_paid=False,
            entry_fee_amount=tournament.entry_fee or 0,
            status=WAITLISTED if waitlisted else CONFIRMED,
            registered_at=now,
        )
        db.session.add(registration)

        tournament.registered_count = confirmed + (0 if waitlisted else 1)
        tournament.updated_at = now
        db.session.commit()

        logger.info(
            f"{player_name} registered for {tournament.tournament_no} as {registration.reg_no}: "
            f"{registration.status}"
        )
        return registration

    def _cancel_once(self, tournament_id: str, reg_id: int) -> Cancellation:
        tournament = Tournament.get_or_404(tournament_id)
        TournamentStateMachine.from_state_string(tournament.status).require('cancel_registration')
        registration = self._get(tournament, reg_id)

        if registration.status == CANCELLED:
            raise ValidationError(f"Registration {registration.reg_no} is already cancelled")

        was_confirmed = registration.status == CONFIRMED
        now = datetime.utcnow()
        registration.status = CANCELLED
        registration.updated_at = now
        db.session.flush()

        promoted = None
        if was_confirmed and self._count(tournament, CONFIRMED) < tournament.max_players:
            promoted = Registration.query.filter_by(tournament_id=tournament.id, status=WAITLISTED) \
                .order_by(Registration.registered_at, Registration.id).first()
            if promoted is not None:
                promoted.status = CONFIRMED
                promoted.updated_at = now
                db.session.flush()

        tournament.registered_count = self._count(tournament, CONFIRMED)
        tournament.updated_at = now
        db.session.commit()

        logger.info(f"{registration.player_name} cancelled {registration.reg_no} in {tournament.tournament_no}")
        if promoted is not None:
            logger.info(f"Waitlisted {promoted.player_name} ({promoted.reg_no}) promoted to confirmed")
        return Cancellation(cancelled=registration, promoted=promoted)
