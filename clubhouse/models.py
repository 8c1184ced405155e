from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

from shared.errors import NotFound

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    club_id = db.Column(db.String(64), nullable=False, index=True)
    tournament_no = db.Column(db.String(20), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    format = db.Column(db.String(20), nullable=False, default='stroke')

    # Schedule
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    total_holes = db.Column(db.Integer, default=18)
    round_count = db.Column(db.Integer, default=1)
    course_id = db.Column(db.String(64), nullable=True)
    course_name = db.Column(db.String(200), default='')
    tee_times = db.Column(db.JSON, default=list)

    # Capacity & eligibility
    max_players = db.Column(db.Integer, default=72)
    member_only = db.Column(db.Boolean, default=False)
    handicap_min = db.Column(db.Float, nullable=True)
    handicap_max = db.Column(db.Float, nullable=True)
    registration_deadline = db.Column(db.Date, nullable=True)
    entry_fee = db.Column(db.Float, default=0)

    rules = db.Column(db.JSON, default=dict)
    awards = db.Column(db.JSON, default=list)
    description = db.Column(db.Text, default='')
    sponsor_info = db.Column(db.JSON, default=dict)
    contact_name = db.Column(db.String(100), default='')
    contact_phone = db.Column(db.String(50), default='')

    status = db.Column(db.String(20), nullable=False, default='draft')

    # Rollups
    registered_count = db.Column(db.Integer, default=0)
    group_count = db.Column(db.Integer, default=0)
    results_published = db.Column(db.Boolean, default=False)
    leaderboard = db.Column(db.JSON, default=list)
    award_results = db.Column(db.JSON, default=list)
    finalized_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency token; every UPDATE checks and bumps it
    version = db.Column(db.Integer, nullable=False, default=1)

    registrations = db.relationship('Registration', back_populates='tournament',
                                    cascade='all, delete-orphan')
    groups = db.relationship('TournamentGroup', back_populates='tournament',
                             cascade='all, delete-orphan', order_by='TournamentGroup.group_no')
    scores = db.relationship('ScoreCard', back_populates='tournament', cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version}

    @classmethod
    def get_or_404(cls, tournament_id: str) -> 'Tournament':
        tournament = cls.query.filter_by(tournament_id=tournament_id).first()
        if tournament is None:
            raise NotFound('Tournament', tournament_id)
        return tournament

    def confirmed_player_ids(self):
        rows = Registration.query.filter_by(tournament_id=self.id, status='confirmed') \
            .order_by(Registration.registered_at, Registration.id).all()
        return [r.player_id for r in rows if r.player_id]

    @property
    def group_size(self) -> int:
        return int((self.rules or {}).get('group_size') or 4)

    @property
    def start_type(self) -> str:
        return (self.rules or {}).get('start_type') or 'tee_times'

    def snapshot(self) -> dict:
        """Compact view embedded in outbound notifications."""
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'club_id': self.club_id,
            'tournament_no': self.tournament_no,
            'name': self.name,
            'format': self.format,
            'status': self.status,
            'start_date': _iso(self.start_date),
            'course_name': self.course_name,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'club_id': self.club_id,
            'tournament_no': self.tournament_no,
            'name': self.name,
            'format': self.format,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'total_holes': self.total_holes,
            'round_count': self.round_count,
            'course_id': self.course_id,
            'course_name': self.course_name,
            'tee_times': self.tee_times or [],
            'max_players': self.max_players,
            'member_only': self.member_only,
            'handicap_min': self.handicap_min,
            'handicap_max': self.handicap_max,
            'registration_deadline': _iso(self.registration_deadline),
            'entry_fee': self.entry_fee,
            'rules': self.rules or {},
            'awards': self.awards or [],
            'description': self.description,
            'sponsor_info': self.sponsor_info or {},
            'contact_name': self.contact_name,
            'contact_phone': self.contact_phone,
            'status': self.status,
            'registered_count': self.registered_count,
            'group_count': self.group_count,
            'results_published': self.results_published,
            'leaderboard': self.leaderboard or [],
            'award_results': self.award_results or [],
            'finalized_at': _iso(self.finalized_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Registration(db.Model):
    __tablename__ = 'tournament_registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    club_id = db.Column(db.String(64), nullable=False)
    reg_no = db.Column(db.String(20), nullable=False)

    # Snapshot of the player at registration time
    player_id = db.Column(db.String(64), nullable=True, index=True)
    player_name = db.Column(db.String(100), nullable=False)
    player_no = db.Column(db.String(50), default='')
    phone_number = db.Column(db.String(50), default='')
    handicap = db.Column(db.Float, default=24)
    identity_code = db.Column(db.String(50), default='walkin')
    is_guest = db.Column(db.Boolean, default=False)
    invited_by = db.Column(db.String(100), default='')
    team_name = db.Column(db.String(100), default='')
    note = db.Column(db.Text, default='')
    entry_fee_paid = db.Column(db.Boolean, default=False)
    entry_fee_amount = db.Column(db.Float, default=0)

    status = db.Column(db.String(20), nullable=False, default='confirmed', index=True)  # confirmed, waitlisted, cancelled

    # Populated by grouping
    group_id = db.Column(db.Integer, nullable=True)
    group_no = db.Column(db.Integer, nullable=True)
    tee_time = db.Column(db.String(20), nullable=True)
    starting_hole = db.Column(db.Integer, nullable=True)

    registered_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='registrations')

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id if self.tournament else None,
            'reg_no': self.reg_no,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'player_no': self.player_no,
            'phone_number': self.phone_number,
            'handicap': self.handicap,
            'identity_code': self.identity_code,
            'is_guest': self.is_guest,
            'invited_by': self.invited_by,
            'team_name': self.team_name,
            'note': self.note,
            'entry_fee_paid': self.entry_fee_paid,
            'entry_fee_amount': self.entry_fee_amount,
            'status': self.status,
            'group_id': self.group_id,
            'group_no': self.group_no,
            'tee_time': self.tee_time,
            'starting_hole': self.starting_hole,
            'registered_at': _iso(self.registered_at),
        }


class TournamentGroup(db.Model):
    __tablename__ = 'tournament_groups'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    group_no = db.Column(db.Integer, nullable=False)
    tee_time = db.Column(db.String(20), nullable=True)
    starting_hole = db.Column(db.Integer, default=1)
    players = db.Column(db.JSON, default=list)  # [{reg_id, player_id, player_name, player_no, handicap, order_in_group}]
    status = db.Column(db.String(20), default='pending')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='groups')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'group_no', name='unique_group_no_per_tournament'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id if self.tournament else None,
            'group_no': self.group_no,
            'tee_time': self.tee_time,
            'starting_hole': self.starting_hole,
            'players': self.players or [],
            'status': self.status,
        }


class ScoreCard(db.Model):
    __tablename__ = 'tournament_scores'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    club_id = db.Column(db.String(64), nullable=False)
    player_key = db.Column(db.String(120), nullable=False)
    reg_id = db.Column(db.Integer, nullable=True)
    player_id = db.Column(db.String(64), nullable=True)
    player_name = db.Column(db.String(100), default='')
    handicap = db.Column(db.Float, default=0)
    round_num = db.Column(db.Integer, nullable=False, default=1)

    gross_score = db.Column(db.Integer, default=0)
    net_score = db.Column(db.Integer, nullable=True)
    hole_scores = db.Column(db.JSON, default=list)
    hole_pars = db.Column(db.JSON, default=list)
    stableford_points = db.Column(db.Integer, nullable=True)

    group_id = db.Column(db.Integer, nullable=True)
    attested_by = db.Column(db.String(64), default='')
    attested_by_name = db.Column(db.String(100), default='')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='scores')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_num', 'player_key', name='unique_card_per_round'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament.tournament_id if self.tournament else None,
            'player_key': self.player_key,
            'reg_id': self.reg_id,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'handicap': self.handicap,
            'round': self.round_num,
            'gross_score': self.gross_score,
            'net_score': self.net_score,
            'hole_scores': self.hole_scores or [],
            'hole_pars': self.hole_pars or [],
            'stableford_points': self.stableford_points,
            'group_id': self.group_id,
            'attested_by': self.attested_by,
            'attested_by_name': self.attested_by_name,
            'updated_at': _iso(self.updated_at),
        }


class PlayerClubProfile(db.Model):
    """Club-scoped player record owned by the player directory."""
    __tablename__ = 'player_club_profiles'

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.String(64), nullable=False, index=True)
    player_id = db.Column(db.String(64), nullable=False, index=True)
    player_name = db.Column(db.String(100), default='')
    player_no = db.Column(db.String(50), default='')
    phone_number = db.Column(db.String(50), default='')
    identity_code = db.Column(db.String(50), default='walkin')
    handicap = db.Column(db.Float, nullable=True)
    points = db.Column(db.Integer, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('club_id', 'player_id', name='unique_profile_per_club'),
    )


class PointsTransaction(db.Model):
    __tablename__ = 'points_transactions'

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.String(64), nullable=False, index=True)
    player_id = db.Column(db.String(64), nullable=False, index=True)
    player_name = db.Column(db.String(100), default='')
    type = db.Column(db.String(20), default='earn')
    amount = db.Column(db.Integer, nullable=False)
    balance_before = db.Column(db.Integer, default=0)
    balance_after = db.Column(db.Integer, default=0)
    source = db.Column(db.String(50), default='manual')
    source_id = db.Column(db.String(64), default='')
    description = db.Column(db.String(300), default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'club_id': self.club_id,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'type': self.type,
            'amount': self.amount,
            'balance_before': self.balance_before,
            'balance_after': self.balance_after,
            'source': self.source,
            'source_id': self.source_id,
            'description': self.description,
            'created_at': _iso(self.created_at),
        }
