"""
Pytest configuration and fixtures for clubhouse tournament tests.
"""
import os
import sys
from datetime import date, datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from clubhouse.app import create_app
from clubhouse.models import db, Tournament, Registration, PlayerClubProfile

CLUB_ID = 'club-test'


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    # Clear all tables before each test
    db.session.remove()

    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def make_tournament(db_session):
    """Factory for tournaments in any status."""
    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        start = date.today() + timedelta(days=30)
        fields = dict(
            tournament_id=f"t_test{counter['n']:04d}",
            club_id=CLUB_ID,
            tournament_no=f"T{start.year}{counter['n']:04d}",
            name=f"Club Medal {counter['n']}",
            format='stroke',
            start_date=start,
            end_date=start,
            total_holes=18,
            round_count=1,
            tee_times=[],
            max_players=72,
            member_only=False,
            registration_deadline=start,
            entry_fee=0,
            rules={'group_size': 4, 'start_type': 'tee_times'},
            awards=[],
            status='draft',
            registered_count=0,
            group_count=0,
        )
        fields.update(overrides)
        tournament = Tournament(**fields)
        db_session.add(tournament)
        db_session.commit()
        return tournament

    return _make


@pytest.fixture
def add_registration(db_session):
    """Insert a registration directly, bypassing the ledger's checks."""
    counter = {'n': 0}

    def _add(tournament, player_name, handicap=18.0, status='confirmed', player_id=None):
        counter['n'] += 1
        registration = Registration(
            tournament_id=tournament.id,
            club_id=tournament.club_id,
            reg_no=f"R{counter['n']:04d}",
            player_id=player_id,
            player_name=player_name,
            handicap=handicap,
            status=status,
            registered_at=datetime(2026, 1, 1) + timedelta(minutes=counter['n']),
        )
        db_session.add(registration)
        db_session.commit()
        return registration

    return _add


@pytest.fixture
def make_profile(db_session):
    def _make(player_id, player_name, handicap=None, identity_code='walkin', points=0):
        profile = PlayerClubProfile(
            club_id=CLUB_ID,
            player_id=player_id,
            player_name=player_name,
            handicap=handicap,
            identity_code=identity_code,
            points=points,
        )
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make


@pytest.fixture
def mock_pubsub(mocker):
    """Mock redis pub/sub client."""
    mock_instance = mocker.MagicMock()
    mock_instance.publish = mocker.MagicMock(return_value=1)
    mock_instance.publish_user_notification = mocker.MagicMock(return_value=1)
    mock_instance.log_event = mocker.MagicMock()
    return mock_instance
