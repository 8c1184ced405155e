"""
Unit tests for RegistrationLedger: eligibility, capacity, waitlist promotion.
"""
from datetime import date, timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from clubhouse.directory import PlayerDirectory
from clubhouse.models import Registration
from clubhouse.registration import RegistrationLedger, is_member
from shared.errors import (
    DeadlinePassed, DuplicateRegistration, InvalidTransition, NotEligible,
    NotInRegistrationPhase, TournamentBusy, ValidationError
)


@pytest.fixture
def ledger():
    return RegistrationLedger(PlayerDirectory(), retry_limit=3)


def _statuses(tournament):
    rows = Registration.query.filter_by(tournament_id=tournament.id) \
        .order_by(Registration.registered_at, Registration.id).all()
    return {r.player_name: r.status for r in rows}


class TestRegister:

    def test_confirmed_with_defaults(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', entry_fee=300)

        reg = ledger.register(tournament.tournament_id, {'player_name': 'Ann'})

        assert reg.status == 'confirmed'
        assert reg.reg_no == 'R0001'
        assert reg.handicap == 24
        assert reg.identity_code == 'walkin'
        assert reg.entry_fee_amount == 300
        assert tournament.registered_count == 1

    def test_sequential_reg_numbers(self, ledger, make_tournament):
        tournament = make_tournament(status='registration')
        ledger.register(tournament.tournament_id, {'player_name': 'Ann'})
        reg = ledger.register(tournament.tournament_id, {'player_name': 'Bo'})
        assert reg.reg_no == 'R0002'

    def test_capacity_overflow_waitlists(self, ledger, make_tournament):
        """Full field is not an error: the entry joins the waitlist."""
        tournament = make_tournament(status='registration', max_players=2)
        ledger.register(tournament.tournament_id, {'player_name': 'A'})
        ledger.register(tournament.tournament_id, {'player_name': 'B'})

        reg = ledger.register(tournament.tournament_id, {'player_name': 'C'})

        assert reg.status == 'waitlisted'
        assert tournament.registered_count == 2

    def test_fills_from_profile(self, ledger, make_tournament, make_profile):
        tournament = make_tournament(status='registration', member_only=True)
        make_profile('p1', 'Ann Lee', handicap=7.2, identity_code='member_gold')

        reg = ledger.register(tournament.tournament_id, {'player_id': 'p1'})

        assert reg.player_name == 'Ann Lee'
        assert reg.handicap == 7.2
        assert reg.identity_code == 'member_gold'

    def test_requires_name(self, ledger, make_tournament):
        tournament = make_tournament(status='registration')
        with pytest.raises(ValidationError):
            ledger.register(tournament.tournament_id, {'player_id': 'nobody'})

    @pytest.mark.parametrize("status", ['draft', 'closed', 'in_progress'])
    def test_not_open(self, ledger, make_tournament, status):
        tournament = make_tournament(status=status)
        with pytest.raises(NotInRegistrationPhase):
            ledger.register(tournament.tournament_id, {'player_name': 'Ann'})

    def test_deadline_day_is_inclusive(self, make_tournament):
        deadline = date(2026, 5, 1)
        tournament = make_tournament(status='registration', registration_deadline=deadline)

        on_the_day = RegistrationLedger(PlayerDirectory(), clock=lambda: deadline)
        assert on_the_day.register(tournament.tournament_id, {'player_name': 'Ann'}).status == 'confirmed'

        day_after = RegistrationLedger(PlayerDirectory(), clock=lambda: deadline + timedelta(days=1))
        with pytest.raises(DeadlinePassed):
            day_after.register(tournament.tournament_id, {'player_name': 'Bo'})

    def test_member_only(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', member_only=True)
        with pytest.raises(NotEligible):
            ledger.register(tournament.tournament_id, {'player_name': 'Guest'})
        reg = ledger.register(tournament.tournament_id, {'player_name': 'Mem', 'identity_code': 'member'})
        assert reg.status == 'confirmed'

    def test_handicap_range(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', handicap_min=5, handicap_max=18)
        with pytest.raises(NotEligible):
            ledger.register(tournament.tournament_id, {'player_name': 'Low', 'handicap': 2})
        with pytest.raises(NotEligible):
            ledger.register(tournament.tournament_id, {'player_name': 'High', 'handicap': 20})
        assert ledger.register(tournament.tournament_id, {'player_name': 'Edge', 'handicap': 18}).handicap == 18

    def test_duplicate_player(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', max_players=1)
        ledger.register(tournament.tournament_id, {'player_id': 'p1', 'player_name': 'Ann'})
        ledger.register(tournament.tournament_id, {'player_id': 'p2', 'player_name': 'Bo'})

        with pytest.raises(DuplicateRegistration):
            ledger.register(tournament.tournament_id, {'player_id': 'p1', 'player_name': 'Ann'})
        with pytest.raises(DuplicateRegistration):
            ledger.register(tournament.tournament_id, {'player_id': 'p2', 'player_name': 'Bo'})

    def test_bad_handicap(self, ledger, make_tournament):
        tournament = make_tournament(status='registration')
        with pytest.raises(ValidationError):
            ledger.register(tournament.tournament_id, {'player_name': 'Ann', 'handicap': 'scratch'})


class TestRetry:

    def test_retries_on_version_conflict(self, ledger, make_tournament, mocker):
        tournament = make_tournament(status='registration')
        real = ledger._register_once
        calls = {'n': 0}

        def flaky(tournament_id, data):
            calls['n'] += 1
            if calls['n'] == 1:
                raise StaleDataError("version mismatch")
            return real(tournament_id, data)

        mocker.patch.object(ledger, '_register_once', side_effect=flaky)

        reg = ledger.register(tournament.tournament_id, {'player_name': 'Ann'})

        assert calls['n'] == 2
        assert reg.status == 'confirmed'

    def test_gives_up_after_limit(self, ledger, make_tournament, mocker):
        tournament = make_tournament(status='registration')
        mocker.patch.object(ledger, '_register_once', side_effect=StaleDataError("version mismatch"))

        with pytest.raises(TournamentBusy):
            ledger.register(tournament.tournament_id, {'player_name': 'Ann'})
        assert ledger._register_once.call_count == 3


class TestCancel:

    def test_capacity_two_waitlist_scenario(self, ledger, make_tournament):
        """A, B confirmed, C waitlisted; cancelling A promotes C."""
        tournament = make_tournament(status='registration', max_players=2)
        a = ledger.register(tournament.tournament_id, {'player_name': 'A'})
        ledger.register(tournament.tournament_id, {'player_name': 'B'})
        c = ledger.register(tournament.tournament_id, {'player_name': 'C'})
        assert c.status == 'waitlisted'
        assert tournament.registered_count == 2

        result = ledger.cancel(tournament.tournament_id, a.id)

        assert result.cancelled.status == 'cancelled'
        assert result.promoted.id == c.id
        assert _statuses(tournament) == {'A': 'cancelled', 'B': 'confirmed', 'C': 'confirmed'}
        assert tournament.registered_count == 2

    def test_promotion_is_fifo_one_per_cancel(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', max_players=1)
        a = ledger.register(tournament.tournament_id, {'player_name': 'A'})
        ledger.register(tournament.tournament_id, {'player_name': 'W1'})
        ledger.register(tournament.tournament_id, {'player_name': 'W2'})

        result = ledger.cancel(tournament.tournament_id, a.id)

        assert result.promoted.player_name == 'W1'
        assert _statuses(tournament)['W2'] == 'waitlisted'

    def test_cancelling_waitlisted_promotes_nobody(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', max_players=1)
        ledger.register(tournament.tournament_id, {'player_name': 'A'})
        w1 = ledger.register(tournament.tournament_id, {'player_name': 'W1'})
        ledger.register(tournament.tournament_id, {'player_name': 'W2'})

        result = ledger.cancel(tournament.tournament_id, w1.id)

        assert result.promoted is None
        assert _statuses(tournament) == {'A': 'confirmed', 'W1': 'cancelled', 'W2': 'waitlisted'}

    def test_confirmed_never_exceeds_capacity(self, ledger, make_tournament):
        tournament = make_tournament(status='registration', max_players=3)
        regs = [ledger.register(tournament.tournament_id, {'player_name': f'P{i}'}) for i in range(6)]
        ledger.cancel(tournament.tournament_id, regs[0].id)
        ledger.cancel(tournament.tournament_id, regs[3].id)
        ledger.register(tournament.tournament_id, {'player_name': 'Late'})

        confirmed = Registration.query.filter_by(tournament_id=tournament.id, status='confirmed').count()
        assert confirmed == 3
        assert tournament.registered_count == 3

    def test_cancel_twice(self, ledger, make_tournament):
        tournament = make_tournament(status='registration')
        reg = ledger.register(tournament.tournament_id, {'player_name': 'A'})
        ledger.cancel(tournament.tournament_id, reg.id)
        with pytest.raises(ValidationError):
            ledger.cancel(tournament.tournament_id, reg.id)

    def test_cancel_refused_once_play_starts(self, ledger, make_tournament, add_registration):
        tournament = make_tournament(status='in_progress')
        reg = add_registration(tournament, 'A')
        with pytest.raises(InvalidTransition):
            ledger.cancel(tournament.tournament_id, reg.id)


class TestUpdateRegistration:

    def test_updates_editable_fields(self, ledger, make_tournament, add_registration):
        tournament = make_tournament(status='closed')
        reg = add_registration(tournament, 'A', handicap=10)

        updated = ledger.update_registration(tournament.tournament_id, reg.id, {
            'handicap': '12.4', 'note': 'cart please', 'player_name': 'Ignored'
        })

        assert updated.handicap == 12.4
        assert updated.note == 'cart please'
        assert updated.player_name == 'A'


def test_is_member():
    assert is_member('member')
    assert is_member('member_gold')
    assert not is_member('walkin')
    assert not is_member(None)
