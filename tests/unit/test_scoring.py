"""
Unit tests for net/Stableford arithmetic and the ScoringEngine upsert.
"""
import pytest

from clubhouse.locks import TournamentLocks
from clubhouse.models import ScoreCard
from clubhouse.scoring import (
    PlayerKey,
    ScoringEngine,
    allocate_strokes,
    net_score,
    points_for_diff,
    stableford_points,
)
from shared.errors import InvalidTransition, NotFound, ValidationError


class TestNetScore:

    def test_eighteen_holes_full_handicap(self):
        assert net_score(90, 18) == 72

    def test_nine_holes_half_handicap(self):
        assert net_score(45, 10, holes=9) == 40

    def test_rounds_half_up(self):
        """45 - 4.5 = 40.5 rounds up to 41."""
        assert net_score(45, 9, holes=9) == 41
        assert net_score(81, 8.5) == 73  # 72.5 -> 73

    def test_negative_half_rounds_toward_positive(self):
        assert net_score(1, 1.5) == 0  # -0.5 -> 0

    @pytest.mark.parametrize("gross", [None, 0, -3])
    def test_missing_gross_is_none(self, gross):
        assert net_score(gross, 10) is None

    def test_missing_handicap_is_zero(self):
        assert net_score(80, None) == 80


class TestStableford:

    @pytest.mark.parametrize("diff,points", [
        (5, 6), (4, 6), (3, 5), (2, 4), (1, 3), (0, 2), (-1, 1), (-2, 0), (-5, 0),
    ])
    def test_points_table(self, diff, points):
        assert points_for_diff(diff) == points

    def test_even_allocation_by_position(self):
        """Extra strokes go to the first holes by position, not stroke index."""
        assert allocate_strokes(20, 18) == [2, 2] + [1] * 16
        assert allocate_strokes(2, 2) == [1, 1]
        assert allocate_strokes(0, 3) == [0, 0, 0]

    def test_plus_handicap_truncates_remainder(self):
        """A +2 player gives back one stroke on every hole."""
        assert allocate_strokes(-2, 18) == [-1] * 18

    def test_two_hole_example(self):
        """par [4,4], gross [4,5], hcp 2 -> net [3,4] -> points [3,2]."""
        assert stableford_points([4, 5], [4, 4], 2) == 5

    def test_missing_holes_skipped(self):
        """A hole without a score adds nothing instead of counting as zero."""
        assert stableford_points([4, None, 4], [4, 4, 4], 0) == 4

    def test_empty_inputs(self):
        assert stableford_points([], [4, 4], 2) == 0
        assert stableford_points([4, 4], None, 2) == 0


class TestPlayerKey:

    def test_registration_wins(self):
        assert str(PlayerKey.from_fields(7, "p1", "Ann")) == "reg:7"

    def test_player_id_then_name(self):
        assert str(PlayerKey.from_fields(None, "p1", "Ann")) == "player:p1"
        assert str(PlayerKey.from_fields(None, None, "Ann")) == "name:Ann"

    def test_nothing_to_key_on(self):
        with pytest.raises(ValidationError):
            PlayerKey.from_fields()


class TestScoringEngine:

    @pytest.fixture
    def engine(self):
        return ScoringEngine(TournamentLocks(wait=0.1))

    def test_record_uses_registration_handicap(self, engine, make_tournament, add_registration):
        tournament = make_tournament(status='in_progress')
        reg = add_registration(tournament, 'Ann', handicap=10)

        card = engine.record_score(tournament.tournament_id, {'reg_id': reg.id, 'gross_score': 82})

        assert card.player_key == f"reg:{reg.id}"
        assert card.player_name == 'Ann'
        assert card.handicap == 10
        assert card.net_score == 72
        assert card.stableford_points is None

    def test_resubmission_overwrites(self, engine, make_tournament, add_registration):
        """Second submission for the same round and player replaces the first."""
        tournament = make_tournament(status='scoring')
        reg = add_registration(tournament, 'Ann', handicap=10)

        engine.record_score(tournament.tournament_id, {'reg_id': reg.id, 'gross_score': 82, 'attested_by': 'u1'})
        card = engine.record_score(tournament.tournament_id, {'reg_id': reg.id, 'gross_score': 79})

        assert ScoreCard.query.filter_by(tournament_id=tournament.id).count() == 1
        assert card.gross_score == 79
        assert card.net_score == 69
        assert card.attested_by == ''

    def test_stableford_format_computes_points(self, engine, make_tournament, add_registration):
        tournament = make_tournament(status='in_progress', format='stableford')
        reg = add_registration(tournament, 'Ann', handicap=2)

        card = engine.record_score(tournament.tournament_id, {
            'reg_id': reg.id, 'gross_score': 9, 'hole_scores': [4, 5], 'hole_pars': [4, 4]
        })

        assert card.stableford_points == 5

    def test_nine_hole_card_halves_handicap(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress')
        card = engine.record_score(tournament.tournament_id, {
            'player_id': 'p9', 'player_name': 'Bo', 'handicap': 10,
            'gross_score': 45, 'hole_scores': [5] * 9, 'hole_pars': [4] * 9
        })
        assert card.net_score == 40

    def test_rejected_outside_play(self, engine, make_tournament):
        tournament = make_tournament(status='closed')
        with pytest.raises(InvalidTransition):
            engine.record_score(tournament.tournament_id, {'player_id': 'p1', 'gross_score': 80})

    def test_unknown_registration(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress')
        with pytest.raises(NotFound):
            engine.record_score(tournament.tournament_id, {'reg_id': 999, 'gross_score': 80})

    def test_round_out_of_range(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress', round_count=2)
        with pytest.raises(ValidationError):
            engine.record_score(tournament.tournament_id, {'player_id': 'p1', 'round': 3, 'gross_score': 80})

    def test_batch_isolates_failures(self, engine, make_tournament, add_registration):
        """One bad card does not stop the rest of the batch."""
        tournament = make_tournament(status='in_progress')
        reg = add_registration(tournament, 'Ann', handicap=4)

        results = engine.record_batch(tournament.tournament_id, [
            {'reg_id': reg.id, 'gross_score': 76},
            {'player_name': 'Ghost', 'gross_score': 70},
            {'player_id': 'p2', 'player_name': 'Cy', 'gross_score': 'abc'},
            {'player_id': 'p3', 'player_name': 'Di', 'gross_score': 81},
        ])

        assert [('error' in r) for r in results] == [False, True, True, False]
        assert results[1]['player_name'] == 'Ghost'
        assert ScoreCard.query.filter_by(tournament_id=tournament.id).count() == 2

    def test_batch_reports_non_object_entries(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress')

        results = engine.record_batch(tournament.tournament_id, [
            {'player_id': 'p1', 'player_name': 'Ann', 'gross_score': 80},
            'junk',
            None,
            {'player_id': 'p2', 'player_name': 'Bo', 'gross_score': 77},
        ])

        assert results[1] == {'player_name': None, 'error': 'score entry must be an object'}
        assert results[2]['error'] == 'score entry must be an object'
        assert [r.get('player_name') for r in (results[0], results[3])] == ['Ann', 'Bo']
        assert ScoreCard.query.filter_by(tournament_id=tournament.id).count() == 2

    def test_batch_requires_items(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress')
        with pytest.raises(ValidationError):
            engine.record_batch(tournament.tournament_id, [])

    def test_list_scores_sorted_by_gross(self, engine, make_tournament):
        tournament = make_tournament(status='in_progress')
        for pid, gross in [('a', 85), ('b', 72), ('c', 78)]:
            engine.record_score(tournament.tournament_id, {'player_id': pid, 'player_name': pid, 'gross_score': gross})

        scores = engine.list_scores(tournament.tournament_id)
        assert [s.gross_score for s in scores] == [72, 78, 85]
