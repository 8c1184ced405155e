from collections import Counter
from typing import Dict, Iterable, List, Optional

from shared.errors import ValidationError
from .models import ScoreCard, Tournament

SORT_METRICS = {
    'net': ('total_net', False),
    'gross': ('total_gross', False),
    'stableford': ('total_stableford', True),
}


def resolve_metric(sort_by: Optional[str], tournament_format: str) -> str:
    if sort_by == 'stableford' or tournament_format == 'stableford':
        return 'stableford'
    if sort_by == 'gross':
        return 'gross'
    return 'net'


def aggregate(cards: Iterable[ScoreCard]) -> List[Dict]:
    """Fold scorecards into one entry per player key, in first-seen order."""
    players: Dict[str, Dict] = {}
    for card in sorted(cards, key=lambda c: (c.round_num, c.id or 0)):
        entry = players.get(card.player_key)
        if entry is None:
            entry = players[card.player_key] = {
                'player_key': card.player_key,
                'reg_id': card.reg_id,
                'player_id': card.player_id,
                'player_name': card.player_name,
                'handicap': card.handicap,
                'rounds': [],
                'total_gross': 0,
                'total_net': 0,
                'total_stableford': 0,
                'round_count': 0,
            }
        entry['rounds'].append({
            'round': card.round_num,
            'gross_score': card.gross_score,
            'net_score': card.net_score,
            'stableford_points': card.stableford_points,
            'hole_scores': card.hole_scores or [],
        })
        entry['total_gross'] += card.gross_score or 0
        entry['total_net'] += card.net_score or 0
        entry['total_stableford'] += card.stableford_points or 0
        entry['round_count'] += 1
    return list(players.values())


def rank_entries(entries: List[Dict], metric: str) -> List[Dict]:
    """
    Sort by the metric and assign ranks. A rank changes to position + 1 only
    when the metric value changes, so [70, 70, 72] ranks as [1, 1, 3].
    Shared ranks display with a T prefix.
    """
    field, descending = SORT_METRICS[metric]
    ordered = sorted(entries, key=lambda e: e[field], reverse=descending)

    rank = 1
    for i, entry in enumerate(ordered):
        if i > 0 and entry[field] != ordered[i - 1][field]:
            rank = i + 1
        entry['rank'] = rank

    shared = Counter(e['rank'] for e in ordered)
    for entry in ordered:
        entry['rank_display'] = f"T{entry['rank']}" if shared[entry['rank']] > 1 else str(entry['rank'])
    return ordered


def _parse_round(round_filter) -> Optional[int]:
    if round_filter in (None, '', 'all'):
        return None
    try:
        return int(round_filter)
    except (TypeError, ValueError):
        raise ValidationError("round must be a number or 'all'")


class LeaderboardRanker:
    def ranking(self, tournament: Tournament, sort_by: str = 'net', round_num: int = None) -> List[Dict]:
        query = ScoreCard.query.filter_by(tournament_id=tournament.id)
        if round_num is not None:
            query = query.filter_by(round_num=round_num)
        metric = resolve_metric(sort_by, tournament.format)
        return rank_entries(aggregate(query.all()), metric)

    def leaderboard(self, tournament_id: str, sort_by: str = 'net', round_filter=None) -> Dict:
        tournament = Tournament.get_or_404(tournament_id)
        round_num = _parse_round(round_filter)
        board = self.ranking(tournament, sort_by, round_num)

        return {
            'tournament': {
                'tournament_id': tournament.tournament_id,
                'name': tournament.name,
                'tournament_no': tournament.tournament_no,
                'format': tournament.format,
                'total_holes': tournament.total_holes,
                'status': tournament.status,
            },
            'sort_by': resolve_metric(sort_by, tournament.format),
            'round_filter': round_num if round_num is not None else 'all',
            'leaderboard': board,
            'total_players': len(board),
        }
