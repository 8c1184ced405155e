import logging

from flask import Blueprint, current_app, jsonify, request

from shared.errors import ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint('tournaments', __name__, url_prefix='/api/v1/tournaments')


def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _club_id(data: dict = None) -> str:
    return (data or {}).get('club_id') or request.args.get('club_id') \
        or current_app.config['DEFAULT_CLUB_ID']


def _dispatch(outcome):
    """Deliver an operation's events once its state change is committed."""
    report = current_app.dispatcher.dispatch(outcome.events)
    if not report.ok:
        logger.warning(f"{len(report.failed)} side effects failed to deliver")
    return report.to_dict()


# ==================== Tournament CRUD ====================

@bp.route('', methods=['GET'])
def list_tournaments():
    """List tournaments with optional filtering."""
    page = request.args.get('page', 1, type=int)
    page_size = request.args.get('page_size', 20, type=int)

    tournaments, total = current_app.registry.list_tournaments(
        club_id=_club_id(),
        status=request.args.get('status'),
        year=request.args.get('year'),
        keyword=request.args.get('keyword'),
        page=page,
        page_size=page_size
    )

    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'total': total,
        'page': page,
        'page_size': page_size
    })


@bp.route('', methods=['POST'])
def create_tournament():
    """Create a new tournament."""
    data = _json()
    tournament = current_app.registry.create_tournament(data, club_id=_club_id(data))
    return jsonify({
        'message': 'Tournament created',
        'tournament': tournament.to_dict()
    }), 201


@bp.route('/stats/summary', methods=['GET'])
def stats_summary():
    return jsonify(current_app.registry.stats_summary(_club_id()))


@bp.route('/<tournament_id>', methods=['GET'])
def get_tournament(tournament_id: str):
    """Get tournament details."""
    return jsonify(current_app.registry.describe(tournament_id))


@bp.route('/<tournament_id>', methods=['PUT'])
def update_tournament(tournament_id: str):
    tournament = current_app.registry.update_tournament(tournament_id, _json())
    return jsonify({
        'message': 'Tournament updated',
        'tournament': tournament.to_dict()
    })


@bp.route('/<tournament_id>', methods=['DELETE'])
def delete_tournament(tournament_id: str):
    """Delete a tournament (draft or archived only)."""
    current_app.registry.delete_tournament(tournament_id)
    return jsonify({'message': 'Tournament deleted'})


# ==================== Tournament Lifecycle ====================

@bp.route('/<tournament_id>/status', methods=['PUT'])
def change_status(tournament_id: str):
    data = _json()
    outcome = current_app.registry.change_status(tournament_id, data.get('status'))
    return jsonify({
        'message': f"Tournament is now {outcome.result.status}",
        'tournament': outcome.result.to_dict(),
        'dispatch': _dispatch(outcome)
    })


@bp.route('/<tournament_id>/finalize', methods=['POST'])
def finalize(tournament_id: str):
    """Publish results, hand out awards and credit award points."""
    outcome = current_app.registry.finalize(tournament_id)
    body = dict(outcome.result)
    body['message'] = 'Tournament completed, results published'
    body['dispatch'] = _dispatch(outcome)
    return jsonify(body)


# ==================== Registrations ====================

@bp.route('/<tournament_id>/registrations', methods=['GET'])
def list_registrations(tournament_id: str):
    registrations = current_app.ledger.list_registrations(tournament_id, request.args.get('status'))
    return jsonify({
        'registrations': [r.to_dict() for r in registrations],
        'count': len(registrations)
    })


@bp.route('/<tournament_id>/register', methods=['POST'])
def register(tournament_id: str):
    registration = current_app.ledger.register(tournament_id, _json())
    message = 'Registered' if registration.status == 'confirmed' else 'Tournament is full, added to waitlist'
    return jsonify({
        'message': message,
        'registration': registration.to_dict()
    }), 201


@bp.route('/<tournament_id>/registrations/<int:reg_id>', methods=['PUT'])
def update_registration(tournament_id: str, reg_id: int):
    registration = current_app.ledger.update_registration(tournament_id, reg_id, _json())
    return jsonify({'registration': registration.to_dict()})


@bp.route('/<tournament_id>/registrations/<int:reg_id>', methods=['DELETE'])
def cancel_registration(tournament_id: str, reg_id: int):
    cancellation = current_app.ledger.cancel(tournament_id, reg_id)
    body = cancellation.to_dict()
    body['message'] = 'Registration cancelled'
    return jsonify(body)


# ==================== Groups ====================

@bp.route('/<tournament_id>/groups', methods=['GET'])
def list_groups(tournament_id: str):
    groups = current_app.grouping.list_groups(tournament_id)
    return jsonify({
        'groups': [g.to_dict() for g in groups],
        'count': len(groups)
    })


@bp.route('/<tournament_id>/groups/auto', methods=['POST'])
def auto_group(tournament_id: str):
    data = _json()
    outcome = current_app.grouping.auto_group(
        tournament_id,
        method=data.get('method', 'handicap'),
        group_size=data.get('group_size'),
        seed=data.get('seed')
    )
    return jsonify({
        'groups': [g.to_dict() for g in outcome.result],
        'count': len(outcome.result),
        'dispatch': _dispatch(outcome)
    })


@bp.route('/<tournament_id>/groups/<int:group_id>', methods=['PUT'])
def update_group(tournament_id: str, group_id: int):
    group = current_app.grouping.update_group(tournament_id, group_id, _json())
    return jsonify({'group': group.to_dict()})


# ==================== Scores ====================

@bp.route('/<tournament_id>/scores', methods=['GET'])
def list_scores(tournament_id: str):
    scores = current_app.scoring.list_scores(
        tournament_id,
        round_num=request.args.get('round', type=int),
        group_id=request.args.get('group_id', type=int)
    )
    return jsonify({
        'scores': [s.to_dict() for s in scores],
        'count': len(scores)
    })


@bp.route('/<tournament_id>/scores', methods=['POST'])
def record_score(tournament_id: str):
    card = current_app.scoring.record_score(tournament_id, _json())
    return jsonify({'score': card.to_dict()}), 201


@bp.route('/<tournament_id>/scores/batch', methods=['POST'])
def record_batch(tournament_id: str):
    items = _json().get('scores')
    if not isinstance(items, list):
        raise ValidationError("scores must be a list")
    results = current_app.scoring.record_batch(tournament_id, items)
    failed = sum(1 for r in results if 'error' in r)
    return jsonify({
        'results': results,
        'succeeded': len(results) - failed,
        'failed': failed
    })


@bp.route('/<tournament_id>/leaderboard', methods=['GET'])
def leaderboard(tournament_id: str):
    return jsonify(current_app.ranker.leaderboard(
        tournament_id,
        sort_by=request.args.get('sort_by', 'net'),
        round_filter=request.args.get('round')
    ))
