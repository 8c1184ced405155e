import os
import logging

import redis
from flask import Flask, jsonify

from shared.errors import TournamentError
from shared.pubsub import PubSubClient
from .config import config
from .models import db
from .directory import PlayerDirectory, PointsLedger
from .dispatch import OutboxDispatcher
from .grouping import GroupingEngine
from .leaderboard import LeaderboardRanker
from .locks import TournamentLocks
from .notifications import NotificationDispatcher
from .registration import RegistrationLedger
from .scoring import ScoringEngine
from .tournament_registry import TournamentRegistry

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the clubhouse tournament service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)

    redis_client = None
    pubsub = None
    if app.config['USE_REDIS']:
        redis_client = redis.from_url(app.config['REDIS_URL'], decode_responses=True)
        pubsub = PubSubClient(redis_client=redis_client)

    # Initialize services
    locks = TournamentLocks(
        redis_client,
        timeout=app.config['TOURNAMENT_LOCK_TIMEOUT'],
        wait=app.config['TOURNAMENT_LOCK_WAIT']
    )
    ranker = LeaderboardRanker()
    points = PointsLedger()

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access in routes
    app.redis = redis_client
    app.locks = locks
    app.ranker = ranker
    app.registry = TournamentRegistry(ranker, app.config)
    app.ledger = RegistrationLedger(PlayerDirectory(), retry_limit=app.config['REGISTRATION_RETRY_LIMIT'])
    app.grouping = GroupingEngine(locks)
    app.scoring = ScoringEngine(locks)
    app.dispatcher = OutboxDispatcher(NotificationDispatcher(pubsub), points, pubsub)

    register_error_handlers(app)
    register_health_routes(app)

    from .routes import tournaments
    app.register_blueprint(tournaments.bp)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(TournamentError)
    def handle_tournament_error(error: TournamentError):
        return jsonify(error.to_dict()), error.status_code


def register_health_routes(app: Flask):

    @app.route('/api/v1/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception as e:
            logger.warning(f"Health check database probe failed: {e}")
            db_ok = False

        redis_ok = None
        if app.redis is not None:
            try:
                app.redis.ping()
                redis_ok = True
            except redis.RedisError as e:
                logger.warning(f"Health check redis probe failed: {e}")
                redis_ok = False

        healthy = db_ok and redis_ok is not False
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'database': 'connected' if db_ok else 'disconnected',
            'redis': 'disabled' if redis_ok is None else ('connected' if redis_ok else 'disconnected')
        }), 200 if healthy else 503
