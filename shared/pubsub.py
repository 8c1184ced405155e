import os
import redis
from .events import Event


class PubSubClient:
    """Redis pub/sub publisher for tournament events and per-player notifications."""

    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = redis_client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def publish(self, channel: str, payload: str) -> int:
        return self.redis.publish(channel, payload)

    def publish_tournament_event(self, tournament_id: str, event: Event) -> int:
        channel = f"tournament:{tournament_id}:events"
        return self.publish(channel, event.to_json())

    def publish_user_notification(self, user_id: str, payload: str) -> int:
        channel = f"user:{user_id}:notifications"
        return self.publish(channel, payload)

    def log_event(self, tournament_id: str, event: Event):
        key = f"tournament:{tournament_id}:event_log"
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, 999)

