import logging
import threading
from contextlib import contextmanager
from typing import Dict

import redis
from redis.exceptions import LockError

from shared.errors import TournamentBusy

logger = logging.getLogger(__name__)


class TournamentLocks:
    """
    Serializes destructive work (grouping, score entry) per tournament.
    Uses a redis lock when a client is supplied so multiple workers share it,
    otherwise a process-local lock registry.
    """

    def __init__(self, redis_client: redis.Redis = None, timeout: int = 30, wait: float = 10):
        self.redis = redis_client
        self.timeout = timeout
        self.wait = wait
        # One lock per tournament id seen, kept for the life of the process
        self._local: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _local_lock(self, tournament_id: str) -> threading.Lock:
        with self._registry_lock:
            if tournament_id not in self._local:
                self._local[tournament_id] = threading.Lock()
            return self._local[tournament_id]

    @contextmanager
    def hold(self, tournament_id: str):
        if self.redis is not None:
            lock = self.redis.lock(
                f"tournament:{tournament_id}:lock",
                timeout=self.timeout,
                blocking_timeout=self.wait
            )
            if not lock.acquire():
                raise TournamentBusy(f"Tournament {tournament_id} is busy, try again")
            try:
                yield
            finally:
                try:
                    lock.release()
                except LockError as e:
                    # Expired before release; the work itself already finished
                    logger.warning(f"Lock for {tournament_id} expired before release: {e}")
            return

        lock = self._local_lock(tournament_id)
        if not lock.acquire(timeout=self.wait):
            raise TournamentBusy(f"Tournament {tournament_id} is busy, try again")
        try:
            yield
        finally:
            lock.release()
