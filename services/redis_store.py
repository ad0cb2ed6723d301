"""
Redis-backed arm store.

Keeps every arm blob as one field of a single hash, keyed by game id.
"""

import logging
from typing import List, Optional

import redis

from models.records import StoredArm

logger = logging.getLogger(__name__)


class RedisPersistentStore:
    """Arm snapshots in a Redis hash."""

    def __init__(self, client: Optional[redis.Redis] = None, key: str = 'bandit_models',
                 host: str = 'localhost', port: int = 6379, db: int = 0,
                 password: Optional[str] = None):
        self.key = key
        self.redis_client = client or redis.Redis(
            host=host, port=port, db=db, password=password, decode_responses=True
        )
        logger.info(f"Redis arm store using hash '{key}'")

    def load_all_arms(self) -> List[StoredArm]:
        stored = self.redis_client.hgetall(self.key)
        arms = []
        for game_id, blob in stored.items():
            if isinstance(game_id, bytes):
                game_id = game_id.decode('utf-8')
            arms.append(StoredArm(game_id=game_id, serialized_model=blob))
        return arms

    def save_arm(self, game_id: str, serialized_model: str):
        self.redis_client.hset(self.key, game_id, serialized_model)

    def clear(self):
        """Remove every stored arm."""
        self.redis_client.delete(self.key)
