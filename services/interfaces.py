"""
Collaborator contracts consumed by the recommendation engine.

The catalog, session history and arm store live outside the engine; any
object that provides these methods can be plugged in. SQL and Redis
implementations live in services/sql_store.py and services/redis_store.py.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from models.records import Game, SessionRecord, StoredArm


@runtime_checkable
class CatalogProvider(Protocol):
    def list_installed_games(self) -> List[Game]:
        """Return every installed game. May raise if the catalog is unreachable."""
        ...


@runtime_checkable
class SessionEventSource(Protocol):
    def most_recent_session_start(self, before: datetime) -> Optional[datetime]:
        """Latest session start strictly before the given time, None if there is none."""
        ...

    def replay_historical_sessions(self) -> Iterable[SessionRecord]:
        """Every recorded session in ascending start time."""
        ...

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Look up a single session by id."""
        ...


@runtime_checkable
class PersistentStore(Protocol):
    def load_all_arms(self) -> List[StoredArm]:
        ...

    def save_arm(self, game_id: str, serialized_model: str) -> None:
        ...


@runtime_checkable
class FeedbackSink(Protocol):
    def record_feedback(self, game_id: str, action: str, timestamp: datetime) -> None:
        ...
