"""
Record types exchanged with the launcher's catalog, session history and arm store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from utils import parse_label_list


@dataclass
class Game:
    """An installed game as seen by the recommender."""
    id: str
    name: str = ''
    genres: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    playtime_minutes: float = 0.0
    last_played: Optional[float] = None  # Epoch seconds

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Game':
        """Build a game from a loosely typed catalog row, tolerating bad fields."""
        try:
            playtime = float(row.get('playtime') or 0)
        except (TypeError, ValueError):
            playtime = 0.0

        try:
            last_played = float(row['time_last_play']) if row.get('time_last_play') else None
        except (TypeError, ValueError):
            last_played = None

        return cls(
            id=str(row['id']),
            name=row.get('name') or '',
            genres=parse_label_list(row.get('genres')),
            tags=parse_label_list(row.get('tags')),
            playtime_minutes=playtime,
            last_played=last_played,
        )

    @property
    def labels(self) -> set:
        """Union of genres and tags."""
        return set(self.genres) | set(self.tags)


@dataclass
class SessionRecord:
    """A finished play session."""
    game_id: str
    start_time: datetime
    duration_seconds: Optional[float]
    session_id: Optional[str] = None

    @property
    def duration_minutes(self) -> float:
        return (self.duration_seconds or 0.0) / 60.0


@dataclass
class StoredArm:
    """A serialized arm snapshot as held by a persistent store."""
    game_id: str
    serialized_model: str
