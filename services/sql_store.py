"""
SQL-backed collaborators for the recommendation engine.

Reads the launcher's game catalog and session history and stores arm
snapshots and launch feedback through SQLAlchemy. Timestamps are stored as
ISO-8601 text so the same schema works on SQLite and server databases.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from categories import get_categories
from config.config import DatabaseConfig
from models.records import Game, SessionRecord, StoredArm
from utils import parse_timestamp

logger = logging.getLogger(__name__)

TABLE_DDL = [
    """
    CREATE TABLE IF NOT EXISTS games (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(255),
        path TEXT,
        process TEXT,
        genres TEXT,
        tags TEXT,
        playtime INTEGER DEFAULT 0,
        time_last_play INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS game_sessions (
        session_id VARCHAR(64) PRIMARY KEY,
        game_id VARCHAR(64) NOT NULL,
        start_time VARCHAR(40) NOT NULL,
        end_time VARCHAR(40),
        game_time INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bandit_models (
        game_id VARCHAR(64) PRIMARY KEY,
        model_data TEXT NOT NULL,
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recommendation_feedback (
        id INTEGER PRIMARY KEY,
        game_id VARCHAR(64) NOT NULL,
        action VARCHAR(20) NOT NULL,
        timestamp VARCHAR(40) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_game_sessions_start_time ON game_sessions(start_time)",
    "CREATE INDEX IF NOT EXISTS idx_game_sessions_game_id ON game_sessions(game_id)",
]


def build_engine(db_config: Optional[DatabaseConfig] = None) -> Engine:
    """Create a SQLAlchemy engine from database configuration."""
    db_config = db_config or DatabaseConfig()
    return create_engine(db_config.url, **db_config.get_engine_kwargs())


def create_tables(engine: Engine):
    """Create all tables used by the recommender if they do not exist."""
    with engine.begin() as conn:
        for statement in TABLE_DDL:
            conn.execute(text(statement))
    logger.info("Recommender tables are ready")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def insert_game(engine: Engine, game: Game, path: Optional[str] = None, process: Optional[str] = None):
    """Insert or replace a catalog row."""
    with engine.begin() as conn:
        conn.execute(text("""
            INSERT INTO games (id, name, path, process, genres, tags, playtime, time_last_play)
            VALUES (:id, :name, :path, :process, :genres, :tags, :playtime, :time_last_play)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name, path = excluded.path, process = excluded.process,
                genres = excluded.genres, tags = excluded.tags, playtime = excluded.playtime,
                time_last_play = excluded.time_last_play
        """), {
            'id': game.id,
            'name': game.name,
            'path': path,
            'process': process,
            'genres': json.dumps(game.genres),
            'tags': json.dumps(game.tags),
            'playtime': int(game.playtime_minutes),
            'time_last_play': int(game.last_played) if game.last_played else None
        })


def insert_session(engine: Engine, session: SessionRecord, end_time: Optional[datetime] = None):
    """Record a play session; end_time defaults to start plus duration."""
    if end_time is None and session.duration_seconds is not None:
        end_time = datetime.fromtimestamp(session.start_time.timestamp() + session.duration_seconds,
                                          session.start_time.tzinfo)

    with engine.begin() as conn:
        conn.execute(text("""
            INSERT INTO game_sessions (session_id, game_id, start_time, end_time, game_time)
            VALUES (:session_id, :game_id, :start_time, :end_time, :game_time)
        """), {
            'session_id': session.session_id,
            'game_id': session.game_id,
            'start_time': format_timestamp(session.start_time),
            'end_time': format_timestamp(end_time),
            'game_time': int(session.duration_seconds) if session.duration_seconds is not None else None
        })


def _session_from_row(row) -> Optional[SessionRecord]:
    start_time = parse_timestamp(row.start_time)
    if start_time is None:
        logger.warning(f"Ignoring session {row.session_id} with unreadable start time {row.start_time!r}")
        return None
    return SessionRecord(
        game_id=str(row.game_id),
        start_time=start_time,
        duration_seconds=float(row.game_time) if row.game_time is not None else None,
        session_id=str(row.session_id)
    )


class SqlCatalogProvider:
    """Installed games from the launcher's games table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def list_installed_games(self) -> List[Game]:
        with self.engine.connect() as conn:
            result = conn.execute(text("""
                SELECT id, name, genres, tags, playtime, time_last_play
                FROM games
                WHERE process IS NOT NULL OR path IS NOT NULL
                ORDER BY id
            """))
            return [Game.from_row(dict(row._mapping)) for row in result]


class SqlSessionEventSource:
    """Play sessions from the game_sessions table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def most_recent_session_start(self, before: datetime) -> Optional[datetime]:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT MAX(start_time) FROM game_sessions WHERE start_time < :before"),
                {'before': format_timestamp(before)}
            )
            return parse_timestamp(result.scalar())

    def replay_historical_sessions(self) -> Iterable[SessionRecord]:
        with self.engine.connect() as conn:
            result = conn.execute(text("""
                SELECT session_id, game_id, start_time, game_time
                FROM game_sessions
                WHERE end_time IS NOT NULL
                  AND game_time IS NOT NULL
                  AND game_time > 0
                ORDER BY start_time ASC
            """))
            sessions = [_session_from_row(row) for row in result]
        return [session for session in sessions if session is not None]

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self.engine.connect() as conn:
            result = conn.execute(text("""
                SELECT session_id, game_id, start_time, game_time
                FROM game_sessions
                WHERE session_id = :session_id
            """), {'session_id': session_id})
            row = result.fetchone()
        return _session_from_row(row) if row else None


class SqlPersistentStore:
    """Arm snapshots in the bandit_models table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def load_all_arms(self) -> List[StoredArm]:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT game_id, model_data FROM bandit_models"))
            return [StoredArm(game_id=str(row.game_id), serialized_model=row.model_data) for row in result]

    def save_arm(self, game_id: str, serialized_model: str):
        with self.engine.begin() as conn:
            conn.execute(text("""
                INSERT INTO bandit_models (game_id, model_data, updated_at)
                VALUES (:game_id, :model_data, :updated_at)
                ON CONFLICT (game_id) DO UPDATE SET
                    model_data = excluded.model_data,
                    updated_at = excluded.updated_at
            """), {
                'game_id': game_id,
                'model_data': serialized_model,
                'updated_at': format_timestamp(datetime.now())
            })


class SqlFeedbackSink:
    """Launch feedback rows in the recommendation_feedback table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def record_feedback(self, game_id: str, action: str, timestamp: datetime):
        if action not in get_categories('feedback_action'):
            raise ValueError(f"Unknown feedback action: {action}")

        with self.engine.begin() as conn:
            conn.execute(text("""
                INSERT INTO recommendation_feedback (game_id, action, timestamp)
                VALUES (:game_id, :action, :timestamp)
            """), {'game_id': game_id, 'action': action, 'timestamp': format_timestamp(timestamp)})

    def count_feedback(self, action: Optional[str] = None) -> int:
        with self.engine.connect() as conn:
            if action is None:
                result = conn.execute(text("SELECT COUNT(*) FROM recommendation_feedback"))
            else:
                result = conn.execute(
                    text("SELECT COUNT(*) FROM recommendation_feedback WHERE action = :action"),
                    {'action': action}
                )
            return result.scalar() or 0
