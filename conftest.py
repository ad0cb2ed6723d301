"""
Shared fixtures for the recommendation engine tests.

In-memory collaborators stand in for the launcher database so engine tests
control the catalog, the session history and the arm store directly.
"""

from datetime import datetime
from typing import Dict, List, Optional

import pytest

from config.config import BanditConfig, DatabaseConfig
from models.records import Game, SessionRecord, StoredArm
from services.recommendation_engine import RecommendationEngine
from services.sql_store import build_engine, create_tables

# Wednesday morning
FIXED_NOW = datetime(2024, 3, 6, 10, 0, 0)


class FakeCatalog:
    def __init__(self, games: List[Game]):
        self.games = list(games)
        self.fail = False
        self.calls = 0

    def list_installed_games(self) -> List[Game]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("catalog offline")
        return list(self.games)


class FakeSessionSource:
    def __init__(self, sessions: Optional[List[SessionRecord]] = None):
        self.sessions = list(sessions or [])
        self.fail = False

    def most_recent_session_start(self, before: datetime) -> Optional[datetime]:
        if self.fail:
            raise ConnectionError("history offline")
        starts = [s.start_time for s in self.sessions if s.start_time < before]
        return max(starts) if starts else None

    def replay_historical_sessions(self):
        return sorted(self.sessions, key=lambda s: s.start_time)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return next((s for s in self.sessions if s.session_id == session_id), None)


class MemoryStore:
    def __init__(self):
        self.blobs: Dict[str, str] = {}
        self.fail_on_save = False
        self.save_calls = 0

    def load_all_arms(self) -> List[StoredArm]:
        return [StoredArm(game_id, blob) for game_id, blob in self.blobs.items()]

    def save_arm(self, game_id: str, serialized_model: str):
        self.save_calls += 1
        if self.fail_on_save:
            raise IOError("disk full")
        self.blobs[game_id] = serialized_model


class MemoryFeedbackSink:
    def __init__(self):
        self.events = []
        self.fail = False

    def record_feedback(self, game_id: str, action: str, timestamp: datetime):
        if self.fail:
            raise IOError("feedback table locked")
        self.events.append((game_id, action, timestamp))


@pytest.fixture
def sample_games() -> List[Game]:
    return [
        Game("hades", "Hades", ["Action", "Indie"], ["roguelike"], playtime_minutes=600,
             last_played=datetime(2024, 3, 5, 20, 0).timestamp()),
        Game("civ6", "Civilization VI", ["Strategy"], ["turn-based"], playtime_minutes=7200),
        Game("celeste", "Celeste", ["Action", "Indie"], ["platformer"]),
        Game("portal2", "Portal 2", ["Puzzle"], []),
    ]


@pytest.fixture
def catalog(sample_games) -> FakeCatalog:
    return FakeCatalog(sample_games)


@pytest.fixture
def session_source() -> FakeSessionSource:
    return FakeSessionSource()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def feedback_sink() -> MemoryFeedbackSink:
    return MemoryFeedbackSink()


@pytest.fixture
def make_engine(catalog, session_source, store, feedback_sink):
    """Factory for engines over the in-memory collaborators."""
    def _make(config: Optional[BanditConfig] = None, **overrides) -> RecommendationEngine:
        return RecommendationEngine(
            catalog=overrides.get('catalog', catalog),
            session_source=overrides.get('session_source', session_source),
            store=overrides.get('store', store),
            feedback_sink=overrides.get('feedback_sink', feedback_sink),
            config=config or BanditConfig(),
            clock=overrides.get('clock', lambda: FIXED_NOW)
        )
    return _make


@pytest.fixture
def db_engine(tmp_path):
    """SQLite database with the recommender tables."""
    engine = build_engine(DatabaseConfig(url=f"sqlite:///{tmp_path / 'launcher.db'}"))
    create_tables(engine)
    yield engine
    engine.dispose()
