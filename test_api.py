"""
Tests for the FastAPI endpoints, served by an engine over in-memory collaborators.
"""

from datetime import timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import api.main
from api.main import SessionRewardRequest, app, get_config
from config.settings import Settings
from conftest import FIXED_NOW
from models.records import SessionRecord


@pytest.fixture
def engine(make_engine, session_source):
    session_source.sessions.append(SessionRecord("hades", FIXED_NOW - timedelta(hours=3), 65 * 60, "s1"))
    return make_engine()


@pytest.fixture
def client(engine, monkeypatch):
    # Lifespan is not run outside a `with` block, so the global engine is used as is
    monkeypatch.setattr(api.main, "recommendation_engine", engine)
    app.dependency_overrides[get_config] = lambda: Settings(max_recommendations=5,
                                                            default_recommendation_count=2)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_recommendations(client):
    response = client.post("/recommendations", json={"count": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 3
    first = body["recommendations"][0]
    assert set(first) >= {"game_id", "ucb_score", "expected_reward", "uncertainty",
                          "exploration_bonus", "penalty_applied", "has_model_data"}


def test_recommendations_default_count(client):
    response = client.post("/recommendations", json={})

    assert response.status_code == 200
    assert response.json()["count"] == 2


def test_recommendations_count_limit(client):
    response = client.post("/recommendations", json={"count": 6})

    assert response.status_code == 400


def test_recommendations_reject_invalid_request(client):
    assert client.post("/recommendations", json={"count": 0}).status_code == 422
    assert client.post("/recommendations", json={"diversity_factor": 2}).status_code == 422


def test_recommendations_catalog_unavailable(client, catalog):
    catalog.fail = True

    response = client.post("/recommendations", json={"count": 3})

    assert response.status_code == 503


def test_record_launch(client, feedback_sink):
    response = client.post("/recommendations/launch", json={"game_id": "hades"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert feedback_sink.events == [("hades", "launch", FIXED_NOW)]


def test_reward_stored_session(client, engine):
    response = client.post("/sessions/s1/reward")

    assert response.status_code == 200
    assert response.json()["reward"] == pytest.approx(0.5)
    assert engine.get_metrics()["sessions_processed"] == 1


def test_reward_unknown_session(client):
    response = client.post("/sessions/missing/reward")

    assert response.status_code == 404


def test_reward_session_record(client):
    payload = {
        "game_id": "civ6",
        "start_time": (FIXED_NOW - timedelta(hours=4)).isoformat(),
        "duration_seconds": 3 * 3600,
        "session_id": "live-1"
    }

    response = client.post("/sessions/reward", json=payload)

    assert response.status_code == 200
    assert response.json()["reward"] == 1.0
    assert response.json()["session_id"] == "live-1"


def test_session_start_with_utc_offset_is_made_local():
    local_start = FIXED_NOW - timedelta(hours=1)
    request = SessionRewardRequest(game_id="civ6", duration_seconds=60,
                                   start_time=local_start.astimezone(timezone.utc).isoformat())

    assert request.start_time.tzinfo is None
    assert request.start_time == local_start


def test_reward_session_record_with_utc_offset(client, caplog):
    payload = {
        "game_id": "civ6",
        "start_time": (FIXED_NOW - timedelta(hours=1)).astimezone(timezone.utc).isoformat(),
        "duration_seconds": 3600
    }

    response = client.post("/sessions/reward", json=payload)

    assert response.status_code == 200
    assert "Failed to look up previous session" not in caplog.text


def test_reward_session_record_for_unknown_game(client):
    payload = {"game_id": "doom", "start_time": FIXED_NOW.isoformat(), "duration_seconds": 600}

    assert client.post("/sessions/reward", json=payload).status_code == 404


def test_metrics(client):
    client.post("/recommendations", json={"count": 2})

    response = client.get("/metrics")

    assert response.status_code == 200
    metrics = response.json()
    assert metrics["total_recommendations"] == 1
    assert metrics["games_recommended"] == 2
    assert metrics["initialized"] is True
    assert metrics["sessions_trained"] == 1


def test_arm_statistics(client):
    response = client.get("/arms/stats")

    assert response.status_code == 200
    stats = response.json()
    assert stats["arms"]["hades"]["update_count"] == 1
    assert stats["recently_shown"] == []


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
