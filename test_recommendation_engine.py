"""
Tests for the recommendation engine: ranking, rotation, training and online updates.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from config.config import BanditConfig, DiversityConfig
from conftest import FIXED_NOW, FakeCatalog, FakeSessionSource, MemoryStore
from models.records import Game, SessionRecord
from services.recommendation_engine import CatalogUnavailableError

BREAKDOWN_KEYS = {
    'game_id', 'ucb_score', 'expected_reward', 'uncertainty', 'exploration_bonus',
    'penalty_applied', 'has_model_data', 'playtime_bucket', 'recency_bucket'
}


def civ6_history(count=10):
    """Long evening sessions of Civilization VI over the past weeks."""
    return [
        SessionRecord("civ6", FIXED_NOW - timedelta(days=2 * i + 1, hours=-9), 3 * 3600, f"civ-{i}")
        for i in range(count)
    ]


def test_empty_catalog_returns_nothing(make_engine):
    engine = make_engine(catalog=FakeCatalog([]))

    assert engine.get_recommendations() == []


def test_history_is_replayed_once_games_are_installed(make_engine, session_source, store, sample_games):
    session_source.sessions = civ6_history(5)
    catalog = FakeCatalog([])
    engine = make_engine(catalog=catalog)

    assert engine.get_recommendations() == []
    assert not engine.initialize()
    assert engine.get_arm_statistics()["total_arms"] == 0
    assert engine.update_from_session("civ-0") is None
    assert not engine.is_initialized

    catalog.games = list(sample_games)
    recommendations = engine.get_recommendations(count=4)

    civ6 = next(rec for rec in recommendations if rec["game_id"] == "civ6")
    assert civ6["has_model_data"]
    assert not civ6["penalty_applied"]
    assert engine.get_metrics()["sessions_trained"] == 5
    assert set(store.blobs) == {"civ6"}


def test_unreachable_catalog_is_distinguishable(make_engine, catalog):
    catalog.fail = True
    engine = make_engine()

    with pytest.raises(CatalogUnavailableError):
        engine.get_recommendations()

    assert engine.get_metrics()['catalog_failures'] == 1
    assert not engine.is_initialized


def test_breakdown_and_cold_start_penalty(make_engine):
    engine = make_engine(BanditConfig(alpha=0.5, cold_start_penalty=0.3))

    recommendations = engine.get_recommendations(count=3)

    assert len(recommendations) == 3
    for rec in recommendations:
        assert set(rec) == BREAKDOWN_KEYS
        assert rec['penalty_applied'] and not rec['has_model_data']
        assert rec['expected_reward'] == 0.0
        assert rec['exploration_bonus'] == pytest.approx(0.5 * rec['uncertainty'])
        assert rec['ucb_score'] == pytest.approx(0.3 * rec['exploration_bonus'])


def test_results_sorted_by_score(make_engine):
    recommendations = make_engine().get_recommendations(count=4)
    scores = [rec['ucb_score'] for rec in recommendations]

    assert scores == sorted(scores, reverse=True)


def test_bucket_labels_in_breakdown(make_engine):
    recommendations = make_engine().get_recommendations(count=4)
    by_id = {rec['game_id']: rec for rec in recommendations}

    assert by_id['hades']['playtime_bucket'] == '5-20h (light)'
    assert by_id['hades']['recency_bucket'] == '0-3d (very recent)'
    assert by_id['celeste']['recency_bucket'] == '181+d (very old/never)'


def test_catalog_of_exactly_count_games_is_always_returned(make_engine):
    games = [
        Game("hades", genres=["Action"]),
        Game("civ6", genres=["Strategy"]),
        Game("celeste", genres=["Action"], tags=["platformer"]),
    ]
    engine = make_engine(catalog=FakeCatalog(games))

    for _ in range(5):
        recommendations = engine.get_recommendations(count=3)
        assert {rec['game_id'] for rec in recommendations} == {"hades", "civ6", "celeste"}


def test_recently_shown_games_rotate_out(make_engine):
    engine = make_engine()

    first = {rec['game_id'] for rec in engine.get_recommendations(count=2)}
    second = {rec['game_id'] for rec in engine.get_recommendations(count=2)}
    third = engine.get_recommendations(count=2)

    assert first.isdisjoint(second)
    assert first | second == {"hades", "civ6", "celeste", "portal2"}
    # Nothing left unshown, so the full catalog is eligible again
    assert len(third) == 2
    assert engine.recently_shown == {rec['game_id'] for rec in third}


def test_equal_scores_keep_catalog_order(make_engine):
    twins = [Game("zeta", genres=["Puzzle"]), Game("alpha", genres=["Puzzle"]), Game("mid", genres=["Puzzle"])]
    engine = make_engine(catalog=FakeCatalog(twins))

    recommendations = engine.get_recommendations(count=3)

    assert [rec['game_id'] for rec in recommendations] == ["zeta", "alpha", "mid"]


def test_trains_from_history_when_store_is_empty(make_engine, session_source, store):
    session_source.sessions = civ6_history() + [
        SessionRecord("hades", FIXED_NOW - timedelta(days=3), 0, "zero"),
        SessionRecord("hades", FIXED_NOW - timedelta(days=4), None, "open"),
        SessionRecord("uninstalled", FIXED_NOW - timedelta(days=5), 7200, "gone"),
    ]
    engine = make_engine()

    engine.initialize()

    assert engine.get_metrics()['sessions_trained'] == 10
    assert set(store.blobs) == {"civ6"}
    assert store.save_calls == 1
    assert engine.bandit.arms["civ6"].update_count == 10
    assert not engine.bandit.has_arm("uninstalled")


def test_trained_game_ranks_first(make_engine, session_source):
    session_source.sessions = civ6_history()
    engine = make_engine()

    recommendations = engine.get_recommendations(count=3)

    assert recommendations[0]['game_id'] == "civ6"
    assert recommendations[0]['has_model_data']
    assert not recommendations[0]['penalty_applied']
    assert recommendations[0]['expected_reward'] > 0.5


def test_restored_arms_skip_training(make_engine, session_source, store):
    session_source.sessions = civ6_history()
    make_engine().initialize()
    saved_blob = store.blobs["civ6"]

    restarted = make_engine()
    restarted.initialize()

    assert restarted.get_metrics()['sessions_trained'] == 0
    assert restarted.bandit.arms["civ6"].update_count == 10
    assert store.blobs["civ6"] == saved_blob


def test_rejected_arms_are_retrained(make_engine, session_source, store):
    session_source.sessions = civ6_history(4) + [
        SessionRecord("hades", FIXED_NOW - timedelta(days=1), 5400, "hades-1")
    ]
    make_engine().initialize()

    # Pretend the civ6 arm was recorded while a since-removed genre existed
    blob = json.loads(store.blobs["civ6"])
    blob["genres"] = blob["genres"] + ["Removed"]
    blob["dimension"] += 1
    d = blob["dimension"]
    blob["A"] = [row + [0.0] for row in blob["A"]] + [[0.0] * (d - 1) + [1.0]]
    blob["b"] = blob["b"] + [0.0]
    store.blobs["civ6"] = json.dumps(blob)

    restarted = make_engine()
    restarted.initialize()

    assert restarted.get_metrics()['sessions_trained'] == 4
    assert restarted.bandit.arms["civ6"].update_count == 4
    assert restarted.bandit.arms["hades"].update_count == 1


def test_new_genres_resize_arms(make_engine, catalog, session_source):
    session_source.sessions = civ6_history()
    engine = make_engine()
    engine.get_recommendations()
    dimension = engine.bandit.dimension

    catalog.games.append(Game("aoe2", genres=["RTS"], tags=["classic"]))
    engine.get_recommendations()

    assert engine.bandit.dimension == dimension + 2
    assert engine.get_metrics()['vocabulary_resizes'] == 1
    assert engine.bandit.has_training_data("civ6")
    assert engine.bandit.arms["hades"].A.shape == (dimension + 2, dimension + 2)


def test_update_from_session_id(make_engine, session_source, store):
    session_source.sessions = [SessionRecord("hades", FIXED_NOW - timedelta(hours=2), 65 * 60, "live-1")]
    engine = make_engine()
    engine.initialize()
    store.blobs.clear()

    reward = engine.update_from_session("live-1")

    assert reward == pytest.approx(0.5)
    assert engine.bandit.has_training_data("hades")
    assert "hades" in store.blobs
    assert engine.get_metrics()['sessions_processed'] == 1


def test_update_uses_configured_reward_policy(make_engine):
    engine = make_engine(BanditConfig(reward_policy="stepped"))
    session = SessionRecord("civ6", FIXED_NOW - timedelta(hours=1), 45 * 60, "s")

    assert engine.update_from_session(session) == 0.6


def test_update_from_unknown_session_or_game(make_engine):
    engine = make_engine()

    assert engine.update_from_session("missing") is None
    assert engine.update_from_session(SessionRecord("uninstalled", FIXED_NOW, 3600, "x")) is None


def test_short_live_session_gives_zero_reward(make_engine):
    engine = make_engine()

    reward = engine.update_from_session(SessionRecord("hades", FIXED_NOW, 5 * 60, "quick"))

    assert reward == 0.0
    assert engine.bandit.arms["hades"].update_count == 1
    assert not engine.bandit.has_training_data("hades")


def test_record_launch(make_engine, feedback_sink):
    engine = make_engine()

    assert engine.record_launch("hades")
    assert feedback_sink.events == [("hades", "launch", FIXED_NOW)]
    assert engine.get_metrics()['launches_recorded'] == 1


def test_record_launch_never_raises(make_engine, feedback_sink, caplog):
    feedback_sink.fail = True
    engine = make_engine()

    assert not engine.record_launch("hades")
    assert "Error recording launch" in caplog.text

    assert not make_engine(feedback_sink=None).record_launch("hades")


def test_scoring_failure_only_affects_one_game(make_engine, monkeypatch):
    engine = make_engine()
    engine.initialize()
    original = engine.context_builder.describe_buckets

    def flaky(game, timestamp):
        if game.id == "civ6":
            raise ValueError("bad playtime")
        return original(game, timestamp)

    monkeypatch.setattr(engine.context_builder, "describe_buckets", flaky)

    recommendations = engine.get_recommendations(count=4)
    by_id = {rec['game_id']: rec for rec in recommendations}

    assert len(recommendations) == 4
    assert by_id["civ6"]['ucb_score'] == 0.0
    assert by_id["civ6"]['playtime_bucket'] is None
    assert recommendations[-1]['game_id'] == "civ6"


def test_mmr_stage_can_be_enabled(make_engine):
    games = [
        Game("hades", genres=["Action"], tags=["roguelike"], playtime_minutes=6000),
        Game("dead-cells", genres=["Action"], tags=["roguelike"], playtime_minutes=6000),
        Game("civ6", genres=["Strategy"]),
    ]
    config = BanditConfig(diversity=DiversityConfig(use_mmr=True, mmr_lambda=0.5))
    engine = make_engine(config, catalog=FakeCatalog(games))

    recommendations = engine.get_recommendations(count=2)

    assert [rec['game_id'] for rec in recommendations] == ["hades", "civ6"]


def test_jitter_is_off_by_default(make_engine):
    first = make_engine().get_recommendations(count=4, diversity_factor=0.5)
    second = make_engine().get_recommendations(count=4, diversity_factor=0.5)

    assert first == second


def test_seeded_jitter_is_reproducible(make_engine):
    config = BanditConfig(diversity=DiversityConfig(use_score_jitter=True, jitter_seed=13))
    plain = make_engine().get_recommendations(count=4)
    first = make_engine(config).get_recommendations(count=4, diversity_factor=0.2)
    second = make_engine(BanditConfig(diversity=DiversityConfig(use_score_jitter=True, jitter_seed=13))) \
        .get_recommendations(count=4, diversity_factor=0.2)

    assert first == second
    assert [rec['ucb_score'] for rec in first] != [rec['ucb_score'] for rec in plain]


def test_exploration_alpha_override(make_engine):
    engine = make_engine()
    recommendations = engine.get_recommendations(count=1, exploration_alpha=2.0)

    rec = recommendations[0]
    assert rec['exploration_bonus'] == pytest.approx(2.0 * rec['uncertainty'])


def test_metrics(make_engine):
    engine = make_engine()
    engine.get_recommendations(count=2)
    engine.get_recommendations(count=2)

    metrics = engine.get_metrics()

    assert metrics['total_recommendations'] == 2
    assert metrics['games_recommended'] == 4
    assert metrics['cold_start_rate'] == 1.0
    assert metrics['total_arms'] == 4
    assert metrics['initialized']


def test_arm_statistics_include_recently_shown(make_engine):
    engine = make_engine()
    shown = {rec['game_id'] for rec in engine.get_recommendations(count=2)}

    stats = engine.get_arm_statistics()

    assert set(stats['recently_shown']) == shown
    assert stats['total_arms'] == 4


def test_concurrent_requests_and_updates(make_engine, session_source):
    session_source.sessions = civ6_history(3)
    engine = make_engine()
    engine.initialize()

    def work(i):
        if i % 2:
            return engine.update_from_session(SessionRecord("hades", FIXED_NOW, 90 * 60, f"c{i}"))
        return engine.get_recommendations(count=2)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(work, range(24)))

    assert all(result is not None for result in results)
    assert engine.bandit.arms["hades"].update_count == 12


def test_engine_works_without_prior_history(make_engine):
    engine = make_engine(session_source=FakeSessionSource(), store=MemoryStore())

    assert len(engine.get_recommendations(count=3)) == 3
