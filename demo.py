"""
Demo script for the Game Recommendation Engine

Simulates a player working through a small library: the engine recommends
games, the player launches one, plays for a while, and the finished session
is fed back as a reward. A second engine on the same database then shows
that the learned arms survive a restart.
"""

import os
import random
import tempfile
from datetime import datetime, timedelta
from typing import Dict, List

import numpy as np

from config.config import BanditConfig, DatabaseConfig
from models.records import Game, SessionRecord
from services.recommendation_engine import RecommendationEngine
from services.sql_store import (
    SqlCatalogProvider, SqlFeedbackSink, SqlPersistentStore, SqlSessionEventSource,
    build_engine, create_tables, insert_game, insert_session
)

PREFERRED_LABELS = {"roguelike", "Strategy"}


def create_sample_games() -> List[Game]:
    """Create a sample library for demonstration."""
    return [
        Game("hades", "Hades", ["Action", "Indie"], ["roguelike"], playtime_minutes=600),
        Game("stardew", "Stardew Valley", ["Simulation", "RPG"], ["cozy"], playtime_minutes=3000),
        Game("celeste", "Celeste", ["Action", "Indie"], ["platformer"]),
        Game("civ6", "Civilization VI", ["Strategy"], ["turn-based"], playtime_minutes=7200),
        Game("witcher3", "The Witcher 3", ["RPG", "Action"], ["open-world"]),
        Game("factorio", "Factorio", ["Simulation", "Strategy"], ["automation"]),
        Game("portal2", "Portal 2", ["Puzzle"], ["co-op"]),
        Game("slaythespire", "Slay the Spire", ["Strategy", "Indie"], ["roguelike"]),
    ]


def build_recommender(db_engine, config: BanditConfig, clock) -> RecommendationEngine:
    return RecommendationEngine(
        catalog=SqlCatalogProvider(db_engine),
        session_source=SqlSessionEventSource(db_engine),
        store=SqlPersistentStore(db_engine),
        feedback_sink=SqlFeedbackSink(db_engine),
        config=config,
        clock=clock
    )


def simulate_play_minutes(game: Game) -> float:
    """Preferred games are played for long sessions, others are quit early."""
    if game.labels & PREFERRED_LABELS:
        return random.uniform(60, 180)
    return random.uniform(2, 25)


def demonstrate_learning_progression(recommender: RecommendationEngine, db_engine,
                                     games: Dict[str, Game], clock: Dict[str, datetime], rounds: int = 15):
    """Demonstrate how recommendations shift as sessions are learned from."""
    print("\n" + "=" * 60)
    print("DEMONSTRATING LEARNING PROGRESSION")
    print("=" * 60)

    results = []
    for round_num in range(1, rounds + 1):
        recommendations = recommender.get_recommendations(count=3)

        preferred = sum(1 for rec in recommendations if games[rec['game_id']].labels & PREFERRED_LABELS)
        print(f"\n--- Round {round_num} ---")
        for i, rec in enumerate(recommendations, 1):
            game = games[rec['game_id']]
            print(f"  {i}. {game.name:<28} ucb={rec['ucb_score']:.3f} "
                  f"expected={rec['expected_reward']:.3f} "
                  f"{'(cold start)' if rec['penalty_applied'] else ''}")

        # The player launches the first recommendation they like, else the top one
        choice = next((rec for rec in recommendations if games[rec['game_id']].labels & PREFERRED_LABELS),
                      recommendations[0])
        game = games[choice['game_id']]
        recommender.record_launch(game.id)

        minutes = simulate_play_minutes(game)
        session = SessionRecord(
            game_id=game.id,
            start_time=clock['now'],
            duration_seconds=minutes * 60,
            session_id=f"demo-{round_num:03d}"
        )
        insert_session(db_engine, session)
        reward = recommender.update_from_session(session.session_id)
        print(f"    -> Played {game.name} for {minutes:.0f} min, reward {reward:.3f}")

        results.append({
            'round': round_num,
            'preferred_share': preferred / len(recommendations),
            'avg_ucb': np.mean([rec['ucb_score'] for rec in recommendations])
        })

        # Next decision happens a few hours later
        clock['now'] += timedelta(hours=random.uniform(3, 30))

    print("\n--- Learning Progression Summary ---")
    for result in results:
        print(f"Round {result['round']:>2}: preferred share={result['preferred_share']:.2f}, "
              f"avg ucb={result['avg_ucb']:.3f}")


def main():
    """Main demo function."""
    print("Game Recommendation Engine - Contextual Bandit Demo")
    print("=" * 60)

    random.seed(7)

    with tempfile.TemporaryDirectory() as workdir:
        db_engine = build_engine(DatabaseConfig(url=f"sqlite:///{os.path.join(workdir, 'demo.db')}"))
        create_tables(db_engine)

        games = {game.id: game for game in create_sample_games()}
        for game in games.values():
            insert_game(db_engine, game, path=f"/games/{game.id}")
        print(f"Installed {len(games)} sample games")

        clock = {'now': datetime(2024, 3, 1, 19, 0)}
        config = BanditConfig(alpha=0.5)
        recommender = build_recommender(db_engine, config, lambda: clock['now'])

        demonstrate_learning_progression(recommender, db_engine, games, clock)

        print("\n" + "=" * 60)
        print("MODEL STATISTICS")
        print("=" * 60)

        stats = recommender.get_arm_statistics()
        print(f"Context dimension: {stats['dimension']} ({stats['genres']} genres, {stats['tags']} tags)")
        print(f"Arms: {stats['total_arms']} total, {stats['trained_arms']} trained")
        sorted_arms = sorted(stats['arms'].items(), key=lambda item: item[1]['update_count'], reverse=True)
        for game_id, arm in sorted_arms:
            print(f"  {games[game_id].name:<28} updates={arm['update_count']:>2} theta_norm={arm['theta_norm']:.3f}")

        print(f"\nMetrics: {recommender.get_metrics()}")

        # Restart: a fresh engine restores the arms from the database
        print("\n" + "=" * 60)
        print("RESTORING FROM STORAGE")
        print("=" * 60)
        restored = build_recommender(db_engine, config, lambda: clock['now'])
        restored.initialize()
        print(f"Restored {len(restored.bandit.arms)} arms, "
              f"{restored.get_metrics()['sessions_trained']} sessions replayed")
        for rec in restored.get_recommendations(count=3):
            print(f"  {games[rec['game_id']].name:<28} ucb={rec['ucb_score']:.3f}")

        db_engine.dispose()

    print("\n" + "=" * 60)
    print("DEMO COMPLETED SUCCESSFULLY!")
    print("=" * 60)


if __name__ == "__main__":
    main()
