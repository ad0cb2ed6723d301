"""
Database Setup Script for the Game Recommendation Engine

Creates the tables used by the recommender:
- Games (the launcher's catalog)
- Game sessions
- Bandit arm snapshots
- Recommendation feedback

and optionally fills them with a small sample library and play history.
"""

import argparse
import logging
import random
from datetime import datetime, timedelta

from config.settings import get_settings, update_settings
from models.records import Game, SessionRecord
from services.sql_store import build_engine, create_tables, insert_game, insert_session

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_GAMES = [
    ("hades", "Hades", ["Action", "Indie", "RPG"], ["roguelike", "playing"]),
    ("stardew", "Stardew Valley", ["Indie", "Simulation", "RPG"], ["cozy", "backlog"]),
    ("celeste", "Celeste", ["Action", "Indie"], ["platformer", "complete"]),
    ("civ6", "Sid Meier's Civilization VI", ["Strategy"], ["turn-based", "playing"]),
    ("witcher3", "The Witcher 3", ["RPG", "Action"], ["open-world", "abandon"]),
    ("factorio", "Factorio", ["Simulation", "Strategy"], ["automation", "playing"]),
    ("portal2", "Portal 2", ["Action", "Puzzle"], ["co-op", "complete"]),
    ("slaythespire", "Slay the Spire", ["Strategy", "Indie"], ["roguelike", "deckbuilder"]),
]


def insert_sample_data(engine, sessions_per_game: int = 6, seed: int = 42):
    """Insert sample games and a play history for testing."""
    rng = random.Random(seed)
    now = datetime.now()

    session_count = 0
    for game_id, name, genres, tags in SAMPLE_GAMES:
        total_minutes = 0
        last_start = None

        for i in range(rng.randint(0, sessions_per_game)):
            start_time = now - timedelta(days=rng.uniform(1, 120), hours=rng.uniform(0, 23))
            duration_seconds = rng.choice([120, 900, 2400, 4500, 9000])
            insert_session(engine, SessionRecord(
                game_id=game_id,
                start_time=start_time,
                duration_seconds=duration_seconds,
                session_id=f"{game_id}-{i:03d}"
            ))
            total_minutes += duration_seconds // 60
            last_start = max(last_start or start_time, start_time)
            session_count += 1

        insert_game(engine, Game(
            id=game_id,
            name=name,
            genres=genres,
            tags=tags,
            playtime_minutes=total_minutes,
            last_played=last_start.timestamp() if last_start else None
        ), path=f"/games/{game_id}")

    logger.info(f"Sample data inserted: {len(SAMPLE_GAMES)} games, {session_count} sessions")


def main():
    """Main setup function."""
    parser = argparse.ArgumentParser(description="Create the recommender database tables")
    parser.add_argument("--database-url", help="SQLAlchemy URL, defaults to DATABASE_URL from settings")
    parser.add_argument("--sample-data", action="store_true", help="Insert a sample library and play history")
    args = parser.parse_args()

    settings = update_settings(database_url=args.database_url) if args.database_url else get_settings()

    print("Game Recommendation Engine - Database Setup")
    print("=" * 50)

    try:
        engine = build_engine(settings.to_database_config())

        print("Creating tables...")
        create_tables(engine)

        if args.sample_data:
            print("Inserting sample data...")
            insert_sample_data(engine)

        print("\nDatabase setup completed successfully!")
        print(f"Database URL: {settings.database_url}")

    except Exception as e:
        print(f"Database setup failed: {e}")
        raise


if __name__ == "__main__":
    main()
