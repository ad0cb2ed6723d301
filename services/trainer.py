"""
Historical Trainer

Replays finished play sessions through the bandit so arms start from the
launcher's existing history instead of from the prior.
"""

import logging
from typing import Dict, Iterable, Optional

import pandas as pd

from models.context_builder import ContextBuilder
from models.contextual_bandit import ContextualBandit, shape_reward
from models.records import Game

logger = logging.getLogger(__name__)

SESSION_COLUMNS = ['session_id', 'game_id', 'start_time', 'duration_seconds']


def sessions_to_frame(sessions: Iterable) -> pd.DataFrame:
    """
    Tabulate session records for replay.

    Sessions without a positive duration are dropped and the rest are
    ordered by start time, keeping source order for equal start times.
    """
    frame = pd.DataFrame(
        [{
            'session_id': session.session_id,
            'game_id': session.game_id,
            'start_time': session.start_time,
            'duration_seconds': session.duration_seconds
        } for session in sessions],
        columns=SESSION_COLUMNS
    )

    if frame.empty:
        return frame

    frame['duration_seconds'] = pd.to_numeric(frame['duration_seconds'], errors='coerce')
    frame = frame[frame['duration_seconds'].notna() & (frame['duration_seconds'] > 0)]
    frame = frame[frame['start_time'].notna()]
    return frame.sort_values('start_time', kind='mergesort').reset_index(drop=True)


class HistoricalTrainer:
    """Trains arms from the session history of the launcher."""

    def __init__(self, bandit: ContextualBandit, context_builder: ContextBuilder,
                 session_source, persistence, reward_policy: str = 'ramp'):
        self.bandit = bandit
        self.context_builder = context_builder
        self.session_source = session_source
        self.persistence = persistence
        self.reward_policy = reward_policy

    def train(self, games: Dict[str, Game], game_ids: Optional[Iterable[str]] = None) -> int:
        """
        Replay historical sessions in chronological order.

        Args:
            games: Current catalog keyed by game id; sessions of other games are skipped
            game_ids: Restrict replay to these games, all games when None

        Returns:
            Number of sessions applied
        """
        try:
            frame = sessions_to_frame(self.session_source.replay_historical_sessions())
        except Exception as e:
            logger.error(f"Failed to read session history: {e}")
            return 0

        if game_ids is not None:
            frame = frame[frame['game_id'].isin(set(game_ids))]

        frame = frame[frame['game_id'].isin(set(games))]
        if frame.empty:
            logger.info("No historical sessions to train on")
            return 0

        logger.info(f"Training bandit on {len(frame)} historical sessions")

        applied = 0
        touched = set()
        for row in frame.itertuples(index=False):
            try:
                start_time = row.start_time.to_pydatetime() if isinstance(row.start_time, pd.Timestamp) \
                    else row.start_time
                context = self.context_builder.build_context(start_time, games[row.game_id])
                reward = shape_reward(row.duration_seconds, self.reward_policy)
                self.bandit.update(row.game_id, context, reward)
            except Exception as e:
                logger.error(f"Error training on session {row.session_id}: {e}")
                continue

            applied += 1
            touched.add(row.game_id)

        saved = self.persistence.save_many(sorted(touched))
        logger.info(f"Training complete: {applied} sessions applied, {saved}/{len(touched)} arms saved")
        return applied
