"""
Recommendation Engine Service

Ranks installed games with a LinUCB contextual bandit:
1. Cold start: arms without any observed reward are scored with a penalty
2. Main strategy: one ridge-regression arm per game over a context of
   time of day, session gap, genres, tags, playtime and recency
   - Learns online from finished play sessions
   - Rotates recently shown games out of the candidate pool
   - Optionally re-ranks for genre/tag diversity with MMR
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from config.config import BanditConfig
from models.context_builder import ContextBuilder
from models.contextual_bandit import ArmScore, ContextualBandit, shape_reward
from models.diversifier import apply_mmr
from models.feature_vocabulary import FeatureVocabulary
from models.records import Game, SessionRecord
from services.interfaces import CatalogProvider, FeedbackSink, PersistentStore, SessionEventSource
from services.persistence import ArmPersistence
from services.trainer import HistoricalTrainer
from utils import safe_divide

logger = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    """Raised when the installed games cannot be listed."""


class RecommendationEngine:
    """
    Game recommendation engine over pluggable collaborators.

    The catalog, session history, arm store and feedback sink are passed in
    as any objects providing the methods of services/interfaces.py. Arms are
    loaded (or trained from history) lazily on first use.
    """

    def __init__(self, catalog: CatalogProvider, session_source: SessionEventSource,
                 store: PersistentStore, feedback_sink: Optional[FeedbackSink] = None,
                 config: Optional[BanditConfig] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or BanditConfig()
        self.catalog = catalog
        self.session_source = session_source
        self.store = store
        self.feedback_sink = feedback_sink
        self.clock = clock

        self.vocabulary = FeatureVocabulary(self.config.max_vocabulary_size)
        self.context_builder = ContextBuilder(self.vocabulary, session_source, self.config.features)

        # Created by initialize() once the first catalog scan fixes the layout
        self.bandit: Optional[ContextualBandit] = None
        self.persistence: Optional[ArmPersistence] = None
        self.trainer: Optional[HistoricalTrainer] = None

        self.recently_shown = set()
        self._rng = np.random.default_rng(self.config.diversity.jitter_seed)
        self._lock = threading.RLock()
        self._initialized = False

        # Performance tracking
        self.metrics = {
            'total_recommendations': 0,
            'games_recommended': 0,
            'cold_start_recommendations': 0,
            'sessions_processed': 0,
            'launches_recorded': 0,
            'catalog_failures': 0,
            'vocabulary_resizes': 0,
            'sessions_trained': 0,
            'avg_response_time': 0.0
        }

        logger.info(f"Recommendation engine created (alpha={self.config.alpha}, "
                    f"reward policy={self.config.reward_policy}, mmr={self.config.diversity.use_mmr})")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _list_games(self) -> List[Game]:
        """Fetch the installed games, mapping provider failures to CatalogUnavailableError."""
        try:
            return list(self.catalog.list_installed_games())
        except Exception as e:
            self.metrics['catalog_failures'] += 1
            logger.error(f"Failed to list installed games: {e}")
            raise CatalogUnavailableError(f"Game catalog unavailable: {e}") from e

    def initialize(self, games: Optional[List[Game]] = None) -> bool:
        """
        Build the vocabulary, restore stored arms and train from history if needed.

        Training replays every session when no arm could be restored, and
        otherwise only the sessions of games whose stored arm was unusable.

        Nothing happens while the catalog is empty, so history is still
        replayed once games are installed.

        Returns:
            True once the engine is ready, False while the catalog is empty
        """
        with self._lock:
            if self._initialized:
                return True

            if games is None:
                games = self._list_games()

            if not games:
                logger.info("No installed games yet, deferring initialisation")
                return False

            self.vocabulary.refresh(games)
            self.bandit = ContextualBandit(self.config, self.vocabulary.snapshot())
            self.persistence = ArmPersistence(self.store, self.bandit)
            self.trainer = HistoricalTrainer(
                self.bandit, self.context_builder, self.session_source,
                self.persistence, self.config.reward_policy
            )

            report = self.persistence.load_all()
            catalog = {game.id: game for game in games}

            if report.loaded == 0:
                logger.info("No stored arms found, training from historical sessions")
                self.metrics['sessions_trained'] += self.trainer.train(catalog)
            elif report.rejected or report.skipped:
                retrain = report.rejected + report.skipped
                logger.info(f"Retraining {len(retrain)} arms that could not be restored")
                self.metrics['sessions_trained'] += self.trainer.train(catalog, game_ids=retrain)

            self._initialized = True
            logger.info(f"Recommendation engine initialised with {len(self.bandit.arms)} arms "
                        f"(dimension {self.bandit.dimension})")
            return True

    def _sync_vocabulary(self, games: List[Game]):
        """Index new genres and tags and move the arms onto the grown layout."""
        if self.vocabulary.refresh(games):
            self.bandit.resize(self.vocabulary.snapshot())
            self.metrics['vocabulary_resizes'] += 1

    def _select_candidates(self, games: List[Game], count: int) -> List[Game]:
        """Games not shown recently, or every game once too few remain."""
        remaining = [game for game in games if game.id not in self.recently_shown]
        if not remaining or len(remaining) < count:
            logger.debug(f"Only {len(remaining)} unshown games left, resetting recently shown set")
            self.recently_shown.clear()
            return list(games)
        return remaining

    def _score_game(self, game: Game, now: datetime, user_features: List[float],
                    alpha: float, diversity_factor: float) -> Dict[str, Any]:
        try:
            context = self.context_builder.build_context(now, game, user_features)
            arm_score = self.bandit.score(game.id, context, alpha)
            has_model_data = self.bandit.has_training_data(game.id)
            buckets = self.context_builder.describe_buckets(game, now)
        except Exception as e:
            logger.error(f"Error scoring game {game.id}: {e}")
            arm_score = ArmScore.zero()
            has_model_data = False
            buckets = {'playtime_bucket': None, 'recency_bucket': None}

        score = arm_score.ucb
        penalty_applied = not has_model_data
        if penalty_applied:
            score *= self.config.cold_start_penalty

        if self.config.diversity.use_score_jitter and diversity_factor > 0:
            score += float(self._rng.uniform(-diversity_factor, diversity_factor))

        return {
            'game_id': game.id,
            'score': score,
            'labels': game.labels,
            'ucb_score': score,
            'expected_reward': arm_score.expected_reward,
            'uncertainty': arm_score.uncertainty,
            'exploration_bonus': alpha * arm_score.uncertainty,
            'penalty_applied': penalty_applied,
            'has_model_data': has_model_data,
            'playtime_bucket': buckets['playtime_bucket'],
            'recency_bucket': buckets['recency_bucket']
        }

    def get_recommendations(self, count: int = 3, diversity_factor: float = 0.05,
                            exploration_alpha: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Rank the installed games and return the top recommendations.

        Args:
            count: Number of games to recommend
            diversity_factor: Amplitude of the optional score jitter
            exploration_alpha: Overrides the configured exploration weight

        Returns:
            List of recommendation dictionaries with their score breakdown

        Raises:
            CatalogUnavailableError: If the installed games cannot be listed
        """
        start_time = datetime.now()

        games = self._list_games()
        if not games or count <= 0:
            return []

        self.initialize(games)

        alpha = exploration_alpha if exploration_alpha is not None else self.config.alpha

        with self._lock:
            self._sync_vocabulary(games)
            candidates = self._select_candidates(games, count)

            now = self.clock()
            user_features = self.context_builder.user_context(now)
            scored = [self._score_game(game, now, user_features, alpha, diversity_factor)
                      for game in candidates]

            # Stable: equal scores keep catalog order
            scored.sort(key=lambda item: item['score'], reverse=True)

            if self.config.diversity.use_mmr:
                scored = apply_mmr(scored, count, self.config.diversity.mmr_lambda)

            recommendations = scored[:count]
            self.recently_shown.update(item['game_id'] for item in recommendations)

        for item in recommendations:
            del item['score']
            del item['labels']

        self.metrics['total_recommendations'] += 1
        self.metrics['games_recommended'] += len(recommendations)
        self.metrics['cold_start_recommendations'] += sum(1 for item in recommendations if item['penalty_applied'])
        self._update_avg_response_time((datetime.now() - start_time).total_seconds())

        logger.info(f"Generated {len(recommendations)} recommendations from {len(candidates)} candidates: "
                    f"{[item['game_id'] for item in recommendations]}")
        return recommendations

    def record_launch(self, game_id: str) -> bool:
        """Record that a recommended game was launched. Never raises."""
        if self.feedback_sink is None:
            logger.debug(f"No feedback sink configured, launch of {game_id} not recorded")
            return False

        try:
            self.feedback_sink.record_feedback(game_id, 'launch', self.clock())
        except Exception as e:
            logger.error(f"Error recording launch of {game_id}: {e}")
            return False

        self.metrics['launches_recorded'] += 1
        logger.info(f"Recorded launch: game={game_id}")
        return True

    def update_from_session(self, session: Union[str, SessionRecord]) -> Optional[float]:
        """
        Learn from a finished play session.

        The context is built at the session's start time with the game's
        current catalog attributes, and the updated arm is saved.

        Args:
            session: Session id to look up, or the session record itself

        Returns:
            The reward applied, or None if the session or its game is unknown
        """
        if isinstance(session, SessionRecord):
            record = session
        else:
            try:
                record = self.session_source.get_session(session)
            except Exception as e:
                logger.error(f"Failed to look up session {session}: {e}")
                return None

        if record is None:
            logger.warning(f"Session not found: {session}")
            return None

        games = self._list_games()
        self.initialize(games)

        game = next((candidate for candidate in games if candidate.id == record.game_id), None)
        if game is None:
            logger.warning(f"Session {record.session_id} belongs to unknown game {record.game_id}")
            return None

        reward = shape_reward(record.duration_seconds, self.config.reward_policy)

        with self._lock:
            self._sync_vocabulary(games)
            context = self.context_builder.build_context(record.start_time, game)
            self.bandit.update(game.id, context, reward)

        self.persistence.save(game.id)
        self.metrics['sessions_processed'] += 1

        logger.info(f"Updated arm {game.id} from session {record.session_id}: "
                    f"{record.duration_minutes:.1f} min, reward {reward:.3f}")
        return reward

    def get_arm_statistics(self) -> Dict[str, Any]:
        """Get statistics about all arms, initialising the engine if needed."""
        if not self.initialize():
            return {
                'dimension': self.vocabulary.dimension,
                'genres': len(self.vocabulary.genres),
                'tags': len(self.vocabulary.tags),
                'total_arms': 0,
                'trained_arms': 0,
                'arms': {},
                'recently_shown': []
            }

        stats = self.bandit.get_arm_statistics()
        stats['recently_shown'] = sorted(self.recently_shown)
        return stats

    def _update_avg_response_time(self, response_time: float):
        """Update average response time metric."""
        total_recs = self.metrics['total_recommendations']
        current_avg = self.metrics['avg_response_time']
        self.metrics['avg_response_time'] = (current_avg * (total_recs - 1) + response_time) / total_recs

    def get_metrics(self) -> Dict[str, Any]:
        """Get performance metrics."""
        metrics = self.metrics.copy()
        metrics['cold_start_rate'] = safe_divide(metrics['cold_start_recommendations'],
                                                 metrics['games_recommended'])
        metrics['total_arms'] = len(self.bandit.arms) if self.bandit else 0
        metrics['context_dimension'] = self.vocabulary.dimension
        metrics['initialized'] = self._initialized
        return metrics
