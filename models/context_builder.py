"""
Context Builder

Turns a moment in time and a candidate game into the fixed-length feature
vector scored by the arm model:

    [weekend, morning, afternoon, night, hours_since_last_session,
     genre indicators..., tag indicators...,
     playtime buckets (5), recency buckets (5)]
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from categories import (
    PLAYTIME_BUCKET_LABELS, RECENCY_BUCKET_LABELS,
    get_playtime_bucket, get_recency_bucket, get_time_of_day
)
from config.config import FeatureConfig
from models.feature_vocabulary import FeatureVocabulary
from models.records import Game
from utils import (
    create_feature_vector, days_since_epoch_seconds, encode_categorical_feature,
    hours_between, normalise_numeric_feature
)

logger = logging.getLogger(__name__)


class ContextBuilder:
    """Builds context vectors against the current feature vocabulary."""

    def __init__(self, vocabulary: FeatureVocabulary, session_source,
                 config: Optional[FeatureConfig] = None):
        self.vocabulary = vocabulary
        self.session_source = session_source
        self.config = config or FeatureConfig()

    def hours_since_last_session(self, timestamp: datetime) -> float:
        """Hours between the latest session start before timestamp and timestamp."""
        try:
            last_start = self.session_source.most_recent_session_start(before=timestamp)
            if last_start is None:
                return self.config.default_hours_since_session
            return hours_between(timestamp, last_start)
        except Exception as e:
            logger.error(f"Failed to look up previous session before {timestamp}: {e}")
            return self.config.default_hours_since_session

    def user_context(self, timestamp: datetime) -> List[float]:
        """The five user features shared by every candidate at this time."""
        is_weekend = 1.0 if timestamp.weekday() >= 5 else 0.0
        time_of_day = encode_categorical_feature(get_time_of_day(timestamp.hour), 'time_of_day')

        hours = self.hours_since_last_session(timestamp)
        normalized_hours = normalise_numeric_feature(hours, 0.0, self.config.hours_since_normalization)

        return [is_weekend] + time_of_day + [normalized_hours]

    def game_context(self, timestamp: datetime, game: Optional[Game]) -> Dict[str, List[float]]:
        """Genre, tag and bucket indicators for one game, all zero for None."""
        genre_features = [0.0] * len(self.vocabulary.genres)
        tag_features = [0.0] * len(self.vocabulary.tags)

        if game is None:
            return {
                'genres': genre_features,
                'tags': tag_features,
                'playtime': [0.0] * 5,
                'recency': [0.0] * 5,
            }

        for genre in game.genres:
            index = self.vocabulary.genre_index(genre)
            if index is not None and index < len(genre_features):
                genre_features[index] = 1.0

        for tag in game.tags:
            index = self.vocabulary.tag_index(tag)
            if index is not None and index < len(tag_features):
                tag_features[index] = 1.0

        return {
            'genres': genre_features,
            'tags': tag_features,
            'playtime': encode_categorical_feature(self.playtime_bucket(game), 'playtime_bucket'),
            'recency': encode_categorical_feature(self.recency_bucket(game, timestamp), 'recency_bucket'),
        }

    def build_context(self, timestamp: datetime, game: Optional[Game] = None,
                      user_features: Optional[List[float]] = None) -> np.ndarray:
        """
        Build the context vector for a game at a point in time.

        Args:
            timestamp: Moment the decision is (or was) made
            game: Candidate game, or None to leave every game slot at zero
            user_features: Precomputed user_context(timestamp), shared across candidates

        Returns:
            Vector whose length equals the vocabulary's context dimension
        """
        segments = self.game_context(timestamp, game)
        segments['user'] = user_features if user_features is not None else self.user_context(timestamp)
        return create_feature_vector(segments, ['user', 'genres', 'tags', 'playtime', 'recency'])

    def playtime_hours(self, game: Game) -> float:
        return (game.playtime_minutes or 0.0) / 60.0

    def days_since_last_play(self, game: Game, timestamp: datetime) -> float:
        return days_since_epoch_seconds(timestamp, game.last_played, self.config.missing_recency_days)

    def playtime_bucket(self, game: Game) -> str:
        return get_playtime_bucket(self.playtime_hours(game), self.config.playtime_thresholds_hours)

    def recency_bucket(self, game: Game, timestamp: datetime) -> str:
        return get_recency_bucket(self.days_since_last_play(game, timestamp),
                                  self.config.recency_thresholds_days)

    def describe_buckets(self, game: Game, timestamp: datetime) -> Dict[str, object]:
        """Readable bucket assignment of a game, for score breakdowns."""
        return {
            'playtime_hours': self.playtime_hours(game),
            'playtime_bucket': PLAYTIME_BUCKET_LABELS[self.playtime_bucket(game)],
            'days_since_last_play': self.days_since_last_play(game, timestamp),
            'recency_bucket': RECENCY_BUCKET_LABELS[self.recency_bucket(game, timestamp)],
        }
