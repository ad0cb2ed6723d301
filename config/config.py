"""
Configuration classes for the game recommendation engine.
Arm persistence and session history work against any SQLAlchemy database
(SQLite by default, PostgreSQL and MySQL supported).
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass
class DiversityConfig:
    """Configuration for the optional re-ranking and variation stages."""
    use_mmr: bool = False  # Enable Maximal Marginal Relevance re-ranking
    mmr_lambda: float = 0.7  # Relevance vs. diversity trade-off for MMR
    use_score_jitter: bool = False  # Add uniform noise scaled by diversity_factor
    jitter_seed: Optional[int] = None  # Seed for the jitter generator


@dataclass
class FeatureConfig:
    """Configuration for context feature extraction."""
    # User context
    hours_since_normalization: float = 168.0  # One week
    default_hours_since_session: float = 168.0  # Used when no prior session exists

    # Game context buckets
    playtime_thresholds_hours: Tuple[float, ...] = (5.0, 20.0, 50.0, 100.0)
    recency_thresholds_days: Tuple[float, ...] = (3.0, 14.0, 60.0, 180.0)
    missing_recency_days: float = 365.0  # Used when a game was never played


@dataclass
class BanditConfig:
    """Configuration for the LinUCB arm model and ranking."""
    alpha: float = 0.5  # Exploration parameter
    regularization: float = 1.0  # Ridge prior on the diagonal of A
    cold_start_penalty: float = 0.3  # Multiplier for arms with no training data
    reward_policy: str = 'ramp'  # 'ramp' or 'stepped'
    max_vocabulary_size: Optional[int] = None  # Cap on genres + tags, None for unbounded
    diversity: DiversityConfig = None  # Re-ranking configuration
    features: FeatureConfig = None  # Context feature configuration

    def __post_init__(self):
        """Initialize default configs if not provided."""
        if self.diversity is None:
            self.diversity = DiversityConfig()
        if self.features is None:
            self.features = FeatureConfig()


@dataclass
class DatabaseConfig:
    """Configuration for database connections."""
    url: str = 'sqlite:///launcher.db'
    echo: bool = False

    # Connection pool settings, ignored by SQLite
    pool_size: int = 5
    max_overflow: int = 10
    pool_pre_ping: bool = True
    pool_recycle: int = 3600

    connect_args: dict = field(default_factory=dict)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    def get_engine_kwargs(self) -> dict:
        """Get SQLAlchemy engine kwargs."""
        kwargs = {
            'echo': self.echo,
            'pool_pre_ping': self.pool_pre_ping,
        }

        if self.is_sqlite:
            # Sessions end on background threads of the API server
            connect_args = {'check_same_thread': False}
            connect_args.update(self.connect_args)
            kwargs['connect_args'] = connect_args
            return kwargs

        kwargs.update({
            'pool_size': self.pool_size,
            'max_overflow': self.max_overflow,
            'pool_recycle': self.pool_recycle,
        })
        if self.connect_args:
            kwargs['connect_args'] = self.connect_args

        return kwargs
