"""
Contextual Bandit Model for Game Recommendations

Implements LinUCB (Linear Upper Confidence Bound) with one ridge-regression
arm per game. Each arm keeps the sufficient statistics (A, b) of an online
ridge regression, so updates are exact and independent of their order.
Also holds the session-duration reward shaping policies.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from config.config import BanditConfig
from models.feature_vocabulary import VocabularySnapshot

logger = logging.getLogger(__name__)


class SingularMatrixError(ValueError):
    """Raised when a design matrix cannot be inverted to working precision."""


class LayoutMismatchError(ValueError):
    """Raised when arm state cannot be mapped onto a context layout."""


def invert_matrix(matrix: np.ndarray, tolerance: float = 1e-12) -> np.ndarray:
    """
    Invert a square matrix with Gauss-Jordan elimination and partial pivoting.

    Args:
        matrix: Square matrix to invert
        tolerance: Pivots smaller than tolerance * max|matrix| count as zero

    Returns:
        The inverse matrix

    Raises:
        SingularMatrixError: If the matrix is singular to working precision
    """
    a = np.array(matrix, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {a.shape}")
    if not np.all(np.isfinite(a)):
        raise SingularMatrixError("Matrix contains non-finite values")

    n = a.shape[0]
    augmented = np.hstack([a, np.eye(n)])
    scale = max(float(np.abs(a).max()) if n else 0.0, 1.0)

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(augmented[col:, col])))
        if abs(augmented[pivot, col]) <= tolerance * scale:
            raise SingularMatrixError(f"Zero pivot in column {col}")

        if pivot != col:
            augmented[[col, pivot]] = augmented[[pivot, col]]

        augmented[col] /= augmented[col, col]

        # Eliminate the column from every other row
        factors = augmented[:, col].copy()
        factors[col] = 0.0
        augmented -= np.outer(factors, augmented[col])

    return augmented[:, n:]


def ramp_reward(minutes: float) -> float:
    """Under 10 minutes earns nothing, then linear up to 1.0 at two hours."""
    if minutes < 10:
        return 0.0
    elif minutes < 120:
        return (minutes - 10) / 110.0
    return 1.0


def stepped_reward(minutes: float) -> float:
    """Under 10 minutes earns nothing, then 0.4 / 0.6 / 0.9 / 1.0 steps."""
    if minutes < 10:
        return 0.0
    elif minutes < 30:
        return 0.4
    elif minutes < 60:
        return 0.6
    elif minutes < 120:
        return 0.9
    return 1.0


REWARD_POLICIES: Dict[str, Callable[[float], float]] = {
    'ramp': ramp_reward,
    'stepped': stepped_reward,
}


def shape_reward(duration_seconds: Optional[float], policy: str = 'ramp') -> float:
    """
    Convert a session duration into a reward in [0, 1].

    Args:
        duration_seconds: Length of the play session
        policy: Name of a policy in REWARD_POLICIES
    """
    if policy not in REWARD_POLICIES:
        raise ValueError(f"Unknown reward policy: {policy}")

    if not duration_seconds or duration_seconds < 0:
        return 0.0

    return REWARD_POLICIES[policy](duration_seconds / 60.0)


def embed_arm_state(A: np.ndarray, b: np.ndarray, old_layout: VocabularySnapshot,
                    new_layout: VocabularySnapshot,
                    regularization: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Re-embed arm statistics recorded under one context layout into another.

    Every coordinate of the old layout must exist in the new one. Coordinates
    only present in the new layout were zero in every past context, so they
    receive the untouched ridge prior.

    Raises:
        LayoutMismatchError: If the old layout has labels the new one lacks
    """
    if A.shape != (old_layout.dimension, old_layout.dimension) or b.shape != (old_layout.dimension,):
        raise LayoutMismatchError(
            f"Arm shape {A.shape} does not match layout dimension {old_layout.dimension}"
        )

    old_positions = old_layout.positions()
    new_positions = new_layout.positions()

    missing = [key for key in old_positions if key not in new_positions]
    if missing:
        raise LayoutMismatchError(f"{len(missing)} features are no longer in the vocabulary")

    old_index = np.array([old_positions[key] for key in old_positions], dtype=int)
    new_index = np.array([new_positions[key] for key in old_positions], dtype=int)

    new_A = regularization * np.eye(new_layout.dimension)
    new_b = np.zeros(new_layout.dimension)
    new_A[np.ix_(new_index, new_index)] = A[np.ix_(old_index, old_index)]
    new_b[new_index] = b[old_index]

    return new_A, new_b


@dataclass
class ArmScore:
    """Score breakdown of one arm for one context."""
    expected_reward: float
    uncertainty: float
    ucb: float

    @classmethod
    def zero(cls) -> 'ArmScore':
        return cls(0.0, 0.0, 0.0)


@dataclass
class ArmState:
    """Copies of one arm's statistics together with the layout they were recorded under."""
    A: np.ndarray
    b: np.ndarray
    layout: VocabularySnapshot
    update_count: int


class Arm:
    """Ridge-regression sufficient statistics for a single game."""

    def __init__(self, dimension: int, regularization: float = 1.0):
        self.A = regularization * np.eye(dimension)
        self.b = np.zeros(dimension)
        self.update_count = 0
        self.created_at = datetime.now()
        self.last_update: Optional[datetime] = None
        self.lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self.b.shape[0]

    def has_training_data(self) -> bool:
        return bool(np.any(self.b != 0))


class ContextualBandit:
    """
    LinUCB over an explicitly owned map of game id to arm.

    The map is guarded by one lock and every arm by its own, so scoring
    different games can overlap while an update of one arm never interleaves
    with a read of the same arm.
    """

    def __init__(self, config: BanditConfig, layout: VocabularySnapshot):
        self.config = config
        self.layout = layout
        self.arms: Dict[str, Arm] = {}
        self._lock = threading.RLock()

        logger.info(f"Initialised Contextual Bandit with dimension {self.dimension}, alpha {config.alpha}")

    @property
    def dimension(self) -> int:
        return self.layout.dimension

    def get_or_create(self, arm_id: str) -> Arm:
        """Return the arm of a game, creating it with the ridge prior on first use."""
        with self._lock:
            arm = self.arms.get(arm_id)
            if arm is None:
                arm = Arm(self.dimension, self.config.regularization)
                self.arms[arm_id] = arm
                logger.debug(f"Added new arm: {arm_id}")
            return arm

    def has_arm(self, arm_id: str) -> bool:
        return arm_id in self.arms

    def has_training_data(self, arm_id: str) -> bool:
        arm = self.get_or_create(arm_id)
        with arm.lock:
            return arm.has_training_data()

    def score(self, arm_id: str, context: np.ndarray, alpha: Optional[float] = None) -> ArmScore:
        """
        Upper confidence bound of an arm for a context.

        A singular design matrix or a dimension mismatch is logged and
        scored as zero so one bad arm never blocks ranking the others.
        """
        if alpha is None:
            alpha = self.config.alpha

        arm = self.get_or_create(arm_id)
        with arm.lock:
            A = arm.A.copy()
            b = arm.b.copy()

        x = np.asarray(context, dtype=np.float64)
        if x.shape != b.shape:
            logger.warning(f"Context of length {x.shape[0]} does not fit arm {arm_id} of dimension {b.shape[0]}")
            return ArmScore.zero()

        try:
            A_inv = invert_matrix(A)
        except SingularMatrixError as e:
            logger.warning(f"Singular matrix encountered for arm {arm_id}: {e}")
            return ArmScore.zero()

        theta = A_inv @ b
        expected_reward = float(theta @ x)
        variance = float(x @ (A_inv @ x))
        uncertainty = float(np.sqrt(max(variance, 0.0)))

        return ArmScore(
            expected_reward=expected_reward,
            uncertainty=uncertainty,
            ucb=expected_reward + alpha * uncertainty
        )

    def update(self, arm_id: str, context: np.ndarray, reward: float):
        """
        Update an arm with an observed reward.

        Args:
            arm_id: ID of the played game
            context: Feature vector of the decision
            reward: Observed reward in [0, 1]
        """
        x = np.asarray(context, dtype=np.float64)
        if x.shape != (self.dimension,):
            raise ValueError(f"Context of length {x.shape[0]} does not match dimension {self.dimension}")

        arm = self.get_or_create(arm_id)
        with arm.lock:
            arm.A += np.outer(x, x)
            arm.b += reward * x
            arm.update_count += 1
            arm.last_update = datetime.now()

    def snapshot(self, arm_id: str) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Copies of an arm's (A, b), None if the arm does not exist."""
        arm = self.arms.get(arm_id)
        if arm is None:
            return None
        with arm.lock:
            return arm.A.copy(), arm.b.copy()

    def export_arm(self, arm_id: str) -> Optional[ArmState]:
        """
        Consistent copy of an arm for persistence, None if the arm does not exist.

        The statistics and the layout are read under the map lock, so their
        dimensions always agree.
        """
        with self._lock:
            arm = self.arms.get(arm_id)
            if arm is None:
                return None
            with arm.lock:
                return ArmState(arm.A.copy(), arm.b.copy(), self.layout, arm.update_count)

    def load_arm(self, arm_id: str, A: np.ndarray, b: np.ndarray, update_count: int = 0):
        """Install arm state restored from storage."""
        A = np.asarray(A, dtype=np.float64)
        b = np.asarray(b, dtype=np.float64)
        if A.shape != (self.dimension, self.dimension) or b.shape != (self.dimension,):
            raise LayoutMismatchError(f"Arm {arm_id} has shape {A.shape}, expected dimension {self.dimension}")

        arm = Arm(self.dimension, self.config.regularization)
        arm.A = A.copy()
        arm.b = b.copy()
        arm.update_count = update_count
        with self._lock:
            self.arms[arm_id] = arm

    def resize(self, new_layout: VocabularySnapshot):
        """Move every arm onto a grown vocabulary layout."""
        with self._lock:
            old_layout = self.layout
            if new_layout == old_layout:
                return

            for arm_id, arm in self.arms.items():
                with arm.lock:
                    arm.A, arm.b = embed_arm_state(
                        arm.A, arm.b, old_layout, new_layout, self.config.regularization
                    )

            self.layout = new_layout

        logger.info(f"Resized {len(self.arms)} arms from dimension {old_layout.dimension} "
                    f"to {new_layout.dimension}")

    def get_arm_statistics(self) -> Dict[str, Any]:
        """Get statistics about all arms."""
        with self._lock:
            arms = dict(self.arms)

        stats = {
            'dimension': self.dimension,
            'genres': len(self.layout.genres),
            'tags': len(self.layout.tags),
            'total_arms': len(arms),
            'trained_arms': 0,
            'arms': {}
        }

        for arm_id, arm in arms.items():
            with arm.lock:
                A = arm.A.copy()
                b = arm.b.copy()
                trained = arm.has_training_data()
                count = arm.update_count
                last_update = arm.last_update
                created_at = arm.created_at

            try:
                theta_norm = float(np.linalg.norm(invert_matrix(A) @ b))
            except SingularMatrixError:
                theta_norm = 0.0

            stats['trained_arms'] += int(trained)
            stats['arms'][arm_id] = {
                'update_count': count,
                'created_at': created_at.isoformat(),
                'last_update': last_update.isoformat() if last_update else None,
                'has_training_data': trained,
                'theta_norm': theta_norm
            }

        return stats
