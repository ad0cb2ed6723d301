"""
Arm Persistence

Serializes arm state to JSON blobs and restores it at startup. Each blob
carries the genre/tag layout it was recorded under so a grown vocabulary can
be mapped onto it instead of producing mismatched matrices.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

import numpy as np

from models.contextual_bandit import ContextualBandit, LayoutMismatchError, embed_arm_state
from models.feature_vocabulary import VocabularySnapshot

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class ArmDecodeError(ValueError):
    """Raised when a stored arm blob cannot be decoded."""


@dataclass
class DecodedArm:
    A: np.ndarray
    b: np.ndarray
    layout: Optional[VocabularySnapshot]
    update_count: int = 0


@dataclass
class LoadReport:
    """Outcome of loading every stored arm."""
    loaded: int = 0
    skipped: List[str] = field(default_factory=list)  # Undecodable blobs
    rejected: List[str] = field(default_factory=list)  # Layout no longer valid, needs retraining

    @property
    def total(self) -> int:
        return self.loaded + len(self.skipped) + len(self.rejected)


def serialize_arm(A: np.ndarray, b: np.ndarray, layout: VocabularySnapshot,
                  update_count: int = 0) -> str:
    """Encode arm state as a versioned JSON document."""
    return json.dumps({
        'version': SCHEMA_VERSION,
        'dimension': int(b.shape[0]),
        'genres': list(layout.genres),
        'tags': list(layout.tags),
        'A': A.tolist(),
        'b': b.tolist(),
        'update_count': int(update_count),
        'updated_at': datetime.now().isoformat()
    })


def deserialize_arm(blob) -> DecodedArm:
    """
    Decode a JSON arm blob.

    Blobs without layout information (plain {"A": ..., "b": ...}) decode with
    layout None and are only usable at an identical dimension.

    Raises:
        ArmDecodeError: If the blob is malformed
    """
    if isinstance(blob, (bytes, bytearray)):
        blob = blob.decode('utf-8')

    try:
        data = json.loads(blob)
        A = np.asarray(data['A'], dtype=np.float64)
        b = np.asarray(data['b'], dtype=np.float64)
    except (TypeError, ValueError, KeyError) as e:
        raise ArmDecodeError(f"Malformed arm blob: {e}") from e

    if b.ndim != 1 or A.shape != (b.shape[0], b.shape[0]):
        raise ArmDecodeError(f"Inconsistent arm shapes A={A.shape} b={b.shape}")

    version = data.get('version')
    if version is not None and version > SCHEMA_VERSION:
        raise ArmDecodeError(f"Unsupported arm schema version {version}")

    layout = None
    if 'genres' in data and 'tags' in data:
        layout = VocabularySnapshot(tuple(data['genres']), tuple(data['tags']))
        if layout.dimension != b.shape[0]:
            raise ArmDecodeError(f"Layout dimension {layout.dimension} does not match arm dimension {b.shape[0]}")

    return DecodedArm(A=A, b=b, layout=layout, update_count=int(data.get('update_count', 0)))


class ArmPersistence:
    """Moves arm snapshots between the bandit and a persistent store."""

    def __init__(self, store, bandit: ContextualBandit):
        self.store = store
        self.bandit = bandit

    def save(self, game_id: str) -> bool:
        """Write the current state of one arm. Errors are logged, not raised."""
        state = self.bandit.export_arm(game_id)
        if state is None:
            logger.warning(f"Cannot save non-existent arm: {game_id}")
            return False

        try:
            self.store.save_arm(game_id, serialize_arm(state.A, state.b, state.layout, state.update_count))
        except Exception as e:
            logger.error(f"Error saving arm model for {game_id}: {e}")
            return False

        return True

    def save_many(self, game_ids) -> int:
        return sum(1 for game_id in game_ids if self.save(game_id))

    def _fit_to_layout(self, decoded: DecodedArm) -> Tuple[np.ndarray, np.ndarray]:
        layout = self.bandit.layout
        if decoded.layout is None:
            if decoded.b.shape[0] != layout.dimension:
                raise LayoutMismatchError(
                    f"Arm without layout has dimension {decoded.b.shape[0]}, expected {layout.dimension}"
                )
            return decoded.A, decoded.b

        if decoded.layout == layout:
            return decoded.A, decoded.b

        return embed_arm_state(decoded.A, decoded.b, decoded.layout, layout,
                               self.bandit.config.regularization)

    def load_all(self) -> LoadReport:
        """
        Load every stored arm into the bandit.

        One unreadable entry never aborts loading the others. Arms recorded
        under labels that are no longer known are rejected so they can be
        retrained from history.
        """
        report = LoadReport()

        try:
            stored_arms = self.store.load_all_arms()
        except Exception as e:
            logger.error(f"Failed to read stored arms: {e}")
            return report

        for stored in stored_arms:
            try:
                decoded = deserialize_arm(stored.serialized_model)
            except ArmDecodeError as e:
                logger.error(f"Error loading arm data for {stored.game_id}: {e}")
                report.skipped.append(stored.game_id)
                continue

            try:
                A, b = self._fit_to_layout(decoded)
            except LayoutMismatchError as e:
                logger.warning(f"Rejecting stored arm {stored.game_id}: {e}")
                report.rejected.append(stored.game_id)
                continue

            self.bandit.load_arm(stored.game_id, A, b, decoded.update_count)
            report.loaded += 1

        logger.info(f"Loaded {report.loaded} arms ({len(report.skipped)} unreadable, "
                    f"{len(report.rejected)} rejected)")
        return report
