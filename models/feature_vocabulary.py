"""
Feature Vocabulary

Tracks the genres and tags known across the catalog and assigns each a stable
position in the context vector. The vocabulary only grows: once a label has an
index it keeps it for the lifetime of the process.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from models.records import Game

logger = logging.getLogger(__name__)

# Context layout around the vocabulary segment
USER_CONTEXT_DIM = 5
GAME_BUCKET_DIM = 10


@dataclass(frozen=True)
class VocabularySnapshot:
    """Immutable view of the vocabulary, used to describe a context layout."""
    genres: Tuple[str, ...]
    tags: Tuple[str, ...]

    @property
    def dimension(self) -> int:
        return USER_CONTEXT_DIM + len(self.genres) + len(self.tags) + GAME_BUCKET_DIM

    def positions(self) -> Dict[Tuple[str, str], int]:
        """Map every named coordinate of the layout to its index."""
        positions = {}
        index = 0
        for i in range(USER_CONTEXT_DIM):
            positions[('user', str(i))] = index
            index += 1
        for genre in self.genres:
            positions[('genre', genre)] = index
            index += 1
        for tag in self.tags:
            positions[('tag', tag)] = index
            index += 1
        for i in range(GAME_BUCKET_DIM):
            positions[('bucket', str(i))] = index
            index += 1
        return positions


class FeatureVocabulary:
    """
    Ordered genre and tag lists with append-only index assignment.

    The first refresh indexes labels in sorted order. Labels discovered by
    later refreshes are sorted among themselves and appended, so indices
    handed out earlier never move.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size
        self._genres: List[str] = []
        self._tags: List[str] = []
        self._genre_index: Dict[str, int] = {}
        self._tag_index: Dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def genres(self) -> List[str]:
        return list(self._genres)

    @property
    def tags(self) -> List[str]:
        return list(self._tags)

    @property
    def dimension(self) -> int:
        return USER_CONTEXT_DIM + len(self._genres) + len(self._tags) + GAME_BUCKET_DIM

    def genre_index(self, genre: str) -> Optional[int]:
        return self._genre_index.get(genre)

    def tag_index(self, tag: str) -> Optional[int]:
        return self._tag_index.get(tag)

    def snapshot(self) -> VocabularySnapshot:
        with self._lock:
            return VocabularySnapshot(tuple(self._genres), tuple(self._tags))

    def refresh(self, games: Iterable[Game]) -> bool:
        """
        Re-scan the catalog's genre and tag union.

        Args:
            games: Every game currently in the catalog

        Returns:
            True if new labels were indexed
        """
        found_genres = set()
        found_tags = set()
        for game in games:
            found_genres.update(game.genres)
            found_tags.update(game.tags)

        with self._lock:
            new_genres = sorted(found_genres - set(self._genre_index))
            new_tags = sorted(found_tags - set(self._tag_index))

            if self.max_size is not None:
                room = max(self.max_size - len(self._genres) - len(self._tags), 0)
                dropped = len(new_genres) + len(new_tags) - room
                if dropped > 0:
                    logger.warning(f"Vocabulary cap of {self.max_size} reached, ignoring {dropped} new labels")
                    new_genres = new_genres[:room]
                    new_tags = new_tags[:room - len(new_genres)]

            for genre in new_genres:
                self._genre_index[genre] = len(self._genres)
                self._genres.append(genre)
            for tag in new_tags:
                self._tag_index[tag] = len(self._tags)
                self._tags.append(tag)

        grew = bool(new_genres or new_tags)
        if grew:
            logger.info(f"Vocabulary grew by {len(new_genres)} genres and {len(new_tags)} tags "
                        f"(dimension now {self.dimension})")
        return grew
