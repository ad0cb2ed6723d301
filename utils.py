"""
Utility Functions for the Game Recommendation Engine

Contains helper functions for label parsing, encoding, and feature engineering.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from categories import get_categories

logger = logging.getLogger(__name__)


def encode_categorical_feature(value: str, category_name: str) -> List[float]:
    """
    Encode a categorical feature using one-hot encoding with standardised categories.

    Args:
        value: The categorical value to encode
        category_name: Name of the category (must exist in categories.py)

    Returns:
        One-hot encoded feature vector, all zeros for unknown values

    Example:
        >>> encode_categorical_feature('heavy', 'playtime_bucket')
        [0.0, 0.0, 0.0, 1.0, 0.0]
    """
    try:
        categories = get_categories(category_name)
    except KeyError:
        raise ValueError(f"Unknown category name: {category_name}")

    features = [0.0] * len(categories)
    if value in categories:
        features[categories.index(value)] = 1.0

    return features


def parse_label_list(raw: Any) -> List[str]:
    """
    Parse a genre or tag field into a list of labels.

    Accepts a list, a tuple, or a JSON-encoded list as stored by the launcher
    database. Anything malformed is treated as an empty list.

    Example:
        >>> parse_label_list('["Action", "RPG"]')
        ['Action', 'RPG']
        >>> parse_label_list('not json')
        []
    """
    if raw is None:
        return []

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8', errors='ignore')

    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring malformed label list: {raw!r}")
            return []

    if not isinstance(raw, (list, tuple)):
        return []

    labels = []
    for item in raw:
        if isinstance(item, str) and item and item not in labels:
            labels.append(item)
    return labels


def normalise_numeric_feature(value: float, min_val: float, max_val: float,
                              default_val: float = 0.0) -> float:
    """
    Normalise a numeric feature to [0, 1] range.

    Args:
        value: Value to normalise
        min_val: Minimum expected value
        max_val: Maximum expected value
        default_val: Default value if input is None or invalid

    Returns:
        Normalised value between 0 and 1
    """
    if value is None or not isinstance(value, (int, float)):
        value = default_val

    if max_val <= min_val:
        return 0.0

    # Clamp value to range
    value = max(min_val, min(max_val, value))

    return (value - min_val) / (max_val - min_val)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is zero.
    """
    if denominator == 0:
        return default
    return numerator / denominator


def hours_between(later: datetime, earlier: datetime) -> float:
    """Hours elapsed from earlier to later."""
    return (later - earlier).total_seconds() / 3600.0


def days_since_epoch_seconds(timestamp: datetime, epoch_seconds: Optional[float],
                             default_days: float = 365.0) -> float:
    """
    Days between an epoch-seconds instant and a timestamp.

    A missing or zero epoch value means the game was never played.
    """
    if not epoch_seconds:
        return default_days

    try:
        then = datetime.fromtimestamp(float(epoch_seconds), tz=timestamp.tzinfo)
    except (TypeError, ValueError, OverflowError, OSError):
        return default_days

    return (timestamp - then).total_seconds() / 86400.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime), None if invalid."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


def create_feature_vector(segments: Dict[str, Sequence[float]], order: Sequence[str]) -> np.ndarray:
    """
    Concatenate named feature segments into one vector in a fixed order.

    Example:
        >>> create_feature_vector({'a': [1.0], 'b': [0.0, 1.0]}, ['a', 'b'])
        array([1., 0., 1.])
    """
    combined = []
    for name in order:
        combined.extend(segments[name])
    return np.asarray(combined, dtype=np.float64)
