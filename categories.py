"""
Categorical Variables for the Game Recommendation Engine

Contains the standardised bucket and time-of-day categories used to build
context vectors, in the order their indicators appear in the vector.
"""

# Time of day categories (user context, night wraps around midnight)
TIME_OF_DAY_CATEGORIES = ['morning', 'afternoon', 'night']

# Cumulative playtime buckets: [0-5h, 5-20h, 20-50h, 50-100h, 100+h]
PLAYTIME_BUCKET_CATEGORIES = ['new', 'light', 'medium', 'heavy', 'very_heavy']

# Days since last play buckets: [0-3d, 4-14d, 15-60d, 61-180d, 181+d]
RECENCY_BUCKET_CATEGORIES = ['very_recent', 'recent', 'medium', 'old', 'very_old']

# Human-readable bucket labels for score breakdowns
PLAYTIME_BUCKET_LABELS = {
    'new': '0-5h (new)',
    'light': '5-20h (light)',
    'medium': '20-50h (medium)',
    'heavy': '50-100h (heavy)',
    'very_heavy': '100+h (very heavy)'
}

RECENCY_BUCKET_LABELS = {
    'very_recent': '0-3d (very recent)',
    'recent': '4-14d (recent)',
    'medium': '15-60d (medium)',
    'old': '61-180d (old)',
    'very_old': '181+d (very old/never)'
}

# Feedback actions recorded against recommendations
FEEDBACK_ACTION_CATEGORIES = ['launch']

# Category mappings for easy access
CATEGORY_MAPPINGS = {
    'time_of_day': TIME_OF_DAY_CATEGORIES,
    'playtime_bucket': PLAYTIME_BUCKET_CATEGORIES,
    'recency_bucket': RECENCY_BUCKET_CATEGORIES,
    'feedback_action': FEEDBACK_ACTION_CATEGORIES
}


def get_categories(category_name: str):
    """
    Get category list by name.

    Args:
        category_name: Name of the category

    Returns:
        List of category values

    Raises:
        KeyError: If category name not found
    """
    if category_name not in CATEGORY_MAPPINGS:
        raise KeyError(f"Category '{category_name}' not found. Available categories: {list(CATEGORY_MAPPINGS.keys())}")

    return CATEGORY_MAPPINGS[category_name]


def get_time_of_day(hour: int) -> str:
    """Map an hour of the day (0-23) to its time-of-day category."""
    if 6 <= hour < 12:
        return 'morning'
    elif 12 <= hour < 18:
        return 'afternoon'
    else:
        return 'night'


def get_playtime_bucket(hours: float, thresholds=(5.0, 20.0, 50.0, 100.0)) -> str:
    """Bucket cumulative playtime; each threshold is exclusive on the upper side."""
    for category, threshold in zip(PLAYTIME_BUCKET_CATEGORIES, thresholds):
        if hours < threshold:
            return category
    return PLAYTIME_BUCKET_CATEGORIES[-1]


def get_recency_bucket(days: float, thresholds=(3.0, 14.0, 60.0, 180.0)) -> str:
    """Bucket days since last play; each threshold is inclusive on the upper side."""
    for category, threshold in zip(RECENCY_BUCKET_CATEGORIES, thresholds):
        if days <= threshold:
            return category
    return RECENCY_BUCKET_CATEGORIES[-1]
