"""
Maximal Marginal Relevance re-ranking.

Greedy selection that trades score against genre/tag overlap with the games
already picked. Optional stage, toggled by DiversityConfig.use_mmr.
"""

from typing import Dict, List, Sequence

import numpy as np
from sklearn.metrics import pairwise_distances
from sklearn.preprocessing import MultiLabelBinarizer


def jaccard_similarity_matrix(label_sets: Sequence[set]) -> np.ndarray:
    """
    Pairwise Jaccard similarity of label sets.

    Pairs where either set is empty have similarity 0.
    """
    n = len(label_sets)
    if n == 0:
        return np.zeros((0, 0))

    binarizer = MultiLabelBinarizer()
    encoded = binarizer.fit_transform([sorted(labels) for labels in label_sets]).astype(bool)

    if encoded.shape[1] == 0:
        return np.zeros((n, n))

    similarity = 1.0 - pairwise_distances(encoded, metric='jaccard')

    empty = ~encoded.any(axis=1)
    similarity[empty, :] = 0.0
    similarity[:, empty] = 0.0
    return similarity


def apply_mmr(scored: List[Dict], count: int, lambda_: float = 0.7) -> List[Dict]:
    """
    Select up to count items balancing relevance and diversity.

    Args:
        scored: Items sorted by 'score' descending, each with a 'labels' set
        count: Number of items to select
        lambda_: Weight of relevance against similarity to already picked items

    Returns:
        Selected items in pick order
    """
    if len(scored) <= count:
        return list(scored)
    if count <= 0:
        return []

    similarity = jaccard_similarity_matrix([item['labels'] for item in scored])
    relevance = np.array([item['score'] for item in scored], dtype=np.float64)

    selected = [0]
    remaining = list(range(1, len(scored)))

    while len(selected) < count and remaining:
        candidates = np.array(remaining)
        max_similarity = similarity[np.ix_(candidates, selected)].max(axis=1)
        mmr = lambda_ * relevance[candidates] - (1.0 - lambda_) * max_similarity

        # argmax returns the first maximum, keeping score order on ties
        best = int(candidates[int(np.argmax(mmr))])
        selected.append(best)
        remaining.remove(best)

    return [scored[i] for i in selected]
