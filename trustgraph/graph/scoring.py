# trustgraph/graph/scoring.py
"""
Trust formula.

score = clamp01(base_score(distance) * (1 + path_bonus(distance, path_count)))

base_score is a decreasing step table over hop distance. path_bonus adds a
per-path bonus for every corroborating path beyond the first, tiered by
distance bracket and capped. This module is the only place a trust score
is computed.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class ScoringConfig:
    """
    Scoring parameters.

    distance_weights: base score per hop; distances past the largest key
        use the largest key's weight.
    path_bonus_tiers: bonus per extra path, keyed by the highest distance
        of each bracket; distances past the largest key use its bonus.
    max_path_bonus: cap on the total path bonus.
    """
    distance_weights: Dict[int, float] = field(default_factory=lambda: {
        0: 1.0,
        1: 1.0,
        2: 0.5,
        3: 0.25,
        4: 0.1,
    })
    path_bonus_tiers: Dict[int, float] = field(default_factory=lambda: {
        2: 0.15,
        3: 0.10,
        4: 0.05,
    })
    max_path_bonus: float = 0.5


DEFAULT_SCORING_CONFIG = ScoringConfig()


def _bracket_lookup(table: Dict[int, float], distance: int) -> float:
    """Value for the smallest key >= distance, else the largest key's value."""
    for key in sorted(table):
        if distance <= key:
            return table[key]
    return table[max(table)]


def base_score(distance: int, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> float:
    """Base score for a hop distance."""
    if distance < 0:
        raise ValueError(f"distance must be >= 0, got {distance}")
    weights = config.distance_weights
    max_key = max(weights)
    if distance >= max_key:
        return weights[max_key]
    if distance in weights:
        return weights[distance]
    return _bracket_lookup(weights, distance)


def path_bonus(
    distance: int,
    path_count: int,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    """
    Total bonus for corroborating paths.

    (path_count - 1) * tier_bonus(distance), capped at max_path_bonus.
    """
    if path_count < 1:
        raise ValueError(f"path_count must be >= 1, got {path_count}")
    if path_count == 1:
        return 0.0
    per_path = _bracket_lookup(config.path_bonus_tiers, distance)
    return min((path_count - 1) * per_path, config.max_path_bonus)


def trust_score(
    distance: int,
    path_count: int = 1,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    """
    Trust score in [0, 1] for a node.

    Args:
        distance: Hops from root (0 = root)
        path_count: Distinct edges observed into the node (>= 1)
        config: Scoring parameters

    Returns:
        Clamped score
    """
    score = base_score(distance, config) * (1 + path_bonus(distance, path_count, config))
    return max(0.0, min(1.0, score))
