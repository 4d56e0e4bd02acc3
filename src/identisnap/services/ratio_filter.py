"""
Statistical filters over candidate correspondences.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from identisnap.services.match_finder import Candidates, Correspondence

# 0.8 in Lowe's paper
DEFAULT_RATIO = 0.8
DEFAULT_MIN_DISTANCE_FLOOR = 0.02


def ratio_filter(candidates: Candidates, ratio: float = DEFAULT_RATIO) -> list[Correspondence]:
    """
    Apply Lowe's nearest-neighbour distance ratio test.

    Keeps a query descriptor's nearest correspondence iff its distance is at
    most `ratio` times the second-nearest distance. Query descriptors with
    fewer than two candidates cannot be tested and are skipped.

    Args:
        candidates: Per query descriptor, correspondences ordered by distance
        ratio: Ratio threshold in (0, 1]

    Returns:
        Retained correspondences in query order
    """
    good_matches: list[Correspondence] = []
    for pair in candidates:
        if len(pair) < 2:
            continue
        best, second = pair[0], pair[1]
        if best.distance <= ratio * second.distance:
            good_matches.append(best)
    return good_matches


def min_distance_filter(
    matches: Sequence[Correspondence],
    floor: float = DEFAULT_MIN_DISTANCE_FLOOR,
) -> list[Correspondence]:
    """
    Keep matches closer than twice the best match distance.

    `floor` takes over when the best distance is very small, so that a
    single exact match does not reject everything else.
    """
    if not matches:
        return []
    min_dist = min(m.distance for m in matches)
    limit = max(2 * min_dist, floor)
    return [m for m in matches if m.distance <= limit]


def nearest(candidates: Candidates) -> list[Correspondence]:
    """Best correspondence of every query descriptor that has one."""
    return [pair[0] for pair in candidates if pair]
