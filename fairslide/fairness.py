# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Least-played-first selection.
Used at every tier of the rotation: playlists, folders and pictures.
"""

import logging
import random
from typing import Dict, List, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NoCandidates(ValueError):
    """Raised when there is nothing to choose from."""


def eligible_candidates(counts: Mapping[T, int]) -> List[T]:
    """
    Candidates played fewer times than the most-played one.

    When every candidate has the same count (including a single candidate),
    all of them are eligible again.

    Args:
        counts: Play count per candidate.

    Returns:
        Eligible candidates in input order.
    """
    if not counts:
        raise NoCandidates("No candidates to choose from")

    max_count = max(counts.values())
    eligible = [candidate for candidate, count in counts.items() if count < max_count]
    if not eligible:
        eligible = list(counts)
    return eligible


def pick(
    counts: Mapping[T, int],
    rng: Optional[random.Random] = None,
    label: str = "candidate"
) -> T:
    """
    Pick one candidate uniformly at random among the least played.

    Args:
        counts: Play count per candidate.
        rng: Random generator, for reproducible draws.
        label: Name of the tier, used in the audit log.

    Returns:
        The chosen candidate.
    """
    eligible = eligible_candidates(counts)
    choice = (rng or random).choice(eligible)
    logger.debug(
        f"Picked {label} {choice!r} from {len(eligible)} eligible of {len(counts)} "
        f"(play count {counts[choice]})"
    )
    return choice


def play_counts(records: Mapping[str, object]) -> Dict[str, int]:
    """Play count per key of a mapping of index records."""
    return {key: record.play_count for key, record in records.items()}
