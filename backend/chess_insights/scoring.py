"""
Move classification and game-level accuracy scoring.

Centipawn losses are always measured from the mover's point of view and are
never negative.
"""
import math
from typing import Dict, Iterable, List, Sequence

from .game_data import BLUNDER, GOOD, INACCURACY, MISTAKE

# Upper bound (inclusive) of each band, in centipawns
INACCURACY_THRESHOLD = 50
MISTAKE_THRESHOLD = 100
BLUNDER_THRESHOLD = 200

COUNTED_CLASSIFICATIONS = (BLUNDER, MISTAKE, INACCURACY)


def classify_move(cp_loss: float) -> str:
    """
    Classify a move by its centipawn loss.

    Returns:
        'good' (<= 50), 'inaccuracy' (<= 100), 'mistake' (<= 200) or 'blunder'
    """
    if cp_loss <= INACCURACY_THRESHOLD:
        return GOOD
    if cp_loss <= MISTAKE_THRESHOLD:
        return INACCURACY
    if cp_loss <= BLUNDER_THRESHOLD:
        return MISTAKE
    return BLUNDER


def calculate_acpl(cp_losses: Sequence[float]) -> float:
    """Average centipawn loss; 0 for a game with no evaluated moves."""
    if not cp_losses:
        return 0.0
    return sum(cp_losses) / len(cp_losses)


def calculate_accuracy(acpl: float) -> float:
    """
    Map ACPL to a 0-100 accuracy score.

    Strictly decreasing in ACPL until it clamps at 0.
    """
    accuracy = 103.1668 * math.exp(-0.04354 * acpl) - 3.1668
    return float(round(min(100.0, max(0.0, accuracy))))


def count_classifications(classifications: Iterable[str]) -> Dict[str, int]:
    counts = {BLUNDER: 0, MISTAKE: 0, INACCURACY: 0}
    for classification in classifications:
        if classification in counts:
            counts[classification] += 1
    return counts


def extrapolate_counts(
    counts: Dict[str, int],
    sampled_moves: int,
    total_moves: int,
) -> Dict[str, int]:
    """
    Scale sampled classification counts up to the whole game.

    Each count is multiplied by total_moves / sampled_moves and rounded with
    the largest-remainder method, so the extrapolated counts never add up to
    more than the scaled sample and never exceed total_moves.

    Args:
        counts: Sampled counts keyed by classification
        sampled_moves: Number of subject moves actually evaluated
        total_moves: Number of subject moves in the game

    Returns:
        Estimated counts keyed by classification
    """
    if sampled_moves <= 0 or total_moves <= 0:
        return {key: 0 for key in counts}

    multiplier = total_moves / sampled_moves
    bad_moves = sum(counts.values())
    budget = min(total_moves, int(round(bad_moves * multiplier)))

    exact = {key: value * multiplier for key, value in counts.items()}
    result = {key: int(math.floor(value)) for key, value in exact.items()}

    remaining = budget - sum(result.values())
    by_remainder: List[str] = sorted(
        (key for key in counts if counts[key] > 0),
        key=lambda key: exact[key] - result[key],
        reverse=True,
    )
    for key in by_remainder:
        if remaining <= 0:
            break
        result[key] += 1
        remaining -= 1

    # Floors alone can overshoot only if the budget was clipped to total_moves
    overshoot = sum(result.values()) - budget
    for key in COUNTED_CLASSIFICATIONS[::-1]:
        while overshoot > 0 and result.get(key, 0) > 0:
            result[key] -= 1
            overshoot -= 1

    return result
