"""Utility functions for the rice pest detection system."""

import math
import os
from typing import List, Sequence, Tuple


def ensure_directory_exists(path: str) -> None:
    """Ensure a directory exists, create if it doesn't."""
    if path and not os.path.exists(path):
        os.makedirs(path, exist_ok=True)


def center_to_top_left(center_x: float, center_y: float,
                       width: float, height: float) -> Tuple[float, float, float, float]:
    """Convert a center-form box to a top-left-origin box."""
    return (center_x - width / 2, center_y - height / 2, width, height)


def top_left_to_center(x: float, y: float,
                       width: float, height: float) -> Tuple[float, float, float, float]:
    """Convert a top-left-origin box to center form."""
    return (x + width / 2, y + height / 2, width, height)


def round_percent(probability: float) -> int:
    """Scale a probability to an integer percentage, rounding halves up."""
    return int(math.floor(float(probability) * 100 + 0.5))


def top_two(scores: Sequence[float]) -> Tuple[int, float, float]:
    """Return (argmax index, highest score, second highest score).

    A single-entry vector reports 0 for the second score.
    """
    if len(scores) == 0:
        raise ValueError("Score vector is empty")
    best_index = max(range(len(scores)), key=lambda i: scores[i])
    ordered = sorted((float(s) for s in scores), reverse=True)
    second = ordered[1] if len(ordered) > 1 else 0.0
    return best_index, ordered[0], second


def split_treatment_steps(treatment: str) -> List[str]:
    """Split free-form treatment text into steps on sentence boundaries."""
    if not treatment:
        return []
    return [step.strip() for step in treatment.split(". ") if step.strip()]


def clamp_box(x: float, y: float, width: float, height: float,
              image_width: int, image_height: int) -> Tuple[int, int, int, int]:
    """Clamp a box to image bounds, returning integer (x1, y1, x2, y2)."""
    x1 = max(0, int(math.floor(x)))
    y1 = max(0, int(math.floor(y)))
    x2 = min(image_width, int(math.ceil(x + width)))
    y2 = min(image_height, int(math.ceil(y + height)))
    return x1, y1, x2, y2

