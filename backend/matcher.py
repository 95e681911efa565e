"""
Nearest-neighbour matching of a live face descriptor against a roster.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

from config import MATCH_THRESHOLD

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float

    @property
    def known(self) -> bool:
        return self.label != UNKNOWN_LABEL

    def __str__(self):
        return f"{self.label} ({self.distance:.2f})"


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float32) - np.asarray(b, dtype=np.float32)))


class FaceMatcher:
    """Accepts the closest roster entry only when it is nearer than ``threshold``."""

    def __init__(self, threshold: float = MATCH_THRESHOLD):
        self.threshold = threshold

    def match(self, descriptor: np.ndarray, roster: Iterable[Tuple[str, np.ndarray]]) -> MatchResult:
        best_label = UNKNOWN_LABEL
        best_distance = math.inf

        for label, known in roster:
            distance = euclidean_distance(descriptor, known)
            if distance < best_distance:
                best_distance = distance
                best_label = label

        if best_distance < self.threshold:
            return MatchResult(best_label, best_distance)
        return MatchResult(UNKNOWN_LABEL, best_distance)
