"""
Heuristic liveness check combining face stillness and blink detection.

A printed photo or a phone screen held in front of the camera tends to be
perfectly still and never blinks. The gate counts consecutive still frames and
consecutive frames without a blink and flags a presentation as a possible
spoof once both streaks are long enough.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from config import EAR_THRESHOLD, MOVEMENT_THRESHOLD, STILL_FRAMES_LIMIT, NO_BLINK_FRAMES_LIMIT

logger = logging.getLogger(__name__)

# (x, y, w, h)
BoundingBox = Tuple[float, float, float, float]


def eye_aspect_ratio(eye: Sequence[Sequence[float]]) -> float:
    """
    Eye aspect ratio over six landmarks ordered outer corner, upper-outer,
    upper-inner, inner corner, lower-inner, lower-outer.

    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)
    """
    points = np.asarray(eye, dtype=np.float64)
    if points.shape != (6, 2):
        raise ValueError(f"Expected 6 eye landmarks, got shape {points.shape}")

    vertical_a = np.linalg.norm(points[1] - points[5])
    vertical_b = np.linalg.norm(points[2] - points[4])
    horizontal = np.linalg.norm(points[0] - points[3])
    if horizontal == 0:
        return 0.0
    return float((vertical_a + vertical_b) / (2.0 * horizontal))


@dataclass
class LivenessVerdict:
    spoof_suspected: bool
    blinking: bool
    ear: Optional[float]
    still_frames: int
    no_blink_frames: int


class LivenessGate:
    """
    Per camera session liveness state.

    Call ``observe`` once per sampled frame that contains a face. Frames
    without a face must not be fed in; the previous state carries over.
    """

    def __init__(
        self,
        ear_threshold: float = EAR_THRESHOLD,
        movement_threshold: float = MOVEMENT_THRESHOLD,
        still_frames_limit: int = STILL_FRAMES_LIMIT,
        no_blink_frames_limit: int = NO_BLINK_FRAMES_LIMIT,
    ):
        self.ear_threshold = ear_threshold
        self.movement_threshold = movement_threshold
        self.still_frames_limit = still_frames_limit
        self.no_blink_frames_limit = no_blink_frames_limit
        self.reset()

    def reset(self):
        """Forget everything; called when a camera session (re)starts."""
        self.previous_box: Optional[BoundingBox] = None
        self.still_frames = 0
        self.no_blink_frames = 0

    def average_ear(self, left_eye, right_eye) -> Optional[float]:
        if left_eye is None or right_eye is None:
            return None
        return (eye_aspect_ratio(left_eye) + eye_aspect_ratio(right_eye)) / 2.0

    def observe(self, box: BoundingBox, left_eye=None, right_eye=None) -> LivenessVerdict:
        """
        Update the streaks with one frame and decide whether to reject it.

        Without eye landmarks the frame counts as not blinking.
        """
        if self.previous_box is not None:
            delta_x = abs(box[0] - self.previous_box[0])
            delta_y = abs(box[1] - self.previous_box[1])
            if delta_x < self.movement_threshold and delta_y < self.movement_threshold:
                self.still_frames += 1
            else:
                self.still_frames = 0
        self.previous_box = tuple(box)

        ear = self.average_ear(left_eye, right_eye)
        blinking = ear is not None and ear < self.ear_threshold
        if blinking:
            self.no_blink_frames = 0
        else:
            self.no_blink_frames += 1

        spoof = (
            self.still_frames >= self.still_frames_limit
            and self.no_blink_frames >= self.no_blink_frames_limit
        )
        if spoof:
            logger.debug(
                f"Spoof suspected: still={self.still_frames} no_blink={self.no_blink_frames}"
            )

        return LivenessVerdict(
            spoof_suspected=spoof,
            blinking=blinking,
            ear=ear,
            still_frames=self.still_frames,
            no_blink_frames=self.no_blink_frames,
        )
