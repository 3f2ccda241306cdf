from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

# --- Pose Landmark Indices (MediaPipe Pose, 33 points) ---
NOSE: int = 0
LEFT_SHOULDER: int = 11
RIGHT_SHOULDER: int = 12
LEFT_ELBOW: int = 13
RIGHT_ELBOW: int = 14
LEFT_WRIST: int = 15
RIGHT_WRIST: int = 16

# --- Hand Landmark Indices (21 points) ---
THUMB_TIP: int = 4
INDEX_TIP: int = 8

# --- Face Mesh Indices (468+ points) ---
NOSE_BRIDGE: int = 168    # Between the eyes, steadier than the nose tip
LEFT_EYE_OUTER: int = 33
RIGHT_EYE_OUTER: int = 263
LEFT_EAR: int = 234       # Approximate ear / temple position
RIGHT_EAR: int = 454

UPPER_BODY_INDICES: Tuple[int, ...] = (11, 12, 13, 14, 15, 16)
UPPER_BODY_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    (11, 12),  # Chest line
    (11, 13), (13, 15),
    (12, 14), (14, 16),
)

HAND_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1), (1, 2), (2, 3), (3, 4),         # Thumb
    (0, 5), (5, 6), (6, 7), (7, 8),         # Index finger
    (5, 9), (9, 10), (10, 11), (11, 12),    # Middle finger
    (9, 13), (13, 14), (14, 15), (15, 16),  # Ring finger
    (13, 17), (17, 18), (18, 19), (19, 20), # Pinky
    (0, 17),                                # Palm base
)


@dataclass(frozen=True)
class Landmark:
    """
    A single normalized 2D point from the detection model.

    Coordinates are in [0, 1] relative to the frame width/height, with the
    origin at the top-left of the *unmirrored* camera image.
    """
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    def is_visible(self, min_visibility: float) -> bool:
        if self.visibility is None:
            return True
        return self.visibility >= min_visibility


LandmarkList = Sequence[Landmark]


@dataclass(frozen=True)
class LandmarkFrame:
    """
    One detection snapshot. Any of the four streams may be None when the
    model found nothing for it this frame.
    """
    timestamp_ms: int
    pose: Optional[LandmarkList] = None
    left_hand: Optional[LandmarkList] = None
    right_hand: Optional[LandmarkList] = None
    face: Optional[LandmarkList] = None

    @classmethod
    def empty(cls, timestamp_ms: int) -> "LandmarkFrame":
        return cls(timestamp_ms=timestamp_ms)

    def hands(self) -> List[Tuple[str, LandmarkList]]:
        """Present hands in preference order (right first)."""
        present: List[Tuple[str, LandmarkList]] = []
        if self.right_hand:
            present.append(("Right", self.right_hand))
        if self.left_hand:
            present.append(("Left", self.left_hand))
        return present


def get_point(landmarks: Optional[LandmarkList], index: int,
              min_visibility: float = 0.0) -> Optional[Landmark]:
    """
    Safe indexed lookup. Returns None when the stream is absent, too short,
    or the point is below the visibility floor.
    """
    if not landmarks or index >= len(landmarks):
        return None
    point = landmarks[index]
    if point is None or not point.is_visible(min_visibility):
        return None
    return point
