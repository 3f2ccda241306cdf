import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from Landmarks import INDEX_TIP, THUMB_TIP, LandmarkFrame, LandmarkList
from modules.CoordinateMapper import CoordinateMapper

# Normalized thumb-to-index distance below which a hand counts as pinching
PINCH_THRESHOLD: float = 0.08


@dataclass(frozen=True)
class HandReading:
    """Pinch state and cursor of one hand."""
    label: str                      # 'Right' or 'Left'
    is_pinching: bool
    cursor: Tuple[float, float]     # Mirrored canvas pixels


@dataclass(frozen=True)
class GestureReading:
    """
    Result of one detection pass over the hands of a single frame.

    The top-level fields describe the preferred hand. `hands` keeps every
    complete hand so a drag can stay locked to the hand that started it.
    """
    is_pinching: bool = False
    cursor: Optional[Tuple[float, float]] = None  # Mirrored canvas pixels
    hand: Optional[str] = None                     # 'Right', 'Left' or None
    hands: Tuple[HandReading, ...] = ()

    def for_hand(self, label: Optional[str]) -> Optional[HandReading]:
        for reading in self.hands:
            if reading.label == label:
                return reading
        return None


class GestureEngine:
    """
    Analyzes hand geometry landmarks to detect a 'Pinch' gesture and the
    cursor position used to grab the sticker.

    The engine is stateless: the same LandmarkFrame always yields the same
    reading. Detecting the start and end of a pinch is left to the
    placement state machine, which remembers the previous frame.

    Hand preference is fixed: the right hand is checked first, then the
    left. The first pinching hand wins; if neither pinches, the cursor
    follows the first hand that is present.
    """

    def __init__(self, pinch_threshold: float = PINCH_THRESHOLD) -> None:
        """
        Args:
            pinch_threshold (float): The normalized distance (0.0-1.0) below which
                                     a pinch is registered. Lower = harder to pinch.
        """
        self.pinch_thresh: float = pinch_threshold

    def pinch_distance(self, landmarks: LandmarkList) -> Optional[float]:
        """
        Distance between Thumb Tip (4) and Index Finger Tip (8) in normalized
        image space, or None if the hand is incomplete.
        """
        if len(landmarks) <= INDEX_TIP:
            return None
        thumb = landmarks[THUMB_TIP]
        index = landmarks[INDEX_TIP]
        if thumb is None or index is None:
            return None
        return math.hypot(thumb.x - index.x, thumb.y - index.y)

    def detect(self, frame: LandmarkFrame, mapper: CoordinateMapper) -> GestureReading:
        """
        Classifies the pinch state and cursor for this frame.

        Args:
            frame (LandmarkFrame): Current detection snapshot.
            mapper (CoordinateMapper): Maps normalized points into mirrored canvas pixels.

        Returns:
            GestureReading: Pinch flag, cursor position and which hand produced it.
        """
        hands: List[HandReading] = []
        for label, landmarks in frame.hands():
            dist = self.pinch_distance(landmarks)
            if dist is None:
                continue

            thumb = landmarks[THUMB_TIP]
            index = landmarks[INDEX_TIP]
            # Cursor is the midpoint of the two tips, mirrored to match the video
            cursor = mapper.to_pixel((thumb.x + index.x) / 2, (thumb.y + index.y) / 2)
            hands.append(HandReading(label=label, is_pinching=dist < self.pinch_thresh, cursor=cursor))

        if not hands:
            return GestureReading()

        # First pinching hand wins, otherwise the first hand present drives the cursor
        primary = next((h for h in hands if h.is_pinching), hands[0])
        return GestureReading(
            is_pinching=primary.is_pinching,
            cursor=primary.cursor,
            hand=primary.label,
            hands=tuple(hands),
        )
