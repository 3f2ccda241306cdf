from dataclasses import replace
from typing import Dict, List, Optional

from Landmarks import Landmark, LandmarkFrame, LandmarkList

STREAMS = ("pose", "left_hand", "right_hand", "face")


class LandmarkSmoother:
    """
    Applies a Low-Pass Filter (Exponential Moving Average) to every landmark
    stream of a LandmarkFrame.

    This reduces the 'jitter' common in computer vision tracking, so the
    sticker glued to the chest or face does not shimmer frame to frame.
    Each stream keeps its own history; when a stream disappears its history
    is dropped so a returning hand does not blend from a stale position.
    """

    def __init__(self, alpha: float = 0.6) -> None:
        """
        Args:
            alpha (float): The smoothing factor (0.0 to 1.0].
                           - Higher alpha: More responsive, less smooth.
                           - Lower alpha: Very smooth, high latency.
                           - 1.0 passes landmarks through untouched.
        """
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha: float = alpha
        self.prev_landmarks: Dict[str, List[Landmark]] = {}

    def smooth(self, frame: LandmarkFrame) -> LandmarkFrame:
        if self.alpha >= 1.0:
            return frame
        smoothed = {name: self._smooth_stream(name, getattr(frame, name)) for name in STREAMS}
        return replace(frame, **smoothed)

    def reset(self) -> None:
        self.prev_landmarks = {}

    def _smooth_stream(self, name: str, current: Optional[LandmarkList]) -> Optional[List[Landmark]]:
        if not current:
            self.prev_landmarks.pop(name, None)
            return None

        prev = self.prev_landmarks.get(name)
        # First sighting, or the model changed the point count (e.g. face
        # mesh with/without iris refinement): restart the history.
        if prev is None or len(prev) != len(current):
            self.prev_landmarks[name] = list(current)
            return list(current)

        a = self.alpha
        smoothed: List[Landmark] = []
        for curr_lm, prev_lm in zip(current, prev):
            # New_Val = (Current_Raw * alpha) + (Previous_Smoothed * (1 - alpha))
            smoothed.append(Landmark(
                x=curr_lm.x * a + prev_lm.x * (1 - a),
                y=curr_lm.y * a + prev_lm.y * (1 - a),
                z=curr_lm.z * a + prev_lm.z * (1 - a),
                visibility=curr_lm.visibility,
            ))

        self.prev_landmarks[name] = smoothed
        return smoothed
