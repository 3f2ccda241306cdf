import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from AnchorResolver import AnchorTransform
from GestureEngine import GestureReading
from modules.CoordinateMapper import CoordinateMapper

logger = logging.getLogger(__name__)

# --- Placement Policy Constants ---
HIT_RADIUS_FACTOR: float = 0.5    # Grab zone radius as a fraction of rendered sticker width
SNAP_RADIUS_FACTOR: float = 1.0   # Snap capture radius as a fraction of the anchor's sticker width
DEFAULT_SCALE: float = 0.3        # Fresh sticker width as a fraction of canvas width


class AnchorMode(str, Enum):
    CHEST = "chest"
    FACE = "face"
    MANUAL = "manual"


@dataclass(frozen=True)
class PlacementState:
    """
    The one authoritative sticker transform.

    x, y are fractions of the canvas, scale is the rendered width as a
    fraction of canvas width (before the manual multiplier) and rotation is
    in radians (before the manual offset).
    """
    x: float = 0.5
    y: float = 0.5
    scale: float = DEFAULT_SCALE
    rotation: float = 0.0
    anchor_mode: AnchorMode = AnchorMode.MANUAL

    def to_dict(self) -> dict:
        return {
            "x": round(self.x, 4),
            "y": round(self.y, 4),
            "scale": round(self.scale, 4),
            "rotation": round(self.rotation, 4),
            "anchor": self.anchor_mode.value,
        }


@dataclass(frozen=True)
class GestureState:
    is_pinching: bool = False
    cursor: Optional[Tuple[float, float]] = None
    is_dragging: bool = False
    drag_offset: Tuple[float, float] = (0.0, 0.0)
    drag_hand: Optional[str] = None   # Hand that grabbed; only it can move or release the sticker

    def to_dict(self) -> dict:
        return {
            "pinch": self.is_pinching,
            "cursor": None if self.cursor is None else [round(c, 1) for c in self.cursor],
            "dragging": self.is_dragging,
            "hand": self.drag_hand,
        }


@dataclass(frozen=True)
class ManualAdjustment:
    """User scale/rotation layered on top of the stored baseline at draw time."""
    scale_multiplier: float = 1.0
    rotation_offset_degrees: float = 0.0

    def __post_init__(self) -> None:
        if not math.isfinite(self.scale_multiplier) or self.scale_multiplier <= 0:
            raise ValueError(f"scale_multiplier must be a finite value > 0, got {self.scale_multiplier}")
        if not math.isfinite(self.rotation_offset_degrees):
            raise ValueError(f"rotation_offset_degrees must be finite, got {self.rotation_offset_degrees}")

    def apply(self, state: PlacementState) -> Tuple[float, float]:
        """Returns (scale, rotation_radians) to draw with. Never stored back."""
        return (state.scale * self.scale_multiplier,
                state.rotation + math.radians(self.rotation_offset_degrees))


class PlacementStateMachine:
    """
    Decides, once per frame, where the sticker sits.

    Exactly one writer may touch the PlacementState per frame, picked by the
    anchor mode: the chest resolver, the face resolver, or the drag update.
    When the chosen writer has nothing to say (anchor unavailable), the state
    is left exactly as it was.

    Transitions:
        - Grab: pinch starts within the hit radius -> drag, mode = manual.
        - Release: the grabbing hand stops pinching (or is lost) -> snap to
          the closest anchor within its capture radius if snapping is on,
          otherwise stay put. The other hand can neither move nor drop it.
        - Snap re-enabled while idle in manual -> mode = chest.
        - New sticker -> manual, centered, default size.
    """

    def __init__(self,
                 hit_radius_factor: float = HIT_RADIUS_FACTOR,
                 snap_radius_factor: float = SNAP_RADIUS_FACTOR,
                 default_scale: float = DEFAULT_SCALE,
                 snap_enabled: bool = False) -> None:
        self.hit_radius_factor: float = hit_radius_factor
        self.snap_radius_factor: float = snap_radius_factor
        self.default_scale: float = default_scale

        self.state: PlacementState = PlacementState(scale=default_scale)
        self.gesture: GestureState = GestureState()
        self.adjustment: ManualAdjustment = ManualAdjustment()
        self.snap_enabled: bool = snap_enabled

        # Previous frame's pinch flag, used for edge detection
        self._was_pinching: bool = False

    # --- External Inputs ---

    def reset_for_new_sticker(self) -> None:
        """A freshly loaded sticker always starts visible, centered and detached."""
        self.state = PlacementState(scale=self.default_scale)
        self.gesture = replace(self.gesture, is_dragging=False, drag_offset=(0.0, 0.0), drag_hand=None)
        # _was_pinching is left alone: a pinch already held when the sticker
        # arrives is not a new grab.
        logger.info("Placement reset for new sticker (manual, centered)")

    def set_snap_enabled(self, enabled: bool) -> None:
        became_enabled = enabled and not self.snap_enabled
        self.snap_enabled = enabled

        # Without this the sticker stays orphaned in floating mode until the
        # user happens to grab and release it again.
        if became_enabled and not self.gesture.is_dragging and self.state.anchor_mode is AnchorMode.MANUAL:
            self.state = replace(self.state, anchor_mode=AnchorMode.CHEST)
            logger.info("Snap re-enabled, reacquiring chest anchor")

    def set_adjustment(self, adjustment: ManualAdjustment) -> None:
        self.adjustment = adjustment

    # --- Per-Frame Update ---

    def update(self, reading: GestureReading,
               chest: Optional[AnchorTransform],
               face: Optional[AnchorTransform],
               mapper: CoordinateMapper) -> Optional[str]:
        """
        Advances the state machine by one frame.

        Args:
            reading (GestureReading): This frame's pinch/cursor reading.
            chest (Optional[AnchorTransform]): Chest candidate, or None if unavailable.
            face (Optional[AnchorTransform]): Face candidate, or None if unavailable.
            mapper (CoordinateMapper): Current canvas geometry.

        Returns:
            Optional[str]: Which writer touched the state this frame
                           ('chest', 'face', 'drag') or None if it was held.
        """
        pinch_started = reading.is_pinching and not self._was_pinching
        self._was_pinching = reading.is_pinching

        if self.gesture.is_dragging:
            # Only the hand that grabbed can move or drop the sticker
            held = reading.for_hand(self.gesture.drag_hand)
            if held is None or not held.is_pinching:
                self.gesture = replace(self.gesture, is_pinching=reading.is_pinching, cursor=reading.cursor)
                return self._release(chest, face, mapper)
            self.gesture = replace(self.gesture, is_pinching=True, cursor=held.cursor)
            return self._drag(held.cursor, mapper)

        self.gesture = replace(self.gesture, is_pinching=reading.is_pinching, cursor=reading.cursor)

        if pinch_started and reading.cursor is not None and self._try_grab(reading.cursor, reading.hand, mapper):
            return self._drag(reading.cursor, mapper)

        if self.state.anchor_mode is AnchorMode.CHEST:
            return self._track(chest, AnchorMode.CHEST)
        if self.state.anchor_mode is AnchorMode.FACE:
            return self._track(face, AnchorMode.FACE)
        return None

    def track_pinch(self, reading: GestureReading) -> None:
        """
        Follows the hands on frames with no sticker to place, so a pinch that
        is already held when a sticker appears does not count as a new grab.
        """
        self._was_pinching = reading.is_pinching
        self.gesture = GestureState(is_pinching=reading.is_pinching, cursor=reading.cursor)

    # --- Transitions ---

    def hit_radius(self, mapper: CoordinateMapper) -> float:
        """Grab radius in pixels; grows and shrinks with the rendered sticker."""
        scale, _ = self.adjustment.apply(self.state)
        return self.hit_radius_factor * scale * mapper.width

    def _try_grab(self, cursor: Tuple[float, float], hand: Optional[str], mapper: CoordinateMapper) -> bool:
        pos_x, pos_y = mapper.fraction_to_pixel(self.state.x, self.state.y)
        dist = math.hypot(cursor[0] - pos_x, cursor[1] - pos_y)
        if dist > self.hit_radius(mapper):
            return False

        self.gesture = replace(
            self.gesture,
            is_dragging=True,
            drag_offset=(cursor[0] - pos_x, cursor[1] - pos_y),
            drag_hand=hand,
        )
        # Detach from body tracking immediately. Scale and rotation stay at
        # whatever the anchor last produced, which becomes the manual baseline.
        if self.state.anchor_mode is not AnchorMode.MANUAL:
            logger.debug("Grabbed sticker, detaching from %s", self.state.anchor_mode.value)
        self.state = replace(self.state, anchor_mode=AnchorMode.MANUAL)
        return True

    def _drag(self, cursor: Optional[Tuple[float, float]], mapper: CoordinateMapper) -> Optional[str]:
        if cursor is None:
            return None
        off_x, off_y = self.gesture.drag_offset
        new_x, new_y = mapper.pixel_to_fraction(cursor[0] - off_x, cursor[1] - off_y)
        if not (math.isfinite(new_x) and math.isfinite(new_y)):
            return None
        self.state = replace(self.state, x=new_x, y=new_y)
        return "drag"

    def _release(self, chest: Optional[AnchorTransform], face: Optional[AnchorTransform],
                 mapper: CoordinateMapper) -> Optional[str]:
        self.gesture = replace(self.gesture, is_dragging=False, drag_offset=(0.0, 0.0), drag_hand=None)

        if not self.snap_enabled:
            logger.debug("Released sticker at (%.3f, %.3f), floating", self.state.x, self.state.y)
            return None

        target = self._snap_target(chest, face, mapper)
        if target is None:
            logger.debug("Released sticker outside every capture radius, floating")
            return None

        mode, transform = target
        self.state = PlacementState(
            x=transform.x,
            y=transform.y,
            scale=transform.scale,
            rotation=transform.rotation,
            anchor_mode=mode,
        )
        logger.info("Sticker snapped to %s", mode.value)
        return mode.value

    def _snap_target(self, chest: Optional[AnchorTransform], face: Optional[AnchorTransform],
                     mapper: CoordinateMapper) -> Optional[Tuple[AnchorMode, AnchorTransform]]:
        pos_x, pos_y = mapper.fraction_to_pixel(self.state.x, self.state.y)
        best: Optional[Tuple[AnchorMode, AnchorTransform]] = None
        best_dist = math.inf

        # Chest is checked first so it wins ties
        for mode, transform in ((AnchorMode.CHEST, chest), (AnchorMode.FACE, face)):
            if transform is None:
                continue
            anchor_x, anchor_y = mapper.fraction_to_pixel(transform.x, transform.y)
            dist = math.hypot(pos_x - anchor_x, pos_y - anchor_y)
            capture_radius = self.snap_radius_factor * transform.scale * mapper.width
            if dist <= capture_radius and dist < best_dist:
                best, best_dist = (mode, transform), dist
        return best

    def _track(self, transform: Optional[AnchorTransform], mode: AnchorMode) -> Optional[str]:
        # Unavailable anchor: hold the last transform rather than blank it
        if transform is None or not transform.is_valid():
            return None
        self.state = PlacementState(
            x=transform.x,
            y=transform.y,
            scale=transform.scale,
            rotation=transform.rotation,
            anchor_mode=mode,
        )
        return mode.value
