"""
Anchor resolution: turns pose and face landmarks into a candidate sticker
transform for each supported body anchor.

All functions here are pure. They see only the LandmarkFrame passed in and
keep no history, so two calls with the same frame give the same answer.
A resolver that cannot produce a transform returns None ("unavailable");
deciding what to do about that is the state machine's job.
"""
import math
from dataclasses import dataclass
from typing import Optional

from Landmarks import (
    LEFT_EAR,
    LEFT_EYE_OUTER,
    LEFT_SHOULDER,
    NOSE_BRIDGE,
    RIGHT_EAR,
    RIGHT_EYE_OUTER,
    RIGHT_SHOULDER,
    LandmarkFrame,
    get_point,
)
from modules.CoordinateMapper import CoordinateMapper

# Sticker width relative to the measured body span
CHEST_MULTIPLIER: float = 2.5
FACE_EAR_MULTIPLIER: float = 3.0
FACE_EYE_MULTIPLIER: float = 3.5

# Pose points below this visibility are treated as missing
MIN_POSE_VISIBILITY: float = 0.5


@dataclass(frozen=True)
class AnchorTransform:
    """Candidate placement: canvas fractions, width fraction, radians."""
    x: float
    y: float
    scale: float
    rotation: float

    def is_valid(self) -> bool:
        values = (self.x, self.y, self.scale, self.rotation)
        return all(math.isfinite(v) for v in values) and self.scale > 0


@dataclass(frozen=True)
class AnchorMultipliers:
    chest: float = CHEST_MULTIPLIER
    face_ear: float = FACE_EAR_MULTIPLIER
    face_eye: float = FACE_EYE_MULTIPLIER


def _checked(transform: AnchorTransform) -> Optional[AnchorTransform]:
    return transform if transform.is_valid() else None


def resolve_chest(frame: LandmarkFrame, mapper: CoordinateMapper,
                  multipliers: AnchorMultipliers = AnchorMultipliers(),
                  min_visibility: float = MIN_POSE_VISIBILITY) -> Optional[AnchorTransform]:
    """
    Chest anchor from the two shoulders (pose 11 and 12).

    Position is the mirrored shoulder midpoint, rotation follows the
    shoulder line so the sticker leans with the torso, and scale is the
    shoulder span as a fraction of canvas width times the chest multiplier.
    """
    left = get_point(frame.pose, LEFT_SHOULDER, min_visibility)
    right = get_point(frame.pose, RIGHT_SHOULDER, min_visibility)
    if left is None or right is None:
        return None

    left_x, left_y = mapper.landmark_to_pixel(left)
    right_x, right_y = mapper.landmark_to_pixel(right)

    mid_x, mid_y = mapper.pixel_to_fraction((left_x + right_x) / 2, (left_y + right_y) / 2)
    angle = math.atan2(right_y - left_y, right_x - left_x)
    span = math.hypot(right_x - left_x, right_y - left_y)

    return _checked(AnchorTransform(
        x=mid_x,
        y=mid_y,
        scale=span / mapper.width * multipliers.chest,
        rotation=angle,
    ))


def resolve_face(frame: LandmarkFrame, mapper: CoordinateMapper,
                 multipliers: AnchorMultipliers = AnchorMultipliers()) -> Optional[AnchorTransform]:
    """
    Face anchor from the face mesh.

    Position is the nose bridge (168). Rotation comes from the outer eye
    corners (33, 263) plus pi, otherwise the sticker renders upside down
    against the mirrored eye line. Width comes from the ear points
    (234, 454) and falls back to the eye span when the ears are missing.
    """
    bridge = get_point(frame.face, NOSE_BRIDGE)
    left_eye = get_point(frame.face, LEFT_EYE_OUTER)
    right_eye = get_point(frame.face, RIGHT_EYE_OUTER)
    if bridge is None or left_eye is None or right_eye is None:
        return None

    pos_x, pos_y = mapper.pixel_to_fraction(*mapper.landmark_to_pixel(bridge))

    left_eye_x, left_eye_y = mapper.landmark_to_pixel(left_eye)
    right_eye_x, right_eye_y = mapper.landmark_to_pixel(right_eye)
    angle = math.atan2(right_eye_y - left_eye_y, right_eye_x - left_eye_x) + math.pi

    left_ear = get_point(frame.face, LEFT_EAR)
    right_ear = get_point(frame.face, RIGHT_EAR)
    if left_ear is not None and right_ear is not None:
        ear_span = abs(mapper.landmark_to_pixel(right_ear)[0] - mapper.landmark_to_pixel(left_ear)[0])
        width_px = ear_span * multipliers.face_ear
    else:
        width_px = abs(right_eye_x - left_eye_x) * multipliers.face_eye

    return _checked(AnchorTransform(
        x=pos_x,
        y=pos_y,
        scale=width_px / mapper.width,
        rotation=angle,
    ))
