"""Synthetic landmark frames and stickers for driving the engine without a camera or model."""
from typing import List, Optional, Tuple

import numpy as np

from Landmarks import (
    INDEX_TIP,
    LEFT_EAR,
    LEFT_EYE_OUTER,
    LEFT_SHOULDER,
    NOSE,
    NOSE_BRIDGE,
    RIGHT_EAR,
    RIGHT_EYE_OUTER,
    RIGHT_SHOULDER,
    THUMB_TIP,
    Landmark,
    LandmarkFrame,
)
from StickerLoader import StickerAsset

Point = Tuple[float, float]

FILLER = Landmark(x=0.9, y=0.95)


def make_hand(thumb: Point, index: Point) -> List[Landmark]:
    points = [FILLER] * 21
    points[THUMB_TIP] = Landmark(*thumb)
    points[INDEX_TIP] = Landmark(*index)
    return points


def pinching_hand(at: Point) -> List[Landmark]:
    return make_hand(at, at)


def open_hand(at: Point) -> List[Landmark]:
    return make_hand((at[0] - 0.1, at[1]), (at[0] + 0.1, at[1]))


def make_pose(left_shoulder: Point = (0.6, 0.4), right_shoulder: Point = (0.4, 0.4),
              visibility: float = 1.0, nose: Point = (0.5, 0.2)) -> List[Landmark]:
    points = [Landmark(FILLER.x, FILLER.y, visibility=visibility)] * 33
    points[NOSE] = Landmark(*nose, visibility=visibility)
    points[LEFT_SHOULDER] = Landmark(*left_shoulder, visibility=visibility)
    points[RIGHT_SHOULDER] = Landmark(*right_shoulder, visibility=visibility)
    return points


def make_face(bridge: Point = (0.5, 0.3), left_eye: Point = (0.55, 0.3),
              right_eye: Point = (0.45, 0.3), left_ear: Optional[Point] = (0.6, 0.3),
              right_ear: Optional[Point] = (0.4, 0.3)) -> List[Landmark]:
    # Without ears the mesh is cut short so the ear indices are missing
    size = 478 if left_ear is not None and right_ear is not None else RIGHT_EYE_OUTER + 1
    points = [FILLER] * size
    points[NOSE_BRIDGE] = Landmark(*bridge)
    points[LEFT_EYE_OUTER] = Landmark(*left_eye)
    points[RIGHT_EYE_OUTER] = Landmark(*right_eye)
    if size > RIGHT_EAR:
        points[LEFT_EAR] = Landmark(*left_ear)
        points[RIGHT_EAR] = Landmark(*right_ear)
    return points


def frame_with(timestamp_ms: int = 0, **streams) -> LandmarkFrame:
    return LandmarkFrame(timestamp_ms=timestamp_ms, **streams)


def make_asset(identifier: str = "sticker.png", width: int = 20, height: int = 10,
               color=(0, 255, 0, 255)) -> StickerAsset:
    image = np.zeros((height, width, 4), dtype=np.uint8)
    image[:, :] = color
    return StickerAsset(identifier=identifier, image=image)
