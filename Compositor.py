from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from Landmarks import (
    HAND_CONNECTIONS,
    INDEX_TIP,
    LEFT_SHOULDER,
    NOSE,
    RIGHT_SHOULDER,
    UPPER_BODY_CONNECTIONS,
    UPPER_BODY_INDICES,
    LandmarkFrame,
    LandmarkList,
)
from modules.CoordinateMapper import CoordinateMapper
from PlacementEngine import GestureState, ManualAdjustment, PlacementState
from StickerLoader import StickerAsset

Color = Tuple[int, int, int]
Point = Tuple[float, float]

# --- Overlay Styling (BGR) ---
WHITE: Color = (255, 255, 255)
RED: Color = (0, 0, 255)
CYAN: Color = (255, 255, 0)
SKELETON_LINE_WIDTH: int = 2
SKELETON_DOT_RADIUS: int = 3
DEBUG_DOT_RADIUS: int = 8
CURSOR_RADIUS_PINCH: int = 15
CURSOR_RADIUS_HOVER: int = 10


def _pt(p: Point) -> Tuple[int, int]:
    return int(round(p[0])), int(round(p[1]))


class Surface:
    """
    A 2D raster drawing surface backed by a BGR numpy array.

    Exposes the handful of primitives the compositor needs: clear, resize,
    affine image blit with alpha, lines and circles.
    """

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self.pixels: np.ndarray = np.zeros((height, width, 3), dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def resize_to(self, width: int, height: int) -> bool:
        """Reallocates the buffer if the size changed. Returns True on change."""
        if (width, height) == (self.width, self.height):
            return False
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)
        return True

    def clear(self) -> None:
        self.pixels[:] = 0

    def draw_background(self, image_bgr: np.ndarray) -> None:
        if image_bgr.shape[:2] != self.pixels.shape[:2]:
            image_bgr = cv2.resize(image_bgr, (self.width, self.height), interpolation=cv2.INTER_LINEAR)
        np.copyto(self.pixels, image_bgr[:, :, :3])

    def draw_image(self, image_bgra: np.ndarray, matrix: np.ndarray) -> None:
        """
        Blits a BGRA image through a 2x3 affine matrix (source -> surface
        pixels), blending by its alpha channel.
        """
        warped = cv2.warpAffine(
            image_bgra, matrix, (self.width, self.height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )
        alpha = warped[:, :, 3:4].astype(np.float32) / 255.0
        if not alpha.any():
            return
        blended = warped[:, :, :3].astype(np.float32) * alpha + self.pixels.astype(np.float32) * (1 - alpha)
        self.pixels[:] = blended.astype(np.uint8)

    def draw_line(self, start: Point, end: Point, color: Color, thickness: int = 1) -> None:
        cv2.line(self.pixels, _pt(start), _pt(end), color, thickness, cv2.LINE_AA)

    def draw_circle(self, center: Point, radius: int, color: Color,
                    thickness: int = -1, opacity: float = 1.0) -> None:
        """Filled when thickness is -1. opacity < 1 blends over what is below."""
        if opacity >= 1.0:
            cv2.circle(self.pixels, _pt(center), radius, color, thickness, cv2.LINE_AA)
            return
        layer = self.pixels.copy()
        cv2.circle(layer, _pt(center), radius, color, thickness, cv2.LINE_AA)
        cv2.addWeighted(layer, opacity, self.pixels, 1 - opacity, 0, dst=self.pixels)


class Compositor:
    """
    Draws one output frame, strictly in this order:
        1. Mirrored video background
        2. Sticker (or debug landmark dots when no sticker is active)
        3. Skeleton overlay, above the sticker so the hands stay visible
        4. Gesture cursor
    """

    def sticker_size(self, asset: StickerAsset, state: PlacementState,
                     adjustment: ManualAdjustment, canvas_width: int) -> Tuple[float, float]:
        """Rendered (width, height) in pixels; height always follows the asset aspect ratio."""
        scale, _ = adjustment.apply(state)
        width = scale * canvas_width
        return width, width * asset.aspect_ratio

    def sticker_matrix(self, asset: StickerAsset, state: PlacementState,
                       adjustment: ManualAdjustment, mapper: CoordinateMapper) -> np.ndarray:
        """
        Affine map from sticker pixels to canvas pixels.

        Equivalent to: translate to the sticker position, mirror
        horizontally, rotate, then draw the image centered at the origin
        with its rendered size.
        """
        width, height = self.sticker_size(asset, state, adjustment, mapper.width)
        _, angle = adjustment.apply(state)
        cx, cy = mapper.fraction_to_pixel(state.x, state.y)

        c, s = np.cos(angle), np.sin(angle)
        mirror_rotate = np.array([[-c, s], [s, c]], dtype=np.float64)
        size = np.diag([width / asset.width, height / asset.height])

        linear = mirror_rotate @ size
        offset = np.array([cx, cy]) - mirror_rotate @ np.array([width / 2, height / 2])
        return np.hstack([linear, offset.reshape(2, 1)])

    def compose(self, surface: Surface, video_bgr: np.ndarray, landmarks: LandmarkFrame,
                placement: PlacementState, adjustment: ManualAdjustment,
                sticker: Optional[StickerAsset], gesture: GestureState) -> None:
        mapper = CoordinateMapper(surface.width, surface.height)

        surface.clear()
        surface.draw_background(cv2.flip(video_bgr, 1))

        if sticker is not None:
            surface.draw_image(sticker.image, self.sticker_matrix(sticker, placement, adjustment, mapper))
        else:
            self.draw_debug_landmarks(surface, landmarks, mapper)

        self.draw_skeleton(surface, landmarks, mapper)
        self.draw_cursor(surface, gesture)

    def draw_skeleton(self, surface: Surface, landmarks: LandmarkFrame, mapper: CoordinateMapper) -> None:
        # Upper body only: shoulders, elbows, wrists
        if landmarks.pose:
            self._draw_connections(surface, landmarks.pose, UPPER_BODY_CONNECTIONS, mapper)
            self._draw_dots(surface, landmarks.pose, UPPER_BODY_INDICES, mapper, SKELETON_DOT_RADIUS)

        for _, hand in landmarks.hands():
            self._draw_connections(surface, hand, HAND_CONNECTIONS, mapper)
            self._draw_dots(surface, hand, range(len(hand)), mapper, SKELETON_DOT_RADIUS)

    def draw_cursor(self, surface: Surface, gesture: GestureState) -> None:
        if gesture.cursor is None:
            return
        if gesture.is_pinching:
            surface.draw_circle(gesture.cursor, CURSOR_RADIUS_PINCH, CYAN, opacity=0.8)
            surface.draw_circle(gesture.cursor, CURSOR_RADIUS_PINCH, CYAN, thickness=2)
        else:
            surface.draw_circle(gesture.cursor, CURSOR_RADIUS_HOVER, WHITE, opacity=0.5)
            surface.draw_circle(gesture.cursor, CURSOR_RADIUS_HOVER, WHITE, thickness=2, opacity=0.8)

    def draw_debug_landmarks(self, surface: Surface, landmarks: LandmarkFrame, mapper: CoordinateMapper) -> None:
        """Nose, shoulders and index finger tips; shown while no sticker is active."""
        if landmarks.pose:
            self._draw_dots(surface, landmarks.pose, (NOSE, LEFT_SHOULDER, RIGHT_SHOULDER), mapper, DEBUG_DOT_RADIUS)
        for _, hand in landmarks.hands():
            self._draw_dots(surface, hand, (INDEX_TIP,), mapper, DEBUG_DOT_RADIUS)

    def _draw_connections(self, surface: Surface, points: LandmarkList,
                          connections: Sequence[Tuple[int, int]], mapper: CoordinateMapper) -> None:
        for start_idx, end_idx in connections:
            if start_idx >= len(points) or end_idx >= len(points):
                continue
            surface.draw_line(mapper.landmark_to_pixel(points[start_idx]),
                              mapper.landmark_to_pixel(points[end_idx]),
                              WHITE, SKELETON_LINE_WIDTH)

    def _draw_dots(self, surface: Surface, points: LandmarkList, indices: Sequence[int],
                   mapper: CoordinateMapper, radius: int) -> None:
        for idx in indices:
            if idx < len(points):
                surface.draw_circle(mapper.landmark_to_pixel(points[idx]), radius, RED)
