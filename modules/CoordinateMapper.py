from typing import Tuple

from Landmarks import Landmark


class CoordinateMapper:
    """
    Converts raw normalized landmark coordinates (0.0 to 1.0, camera view)
    into the mirrored pixel space of the displayed canvas.

    This class performs three main functions:
    1. Mirroring: Flips the X-axis so the interaction feels like a mirror.
    2. Scaling: Expands normalized values to canvas pixels.
    3. Fractions: Converts between canvas pixels and canvas fractions, the
       unit the placement state is stored in.
    """

    def __init__(self, width: int, height: int) -> None:
        """
        Args:
            width (int): The width of the drawing surface in pixels.
            height (int): The height of the drawing surface in pixels.
        """
        self.width: int = width
        self.height: int = height

    def to_pixel(self, x_raw: float, y_raw: float) -> Tuple[float, float]:
        """
        Maps a raw normalized point to mirrored canvas pixels.

        Args:
            x_raw (float): Normalized X from tracker (0.0 left -> 1.0 right).
            y_raw (float): Normalized Y from tracker (0.0 top -> 1.0 bottom).

        Returns:
            Tuple[float, float]: (x, y) in pixels, X mirrored.
        """
        # Negative direction: camera left becomes screen right, matching the
        # horizontally flipped video the user sees.
        x: float = (1.0 - x_raw) * self.width
        y: float = y_raw * self.height
        return x, y

    def landmark_to_pixel(self, landmark: Landmark) -> Tuple[float, float]:
        return self.to_pixel(landmark.x, landmark.y)

    def pixel_to_fraction(self, x_px: float, y_px: float) -> Tuple[float, float]:
        return x_px / self.width, y_px / self.height

    def fraction_to_pixel(self, x_frac: float, y_frac: float) -> Tuple[float, float]:
        return x_frac * self.width, y_frac * self.height
