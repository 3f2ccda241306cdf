import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from EngineConfig import CameraConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoFrame:
    """A BGR image plus the timestamp it was captured at."""
    image: np.ndarray
    timestamp_ms: int


class Capture:
    """
    A wrapper class for cv2.VideoCapture that applies the configured camera
    settings and hands out timestamped frames.

    Webcam frames are stamped with a monotonic clock. Video files use the
    container's position, so a stalled or looping file yields repeated
    timestamps that the frame pump can skip.
    """

    def __init__(self, config: CameraConfig = CameraConfig()) -> None:
        """
        Initializes the video capture device with specific hardware flags and OpenCV properties.

        Raises:
            IOError: If the webcam or video file cannot be opened.
        """
        self.config: CameraConfig = config
        self.from_file: bool = bool(config.video_path)

        if self.from_file:
            self.cap: cv2.VideoCapture = cv2.VideoCapture(config.video_path)
        else:
            # Enforce driver-level settings (Linux only) before OpenCV grabs the handle
            if config.v4l2_controls:
                self.force_camera_settings()

            self.cap = cv2.VideoCapture(config.index)

            # Note: CODEC must be set first for some cameras to accept higher resolutions
            self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter.fourcc(*config.codec))
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.height)
            self.cap.set(cv2.CAP_PROP_FPS, config.fps)

        if not self.cap.isOpened():
            source = config.video_path or f"webcam with ID {config.index}"
            raise IOError(f"Cannot open {source}")

        self._t0: float = time.monotonic()

    def force_camera_settings(self) -> None:
        """
        Executes v4l2-ctl to force exposure settings on /dev/video<index>.

        1. Disables exposure dynamic framerate (prevents FPS drops in low light).
        2. Sets auto-exposure mode (usually 3 = Aperture Priority Mode).
        """
        if not sys.platform.startswith("linux"):
            logger.debug("Skipping v4l2 controls on %s", sys.platform)
            return
        device = f"/dev/video{self.config.index}"
        os.system(f"v4l2-ctl -d {device} --set-ctrl=exposure_dynamic_framerate=0")
        os.system(f"v4l2-ctl -d {device} --set-ctrl=auto_exposure=3")

    def read(self) -> Optional[VideoFrame]:
        """
        Reads the next frame from the video stream.

        Returns:
            Optional[VideoFrame]: The frame, or None if the read failed (end of stream).
        """
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return None

        if self.from_file:
            timestamp_ms = int(self.cap.get(cv2.CAP_PROP_POS_MSEC))
        else:
            timestamp_ms = int((time.monotonic() - self._t0) * 1000)
        return VideoFrame(image=frame, timestamp_ms=timestamp_ms)

    def release(self) -> None:
        """
        Safely releases the video capture resource to free up the hardware.
        """
        if self.cap.isOpened():
            self.cap.release()
