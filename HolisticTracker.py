import asyncio
import logging
from typing import Any, List, Optional, Sequence

import cv2
import mediapipe as mp
from mediapipe.tasks import python
from mediapipe.tasks.python import vision
import numpy as np

from EngineConfig import DetectorConfig
from Landmarks import Landmark, LandmarkFrame

logger = logging.getLogger(__name__)


def _to_landmarks(raw: Optional[Sequence[Any]]) -> Optional[List[Landmark]]:
    """
    Converts MediaPipe NormalizedLandmark objects into our Landmark type.
    Accepts either a flat list or a per-person list (first person is used).
    """
    if not raw:
        return None
    if isinstance(raw[0], (list, tuple)):
        raw = raw[0]
        if not raw:
            return None
    return [
        Landmark(
            x=float(lm.x),
            y=float(lm.y),
            z=float(getattr(lm, "z", 0.0) or 0.0),
            visibility=getattr(lm, "visibility", None),
        )
        for lm in raw
    ]


class HolisticTracker:
    """
    A wrapper for MediaPipe's Holistic Landmarker solution (pose, face mesh
    and both hands from one model).

    Runs in VIDEO mode: `detect` is synchronous and returns a LandmarkFrame
    for exactly the frame passed in. Model creation is slow, so it happens
    in `initialize`, off the event loop, and at most once.
    """

    def __init__(self, config: DetectorConfig = DetectorConfig()) -> None:
        self.config: DetectorConfig = config
        self.landmarker: Optional[vision.HolisticLandmarker] = None

        # Track timestamps to ensure we only feed strictly increasing times to the graph
        self.latest_timestamp_ms: int = -1

        self._init_lock: asyncio.Lock = asyncio.Lock()
        self._init_attempted: bool = False

    @property
    def is_ready(self) -> bool:
        return self.landmarker is not None

    async def initialize(self) -> bool:
        """
        Loads the model. Safe to call repeatedly: concurrent callers wait for
        the single in-flight load, and a failed load is reported once and
        never retried.

        Returns:
            bool: True once the landmarker is ready.
        """
        async with self._init_lock:
            if self._init_attempted:
                return self.is_ready
            self._init_attempted = True

            try:
                self.landmarker = await asyncio.to_thread(self._create_landmarker)
                logger.info("MediaPipe Holistic Landmarker is ready (model: %s)", self.config.model_path)
            except Exception:
                logger.exception("Failed to initialize MediaPipe Holistic Landmarker")
                self.landmarker = None
            return self.is_ready

    def _create_landmarker(self) -> vision.HolisticLandmarker:
        if self.config.use_gpu:
            try:
                landmarker = self._create_with_delegate(python.BaseOptions.Delegate.GPU)
                logger.info("GPU acceleration enabled")
                return landmarker
            except Exception as e:
                logger.warning("GPU delegate failed (%s), falling back to CPU", e)
        return self._create_with_delegate(python.BaseOptions.Delegate.CPU)

    def _create_with_delegate(self, delegate: Any) -> vision.HolisticLandmarker:
        base_options = python.BaseOptions(model_asset_path=self.config.model_path, delegate=delegate)
        options = vision.HolisticLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            min_face_detection_confidence=self.config.min_face_detection_confidence,
            min_pose_detection_confidence=self.config.min_pose_detection_confidence,
            min_hand_landmarks_confidence=self.config.min_hand_landmarks_confidence,
            output_face_blendshapes=False,
            output_segmentation_mask=False,
        )
        return vision.HolisticLandmarker.create_from_options(options)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> LandmarkFrame:
        """
        Runs the model on one BGR frame.

        Args:
            frame (np.ndarray): The raw image frame from OpenCV (BGR).
            timestamp_ms (int): Frame timestamp in milliseconds.

        Note:
            MediaPipe requires strictly monotonically increasing timestamps.
            A frame with a duplicate or older timestamp is not sent to the
            graph and yields an empty LandmarkFrame.
        """
        if self.landmarker is None:
            raise RuntimeError("HolisticTracker.detect called before initialize() succeeded")

        if timestamp_ms <= self.latest_timestamp_ms:
            logger.debug("Dropping frame with non-increasing timestamp %d", timestamp_ms)
            return LandmarkFrame.empty(timestamp_ms)
        self.latest_timestamp_ms = timestamp_ms

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self.landmarker.detect_for_video(mp_image, timestamp_ms)

        return LandmarkFrame(
            timestamp_ms=timestamp_ms,
            pose=_to_landmarks(result.pose_landmarks),
            left_hand=_to_landmarks(result.left_hand_landmarks),
            right_hand=_to_landmarks(result.right_hand_landmarks),
            face=_to_landmarks(result.face_landmarks),
        )

    def close(self) -> None:
        if self.landmarker is not None:
            self.landmarker.close()
            self.landmarker = None
            logger.info("MediaPipe Holistic Landmarker closed")
