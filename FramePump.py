import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np

from AnchorResolver import AnchorMultipliers, AnchorTransform, resolve_chest, resolve_face
from Capture import VideoFrame
from Compositor import Compositor, Surface
from EngineConfig import EngineConfig
from GestureEngine import GestureEngine
from Landmarks import LandmarkFrame
from modules.CoordinateMapper import CoordinateMapper
from modules.LandmarkSmoother import LandmarkSmoother
from PlacementEngine import ManualAdjustment, PlacementStateMachine
from StickerLoader import StickerAsset, StickerLoader, StickerLoadError

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def read(self) -> Optional[VideoFrame]: ...


class LandmarkSource(Protocol):
    @property
    def is_ready(self) -> bool: ...

    async def initialize(self) -> bool: ...

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> LandmarkFrame: ...

    def close(self) -> None: ...


FrameListener = Callable[["FramePump"], None]


class FramePump:
    """
    The render loop: one frame in, one composited frame out.

    Per cycle:
        A. Acquire a frame (skip if its timestamp has not advanced).
        B. Resize the surface to the video resolution if it changed.
        C. Detect landmarks (a failing detector counts as "nothing found").
        D. Gesture + anchors -> placement state machine.
        E. Composite and notify listeners.

    `step()` runs exactly one cycle and is what tests drive; `run()` loops
    over it on the event loop until `stop()` or `close()`.
    """

    def __init__(self, source: FrameSource, detector: LandmarkSource,
                 config: EngineConfig = EngineConfig(),
                 loader: Optional[StickerLoader] = None,
                 compositor: Optional[Compositor] = None) -> None:
        self.source: FrameSource = source
        self.detector: LandmarkSource = detector
        self.config: EngineConfig = config
        self.loader: StickerLoader = loader or StickerLoader()
        self.compositor: Compositor = compositor or Compositor()

        placement = config.placement
        self.placement: PlacementStateMachine = PlacementStateMachine(
            hit_radius_factor=placement.hit_radius_factor,
            snap_radius_factor=placement.snap_radius_factor,
            default_scale=placement.default_scale,
            snap_enabled=placement.snap_enabled,
        )
        self.multipliers: AnchorMultipliers = AnchorMultipliers(
            chest=placement.chest_multiplier,
            face_ear=placement.face_ear_multiplier,
            face_eye=placement.face_eye_multiplier,
        )
        self.gestures: GestureEngine = GestureEngine(pinch_threshold=config.gesture.pinch_threshold)
        self.smoother: LandmarkSmoother = LandmarkSmoother(alpha=config.render.smoothing_alpha)
        self.surface: Surface = Surface()

        self.sticker: Optional[StickerAsset] = None
        self.landmarks: Optional[LandmarkFrame] = None
        self.last_writer: Optional[str] = None
        self.frame_count: int = 0

        self._last_timestamp_ms: Optional[int] = None
        self._requested_sticker: Optional[str] = None
        self._load_generation: int = 0
        self._load_task: Optional[asyncio.Task] = None
        self._listeners: List[FrameListener] = []
        self._running: bool = False
        self._closed: bool = False

    # --- Engine Inputs ---

    @property
    def is_ready(self) -> bool:
        return self.detector.is_ready

    def set_sticker(self, identifier: Optional[str]) -> None:
        """
        Requests a new active sticker. Loading is asynchronous; the previous
        sticker stays on screen until the new one is decoded. Passing None
        removes the sticker immediately.

        Requesting the identifier that is already active (or loading) is a
        no-op: the sticker keeps its current placement rather than being
        reset as a new sticker.
        """
        if identifier == self._requested_sticker:
            return
        self._requested_sticker = identifier
        self._load_generation += 1

        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

        if identifier is None:
            self.sticker = None
            return
        if self._closed:
            return

        self._load_task = asyncio.get_running_loop().create_task(
            self._load_sticker(identifier, self._load_generation))

    def set_snap_enabled(self, enabled: bool) -> None:
        self.placement.set_snap_enabled(bool(enabled))

    def set_manual_adjustment(self, scale_multiplier: float, rotation_degrees: float) -> None:
        self.placement.set_adjustment(ManualAdjustment(
            scale_multiplier=float(scale_multiplier),
            rotation_offset_degrees=float(rotation_degrees),
        ))

    def add_listener(self, listener: FrameListener) -> None:
        self._listeners.append(listener)

    async def wait_for_sticker(self) -> None:
        """Awaits the in-flight sticker load, if any."""
        task = self._load_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _load_sticker(self, identifier: str, generation: int) -> None:
        try:
            asset = await self.loader.load(identifier)
        except StickerLoadError as e:
            if self._is_stale(generation):
                return
            # Fail closed: never keep showing an old sticker for a broken request
            logger.error("Failed to load sticker: %s", e)
            self.sticker = None
            self._requested_sticker = None
            return

        if self._is_stale(generation):
            logger.debug("Discarding stale sticker load: %s", identifier[:64])
            return

        self.sticker = asset
        self.placement.reset_for_new_sticker()

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._load_generation

    # --- Frame Loop ---

    def step(self) -> bool:
        """
        Runs one frame cycle.

        Returns:
            bool: True if a new frame was processed and drawn.
        """
        if self._closed or not self.detector.is_ready:
            return False

        # A. ACQUIRE FRAME
        frame = self.source.read()
        if frame is None:
            logger.warning("Failed to grab frame, stopping frame pump")
            self._running = False
            return False

        # Stalled or paused feed: nothing new to detect or draw
        if self._last_timestamp_ms is not None and frame.timestamp_ms <= self._last_timestamp_ms:
            return False
        self._last_timestamp_ms = frame.timestamp_ms

        # B. SURFACE SIZE
        height, width = frame.image.shape[:2]
        if self.surface.resize_to(width, height):
            # New source geometry: old landmark history no longer lines up
            self.smoother.reset()
            logger.info("Drawing surface resized to %dx%d", width, height)
        mapper = CoordinateMapper(width, height)

        # C. DETECTION
        try:
            landmarks = self.detector.detect(frame.image, frame.timestamp_ms)
        except Exception as e:
            logger.warning("Detection failed at %d ms: %s", frame.timestamp_ms, e)
            landmarks = LandmarkFrame.empty(frame.timestamp_ms)
        landmarks = self.smoother.smooth(landmarks)
        self.landmarks = landmarks

        # D. GESTURE + ANCHORS -> PLACEMENT
        reading = self.gestures.detect(landmarks, mapper)
        chest, face = self.resolve_anchors(landmarks, mapper)

        if self.sticker is not None:
            self.last_writer = self.placement.update(reading, chest, face, mapper)
        else:
            self.last_writer = None
            self.placement.track_pinch(reading)
        gesture = self.placement.gesture

        # E. COMPOSITE
        self.compositor.compose(
            self.surface, frame.image, landmarks,
            self.placement.state, self.placement.adjustment,
            self.sticker, gesture,
        )
        self.frame_count += 1

        for listener in list(self._listeners):
            listener(self)
        return True

    def resolve_anchors(self, landmarks: LandmarkFrame, mapper: CoordinateMapper):
        chest: Optional[AnchorTransform] = resolve_chest(
            landmarks, mapper, self.multipliers, self.config.detector.min_pose_visibility)
        face: Optional[AnchorTransform] = resolve_face(landmarks, mapper, self.multipliers)
        return chest, face

    async def run(self) -> None:
        """
        Waits for the detector to become ready, then pumps frames until
        stopped. Never starts if model loading failed.
        """
        if not await self.detector.initialize():
            logger.error("Detector is not ready, frame pump not started")
            return

        self._running = True
        logger.info("Frame pump running")
        while self._running and not self._closed:
            processed = self.step()
            # Yield so WebSocket traffic and sticker loads get serviced
            await asyncio.sleep(0 if processed else self.config.render.idle_sleep_seconds)
        logger.info("Frame pump stopped after %d frames", self.frame_count)

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        """Stops the loop, drops any pending sticker load and releases the detector."""
        if self._closed:
            return
        self._closed = True
        self._running = False
        self._load_generation += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self.smoother.reset()
        self.detector.close()

    def snapshot(self) -> Dict[str, Any]:
        """Telemetry for external listeners."""
        adjustment = self.placement.adjustment
        return {
            "timestamp": self._last_timestamp_ms,
            "ready": self.is_ready,
            "sticker": None if self.sticker is None else self.sticker.identifier[:64],
            "snap": self.placement.snap_enabled,
            "placement": self.placement.state.to_dict(),
            "gesture": self.placement.gesture.to_dict(),
            "adjustment": {
                "scale": adjustment.scale_multiplier,
                "rotation": adjustment.rotation_offset_degrees,
            },
        }
