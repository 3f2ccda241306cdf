import argparse
import asyncio
import contextlib
import logging
import sys
from dataclasses import replace
from typing import List, Optional

import cv2

from Capture import Capture
from EngineConfig import EngineConfig, load_config
from FramePump import FramePump
from HolisticTracker import HolisticTracker
from Server import Server

logger = logging.getLogger("sticker_engine")

# Manual adjustment step sizes for the keyboard controls
SCALE_STEP: float = 1.1
ROTATION_STEP_DEG: float = 5.0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Body-anchored AR sticker overlay")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--sticker", help="Initial sticker (path, URL or data URI)")
    parser.add_argument("--camera", type=int, help="Camera index (overrides config)")
    parser.add_argument("--video", help="Read from a video file instead of the camera")
    parser.add_argument("--snap", action="store_true", help="Start with snap-to-body enabled")
    parser.add_argument("--no-server", action="store_true", help="Disable the WebSocket control server")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING...)")
    return parser.parse_args(argv)


def handle_key(pump: FramePump, key: int) -> bool:
    """
    Keyboard controls for the preview window. Returns False to quit.

        q      quit
        s      toggle snap-to-body
        + / -  scale sticker up / down
        [ / ]  rotate sticker left / right
        0      reset manual adjustment
        x      remove the sticker
    """
    if key == ord("q"):
        return False

    adjustment = pump.placement.adjustment
    scale = adjustment.scale_multiplier
    rotation = adjustment.rotation_offset_degrees

    if key == ord("s"):
        pump.set_snap_enabled(not pump.placement.snap_enabled)
        logger.info("Snap to body: %s", "ON" if pump.placement.snap_enabled else "OFF")
    elif key in (ord("+"), ord("=")):
        pump.set_manual_adjustment(scale * SCALE_STEP, rotation)
    elif key == ord("-"):
        pump.set_manual_adjustment(scale / SCALE_STEP, rotation)
    elif key == ord("["):
        pump.set_manual_adjustment(scale, rotation - ROTATION_STEP_DEG)
    elif key == ord("]"):
        pump.set_manual_adjustment(scale, rotation + ROTATION_STEP_DEG)
    elif key == ord("0"):
        pump.set_manual_adjustment(1.0, 0.0)
    elif key == ord("x"):
        pump.set_sticker(None)
    return True


def build_window_listener(config: EngineConfig):
    def show(pump: FramePump) -> None:
        cv2.imshow(config.render.window_name, pump.surface.pixels)
        key = cv2.waitKey(1) & 0xFF
        if key != 0xFF and not handle_key(pump, key):
            pump.stop()
    return show


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Architecture:
        1. Capture: Grabs frames from the webcam (Synchronous/Blocking CV2).
        2. Detection: MediaPipe Holistic, loaded asynchronously before the pump starts.
        3. Placement: Gestures + anchors drive the sticker state machine.
        4. Output: Preview window plus telemetry to WebSocket clients.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    camera = config.camera
    if args.camera is not None or args.video:
        camera = replace(camera,
                         index=args.camera if args.camera is not None else camera.index,
                         video_path=args.video or camera.video_path)
    if args.snap:
        config = replace(config, placement=replace(config.placement, snap_enabled=True))

    # --- 1. COMPONENT INITIALIZATION ---
    try:
        capture = Capture(camera)
    except IOError as e:
        logger.critical("%s", e)
        return 1

    tracker = HolisticTracker(config.detector)
    pump = FramePump(capture, tracker, config)
    server = Server(pump)

    if config.render.show_window:
        pump.add_listener(build_window_listener(config))
    if args.sticker:
        pump.set_sticker(args.sticker)

    # --- 2. MAIN EVENT LOOP ---
    try:
        if config.server.enabled and not args.no_server:
            pump.add_listener(server.broadcast)
            async with server.serve(config.server.host, config.server.port):
                logger.info("Control server on ws://%s:%d", config.server.host, config.server.port)
                await pump.run()
        else:
            await pump.run()
    except KeyboardInterrupt:
        logger.info("Stopping sticker engine...")
    finally:
        # --- 3. CLEANUP ---
        detector_ok = tracker.is_ready
        pump.close()
        capture.release()
        if config.render.show_window:
            with contextlib.suppress(cv2.error):
                cv2.destroyAllWindows()
        logger.info("Camera released.")

    return 0 if detector_ok else 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
