import math
import unittest

from AnchorResolver import AnchorTransform
from GestureEngine import GestureReading, HandReading
from modules.CoordinateMapper import CoordinateMapper
from PlacementEngine import (
    AnchorMode,
    ManualAdjustment,
    PlacementState,
    PlacementStateMachine,
)

CHEST = AnchorTransform(x=0.62, y=0.6, scale=0.5, rotation=0.1)
FACE = AnchorTransform(x=0.5, y=0.3, scale=0.4, rotation=math.pi)


def reading(*hands):
    """Builds a reading from (label, pinching, cursor) tuples, preferred hand first."""
    readings = tuple(HandReading(label, pinching, cursor) for label, pinching, cursor in hands)
    if not readings:
        return GestureReading()
    primary = next((h for h in readings if h.is_pinching), readings[0])
    return GestureReading(primary.is_pinching, primary.cursor, primary.label, readings)


def pinch(x, y, hand="Right"):
    return reading((hand, True, (x, y)))


def hover(x, y, hand="Right"):
    return reading((hand, False, (x, y)))


class TestPlacementStateMachine(unittest.TestCase):
    """Grab, drag, release, snap and anchor tracking"""

    def setUp(self):
        # 1000x500 canvas: the fresh sticker sits at (500, 250) with a 150px grab radius
        self.mapper = CoordinateMapper(1000, 500)
        self.machine = PlacementStateMachine()

    def drag_to(self, start, end, chest=None, face=None):
        self.machine.update(pinch(*start), chest, face, self.mapper)
        self.machine.update(pinch(*end), chest, face, self.mapper)
        return self.machine.update(hover(*end), chest, face, self.mapper)

    def test_initial_state(self):
        self.assertEqual(self.machine.state, PlacementState())
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)

    def test_hit_radius_is_proportional(self):
        self.assertAlmostEqual(self.machine.hit_radius(self.mapper), 150)
        self.machine.set_adjustment(ManualAdjustment(scale_multiplier=2.0))
        self.assertAlmostEqual(self.machine.hit_radius(self.mapper), 300)

    def test_grab_keeps_offset(self):
        writer = self.machine.update(pinch(520, 260), None, None, self.mapper)
        self.assertEqual(writer, "drag")
        self.assertTrue(self.machine.gesture.is_dragging)
        self.assertEqual(self.machine.gesture.drag_offset, (20, 10))
        # The grab itself does not move the sticker
        self.assertAlmostEqual(self.machine.state.x, 0.5)
        self.assertAlmostEqual(self.machine.state.y, 0.5)

    def test_pinch_outside_hit_radius_misses(self):
        writer = self.machine.update(pinch(900, 450), None, None, self.mapper)
        self.assertIsNone(writer)
        self.assertFalse(self.machine.gesture.is_dragging)

    def test_held_pinch_moving_onto_sticker_does_not_grab(self):
        self.machine.update(pinch(900, 450), None, None, self.mapper)
        self.machine.update(pinch(500, 250), None, None, self.mapper)
        self.assertFalse(self.machine.gesture.is_dragging)

    def test_release_without_snap_floats_at_drop(self):
        writer = self.drag_to((520, 260), (620, 310), chest=CHEST)
        self.assertIsNone(writer)
        self.assertFalse(self.machine.gesture.is_dragging)
        self.assertAlmostEqual(self.machine.state.x, 0.6)
        self.assertAlmostEqual(self.machine.state.y, 0.6)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)

    def test_release_with_snap_takes_chest_transform(self):
        self.machine.set_snap_enabled(True)
        # Watchdog moved us to chest; grab detaches again
        writer = self.drag_to((520, 260), (620, 310), chest=CHEST)
        self.assertEqual(writer, "chest")
        self.assertEqual(self.machine.state, PlacementState(
            x=CHEST.x, y=CHEST.y, scale=CHEST.scale, rotation=CHEST.rotation,
            anchor_mode=AnchorMode.CHEST,
        ))

    def test_release_picks_closest_anchor(self):
        self.machine.set_snap_enabled(True)
        face = AnchorTransform(x=0.6, y=0.62, scale=0.5, rotation=0.0)
        chest = AnchorTransform(x=0.9, y=0.6, scale=0.5, rotation=0.0)
        self.drag_to((500, 250), (600, 300), chest=chest, face=face)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.FACE)

    def test_chest_wins_ties(self):
        self.machine.set_snap_enabled(True)
        face = AnchorTransform(x=0.75, y=0.6, scale=0.5, rotation=0.0)
        chest = AnchorTransform(x=0.5, y=0.6, scale=0.5, rotation=0.0)
        self.drag_to((500, 250), (625, 300), chest=chest, face=face)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.CHEST)

    def test_release_outside_capture_radius_floats(self):
        self.machine.set_snap_enabled(True)
        far_chest = AnchorTransform(x=0.1, y=0.1, scale=0.05, rotation=0.0)
        writer = self.drag_to((500, 250), (600, 300), chest=far_chest)
        self.assertIsNone(writer)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)
        self.assertAlmostEqual(self.machine.state.x, 0.6)

    def test_tracking_follows_active_anchor_only(self):
        self.machine.set_snap_enabled(True)
        writer = self.machine.update(GestureReading(), CHEST, FACE, self.mapper)
        self.assertEqual(writer, "chest")
        self.assertEqual((self.machine.state.x, self.machine.state.y), (CHEST.x, CHEST.y))

    def test_at_most_one_writer_per_frame(self):
        self.machine.set_snap_enabled(True)
        readings = [GestureReading(), pinch(620, 300), pinch(700, 300), hover(700, 300), GestureReading()]
        for reading in readings:
            writer = self.machine.update(reading, CHEST, FACE, self.mapper)
            self.assertIn(writer, (None, "chest", "face", "drag"))
            self.assertIn(self.machine.state.anchor_mode, tuple(AnchorMode))

    def test_hold_on_missing_anchor(self):
        self.machine.set_snap_enabled(True)
        self.machine.update(GestureReading(), CHEST, None, self.mapper)
        held = self.machine.state
        for _ in range(5):
            self.assertIsNone(self.machine.update(GestureReading(), None, FACE, self.mapper))
            self.assertIs(self.machine.state, held)

    def test_invalid_anchor_is_held(self):
        self.machine.set_snap_enabled(True)
        self.machine.update(GestureReading(), CHEST, None, self.mapper)
        held = self.machine.state
        broken = AnchorTransform(x=float("nan"), y=0.5, scale=0.3, rotation=0.0)
        self.machine.update(GestureReading(), broken, None, self.mapper)
        self.assertIs(self.machine.state, held)

    def test_grab_detaches_and_keeps_anchor_size(self):
        self.machine.set_snap_enabled(True)
        self.machine.update(GestureReading(), CHEST, None, self.mapper)
        self.machine.update(pinch(620, 300), CHEST, None, self.mapper)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)
        self.assertEqual(self.machine.state.scale, CHEST.scale)
        self.assertEqual(self.machine.state.rotation, CHEST.rotation)

    def test_reenabling_snap_reacquires_chest(self):
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)
        self.machine.set_snap_enabled(True)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.CHEST)
        self.assertEqual(self.machine.update(GestureReading(), CHEST, None, self.mapper), "chest")

    def test_reenabling_snap_while_dragging_waits_for_release(self):
        self.machine.update(pinch(500, 250), None, None, self.mapper)
        self.machine.set_snap_enabled(True)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.MANUAL)

    def test_disabling_snap_keeps_tracking(self):
        self.machine.set_snap_enabled(True)
        self.machine.set_snap_enabled(False)
        self.assertIs(self.machine.state.anchor_mode, AnchorMode.CHEST)

    def test_reset_for_new_sticker(self):
        self.machine.state = PlacementState(x=0.2, y=0.3, scale=0.9, rotation=1.0, anchor_mode=AnchorMode.FACE)
        self.machine.reset_for_new_sticker()
        self.assertEqual(self.machine.state, PlacementState())

    def test_adjustment_is_never_stored(self):
        before = self.machine.state
        self.machine.set_adjustment(ManualAdjustment(scale_multiplier=1.5, rotation_offset_degrees=30))
        self.machine.update(GestureReading(), None, None, self.mapper)
        self.machine.set_adjustment(ManualAdjustment())
        self.assertEqual(self.machine.state, before)


class TestDragHandLock(unittest.TestCase):
    """A drag belongs to the hand that started it"""

    def setUp(self):
        self.mapper = CoordinateMapper(1000, 500)
        self.machine = PlacementStateMachine()
        self.machine.update(pinch(500, 250), None, None, self.mapper)
        self.assertEqual(self.machine.gesture.drag_hand, "Right")

    def test_other_hand_pinching_does_not_move_sticker(self):
        frame = reading(("Left", True, (900, 450)), ("Right", False, (500, 250)))
        writer = self.machine.update(frame, None, None, self.mapper)
        self.assertIsNone(writer)
        self.assertFalse(self.machine.gesture.is_dragging)
        self.assertAlmostEqual(self.machine.state.x, 0.5)
        self.assertAlmostEqual(self.machine.state.y, 0.5)

    def test_held_other_hand_does_not_regrab(self):
        self.machine.update(reading(("Left", True, (900, 450)), ("Right", False, (500, 250))),
                            None, None, self.mapper)
        self.machine.update(reading(("Left", True, (520, 250))), None, None, self.mapper)
        self.assertFalse(self.machine.gesture.is_dragging)
        self.assertAlmostEqual(self.machine.state.x, 0.5)

    def test_drag_uses_grabbing_hand_cursor(self):
        frame = reading(("Left", True, (100, 100)), ("Right", True, (600, 300)))
        self.assertEqual(self.machine.update(frame, None, None, self.mapper), "drag")
        self.assertAlmostEqual(self.machine.state.x, 0.6)
        self.assertAlmostEqual(self.machine.state.y, 0.6)
        self.assertEqual(self.machine.gesture.cursor, (600, 300))

    def test_losing_grabbing_hand_releases(self):
        self.machine.update(pinch(600, 300), None, None, self.mapper)
        self.machine.update(hover(100, 100, hand="Left"), None, None, self.mapper)
        self.assertFalse(self.machine.gesture.is_dragging)
        self.assertIsNone(self.machine.gesture.drag_hand)
        self.assertAlmostEqual(self.machine.state.x, 0.6)


class TestPinchTracking(unittest.TestCase):
    """Pinch edges stay in sync while nothing is placed"""

    def setUp(self):
        self.mapper = CoordinateMapper(1000, 500)
        self.machine = PlacementStateMachine()

    def test_held_pinch_is_not_a_new_grab(self):
        self.machine.track_pinch(pinch(500, 250))
        self.machine.reset_for_new_sticker()
        self.assertIsNone(self.machine.update(pinch(500, 250), None, None, self.mapper))
        self.assertFalse(self.machine.gesture.is_dragging)

    def test_fresh_pinch_after_tracking_grabs(self):
        self.machine.track_pinch(hover(500, 250))
        self.assertEqual(self.machine.update(pinch(500, 250), None, None, self.mapper), "drag")

    def test_tracking_exposes_cursor_and_drops_drag(self):
        self.machine.update(pinch(500, 250), None, None, self.mapper)
        self.machine.track_pinch(hover(10, 20))
        self.assertEqual(self.machine.gesture.cursor, (10, 20))
        self.assertFalse(self.machine.gesture.is_dragging)
        self.assertEqual(self.machine.state, PlacementState())


class TestManualAdjustment(unittest.TestCase):

    def test_apply(self):
        scale, rotation = ManualAdjustment(2.0, 90.0).apply(PlacementState(scale=0.3, rotation=0.5))
        self.assertAlmostEqual(scale, 0.6)
        self.assertAlmostEqual(rotation, 0.5 + math.pi / 2)

    def test_rejects_invalid_values(self):
        for scale, rotation in ((0.0, 0.0), (-1.0, 0.0), (float("nan"), 0.0), (1.0, float("inf"))):
            with self.assertRaises(ValueError):
                ManualAdjustment(scale, rotation)


if __name__ == "__main__":
    unittest.main()
