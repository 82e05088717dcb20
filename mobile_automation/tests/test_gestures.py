"""Tests for gesture intents and pointer synthesis."""

import pytest

from mobile_automation.gestures import (
    DEFAULT_LONG_PRESS_MS,
    DEFAULT_MOVE_DURATION_MS,
    Direction,
    GestureIntent,
    NormalizedPoint,
    PointerSequence,
    PointerStep,
    StepKind,
    _required_direction,
    synthesize,
)
from mobile_automation.models import Bounds, ScreenSize

SCREEN = ScreenSize(1000, 2000)


def _points(sequence):
    return [(s.kind, s.x, s.y) for s in sequence.steps if s.kind in {StepKind.PRESS, StepKind.MOVE_TO}]


def test_swipe_left_half_screen_is_centred():
    """A 0.5 left swipe on a 1000px wide screen runs 750 -> 250."""
    sequence = synthesize(GestureIntent.swipe("left", distance=0.5), SCREEN)
    assert _points(sequence) == [
        (StepKind.PRESS, 750, 1000),
        (StepKind.MOVE_TO, 250, 1000),
    ]
    assert sequence.steps[-1].kind is StepKind.RELEASE


def test_default_swipe_up_runs_from_80_to_20_percent():
    sequence = synthesize(GestureIntent.swipe(Direction.UP), SCREEN)
    assert _points(sequence) == [
        (StepKind.PRESS, 500, 1600),
        (StepKind.MOVE_TO, 500, 400),
    ]
    assert sequence.moves()[0].duration_ms == DEFAULT_MOVE_DURATION_MS


def test_swipe_duration_overrides_move_duration():
    sequence = synthesize(GestureIntent.swipe("down", duration_ms=250), SCREEN)
    assert sequence.moves()[0].duration_ms == 250


def test_swipe_never_leaves_screen():
    sequence = synthesize(
        GestureIntent.swipe("right", distance=1.0, start=NormalizedPoint(0.9, 0.5)),
        SCREEN,
    )
    for step in sequence.steps:
        if step.x is not None:
            assert 0 <= step.x < SCREEN.width
            assert 0 <= step.y < SCREEN.height


def test_tap_on_bounds_uses_center():
    sequence = synthesize(GestureIntent.tap(Bounds(100, 200, 200, 100)), SCREEN)
    assert [s.kind for s in sequence.steps] == [StepKind.PRESS, StepKind.RELEASE]
    assert (sequence.first_press.x, sequence.first_press.y) == (200, 250)


def test_long_press_holds_default_duration():
    sequence = synthesize(GestureIntent.long_press(NormalizedPoint(0.5, 0.5)), SCREEN)
    kinds = [s.kind for s in sequence.steps]
    assert kinds == [StepKind.PRESS, StepKind.WAIT, StepKind.RELEASE]
    assert sequence.steps[1].duration_ms == DEFAULT_LONG_PRESS_MS


def test_pinch_out_is_two_strokes_moving_apart():
    sequence = synthesize(GestureIntent.pinch("out"), SCREEN)
    strokes = sequence.strokes()
    assert len(strokes) == 2
    left, right = strokes
    assert (left[0].x, left[1].x) == (450, 350)
    assert (right[0].x, right[1].x) == (550, 650)
    assert all(step.y in (None, 1000) for step in sequence.steps)


def test_pinch_in_moves_fingers_together():
    strokes = synthesize(GestureIntent.pinch("in"), SCREEN).strokes()
    left, right = strokes
    assert (left[0].x, left[1].x) == (350, 450)
    assert (right[0].x, right[1].x) == (650, 550)


def test_edge_swipe_starts_one_percent_from_edge():
    from_left = synthesize(GestureIntent.edge_swipe("right"), SCREEN)
    assert _points(from_left) == [(StepKind.PRESS, 10, 1000), (StepKind.MOVE_TO, 90, 1000)]

    from_right = synthesize(GestureIntent.edge_swipe("left"), SCREEN)
    assert _points(from_right) == [(StepKind.PRESS, 990, 1000), (StepKind.MOVE_TO, 910, 1000)]


def test_edge_swipe_distance_is_bounded():
    with pytest.raises(ValueError):
        GestureIntent.edge_swipe("right", distance=0.5)


def test_pull_to_refresh_presses_waits_then_pulls_down():
    sequence = synthesize(GestureIntent.pull_to_refresh(), SCREEN)
    kinds = [s.kind for s in sequence.steps]
    assert kinds == [StepKind.PRESS, StepKind.WAIT, StepKind.MOVE_TO, StepKind.RELEASE]
    assert (sequence.steps[0].x, sequence.steps[0].y) == (500, 500)
    assert sequence.steps[1].duration_ms == 1000
    assert (sequence.steps[2].x, sequence.steps[2].y) == (500, 1300)


@pytest.mark.parametrize("x,y", [(-0.1, 0.5), (0.5, 1.01)])
def test_normalized_point_rejects_out_of_range(x, y):
    with pytest.raises(ValueError):
        NormalizedPoint(x, y)


def test_swipe_rejects_pinch_direction():
    with pytest.raises(ValueError):
        GestureIntent.swipe("in")


def test_unknown_direction_is_rejected():
    with pytest.raises(ValueError):
        Direction.parse("sideways")


def test_pointer_sequence_must_release():
    with pytest.raises(ValueError):
        PointerSequence((PointerStep.press(1, 1), PointerStep.move_to(2, 2, 100)))


def test_pointer_sequence_rejects_move_before_press():
    with pytest.raises(ValueError):
        PointerSequence((PointerStep.move_to(2, 2, 100), PointerStep.release()))


def test_invalid_screen_size_is_rejected():
    with pytest.raises(ValueError):
        synthesize(GestureIntent.tap(NormalizedPoint(0.5, 0.5)), ScreenSize(0, 100))


def test_directional_synthesis_rejects_missing_direction():
    with pytest.raises(ValueError, match="tap needs a direction"):
        _required_direction(GestureIntent.tap(NormalizedPoint(0.5, 0.5)))
    assert _required_direction(GestureIntent.swipe("left")) is Direction.LEFT
