"""
Gesture synthesis: high-level intents -> press/moveTo/wait/release steps.

Every gesture is composed from those four primitives only. Coordinates in an
intent are normalized (0.0-1.0) and converted against the live screen size,
so one intent works across device resolutions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .models import Bounds, ScreenSize

DEFAULT_MOVE_DURATION_MS = 600
DEFAULT_LONG_PRESS_MS = 2000
DEFAULT_PULL_HOLD_MS = 1000
DEFAULT_SWIPE_DISTANCE = 0.6
DEFAULT_PINCH_DISTANCE = 0.2
DEFAULT_PULL_DISTANCE = 0.4
DEFAULT_EDGE_DISTANCE = 0.08
EDGE_MARGIN_RATIO = 0.01
EDGE_DISTANCE_RANGE = (0.05, 0.10)
PINCH_INNER_RATIO = 0.05


class GestureType(Enum):
    TAP = "tap"
    LONG_PRESS = "long_press"
    SWIPE = "swipe"
    PINCH = "pinch"
    EDGE_SWIPE = "edge_swipe"
    PULL_TO_REFRESH = "pull_to_refresh"


class Direction(Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    IN = "in"
    OUT = "out"

    @classmethod
    def parse(cls, raw: Union[str, "Direction"]) -> "Direction":
        if isinstance(raw, Direction):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown direction {raw!r}") from e

    @property
    def unit(self) -> tuple[int, int]:
        return {
            Direction.UP: (0, -1),
            Direction.DOWN: (0, 1),
            Direction.LEFT: (-1, 0),
            Direction.RIGHT: (1, 0),
        }[self]


_LINEAR = {Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT}


@dataclass(frozen=True)
class NormalizedPoint:
    x: float
    y: float

    def __post_init__(self) -> None:
        for name, value in (("x", self.x), ("y", self.y)):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"normalized {name} must be within 0.0-1.0, got {value}")

    def to_pixels(self, screen: ScreenSize) -> tuple[int, int]:
        return _scale(self.x, screen.width), _scale(self.y, screen.height)


Target = Union[NormalizedPoint, Bounds]


@dataclass(frozen=True)
class GestureIntent:
    type: GestureType
    target: Optional[Target] = None
    direction: Optional[Direction] = None
    distance: Optional[float] = None
    duration_ms: Optional[int] = None

    def __post_init__(self) -> None:
        if self.distance is not None and not 0.0 < self.distance <= 1.0:
            raise ValueError(f"distance must be within (0.0, 1.0], got {self.distance}")
        if self.duration_ms is not None and self.duration_ms < 0:
            raise ValueError("duration_ms must be >= 0")
        if self.type in {GestureType.TAP, GestureType.LONG_PRESS} and self.target is None:
            raise ValueError(f"{self.type.value} needs a target")
        if self.type in {GestureType.SWIPE, GestureType.EDGE_SWIPE} and self.direction not in _LINEAR:
            raise ValueError(f"{self.type.value} needs an up/down/left/right direction")
        if self.type is GestureType.PINCH and self.direction not in {Direction.IN, Direction.OUT}:
            raise ValueError("pinch needs direction 'in' or 'out'")
        if self.type is GestureType.PULL_TO_REFRESH and self.direction not in {None, Direction.DOWN}:
            raise ValueError("pull_to_refresh only pulls down")
        if self.type is GestureType.EDGE_SWIPE and self.distance is not None:
            low, high = EDGE_DISTANCE_RANGE
            if not low <= self.distance <= high:
                raise ValueError(f"edge swipe distance must be within {low}-{high}, got {self.distance}")

    @classmethod
    def tap(cls, target: Target) -> "GestureIntent":
        return cls(GestureType.TAP, target=target)

    @classmethod
    def long_press(cls, target: Target, *, duration_ms: Optional[int] = None) -> "GestureIntent":
        return cls(GestureType.LONG_PRESS, target=target, duration_ms=duration_ms)

    @classmethod
    def swipe(
        cls,
        direction: Union[str, Direction],
        *,
        distance: Optional[float] = None,
        start: Optional[Target] = None,
        duration_ms: Optional[int] = None,
    ) -> "GestureIntent":
        return cls(
            GestureType.SWIPE,
            target=start,
            direction=Direction.parse(direction),
            distance=distance,
            duration_ms=duration_ms,
        )

    @classmethod
    def pinch(
        cls,
        direction: Union[str, Direction],
        *,
        distance: Optional[float] = None,
        center: Optional[Target] = None,
    ) -> "GestureIntent":
        return cls(GestureType.PINCH, target=center, direction=Direction.parse(direction), distance=distance)

    @classmethod
    def edge_swipe(cls, direction: Union[str, Direction], *, distance: Optional[float] = None) -> "GestureIntent":
        return cls(GestureType.EDGE_SWIPE, direction=Direction.parse(direction), distance=distance)

    @classmethod
    def pull_to_refresh(
        cls,
        *,
        start: Optional[Target] = None,
        distance: Optional[float] = None,
        hold_ms: Optional[int] = None,
    ) -> "GestureIntent":
        return cls(GestureType.PULL_TO_REFRESH, target=start, distance=distance, duration_ms=hold_ms)


class StepKind(Enum):
    PRESS = "press"
    MOVE_TO = "moveTo"
    WAIT = "wait"
    RELEASE = "release"


@dataclass(frozen=True)
class PointerStep:
    kind: StepKind
    x: Optional[int] = None
    y: Optional[int] = None
    duration_ms: int = 0

    @classmethod
    def press(cls, x: int, y: int) -> "PointerStep":
        return cls(StepKind.PRESS, x=x, y=y)

    @classmethod
    def move_to(cls, x: int, y: int, duration_ms: int) -> "PointerStep":
        return cls(StepKind.MOVE_TO, x=x, y=y, duration_ms=duration_ms)

    @classmethod
    def wait(cls, duration_ms: int) -> "PointerStep":
        return cls(StepKind.WAIT, duration_ms=duration_ms)

    @classmethod
    def release(cls) -> "PointerStep":
        return cls(StepKind.RELEASE)


@dataclass(frozen=True)
class PointerSequence:
    """
    Ordered primitive steps in absolute pixels.

    A sequence may hold more than one press...release stroke (pinch); strokes
    are dispatched one after another, never simultaneously.
    """

    steps: tuple[PointerStep, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise ValueError("pointer sequence is empty")
        pressed = False
        for step in self.steps:
            if step.kind is StepKind.PRESS:
                if pressed:
                    raise ValueError("press while already pressed")
                pressed = True
            elif not pressed:
                raise ValueError(f"{step.kind.value} outside of a press...release stroke")
            elif step.kind is StepKind.RELEASE:
                pressed = False
        if pressed:
            raise ValueError("pointer sequence ends without release")

    def strokes(self) -> list[tuple[PointerStep, ...]]:
        out: list[tuple[PointerStep, ...]] = []
        current: list[PointerStep] = []
        for step in self.steps:
            current.append(step)
            if step.kind is StepKind.RELEASE:
                out.append(tuple(current))
                current = []
        return out

    @property
    def first_press(self) -> PointerStep:
        return self.steps[0]

    def moves(self) -> list[PointerStep]:
        return [s for s in self.steps if s.kind is StepKind.MOVE_TO]


def _scale(ratio: float, size: int) -> int:
    return _clamp(int(round(ratio * size)), size)


def _clamp(value: int, size: int) -> int:
    return max(0, min(size - 1, value))


def _required_direction(intent: GestureIntent) -> Direction:
    if intent.direction is None:
        raise ValueError(f"{intent.type.value} needs a direction")
    return intent.direction


def _target_point(target: Optional[Target], screen: ScreenSize, default: tuple[float, float]) -> tuple[int, int]:
    if isinstance(target, Bounds):
        return target.center
    if isinstance(target, NormalizedPoint):
        return target.to_pixels(screen)
    return _scale(default[0], screen.width), _scale(default[1], screen.height)


def _stroke(start: tuple[int, int], end: tuple[int, int], *, move_ms: int, hold_ms: int = 0) -> list[PointerStep]:
    steps = [PointerStep.press(*start)]
    if hold_ms > 0:
        steps.append(PointerStep.wait(hold_ms))
    steps.append(PointerStep.move_to(end[0], end[1], move_ms))
    steps.append(PointerStep.release())
    return steps


def _tap(intent: GestureIntent, screen: ScreenSize) -> list[PointerStep]:
    x, y = _target_point(intent.target, screen, (0.5, 0.5))
    return [PointerStep.press(x, y), PointerStep.release()]


def _long_press(intent: GestureIntent, screen: ScreenSize) -> list[PointerStep]:
    x, y = _target_point(intent.target, screen, (0.5, 0.5))
    hold = DEFAULT_LONG_PRESS_MS if intent.duration_ms is None else intent.duration_ms
    return [PointerStep.press(x, y), PointerStep.wait(hold), PointerStep.release()]


def _swipe(intent: GestureIntent, screen: ScreenSize, move_ms: int) -> list[PointerStep]:
    direction = _required_direction(intent)
    distance = DEFAULT_SWIPE_DISTANCE if intent.distance is None else intent.distance
    dx, dy = direction.unit
    # default start keeps the stroke centred on the screen
    default_start = (0.5 - dx * distance / 2, 0.5 - dy * distance / 2)
    start = _target_point(intent.target, screen, default_start)
    end = (
        _clamp(start[0] + dx * int(round(distance * screen.width)), screen.width),
        _clamp(start[1] + dy * int(round(distance * screen.height)), screen.height),
    )
    return _stroke(start, end, move_ms=move_ms)


def _pinch(intent: GestureIntent, screen: ScreenSize, move_ms: int) -> list[PointerStep]:
    distance = DEFAULT_PINCH_DISTANCE if intent.distance is None else intent.distance
    cx, cy = _target_point(intent.target, screen, (0.5, 0.5))
    inner = int(round(PINCH_INNER_RATIO * screen.width))
    outer = inner + int(round(distance * screen.width / 2))

    steps: list[PointerStep] = []
    for side in (-1, 1):
        near = (_clamp(cx + side * inner, screen.width), cy)
        far = (_clamp(cx + side * outer, screen.width), cy)
        if intent.direction is Direction.OUT:
            steps.extend(_stroke(near, far, move_ms=move_ms))
        else:
            steps.extend(_stroke(far, near, move_ms=move_ms))
    return steps


def _edge_swipe(intent: GestureIntent, screen: ScreenSize, move_ms: int) -> list[PointerStep]:
    direction = _required_direction(intent)
    distance = DEFAULT_EDGE_DISTANCE if intent.distance is None else intent.distance
    dx, dy = direction.unit
    if dx:
        margin = int(screen.width * EDGE_MARGIN_RATIO)
        x0 = margin if dx > 0 else screen.width - margin
        start = (_clamp(x0, screen.width), _scale(0.5, screen.height))
        end = (_clamp(start[0] + dx * int(round(distance * screen.width)), screen.width), start[1])
    else:
        margin = int(screen.height * EDGE_MARGIN_RATIO)
        y0 = margin if dy > 0 else screen.height - margin
        start = (_scale(0.5, screen.width), _clamp(y0, screen.height))
        end = (start[0], _clamp(start[1] + dy * int(round(distance * screen.height)), screen.height))
    return _stroke(start, end, move_ms=move_ms)


def _pull_to_refresh(intent: GestureIntent, screen: ScreenSize, move_ms: int) -> list[PointerStep]:
    distance = DEFAULT_PULL_DISTANCE if intent.distance is None else intent.distance
    hold = DEFAULT_PULL_HOLD_MS if intent.duration_ms is None else intent.duration_ms
    start = _target_point(intent.target, screen, (0.5, 0.25))
    end = (start[0], _clamp(start[1] + int(round(distance * screen.height)), screen.height))
    return _stroke(start, end, move_ms=move_ms, hold_ms=hold)


def synthesize(
    intent: GestureIntent,
    screen: ScreenSize,
    *,
    move_duration_ms: int = DEFAULT_MOVE_DURATION_MS,
) -> PointerSequence:
    if screen.width <= 0 or screen.height <= 0:
        raise ValueError(f"invalid screen size {screen}")

    move_ms = move_duration_ms
    if intent.duration_ms is not None and intent.type in {GestureType.SWIPE, GestureType.PINCH, GestureType.EDGE_SWIPE}:
        move_ms = intent.duration_ms

    if intent.type is GestureType.TAP:
        steps = _tap(intent, screen)
    elif intent.type is GestureType.LONG_PRESS:
        steps = _long_press(intent, screen)
    elif intent.type is GestureType.SWIPE:
        steps = _swipe(intent, screen, move_ms)
    elif intent.type is GestureType.PINCH:
        steps = _pinch(intent, screen, move_ms)
    elif intent.type is GestureType.EDGE_SWIPE:
        steps = _edge_swipe(intent, screen, move_ms)
    elif intent.type is GestureType.PULL_TO_REFRESH:
        steps = _pull_to_refresh(intent, screen, move_ms)
    else:
        raise ValueError(f"unsupported gesture {intent.type!r}")
    return PointerSequence(tuple(steps))
