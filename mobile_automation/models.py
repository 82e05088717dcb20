from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .capabilities import CapabilitySet, Platform


class SessionState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class Session:
    capabilities: CapabilitySet
    id: Optional[str] = None
    state: SessionState = SessionState.PENDING
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def platform(self) -> Platform:
        return self.capabilities.platform

    @property
    def is_live(self) -> bool:
        return self.id is not None and self.state in {SessionState.ACTIVE, SessionState.CLOSING}


@dataclass(frozen=True)
class Selector:
    """A native WebDriver locator: `using` strategy + `value`."""

    using: str
    value: str

    def __str__(self) -> str:
        return f"{self.using}={self.value}"


@dataclass(frozen=True)
class Bounds:
    x: int
    y: int
    width: int
    height: int

    @property
    def center(self) -> tuple[int, int]:
        return self.x + self.width // 2, self.y + self.height // 2

    @classmethod
    def from_rect(cls, rect: dict[str, Any]) -> "Bounds":
        return cls(
            x=int(rect["x"]),
            y=int(rect["y"]),
            width=int(rect["width"]),
            height=int(rect["height"]),
        )


@dataclass(frozen=True)
class ScreenSize:
    width: int
    height: int


@dataclass(frozen=True)
class ElementHandle:
    """
    A backend element reference plus what produced it.

    Handles go stale on any view-tree change; look the selector up again
    instead of holding on to one across screens.
    """

    element_id: str
    logical_selector: str
    selector: Selector
    platform: Platform


class AppState(Enum):
    NOT_INSTALLED = 0
    NOT_RUNNING = 1
    RUNNING_IN_BACKGROUND_SUSPENDED = 2
    RUNNING_IN_BACKGROUND = 3
    RUNNING_IN_FOREGROUND = 4

    @property
    def description(self) -> str:
        return {
            AppState.NOT_INSTALLED: "not installed",
            AppState.NOT_RUNNING: "not running",
            AppState.RUNNING_IN_BACKGROUND_SUSPENDED: "running in background (suspended)",
            AppState.RUNNING_IN_BACKGROUND: "running in background",
            AppState.RUNNING_IN_FOREGROUND: "running in foreground",
        }[self]

    @property
    def is_running(self) -> bool:
        return self.value >= AppState.RUNNING_IN_BACKGROUND_SUSPENDED.value


class StepOutcome(Enum):
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


@dataclass(frozen=True)
class DiagnosticBundle:
    screenshot_path: Optional[str] = None
    page_source_path: Optional[str] = None
    last_element_state: Optional[str] = None
    error_type: Optional[str] = None


@dataclass(frozen=True)
class TestStepResult:
    __test__ = False

    name: str
    outcome: StepOutcome
    duration_s: float
    message: Optional[str] = None
    diagnostics: Optional[DiagnosticBundle] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "duration_s": round(self.duration_s, 3),
            "message": self.message,
            "diagnostics": None
            if self.diagnostics is None
            else {
                "screenshot_path": self.diagnostics.screenshot_path,
                "page_source_path": self.diagnostics.page_source_path,
                "last_element_state": self.diagnostics.last_element_state,
                "error_type": self.diagnostics.error_type,
            },
        }


@dataclass(frozen=True)
class SessionResult:
    session_id: Optional[str]
    capability_label: str
    steps: tuple[TestStepResult, ...]
    outcome: StepOutcome
    duration_s: float
    error: Optional[str] = None

    @staticmethod
    def overall_outcome(steps: tuple[TestStepResult, ...] | list[TestStepResult]) -> StepOutcome:
        outcomes = {s.outcome for s in steps}
        if StepOutcome.ERROR in outcomes:
            return StepOutcome.ERROR
        if StepOutcome.FAIL in outcomes:
            return StepOutcome.FAIL
        return StepOutcome.PASS

    @property
    def passed(self) -> bool:
        return self.outcome is StepOutcome.PASS

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "capabilities": self.capability_label,
            "outcome": self.outcome.value,
            "duration_s": round(self.duration_s, 3),
            "error": self.error,
            "steps": [s.to_dict() for s in self.steps],
        }
