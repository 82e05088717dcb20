"""Shared fixtures: an in-memory automation backend and capability sets."""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import pytest

from mobile_automation.capabilities import CapabilitySet, Platform
from mobile_automation.config import RunSettings
from mobile_automation.errors import NotFoundError, SessionError, StaleElementError
from mobile_automation.gestures import PointerSequence
from mobile_automation.models import (
    AppState,
    Bounds,
    ElementHandle,
    ScreenSize,
    Selector,
    Session,
    SessionState,
)

_session_ids = itertools.count(1)


@dataclass
class FakeElement:
    element_id: str
    text: str = ""
    displayed: bool = True
    enabled: bool = True
    rect: Bounds = Bounds(100, 200, 200, 100)


class FakeProtocolClient:
    """
    Stands in for ProtocolClient. Elements are registered under the native
    Selector the platform strategy resolves to; every call is recorded.
    """

    def __init__(self, *, screen: ScreenSize = ScreenSize(1000, 2000)) -> None:
        self.screen = screen
        self.elements: dict[Selector, list[FakeElement]] = {}
        self.calls: list[str] = []
        self.sequences: list[PointerSequence] = []
        self.clicked: list[str] = []
        self.cleared: list[str] = []
        self.typed: list[tuple[str, str]] = []
        self.mobile: list[tuple[str, dict[str, Any]]] = []
        self.timeouts: Optional[dict[str, int]] = None
        self.orientation = "PORTRAIT"
        self.contexts = ["NATIVE_APP"]
        self.current_context = "NATIVE_APP"
        self.app_state = AppState.RUNNING_IN_FOREGROUND
        self.network_mask = 6
        self.fail_on: dict[str, Exception] = {}
        self.on_sequence: Optional[Callable[[PointerSequence], None]] = None
        self.create_delay_s = 0.0
        self.destroyed: list[str] = []
        self.closed = False
        self.sessions: list[Session] = []
        self._lock = threading.Lock()

    # -- test helpers -----------------------------------------------------

    def add(self, selector: Selector, element: FakeElement) -> FakeElement:
        self.elements.setdefault(selector, []).append(element)
        return element

    def remove(self, selector: Selector) -> None:
        self.elements.pop(selector, None)

    def _element(self, element: ElementHandle) -> FakeElement:
        for candidates in self.elements.values():
            for candidate in candidates:
                if candidate.element_id == element.element_id:
                    return candidate
        raise StaleElementError(message="stale element reference", method="GET", url="fake://", status_code=404)

    def _record(self, name: str) -> None:
        with self._lock:
            self.calls.append(name)
        if name in self.fail_on:
            raise self.fail_on[name]

    def _handle(self, session: Session, selector: Selector, element: FakeElement, logical: Optional[str]) -> ElementHandle:
        return ElementHandle(
            element_id=element.element_id,
            logical_selector=logical or str(selector),
            selector=selector,
            platform=session.platform,
        )

    # -- ProtocolClient surface -------------------------------------------

    def create_session(self, caps: CapabilitySet, *, timeout_s: Optional[float] = None) -> Session:
        self._record("create_session")
        if self.create_delay_s:
            time.sleep(self.create_delay_s)
        if "create_session_error" in self.fail_on:
            raise SessionError(f"Could not create session for {caps.label}")
        session = Session(capabilities=caps, id=f"fake-{next(_session_ids)}", state=SessionState.ACTIVE)
        self.sessions.append(session)
        return session

    def destroy_session(self, session: Session, *, timeout_s: Optional[float] = None) -> None:
        self._record("destroy_session")
        if session.state in {SessionState.CLOSED, SessionState.FAILED}:
            return
        session.state = SessionState.CLOSED
        self.destroyed.append(session.id)

    def close(self) -> None:
        self.closed = True

    def set_timeouts(self, session: Session, *, implicit_ms: int, page_load_ms: int, script_ms: int, timeout_s=None) -> None:
        self._record("set_timeouts")
        self.timeouts = {"implicit": implicit_ms, "pageLoad": page_load_ms, "script": script_ms}

    def set_orientation(self, session: Session, orientation: str, *, timeout_s=None) -> None:
        self._record("set_orientation")
        self.orientation = orientation.upper()

    def get_orientation(self, session: Session, *, timeout_s=None) -> str:
        self._record("get_orientation")
        return self.orientation

    def find_element(self, session: Session, selector: Selector, *, logical_selector=None, timeout_s=None) -> ElementHandle:
        self._record("find_element")
        matches = self.elements.get(selector) or []
        if not matches:
            raise NotFoundError(message="no such element", method="POST", url="fake://", status_code=404)
        return self._handle(session, selector, matches[0], logical_selector)

    def find_elements(self, session: Session, selector: Selector, *, logical_selector=None, timeout_s=None) -> list[ElementHandle]:
        self._record("find_elements")
        return [self._handle(session, selector, e, logical_selector) for e in self.elements.get(selector, [])]

    def is_displayed(self, session: Session, element: ElementHandle, *, timeout_s=None) -> bool:
        self._record("is_displayed")
        return self._element(element).displayed

    def is_enabled(self, session: Session, element: ElementHandle, *, timeout_s=None) -> bool:
        self._record("is_enabled")
        return self._element(element).enabled

    def get_element_text(self, session: Session, element: ElementHandle, *, timeout_s=None) -> str:
        self._record("get_element_text")
        return self._element(element).text

    def get_element_rect(self, session: Session, element: ElementHandle, *, timeout_s=None) -> Bounds:
        self._record("get_element_rect")
        return self._element(element).rect

    def click(self, session: Session, element: ElementHandle, *, timeout_s=None) -> None:
        self._record("click")
        self.clicked.append(element.element_id)

    def clear(self, session: Session, element: ElementHandle, *, timeout_s=None) -> None:
        self._record("clear")
        self.cleared.append(element.element_id)
        self._element(element).text = ""

    def send_keys(self, session: Session, element: ElementHandle, *, text: str, timeout_s=None) -> None:
        self._record("send_keys")
        self.typed.append((element.element_id, text))
        self._element(element).text += text

    def perform_pointer_sequence(self, session: Session, sequence: PointerSequence, *, timeout_s=None) -> None:
        self._record("perform_pointer_sequence")
        self.sequences.append(sequence)
        if self.on_sequence is not None:
            self.on_sequence(sequence)

    def get_window_size(self, session: Session, *, timeout_s=None) -> ScreenSize:
        self._record("get_window_size")
        return self.screen

    def get_screenshot_png_bytes(self, session: Session, *, timeout_s=None) -> bytes:
        self._record("get_screenshot_png_bytes")
        return b"\x89PNG fake"

    def get_page_source(self, session: Session, *, timeout_s=None) -> str:
        self._record("get_page_source")
        return "<hierarchy/>"

    def back(self, session: Session, *, timeout_s=None) -> None:
        self._record("back")

    def get_contexts(self, session: Session, *, timeout_s=None) -> list[str]:
        self._record("get_contexts")
        return list(self.contexts)

    def get_current_context(self, session: Session, *, timeout_s=None) -> str:
        self._record("get_current_context")
        return self.current_context

    def switch_context(self, session: Session, context_id: str, *, timeout_s=None) -> None:
        self._record("switch_context")
        self.current_context = context_id

    def execute_mobile(self, session: Session, command: str, args: Optional[dict[str, Any]] = None, *, timeout_s=None) -> Any:
        self._record(f"mobile: {command}")
        self.mobile.append((command, dict(args or {})))
        if command == "batteryInfo":
            return {"level": 0.8, "state": 2}
        if command == "terminateApp":
            self.app_state = AppState.NOT_RUNNING
        if command == "removeApp":
            self.app_state = AppState.NOT_INSTALLED
        if command == "activateApp":
            self.app_state = AppState.RUNNING_IN_FOREGROUND
        return None

    def query_app_state(self, session: Session, app_id: str, *, timeout_s=None) -> AppState:
        self._record("query_app_state")
        return self.app_state

    def get_network_connection(self, session: Session, *, timeout_s=None) -> int:
        self._record("get_network_connection")
        return self.network_mask

    def set_network_connection(self, session: Session, mask: int, *, timeout_s=None) -> int:
        self._record("set_network_connection")
        self.network_mask = mask
        return mask

    def start_recording_screen(self, session: Session, *, timeout_s=None) -> None:
        self._record("start_recording_screen")

    def stop_recording_screen(self, session: Session, *, timeout_s=None) -> bytes:
        self._record("stop_recording_screen")
        return b"fake-mp4"


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture
def android_caps() -> CapabilitySet:
    return CapabilitySet(
        platform=Platform.ANDROID,
        device_name="Pixel_6",
        platform_version="13",
        automation_backend="UiAutomator2",
        app_id="io.appium.android.apis",
    )


@pytest.fixture
def ios_caps() -> CapabilitySet:
    return CapabilitySet(
        platform=Platform.IOS,
        device_name="iPhone 14",
        platform_version="16.4",
        automation_backend="XCUITest",
        app_id="com.example.apple-samplecode.UICatalog",
    )


@pytest.fixture
def settings(tmp_path) -> RunSettings:
    return RunSettings(
        server_url="http://127.0.0.1:4723",
        artifacts_dir=tmp_path / "artifacts",
        wait_timeout_s=0.2,
        poll_interval_s=0.01,
        max_concurrency=4,
        scroll_attempts=3,
    )


@pytest.fixture
def android_session(fake_client, android_caps) -> Session:
    return fake_client.create_session(android_caps)


@pytest.fixture
def ios_session(fake_client, ios_caps) -> Session:
    return fake_client.create_session(ios_caps)
