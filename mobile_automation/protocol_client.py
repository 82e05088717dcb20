from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import requests

from .capabilities import CapabilitySet
from .errors import (
    BackendError,
    CommandError,
    NotFoundError,
    SessionError,
    StaleElementError,
)
from .gestures import PointerSequence, PointerStep, StepKind
from .models import AppState, Bounds, ElementHandle, ScreenSize, Selector, Session, SessionState

logger = logging.getLogger(__name__)

W3C_ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"

NETWORK_AIRPLANE = 1
NETWORK_WIFI = 2
NETWORK_DATA = 4


def _extract_webdriver_value(payload: dict[str, Any]) -> Any:
    # W3C WebDriver wraps results in {"value": ...}
    if "value" in payload:
        return payload["value"]
    return payload


def _extract_element_id(element_obj: Any) -> str:
    if not isinstance(element_obj, dict):
        raise ValueError(f"Unexpected element payload type: {type(element_obj)}")
    if element_obj.get(W3C_ELEMENT_KEY):
        return str(element_obj[W3C_ELEMENT_KEY])
    # legacy JSONWire key
    if element_obj.get("ELEMENT"):
        return str(element_obj["ELEMENT"])
    raise ValueError(f"Could not extract element id from payload keys: {list(element_obj.keys())}")


def _error_code(response_json: Optional[dict[str, Any]]) -> tuple[Optional[str], Optional[str]]:
    if response_json is None:
        return None, None
    value = _extract_webdriver_value(response_json)
    if not isinstance(value, dict):
        return None, None
    return value.get("error"), value.get("message")


def _pointer_actions(stroke: tuple[PointerStep, ...], *, pointer_id: str) -> dict[str, Any]:
    actions: list[dict[str, Any]] = []
    for step in stroke:
        if step.kind is StepKind.PRESS:
            actions.append({"type": "pointerMove", "duration": 0, "x": step.x, "y": step.y})
            actions.append({"type": "pointerDown", "button": 0})
        elif step.kind is StepKind.MOVE_TO:
            actions.append(
                {"type": "pointerMove", "duration": step.duration_ms, "origin": "viewport", "x": step.x, "y": step.y}
            )
        elif step.kind is StepKind.WAIT:
            actions.append({"type": "pause", "duration": step.duration_ms})
        elif step.kind is StepKind.RELEASE:
            actions.append({"type": "pointerUp", "button": 0})
    return {
        "type": "pointer",
        "id": pointer_id,
        "parameters": {"pointerType": "touch"},
        "actions": actions,
    }


class ProtocolClient:
    """
    Typed client for the WebDriver protocol as extended by Appium.

    Every method is one blocking round-trip. Nothing here retries: polling
    belongs to the wait engine. The session is always passed explicitly so
    one process can drive many devices.

    `requests.Session` is not safe to share between threads; give each
    device worker its own client.
    """

    def __init__(
        self,
        server_url: str,
        *,
        timeout_s: float = 30.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        if not server_url:
            raise ValueError("server_url is required")
        self.server_url = server_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = http or requests.Session()

    def close(self) -> None:
        self._http.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> dict[str, Any]:
        url = f"{self.server_url}{path}"
        timeout = self.timeout_s if timeout_s is None else timeout_s
        try:
            response = self._http.request(method, url, json=json, timeout=timeout)
        except requests.RequestException as e:
            raise BackendError(
                message=f"Failed to reach automation endpoint: {e}",
                method=method,
                url=url,
            ) from e

        response_text = None
        response_json: Optional[dict[str, Any]] = None
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                response_json = parsed
            else:
                response_text = response.text
        except ValueError:
            response_text = response.text

        if response.status_code >= 400:
            error_code, details = _error_code(response_json)
            message = f"HTTP {response.status_code} for {method} {path}" + (
                f": {error_code}: {details}" if error_code else ""
            )
            if error_code == "invalid session id":
                raise BackendError(message=message, method=method, url=url)
            error_cls = CommandError
            if error_code == "no such element":
                error_cls = NotFoundError
            elif error_code == "stale element reference":
                error_cls = StaleElementError
            raise error_cls(
                message=message,
                method=method,
                url=url,
                status_code=response.status_code,
                error_code=error_code,
                response_json=response_json,
                response_text=response_text,
            )

        if response_json is None:
            raise CommandError(
                message=f"Endpoint returned non-JSON response for {method} {path}",
                method=method,
                url=url,
                status_code=response.status_code,
                response_text=response_text,
            )
        return response_json

    def _session_path(self, session: Session, suffix: str = "") -> str:
        if not session.is_live:
            raise SessionError(f"Session for {session.capabilities.label} is not active (state={session.state.value})")
        return f"/session/{session.id}{suffix}"

    def _value(
        self,
        method: str,
        session: Session,
        suffix: str,
        *,
        json: Optional[dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> Any:
        return _extract_webdriver_value(
            self._request(method, self._session_path(session, suffix), json=json, timeout_s=timeout_s)
        )

    def _unexpected(self, session: Session, suffix: str, expected: str, value: Any) -> CommandError:
        return CommandError(
            message=f"Unexpected {suffix} response shape (expected {expected}, got {type(value).__name__})",
            method="GET",
            url=f"{self.server_url}/session/{session.id}{suffix}",
        )

    # -- session ----------------------------------------------------------

    def create_session(self, caps: CapabilitySet, *, timeout_s: Optional[float] = None) -> Session:
        session = Session(capabilities=caps)
        try:
            response = self._request("POST", "/session", json=caps.to_session_payload(), timeout_s=timeout_s)
        except (BackendError, CommandError) as e:
            session.state = SessionState.FAILED
            raise SessionError(f"Could not create session for {caps.label}: {e}") from e

        # Common shapes:
        # - {"value": {"sessionId": "...", "capabilities": {...}}}
        # - {"sessionId": "...", "value": {...}}
        value = _extract_webdriver_value(response)
        session_id = value.get("sessionId") if isinstance(value, dict) else None
        session_id = session_id or response.get("sessionId")
        if not session_id:
            session.state = SessionState.FAILED
            raise SessionError(f"Endpoint did not return a sessionId for {caps.label}")

        session.id = str(session_id)
        session.state = SessionState.ACTIVE
        logger.info("session %s started for %s", session.id, caps.label)
        return session

    def destroy_session(self, session: Session, *, timeout_s: Optional[float] = None) -> None:
        """Idempotent: a session that is already closed (or never opened) is left alone."""
        if session.id is None or session.state in {SessionState.CLOSED, SessionState.FAILED}:
            return
        session.state = SessionState.CLOSING
        try:
            self._request("DELETE", f"/session/{session.id}", timeout_s=timeout_s)
        except BackendError as e:
            # "invalid session id" means the backend already dropped it
            if "invalid session id" not in str(e):
                session.state = SessionState.FAILED
                raise SessionError(f"Could not destroy session {session.id}: {e}") from e
        except CommandError as e:
            session.state = SessionState.FAILED
            raise SessionError(f"Could not destroy session {session.id}: {e}") from e
        session.state = SessionState.CLOSED
        logger.info("session %s closed", session.id)

    def set_timeouts(
        self,
        session: Session,
        *,
        implicit_ms: int,
        page_load_ms: int,
        script_ms: int,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._value(
            "POST",
            session,
            "/timeouts",
            json={"implicit": implicit_ms, "pageLoad": page_load_ms, "script": script_ms},
            timeout_s=timeout_s,
        )

    def set_orientation(self, session: Session, orientation: str, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, "/orientation", json={"orientation": orientation.upper()}, timeout_s=timeout_s)

    def get_orientation(self, session: Session, *, timeout_s: Optional[float] = None) -> str:
        return str(self._value("GET", session, "/orientation", timeout_s=timeout_s))

    # -- elements ---------------------------------------------------------

    def find_element(
        self,
        session: Session,
        selector: Selector,
        *,
        logical_selector: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> ElementHandle:
        value = self._value(
            "POST",
            session,
            "/element",
            json={"using": selector.using, "value": selector.value},
            timeout_s=timeout_s,
        )
        return ElementHandle(
            element_id=_extract_element_id(value),
            logical_selector=logical_selector or str(selector),
            selector=selector,
            platform=session.platform,
        )

    def find_elements(
        self,
        session: Session,
        selector: Selector,
        *,
        logical_selector: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> list[ElementHandle]:
        value = self._value(
            "POST",
            session,
            "/elements",
            json={"using": selector.using, "value": selector.value},
            timeout_s=timeout_s,
        )
        if not isinstance(value, list):
            raise self._unexpected(session, "/elements", "list", value)
        return [
            ElementHandle(
                element_id=_extract_element_id(item),
                logical_selector=logical_selector or str(selector),
                selector=selector,
                platform=session.platform,
            )
            for item in value
        ]

    def is_displayed(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> bool:
        return bool(self._value("GET", session, f"/element/{element.element_id}/displayed", timeout_s=timeout_s))

    def is_enabled(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> bool:
        return bool(self._value("GET", session, f"/element/{element.element_id}/enabled", timeout_s=timeout_s))

    def get_element_text(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> str:
        suffix = f"/element/{element.element_id}/text"
        value = self._value("GET", session, suffix, timeout_s=timeout_s)
        if not isinstance(value, str):
            raise self._unexpected(session, suffix, "string", value)
        return value

    def get_element_rect(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> Bounds:
        suffix = f"/element/{element.element_id}/rect"
        value = self._value("GET", session, suffix, timeout_s=timeout_s)
        if not isinstance(value, dict) or not {"x", "y", "width", "height"}.issubset(value):
            raise self._unexpected(session, suffix, "rect object", value)
        return Bounds.from_rect(value)

    def click(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, f"/element/{element.element_id}/click", json={}, timeout_s=timeout_s)

    def clear(self, session: Session, element: ElementHandle, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, f"/element/{element.element_id}/clear", json={}, timeout_s=timeout_s)

    def send_keys(
        self,
        session: Session,
        element: ElementHandle,
        *,
        text: str,
        timeout_s: Optional[float] = None,
    ) -> None:
        if text is None:
            raise ValueError("text must not be None")
        # servers differ on `text` vs `value` (array of chars); send both
        self._value(
            "POST",
            session,
            f"/element/{element.element_id}/value",
            json={"text": text, "value": list(text)},
            timeout_s=timeout_s,
        )

    # -- screen -----------------------------------------------------------

    def perform_pointer_sequence(
        self,
        session: Session,
        sequence: PointerSequence,
        *,
        timeout_s: Optional[float] = None,
    ) -> None:
        """Send each press...release stroke as its own W3C actions call, in order."""
        for idx, stroke in enumerate(sequence.strokes(), 1):
            self._value(
                "POST",
                session,
                "/actions",
                json={"actions": [_pointer_actions(stroke, pointer_id=f"finger{idx}")]},
                timeout_s=timeout_s,
            )
            self._value("DELETE", session, "/actions", timeout_s=timeout_s)

    def get_window_size(self, session: Session, *, timeout_s: Optional[float] = None) -> ScreenSize:
        value = self._value("GET", session, "/window/rect", timeout_s=timeout_s)
        if not isinstance(value, dict) or not {"width", "height"}.issubset(value):
            raise self._unexpected(session, "/window/rect", "rect object", value)
        return ScreenSize(width=int(value["width"]), height=int(value["height"]))

    def get_screenshot_png_bytes(self, session: Session, *, timeout_s: Optional[float] = None) -> bytes:
        value = self._value("GET", session, "/screenshot", timeout_s=timeout_s)
        if not isinstance(value, str):
            raise self._unexpected(session, "/screenshot", "base64 string", value)
        return base64.b64decode(value)

    def get_page_source(self, session: Session, *, timeout_s: Optional[float] = None) -> str:
        value = self._value("GET", session, "/source", timeout_s=timeout_s)
        if not isinstance(value, str):
            raise self._unexpected(session, "/source", "string", value)
        return value

    def back(self, session: Session, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, "/back", json={}, timeout_s=timeout_s)

    # -- contexts ---------------------------------------------------------

    def get_contexts(self, session: Session, *, timeout_s: Optional[float] = None) -> list[str]:
        value = self._value("GET", session, "/contexts", timeout_s=timeout_s)
        if not isinstance(value, list):
            raise self._unexpected(session, "/contexts", "list", value)
        return [str(c) for c in value]

    def get_current_context(self, session: Session, *, timeout_s: Optional[float] = None) -> str:
        return str(self._value("GET", session, "/context", timeout_s=timeout_s))

    def switch_context(self, session: Session, context_id: str, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, "/context", json={"name": context_id}, timeout_s=timeout_s)

    # -- mobile extensions ------------------------------------------------

    def execute_mobile(
        self,
        session: Session,
        command: str,
        args: Optional[dict[str, Any]] = None,
        *,
        timeout_s: Optional[float] = None,
    ) -> Any:
        return self._value(
            "POST",
            session,
            "/execute/sync",
            json={"script": f"mobile: {command}", "args": [args or {}]},
            timeout_s=timeout_s,
        )

    def query_app_state(self, session: Session, app_id: str, *, timeout_s: Optional[float] = None) -> AppState:
        value = self.execute_mobile(
            session,
            "queryAppState",
            {session.platform.app_id_argument: app_id},
            timeout_s=timeout_s,
        )
        try:
            return AppState(int(value))
        except (TypeError, ValueError) as e:
            raise CommandError(
                message=f"Unexpected app state {value!r} for {app_id}",
                method="POST",
                url=f"{self.server_url}/session/{session.id}/execute/sync",
            ) from e

    def get_network_connection(self, session: Session, *, timeout_s: Optional[float] = None) -> int:
        return int(self._value("GET", session, "/network_connection", timeout_s=timeout_s))

    def set_network_connection(self, session: Session, mask: int, *, timeout_s: Optional[float] = None) -> int:
        value = self._value(
            "POST",
            session,
            "/network_connection",
            json={"parameters": {"type": mask}},
            timeout_s=timeout_s,
        )
        return int(value) if isinstance(value, int) else mask

    def start_recording_screen(self, session: Session, *, timeout_s: Optional[float] = None) -> None:
        self._value("POST", session, "/appium/start_recording_screen", json={}, timeout_s=timeout_s)

    def stop_recording_screen(self, session: Session, *, timeout_s: Optional[float] = None) -> bytes:
        value = self._value("POST", session, "/appium/stop_recording_screen", json={}, timeout_s=timeout_s)
        if not isinstance(value, str):
            raise self._unexpected(session, "/appium/stop_recording_screen", "base64 string", value)
        return base64.b64decode(value)
