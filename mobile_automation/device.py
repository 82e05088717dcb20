from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .artifacts import ArtifactStore
from .errors import ContextNotFoundError, NotFoundError, UnsupportedOperationError
from .models import AppState, Session
from .platforms import PlatformStrategy
from .protocol_client import NETWORK_AIRPLANE, NETWORK_DATA, NETWORK_WIFI, ProtocolClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkConnection:
    airplane_mode: bool
    wifi: bool
    data: bool

    @property
    def mask(self) -> int:
        value = 0
        if self.airplane_mode:
            value |= NETWORK_AIRPLANE
        if self.wifi:
            value |= NETWORK_WIFI
        if self.data:
            value |= NETWORK_DATA
        return value

    @classmethod
    def from_mask(cls, mask: int) -> "NetworkConnection":
        return cls(
            airplane_mode=bool(mask & NETWORK_AIRPLANE),
            wifi=bool(mask & NETWORK_WIFI),
            data=bool(mask & NETWORK_DATA),
        )


class DeviceUtilities:
    """
    Session-bound device operations: app lifecycle, contexts, network,
    battery, recording.

    App ids default to the one declared in the session's CapabilitySet.
    """

    def __init__(
        self,
        client: ProtocolClient,
        session: Session,
        strategy: PlatformStrategy,
        *,
        artifacts: Optional[ArtifactStore] = None,
    ) -> None:
        self.client = client
        self.session = session
        self.strategy = strategy
        self.artifacts = artifacts

    def _app_id(self, app_id: Optional[str]) -> str:
        resolved = app_id or self.session.capabilities.app_id
        if not resolved:
            raise ValueError(f"{self.session.capabilities.label}: no app id given and none in capabilities")
        return resolved

    def _app_args(self, app_id: Optional[str]) -> dict[str, str]:
        return {self.session.platform.app_id_argument: self._app_id(app_id)}

    def _require(self, supported: bool, operation: str) -> None:
        if not supported:
            raise UnsupportedOperationError(operation=operation, platform=self.session.platform.platform_name)

    # -- app lifecycle ----------------------------------------------------

    def install_app(self, path: str | Path) -> None:
        app_path = str(path)
        self.client.execute_mobile(self.session, "installApp", {"appPath": app_path})
        logger.info("app installed on %s: %s", self.session.capabilities.label, app_path)

    def activate_app(self, app_id: Optional[str] = None) -> None:
        self.client.execute_mobile(self.session, "activateApp", self._app_args(app_id))
        logger.info("app activated: %s", self._app_id(app_id))

    def query_app_state(self, app_id: Optional[str] = None) -> AppState:
        state = self.client.query_app_state(self.session, self._app_id(app_id))
        logger.debug("app state for %s: %s", self._app_id(app_id), state.description)
        return state

    def terminate_app(self, app_id: Optional[str] = None) -> None:
        if not self.query_app_state(app_id).is_running:
            return
        self.client.execute_mobile(self.session, "terminateApp", self._app_args(app_id))
        logger.info("app terminated: %s", self._app_id(app_id))

    def remove_app(self, app_id: Optional[str] = None) -> None:
        if self.query_app_state(app_id) is AppState.NOT_INSTALLED:
            return
        self.client.execute_mobile(self.session, "removeApp", self._app_args(app_id))
        logger.info("app removed: %s", self._app_id(app_id))

    # -- contexts ---------------------------------------------------------

    def _switch_to_matching(self, markers: tuple[str, ...], wanted: str) -> str:
        contexts = self.client.get_contexts(self.session)
        for context in contexts:
            if any(marker in context for marker in markers):
                self.client.switch_context(self.session, context)
                logger.info("switched to %s context: %s", wanted, context)
                return context
        raise ContextNotFoundError(wanted=wanted, available=contexts)

    def switch_to_native_context(self) -> str:
        return self._switch_to_matching(self.strategy.native_context_markers, "native")

    def switch_to_webview_context(self) -> str:
        return self._switch_to_matching(self.strategy.webview_context_markers, "webview")

    # -- network / power --------------------------------------------------

    def get_network_connection(self) -> NetworkConnection:
        self._require(self.strategy.supports_network_control, "get_network_connection")
        return NetworkConnection.from_mask(self.client.get_network_connection(self.session))

    def set_network_connection(
        self,
        *,
        airplane_mode: bool = False,
        wifi: bool = True,
        data: bool = True,
    ) -> NetworkConnection:
        self._require(self.strategy.supports_network_control, "set_network_connection")
        wanted = NetworkConnection(airplane_mode=airplane_mode, wifi=wifi, data=data)
        applied = self.client.set_network_connection(self.session, wanted.mask)
        logger.info("network connection on %s set to %s", self.session.capabilities.label, wanted)
        return NetworkConnection.from_mask(applied)

    def get_battery_info(self) -> dict[str, Any]:
        info = self.client.execute_mobile(self.session, "batteryInfo")
        return dict(info) if isinstance(info, dict) else {"raw": info}

    def get_device_info(self) -> dict[str, Any]:
        caps = self.session.capabilities
        screen = self.client.get_window_size(self.session)
        return {
            "platform": caps.platform.value,
            "device_name": caps.device_name,
            "platform_version": caps.platform_version,
            "automation_backend": caps.automation_backend,
            "orientation": self.client.get_orientation(self.session),
            "screen_size": {"width": screen.width, "height": screen.height},
        }

    def lock_device(self) -> None:
        self.client.execute_mobile(self.session, "lock")

    def unlock_device(self) -> None:
        self.client.execute_mobile(self.session, "unlock")

    def shake_device(self) -> None:
        self._require(self.strategy.supports_shake, "shake_device")
        self.client.execute_mobile(self.session, "shake")

    def handle_permission_dialogs(self) -> list[str]:
        """Accept any visible permission dialog buttons; returns what was tapped."""
        tapped: list[str] = []
        for label in self.strategy.permission_buttons:
            selector = self.strategy.by_button(label)
            try:
                element = self.client.find_element(self.session, selector, logical_selector=f"button:{label}")
            except NotFoundError:
                continue
            if self.client.is_displayed(self.session, element):
                self.client.click(self.session, element)
                tapped.append(label)
        if tapped:
            logger.info("permission dialogs handled on %s: %s", self.session.capabilities.label, tapped)
        return tapped

    # -- recording / screenshots ------------------------------------------

    def start_recording(self) -> None:
        self.client.start_recording_screen(self.session)
        logger.info("screen recording started on %s", self.session.capabilities.label)

    def stop_recording(self, path: Optional[str | Path] = None, *, test_name: str = "recording") -> Optional[Path]:
        """
        Stop recording. The video goes to `path` when given, else into the
        artifact store; with neither, the bytes are discarded and None returned.
        """
        video = self.client.stop_recording_screen(self.session)
        if path is not None:
            out = Path(path)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(video)
        elif self.artifacts is not None:
            out = self.artifacts.save_bytes(
                video,
                session_id=self.session.id,
                test_name=test_name,
                capabilities=self.session.capabilities,
                ext="mp4",
            )
        else:
            return None
        logger.info("screen recording saved: %s", out)
        return out

    def take_screenshot(self, test_name: str) -> Path:
        if self.artifacts is None:
            raise ValueError("no artifact store configured")
        return self.artifacts.save_bytes(
            self.client.get_screenshot_png_bytes(self.session),
            session_id=self.session.id,
            test_name=test_name,
            capabilities=self.session.capabilities,
            ext="png",
        )
