from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from .config import (
    as_non_empty_str,
    as_non_negative_float,
    as_positive_int,
    load_json_file,
    require_key,
)
from .errors import ConfigError


class Platform(Enum):
    ANDROID = "android"
    IOS = "ios"

    @classmethod
    def parse(cls, raw: Any) -> "Platform":
        if isinstance(raw, Platform):
            return raw
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        raise ConfigError(f"Unknown platform {raw!r} (expected 'Android' or 'iOS')")

    @property
    def platform_name(self) -> str:
        return "Android" if self is Platform.ANDROID else "iOS"

    @property
    def default_automation_backend(self) -> str:
        return "UiAutomator2" if self is Platform.ANDROID else "XCUITest"

    @property
    def port_capability(self) -> str:
        return "appium:systemPort" if self is Platform.ANDROID else "appium:wdaLocalPort"

    @property
    def port_base(self) -> int:
        return 8200 if self is Platform.ANDROID else 8100

    @property
    def app_id_capability(self) -> str:
        return "appium:appPackage" if self is Platform.ANDROID else "appium:bundleId"

    @property
    def app_id_argument(self) -> str:
        # argument name expected by `mobile: activateApp` and friends
        return "appId" if self is Platform.ANDROID else "bundleId"


# logical key -> raw Appium capability key
_ALIASES: dict[str, tuple[str, ...]] = {
    "platform": ("platform", "platformName"),
    "device_name": ("deviceName", "device_name", "appium:deviceName"),
    "platform_version": ("platformVersion", "platform_version", "appium:platformVersion"),
    "automation_backend": ("automationName", "automation_backend", "automationBackend", "appium:automationName"),
    "app": ("app", "appium:app"),
    "app_id": ("appId", "app_id", "appPackage", "bundleId", "appium:appPackage", "appium:bundleId"),
    "session_port": ("sessionPort", "session_port", "systemPort", "wdaLocalPort", "appium:systemPort", "appium:wdaLocalPort"),
    "session_timeout_s": ("sessionTimeoutS", "session_timeout_s", "newCommandTimeout", "appium:newCommandTimeout"),
}


@dataclass(frozen=True)
class CapabilitySet:
    platform: Platform
    device_name: str
    platform_version: str
    automation_backend: str
    app: Optional[str] = None
    app_id: Optional[str] = None
    session_port: Optional[int] = None
    session_timeout_s: float = 300.0
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), hash=False)

    def __post_init__(self) -> None:
        if not isinstance(self.extra, MappingProxyType):
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        if self.app is None and self.app_id is None:
            raise ConfigError(f"{self.label}: either 'app' or 'app_id' is required")

    @property
    def label(self) -> str:
        return f"{self.platform.platform_name}:{self.device_name}"

    def with_port(self, port: int) -> "CapabilitySet":
        return replace(self, session_port=port)

    def to_capabilities(self) -> dict[str, Any]:
        caps: dict[str, Any] = {
            "platformName": self.platform.platform_name,
            "appium:deviceName": self.device_name,
            "appium:platformVersion": self.platform_version,
            "appium:automationName": self.automation_backend,
            "appium:newCommandTimeout": int(self.session_timeout_s),
        }
        if self.app is not None:
            caps["appium:app"] = self.app
        if self.app_id is not None:
            caps[self.platform.app_id_capability] = self.app_id
        if self.session_port is not None:
            caps[self.platform.port_capability] = self.session_port
        for key, value in self.extra.items():
            caps.setdefault(key, value)
        return caps

    def to_session_payload(self) -> dict[str, Any]:
        return {"capabilities": {"alwaysMatch": self.to_capabilities(), "firstMatch": [{}]}}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, context: str = "capabilities") -> "CapabilitySet":
        """
        Build a CapabilitySet from logical keys (`platform`, `deviceName`, ...)
        or from raw Appium capabilities (`platformName`, `appium:deviceName`, ...).

        Keys that are not recognised are kept as extra capabilities and sent
        to the backend untouched.
        """
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{context}: capability set must be an object")

        consumed: set[str] = set()
        values: dict[str, Any] = {}
        for logical, aliases in _ALIASES.items():
            for alias in aliases:
                if alias in raw:
                    consumed.add(alias)
                    if logical not in values and raw[alias] is not None:
                        values[logical] = raw[alias]

        platform = Platform.parse(require_key(values, "platform", context=context))
        device_name = as_non_empty_str(
            require_key(values, "device_name", context=context), field="deviceName", context=context
        )
        platform_version = as_non_empty_str(
            str(require_key(values, "platform_version", context=context)),
            field="platformVersion",
            context=context,
        )
        automation_backend = values.get("automation_backend") or platform.default_automation_backend
        app = values.get("app")
        app_id = values.get("app_id")
        session_port = values.get("session_port")
        session_timeout_s = values.get("session_timeout_s", 300)

        extra = {k: v for k, v in raw.items() if k not in consumed}
        return cls(
            platform=platform,
            device_name=device_name,
            platform_version=platform_version,
            automation_backend=as_non_empty_str(automation_backend, field="automationName", context=context),
            app=None if app is None else as_non_empty_str(str(app), field="app", context=context),
            app_id=None if app_id is None else as_non_empty_str(app_id, field="appId", context=context),
            session_port=None
            if session_port is None
            else as_positive_int(session_port, field="sessionPort", context=context),
            session_timeout_s=as_non_negative_float(
                session_timeout_s, field="newCommandTimeout", context=context
            ),
            extra=extra,
        )


def validate_matrix(matrix: Iterable[CapabilitySet]) -> list[CapabilitySet]:
    """Reject matrices where two capability sets claim the same session port."""
    items = list(matrix)
    if not items:
        raise ConfigError("capability matrix is empty")
    seen: dict[int, str] = {}
    for caps in items:
        if caps.session_port is None:
            continue
        if caps.session_port in seen:
            raise ConfigError(
                f"session port {caps.session_port} is claimed by both "
                f"{seen[caps.session_port]} and {caps.label}"
            )
        seen[caps.session_port] = caps.label
    return items


def assign_session_ports(matrix: Iterable[CapabilitySet]) -> list[CapabilitySet]:
    """
    Give every capability set without a session port the next free port from
    its platform's base (8200+ for Android systemPort, 8100+ for iOS wdaLocalPort).
    """
    items = validate_matrix(matrix)
    taken = {caps.session_port for caps in items if caps.session_port is not None}
    next_port = {platform: platform.port_base for platform in Platform}

    out: list[CapabilitySet] = []
    for caps in items:
        if caps.session_port is not None:
            out.append(caps)
            continue
        port = next_port[caps.platform]
        while port in taken:
            port += 1
        taken.add(port)
        next_port[caps.platform] = port + 1
        out.append(caps.with_port(port))
    return out


def parse_capability_matrix(raw: Mapping[str, Any], *, context: str) -> list[CapabilitySet]:
    entries = require_key(raw, "capabilities", context=context)
    if not isinstance(entries, list) or not entries:
        raise ConfigError(f"{context}: 'capabilities' must be a non-empty list")
    defaults = raw.get("defaults", {})
    if not isinstance(defaults, Mapping):
        raise ConfigError(f"{context}: 'defaults' must be an object when provided")

    matrix: list[CapabilitySet] = []
    for idx, entry in enumerate(entries, 1):
        if not isinstance(entry, Mapping):
            raise ConfigError(f"{context}: capabilities[{idx}] must be an object")
        merged = {**defaults, **entry}
        matrix.append(CapabilitySet.from_dict(merged, context=f"{context}: capabilities[{idx}]"))
    return validate_matrix(matrix)


def load_capability_matrix(path: str | Path) -> list[CapabilitySet]:
    """
    Load a capability matrix JSON file:

      {
        "defaults": {"appium:autoGrantPermissions": true},
        "capabilities": [
          {"platformName": "Android", "appium:deviceName": "Pixel_6_API_31", ...},
          {"platform": "iOS", "deviceName": "iPhone 14", "platformVersion": "16.0", ...}
        ]
      }
    """
    return parse_capability_matrix(load_json_file(path), context=str(path))
