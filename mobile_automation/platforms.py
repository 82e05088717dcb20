"""
Per-platform strategies: selector resolution, gesture defaults and the few
behaviours where Android and iOS genuinely differ.

A strategy is picked once, from the platform the caller declared in the
CapabilitySet, and injected into the driver.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Union

from .capabilities import Platform
from .errors import ConfigError, NotFoundError
from .gestures import DEFAULT_MOVE_DURATION_MS, GestureIntent, PointerSequence, synthesize
from .models import ScreenSize, Selector, Session
from .protocol_client import ProtocolClient

logger = logging.getLogger(__name__)

SelectorTable = Mapping[str, Union[str, Selector]]

# W3C / Appium locator strategies accepted verbatim as "using=value"
PASSTHROUGH_STRATEGIES = frozenset(
    {
        "id",
        "xpath",
        "name",
        "class name",
        "accessibility id",
        "-android uiautomator",
        "-ios predicate string",
        "-ios class chain",
    }
)


def _xpath_literal(text: str) -> str:
    if '"' not in text:
        return f'"{text}"'
    if "'" not in text:
        return f"'{text}'"
    parts = text.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


def _java_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class PlatformStrategy:
    platform: Platform
    move_duration_ms: int = DEFAULT_MOVE_DURATION_MS
    supports_network_control: bool = False
    supports_shake: bool = False
    permission_buttons: tuple[str, ...] = ()
    native_context_markers: tuple[str, ...] = ("NATIVE_APP",)
    webview_context_markers: tuple[str, ...] = ("WEBVIEW", "CHROMIUM")

    builtin_selectors: Mapping[str, str] = {}

    def __init__(self, selectors: Optional[SelectorTable] = None) -> None:
        # caller entries win over the built-in ones
        self.selectors: dict[str, Union[str, Selector]] = {**self.builtin_selectors, **(selectors or {})}

    # -- selectors --------------------------------------------------------

    def resolve_selector(self, logical: str) -> Selector:
        if not isinstance(logical, str) or not logical.strip():
            raise ConfigError("selector must be a non-empty string")
        key = logical.strip()
        entry = self.selectors.get(key)
        if isinstance(entry, Selector):
            return entry
        if isinstance(entry, str):
            return self._resolve_rule(entry, origin=key)
        return self._resolve_rule(key, origin=key)

    def _resolve_rule(self, rule: str, *, origin: str) -> Selector:
        if rule.startswith("//") or rule.startswith("(//"):
            return Selector("xpath", rule)
        using, eq, raw_value = rule.partition("=")
        if eq and raw_value and using.strip() in PASSTHROUGH_STRATEGIES:
            return Selector(using.strip(), raw_value)
        prefix, sep, value = rule.partition(":")
        if not sep or not value:
            raise ConfigError(f"Unknown selector {origin!r} for {self.platform.platform_name}")
        prefix = prefix.strip().lower()
        if prefix == "xpath":
            return Selector("xpath", value)
        if prefix == "accessibility":
            return Selector("accessibility id", value)
        if prefix == "class":
            return Selector("class name", value)
        if prefix == "id":
            return self.by_id(value)
        if prefix == "text":
            return self.by_text(value)
        if prefix == "text~":
            return self.by_text_contains(value)
        if prefix == "button":
            return self.by_button(value)
        raise ConfigError(f"Unknown selector prefix {prefix!r} in {origin!r}")

    def by_id(self, value: str) -> Selector:
        raise NotImplementedError

    def by_text(self, value: str) -> Selector:
        raise NotImplementedError

    def by_text_contains(self, value: str) -> Selector:
        raise NotImplementedError

    def by_button(self, value: str) -> Selector:
        raise NotImplementedError

    # -- gestures ---------------------------------------------------------

    def synthesize_gesture(self, intent: GestureIntent, screen: ScreenSize) -> PointerSequence:
        return synthesize(intent, screen, move_duration_ms=self.move_duration_ms)

    # -- platform behaviours ----------------------------------------------

    def go_back(self, client: ProtocolClient, session: Session) -> None:
        client.back(session)

    def hide_keyboard(self, client: ProtocolClient, session: Session) -> None:
        client.execute_mobile(session, "hideKeyboard")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(selectors={len(self.selectors)})"


class AndroidStrategy(PlatformStrategy):
    platform = Platform.ANDROID
    supports_network_control = True
    permission_buttons = ("Allow", "OK", "While using the app")
    builtin_selectors = {
        "permission.allow": "id:com.android.permissioncontroller:id/permission_allow_button",
        "navigation.up": "accessibility:Navigate up",
    }

    def by_id(self, value: str) -> Selector:
        return Selector("id", value)

    def by_text(self, value: str) -> Selector:
        return Selector("xpath", f"//*[@text={_xpath_literal(value)}]")

    def by_text_contains(self, value: str) -> Selector:
        return Selector("-android uiautomator", f'new UiSelector().textContains("{_java_string(value)}")')

    def by_button(self, value: str) -> Selector:
        return Selector("xpath", f"//android.widget.Button[@text={_xpath_literal(value)}]")


class IOSStrategy(PlatformStrategy):
    platform = Platform.IOS
    supports_shake = True
    move_duration_ms = 500
    builtin_selectors = {
        "navigation.back": "button:Back",
        "keyboard.done": "button:Done",
    }

    def by_id(self, value: str) -> Selector:
        return Selector("accessibility id", value)

    def by_text(self, value: str) -> Selector:
        literal = _xpath_literal(value)
        return Selector("xpath", f"//*[@name={literal} or @label={literal}]")

    def by_text_contains(self, value: str) -> Selector:
        escaped = _java_string(value)
        return Selector("-ios predicate string", f'label CONTAINS "{escaped}" OR name CONTAINS "{escaped}"')

    def by_button(self, value: str) -> Selector:
        return Selector("xpath", f"//XCUIElementTypeButton[@name={_xpath_literal(value)}]")

    def _tap_button_if_displayed(self, client: ProtocolClient, session: Session, name: str) -> bool:
        try:
            element = client.find_element(session, self.by_button(name), logical_selector=f"button:{name}")
        except NotFoundError:
            return False
        if not client.is_displayed(session, element):
            return False
        client.click(session, element)
        return True

    def go_back(self, client: ProtocolClient, session: Session) -> None:
        # iOS has no system back; use the navigation bar's Back button
        if not self._tap_button_if_displayed(client, session, "Back"):
            logger.info("no Back button on screen for session %s", session.id)

    def hide_keyboard(self, client: ProtocolClient, session: Session) -> None:
        if self._tap_button_if_displayed(client, session, "Done"):
            return
        client.execute_mobile(session, "hideKeyboard")


def strategy_for(
    platform: Platform,
    selectors: Optional[Mapping[str, Mapping[str, Union[str, Selector]]]] = None,
) -> PlatformStrategy:
    """
    Build the strategy for a declared platform.

    `selectors` maps logical names to per-platform entries, e.g.
    {"home.title": {"android": "text:API Demos", "ios": "xpath://XCUIElementTypeNavigationBar[@name='UICatalog']"}}.
    Entries without a value for this platform are skipped.
    """
    table: dict[str, Union[str, Selector]] = {}
    for logical, per_platform in (selectors or {}).items():
        if not isinstance(per_platform, Mapping):
            raise ConfigError(f"selector {logical!r} must map platform names to selectors")
        for platform_key, entry in per_platform.items():
            if Platform.parse(platform_key) is platform:
                table[logical] = entry
    if platform is Platform.ANDROID:
        return AndroidStrategy(table)
    return IOSStrategy(table)
