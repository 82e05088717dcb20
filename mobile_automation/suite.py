from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .capabilities import Platform
from .config import as_non_empty_str, as_non_negative_float, as_positive_int, load_json_file, require_key
from .errors import ConfigError, SuiteError
from .gestures import Direction, NormalizedPoint
from .session import StepContext, TestStep

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_.-]+)\s*}}")

StepAction = Callable[[StepContext], None]


@dataclass(frozen=True)
class Suite:
    name: str
    steps: tuple[TestStep, ...]
    selectors: dict[str, dict[str, str]] = field(default_factory=dict)
    vars: dict[str, str] = field(default_factory=dict)


def render(raw: str, *, vars_map: Mapping[str, Any], context: str) -> str:
    """Substitute {{name}} placeholders; every placeholder must be defined."""
    missing: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in vars_map:
            missing.append(key)
            return ""
        return str(vars_map[key])

    rendered = _VAR_PATTERN.sub(_replace, raw)
    if missing:
        missing_keys = ", ".join(sorted(set(missing)))
        raise SuiteError(f"{context}: missing template variable(s): {missing_keys}")
    return rendered


def _str(step: Mapping[str, Any], key: str, *, context: str) -> str:
    try:
        return as_non_empty_str(require_key(step, key, context=context), field=key, context=context)
    except ConfigError as e:
        raise SuiteError(str(e)) from e


def _opt_float(step: Mapping[str, Any], key: str, *, context: str) -> Optional[float]:
    if step.get(key) is None:
        return None
    try:
        return as_non_negative_float(step[key], field=key, context=context)
    except ConfigError as e:
        raise SuiteError(str(e)) from e


def _opt_int(step: Mapping[str, Any], key: str, *, context: str) -> Optional[int]:
    if step.get(key) is None:
        return None
    try:
        return as_positive_int(step[key], field=key, context=context)
    except ConfigError as e:
        raise SuiteError(str(e)) from e


def _direction(step: Mapping[str, Any], *, context: str, allowed: set[Direction]) -> Direction:
    raw = _str(step, "direction", context=context)
    try:
        direction = Direction.parse(raw)
    except ValueError as e:
        raise SuiteError(f"{context}: {e}") from e
    if direction not in allowed:
        names = "/".join(sorted(d.value for d in allowed))
        raise SuiteError(f"{context}: direction must be one of {names}")
    return direction


def _distance(step: Mapping[str, Any], *, context: str) -> Optional[float]:
    distance = _opt_float(step, "distance", context=context)
    if distance is not None and not 0.0 < distance <= 1.0:
        raise SuiteError(f"{context}: 'distance' must be within (0, 1]")
    return distance


def _gesture_target(step: Mapping[str, Any], *, context: str) -> Any:
    if step.get("target") is not None:
        return _str(step, "target", context=context)
    if step.get("x") is None or step.get("y") is None:
        raise SuiteError(f"{context}: needs either 'target' or normalized 'x'/'y'")
    try:
        return NormalizedPoint(float(step["x"]), float(step["y"]))
    except (TypeError, ValueError) as e:
        raise SuiteError(f"{context}: {e}") from e


# -- actions -------------------------------------------------------------


def _build_action(step: Mapping[str, Any], *, context: str) -> StepAction:
    action = _str(step, "action", context=context).lower()

    if action in {"click", "wait_for", "wait_gone", "assert_displayed", "scroll_to"}:
        target = _str(step, "target", context=context)
        timeout_s = _opt_float(step, "timeout_s", context=context)

        if action == "click":
            return lambda ctx: ctx.driver.click(target, timeout_s=timeout_s)
        if action == "wait_for":
            return lambda ctx: ctx.driver.find(target, timeout_s=timeout_s)
        if action == "wait_gone":
            return lambda ctx: ctx.driver.wait_until_gone(target, timeout_s=timeout_s)
        if action == "assert_displayed":

            def assert_displayed(ctx: StepContext) -> None:
                if not ctx.driver.is_displayed(target):
                    raise AssertionError(f"{target!r} is not displayed")

            return assert_displayed

        max_attempts = step.get("max_attempts")
        if max_attempts is not None:
            max_attempts = _opt_int(step, "max_attempts", context=context)
        direction = _direction(
            {"direction": step.get("direction", "up")},
            context=context,
            allowed={Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT},
        )
        return lambda ctx: ctx.driver.scroll_until_visible(target, max_attempts=max_attempts, direction=direction)

    if action == "type":
        target = _str(step, "target", context=context)
        raw_text = step.get("text")
        if not isinstance(raw_text, str):
            raise SuiteError(f"{context}: 'text' must be a string")
        timeout_s = _opt_float(step, "timeout_s", context=context)
        return lambda ctx: ctx.driver.set_value(
            target, render(raw_text, vars_map=ctx.vars, context=context), timeout_s=timeout_s
        )

    if action in {"assert_text_contains", "extract_text"}:
        target = _str(step, "target", context=context)
        timeout_s = _opt_float(step, "timeout_s", context=context)
        if action == "extract_text":
            var_name = _str(step, "var", context=context)

            def extract_text(ctx: StepContext) -> None:
                ctx.vars[var_name] = ctx.driver.get_text(target, timeout_s=timeout_s).strip()

            return extract_text

        expected_raw = _str(step, "contains", context=context)

        def assert_text_contains(ctx: StepContext) -> None:
            expected = render(expected_raw, vars_map=ctx.vars, context=context)
            text = ctx.driver.get_text(target, timeout_s=timeout_s)
            if expected not in text:
                raise AssertionError(f"expected substring {expected!r} in {target!r}, got {text!r}")

        return assert_text_contains

    if action == "set_var":
        var_name = _str(step, "var", context=context)
        raw_value = step.get("value")
        if not isinstance(raw_value, str):
            raise SuiteError(f"{context}: 'value' must be a string")

        def set_var(ctx: StepContext) -> None:
            ctx.vars[var_name] = render(raw_value, vars_map=ctx.vars, context=context)

        return set_var

    if action == "tap":
        target = _gesture_target(step, context=context)
        return lambda ctx: ctx.driver.tap(target)

    if action == "long_press":
        target = _gesture_target(step, context=context)
        duration_ms = _opt_int(step, "duration_ms", context=context)
        return lambda ctx: ctx.driver.long_press(target, duration_ms=duration_ms)

    if action == "swipe":
        direction = _direction(
            step, context=context, allowed={Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT}
        )
        distance = _distance(step, context=context)
        duration_ms = _opt_int(step, "duration_ms", context=context)
        return lambda ctx: ctx.driver.swipe(direction, distance=distance, duration_ms=duration_ms)

    if action == "pinch":
        direction = _direction(step, context=context, allowed={Direction.IN, Direction.OUT})
        distance = _distance(step, context=context)
        return lambda ctx: ctx.driver.pinch(direction, distance=distance)

    if action == "edge_swipe":
        direction = _direction(
            step, context=context, allowed={Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT}
        )
        distance = _distance(step, context=context)
        return lambda ctx: ctx.driver.edge_swipe(direction, distance=distance)

    if action == "pull_to_refresh":
        distance = _distance(step, context=context)
        hold_ms = _opt_int(step, "hold_ms", context=context)
        return lambda ctx: ctx.driver.pull_to_refresh(distance=distance, hold_ms=hold_ms)

    if action == "back":
        return lambda ctx: ctx.driver.go_back()

    if action == "hide_keyboard":
        return lambda ctx: ctx.driver.hide_keyboard()

    if action == "sleep":
        seconds = _opt_float(step, "seconds", context=context)
        if seconds is None:
            raise SuiteError(f"{context}: 'seconds' is required")
        return lambda ctx: time.sleep(seconds)

    if action == "screenshot":
        shot_name = str(step.get("name") or "screenshot")
        return lambda ctx: ctx.device.take_screenshot(shot_name)

    if action in {"activate_app", "terminate_app"}:
        app_id = step.get("app_id")
        if app_id is not None and (not isinstance(app_id, str) or not app_id.strip()):
            raise SuiteError(f"{context}: 'app_id' must be a non-empty string when provided")
        if action == "activate_app":
            return lambda ctx: ctx.device.activate_app(app_id)
        return lambda ctx: ctx.device.terminate_app(app_id)

    if action == "switch_context":
        kind = _str(step, "context", context=context).lower()
        if kind == "native":
            return lambda ctx: ctx.device.switch_to_native_context()
        if kind == "webview":
            return lambda ctx: ctx.device.switch_to_webview_context()
        raise SuiteError(f"{context}: 'context' must be 'native' or 'webview'")

    raise SuiteError(f"{context}: unknown action {action!r}")


# -- loading -------------------------------------------------------------


def _parse_selectors(raw: Any, *, context: str) -> dict[str, dict[str, str]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise SuiteError(f"{context}: 'selectors' must be an object")
    out: dict[str, dict[str, str]] = {}
    for logical, per_platform in raw.items():
        where = f"{context}: selectors[{logical!r}]"
        if not isinstance(per_platform, Mapping) or not per_platform:
            raise SuiteError(f"{where} must map platform names to selectors")
        entry: dict[str, str] = {}
        for platform_key, selector in per_platform.items():
            try:
                platform = Platform.parse(platform_key)
            except ConfigError as e:
                raise SuiteError(f"{where}: {e}") from e
            if not isinstance(selector, str) or not selector.strip():
                raise SuiteError(f"{where}: selector for {platform_key!r} must be a non-empty string")
            entry[platform.value] = selector.strip()
        out[str(logical)] = entry
    return out


def parse_suite(raw: Mapping[str, Any], *, context: str) -> Suite:
    """
    Build a Suite from its JSON form. Everything is validated up front so a
    malformed suite is rejected before any device session starts.

      {
        "name": "api-demos smoke",
        "selectors": {"home.title": {"android": "text:API Demos", "ios": "accessibility:UIKitCatalog"}},
        "vars": {"query": "Views"},
        "steps": [
          {"name": "home visible", "action": "wait_for", "target": "home.title", "timeout_s": 20},
          {"name": "open views", "action": "scroll_to", "target": "text:{{query}}"},
          {"action": "swipe", "direction": "left", "distance": 0.5}
        ]
      }
    """
    if not isinstance(raw, Mapping):
        raise SuiteError(f"{context}: suite must be an object")
    name = str(raw.get("name") or Path(context).stem or "suite")
    selectors = _parse_selectors(raw.get("selectors"), context=context)

    vars_raw = raw.get("vars", {})
    if not isinstance(vars_raw, Mapping):
        raise SuiteError(f"{context}: 'vars' must be an object when provided")
    initial_vars = {str(k): str(v) for k, v in vars_raw.items()}

    if "default_retry" in raw:
        raise SuiteError(f"{context}: 'default_retry' is not supported; give waiting steps a timeout_s instead")

    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise SuiteError(f"{context}: 'steps' must be a non-empty list")

    steps: list[TestStep] = []
    seen_names: set[str] = set()
    for idx, step in enumerate(steps_raw, 1):
        if not isinstance(step, Mapping):
            raise SuiteError(f"{context}: steps[{idx}] must be an object")
        display_name = str(step.get("name") or f"step_{idx}_{step.get('action', 'unknown')}")
        if display_name in seen_names:
            display_name = f"{display_name}_{idx}"
        seen_names.add(display_name)
        step_context = f"{context}: steps[{idx}] ({display_name})"
        if "retry" in step:
            raise SuiteError(f"{step_context}: 'retry' is not supported; give the step a timeout_s instead")
        steps.append(TestStep(name=display_name, action=_build_action(step, context=step_context)))

    return Suite(name=name, steps=tuple(steps), selectors=selectors, vars=initial_vars)


def load_suite(path: str | Path) -> Suite:
    try:
        raw = load_json_file(path)
    except (ConfigError, OSError) as e:
        raise SuiteError(str(e)) from e
    suite = parse_suite(raw, context=str(path))
    logger.info("loaded suite %r from %s: %d step(s)", suite.name, path, len(suite.steps))
    return suite
