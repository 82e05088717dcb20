"""Tests for PlatformDriver: platform binding, actions, scrolling and dispatch rules."""

import pytest

from mobile_automation.driver import DriverState, PlatformDriver
from mobile_automation.errors import DriverStateError, ElementNotFoundAfterScrollError, ElementTimeoutError
from mobile_automation.gestures import Direction, StepKind
from mobile_automation.models import ScreenSize, Selector
from mobile_automation.platforms import AndroidStrategy, IOSStrategy

from .conftest import FakeElement

SELECTORS = {
    "login.button": {"android": "id:io.app:id/login", "ios": "accessibility:Login"},
    "list.target": {"android": "text:Views", "ios": "text:Views"},
}

ANDROID_LOGIN = Selector("id", "io.app:id/login")
IOS_LOGIN = Selector("accessibility id", "Login")


def _driver(fake_client, session, **kwargs):
    driver = PlatformDriver(
        fake_client,
        session,
        selectors=SELECTORS,
        poll_interval_s=0.01,
        wait_timeout_s=0.1,
        **kwargs,
    )
    driver.resolve_platform()
    return driver


def test_strategy_follows_declared_platform(fake_client, android_session, ios_session):
    assert isinstance(_driver(fake_client, android_session).strategy, AndroidStrategy)
    assert isinstance(_driver(fake_client, ios_session).strategy, IOSStrategy)


def test_same_logical_selector_resolves_per_platform(fake_client, android_session, ios_session):
    assert _driver(fake_client, android_session).resolve("login.button") == "id=io.app:id/login"
    assert _driver(fake_client, ios_session).resolve("login.button") == "accessibility id=Login"


def test_mismatched_strategy_is_rejected(fake_client, android_session):
    driver = PlatformDriver(fake_client, android_session, strategy=IOSStrategy())
    with pytest.raises(DriverStateError):
        driver.resolve_platform()


def test_actions_need_resolved_platform(fake_client, android_session):
    driver = PlatformDriver(fake_client, android_session)
    assert driver.state is DriverState.UNINITIALIZED
    with pytest.raises(DriverStateError):
        driver.click("login.button")


def test_click_waits_for_clickable(fake_client, android_session):
    fake_client.add(ANDROID_LOGIN, FakeElement("el-login"))
    driver = _driver(fake_client, android_session)
    driver.click("login.button")
    assert fake_client.clicked == ["el-login"]
    assert "is_enabled" in fake_client.calls
    assert driver.state is DriverState.READY


def test_click_on_missing_element_times_out(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    with pytest.raises(ElementTimeoutError):
        driver.click("login.button")
    assert driver.state is DriverState.READY


def test_set_value_clears_then_types(fake_client, ios_session):
    field = fake_client.add(IOS_LOGIN, FakeElement("el-field", text="old"))
    _driver(fake_client, ios_session).set_value("login.button", "new@example.com")
    assert fake_client.cleared == ["el-field"]
    assert field.text == "new@example.com"


def test_get_text_and_presence(fake_client, android_session):
    fake_client.add(ANDROID_LOGIN, FakeElement("el-login", text="Sign in"))
    driver = _driver(fake_client, android_session)
    assert driver.get_text("login.button") == "Sign in"
    assert driver.is_displayed("login.button")
    assert driver.element_exists("login.button")
    assert not driver.element_exists("list.target")


def test_scroll_until_visible_swipes_until_found(fake_client, android_session):
    target = Selector("xpath", '//*[@text="Views"]')

    def reveal(sequence):
        if len(fake_client.sequences) == 2:
            fake_client.add(target, FakeElement("el-views"))

    fake_client.on_sequence = reveal
    element = _driver(fake_client, android_session).scroll_until_visible("list.target", max_attempts=5)
    assert element.element_id == "el-views"
    assert len(fake_client.sequences) == 2
    first = fake_client.sequences[0]
    # default UP swipe: finger moves from the lower part of the screen upwards
    assert first.first_press.y > first.moves()[0].y


def test_scroll_until_visible_gives_up_after_max_attempts(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    with pytest.raises(ElementNotFoundAfterScrollError) as excinfo:
        driver.scroll_until_visible("list.target", max_attempts=3)
    assert excinfo.value.attempts == 3
    assert len(fake_client.sequences) == 3


def test_scroll_direction_can_be_reversed(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    with pytest.raises(ElementNotFoundAfterScrollError):
        driver.scroll_until_visible("list.target", max_attempts=1, direction=Direction.DOWN)
    sequence = fake_client.sequences[0]
    assert sequence.first_press.y < sequence.moves()[0].y


def test_tap_on_selector_uses_element_center(fake_client, android_session):
    fake_client.add(ANDROID_LOGIN, FakeElement("el-login"))
    sequence = _driver(fake_client, android_session).tap("login.button")
    assert (sequence.first_press.x, sequence.first_press.y) == (200, 250)


def test_gestures_use_live_window_size(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    driver.swipe("left", distance=0.5)
    assert fake_client.sequences[-1].first_press.x == 750
    fake_client.screen = ScreenSize(2000, 1000)
    driver.swipe("left", distance=0.5)
    assert fake_client.sequences[-1].first_press.x == 1500


def test_ios_uses_shorter_move_duration(fake_client, ios_session):
    sequence = _driver(fake_client, ios_session).swipe("up")
    assert sequence.moves()[0].duration_ms == 500


def test_pinch_sends_two_strokes(fake_client, ios_session):
    sequence = _driver(fake_client, ios_session).pinch("in")
    assert len(sequence.strokes()) == 2


def test_pull_to_refresh_holds_before_moving(fake_client, android_session):
    sequence = _driver(fake_client, android_session).pull_to_refresh()
    assert [s.kind for s in sequence.steps][:2] == [StepKind.PRESS, StepKind.WAIT]


def test_interleaved_command_is_refused(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    seen = []

    def reenter(sequence):
        try:
            driver.swipe("up")
        except DriverStateError as e:
            seen.append(e)

    fake_client.on_sequence = reenter
    driver.swipe("down")
    assert len(seen) == 1
    assert driver.state is DriverState.READY


def test_android_back_uses_system_back(fake_client, android_session):
    _driver(fake_client, android_session).go_back()
    assert "back" in fake_client.calls


def test_ios_back_taps_navigation_button(fake_client, ios_session):
    fake_client.add(Selector("xpath", '//XCUIElementTypeButton[@name="Back"]'), FakeElement("el-back"))
    _driver(fake_client, ios_session).go_back()
    assert fake_client.clicked == ["el-back"]
    assert "back" not in fake_client.calls


def test_ios_hide_keyboard_falls_back_to_command(fake_client, ios_session):
    _driver(fake_client, ios_session).hide_keyboard()
    assert ("hideKeyboard", {}) in fake_client.mobile


def test_disposed_driver_refuses_actions(fake_client, android_session):
    driver = _driver(fake_client, android_session)
    driver.dispose()
    with pytest.raises(DriverStateError):
        driver.swipe("up")
