"""Tests for device utilities: app lifecycle, contexts, network, permissions, recording."""

import pytest

from mobile_automation.artifacts import ArtifactStore
from mobile_automation.device import DeviceUtilities, NetworkConnection
from mobile_automation.errors import ContextNotFoundError, UnsupportedOperationError
from mobile_automation.models import AppState, Selector
from mobile_automation.platforms import AndroidStrategy, IOSStrategy

from .conftest import FakeElement


@pytest.fixture
def android_device(fake_client, android_session, tmp_path):
    return DeviceUtilities(fake_client, android_session, AndroidStrategy(), artifacts=ArtifactStore(tmp_path))


@pytest.fixture
def ios_device(fake_client, ios_session, tmp_path):
    return DeviceUtilities(fake_client, ios_session, IOSStrategy(), artifacts=ArtifactStore(tmp_path))


def test_network_mask_round_trip():
    assert NetworkConnection(airplane_mode=False, wifi=True, data=True).mask == 6
    assert NetworkConnection.from_mask(1) == NetworkConnection(airplane_mode=True, wifi=False, data=False)


def test_activate_uses_platform_argument(android_device, ios_device, fake_client):
    android_device.activate_app()
    ios_device.activate_app()
    assert fake_client.mobile[0] == ("activateApp", {"appId": "io.appium.android.apis"})
    assert fake_client.mobile[1] == ("activateApp", {"bundleId": "com.example.apple-samplecode.UICatalog"})


def test_terminate_skips_app_that_is_not_running(android_device, fake_client):
    fake_client.app_state = AppState.NOT_RUNNING
    android_device.terminate_app()
    assert fake_client.mobile == []


def test_terminate_running_app(android_device, fake_client):
    android_device.terminate_app("com.other")
    assert fake_client.mobile == [("terminateApp", {"appId": "com.other"})]
    assert android_device.query_app_state() is AppState.NOT_RUNNING


def test_remove_skips_missing_app(android_device, fake_client):
    fake_client.app_state = AppState.NOT_INSTALLED
    android_device.remove_app()
    assert fake_client.mobile == []


def test_install_app_passes_path(android_device, fake_client):
    android_device.install_app("/builds/app-debug.apk")
    assert fake_client.mobile == [("installApp", {"appPath": "/builds/app-debug.apk"})]


def test_switch_to_webview_matches_substring(android_device, fake_client):
    fake_client.contexts = ["NATIVE_APP", "WEBVIEW_chrome"]
    assert android_device.switch_to_webview_context() == "WEBVIEW_chrome"
    assert fake_client.current_context == "WEBVIEW_chrome"
    assert android_device.switch_to_native_context() == "NATIVE_APP"


def test_chromium_context_counts_as_webview(android_device, fake_client):
    fake_client.contexts = ["NATIVE_APP", "CHROMIUM"]
    assert android_device.switch_to_webview_context() == "CHROMIUM"


def test_missing_webview_raises(android_device, fake_client):
    with pytest.raises(ContextNotFoundError) as excinfo:
        android_device.switch_to_webview_context()
    assert excinfo.value.available == ["NATIVE_APP"]


def test_set_network_connection_on_android(android_device, fake_client):
    applied = android_device.set_network_connection(airplane_mode=False, wifi=True, data=False)
    assert fake_client.network_mask == 2
    assert applied == NetworkConnection(airplane_mode=False, wifi=True, data=False)
    assert android_device.get_network_connection().wifi


def test_network_control_is_android_only(ios_device, fake_client):
    with pytest.raises(UnsupportedOperationError):
        ios_device.set_network_connection(wifi=False)
    assert "set_network_connection" not in fake_client.calls


def test_shake_is_ios_only(android_device, ios_device, fake_client):
    with pytest.raises(UnsupportedOperationError):
        android_device.shake_device()
    ios_device.shake_device()
    assert ("shake", {}) in fake_client.mobile


def test_lock_and_unlock(android_device, fake_client):
    android_device.lock_device()
    android_device.unlock_device()
    assert [cmd for cmd, _ in fake_client.mobile] == ["lock", "unlock"]


def test_battery_and_device_info(android_device):
    assert android_device.get_battery_info() == {"level": 0.8, "state": 2}
    info = android_device.get_device_info()
    assert info["platform"] == "android"
    assert info["orientation"] == "PORTRAIT"
    assert info["screen_size"] == {"width": 1000, "height": 2000}


def test_permission_dialog_buttons_are_tapped(android_device, fake_client):
    fake_client.add(Selector("xpath", '//android.widget.Button[@text="Allow"]'), FakeElement("el-allow"))
    fake_client.add(
        Selector("xpath", '//android.widget.Button[@text="OK"]'),
        FakeElement("el-ok", displayed=False),
    )
    assert android_device.handle_permission_dialogs() == ["Allow"]
    assert fake_client.clicked == ["el-allow"]


def test_screenshot_lands_in_artifact_store(android_device, tmp_path):
    path = android_device.take_screenshot("login flow")
    assert path.read_bytes() == b"\x89PNG fake"
    assert path.parent.parent == tmp_path
    assert path.name.startswith("login_flow_android_Pixel_6_")


def test_recording_to_explicit_path(android_device, tmp_path):
    android_device.start_recording()
    out = android_device.stop_recording(tmp_path / "videos" / "run.mp4")
    assert out.read_bytes() == b"fake-mp4"


def test_recording_without_store_is_discarded(fake_client, android_session):
    device = DeviceUtilities(fake_client, android_session, AndroidStrategy())
    device.start_recording()
    assert device.stop_recording() is None
