import json

import pytest

from mobile_automation import cli, coordinator

from .conftest import FakeProtocolClient


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


@pytest.fixture
def files(tmp_path):
    matrix = _write(
        tmp_path / "matrix.json",
        {
            "capabilities": [
                {"platform": "android", "deviceName": "Pixel_6", "platformVersion": "13", "appId": "io.appium.android.apis"},
                {"platform": "ios", "deviceName": "iPhone 14", "platformVersion": "16.4", "bundleId": "com.example.UICatalog"},
            ]
        },
    )
    suite = _write(tmp_path / "suite.json", {"name": "smoke", "steps": [{"action": "swipe", "direction": "up"}]})
    return matrix, suite


@pytest.fixture
def fake_backend(monkeypatch):
    clients = []

    def factory(settings):
        client = FakeProtocolClient()
        clients.append(client)
        return client

    def run_suite_files(**kwargs):
        return coordinator.run_suite_files(client_factory=factory, **kwargs)

    monkeypatch.setattr(cli, "run_suite_files", run_suite_files)
    return clients


def test_validate_ok(files, capsys):
    matrix, suite = files
    assert cli.main(["validate", "--matrix", matrix, "--suite", suite]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "suite: smoke (1 step(s)" in out
    assert "Android:Pixel_6" in out
    assert "port=8200" in out
    assert "port=8100" in out


def test_validate_bad_matrix(tmp_path, files, capsys):
    _, suite = files
    matrix = _write(tmp_path / "bad.json", {"capabilities": [{"platform": "symbian"}]})
    assert cli.main(["validate", "--matrix", matrix, "--suite", suite]) == cli.EXIT_CONFIG
    assert "ERROR" in capsys.readouterr().err


def test_missing_required_argument_exits_with_config_code():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "--matrix", "m.json"])
    assert excinfo.value.code == cli.EXIT_CONFIG


def test_run_writes_report(files, fake_backend, tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("MOBILE_AUTOMATION_MAX_CONCURRENCY", raising=False)
    matrix, suite = files
    report_path = tmp_path / "out" / "report.json"
    code = cli.main(
        [
            "run",
            "--matrix",
            matrix,
            "--suite",
            suite,
            "--artifacts-dir",
            str(tmp_path / "artifacts"),
            "--report-path",
            str(report_path),
        ]
    )
    assert code == cli.EXIT_OK
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["summary"]["passed"] == 2
    assert len(fake_backend) == 2
    out = capsys.readouterr().out
    assert "Android:Pixel_6: PASS steps=1/1" in out
    assert "total=2 passed=2" in out


def test_run_with_failures_exits_2(files, fake_backend, tmp_path):
    matrix, _ = files
    suite = _write(tmp_path / "failing.json", {"steps": [{"action": "assert_displayed", "target": "text:Nowhere"}]})
    code = cli.main(
        ["run", "--matrix", matrix, "--suite", suite, "--artifacts-dir", str(tmp_path / "artifacts")]
    )
    assert code == cli.EXIT_FAILED
    assert list((tmp_path / "artifacts").glob("run_report_*.json"))


def test_run_rejects_non_positive_concurrency(files):
    matrix, suite = files
    code = cli.main(["run", "--matrix", matrix, "--suite", suite, "--max-concurrency", "0"])
    assert code == cli.EXIT_CONFIG
