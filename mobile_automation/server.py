#!/usr/bin/env python3
"""
Minimal HTTP service for submitting suite runs and polling their results.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from flask import Flask, jsonify, request

from .config import RunSettings, load_settings
from .coordinator import ClientFactory, PortRegistry, default_client_factory, run_suite_files
from .errors import ConfigError

logger = logging.getLogger(__name__)

Starter = Callable[[Callable[[], None]], None]


def _start_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="suite-run", daemon=True).start()


@dataclass
class RunRecord:
    run_id: str
    matrix_path: str
    suite_path: str
    status: str = "queued"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    report: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "created_at": self.created_at,
            "matrix_path": self.matrix_path,
            "suite_path": self.suite_path,
            "error": self.error,
            "report": self.report,
        }


DONE_STATUSES = ("finished", "failed")


class RunStore:
    """
    In-memory registry of submitted runs.

    Holds at most `max_records` runs; when full, the oldest runs that are
    no longer queued or running are dropped first.
    """

    def __init__(self, max_records: int = 100) -> None:
        self.max_records = max_records
        self._lock = threading.Lock()
        self._runs: dict[str, RunRecord] = {}

    def add(self, record: RunRecord) -> None:
        with self._lock:
            self._runs[record.run_id] = record
            overflow = len(self._runs) - self.max_records
            if overflow <= 0:
                return
            done = [run_id for run_id, r in self._runs.items() if r.status in DONE_STATUSES]
            for run_id in done[:overflow]:
                del self._runs[run_id]
                logger.debug("evicted run %s", run_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._runs.get(run_id)


def create_app(
    *,
    settings: Optional[RunSettings] = None,
    client_factory: ClientFactory = default_client_factory,
    start: Starter = _start_thread,
    max_runs: int = 100,
) -> Flask:
    app = Flask(__name__)
    run_settings = settings or load_settings()
    runs = RunStore(max_records=max_runs)
    ports = PortRegistry()
    app.config["RUN_STORE"] = runs

    def _execute(record: RunRecord, max_concurrency: Optional[int], deadline_s: Optional[float]) -> None:
        record.status = "running"
        try:
            record.report = run_suite_files(
                matrix_path=record.matrix_path,
                suite_path=record.suite_path,
                settings=run_settings,
                max_concurrency=max_concurrency,
                deadline_s=deadline_s,
                client_factory=client_factory,
                ports=ports,
                cancel_event=record.cancel_event,
            )
            record.status = "finished"
        except (ConfigError, OSError) as e:
            record.error = str(e)
            record.status = "failed"
            logger.error("run %s rejected: %s", record.run_id, e)
        except Exception as e:
            record.error = f"{type(e).__name__}: {e}"
            record.status = "failed"
            logger.exception("run %s crashed", record.run_id)

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "server_url": run_settings.server_url})

    @app.route("/runs", methods=["POST"])
    def submit_run():
        """Start a suite run in the background."""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        missing = [key for key in ("matrix_path", "suite_path") if not data.get(key)]
        if missing:
            return jsonify({"error": f"Missing {', '.join(repr(k) for k in missing)} in request body"}), 400

        max_concurrency = data.get("max_concurrency")
        if max_concurrency is not None and (
            isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency <= 0
        ):
            return jsonify({"error": "'max_concurrency' must be a positive integer"}), 400
        deadline_s = data.get("deadline_s")
        if deadline_s is not None and (
            isinstance(deadline_s, bool) or not isinstance(deadline_s, (int, float)) or deadline_s <= 0
        ):
            return jsonify({"error": "'deadline_s' must be a positive number"}), 400

        record = RunRecord(
            run_id=uuid.uuid4().hex,
            matrix_path=str(data["matrix_path"]),
            suite_path=str(data["suite_path"]),
        )
        runs.add(record)
        logger.info("run %s submitted: %s x %s", record.run_id, record.matrix_path, record.suite_path)
        start(lambda: _execute(record, max_concurrency, deadline_s))
        return jsonify({"run_id": record.run_id, "status": record.status}), 202

    @app.route("/runs/<run_id>", methods=["GET"])
    def get_run(run_id: str):
        """Status and, once finished, the report of a run."""
        record = runs.get(run_id)
        if record is None:
            return jsonify({"error": "Run not found"}), 404
        return jsonify(record.to_dict())

    @app.route("/runs/<run_id>/cancel", methods=["POST"])
    def cancel_run(run_id: str):
        """Mark steps not yet started as cancelled; running steps finish."""
        record = runs.get(run_id)
        if record is None:
            return jsonify({"error": "Run not found"}), 404
        record.cancel_event.set()
        logger.info("run %s: cancel requested while %s", run_id, record.status)
        return jsonify({"run_id": run_id, "status": record.status, "cancel_requested": True})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="127.0.0.1", port=8080)
