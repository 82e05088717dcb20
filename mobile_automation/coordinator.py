from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from .artifacts import ArtifactStore
from .capabilities import CapabilitySet, assign_session_ports, load_capability_matrix
from .config import RunSettings
from .errors import ConfigError
from .models import SessionResult, StepOutcome
from .protocol_client import ProtocolClient
from .session import SessionHooks, SessionRunner, TestStep
from .suite import load_suite

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RunSettings], ProtocolClient]


def default_client_factory(settings: RunSettings) -> ProtocolClient:
    return ProtocolClient(settings.server_url, timeout_s=settings.command_timeout_s)


class PortRegistry:
    """Session ports held by in-flight sessions. Safe to share between runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: dict[int, str] = {}

    def reserve(self, port: int, owner: str) -> None:
        with self._lock:
            if port in self._held:
                raise ConfigError(f"session port {port} is already held by {self._held[port]}")
            self._held[port] = owner

    def release(self, port: int) -> None:
        with self._lock:
            self._held.pop(port, None)

    def held(self) -> dict[int, str]:
        with self._lock:
            return dict(self._held)


def summarize(results: Sequence[SessionResult]) -> dict[str, int]:
    summary = {"total": len(results), "passed": 0, "failed": 0, "errored": 0}
    for result in results:
        if result.outcome is StepOutcome.PASS:
            summary["passed"] += 1
        elif result.outcome is StepOutcome.FAIL:
            summary["failed"] += 1
        else:
            summary["errored"] += 1
    return summary


class ParallelCoordinator:
    """
    Runs one SessionRunner per capability set on a bounded thread pool.

    Every worker gets a fresh ProtocolClient from `client_factory` and
    closes it afterwards. A failing or crashing session never affects the
    others; whatever escapes a runner becomes an ERROR result. Results come
    back in matrix order regardless of completion order.
    """

    def __init__(
        self,
        steps: Sequence[TestStep],
        *,
        settings: RunSettings,
        client_factory: ClientFactory = default_client_factory,
        hooks: Optional[SessionHooks] = None,
        selectors: Optional[Mapping[str, Mapping[str, str]]] = None,
        initial_vars: Optional[Mapping[str, Any]] = None,
        artifacts: Optional[ArtifactStore] = None,
        ports: Optional[PortRegistry] = None,
        deadline_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.steps = list(steps)
        self.settings = settings
        self.client_factory = client_factory
        self.hooks = hooks
        self.selectors = selectors
        self.initial_vars = dict(initial_vars or {})
        self.artifacts = artifacts or ArtifactStore(settings.artifacts_dir)
        self.ports = ports or PortRegistry()
        self.deadline_s = deadline_s
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    def _error_result(self, caps: CapabilitySet, error: BaseException, started: float) -> SessionResult:
        return SessionResult(
            session_id=None,
            capability_label=caps.label,
            steps=(),
            outcome=StepOutcome.ERROR,
            duration_s=time.monotonic() - started,
            error=f"{type(error).__name__}: {error}",
        )

    def _run_one(self, caps: CapabilitySet) -> SessionResult:
        started = time.monotonic()
        port = caps.session_port
        try:
            if port is not None:
                self.ports.reserve(port, caps.label)
        except ConfigError as e:
            logger.error("%s not started: %s", caps.label, e)
            return self._error_result(caps, e, started)

        client: Optional[ProtocolClient] = None
        try:
            client = self.client_factory(self.settings)
            runner = SessionRunner(
                caps,
                self.steps,
                client=client,
                settings=self.settings,
                hooks=self.hooks,
                selectors=self.selectors,
                artifacts=self.artifacts,
                initial_vars=self.initial_vars,
                deadline_s=self.deadline_s,
                cancel_event=self.cancel_event,
            )
            return runner.run()
        except Exception as e:
            logger.exception("worker for %s crashed", caps.label)
            return self._error_result(caps, e, started)
        finally:
            if client is not None:
                try:
                    client.close()
                except Exception as e:
                    logger.warning("closing client for %s failed: %s", caps.label, e)
            if port is not None:
                self.ports.release(port)

    def run(self, matrix: Sequence[CapabilitySet], max_concurrency: Optional[int] = None) -> list[SessionResult]:
        workers = self.settings.max_concurrency if max_concurrency is None else max_concurrency
        if workers < 1:
            raise ConfigError("max_concurrency must be >= 1")
        items = assign_session_ports(matrix)

        logger.info("running %d session(s), max concurrency %d", len(items), workers)
        results: list[Optional[SessionResult]] = [None] * len(items)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="session") as executor:
            future_to_idx = {executor.submit(self._run_one, caps): idx for idx, caps in enumerate(items)}
            for future in concurrent.futures.as_completed(future_to_idx):
                idx = future_to_idx[future]
                try:
                    results[idx] = future.result()
                except Exception as e:
                    results[idx] = self._error_result(items[idx], e, time.monotonic())

        final = [r for r in results if r is not None]
        logger.info("run finished: %s", summarize(final))
        return final


def build_report(
    results: Sequence[SessionResult],
    *,
    started_at: datetime,
    ended_at: datetime,
    suite_name: str,
    matrix_path: Optional[str] = None,
    suite_path: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "suite": suite_name,
        "timestamp_start": started_at.isoformat(),
        "timestamp_end": ended_at.isoformat(),
        "total_duration_s": round((ended_at - started_at).total_seconds(), 2),
        "matrix_path": matrix_path,
        "suite_path": suite_path,
        "summary": summarize(results),
        "results": [r.to_dict() for r in results],
    }


def run_suite_files(
    *,
    matrix_path: str | Path,
    suite_path: str | Path,
    settings: RunSettings,
    max_concurrency: Optional[int] = None,
    deadline_s: Optional[float] = None,
    client_factory: ClientFactory = default_client_factory,
    ports: Optional[PortRegistry] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, Any]:
    """
    Load a capability matrix and a suite, run them, and return the JSON
    report. Loading errors (ConfigError, SuiteError, missing files) are
    raised before any session starts.
    """
    matrix = load_capability_matrix(matrix_path)
    suite = load_suite(suite_path)

    coordinator = ParallelCoordinator(
        suite.steps,
        settings=settings,
        client_factory=client_factory,
        selectors=suite.selectors,
        initial_vars=suite.vars,
        ports=ports,
        deadline_s=deadline_s,
        cancel_event=cancel_event,
    )

    started_at = datetime.now()
    results = coordinator.run(matrix, max_concurrency)
    return build_report(
        results,
        started_at=started_at,
        ended_at=datetime.now(),
        suite_name=suite.name,
        matrix_path=str(matrix_path),
        suite_path=str(suite_path),
    )
