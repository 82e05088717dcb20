from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence

from .artifacts import ArtifactStore
from .capabilities import CapabilitySet
from .config import RunSettings
from .device import DeviceUtilities
from .driver import PlatformDriver
from .errors import (
    BackendError,
    ContextNotFoundError,
    ElementNotFoundAfterScrollError,
    ElementTimeoutError,
    NotFoundError,
)
from .models import DiagnosticBundle, Session, SessionResult, StepOutcome, TestStepResult
from .protocol_client import ProtocolClient
from .waits import WaitEngine

logger = logging.getLogger(__name__)

FAILURE_TYPES: tuple[type[BaseException], ...] = (
    AssertionError,
    ElementTimeoutError,
    ElementNotFoundAfterScrollError,
    NotFoundError,
    ContextNotFoundError,
)


class LifecycleState(Enum):
    CREATED = "created"
    SESSION_STARTING = "session_starting"
    HOOKS_RUNNING = "hooks_running"
    STEPS_RUNNING = "steps_running"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class StepContext:
    session: Session
    client: ProtocolClient
    driver: PlatformDriver
    device: DeviceUtilities
    artifacts: ArtifactStore
    settings: RunSettings
    vars: dict[str, Any] = field(default_factory=dict)

    @property
    def capabilities(self) -> CapabilitySet:
        return self.session.capabilities

    @property
    def waits(self) -> WaitEngine:
        return self.driver.waits


@dataclass(frozen=True)
class TestStep:
    __test__ = False

    name: str
    action: Callable[[StepContext], Any]


def apply_default_timeouts(ctx: StepContext) -> None:
    timeouts = ctx.settings.backend_timeouts
    ctx.client.set_timeouts(
        ctx.session,
        implicit_ms=timeouts.implicit_ms,
        page_load_ms=timeouts.page_load_ms,
        script_ms=timeouts.script_ms,
    )
    ctx.client.set_orientation(ctx.session, "PORTRAIT")


@dataclass
class SessionHooks:
    before_session: Optional[Callable[[CapabilitySet], None]] = None
    before: Optional[Callable[[StepContext], None]] = apply_default_timeouts
    before_step: Optional[Callable[[StepContext, TestStep], None]] = None
    after_step: Optional[Callable[[StepContext, TestStep, TestStepResult], None]] = None
    after: Optional[Callable[[StepContext, list[TestStepResult]], None]] = None
    after_session: Optional[Callable[[CapabilitySet, SessionResult], None]] = None


@contextmanager
def open_session(client: ProtocolClient, caps: CapabilitySet, *, timeout_s: Optional[float] = None) -> Iterator[Session]:
    """Scoped session: destroyed on the way out however the block exits."""
    session = client.create_session(caps, timeout_s=timeout_s)
    try:
        yield session
    finally:
        client.destroy_session(session)


def classify(error: BaseException) -> StepOutcome:
    return StepOutcome.FAIL if isinstance(error, FAILURE_TYPES) else StepOutcome.ERROR


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class SessionRunner:
    """
    Owns one device session from creation to teardown.

    Steps run in order. A failing step becomes a FAIL/ERROR result (with a
    screenshot and page source when the backend is still reachable) and the
    next step runs; a BackendError aborts the rest. Teardown always runs,
    and nothing escapes run(): a session that cannot start comes back as an
    ERROR result with no steps.
    """

    def __init__(
        self,
        capabilities: CapabilitySet,
        steps: Sequence[TestStep],
        *,
        client: ProtocolClient,
        settings: RunSettings,
        hooks: Optional[SessionHooks] = None,
        selectors: Optional[Mapping[str, Mapping[str, str]]] = None,
        artifacts: Optional[ArtifactStore] = None,
        initial_vars: Optional[Mapping[str, Any]] = None,
        deadline_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capabilities = capabilities
        self.steps = list(steps)
        self.client = client
        self.settings = settings
        self.hooks = hooks or SessionHooks()
        self.selectors = selectors
        self.artifacts = artifacts or ArtifactStore(settings.artifacts_dir)
        self.initial_vars = dict(initial_vars or {})
        self.deadline_s = deadline_s
        self.cancel_event = cancel_event
        self._clock = clock
        self._started_at = 0.0
        self.state = LifecycleState.CREATED
        self.session: Optional[Session] = None

    def _cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        if self.deadline_s is not None and self._clock() - self._started_at >= self.deadline_s:
            return True
        return False

    def _result(self, steps: list[TestStepResult], *, error: Optional[str] = None, force_error: bool = False) -> SessionResult:
        outcome = StepOutcome.ERROR if force_error else SessionResult.overall_outcome(steps)
        return SessionResult(
            session_id=None if self.session is None else self.session.id,
            capability_label=self.capabilities.label,
            steps=tuple(steps),
            outcome=outcome,
            duration_s=self._clock() - self._started_at,
            error=error,
        )

    def run(self) -> SessionResult:
        self._started_at = self._clock()
        self.state = LifecycleState.SESSION_STARTING
        label = self.capabilities.label

        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning("session on %s cancelled before it started", label)
            self.state = LifecycleState.CLOSED
            cancelled = [TestStepResult(step.name, StepOutcome.ERROR, 0.0, message="cancelled") for step in self.steps]
            result = self._result(cancelled, error="cancelled")
            self._after_session(result)
            return result

        try:
            if self.hooks.before_session is not None:
                self.hooks.before_session(self.capabilities)
            logger.info("starting session on %s", label)
            self.session = self.client.create_session(self.capabilities, timeout_s=self.settings.command_timeout_s)
        except Exception as e:
            logger.error("session on %s failed to start: %s", label, e)
            self.state = LifecycleState.CLOSED
            result = self._result([], error=_describe(e), force_error=True)
            self._after_session(result)
            return result

        results: list[TestStepResult] = []
        ctx: Optional[StepContext] = None
        run_error: Optional[str] = None
        driver = PlatformDriver(
            self.client,
            self.session,
            selectors=self.selectors,
            poll_interval_s=self.settings.poll_interval_s,
            wait_timeout_s=self.settings.wait_timeout_s,
            scroll_attempts=self.settings.scroll_attempts,
        )
        try:
            strategy = driver.resolve_platform()
            ctx = StepContext(
                session=self.session,
                client=self.client,
                driver=driver,
                device=DeviceUtilities(self.client, self.session, strategy, artifacts=self.artifacts),
                artifacts=self.artifacts,
                settings=self.settings,
                vars=dict(self.initial_vars),
            )

            self.state = LifecycleState.HOOKS_RUNNING
            skip_reason: Optional[str] = None
            if self.hooks.before is not None:
                try:
                    self.hooks.before(ctx)
                except Exception as e:
                    logger.error("before hook failed on %s: %s", label, e)
                    skip_reason = f"skipped: before hook failed: {_describe(e)}"
                    run_error = skip_reason

            self.state = LifecycleState.STEPS_RUNNING
            run_error = self._run_steps(ctx, results, skip_reason) or run_error
        except Exception as e:
            logger.exception("unexpected error driving %s", label)
            run_error = _describe(e)
            for step in self.steps[len(results):]:
                results.append(TestStepResult(step.name, StepOutcome.ERROR, 0.0, message=run_error))
        finally:
            self.state = LifecycleState.FINALIZING
            teardown_error = self._teardown(ctx, driver, results)
            self.state = LifecycleState.CLOSED

        result = self._result(results, error=run_error or teardown_error)
        self._after_session(result)
        logger.info("session on %s finished: %s in %.2fs", label, result.outcome.value, result.duration_s)
        return result

    def _run_steps(self, ctx: StepContext, results: list[TestStepResult], skip_reason: Optional[str]) -> Optional[str]:
        aborted = skip_reason
        for step in self.steps:
            if aborted is None and self._cancelled():
                aborted = "cancelled"
                logger.warning("session on %s cancelled before step %r", self.capabilities.label, step.name)
            if aborted is not None:
                results.append(TestStepResult(step.name, StepOutcome.ERROR, 0.0, message=aborted))
                continue

            result, error = self._run_step(ctx, step)
            results.append(result)
            if isinstance(error, BackendError):
                aborted = f"aborted after backend failure: {error}"
        return aborted

    def _run_step(self, ctx: StepContext, step: TestStep) -> tuple[TestStepResult, Optional[BaseException]]:
        t0 = self._clock()
        error: Optional[BaseException] = None
        try:
            if self.hooks.before_step is not None:
                self.hooks.before_step(ctx, step)
            step.action(ctx)
        except Exception as e:
            error = e

        if error is None:
            result = TestStepResult(step.name, StepOutcome.PASS, self._clock() - t0)
        else:
            outcome = classify(error)
            logger.warning("step %r on %s: %s %s", step.name, self.capabilities.label, outcome.value, _describe(error))
            result = TestStepResult(
                step.name,
                outcome,
                self._clock() - t0,
                message=_describe(error),
                diagnostics=self._capture_diagnostics(ctx, step, error),
            )

        if self.hooks.after_step is not None:
            try:
                self.hooks.after_step(ctx, step, result)
            except Exception:
                logger.exception("after_step hook failed for %r", step.name)
        return result, error

    def _capture_diagnostics(self, ctx: StepContext, step: TestStep, error: BaseException) -> DiagnosticBundle:
        last_state = error.last_observed_state if isinstance(error, ElementTimeoutError) else None
        screenshot_path = page_source_path = None
        if not isinstance(error, BackendError):
            try:
                screenshot_path = str(
                    self.artifacts.save_bytes(
                        self.client.get_screenshot_png_bytes(ctx.session),
                        session_id=ctx.session.id,
                        test_name=step.name,
                        capabilities=ctx.capabilities,
                        ext="png",
                    )
                )
                page_source_path = str(
                    self.artifacts.save_text(
                        self.client.get_page_source(ctx.session),
                        session_id=ctx.session.id,
                        test_name=step.name,
                        capabilities=ctx.capabilities,
                        ext="xml",
                    )
                )
            except Exception as e:
                logger.warning("could not capture diagnostics for %r: %s", step.name, e)
        return DiagnosticBundle(
            screenshot_path=screenshot_path,
            page_source_path=page_source_path,
            last_element_state=last_state,
            error_type=type(error).__name__,
        )

    def _teardown(self, ctx: Optional[StepContext], driver: PlatformDriver, results: list[TestStepResult]) -> Optional[str]:
        error: Optional[str] = None
        if ctx is not None and self.hooks.after is not None:
            try:
                self.hooks.after(ctx, list(results))
            except Exception as e:
                logger.exception("after hook failed on %s", self.capabilities.label)
                error = f"after hook failed: {_describe(e)}"
        driver.dispose()
        if self.session is not None:
            try:
                self.client.destroy_session(self.session, timeout_s=self.settings.command_timeout_s)
            except Exception as e:
                logger.error("could not destroy session %s: %s", self.session.id, e)
                error = error or f"teardown failed: {_describe(e)}"
        return error

    def _after_session(self, result: SessionResult) -> None:
        if self.hooks.after_session is None:
            return
        try:
            self.hooks.after_session(self.capabilities, result)
        except Exception:
            logger.exception("after_session hook failed on %s", self.capabilities.label)
