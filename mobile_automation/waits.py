from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar, Union

from .errors import ElementTimeoutError, NotFoundError, StaleElementError
from .models import ElementHandle, Selector, Session
from .protocol_client import ProtocolClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 0.25

NEVER_FOUND = "never_found"
VANISHED = "vanished"
NOT_DISPLAYED = "present_not_displayed"
NOT_ENABLED = "displayed_not_enabled"
DISPLAYED = "displayed"
CONDITION_FALSE = "condition_false"

T = TypeVar("T")
WaitTarget = Union[str, ElementHandle]


class WaitEngine:
    """
    Polling waits over a ProtocolClient.

    Each poll looks the selector up again; an ElementHandle passed in only
    contributes its selector. Lookup misses and stale references count as
    "not there yet". Transport failures propagate immediately.
    """

    def __init__(
        self,
        client: ProtocolClient,
        session: Session,
        *,
        resolve: Callable[[str], Selector],
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        default_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be > 0")
        self.client = client
        self.session = session
        self.resolve = resolve
        self.poll_interval_s = poll_interval_s
        self.default_timeout_s = default_timeout_s
        self._clock = clock
        self._sleep = sleep

    def _target(self, target: WaitTarget) -> tuple[str, Selector]:
        if isinstance(target, ElementHandle):
            return target.logical_selector, target.selector
        return target, self.resolve(target)

    def _observe(self, label: str, selector: Selector, *, want_enabled: bool = False) -> tuple[str, Optional[ElementHandle]]:
        try:
            elements = self.client.find_elements(self.session, selector, logical_selector=label)
        except NotFoundError:
            elements = []
        if not elements:
            return NEVER_FOUND, None
        element = elements[0]
        try:
            if not self.client.is_displayed(self.session, element):
                return NOT_DISPLAYED, element
            if want_enabled and not self.client.is_enabled(self.session, element):
                return NOT_ENABLED, element
        except (NotFoundError, StaleElementError):
            return NEVER_FOUND, None
        return DISPLAYED, element

    def _poll(
        self,
        label: str,
        timeout_s: Optional[float],
        check: Callable[[], tuple[bool, Any, str]],
    ) -> Any:
        timeout = self.default_timeout_s if timeout_s is None else timeout_s
        deadline = self._clock() + timeout
        last_state = NEVER_FOUND
        seen = False
        polls = 0
        while True:
            polls += 1
            done, value, state = check()
            if state != NEVER_FOUND:
                seen = True
            elif seen:
                state = VANISHED
            if done:
                logger.debug("wait on %r satisfied after %d poll(s)", label, polls)
                return value
            last_state = state
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.info("wait on %r timed out after %d poll(s); last state %s", label, polls, last_state)
                raise ElementTimeoutError(selector=label, timeout_s=timeout, last_observed_state=last_state)
            self._sleep(min(self.poll_interval_s, remaining))

    def wait_until_displayed(self, target: WaitTarget, timeout_s: Optional[float] = None) -> ElementHandle:
        label, selector = self._target(target)

        def check() -> tuple[bool, Any, str]:
            state, element = self._observe(label, selector)
            return state == DISPLAYED, element, state

        return self._poll(label, timeout_s, check)

    def wait_until_clickable(self, target: WaitTarget, timeout_s: Optional[float] = None) -> ElementHandle:
        label, selector = self._target(target)

        def check() -> tuple[bool, Any, str]:
            state, element = self._observe(label, selector, want_enabled=True)
            return state == DISPLAYED, element, state

        return self._poll(label, timeout_s, check)

    def wait_until_gone(self, target: WaitTarget, timeout_s: Optional[float] = None) -> None:
        label, selector = self._target(target)

        def check() -> tuple[bool, Any, str]:
            state, _ = self._observe(label, selector)
            return state != DISPLAYED, None, state

        self._poll(label, timeout_s, check)

    def wait_until(
        self,
        predicate: Callable[[], T],
        *,
        description: str,
        timeout_s: Optional[float] = None,
    ) -> T:
        def check() -> tuple[bool, Any, str]:
            value = predicate()
            return bool(value), value, CONDITION_FALSE

        return self._poll(description, timeout_s, check)
