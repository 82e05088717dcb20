from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Mapping, Optional, Union

from .errors import DriverStateError, ElementNotFoundAfterScrollError, NotFoundError, StaleElementError
from .gestures import Direction, GestureIntent, NormalizedPoint, PointerSequence
from .models import Bounds, ElementHandle, Session
from .platforms import PlatformStrategy, strategy_for
from .protocol_client import ProtocolClient
from .waits import DEFAULT_POLL_INTERVAL_S, WaitEngine

logger = logging.getLogger(__name__)

DEFAULT_SCROLL_ATTEMPTS = 10

GestureTarget = Union[str, NormalizedPoint, Bounds]


class DriverState(Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    READY = "ready"
    DISPATCHING = "dispatching"
    DISPOSED = "disposed"


class PlatformDriver:
    """
    One action API over either backend.

    The platform comes from the session's CapabilitySet (never sniffed from
    the backend) and picks the strategy once in resolve_platform(). After
    that every action runs through a single dispatch slot: a second command
    while one is in flight is refused rather than interleaved on the session.
    """

    def __init__(
        self,
        client: ProtocolClient,
        session: Session,
        *,
        selectors: Optional[Mapping[str, Mapping[str, str]]] = None,
        strategy: Optional[PlatformStrategy] = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        wait_timeout_s: float = 30.0,
        scroll_attempts: int = DEFAULT_SCROLL_ATTEMPTS,
    ) -> None:
        self.client = client
        self.session = session
        self.scroll_attempts = scroll_attempts
        self._selectors = selectors
        self._strategy = strategy
        self._poll_interval_s = poll_interval_s
        self._wait_timeout_s = wait_timeout_s
        self._waits: Optional[WaitEngine] = None
        self._slot = threading.Lock()
        self.state = DriverState.UNINITIALIZED

    # -- lifecycle --------------------------------------------------------

    def resolve_platform(self) -> PlatformStrategy:
        if self.state is not DriverState.UNINITIALIZED:
            raise DriverStateError(f"resolve_platform() called in state {self.state.value}")
        self.state = DriverState.RESOLVING
        platform = self.session.capabilities.platform
        if self._strategy is None:
            self._strategy = strategy_for(platform, self._selectors)
        elif self._strategy.platform is not platform:
            self.state = DriverState.UNINITIALIZED
            raise DriverStateError(
                f"{type(self._strategy).__name__} cannot drive a {platform.platform_name} session"
            )
        self._waits = WaitEngine(
            self.client,
            self.session,
            resolve=self._strategy.resolve_selector,
            poll_interval_s=self._poll_interval_s,
            default_timeout_s=self._wait_timeout_s,
        )
        self.state = DriverState.READY
        logger.debug("session %s bound to %r", self.session.id, self._strategy)
        return self._strategy

    def dispose(self) -> None:
        self.state = DriverState.DISPOSED

    @property
    def strategy(self) -> PlatformStrategy:
        if self._strategy is None or self.state in {DriverState.UNINITIALIZED, DriverState.RESOLVING}:
            raise DriverStateError("platform has not been resolved yet")
        return self._strategy

    @property
    def waits(self) -> WaitEngine:
        if self._waits is None:
            raise DriverStateError("platform has not been resolved yet")
        return self._waits

    @contextmanager
    def _dispatching(self, action: str) -> Iterator[None]:
        if self.state is not DriverState.READY:
            raise DriverStateError(f"cannot {action}: driver is {self.state.value}")
        if not self._slot.acquire(blocking=False):
            raise DriverStateError(f"cannot {action}: another command is in flight")
        self.state = DriverState.DISPATCHING
        try:
            yield
        finally:
            if self.state is DriverState.DISPATCHING:
                self.state = DriverState.READY
            self._slot.release()

    # -- selectors --------------------------------------------------------

    def resolve(self, logical: str) -> str:
        return str(self.strategy.resolve_selector(logical))

    def _lookup(self, logical: str) -> Optional[ElementHandle]:
        selector = self.strategy.resolve_selector(logical)
        try:
            elements = self.client.find_elements(self.session, selector, logical_selector=logical)
        except NotFoundError:
            return None
        return elements[0] if elements else None

    def _is_displayed(self, logical: str) -> bool:
        element = self._lookup(logical)
        if element is None:
            return False
        try:
            return self.client.is_displayed(self.session, element)
        except (NotFoundError, StaleElementError):
            return False

    # -- element actions --------------------------------------------------

    def find(self, logical: str, *, timeout_s: Optional[float] = None) -> ElementHandle:
        with self._dispatching("find"):
            return self.waits.wait_until_displayed(logical, timeout_s)

    def click(self, logical: str, *, timeout_s: Optional[float] = None) -> None:
        with self._dispatching("click"):
            element = self.waits.wait_until_clickable(logical, timeout_s)
            self.client.click(self.session, element)

    def set_value(self, logical: str, text: str, *, timeout_s: Optional[float] = None) -> None:
        with self._dispatching("set_value"):
            element = self.waits.wait_until_displayed(logical, timeout_s)
            self.client.clear(self.session, element)
            self.client.send_keys(self.session, element, text=text)

    def get_text(self, logical: str, *, timeout_s: Optional[float] = None) -> str:
        with self._dispatching("get_text"):
            element = self.waits.wait_until_displayed(logical, timeout_s)
            return self.client.get_element_text(self.session, element)

    def is_displayed(self, logical: str) -> bool:
        with self._dispatching("is_displayed"):
            return self._is_displayed(logical)

    def element_exists(self, logical: str) -> bool:
        with self._dispatching("element_exists"):
            return self._lookup(logical) is not None

    def wait_until_gone(self, logical: str, *, timeout_s: Optional[float] = None) -> None:
        with self._dispatching("wait_until_gone"):
            self.waits.wait_until_gone(logical, timeout_s)

    def scroll_until_visible(
        self,
        logical: str,
        *,
        max_attempts: Optional[int] = None,
        direction: Union[str, Direction] = Direction.UP,
    ) -> ElementHandle:
        """
        Alternate "is it displayed?" checks with a scroll swipe, at most
        `max_attempts` swipes. The default UP swipe moves content down the list.
        """
        attempts = self.scroll_attempts if max_attempts is None else max_attempts
        if attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        swipe = GestureIntent.swipe(direction)
        with self._dispatching("scroll_until_visible"):
            for attempt in range(attempts + 1):
                element = self._lookup(logical)
                if element is not None:
                    try:
                        if self.client.is_displayed(self.session, element):
                            return element
                    except (NotFoundError, StaleElementError):
                        pass
                if attempt == attempts:
                    break
                logger.debug("scroll %d/%d looking for %r", attempt + 1, attempts, logical)
                self._perform(swipe)
        raise ElementNotFoundAfterScrollError(selector=logical, attempts=attempts)

    # -- gestures ---------------------------------------------------------

    def _gesture_target(self, target: GestureTarget) -> Union[NormalizedPoint, Bounds]:
        if isinstance(target, str):
            element = self.waits.wait_until_displayed(target)
            return self.client.get_element_rect(self.session, element)
        return target

    def _perform(self, intent: GestureIntent) -> PointerSequence:
        screen = self.client.get_window_size(self.session)
        sequence = self.strategy.synthesize_gesture(intent, screen)
        self.client.perform_pointer_sequence(self.session, sequence)
        return sequence

    def perform_gesture(self, intent: GestureIntent) -> PointerSequence:
        with self._dispatching(f"perform {intent.type.value}"):
            return self._perform(intent)

    def tap(self, target: GestureTarget) -> PointerSequence:
        with self._dispatching("tap"):
            return self._perform(GestureIntent.tap(self._gesture_target(target)))

    def long_press(self, target: GestureTarget, *, duration_ms: Optional[int] = None) -> PointerSequence:
        with self._dispatching("long_press"):
            return self._perform(GestureIntent.long_press(self._gesture_target(target), duration_ms=duration_ms))

    def swipe(
        self,
        direction: Union[str, Direction],
        *,
        distance: Optional[float] = None,
        start: Optional[NormalizedPoint] = None,
        duration_ms: Optional[int] = None,
    ) -> PointerSequence:
        return self.perform_gesture(
            GestureIntent.swipe(direction, distance=distance, start=start, duration_ms=duration_ms)
        )

    def pinch(self, direction: Union[str, Direction], *, distance: Optional[float] = None) -> PointerSequence:
        return self.perform_gesture(GestureIntent.pinch(direction, distance=distance))

    def edge_swipe(self, direction: Union[str, Direction], *, distance: Optional[float] = None) -> PointerSequence:
        return self.perform_gesture(GestureIntent.edge_swipe(direction, distance=distance))

    def pull_to_refresh(self, *, distance: Optional[float] = None, hold_ms: Optional[int] = None) -> PointerSequence:
        return self.perform_gesture(GestureIntent.pull_to_refresh(distance=distance, hold_ms=hold_ms))

    # -- navigation -------------------------------------------------------

    def go_back(self) -> None:
        with self._dispatching("go_back"):
            self.strategy.go_back(self.client, self.session)

    def hide_keyboard(self) -> None:
        with self._dispatching("hide_keyboard"):
            self.strategy.hide_keyboard(self.client, self.session)
