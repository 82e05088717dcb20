from __future__ import annotations

from typing import Any, Optional


class AutomationError(RuntimeError):
    pass


class BackendError(AutomationError):
    """
    The automation endpoint could not be reached or the session is gone.

    Fatal to the session that raised it; nothing in this package retries it.
    """

    def __init__(
        self,
        *,
        message: str,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url


class SessionError(AutomationError):
    pass


class CommandError(AutomationError):
    """A WebDriver error response (the endpoint answered, but said no)."""

    def __init__(
        self,
        *,
        message: str,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        response_json: Optional[dict[str, Any]] = None,
        response_text: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.error_code = error_code
        self.response_json = response_json
        self.response_text = response_text


class NotFoundError(CommandError):
    pass


class StaleElementError(CommandError):
    pass


class ElementTimeoutError(AutomationError):
    def __init__(self, *, selector: str, timeout_s: float, last_observed_state: str) -> None:
        super().__init__(
            f"Timed out after {timeout_s:g}s waiting on {selector!r} "
            f"(last observed state: {last_observed_state})"
        )
        self.selector = selector
        self.timeout_s = timeout_s
        self.last_observed_state = last_observed_state


class ElementNotFoundAfterScrollError(AutomationError):
    def __init__(self, *, selector: str, attempts: int) -> None:
        super().__init__(f"{selector!r} not visible after {attempts} scroll attempt(s)")
        self.selector = selector
        self.attempts = attempts


class ContextNotFoundError(AutomationError):
    def __init__(self, *, wanted: str, available: list[str]) -> None:
        super().__init__(f"No context matching {wanted!r}; available: {available}")
        self.wanted = wanted
        self.available = list(available)


class UnsupportedOperationError(AutomationError):
    def __init__(self, *, operation: str, platform: str) -> None:
        super().__init__(f"{operation} is not supported on {platform}")
        self.operation = operation
        self.platform = platform


class DriverStateError(AutomationError):
    pass


class ConfigError(ValueError):
    pass


class SuiteError(ConfigError):
    pass
