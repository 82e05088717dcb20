"""
Cross-platform mobile UI automation core for Android and iOS devices.
"""

from .capabilities import CapabilitySet, Platform, load_capability_matrix
from .config import RunSettings, load_settings
from .coordinator import ParallelCoordinator, summarize
from .driver import PlatformDriver
from .gestures import Direction, GestureIntent, NormalizedPoint
from .protocol_client import ProtocolClient
from .session import SessionHooks, SessionRunner, TestStep
from .suite import load_suite

__all__ = [
    "CapabilitySet",
    "Direction",
    "GestureIntent",
    "NormalizedPoint",
    "ParallelCoordinator",
    "Platform",
    "PlatformDriver",
    "ProtocolClient",
    "RunSettings",
    "SessionHooks",
    "SessionRunner",
    "TestStep",
    "load_capability_matrix",
    "load_settings",
    "load_suite",
    "summarize",
]
