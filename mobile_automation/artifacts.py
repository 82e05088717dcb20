from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .capabilities import CapabilitySet

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    # microseconds so repeated captures inside one step don't collide
    return datetime.now().strftime("%Y%m%d-%H%M%S-%f")


def safe_stem(raw: str) -> str:
    stem = "".join(c if c.isalnum() or c in ("-", "_") else "_" for c in raw.strip())
    return stem or "artifact"


class ArtifactStore:
    """
    Append-only store for screenshots, page sources and recordings.

    Files land in `{root}/{session_id}/{testName}_{platform}_{deviceName}_{timestamp}.{ext}`.
    Nothing is ever overwritten; a name clash gets a numeric suffix.
    """

    def __init__(self, root: Path, *, timestamp: Callable[[], str] = _timestamp) -> None:
        self.root = Path(root)
        self._timestamp = timestamp

    def path_for(
        self,
        *,
        session_id: Optional[str],
        test_name: str,
        capabilities: CapabilitySet,
        ext: str,
    ) -> Path:
        directory = self.root / safe_stem(session_id or "no-session")
        name = "_".join(
            [
                safe_stem(test_name),
                capabilities.platform.value,
                safe_stem(capabilities.device_name),
                self._timestamp(),
            ]
        )
        return directory / f"{name}.{ext.lstrip('.')}"

    def _write(self, path: Path, data: bytes) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        candidate = path
        counter = 1
        while True:
            try:
                with open(candidate, "xb") as f:
                    f.write(data)
                break
            except FileExistsError:
                candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
                counter += 1
        logger.info("artifact saved: %s", candidate)
        return candidate

    def save_bytes(
        self,
        data: bytes,
        *,
        session_id: Optional[str],
        test_name: str,
        capabilities: CapabilitySet,
        ext: str,
    ) -> Path:
        path = self.path_for(session_id=session_id, test_name=test_name, capabilities=capabilities, ext=ext)
        return self._write(path, data)

    def save_text(
        self,
        text: str,
        *,
        session_id: Optional[str],
        test_name: str,
        capabilities: CapabilitySet,
        ext: str,
    ) -> Path:
        return self.save_bytes(
            text.encode("utf-8"),
            session_id=session_id,
            test_name=test_name,
            capabilities=capabilities,
            ext=ext,
        )
