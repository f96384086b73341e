"""Stage State Registry: per-stage session data shared by provisioning and destroy.

Provisioning stores whatever it needs while a stage runs (setup payloads,
volume handles, ...) keyed by stage runtime id; the destroy workflow retires
the entry once the instance has been terminated.

One registry is created by the server and passed by reference to both code
paths. It is guarded by a ``threading.Lock`` so it can be touched from asyncio
tasks and from worker threads alike.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)


class StageStateRegistry:
    """Concurrency-safe map of stage runtime id → opaque session data."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, Any] = {}

    def set(self, stage_runtime_id: str, data: Any) -> None:
        with self._lock:
            self._entries[stage_runtime_id] = data

    def get(self, stage_runtime_id: str) -> Any | None:
        with self._lock:
            return self._entries.get(stage_runtime_id)

    def delete(self, stage_runtime_id: str) -> None:
        """Remove an entry. Deleting an unknown stage is a no-op."""
        with self._lock:
            removed = self._entries.pop(stage_runtime_id, None)
        if removed is not None:
            logger.debug("Retired stage state for %s", stage_runtime_id)

    def __contains__(self, stage_runtime_id: object) -> bool:
        with self._lock:
            return stage_runtime_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
