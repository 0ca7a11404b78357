from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from timeline_genai.config import settings
from timeline_genai.models import StoreState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 0


class StatePersistence(Protocol):
    def load(self) -> StoreState | None: ...

    def save(self, state: StoreState) -> None: ...


class JsonFilePersistence:
    """One JSON document per store, rewritten on every mutation."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path or Path(settings.data_dir) / settings.state_file)

    def load(self) -> StoreState | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text("utf-8"))
            return StoreState.from_dict(data["state"])
        except (OSError, ValueError, KeyError, TypeError):
            # Unreadable snapshots are left on disk and the store starts clean.
            logger.warning("Ignoring corrupted store snapshot at %s", self.path, exc_info=True)
            return None

    def save(self, state: StoreState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload: dict[str, Any] = {"state": state.to_dict(), "version": SNAPSHOT_VERSION}
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


class MemoryPersistence:
    def __init__(self) -> None:
        self.document: dict[str, Any] | None = None
        self.saves = 0

    def load(self) -> StoreState | None:
        if self.document is None:
            return None
        return StoreState.from_dict(self.document["state"])

    def save(self, state: StoreState) -> None:
        # Round-trip through JSON so the in-memory copy matches what a file would hold.
        self.document = json.loads(json.dumps({"state": state.to_dict(), "version": SNAPSHOT_VERSION}))
        self.saves += 1
