"""
Workload history: shape frequencies persisted across advisory runs.

The only state the advisor keeps between runs. A run reads the stored
frequencies to weight the current workload sample (so a shape that was
hot last week is not forgotten because today's sample missed it), then
folds the sample back in with exponential decay.

Storage format: a JSON file (`.tunesense/history.json` by default)
keyed by table and shape key.

Usage:
    from tunesense.history import WorkloadHistory

    history = WorkloadHistory(".tunesense/history.json")
    weighted = history.weighted_frequencies("orders", shapes)
    history.update("orders", shapes)
    history.save()
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Sequence

from tunesense.advisor.models import QueryShape

logger = logging.getLogger(__name__)

HISTORY_SCHEMA_VERSION = "1.0"


class WorkloadHistory:
    """
    JSON-file store of decayed shape frequencies per table.

    weighted = current + weight * stored
    stored'  = decay * stored + current

    Shapes whose decayed frequency drops below `prune_below` are removed.
    """

    def __init__(
        self,
        history_path: str | Path = ".tunesense/history.json",
        weight: float = 0.5,
        decay: float = 0.5,
        prune_below: float = 0.01,
    ) -> None:
        self.path = Path(history_path)
        self.weight = weight
        self.decay = decay
        self.prune_below = prune_below
        self._lock = threading.Lock()
        self.data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Load existing history or return an empty structure."""
        if not self.path.exists():
            return {"schema_version": HISTORY_SCHEMA_VERSION, "tables": {}}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load workload history from %s: %s", self.path, e)
            return {"schema_version": HISTORY_SCHEMA_VERSION, "tables": {}}
        if not isinstance(data, dict) or not isinstance(data.get("tables"), dict):
            logger.warning("Ignoring malformed workload history in %s", self.path)
            return {"schema_version": HISTORY_SCHEMA_VERSION, "tables": {}}
        return data

    def save(self) -> None:
        """Persist history to disk."""
        with self._lock:
            payload = json.dumps(self.data, indent=2, sort_keys=True) + "\n"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(payload, encoding="utf-8")
        logger.info("Workload history saved to %s (%d tables)", self.path, len(self.tables))

    @property
    def tables(self) -> dict[str, Any]:
        return self.data.get("tables", {})

    def frequencies(self, table: str) -> dict[str, float]:
        """Stored (decayed) frequency per shape key."""
        with self._lock:
            entries = self.tables.get(table, {})
            return {key: float(entry.get("frequency", 0.0)) for key, entry in entries.items()}

    def weighted_frequencies(self, table: str, shapes: Sequence[QueryShape]) -> dict[str, float]:
        """Current frequency plus weighted history for each shape in the sample."""
        stored = self.frequencies(table)
        return {
            shape.key: round(shape.frequency + self.weight * stored.get(shape.key, 0.0), 6)
            for shape in shapes
        }

    def update(self, table: str, shapes: Sequence[QueryShape]) -> None:
        """Decay stored frequencies and fold in the current sample."""
        with self._lock:
            entries = self.data.setdefault("tables", {}).setdefault(table, {})
            for key in list(entries):
                decayed = round(entries[key].get("frequency", 0.0) * self.decay, 6)
                if decayed < self.prune_below:
                    del entries[key]
                else:
                    entries[key]["frequency"] = decayed
            for shape in shapes:
                entry = entries.setdefault(shape.key, {
                    "frequency": 0.0,
                    "normalized_text": shape.normalized_text,
                })
                entry["frequency"] = round(entry["frequency"] + shape.frequency, 6)
        logger.debug("Updated workload history for %s with %d shapes", table, len(shapes))

    def forget(self, table: str) -> bool:
        with self._lock:
            return self.data.get("tables", {}).pop(table, None) is not None

    def stats(self) -> dict[str, Any]:
        """Get history store statistics."""
        with self._lock:
            return {
                "tables": len(self.tables),
                "shapes": sum(len(v) for v in self.tables.values()),
                "schema_version": self.data.get("schema_version", "unknown"),
                "path": str(self.path),
                "exists": self.path.exists(),
            }
