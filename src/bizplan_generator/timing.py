"""Stage duration estimates for progress and ETA reporting.

Durations are smoothed with an exponentially weighted moving average and
kept in a ``TimingStore``.  Estimates are advisory only and never affect
control flow.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from .models import ProjectConfig

logger = logging.getLogger(__name__)

DEFAULT_NEW_WEIGHT = 0.3

# Seconds per stage before any run has been measured.
DEFAULT_STAGE_SECONDS: dict[str, float] = {
    "market": 90.0,
    "competition": 90.0,
    "strategy": 120.0,
    "finance": 100.0,
    "devil": 80.0,
}


def ewma_update(old: float, sample: float, new_weight: float = DEFAULT_NEW_WEIGHT) -> float:
    """``old * (1 - w) + sample * w``, rounded to 0.1 s."""
    return round(old * (1.0 - new_weight) + sample * new_weight, 1)


def format_eta(seconds: float) -> str:
    """``"45s"`` or ``"2m 05s"``."""
    total = max(int(round(seconds)), 0)
    minutes, secs = divmod(total, 60)
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


class TimingStore(Protocol):
    def get(self) -> dict[str, float]: ...
    def update(self, key: str, duration_seconds: float) -> None: ...


class InMemoryTimingStore:
    def __init__(
        self,
        defaults: Mapping[str, float] | None = None,
        new_weight: float = DEFAULT_NEW_WEIGHT,
    ) -> None:
        self.defaults = dict(DEFAULT_STAGE_SECONDS if defaults is None else defaults)
        self.new_weight = new_weight
        self._values: dict[str, float] = {}

    def get(self) -> dict[str, float]:
        return {**self.defaults, **self._values}

    def update(self, key: str, duration_seconds: float) -> None:
        old = self.get().get(key)
        self._values[key] = (
            round(duration_seconds, 1) if old is None
            else ewma_update(old, duration_seconds, self.new_weight)
        )


class JsonFileTimingStore:
    """Timing store persisted as a small JSON object; last writer wins."""

    def __init__(
        self,
        path: str | Path,
        defaults: Mapping[str, float] | None = None,
        new_weight: float = DEFAULT_NEW_WEIGHT,
    ) -> None:
        self.path = Path(path)
        self.defaults = dict(DEFAULT_STAGE_SECONDS if defaults is None else defaults)
        self.new_weight = new_weight

    def _read(self) -> dict[str, float]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable timing file %s: %s", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): float(v) for k, v in raw.items() if isinstance(v, (int, float))}

    def get(self) -> dict[str, float]:
        return {**self.defaults, **self._read()}

    def update(self, key: str, duration_seconds: float) -> None:
        stored = self._read()
        old = stored.get(key, self.defaults.get(key))
        stored[key] = (
            round(duration_seconds, 1) if old is None
            else ewma_update(old, duration_seconds, self.new_weight)
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(stored, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write timing file %s: %s", self.path, exc)


def make_timing_store(config: ProjectConfig) -> TimingStore:
    if config.timing_store_path:
        return JsonFileTimingStore(config.timing_store_path, new_weight=config.timing_new_weight)
    return InMemoryTimingStore(new_weight=config.timing_new_weight)


class EtaTracker:
    """Tracks one run's progress against the stored stage estimates."""

    def __init__(
        self,
        store: TimingStore,
        stage_keys: Sequence[str],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.stage_keys = list(stage_keys)
        self._clock = clock
        self._estimates = store.get()
        self._finished: set[str] = set()
        self._current: str | None = None
        self._started_at = 0.0

    def _estimate(self, key: str) -> float:
        return self._estimates.get(key, 60.0)

    def start_stage(self, key: str) -> None:
        self._current = key
        self._started_at = self._clock()

    def finish_stage(self, key: str, *, record: bool = True) -> float:
        """Mark *key* done and return its duration; *record* feeds it into the store."""
        duration = self._clock() - self._started_at if self._current == key else 0.0
        self._finished.add(key)
        self._current = None
        if record:
            self.store.update(key, duration)
        return duration

    def remaining_seconds(self) -> float:
        remaining = 0.0
        for key in self.stage_keys:
            if key in self._finished:
                continue
            estimate = self._estimate(key)
            if key == self._current:
                estimate = max(estimate - (self._clock() - self._started_at), 0.0)
            remaining += estimate
        return remaining

    def progress(self) -> float:
        """Fraction of estimated work done, in ``[0, 1]``."""
        total = sum(self._estimate(k) for k in self.stage_keys)
        if total <= 0:
            return 1.0
        done = sum(self._estimate(k) for k in self.stage_keys if k in self._finished)
        return min(done / total, 1.0)
