"""Fusion path metrics.

Counts which decision path each message took (strong signal, low
confidence, rule only, fused ...) so escalation thresholds can be tuned from
real traffic.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

FUSION_PATHS = (
    "strong_signal",
    "low_confidence",
    "rule_only",
    "fused",
    "llm_unavailable",
    "llm_no_result",
)


class FusionMetrics:
    """Thread-safe process-wide counters for the fusion engine."""

    _instance: Optional["FusionMetrics"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "FusionMetrics":
        """One counter set per process."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._lock = threading.Lock()
        self._paths: dict[str, int] = defaultdict(int)
        self._scam_types: dict[str, int] = defaultdict(int)
        self._overrides: int = 0
        self._total_analyses: int = 0
        self._started: datetime = datetime.now()

    def record_path(self, path: str) -> None:
        """Record the decision path of one message."""
        if path not in FUSION_PATHS:
            logger.debug("Unknown fusion path %s", path)
        with self._lock:
            self._paths[path] += 1
            if path not in ("llm_unavailable", "llm_no_result"):
                self._total_analyses += 1

    def record_override(self) -> None:
        """Model verdict disagreed with the fused threshold decision."""
        with self._lock:
            self._overrides += 1

    def record_scam_type(self, scam_type: str) -> None:
        with self._lock:
            self._scam_types[scam_type] += 1

    def count(self, path: str) -> int:
        with self._lock:
            return self._paths.get(path, 0)

    @property
    def overrides(self) -> int:
        with self._lock:
            return self._overrides

    def summary(self) -> dict:
        """Snapshot of every counter, for the CLI debug log."""
        with self._lock:
            uptime = datetime.now() - self._started
            return {
                "uptime_seconds": int(uptime.total_seconds()),
                "total_analyses": self._total_analyses,
                "paths": {path: self._paths.get(path, 0) for path in FUSION_PATHS},
                "overrides": self._overrides,
                "scam_types": dict(self._scam_types),
            }

    def reset(self) -> None:
        """Zero every counter."""
        with self._lock:
            self._paths.clear()
            self._scam_types.clear()
            self._overrides = 0
            self._total_analyses = 0
            self._started = datetime.now()


# Global instance
metrics = FusionMetrics()
