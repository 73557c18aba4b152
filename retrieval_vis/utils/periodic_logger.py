"""
Periodic summary logger for retrieval_vis service statistics.

Provides low-overhead periodic logging of service health:
- Request throughput (req/s)
- Published composites
- Failures by kind

Enabled by default, configurable via config/retrieval_vis.yaml.
"""

from __future__ import annotations
import time
import logging

logger = logging.getLogger(__name__)


class PeriodicLogger:
    """Logs a service summary at configurable intervals."""

    def __init__(self, interval_s: float = 30.0, enabled: bool = True):
        """
        Initialize the periodic logger.

        Args:
            interval_s: Seconds between summary logs (default 30.0)
            enabled: Whether periodic logging is enabled (default True)
        """
        self.interval_s = interval_s
        self.enabled = enabled
        self._last_log_time = time.monotonic()
        self._last_requests = 0

    def maybe_log(self, stats: dict) -> bool:
        """
        Log summary if interval elapsed.

        Args:
            stats: Dict from VisualizationService.stats() (cumulative counters)

        Returns:
            True if summary was logged, False otherwise
        """
        if not self.enabled:
            return False

        now = time.monotonic()
        elapsed = now - self._last_log_time
        if elapsed < self.interval_s:
            return False

        requests = int(stats.get("requests", 0))
        rate = (requests - self._last_requests) / max(0.1, elapsed)

        failures = stats.get("failures", {}) or {}
        failure_str = " ".join(f"{k}={v}" for k, v in sorted(failures.items())) or "none"

        logger.info(
            f"[summary] requests={requests} rate={rate:.2f}/s | "
            f"published={stats.get('published', 0)} | "
            f"failures: {failure_str}"
        )

        self._last_requests = requests
        self._last_log_time = now
        return True
