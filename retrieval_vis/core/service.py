"""
Visualization service: one pipeline, two entry points.

- visualize_query: synchronous call; returns the composite or raises
- on_retrieval_result: fire-and-forget notification; failures are logged and dropped
Both publish the composite through the injected ImagePublisher.
"""

from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict

from retrieval_vis.core.datamodel import ImageMsg, Query, RetrievalResult
from retrieval_vis.core.errors import VisualizationError
from retrieval_vis.core.pipeline import VisualizationCompositor

logger = logging.getLogger(__name__)


class ImagePublisher(ABC):
    """Broadcast channel for composite images. Must tolerate concurrent writers."""

    @abstractmethod
    def publish(self, image: ImageMsg) -> None:
        raise NotImplementedError


class VisualizationService:
    """Owns the compositor and the output channel for the lifetime of the process."""

    def __init__(self, compositor: VisualizationCompositor, publisher: ImagePublisher):
        self.compositor = compositor
        self.publisher = publisher

        self._lock = threading.Lock()
        self._requests = 0
        self._published = 0
        self._failures: Counter = Counter()

    def _process(self, query: Query, result: RetrievalResult) -> ImageMsg:
        with self._lock:
            self._requests += 1
        try:
            image = self.compositor.run(query, result)
        except VisualizationError as e:
            with self._lock:
                self._failures[e.kind] += 1
            raise

        self.publisher.publish(image)
        with self._lock:
            self._published += 1
        return image

    # -------- public entrypoints --------
    def visualize_query(self, query: Query, result: RetrievalResult) -> ImageMsg:
        """Synchronous call: publish and return the composite, or raise."""
        return self._process(query, result)

    def on_retrieval_result(self, query: Query, result: RetrievalResult) -> None:
        """Asynchronous notification: publish the composite; errors are logged and dropped."""
        try:
            self._process(query, result)
        except VisualizationError as e:
            logger.error(f"[service] dropping retrieval result ({e.kind}): {e}")

    def record_failure(self, kind: str) -> None:
        """Count a failure detected before the pipeline ran (e.g. malformed envelope)."""
        with self._lock:
            self._failures[kind] += 1

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "requests": self._requests,
                "published": self._published,
                "failed": sum(self._failures.values()),
                "failures": dict(self._failures),
            }
