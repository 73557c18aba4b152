from __future__ import annotations

import threading
from typing import Any, Callable, Optional, Dict

from fastapi import FastAPI, Response
from prometheus_client import Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST, REGISTRY


def create_app(
    *,
    service: Any,
    extra_stats_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Build a FastAPI app exposing:
      - /healthz: liveness
      - /readyz: readiness (trivial true for now)
      - /stats: JSON snapshot (VisualizationService.stats() + optional extra stats)
      - /metrics: Prometheus metrics

    The app expects a `service` with a `stats()` method.
    """
    app = FastAPI(title="retrieval_vis API - query visualization bridge", version="1.0.0")

    # ---------------- Prometheus metrics ----------------
    # Gauges read the service counters on scrape.
    # Default to the global REGISTRY when a custom registry isn't provided.
    reg = registry or REGISTRY
    requests_gauge = Gauge(
        "retrieval_vis_requests_total",
        "Visualization requests received (sync + async)",
        registry=reg,
    )
    published_gauge = Gauge(
        "retrieval_vis_published_total",
        "Composite images published",
        registry=reg,
    )
    failed_gauge = Gauge(
        "retrieval_vis_failed_total",
        "Visualization requests that failed",
        registry=reg,
    )

    def _stat_val(key: str) -> Callable[[], float]:
        def _f() -> float:
            try:
                return float(service.stats().get(key, 0.0))
            except (AttributeError, TypeError, ValueError):
                return 0.0
        return _f

    requests_gauge.set_function(_stat_val("requests"))
    published_gauge.set_function(_stat_val("published"))
    failed_gauge.set_function(_stat_val("failed"))

    @app.get("/metrics")
    def metrics() -> Response:
        data = generate_latest(registry=reg)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    # ---------------- Routes ----------------
    @app.get("/healthz")
    def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz() -> Dict[str, str]:
        return {"status": "ready"}

    @app.get("/stats")
    def stats() -> Dict[str, Any]:
        base = dict(service.stats())
        if extra_stats_provider is not None:
            base.update(extra_stats_provider() or {})
        return base

    return app


def start_server(app: FastAPI, host: str = "0.0.0.0", port: int = 8090) -> threading.Thread:
    """Start a uvicorn server in a background daemon thread and return the thread."""
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    # Avoid uvicorn installing signal handlers in a child thread
    server.install_signal_handlers = lambda: None  # type: ignore[attr-defined]

    def _run() -> None:
        server.run()

    t = threading.Thread(target=_run, daemon=True)
    t.start()
    return t
