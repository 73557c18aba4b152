from __future__ import annotations
import argparse
import logging
import os
from typing import Any, Dict, Optional

import yaml

from retrieval_vis.core.pipeline import VisualizationCompositor
from retrieval_vis.core.service import VisualizationService
from retrieval_vis.io.zeromq import ZeroMQImagePublisher, ZeroMQVisualizationServer
from retrieval_vis.utils.periodic_logger import PeriodicLogger
from retrieval_vis.visualization.composer import ComposerConfig, OpenCVPanelComposer
from retrieval_vis.api.server import create_app, start_server

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/retrieval_vis.yaml"


def load_config(path: Optional[str] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Read the YAML config; a missing file means all defaults."""
    if not path or not os.path.isfile(path):
        logger.warning(f"Config file {path} not found, using defaults")
        return {}
    with open(path, "r") as f:
        cfg = yaml.safe_load(f) or {}
    logger.info(f"Configuration loaded from {path}")
    return cfg


def build_service(cfg: Dict[str, Any], publisher) -> VisualizationService:
    composer = OpenCVPanelComposer(ComposerConfig.from_cfg(cfg))
    return VisualizationService(VisualizationCompositor(composer), publisher)


def main(argv=None):
    p = argparse.ArgumentParser(description="Retrieval result visualization service")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config")
    args = p.parse_args(argv)

    print("=" * 60)
    print("  retrieval_vis - Query Visualization Bridge")
    print("=" * 60)

    cfg = load_config(args.config)

    image_output = str(cfg.get("image_output", "visualization_image"))
    topic_input = str(cfg.get("topic_input", "/retrieval_result"))
    service_name = str(cfg.get("service_name", "quasimodo_visualization_service"))

    io_cfg = cfg.get("io", {})
    service_endpoint = io_cfg.get("service_endpoint", "tcp://0.0.0.0:5570")
    input_endpoint = io_cfg.get("input_endpoint", "tcp://127.0.0.1:5571")
    output_endpoint = io_cfg.get("output_endpoint", "tcp://0.0.0.0:5572")

    publisher = ZeroMQImagePublisher(output_endpoint, topic=image_output)
    service = build_service(cfg, publisher)
    logger.info("Visualization service successfully initialized")

    log_cfg = cfg.get("logging", {})
    periodic = PeriodicLogger(
        interval_s=float(log_cfg.get("summary_interval_s", 30.0)),
        enabled=bool(log_cfg.get("periodic_summary", True)),
    )

    server = ZeroMQVisualizationServer(
        service,
        service_endpoint=service_endpoint,
        input_endpoint=input_endpoint,
        service_name=service_name,
        topic_input=topic_input,
        periodic_logger=periodic,
    )

    # ---------------- FastAPI control-plane (optional) ----------------
    api_cfg = cfg.get("api", {})
    host = str(api_cfg.get("host", "0.0.0.0"))
    port = int(api_cfg.get("port", 8090))
    if bool(api_cfg.get("enable", True)):
        app = create_app(service=service)
        start_server(app, host=host, port=port)
        logger.info(f"FastAPI server started on http://{host}:{port}")

    print("=" * 60)
    print("  retrieval_vis is running! Waiting for queries...")
    print(f"  Service: {service_endpoint} ({service_name})")
    print(f"  Input:   {input_endpoint} ({topic_input})")
    print(f"  Output:  {output_endpoint} ({image_output})")
    print("  Press Ctrl+C to stop")
    print("=" * 60)

    try:
        server.run_forever()
    finally:
        publisher.close()
