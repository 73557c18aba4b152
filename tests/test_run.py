from pathlib import Path

import numpy as np

from retrieval_vis.core.datamodel import RetrievalResult
from retrieval_vis.run import build_service, load_config
from retrieval_vis.utils.periodic_logger import PeriodicLogger
from retrieval_vis.visualization.composer import ComposerConfig

from conftest import RecordingPublisher, make_cloud, make_query


def test_load_config_missing_file_uses_defaults(tmp_path):
    assert load_config(str(tmp_path / "nope.yaml")) == {}


def test_load_config_reads_yaml(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("image_output: viz\ncomposer:\n  panel_height: 100\n")
    cfg = load_config(str(p))
    assert cfg["image_output"] == "viz"
    assert cfg["composer"]["panel_height"] == 100


def test_built_service_renders_with_default_composer():
    publisher = RecordingPublisher()
    service = build_service({"composer": {"panel_width": 100, "panel_height": 60}}, publisher)
    out = service.visualize_query(make_query(), RetrievalResult((make_cloud(100, 0), make_cloud(50, 1))))
    # 640x480 query -> 80x60 panel, then two 100px cloud panels with 4px spacers
    assert (out.width, out.height) == (80 + 2 * (4 + 100), 60)
    raster = np.frombuffer(out.data, dtype=np.uint8).reshape(out.height, out.width, 3)
    assert raster.std() > 0
    assert publisher.published == [out]


def test_periodic_logger_respects_interval(caplog):
    pl = PeriodicLogger(interval_s=3600.0)
    assert pl.maybe_log({"requests": 3}) is False

    pl = PeriodicLogger(interval_s=0.0)
    with caplog.at_level("INFO", logger="retrieval_vis.utils.periodic_logger"):
        assert pl.maybe_log({"requests": 3, "published": 2, "failures": {"decode_error": 1}}) is True
    assert "decode_error=1" in caplog.text

    assert PeriodicLogger(enabled=False, interval_s=0.0).maybe_log({}) is False


def test_shipped_config_matches_composer_defaults():
    cfg = load_config(str(Path(__file__).resolve().parent.parent / "config" / "retrieval_vis.yaml"))
    assert ComposerConfig.from_cfg(cfg) == ComposerConfig()
