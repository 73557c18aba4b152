"""
Panel composition for retrieval visualizations.

The pipeline only depends on the `PanelComposer` interface, so the layout and
rendering routine can be swapped (or stubbed in tests) without touching it:
- OpenCVPanelComposer: default, query panel + one orthographic render per cloud
- Future: offscreen 3D renderer, grid layouts, etc.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import cv2

from retrieval_vis.core.datamodel import ColoredCloud


class PanelComposer(ABC):
    """
    Lays out a 2D image next to renders of N point clouds in one raster.

    Implementations must be synchronous and deterministic for identical inputs.
    """

    @abstractmethod
    def compose(
        self,
        image: np.ndarray,
        label: str,
        clouds: Sequence[ColoredCloud],
        labels: Sequence[str],
        transform: np.ndarray,
    ) -> np.ndarray:
        """
        Compose the visualization.

        Args:
            image: (H,W,3) uint8 BGR query image
            label: caption for the query panel
            clouds: decoded candidate clouds
            labels: one caption per cloud
            transform: (4,4) float32 orientation applied to every cloud

        Returns:
            (H',W',3) uint8 BGR composite
        """
        raise NotImplementedError


@dataclass
class ComposerConfig:
    """Layout parameters for OpenCVPanelComposer."""
    panel_width: int = 640
    panel_height: int = 480
    point_radius: int = 1
    margin_px: int = 24
    spacer_px: int = 4
    background_bgr: tuple = (255, 255, 255)
    spacer_bgr: tuple = (200, 200, 200)
    text_bgr: tuple = (0, 0, 0)
    font_scale: float = 0.75

    @classmethod
    def from_cfg(cls, cfg: dict) -> "ComposerConfig":
        c = cfg.get("composer", {}) or {}
        return cls(
            panel_width=int(c.get("panel_width", 640)),
            panel_height=int(c.get("panel_height", 480)),
            point_radius=int(c.get("point_radius", 1)),
            margin_px=int(c.get("margin_px", 24)),
        )


class OpenCVPanelComposer(PanelComposer):
    """Query image panel followed by one render per retrieved cloud, left to right."""

    def __init__(self, config: ComposerConfig | None = None):
        self.cfg = config or ComposerConfig()

    def _put_label(self, canvas: np.ndarray, text: str) -> None:
        (tw, th), base = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, self.cfg.font_scale, 2)
        cv2.rectangle(canvas, (4, 4), (16 + tw, 16 + th + base), self.cfg.background_bgr, -1)
        cv2.putText(canvas, text, (10, 10 + th),
                    cv2.FONT_HERSHEY_SIMPLEX, self.cfg.font_scale, self.cfg.text_bgr, 2, cv2.LINE_AA)

    def _query_panel(self, image: np.ndarray, label: str) -> np.ndarray:
        ph = self.cfg.panel_height
        h, w = image.shape[:2]
        pw = max(1, int(round(w * ph / float(h))))
        canvas = cv2.resize(image, (pw, ph), interpolation=cv2.INTER_AREA)
        self._put_label(canvas, label)
        return canvas

    def render_cloud(self, cloud: ColoredCloud, transform: np.ndarray) -> np.ndarray:
        """
        Orthographic render of a cloud in the rotated frame.

        Points are centered on their centroid, scaled to fit the panel and
        painted far-to-near (larger z first) so nearer points stay visible.
        """
        pw, ph = self.cfg.panel_width, self.cfg.panel_height
        canvas = np.empty((ph, pw, 3), dtype=np.uint8)
        canvas[:] = self.cfg.background_bgr
        if len(cloud) == 0:
            return canvas

        R = transform[:3, :3].astype(np.float32)
        pts = cloud.positions.astype(np.float32) @ R.T + transform[:3, 3].astype(np.float32)
        finite = np.isfinite(pts).all(axis=1)
        pts = pts[finite]
        colors_bgr = cloud.colors[finite][:, ::-1]
        if pts.shape[0] == 0:
            return canvas

        pts = pts - pts.mean(axis=0)
        extent = float(np.abs(pts[:, :2]).max())
        half = min(pw, ph) / 2.0 - self.cfg.margin_px
        scale = max(half, 1.0) / max(extent, 1e-6)

        u = np.round(pw / 2.0 + pts[:, 0] * scale).astype(np.int64)
        v = np.round(ph / 2.0 + pts[:, 1] * scale).astype(np.int64)
        z = pts[:, 2]

        r = max(0, self.cfg.point_radius - 1)
        offsets = [(dx, dy) for dy in range(-r, r + 1) for dx in range(-r, r + 1)]
        uu = np.concatenate([u + dx for dx, _ in offsets])
        vv = np.concatenate([v + dy for _, dy in offsets])
        zz = np.tile(z, len(offsets))
        cc = np.tile(colors_bgr, (len(offsets), 1))

        inside = (uu >= 0) & (uu < pw) & (vv >= 0) & (vv < ph)
        uu, vv, zz, cc = uu[inside], vv[inside], zz[inside], cc[inside]

        # Far first; later writes win, so nearest point ends up on top
        order = np.argsort(-zz, kind="stable")
        canvas[vv[order], uu[order]] = cc[order]
        return canvas

    def compose(
        self,
        image: np.ndarray,
        label: str,
        clouds: Sequence[ColoredCloud],
        labels: Sequence[str],
        transform: np.ndarray,
    ) -> np.ndarray:
        if len(clouds) != len(labels):
            raise ValueError(f"got {len(clouds)} clouds but {len(labels)} labels")

        panels: List[np.ndarray] = [self._query_panel(image, label)]
        for cloud, lab in zip(clouds, labels):
            panel = self.render_cloud(cloud, transform)
            self._put_label(panel, lab)
            panels.append(panel)

        spacer = np.empty((self.cfg.panel_height, self.cfg.spacer_px, 3), dtype=np.uint8)
        spacer[:] = self.cfg.spacer_bgr
        out: List[np.ndarray] = []
        for i, p in enumerate(panels):
            if i > 0:
                out.append(spacer)
            out.append(p)
        return np.hstack(out)
