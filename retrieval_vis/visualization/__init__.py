"""
retrieval_vis Visualization Module

Panel composition routines that lay out the query image next to renders of
the retrieved point clouds.

Configure the default composer via config:
    composer:
      panel_width: 640
      panel_height: 480
"""

from retrieval_vis.visualization.composer import PanelComposer, OpenCVPanelComposer, ComposerConfig

__all__ = ["PanelComposer", "OpenCVPanelComposer", "ComposerConfig"]
