from __future__ import annotations
import logging
from typing import List, Sequence, Tuple
import numpy as np

from retrieval_vis.core.codec import BGR8, MONO8, decode_image, encode_image, unpack_cloud
from retrieval_vis.core.datamodel import ImageMsg, Query, RetrievalResult, ColoredCloud, QUERY_LABEL
from retrieval_vis.core.errors import DecodeError, DimensionMismatchError, CompositionError
from retrieval_vis.utils.transforms import normalize_transform
from retrieval_vis.visualization.composer import PanelComposer

logger = logging.getLogger(__name__)

WHITE_BGR = (255, 255, 255)


# -------- decode --------

def decode_query_images(query: Query) -> Tuple[np.ndarray, np.ndarray]:
    """Decode the query color image to bgr8 and its mask to mono8."""
    color = decode_image(query.image, BGR8)
    mask = decode_image(query.mask, MONO8)
    return color, mask


# -------- prepare --------

def apply_mask(color: np.ndarray, mask: np.ndarray, fill: Tuple[int, int, int] = WHITE_BGR) -> np.ndarray:
    """
    Overwrite background pixels (mask == 0) with `fill`; foreground is untouched.

    Returns a new array. Raises DimensionMismatchError when the mask and the
    color image differ in height or width.
    """
    if color.shape[:2] != mask.shape[:2]:
        raise DimensionMismatchError(
            f"mask {mask.shape[1]}x{mask.shape[0]} does not match image {color.shape[1]}x{color.shape[0]}"
        )
    out = color.copy()
    out[mask == 0] = fill
    return out


# -------- clouds + labels --------

def decode_clouds(encoded: Sequence[bytes]) -> List[ColoredCloud]:
    """Decode every retrieved cloud; the first malformed one aborts the batch."""
    clouds: List[ColoredCloud] = []
    for i, data in enumerate(encoded):
        try:
            clouds.append(unpack_cloud(data))
        except DecodeError as e:
            raise DecodeError(f"retrieved cloud {i}: {e}") from e
    return clouds


def make_labels(n: int) -> List[str]:
    return [f"result{i}" for i in range(n)]


# -------- orchestrator --------

class VisualizationCompositor:
    """
    Query -> composite image transformation.

    1. Decode color (bgr8) and mask (mono8)
    2. White out background pixels
    3. Reduce the room transform to a rotation-only render transform
    4. Decode retrieved clouds and label them result0..resultN-1
    5. Invoke the panel composer and pack the raster as bgr8
    Stateless across calls; every failure raises a VisualizationError subclass.
    """

    def __init__(self, composer: PanelComposer):
        self.composer = composer

    def compose(
        self,
        image: np.ndarray,
        clouds: Sequence[ColoredCloud],
        labels: Sequence[str],
        transform: np.ndarray,
    ) -> np.ndarray:
        try:
            raster = self.composer.compose(image, QUERY_LABEL, clouds, labels, transform)
        except Exception as e:
            raise CompositionError(f"panel composition failed: {e}") from e

        if not isinstance(raster, np.ndarray) or raster.dtype != np.uint8 \
                or raster.ndim != 3 or raster.shape[2] != 3:
            raise CompositionError("panel composer did not return an (H,W,3) uint8 image")
        return raster

    def run(self, query: Query, result: RetrievalResult) -> ImageMsg:
        color, mask = decode_query_images(query)
        masked = apply_mask(color, mask)
        T = normalize_transform(query.room_transform)

        clouds = decode_clouds(result.retrieved_clouds)
        labels = make_labels(len(clouds))

        raster = self.compose(masked, clouds, labels, T)
        out = encode_image(raster)
        logger.debug(
            f"[pipeline] composed {out.width}x{out.height} from {len(clouds)} clouds "
            f"({sum(len(c) for c in clouds)} pts)"
        )
        return out
