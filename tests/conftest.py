import numpy as np
import pytest

from retrieval_vis.core.codec import pack_cloud
from retrieval_vis.core.datamodel import ImageMsg, Query, RetrievalResult, RigidTransform
from retrieval_vis.core.pipeline import VisualizationCompositor
from retrieval_vis.core.service import ImagePublisher, VisualizationService
from retrieval_vis.visualization.composer import PanelComposer


class RecordingComposer(PanelComposer):
    """Returns the query image unchanged and remembers what it was called with."""

    def __init__(self):
        self.calls = []

    def compose(self, image, label, clouds, labels, transform):
        self.calls.append({
            "image": image.copy(),
            "label": label,
            "clouds": list(clouds),
            "labels": list(labels),
            "transform": transform.copy(),
        })
        return image.copy()


class RecordingPublisher(ImagePublisher):
    def __init__(self):
        self.published = []

    def publish(self, image):
        self.published.append(image)


def make_color(w=640, h=480):
    rng = np.random.default_rng(0)
    return rng.integers(1, 255, size=(h, w, 3), dtype=np.uint8)


def make_blob_mask(w=640, h=480, radius=80):
    yy, xx = np.mgrid[0:h, 0:w]
    inside = (xx - w // 2) ** 2 + (yy - h // 2) ** 2 <= radius ** 2
    return np.where(inside, 255, 0).astype(np.uint8)


def make_cloud(n, seed=0):
    rng = np.random.default_rng(seed)
    pos = rng.normal(0.0, 0.3, size=(n, 3)).astype(np.float32)
    col = rng.integers(0, 256, size=(n, 3), dtype=np.uint8)
    return pack_cloud(pos, col, name=f"cloud{seed}")


def make_query(color=None, mask=None, transform=None):
    color = make_color() if color is None else color
    mask = make_blob_mask(color.shape[1], color.shape[0]) if mask is None else mask
    return Query(
        image=ImageMsg("bgr8", color.shape[1], color.shape[0], color.tobytes()),
        mask=ImageMsg("mono8", mask.shape[1], mask.shape[0], mask.tobytes()),
        room_transform=transform or RigidTransform.identity(),
    )


@pytest.fixture
def composer():
    return RecordingComposer()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def service(composer, publisher):
    return VisualizationService(VisualizationCompositor(composer), publisher)


@pytest.fixture
def two_cloud_result():
    return RetrievalResult((make_cloud(100, 0), make_cloud(50, 1)))
