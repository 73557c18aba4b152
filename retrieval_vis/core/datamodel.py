from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple
import numpy as np
from numpy.typing import NDArray


Vec3 = NDArray[np.float32]

QUERY_LABEL = "Query Image"

__all__ = [
    "ImageMsg",
    "RigidTransform",
    "Query",
    "RetrievalResult",
    "ColoredCloud",
    "QUERY_LABEL",
]

# ------------------------- encoded image -------------------------

@dataclass(frozen=True)
class ImageMsg:
    """
    Encoded image buffer as it travels on the wire.

    - encoding: raw pixel layout ("bgr8", "rgb8", "bgra8", "rgba8", "mono8",
      "mono16", "32FC1") or a compressed container ("jpeg", "png")
    - width/height: pixel dimensions (informational for compressed data)
    - data: raw bytes, row-major without padding
    """
    encoding: str
    width: int
    height: int
    data: bytes = b""

    def meta(self) -> dict:
        return {"encoding": self.encoding, "width": self.width, "height": self.height}

# ------------------------- rigid transform -------------------------

@dataclass(frozen=True)
class RigidTransform:
    """Room transform T = [R|t]; quaternion in (x, y, z, w) order, float64."""
    translation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation_xyzw: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()

# ------------------------- request payload -------------------------

@dataclass(frozen=True)
class Query:
    """Sensor capture being visualized."""
    image: ImageMsg
    mask: ImageMsg
    room_transform: RigidTransform = field(default_factory=RigidTransform)


@dataclass(frozen=True)
class RetrievalResult:
    """Retrieved candidates; each entry is one encoded colored point cloud."""
    retrieved_clouds: Tuple[bytes, ...] = ()

    def __len__(self) -> int:
        return len(self.retrieved_clouds)

# ------------------------- decoded cloud -------------------------

@dataclass(slots=True)
class ColoredCloud:
    """
    Decoded colored point set.
    - positions: (N,3) float32 XYZ
    - colors:    (N,3) uint8 RGB
    """
    positions: Vec3
    colors: NDArray[np.uint8]
    name: str = ""

    def __len__(self) -> int:
        return int(self.positions.shape[0])
