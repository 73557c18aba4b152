"""
Image and point cloud codecs for retrieval_vis.

Handles:
- Raw image buffers (bgr8, rgb8, bgra8, rgba8, mono8, mono16, 32FC1)
- Compressed images (jpeg, png) via OpenCV
- Conversion to the two pixel formats the pipeline works in (bgr8, mono8)
- Binary colored point cloud frames ('PCLD')
"""

from __future__ import annotations
import struct
from typing import Dict, Tuple

import numpy as np
import cv2

from retrieval_vis.core.datamodel import ImageMsg, ColoredCloud
from retrieval_vis.core.errors import DecodeError


BGR8 = "bgr8"
MONO8 = "mono8"

# encoding -> (channels, dtype)
RAW_ENCODINGS: Dict[str, Tuple[int, np.dtype]] = {
    "bgr8": (3, np.dtype(np.uint8)),
    "rgb8": (3, np.dtype(np.uint8)),
    "bgra8": (4, np.dtype(np.uint8)),
    "rgba8": (4, np.dtype(np.uint8)),
    "mono8": (1, np.dtype(np.uint8)),
    "mono16": (1, np.dtype("<u2")),
    "32FC1": (1, np.dtype("<f4")),
}
COMPRESSED_ENCODINGS = ("jpeg", "png")

# (source, target) -> cv2 color conversion code; None means plain copy
_CONVERSIONS = {
    ("bgr8", BGR8): None,
    ("rgb8", BGR8): cv2.COLOR_RGB2BGR,
    ("bgra8", BGR8): cv2.COLOR_BGRA2BGR,
    ("rgba8", BGR8): cv2.COLOR_RGBA2BGR,
    ("mono8", BGR8): cv2.COLOR_GRAY2BGR,
    ("mono16", BGR8): cv2.COLOR_GRAY2BGR,
    ("mono8", MONO8): None,
    ("mono16", MONO8): None,
    ("bgr8", MONO8): cv2.COLOR_BGR2GRAY,
    ("rgb8", MONO8): cv2.COLOR_RGB2GRAY,
    ("bgra8", MONO8): cv2.COLOR_BGRA2GRAY,
    ("rgba8", MONO8): cv2.COLOR_RGBA2GRAY,
}

# Binary cloud frame:
# [magic:4][name_len:2][num_points:4][name:N][positions:N*12][colors:N*3]
MAGIC_CLOUD = b'PCLD'
_CLOUD_HEADER = struct.Struct('<4sHI')


# ---------- images ----------

def _unpack_raw(msg: ImageMsg) -> np.ndarray:
    channels, dtype = RAW_ENCODINGS[msg.encoding]
    h, w = int(msg.height), int(msg.width)
    if h <= 0 or w <= 0:
        raise DecodeError(f"invalid image size {w}x{h}")
    expected = h * w * channels * dtype.itemsize
    if len(msg.data) != expected:
        raise DecodeError(
            f"{msg.encoding} buffer size mismatch: got {len(msg.data)}, expected {expected}"
        )
    arr = np.frombuffer(msg.data, dtype=dtype)
    shape = (h, w) if channels == 1 else (h, w, channels)
    return arr.reshape(shape)


def _decode_compressed(msg: ImageMsg, target: str) -> np.ndarray:
    buf = np.frombuffer(msg.data, dtype=np.uint8)
    flag = cv2.IMREAD_COLOR if target == BGR8 else cv2.IMREAD_GRAYSCALE
    img = cv2.imdecode(buf, flag) if buf.size else None
    if img is None:
        raise DecodeError(f"failed to decode {msg.encoding} image")
    return img


def decode_image(msg: ImageMsg, target: str) -> np.ndarray:
    """
    Decode an encoded image into `target` pixel format.

    Args:
        msg: Encoded image
        target: "bgr8" -> (H,W,3) uint8, "mono8" -> (H,W) uint8

    Returns:
        A freshly allocated, writable array

    Raises:
        DecodeError: malformed buffer, unknown encoding or unsupported conversion
    """
    if target not in (BGR8, MONO8):
        raise DecodeError(f"unsupported target format '{target}'")

    if msg.encoding in COMPRESSED_ENCODINGS:
        return _decode_compressed(msg, target)

    if msg.encoding not in RAW_ENCODINGS:
        raise DecodeError(f"unknown image encoding '{msg.encoding}'")
    if (msg.encoding, target) not in _CONVERSIONS:
        raise DecodeError(f"cannot convert '{msg.encoding}' to '{target}'")

    src = _unpack_raw(msg)
    if msg.encoding == "mono16":
        src = (src >> 8).astype(np.uint8)

    code = _CONVERSIONS[(msg.encoding, target)]
    if code is None:
        return np.array(src, dtype=np.uint8, copy=True)
    return cv2.cvtColor(np.array(src, copy=True), code)


def encode_image(raster: np.ndarray) -> ImageMsg:
    """Pack an (H,W,3) uint8 BGR raster into a bgr8 ImageMsg."""
    raster = np.ascontiguousarray(raster, dtype=np.uint8)
    if raster.ndim != 3 or raster.shape[2] != 3:
        raise ValueError(f"expected (H,W,3) raster, got shape {raster.shape}")
    h, w = raster.shape[:2]
    return ImageMsg(encoding=BGR8, width=int(w), height=int(h), data=raster.tobytes())


# ---------- point clouds ----------

def pack_cloud(positions: np.ndarray, colors: np.ndarray, name: str = "") -> bytes:
    """
    Pack a colored point cloud as binary.

    Format:
    - Magic: 4 bytes ('PCLD')
    - name_len: 2 bytes (uint16 LE)
    - num_points: 4 bytes (uint32 LE)
    - name: N bytes (UTF-8)
    - positions: num_points * 12 bytes (float32 LE, xyz interleaved)
    - colors: num_points * 3 bytes (uint8 RGB)
    """
    positions = np.asarray(positions, dtype='<f4').reshape(-1, 3)
    colors = np.asarray(colors, dtype=np.uint8).reshape(-1, 3)
    if positions.shape[0] != colors.shape[0]:
        raise ValueError("positions and colors must have the same length")

    name_bytes = name.encode('utf-8')
    header = _CLOUD_HEADER.pack(MAGIC_CLOUD, len(name_bytes), positions.shape[0])
    return header + name_bytes + positions.tobytes() + colors.tobytes()


def unpack_cloud(data: bytes) -> ColoredCloud:
    """Inverse of pack_cloud. Raises DecodeError on any framing problem."""
    if len(data) < _CLOUD_HEADER.size:
        raise DecodeError(f"cloud frame too short ({len(data)} bytes)")
    magic, name_len, num_points = _CLOUD_HEADER.unpack_from(data, 0)
    if magic != MAGIC_CLOUD:
        raise DecodeError(f"bad cloud magic {magic!r}")

    off = _CLOUD_HEADER.size
    expected = off + name_len + num_points * 15
    if len(data) != expected:
        raise DecodeError(f"cloud size mismatch: got {len(data)}, expected {expected}")

    try:
        name = data[off:off + name_len].decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"cloud name is not UTF-8: {e}") from e
    off += name_len

    if num_points == 0:
        return ColoredCloud(
            positions=np.zeros((0, 3), dtype=np.float32),
            colors=np.zeros((0, 3), dtype=np.uint8),
            name=name,
        )

    positions = np.frombuffer(data, dtype='<f4', count=num_points * 3, offset=off)
    off += num_points * 12
    colors = np.frombuffer(data, dtype=np.uint8, count=num_points * 3, offset=off)

    return ColoredCloud(
        positions=positions.reshape(num_points, 3).astype(np.float32),
        colors=colors.reshape(num_points, 3).copy(),
        name=name,
    )
