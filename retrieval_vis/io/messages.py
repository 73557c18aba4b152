"""
Multipart wire format shared by the ZeroMQ server and the debug tools.

Query + result:  [topic, json_meta, image_bytes, mask_bytes, cloud_0, ..., cloud_{n-1}]

json_meta: {
    "image": {"encoding", "width", "height"},
    "mask": {"encoding", "width", "height"},
    "room_transform": {"t": [x, y, z], "q": [qx, qy, qz, qw]},
    "num_clouds": n
}

Image:           [topic, json_meta, image_bytes]   json_meta = {"encoding", "width", "height"}
Reply (ok):      [b"ok", json_meta, image_bytes]
Reply (error):   [b"error", {"error": kind, "message": str}]
"""

from __future__ import annotations
import json
from typing import List, Sequence, Tuple

from retrieval_vis.core.datamodel import ImageMsg, Query, RetrievalResult, RigidTransform
from retrieval_vis.core.errors import MessageFormatError, VisualizationError

REPLY_OK = b"ok"
REPLY_ERROR = b"error"
# Error kind for failures that are not a VisualizationError
INTERNAL_ERROR = "internal_error"


def _load_meta(frame: bytes) -> dict:
    try:
        meta = json.loads(bytes(frame).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise MessageFormatError(f"metadata is not valid JSON: {e}") from e
    if not isinstance(meta, dict):
        raise MessageFormatError("metadata must be a JSON object")
    return meta


def _image_from_meta(meta: dict, data: bytes) -> ImageMsg:
    try:
        return ImageMsg(
            encoding=str(meta["encoding"]),
            width=int(meta.get("width", 0)),
            height=int(meta.get("height", 0)),
            data=bytes(data),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MessageFormatError(f"bad image metadata {meta!r}: {e}") from e


def _transform_from_meta(data) -> RigidTransform:
    if data is None:
        return RigidTransform.identity()
    try:
        t = [float(v) for v in data.get("t", (0.0, 0.0, 0.0))]
        q = [float(v) for v in data.get("q", (0.0, 0.0, 0.0, 1.0))]
    except (AttributeError, TypeError, ValueError) as e:
        raise MessageFormatError(f"bad room_transform {data!r}: {e}") from e
    if len(t) != 3 or len(q) != 4:
        raise MessageFormatError(f"room_transform needs 3 translation and 4 quaternion values, got {data!r}")
    return RigidTransform(translation=tuple(t), rotation_xyzw=tuple(q))


def _transform_to_meta(tr: RigidTransform) -> dict:
    return {"t": [float(v) for v in tr.translation], "q": [float(v) for v in tr.rotation_xyzw]}


# -------- query + result --------

def encode_query_frames(topic: str, query: Query, result: RetrievalResult) -> List[bytes]:
    meta = {
        "image": query.image.meta(),
        "mask": query.mask.meta(),
        "room_transform": _transform_to_meta(query.room_transform),
        "num_clouds": len(result.retrieved_clouds),
    }
    return [
        topic.encode("utf-8"),
        json.dumps(meta).encode("utf-8"),
        query.image.data,
        query.mask.data,
        *result.retrieved_clouds,
    ]


def parse_query_frames(parts: Sequence[bytes]) -> Tuple[Query, RetrievalResult]:
    """Parse [topic, meta, image, mask, *clouds]; raises MessageFormatError."""
    if len(parts) < 4:
        raise MessageFormatError(f"expected at least 4 parts, got {len(parts)}")
    meta = _load_meta(parts[1])

    try:
        image = _image_from_meta(meta["image"], parts[2])
        mask = _image_from_meta(meta["mask"], parts[3])
    except (KeyError, AttributeError) as e:
        raise MessageFormatError(f"missing image metadata: {e}") from e

    clouds = tuple(bytes(p) for p in parts[4:])
    n = meta.get("num_clouds", len(clouds))
    if n != len(clouds):
        raise MessageFormatError(f"num_clouds={n} but {len(clouds)} cloud frames present")

    query = Query(image=image, mask=mask, room_transform=_transform_from_meta(meta.get("room_transform")))
    return query, RetrievalResult(retrieved_clouds=clouds)


# -------- images --------

def encode_image_frames(topic, image: ImageMsg) -> List[bytes]:
    topic_b = topic if isinstance(topic, bytes) else topic.encode("utf-8")
    return [topic_b, json.dumps(image.meta()).encode("utf-8"), image.data]


def parse_image_frames(parts: Sequence[bytes]) -> ImageMsg:
    if len(parts) != 3:
        raise MessageFormatError(f"expected 3 parts, got {len(parts)}")
    return _image_from_meta(_load_meta(parts[1]), parts[2])


def encode_error_reply(err: Exception) -> List[bytes]:
    kind = err.kind if isinstance(err, VisualizationError) else INTERNAL_ERROR
    body = {"error": kind, "message": str(err)}
    return [REPLY_ERROR, json.dumps(body).encode("utf-8")]
