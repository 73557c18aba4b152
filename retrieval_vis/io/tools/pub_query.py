#!/usr/bin/env python3
import argparse
import json
import time
import numpy as np
import cv2
import zmq

from retrieval_vis.core.codec import pack_cloud
from retrieval_vis.core.datamodel import ImageMsg, Query, RetrievalResult, RigidTransform
from retrieval_vis.io.messages import REPLY_OK, encode_query_frames, parse_image_frames
from retrieval_vis.utils.transforms import euler_to_quat_xyzw


def synthetic_query(w: int, h: int, roll: float, pitch: float, yaw: float) -> Query:
    rgb = np.zeros((h, w, 3), dtype=np.uint8)
    rgb[:] = (40, 90, 160)
    cv2.putText(rgb, "query", (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 255, 0), 2)
    mask = np.zeros((h, w), dtype=np.uint8)
    cv2.circle(mask, (w // 2, h // 2), min(w, h) // 4, 255, -1)

    q = euler_to_quat_xyzw(roll, pitch, yaw)
    return Query(
        image=ImageMsg("bgr8", w, h, rgb.tobytes()),
        mask=ImageMsg("mono8", w, h, mask.tobytes()),
        room_transform=RigidTransform(translation=(1.0, 2.0, 0.5), rotation_xyzw=tuple(float(v) for v in q)),
    )


def synthetic_cloud(n: int, seed: int) -> bytes:
    rng = np.random.default_rng(seed)
    pos = rng.normal(0.0, 0.2, size=(n, 3)).astype(np.float32)
    col = rng.integers(0, 256, size=(n, 3), dtype=np.uint8)
    return pack_cloud(pos, col, name=f"synthetic{seed}")


def main():
    ap = argparse.ArgumentParser(description="Send a synthetic query to the visualization service.")
    ap.add_argument('--mode', choices=('request', 'notify'), default='request')
    ap.add_argument('--endpoint', default='tcp://127.0.0.1:5570',
                    help='REP endpoint (request) or endpoint to bind a PUB on (notify)')
    ap.add_argument('--service', default='quasimodo_visualization_service')
    ap.add_argument('--topic', default='/retrieval_result')
    ap.add_argument('--w', type=int, default=640)
    ap.add_argument('--h', type=int, default=480)
    ap.add_argument('--clouds', type=int, nargs='*', default=[100, 50], help='point count per retrieved cloud')
    ap.add_argument('--roll', type=float, default=0.0)
    ap.add_argument('--pitch', type=float, default=0.0)
    ap.add_argument('--yaw', type=float, default=0.0)
    ap.add_argument('--out', default='', help='save the reply image here (request mode)')
    args = ap.parse_args()

    query = synthetic_query(args.w, args.h, args.roll, args.pitch, args.yaw)
    result = RetrievalResult(tuple(synthetic_cloud(n, i) for i, n in enumerate(args.clouds)))

    ctx = zmq.Context.instance()
    if args.mode == 'request':
        sock = ctx.socket(zmq.REQ)
        sock.connect(args.endpoint)
        t0 = time.monotonic()
        sock.send_multipart(encode_query_frames(args.service, query, result))
        reply = sock.recv_multipart()
        dt_ms = (time.monotonic() - t0) * 1000.0
        if reply[0] == REPLY_OK:
            img = parse_image_frames(reply)
            print(f"ok: {img.width}x{img.height} {img.encoding} in {dt_ms:.1f} ms")
            if args.out:
                raster = np.frombuffer(img.data, dtype=np.uint8).reshape(img.height, img.width, 3)
                cv2.imwrite(args.out, raster)
        else:
            print(f"error: {json.loads(reply[1].decode('utf-8'))}")
    else:
        sock = ctx.socket(zmq.PUB)
        sock.bind(args.endpoint)
        time.sleep(0.5)  # slow joiner
        sock.send_multipart(encode_query_frames(args.topic, query, result))
        print(f"notified {args.topic} with {len(result)} clouds")
        time.sleep(0.2)
    sock.close(0)


if __name__ == '__main__':
    main()
