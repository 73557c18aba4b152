#!/usr/bin/env python3
import argparse
import os
import numpy as np
import cv2
import zmq

from retrieval_vis.core.codec import BGR8, decode_image
from retrieval_vis.core.errors import DecodeError
from retrieval_vis.io.messages import parse_image_frames


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--endpoint', default='tcp://127.0.0.1:5572', help='tcp://host:port to connect')
    ap.add_argument('--topic', default='visualization_image')
    ap.add_argument('--save-dir', default='', help='write each received composite as PNG here')
    args = ap.parse_args()

    ctx = zmq.Context.instance()
    sub = ctx.socket(zmq.SUB)
    sub.connect(args.endpoint)
    sub.setsockopt(zmq.SUBSCRIBE, args.topic.encode('utf-8'))
    if args.save_dir:
        os.makedirs(args.save_dir, exist_ok=True)

    print(f"Subscribed to {args.topic} at {args.endpoint}")
    n = 0
    while True:
        frames = sub.recv_multipart()
        try:
            img = parse_image_frames(frames)
            raster = decode_image(img, BGR8)
        except DecodeError as e:
            print(f"bad frame: {e}")
            continue
        print(f"image {n}: {img.width}x{img.height} {img.encoding} mean={float(np.mean(raster)):.1f}")
        if args.save_dir:
            cv2.imwrite(os.path.join(args.save_dir, f"composite_{n:05d}.png"), raster)
        n += 1


if __name__ == '__main__':
    main()
