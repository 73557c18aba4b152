import json
import time

import numpy as np
import pytest
import zmq

from retrieval_vis.core.codec import encode_image
from retrieval_vis.core.datamodel import RetrievalResult, RigidTransform
from retrieval_vis.core.errors import MessageFormatError
from retrieval_vis.core.pipeline import VisualizationCompositor
from retrieval_vis.core.service import ImagePublisher, VisualizationService
from retrieval_vis.io.messages import (
    INTERNAL_ERROR,
    REPLY_ERROR,
    REPLY_OK,
    encode_query_frames,
    parse_image_frames,
    parse_query_frames,
)
from retrieval_vis.io.zeromq import ZeroMQImagePublisher, ZeroMQVisualizationServer

from conftest import make_blob_mask, make_color, make_query

SERVICE = "quasimodo_visualization_service"
TOPIC = "/retrieval_result"


@pytest.fixture
def ctx():
    c = zmq.Context()
    yield c
    c.term()


@pytest.fixture
def server(service, ctx):
    srv = ZeroMQVisualizationServer(
        service,
        service_endpoint="inproc://visualize",
        input_endpoint="inproc://retrieval",
        service_name=SERVICE,
        topic_input=TOPIC,
        ctx=ctx,
    )
    yield srv
    srv.close()


# -------- envelope --------

def test_query_frames_roundtrip(two_cloud_result):
    tr = RigidTransform(translation=(1.0, 2.0, 3.0), rotation_xyzw=(0.0, 0.0, 0.7071068, 0.7071068))
    query = make_query(transform=tr)
    parts = encode_query_frames(TOPIC, query, two_cloud_result)
    assert len(parts) == 6

    q2, r2 = parse_query_frames(parts)
    assert q2 == query
    assert r2 == two_cloud_result


def test_missing_room_transform_defaults_to_identity():
    parts = encode_query_frames(TOPIC, make_query(), RetrievalResult(()))
    meta = json.loads(parts[1])
    del meta["room_transform"]
    parts[1] = json.dumps(meta).encode()
    q, _ = parse_query_frames(parts)
    assert q.room_transform == RigidTransform.identity()


@pytest.mark.parametrize("mutate", [
    lambda p: p[:3],
    lambda p: [p[0], b"{not json", *p[2:]],
    lambda p: [p[0], b"[1, 2]", *p[2:]],
    lambda p: [p[0], json.dumps({"mask": {"encoding": "mono8"}}).encode(), *p[2:]],
    lambda p: p + [b"extra cloud"],
    lambda p: [p[0], json.dumps({**json.loads(p[1]), "room_transform": {"t": [1, 2], "q": [0, 0, 0, 1]}}).encode(), *p[2:]],
])
def test_malformed_envelopes(mutate):
    parts = encode_query_frames(TOPIC, make_query(), RetrievalResult(()))
    with pytest.raises(MessageFormatError):
        parse_query_frames(mutate(parts))


# -------- server handlers --------

def test_handle_request_ok(server, publisher, two_cloud_result):
    reply = server.handle_request(encode_query_frames(SERVICE, make_query(), two_cloud_result))
    assert reply[0] == REPLY_OK
    img = parse_image_frames(reply)
    assert (img.encoding, img.width, img.height) == ("bgr8", 640, 480)
    assert len(publisher.published) == 1


def test_handle_request_pipeline_error(server, publisher):
    query = make_query(make_color(640, 480), make_blob_mask(10, 10))
    reply = server.handle_request(encode_query_frames(SERVICE, query, RetrievalResult(())))
    assert reply[0] == REPLY_ERROR
    assert json.loads(reply[1])["error"] == "dimension_mismatch"
    assert publisher.published == []


def test_handle_request_unknown_service(server, publisher):
    reply = server.handle_request(encode_query_frames("other_service", make_query(), RetrievalResult(())))
    assert reply[0] == REPLY_ERROR
    assert json.loads(reply[1])["error"] == "message_format_error"
    assert publisher.published == []


def test_handle_notification_drops_malformed(server, publisher, service):
    server.handle_notification([TOPIC.encode(), b"nope"])
    assert publisher.published == []
    assert service.stats()["failures"] == {"message_format_error": 1}


def test_handle_notification_publishes(server, publisher):
    server.handle_notification(encode_query_frames(TOPIC, make_query(), RetrievalResult(())))
    assert len(publisher.published) == 1


def _deeply_nested(parts):
    parts[1] = b"[" * 200000 + b"]" * 200000
    return parts


def test_handle_request_deeply_nested_metadata(server, publisher, service):
    parts = _deeply_nested(encode_query_frames(SERVICE, make_query(), RetrievalResult(())))
    reply = server.handle_request(parts)
    assert reply[0] == REPLY_ERROR
    assert json.loads(reply[1])["error"] == "message_format_error"
    assert publisher.published == []
    assert service.stats()["failures"] == {"message_format_error": 1}


def test_handle_notification_deeply_nested_metadata(server, publisher, service):
    server.handle_notification(_deeply_nested(encode_query_frames(TOPIC, make_query(), RetrievalResult(()))))
    assert publisher.published == []
    assert service.stats()["failed"] == 1


class FailingPublisher(ImagePublisher):
    def publish(self, image):
        raise RuntimeError("socket gone")


def test_unexpected_error_becomes_internal_error_reply(composer, ctx):
    service = VisualizationService(VisualizationCompositor(composer), FailingPublisher())
    srv = ZeroMQVisualizationServer(
        service,
        service_endpoint="inproc://visualize-failing",
        input_endpoint="inproc://retrieval-failing",
        service_name=SERVICE,
        topic_input=TOPIC,
        ctx=ctx,
    )
    try:
        reply = srv.handle_request(encode_query_frames(SERVICE, make_query(), RetrievalResult(())))
        assert reply[0] == REPLY_ERROR
        body = json.loads(reply[1])
        assert body == {"error": INTERNAL_ERROR, "message": "socket gone"}

        # notifications swallow it too
        srv.handle_notification(encode_query_frames(TOPIC, make_query(), RetrievalResult(())))
        assert service.stats()["failures"] == {INTERNAL_ERROR: 2}
    finally:
        srv.close()


def test_handle_notification_rejects_topic_with_matching_prefix(server, publisher, service):
    server.handle_notification(encode_query_frames(TOPIC + "_debug", make_query(), RetrievalResult(())))
    assert publisher.published == []
    assert service.stats()["failures"] == {"message_format_error": 1}


# -------- sockets --------

def test_request_reply_over_socket(server, ctx, two_cloud_result):
    req = ctx.socket(zmq.REQ)
    req.connect("inproc://visualize")
    try:
        req.send_multipart(encode_query_frames(SERVICE, make_query(), two_cloud_result))
        handled = 0
        deadline = time.monotonic() + 5.0
        while handled == 0 and time.monotonic() < deadline:
            handled = server.poll_once(100)
        assert req.poll(5000)
        reply = req.recv_multipart()
        assert reply[0] == REPLY_OK
    finally:
        req.close(0)


def test_notification_over_socket(server, ctx, publisher):
    pub = ctx.socket(zmq.PUB)
    pub.bind("inproc://retrieval")
    try:
        frames = encode_query_frames(TOPIC, make_query(), RetrievalResult(()))
        deadline = time.monotonic() + 5.0
        while not publisher.published and time.monotonic() < deadline:
            pub.send_multipart(frames)
            server.poll_once(50)
        assert len(publisher.published) >= 1
    finally:
        pub.close(0)


def test_publisher_sends_image_frames(ctx):
    publisher = ZeroMQImagePublisher("inproc://images", topic="visualization_image", ctx=ctx)
    sub = ctx.socket(zmq.SUB)
    sub.connect("inproc://images")
    sub.setsockopt(zmq.SUBSCRIBE, b"visualization_image")
    try:
        image = encode_image(np.zeros((4, 5, 3), dtype=np.uint8))
        received = None
        deadline = time.monotonic() + 5.0
        while received is None and time.monotonic() < deadline:
            publisher.publish(image)
            if sub.poll(50):
                received = sub.recv_multipart()
        assert received is not None
        assert received[0] == b"visualization_image"
        assert parse_image_frames(received) == image
    finally:
        sub.close(0)
        publisher.close()
