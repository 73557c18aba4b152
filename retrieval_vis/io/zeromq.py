"""
ZeroMQ transport for retrieval_vis.

Sockets:
- REP (bound, service_endpoint): synchronous visualize_query requests
- SUB (connected, input_endpoint): retrieval result notifications on topic_input
- PUB (bound, output_endpoint): composite images on image_output

Wire shapes are documented in retrieval_vis.io.messages.
"""

from __future__ import annotations
import threading
import logging
from typing import List, Optional

import zmq

from retrieval_vis.core.datamodel import ImageMsg
from retrieval_vis.core.errors import MessageFormatError, VisualizationError
from retrieval_vis.core.service import ImagePublisher, VisualizationService
from retrieval_vis.io.messages import (
    INTERNAL_ERROR,
    REPLY_OK,
    encode_error_reply,
    encode_image_frames,
    parse_query_frames,
)
from retrieval_vis.utils.periodic_logger import PeriodicLogger

logger = logging.getLogger(__name__)


class ZeroMQImagePublisher(ImagePublisher):
    """PUB socket for composite images. zmq sockets are not thread-safe, so sends are serialized."""

    def __init__(self, endpoint: str, topic: str = "visualization_image", ctx: Optional[zmq.Context] = None):
        self.endpoint = endpoint
        self.topic = topic
        self.ctx = ctx or zmq.Context.instance()
        self.sock = self.ctx.socket(zmq.PUB)
        self.sock.bind(self.endpoint)
        self._lock = threading.Lock()
        logger.info(f"[zeromq] Publishing '{self.topic}' on {self.endpoint}")

    def publish(self, image: ImageMsg) -> None:
        frames = encode_image_frames(self.topic, image)
        with self._lock:
            self.sock.send_multipart(frames)
        logger.debug(f"[zeromq] published {image.width}x{image.height} {image.encoding}")

    def close(self) -> None:
        try:
            self.sock.close(0)
        except zmq.ZMQError as e:
            logger.warning(f"[zeromq] publisher close failed: {e}")


class ZeroMQVisualizationServer:
    """
    Serves visualize_query on a REP socket and listens for retrieval results on a SUB socket.

    Both sockets are polled from one thread; each message runs the pipeline to
    completion before the next is read.
    """

    def __init__(
        self,
        service: VisualizationService,
        service_endpoint: str = "tcp://0.0.0.0:5570",
        input_endpoint: str = "tcp://127.0.0.1:5571",
        *,
        service_name: str = "quasimodo_visualization_service",
        topic_input: str = "/retrieval_result",
        ctx: Optional[zmq.Context] = None,
        periodic_logger: Optional[PeriodicLogger] = None,
    ) -> None:
        """
        Args:
            service: VisualizationService both entry points dispatch to
            service_endpoint: endpoint the REP socket binds to
            input_endpoint: endpoint the SUB socket connects to
            service_name: expected first frame of synchronous requests
            topic_input: notification topic to subscribe to
            ctx: optional shared zmq.Context (defaults to the process instance)
            periodic_logger: optional summary logger ticked after each message
        """
        self.service = service
        self.service_endpoint = service_endpoint
        self.input_endpoint = input_endpoint
        self.service_name = service_name
        self.topic_input = topic_input
        self._periodic_logger = periodic_logger

        self.ctx = ctx or zmq.Context.instance()

        self.rep_sock = self.ctx.socket(zmq.REP)
        self.rep_sock.bind(self.service_endpoint)

        self.sub_sock = self.ctx.socket(zmq.SUB)
        self.sub_sock.connect(self.input_endpoint)
        self.sub_sock.setsockopt(zmq.SUBSCRIBE, self.topic_input.encode("utf-8"))

        self.poller = zmq.Poller()
        self.poller.register(self.rep_sock, zmq.POLLIN)
        self.poller.register(self.sub_sock, zmq.POLLIN)

        self._running = False

    # -------- handlers --------
    def handle_request(self, parts: List[bytes]) -> List[bytes]:
        """Synchronous call: returns the reply frames (ok + image, or error)."""
        try:
            topic = bytes(parts[0]).decode("utf-8", errors="ignore") if parts else ""
            if topic != self.service_name:
                raise MessageFormatError(f"unknown service '{topic}'")
            query, result = parse_query_frames(parts)
        except MessageFormatError as e:
            self.service.record_failure(e.kind)
            logger.warning(f"[zeromq] rejecting request: {e}")
            return encode_error_reply(e)
        except Exception as e:
            self.service.record_failure(INTERNAL_ERROR)
            logger.exception(f"[zeromq] Error parsing request: {e}")
            return encode_error_reply(e)

        try:
            image = self.service.visualize_query(query, result)
        except VisualizationError as e:
            logger.error(f"[zeromq] visualize_query failed ({e.kind}): {e}")
            return encode_error_reply(e)
        except Exception as e:
            self.service.record_failure(INTERNAL_ERROR)
            logger.exception(f"[zeromq] Error handling request: {e}")
            return encode_error_reply(e)

        return encode_image_frames(REPLY_OK, image)

    def handle_notification(self, parts: List[bytes]) -> None:
        """Fire-and-forget: malformed or foreign-topic envelopes are logged and dropped."""
        try:
            # SUBSCRIBE filters by prefix; only the exact topic is accepted
            topic = bytes(parts[0]).decode("utf-8", errors="ignore") if parts else ""
            if topic != self.topic_input:
                raise MessageFormatError(f"unexpected topic '{topic}'")
            query, result = parse_query_frames(parts)
        except MessageFormatError as e:
            self.service.record_failure(e.kind)
            logger.warning(f"[zeromq] {self.topic_input}: dropping malformed message: {e}")
            return
        except Exception as e:
            self.service.record_failure(INTERNAL_ERROR)
            logger.exception(f"[zeromq] {self.topic_input}: error parsing message: {e}")
            return

        try:
            self.service.on_retrieval_result(query, result)
        except Exception as e:
            self.service.record_failure(INTERNAL_ERROR)
            logger.exception(f"[zeromq] {self.topic_input}: error handling message: {e}")

    # -------- loop --------
    def poll_once(self, timeout_ms: int = 100) -> int:
        """Poll both sockets once and dispatch; returns the number of handled messages."""
        socks = dict(self.poller.poll(timeout_ms))
        handled = 0

        if self.rep_sock in socks:
            parts = self.rep_sock.recv_multipart()
            self.rep_sock.send_multipart(self.handle_request(parts))
            handled += 1

        if self.sub_sock in socks:
            parts = self.sub_sock.recv_multipart()
            self.handle_notification(parts)
            handled += 1

        return handled

    def run_forever(self) -> None:
        logger.info(
            f"[zeromq] Starting visualization server:\n"
            f"  Service: {self.service_endpoint} ({self.service_name})\n"
            f"  Input:   {self.input_endpoint} ({self.topic_input})"
        )
        self._running = True
        try:
            while self._running:
                self.poll_once(100)
                if self._periodic_logger is not None:
                    self._periodic_logger.maybe_log(self.service.stats())
        except KeyboardInterrupt:
            logger.info("[zeromq] Shutting down...")
        finally:
            self.close()

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        """Clean up ZMQ sockets (the context is owned by the caller)."""
        for sock in (self.rep_sock, self.sub_sock):
            try:
                sock.close(0)
            except zmq.ZMQError as e:
                logger.warning(f"[zeromq] socket close failed: {e}")
