"""ZeroMQ message bus connecting the Voice Scam Shield stages.

Capture, transcription, risk monitoring and alert output run as separate
stages that talk over PUB/SUB sockets bound on ``127.0.0.1`` only; audio
never leaves the machine.  Every message is two frames::

    Frame 0 (topic):  UTF-8 topic string used for SUB filtering.
    Frame 1 (body):   JSON envelope {"timestamp": <ISO 8601>, "topic": <str>, "data": {…}}

Topic / port map
----------------
* ``frame`` on 5555: ``{samples, spectrum_db, sample_rate, timestamp}``
* ``transcript`` on 5556: ``{text, is_final, locale, timestamp}``
* ``risk`` on 5557: ``{state: {score, label, rationale}, features}``
* ``alert`` on 5558: ``{speak: {...} | None, notify: {...} | None}``

NumPy frames travel as base64-encoded little-endian float32
(:func:`encode_array` / :func:`decode_array`).
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any

import numpy as np
import zmq

# ---------------------------------------------------------------------------
# Ports and topics
# ---------------------------------------------------------------------------

FRAME_PORT: int = 5555
"""Paired time/frequency audio frames from the capture stage."""

TRANSCRIPT_PORT: int = 5556
"""Interim and final transcript chunks from the speech-to-text stage."""

RISK_PORT: int = 5557
"""Fused risk state and feature summary for the presentation layer."""

ALERT_PORT: int = 5558
"""Spoken-alert and notification requests for the output stage."""

FRAME_TOPIC: str = "frame"
TRANSCRIPT_TOPIC: str = "transcript"
RISK_TOPIC: str = "risk"
ALERT_TOPIC: str = "alert"

_BIND_HOST: str = "127.0.0.1"
_WIRE_DTYPE = np.dtype("<f4")

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Array codec
# ---------------------------------------------------------------------------


def encode_array(values: np.ndarray) -> str:
    """Base64-encode *values* as a flat little-endian float32 buffer."""
    flat = np.ascontiguousarray(values, dtype=_WIRE_DTYPE).reshape(-1)
    return base64.b64encode(flat.tobytes()).decode("ascii")


def decode_array(encoded: str) -> np.ndarray:
    """Inverse of :func:`encode_array`; returns a writable float32 array."""
    raw = base64.b64decode(encoded)
    return np.frombuffer(raw, dtype=_WIRE_DTYPE).astype(np.float32)


# ---------------------------------------------------------------------------
# MessageBus
# ---------------------------------------------------------------------------


class MessageBus:
    """Socket factory and JSON codec over one process-wide ``zmq.Context``.

    ZeroMQ recommends a single context per process; it is shared by every
    ``MessageBus`` instance and created lazily under a class-level lock.
    """

    _context: zmq.Context | None = None
    _lock: threading.Lock = threading.Lock()

    def __init__(self) -> None:
        self.context: zmq.Context = self._get_context()

    @classmethod
    def _get_context(cls) -> zmq.Context:
        if cls._context is None:
            with cls._lock:
                if cls._context is None:
                    cls._context = zmq.Context()
                    logger.debug("Created new zmq.Context")
        return cls._context

    # -- Socket factories ----------------------------------------------------

    def create_publisher(self, port: int) -> zmq.Socket:
        """Bind a PUB socket on ``127.0.0.1:<port>``."""
        socket: zmq.Socket = self.context.socket(zmq.PUB)
        socket.bind(f"tcp://{_BIND_HOST}:{port}")
        logger.info("PUB socket bound on port %d", port)
        return socket

    def create_subscriber(
        self,
        ports: list[int],
        topics: list[str] | None = None,
    ) -> zmq.Socket:
        """Connect one SUB socket to every port in *ports*.

        Parameters
        ----------
        ports:
            Publisher ports on ``127.0.0.1``.  One socket may fan in
            several stages, which keeps the consumer single-threaded.
        topics:
            Topic prefixes to subscribe to; ``None`` subscribes to all.
        """
        socket: zmq.Socket = self.context.socket(zmq.SUB)
        for port in ports:
            socket.connect(f"tcp://{_BIND_HOST}:{port}")
            logger.debug("SUB socket connected to port %d", port)

        for topic in topics if topics is not None else [""]:
            socket.setsockopt_string(zmq.SUBSCRIBE, topic)
            logger.debug("Subscribed to topic %r", topic)

        return socket

    # -- Publish / Receive ---------------------------------------------------

    def publish(self, socket: zmq.Socket, topic: str, data: dict[str, Any]) -> None:
        """Send *data* under *topic* wrapped in the timestamped envelope."""
        envelope: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "topic": topic,
            "data": data,
        }
        payload = json.dumps(envelope)
        socket.send_multipart([topic.encode("utf-8"), payload.encode("utf-8")])
        logger.debug("Published [%s] %d bytes", topic, len(payload))

    def receive(
        self,
        socket: zmq.Socket,
        timeout_ms: int = 1000,
    ) -> tuple[str, dict[str, Any]] | None:
        """Wait up to *timeout_ms* for one message.

        Returns
        -------
        tuple[str, dict] | None
            ``(topic, envelope)``, or ``None`` on timeout.
        """
        poller = zmq.Poller()
        poller.register(socket, zmq.POLLIN)
        events = dict(poller.poll(timeout=timeout_ms))
        if socket not in events:
            return None

        frames: list[bytes] = socket.recv_multipart()
        topic = frames[0].decode("utf-8")
        try:
            envelope: dict[str, Any] = json.loads(frames[1].decode("utf-8"))
        except (IndexError, UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Dropping undecodable message on topic %r", topic)
            return None
        return topic, envelope
