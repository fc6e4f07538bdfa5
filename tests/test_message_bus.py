"""Unit tests for voiceshield.core.message_bus – ZeroMQ transport.

Tests cover:
    - Port and topic constant values
    - MessageBus singleton zmq.Context behavior
    - Publisher / Subscriber socket creation
    - Publish / Receive round-trip and topic filtering
    - Receive timeout and undecodable bodies return None
    - float32 array codec
"""

import time
from datetime import datetime

import numpy as np
import pytest
import zmq

from voiceshield.core.message_bus import (
    ALERT_PORT,
    ALERT_TOPIC,
    FRAME_PORT,
    FRAME_TOPIC,
    RISK_PORT,
    RISK_TOPIC,
    TRANSCRIPT_PORT,
    TRANSCRIPT_TOPIC,
    MessageBus,
    decode_array,
    encode_array,
)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

class TestConstants:
    """Ports and topics every stage agrees on."""

    def test_ports(self) -> None:
        assert (FRAME_PORT, TRANSCRIPT_PORT, RISK_PORT, ALERT_PORT) == (5555, 5556, 5557, 5558)

    def test_topics(self) -> None:
        assert (FRAME_TOPIC, TRANSCRIPT_TOPIC, RISK_TOPIC, ALERT_TOPIC) == (
            "frame", "transcript", "risk", "alert",
        )


# ---------------------------------------------------------------------------
# MessageBus construction
# ---------------------------------------------------------------------------

class TestMessageBusInit:
    """MessageBus should use a singleton zmq.Context."""

    def test_context_is_zmq_context(self) -> None:
        assert isinstance(MessageBus().context, zmq.Context)

    def test_singleton_context_across_instances(self) -> None:
        assert MessageBus().context is MessageBus().context


# ---------------------------------------------------------------------------
# Socket creation
# ---------------------------------------------------------------------------

class TestSocketCreation:
    """Publisher and subscriber sockets must bind/connect correctly."""

    @pytest.fixture(autouse=True)
    def _bus(self) -> None:
        self.bus = MessageBus()

    def test_create_publisher_returns_pub_socket(self) -> None:
        pub = self.bus.create_publisher(port=6100)
        try:
            assert pub.type == zmq.PUB
        finally:
            pub.close()

    def test_subscriber_fans_in_several_ports(self) -> None:
        pub_a = self.bus.create_publisher(port=6101)
        pub_b = self.bus.create_publisher(port=6102)
        try:
            sub = self.bus.create_subscriber(ports=[6101, 6102], topics=[FRAME_TOPIC])
            try:
                assert sub.type == zmq.SUB
            finally:
                sub.close()
        finally:
            pub_a.close()
            pub_b.close()


# ---------------------------------------------------------------------------
# Publish / Receive round-trip
# ---------------------------------------------------------------------------

class TestPubSubRoundTrip:
    """Messages must survive a publish -> receive round-trip intact."""

    # Unique port range to avoid collisions with other test classes.
    PORT = 6200

    @pytest.fixture(autouse=True)
    def _sockets(self) -> None:
        self.bus = MessageBus()
        self.pub = self.bus.create_publisher(port=self.PORT)
        self.sub = self.bus.create_subscriber(ports=[self.PORT])
        # Allow the ZeroMQ "slow joiner" handshake to complete.
        time.sleep(0.3)
        yield
        self.sub.close()
        self.pub.close()

    def test_round_trip_data_integrity(self) -> None:
        payload = {"text": "hola", "is_final": True, "locale": "es-ES"}
        self.bus.publish(self.pub, topic=TRANSCRIPT_TOPIC, data=payload)

        result = self.bus.receive(self.sub, timeout_ms=2000)
        assert result is not None

        topic, message = result
        assert topic == TRANSCRIPT_TOPIC
        assert message["topic"] == TRANSCRIPT_TOPIC
        assert message["data"] == payload

    def test_timestamp_is_iso8601_with_timezone(self) -> None:
        self.bus.publish(self.pub, topic=RISK_TOPIC, data={})

        result = self.bus.receive(self.sub, timeout_ms=2000)
        assert result is not None
        parsed = datetime.fromisoformat(result[1]["timestamp"])
        assert parsed.tzinfo is not None

    def test_messages_arrive_in_order(self) -> None:
        for i in range(5):
            self.bus.publish(self.pub, topic=FRAME_TOPIC, data={"seq": i})

        seqs = []
        for _ in range(5):
            result = self.bus.receive(self.sub, timeout_ms=2000)
            assert result is not None
            seqs.append(result[1]["data"]["seq"])
        assert seqs == [0, 1, 2, 3, 4]

    def test_undecodable_body_is_dropped(self) -> None:
        self.pub.send_multipart([b"risk", b"{not json"])
        assert self.bus.receive(self.sub, timeout_ms=2000) is None


class TestTopicFilter:
    """A topic-filtered subscriber only sees its topics."""

    PORT = 6300

    @pytest.fixture(autouse=True)
    def _sockets(self) -> None:
        self.bus = MessageBus()
        self.pub = self.bus.create_publisher(port=self.PORT)
        self.sub = self.bus.create_subscriber(ports=[self.PORT], topics=[ALERT_TOPIC])
        time.sleep(0.3)
        yield
        self.sub.close()
        self.pub.close()

    def test_other_topics_filtered(self) -> None:
        self.bus.publish(self.pub, topic=RISK_TOPIC, data={"n": 1})
        self.bus.publish(self.pub, topic=ALERT_TOPIC, data={"n": 2})

        result = self.bus.receive(self.sub, timeout_ms=2000)
        assert result is not None
        assert result[0] == ALERT_TOPIC
        assert result[1]["data"] == {"n": 2}

    def test_returns_none_on_timeout(self) -> None:
        assert self.bus.receive(self.sub, timeout_ms=200) is None


# ---------------------------------------------------------------------------
# Array codec
# ---------------------------------------------------------------------------

class TestArrayCodec:
    """NumPy frames travel as base64 float32."""

    def test_preserves_values_as_float32(self) -> None:
        values = np.array([0.0, -1.0, 0.5, -np.inf], dtype=np.float64)
        decoded = decode_array(encode_array(values))
        assert decoded.dtype == np.float32
        np.testing.assert_array_equal(decoded, values.astype(np.float32))

    def test_decoded_array_is_writable(self) -> None:
        decoded = decode_array(encode_array(np.zeros(4)))
        decoded[0] = 1.0
        assert decoded[0] == 1.0

    def test_encoding_is_ascii_text(self) -> None:
        assert isinstance(encode_array(np.ones(8)), str)
