"""Risk session and the bus service that drives it.

A :class:`RiskSession` owns one instance of each core component for a
single call: feature extraction feeds the spoof channel, transcript
chunks feed the text channel, both flow through the fusion engine, and
every fused update is handed to the alert coordinator.

:class:`RiskMonitorService` runs a session off the message bus::

    ┌──────────────┐ SUB :5555 frame       ┌──────────────┐ PUB :5557 risk
    │ audio_capture│ ────────────────────→ │ RiskMonitor  │ ─────────────→ presentation
    └──────────────┘                       │   Service    │
    ┌──────────────┐ SUB :5556 transcript  │ (RiskSession)│ PUB :5558 alert
    │ speech_recog.│ ────────────────────→ │              │ ─────────────→ voice_alert
    └──────────────┘                       └──────────────┘

Both inputs arrive on a single SUB socket and are handled in one loop,
so every mutation of the session happens on one thread without locks;
whichever message arrives last wins.  :meth:`RiskMonitorService.stop`
sets the loop's cancellation event, after which no further frames are
processed.

Usage::

    python -m voiceshield.core.session --locale es-ES --volume 0.8
"""

from __future__ import annotations

import argparse
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import zmq

from voiceshield.core.acoustic_features import FeatureSample, extract_features
from voiceshield.core.alerts import AlertConfig, AlertCoordinator, AlertDecision
from voiceshield.core.errors import CaptureUnavailable, MalformedFrame
from voiceshield.core.locales import Locale, resolve_locale
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
)
from voiceshield.core.risk_fusion import RiskFusionEngine, RiskState
from voiceshield.core.text_risk import TextRiskScanner

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


# ---------------------------------------------------------------------------
# RiskSession
# ---------------------------------------------------------------------------


class RiskSession:
    """All per-call state: scanner, fusion engine, alert coordinator.

    Inputs are ignored unless the session is running, so nothing that
    arrives after :meth:`stop` can touch the risk state.

    Parameters
    ----------
    alert_config:
        Locale and spoken-alert settings.
    clock:
        Monotonic time source for the alert cooldown.
    strict_frames:
        Re-raise :class:`MalformedFrame` instead of logging and skipping
        the frame.  Meant for development and tests.
    """

    def __init__(
        self,
        alert_config: AlertConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        strict_frames: bool = False,
    ) -> None:
        self.alert_config: AlertConfig = alert_config or AlertConfig()
        self.scanner = TextRiskScanner(locale=self.alert_config.locale)
        self.engine = RiskFusionEngine(self.scanner)
        self.coordinator = AlertCoordinator(self.alert_config, clock=clock)
        self.strict_frames = strict_frames

        self.status: SessionStatus = SessionStatus.IDLE
        self.features: FeatureSample = FeatureSample()
        self.skipped_frames: int = 0

    # -- Read-only views -----------------------------------------------------

    @property
    def running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    @property
    def state(self) -> RiskState:
        return self.engine.state

    @property
    def locale(self) -> Locale:
        return self.alert_config.locale

    def set_locale(self, locale: str | Locale) -> None:
        """Switch cue tables and alert wording for the rest of the call."""
        resolved = resolve_locale(locale)
        self.alert_config.locale = resolved
        self.scanner.locale = resolved

    def snapshot(self) -> dict[str, Any]:
        """State and latest feature summary for the presentation layer."""
        return {
            "status": self.status.value,
            "state": self.engine.state.to_dict(),
            "features": self.features.to_dict(),
        }

    # -- Lifecycle -----------------------------------------------------------

    def start(self, acquire: Optional[Callable[[], None]] = None) -> None:
        """Begin a fresh session.

        Parameters
        ----------
        acquire:
            Optional callable that opens the audio source.  If it raises
            :class:`CaptureUnavailable` the session stays idle with no
            state retained and the error propagates.
        """
        self.reset()
        if acquire is not None:
            try:
                acquire()
            except CaptureUnavailable:
                self.status = SessionStatus.IDLE
                logger.error("Session not started: capture unavailable")
                raise
        self.status = SessionStatus.RUNNING
        logger.info("Risk session started (locale=%s)", self.locale.value)

    def stop(self) -> None:
        self.status = SessionStatus.STOPPED
        self.reset()
        logger.info("Risk session stopped")

    def reset(self) -> None:
        """Back to ``{0, Safe, ""}``, empty window, fresh alert memory."""
        self.engine.reset()
        self.coordinator.reset()
        self.features = FeatureSample()

    # -- Inputs --------------------------------------------------------------

    def on_frame(
        self,
        samples: Any,
        spectrum_db: Any,
        sample_rate: float,
    ) -> AlertDecision | None:
        """Analyse one audio frame and fuse its spoof score."""
        if not self.running:
            return None
        try:
            features = extract_features(samples, spectrum_db, sample_rate)
        except MalformedFrame as exc:
            self.report_malformed_frame(exc)
            return None

        self.features = features
        state = self.engine.update(spoof_score=features.spoof_score)
        return self.coordinator.observe(state)

    def on_transcript(
        self,
        text: str,
        is_final: bool = True,
        locale: str | None = None,
    ) -> AlertDecision | None:
        """Append one interim or final transcript chunk and fuse."""
        if not self.running:
            return None
        if locale:
            resolved = resolve_locale(locale)
            if resolved is not self.locale:
                self.set_locale(resolved)

        state = self.engine.push_text(text)
        logger.debug(
            "%s transcript -> score=%d label=%s",
            "Final" if is_final else "Interim",
            state.score,
            state.label.value,
        )
        return self.coordinator.observe(state)

    def report_malformed_frame(self, exc: MalformedFrame) -> None:
        """Raise in strict mode, otherwise log and count the skipped frame."""
        if self.strict_frames:
            raise exc
        self.skipped_frames += 1
        logger.error("Skipping malformed frame (%d so far): %s", self.skipped_frames, exc)


# ---------------------------------------------------------------------------
# RiskMonitorService
# ---------------------------------------------------------------------------


@dataclass
class MonitorConfig:
    """Parameters for the bus-driven risk monitor.

    Attributes
    ----------
    strict_frames:
        Fail loudly on malformed frames (development).
    risk_publish_every:
        Publish the ``risk`` topic on every *N*-th audio frame.  Transcript
        updates and frames that produce an alert always publish.
    poll_timeout_ms:
        How long one receive waits before re-checking the stop event.
    """

    strict_frames: bool = False
    risk_publish_every: int = 5
    poll_timeout_ms: int = 200


class RiskMonitorService:
    """Subscribe to frames and transcripts, publish risk and alerts — blocking."""

    def __init__(
        self,
        bus: Optional[MessageBus] = None,
        alert_config: AlertConfig | None = None,
        config: MonitorConfig | None = None,
    ) -> None:
        self.bus = bus or MessageBus()
        self.config = config or MonitorConfig()
        self.session = RiskSession(alert_config, strict_frames=self.config.strict_frames)

        self._stop = threading.Event()
        self._subscriber: Optional[zmq.Socket] = None
        self._risk_pub: Optional[zmq.Socket] = None
        self._alert_pub: Optional[zmq.Socket] = None
        self.frame_count: int = 0
        self.transcript_count: int = 0
        self.running = False

    def start(self) -> None:
        """Subscribe, analyse, fuse, publish — blocks until :meth:`stop`."""
        self._stop.clear()
        self._subscriber = self.bus.create_subscriber(
            ports=[FRAME_PORT, TRANSCRIPT_PORT],
            topics=[FRAME_TOPIC, TRANSCRIPT_TOPIC],
        )
        self._risk_pub = self.bus.create_publisher(RISK_PORT)
        self._alert_pub = self.bus.create_publisher(ALERT_PORT)
        self.session.start()
        self.running = True
        logger.info(
            "RiskMonitorService started — SUB :%d/:%d, PUB risk:%d alert:%d",
            FRAME_PORT, TRANSCRIPT_PORT, RISK_PORT, ALERT_PORT,
        )
        try:
            self._main_loop()
        finally:
            self.running = False
            self.session.stop()
            self._cleanup()
            logger.info(
                "RiskMonitorService stopped (frames=%d, transcripts=%d, skipped=%d)",
                self.frame_count, self.transcript_count, self.session.skipped_frames,
            )

    def stop(self) -> None:
        self._stop.set()
        self.running = False

    def _cleanup(self) -> None:
        for sock in (self._subscriber, self._risk_pub, self._alert_pub):
            if sock:
                sock.close()
        self._subscriber = self._risk_pub = self._alert_pub = None

    def _main_loop(self) -> None:
        while not self._stop.is_set():
            result = self.bus.receive(self._subscriber, timeout_ms=self.config.poll_timeout_ms)
            if result is None:
                continue
            topic, envelope = result
            self.handle(topic, envelope)

    # -- Dispatch ------------------------------------------------------------

    def handle(self, topic: str, envelope: dict[str, Any]) -> None:
        """Route one bus message to the session and publish the outcome."""
        if self._stop.is_set():
            return
        data = envelope.get("data")
        if not isinstance(data, dict):
            logger.warning("Received non-dict data for topic=%s: %s", topic, type(data))
            return

        if topic == FRAME_TOPIC:
            self._on_frame(data)
        elif topic == TRANSCRIPT_TOPIC:
            self._on_transcript(data)
        else:
            logger.debug("Ignoring topic %r", topic)

    def _on_frame(self, data: dict[str, Any]) -> None:
        try:
            samples = decode_array(data["samples"])
            spectrum_db = decode_array(data["spectrum_db"])
            sample_rate = float(data["sample_rate"])
        except (KeyError, TypeError, ValueError) as exc:
            self.session.report_malformed_frame(
                MalformedFrame(f"undecodable frame payload: {exc!r}")
            )
            return

        decision = self.session.on_frame(samples, spectrum_db, sample_rate)
        self.frame_count += 1
        if decision or self.frame_count % self.config.risk_publish_every == 0:
            self._publish_risk()
        self._publish_decision(decision)

    def _on_transcript(self, data: dict[str, Any]) -> None:
        text = (data.get("text") or "").strip()
        if not text:
            return
        self.transcript_count += 1
        decision = self.session.on_transcript(
            text,
            is_final=bool(data.get("is_final", True)),
            locale=data.get("locale"),
        )
        self._publish_risk()
        self._publish_decision(decision)

    # -- Output --------------------------------------------------------------

    def _publish_risk(self) -> None:
        if self._risk_pub is not None:
            self.bus.publish(self._risk_pub, RISK_TOPIC, self.session.snapshot())

    def _publish_decision(self, decision: AlertDecision | None) -> None:
        if not decision or self._alert_pub is None:
            return
        payload = {
            "speak": decision.speak.to_dict() if decision.speak else None,
            "notify": decision.notify.to_dict() if decision.notify else None,
        }
        self.bus.publish(self._alert_pub, ALERT_TOPIC, payload)
        logger.info(
            "Published alert speak=%s notify=%s",
            decision.speak is not None,
            decision.notify.title if decision.notify else None,
        )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Risk monitor — fuse audio and transcript cues")
    parser.add_argument("--locale", default="en-US", help="en-US, es-ES or fr-FR (default: en-US)")
    parser.add_argument("--no-voice", action="store_true", help="Disable spoken alerts")
    parser.add_argument("--volume", type=float, default=0.6, help="Spoken-alert volume 0..1")
    parser.add_argument("--strict", action="store_true", help="Fail on malformed frames")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    service = RiskMonitorService(
        alert_config=AlertConfig(
            locale=resolve_locale(args.locale),
            spoken_alerts=not args.no_voice,
            volume=args.volume,
        ),
        config=MonitorConfig(strict_frames=args.strict),
    )
    try:
        service.start()
    except KeyboardInterrupt:
        service.stop()
