"""Speech-to-text stage for the Voice Scam Shield pipeline.

Subscribes to analysis frames on ``FRAME_PORT`` (5555), buffers their
time-domain samples, runs `faster-whisper
<https://github.com/SYSTRAN/faster-whisper>`_ and publishes transcript
chunks on ``TRANSCRIPT_PORT`` (5556).

::

    ┌───────────┐  SUB :5555   ┌──────────────┐  PUB :5556   ┌──────────────┐
    │ audio_    │ ───────────→ │ Speech       │ ───────────→ │ risk monitor │
    │ capture   │  frames      │ Recognizer   │  transcript  │  (session)   │
    └───────────┘              └──────────────┘              └──────────────┘

Every ``min_audio_length`` seconds the buffer is transcribed and flushed
as a *final* chunk.  With ``interim_interval`` set, the partial buffer is
also transcribed every ``interim_interval`` seconds and published as an
*interim* chunk that the final one later supersedes.

Message published (inside the ``data`` field of the bus envelope)::

    {
        "text":      "transcribed text",
        "is_final":  true,
        "locale":    "en-US",
        "timestamp": "<ISO 8601 UTC>"
    }

If the Whisper model cannot be loaded the constructor raises
:class:`~voiceshield.core.errors.TranscriptionUnavailable`; the risk
monitor then scores the call from the acoustic channel alone.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import numpy as np
import zmq
from faster_whisper import WhisperModel

from voiceshield.core.errors import TranscriptionUnavailable
from voiceshield.core.locales import DEFAULT_LOCALE, Locale, resolve_locale
from voiceshield.core.message_bus import (
    FRAME_PORT,
    FRAME_TOPIC,
    TRANSCRIPT_PORT,
    TRANSCRIPT_TOPIC,
    MessageBus,
    decode_array,
)

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE: int = 16000


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class ASRConfig:
    """Parameters for the speech-recognition stage.

    Attributes
    ----------
    model_size:
        Whisper model size passed to ``faster_whisper.WhisperModel``.
    locale:
        Call locale; its language code is passed to Whisper and every
        published chunk is tagged with it.
    device:
        ``"cuda"``, ``"cpu"`` or ``"auto"``.
    compute_type:
        CTranslate2 compute type (``"float16"``, ``"int8"``, ``"default"``).
    min_audio_length:
        Seconds of audio per final chunk.
    interim_interval:
        Seconds between interim chunks, or ``None`` to publish finals only.
    """

    model_size: str = "small"
    locale: Locale = DEFAULT_LOCALE
    device: str = "auto"
    compute_type: str = "default"
    min_audio_length: float = 2.0
    interim_interval: float | None = None

    def __post_init__(self) -> None:
        self.locale = resolve_locale(self.locale)


# ---------------------------------------------------------------------------
# SpeechRecognizer
# ---------------------------------------------------------------------------


class SpeechRecognizer:
    """Subscribe to frames, run Whisper, publish locale-tagged transcripts.

    Raises
    ------
    TranscriptionUnavailable
        If the Whisper model cannot be loaded.
    """

    def __init__(self, config: ASRConfig, bus: MessageBus) -> None:
        self.config: ASRConfig = config
        self.bus: MessageBus = bus

        self._buffer: list[np.ndarray] = []
        self._buffered: int = 0
        self._since_interim: int = 0
        self._sample_rate: int = WHISPER_SAMPLE_RATE

        self._stop_event: threading.Event = threading.Event()
        self._publisher: zmq.Socket | None = None
        self._subscriber: zmq.Socket | None = None
        self.running: bool = False

        logger.info(
            "Loading Whisper model: size=%s, device=%s, compute_type=%s",
            config.model_size, config.device, config.compute_type,
        )
        try:
            self._model = WhisperModel(
                config.model_size,
                device=config.device,
                compute_type=config.compute_type,
            )
        except (RuntimeError, OSError, ValueError) as exc:
            raise TranscriptionUnavailable(
                f"cannot load Whisper model {config.model_size!r}: {exc}"
            ) from exc
        logger.info("Whisper model loaded successfully")

    # -- Buffer --------------------------------------------------------------

    @property
    def buffer_seconds(self) -> float:
        return self._buffered / self._sample_rate

    def add_samples(self, samples: np.ndarray, sample_rate: int) -> None:
        if sample_rate != self._sample_rate and self._buffered:
            logger.warning(
                "Sample rate changed %d -> %d, discarding buffer", self._sample_rate, sample_rate,
            )
            self._flush_buffer()
        self._sample_rate = sample_rate
        self._buffer.append(samples)
        self._buffered += samples.size
        self._since_interim += samples.size

    def _buffered_audio(self) -> np.ndarray:
        if not self._buffer:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self._buffer).astype(np.float32)

    def _flush_buffer(self) -> np.ndarray:
        audio = self._buffered_audio()
        self._buffer.clear()
        self._buffered = 0
        self._since_interim = 0
        return audio

    def _resample(self, audio: np.ndarray) -> np.ndarray:
        """Linear resample to Whisper's 16 kHz when the capture rate differs."""
        if self._sample_rate == WHISPER_SAMPLE_RATE or audio.size == 0:
            return audio
        target = int(round(audio.size * WHISPER_SAMPLE_RATE / self._sample_rate))
        positions = np.linspace(0, audio.size - 1, num=target)
        return np.interp(positions, np.arange(audio.size), audio).astype(np.float32)

    # -- Transcription -------------------------------------------------------

    def transcribe(self, audio: np.ndarray) -> str:
        """Run Whisper on *audio* (at the buffered sample rate)."""
        segments, _info = self._model.transcribe(
            self._resample(audio),
            language=self.config.locale.language,
            beam_size=1,
            vad_filter=True,
        )
        return "".join(seg.text for seg in segments).strip()

    def poll_buffer(self) -> dict[str, Any] | None:
        """Transcribe the buffer if a final or interim chunk is due.

        Returns the transcript payload to publish, or ``None``.
        """
        if self.buffer_seconds >= self.config.min_audio_length:
            is_final = True
            audio = self._flush_buffer()
        elif (
            self.config.interim_interval is not None
            and self._since_interim / self._sample_rate >= self.config.interim_interval
        ):
            is_final = False
            self._since_interim = 0
            audio = self._buffered_audio()
        else:
            return None

        started = time.perf_counter()
        text = self.transcribe(audio)
        logger.info(
            "Transcribed %.2fs (%s) in %.0fms: %s",
            audio.size / self._sample_rate,
            "final" if is_final else "interim",
            (time.perf_counter() - started) * 1000.0,
            text[:80] if text else "(silence)",
        )
        if not text:
            return None
        return {
            "text": text,
            "is_final": is_final,
            "locale": self.config.locale.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Subscribe to frames, transcribe, publish — blocking."""
        self._stop_event.clear()
        if self._subscriber is None:
            self._subscriber = self.bus.create_subscriber(
                ports=[FRAME_PORT], topics=[FRAME_TOPIC],
            )
        if self._publisher is None:
            self._publisher = self.bus.create_publisher(TRANSCRIPT_PORT)

        self.running = True
        logger.info(
            "SpeechRecognizer started – subscribing on :%d, publishing on :%d",
            FRAME_PORT, TRANSCRIPT_PORT,
        )
        try:
            self._main_loop()
        finally:
            self.running = False
            self._cleanup()
            logger.info("SpeechRecognizer stopped")

    def stop(self) -> None:
        self._stop_event.set()
        self.running = False

    def _cleanup(self) -> None:
        for sock in (self._subscriber, self._publisher):
            if sock is not None:
                sock.close()
        self._subscriber = self._publisher = None

    def _main_loop(self) -> None:
        while not self._stop_event.is_set():
            result = self.bus.receive(self._subscriber, timeout_ms=500)
            if result is None:
                continue

            _, envelope = result
            data: dict[str, Any] = envelope.get("data", {})
            try:
                samples = decode_array(data["samples"])
                sample_rate = int(data.get("sample_rate", self._sample_rate))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping undecodable frame: %r", exc)
                continue

            self.add_samples(samples, sample_rate)
            payload = self.poll_buffer()
            if payload is not None and self._publisher is not None:
                self.bus.publish(self._publisher, TRANSCRIPT_TOPIC, payload)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import argparse
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="Speech recognition — Whisper transcripts")
    parser.add_argument("--model", default="small", help="Whisper model size")
    parser.add_argument("--locale", default="en-US")
    parser.add_argument("--device", default="auto")
    parser.add_argument("--interim", type=float, default=None, help="Seconds between interim chunks")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asr = SpeechRecognizer(
            ASRConfig(
                model_size=args.model,
                locale=resolve_locale(args.locale),
                device=args.device,
                interim_interval=args.interim,
            ),
            MessageBus(),
        )
    except TranscriptionUnavailable as exc:
        logger.error("%s — risk scoring continues on audio only", exc)
        sys.exit(1)

    try:
        asr.start()
    except KeyboardInterrupt:
        asr.stop()
