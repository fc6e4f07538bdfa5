"""Microphone capture for the Voice Scam Shield pipeline.

Reads the call audio from the default (or a named) input device via
``sounddevice``, pairs every block with its smoothed dB spectrum, and
publishes the pair on ``FRAME_PORT`` for the risk monitor.

Architecture
------------
::

    ┌────────────┐  float32   ┌──────────┐  spectrum +  ┌───────────┐
    │ sounddevice│ ─callback→ │  Queue   │ ─pub loop──→ │  ZeroMQ   │
    │ InputStream│            │ (frames) │  base64/JSON │ PUB :5555 │
    └────────────┘            └──────────┘              └───────────┘

The PortAudio callback runs on a C-level audio thread and only copies
samples onto a bounded queue; the FFT and all socket work happen on the
thread that called :meth:`AudioCapture.start`.

Message payload (inside the ``data`` field of the bus envelope)::

    {
        "samples":     "<base64 float32, fft_size samples>",
        "spectrum_db": "<base64 float32, fft_size // 2 bins>",
        "sample_rate": 16000,
        "timestamp":   "<ISO 8601 UTC>"
    }
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import numpy as np
import sounddevice as sd
import zmq

from voiceshield.core.acoustic_features import (
    DEFAULT_FFT_SIZE,
    DEFAULT_SMOOTHING,
    SpectrumAnalyser,
)
from voiceshield.core.errors import CaptureUnavailable
from voiceshield.core.message_bus import FRAME_PORT, FRAME_TOPIC, MessageBus, encode_array

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class AudioConfig:
    """Parameters for the capture stage.

    Attributes
    ----------
    sample_rate:
        Samples per second requested from the device.
    fft_size:
        Samples per analysis frame; also the PortAudio block size.  2048
        at 16 kHz is 128 ms per frame.
    smoothing:
        Spectral smoothing between consecutive frames, in [0, 1).
    device_name:
        Substring of an input device name; ``None`` uses the default.
    """

    sample_rate: int = 16000
    fft_size: int = DEFAULT_FFT_SIZE
    smoothing: float = DEFAULT_SMOOTHING
    device_name: str | None = None


# ---------------------------------------------------------------------------
# AudioCapture
# ---------------------------------------------------------------------------


class AudioCapture:
    """Capture mono audio and publish paired time/frequency frames."""

    _QUEUE_MAXSIZE: int = 64

    def __init__(self, config: AudioConfig, bus: MessageBus) -> None:
        self.config: AudioConfig = config
        self.bus: MessageBus = bus
        self.analyser = SpectrumAnalyser(config.fft_size, config.smoothing)

        self._queue: queue.Queue[np.ndarray] = queue.Queue(maxsize=self._QUEUE_MAXSIZE)
        self._stop_event: threading.Event = threading.Event()
        self._publisher: zmq.Socket | None = None

        self.published_count: int = 0
        self.callback_count: int = 0
        self.running: bool = False

    @staticmethod
    def list_devices() -> list[dict[str, Any]]:
        """Return every PortAudio device as a dict (``name``, channel counts…)."""
        devices = sd.query_devices()
        if isinstance(devices, dict):
            return [devices]
        return list(devices)

    # -- Sounddevice callback ------------------------------------------------

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: Any,
        status: sd.CallbackFlags | None,
    ) -> None:
        """Copy the first channel of *indata* onto the queue.  Audio thread."""
        if status:
            logger.warning("Audio callback status: %s", status)

        self.callback_count += 1
        mono = np.array(indata[:, 0] if indata.ndim == 2 else indata, dtype=np.float32)
        try:
            self._queue.put_nowait(mono)
        except queue.Full:
            logger.warning("Audio queue full – dropping frame")

    # -- Frame building ------------------------------------------------------

    def build_frame(self, samples: np.ndarray) -> dict[str, Any]:
        """Run the spectrum analyser on *samples* and build the bus payload."""
        clipped = np.clip(samples, -1.0, 1.0)
        spectrum_db = self.analyser.process(clipped)
        return {
            "samples": encode_array(clipped),
            "spectrum_db": encode_array(spectrum_db),
            "sample_rate": self.config.sample_rate,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Open the input stream and publish frames until :meth:`stop`.

        Blocks the calling thread.

        Raises
        ------
        CaptureUnavailable
            If PortAudio cannot open or start the input device.
        """
        self._stop_event.clear()
        self.analyser.reset()
        device_index = self._resolve_device()

        if self._publisher is None:
            self._publisher = self.bus.create_publisher(FRAME_PORT)

        logger.info(
            "Starting audio capture: %d Hz, fft=%d, device=%s",
            self.config.sample_rate,
            self.config.fft_size,
            device_index if device_index is not None else "default",
        )

        try:
            stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                channels=1,
                blocksize=self.config.fft_size,
                dtype="float32",
                device=device_index,
                callback=self._audio_callback,
            )
        except sd.PortAudioError as exc:
            self._cleanup()
            raise CaptureUnavailable(f"cannot open input device: {exc}") from exc
        try:
            stream.start()
        except sd.PortAudioError as exc:
            stream.close()
            self._cleanup()
            raise CaptureUnavailable(f"cannot start input stream: {exc}") from exc

        self.running = True
        try:
            logger.info("Audio stream opened – publishing on port %d", FRAME_PORT)
            self._publish_loop()
        finally:
            stream.stop()
            stream.close()
            self.running = False
            self._cleanup()
            logger.info("Audio stream closed")

    def stop(self) -> None:
        """Signal the capture loop to exit.  Idempotent, any thread."""
        self._stop_event.set()
        self.running = False

    def _cleanup(self) -> None:
        if self._publisher is not None:
            self._publisher.close()
            self._publisher = None

    # -- Internal ------------------------------------------------------------

    def _publish_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                samples = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue

            if samples.size != self.config.fft_size:
                logger.warning(
                    "Dropping short block (%d of %d samples)", samples.size, self.config.fft_size,
                )
                continue

            if self._publisher is not None:
                self.bus.publish(self._publisher, FRAME_TOPIC, self.build_frame(samples))
                self.published_count += 1
                if self.published_count % 50 == 1:
                    logger.debug(
                        "_publish_loop: published=%d, queued=%d",
                        self.published_count,
                        self._queue.qsize(),
                    )

        # Frames still queued after stop are discarded, not published.
        dropped = 0
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
                dropped += 1
            except queue.Empty:
                break

        logger.info(
            "_publish_loop exiting: published=%d, dropped=%d, callbacks=%d",
            self.published_count,
            dropped,
            self.callback_count,
        )

    def _resolve_device(self) -> int | None:
        """Index of the first input device whose name contains ``device_name``."""
        if self.config.device_name is None:
            return None

        for idx, dev in enumerate(self.list_devices()):
            if dev.get("max_input_channels", 0) <= 0:
                continue
            if self.config.device_name.lower() in dev.get("name", "").lower():
                logger.info("Matched device %r → index %d", dev["name"], idx)
                return idx

        logger.warning(
            "Device %r not found – falling back to system default",
            self.config.device_name,
        )
        return None


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
    parser = argparse.ArgumentParser(description="Audio capture — publish analysis frames")
    parser.add_argument("--device", default=None, help="Substring of the input device name")
    parser.add_argument("--sample-rate", type=int, default=16000)
    parser.add_argument("--list", action="store_true", help="List devices and exit")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list:
        for i, dev in enumerate(AudioCapture.list_devices()):
            marker = " <-- input" if dev.get("max_input_channels", 0) > 0 else ""
            print(f"  [{i}] {dev.get('name', '?')}{marker}")
        sys.exit(0)

    capture = AudioCapture(
        AudioConfig(sample_rate=args.sample_rate, device_name=args.device),
        MessageBus(),
    )
    try:
        capture.start()
    except CaptureUnavailable as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        capture.stop()
