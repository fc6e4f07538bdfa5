"""Spoken and visual alert output.

Subscribes to ``alert`` messages on ``ALERT_PORT`` (5558).  Spoken-alert
requests are synthesized with Piper TTS in the request's locale and
played through ALSA (``aplay``); notification requests go to a
caller-supplied notifier, by default the log.

A new spoken request always cancels playback that is still running, so
at most one warning is audible at a time.

Requires: piper-tts, aplay (ALSA)
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import tempfile
import threading
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import zmq
from piper import PiperVoice, SynthesisConfig

from voiceshield.core.alerts import NotificationRequest, SpeakRequest
from voiceshield.core.locales import Locale, resolve_locale
from voiceshield.core.message_bus import ALERT_PORT, ALERT_TOPIC, MessageBus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_AUDIO_DEVICE = "default"
DEFAULT_MODEL_PATHS: dict[Locale, str] = {
    Locale.EN_US: "models/piper/en_US-lessac-medium.onnx",
    Locale.ES_ES: "models/piper/es_ES-davefx-medium.onnx",
    Locale.FR_FR: "models/piper/fr_FR-siwis-medium.onnx",
}
PLAYBACK_TERMINATE_TIMEOUT = 1.0


@dataclass
class VoiceConfig:
    """Piper voices per locale and the ALSA output device."""

    model_paths: dict[Locale, str] = field(default_factory=lambda: dict(DEFAULT_MODEL_PATHS))
    audio_device: str = DEFAULT_AUDIO_DEVICE
    output_path: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "voiceshield_alert.wav"
    )


def _resolve_model_path(path: str) -> Path:
    """Resolve *path* relative to the project root."""
    model_file = Path(path)
    if not model_file.is_absolute():
        model_file = Path(__file__).resolve().parents[2] / path
    return model_file


def log_notifier(request: NotificationRequest) -> None:
    """Default notification collaborator: one WARNING log line."""
    if request.body:
        logger.warning("[NOTIFY] %s — %s", request.title, request.body)
    else:
        logger.warning("[NOTIFY] %s", request.title)


# ---------------------------------------------------------------------------
# VoiceAlertPlayer
# ---------------------------------------------------------------------------


class VoiceAlertPlayer:
    """Synthesize and play :class:`SpeakRequest` objects.

    Voices are loaded on first use per locale and cached.
    """

    def __init__(self, config: VoiceConfig | None = None) -> None:
        self.config = config or VoiceConfig()
        self._voices: dict[Locale, PiperVoice] = {}
        self._playback: subprocess.Popen | None = None

    def _voice_for(self, locale: Locale) -> PiperVoice:
        voice = self._voices.get(locale)
        if voice is not None:
            return voice

        path = self.config.model_paths.get(locale)
        if path is None:
            raise FileNotFoundError(f"No Piper model configured for {locale.value}")
        model_file = _resolve_model_path(path)
        if not model_file.exists():
            raise FileNotFoundError(f"Piper model not found: {model_file}")

        logger.info("Loading Piper voice for %s from %s", locale.value, model_file)
        voice = PiperVoice.load(str(model_file))
        self._voices[locale] = voice
        return voice

    def synthesize(self, request: SpeakRequest, path: Path) -> None:
        """Write *request* as a WAV file at *path*."""
        voice = self._voice_for(resolve_locale(request.locale))
        syn_config = SynthesisConfig(
            volume=max(0.0, min(1.0, request.volume)),
            length_scale=1.0 / request.rate if request.rate > 0 else 1.0,
        )
        with wave.open(str(path), "wb") as wav_file:
            voice.synthesize_wav(request.text, wav_file, syn_config=syn_config)

    def cancel(self) -> None:
        """Stop the utterance currently playing, if any."""
        playback = self._playback
        self._playback = None
        if playback is None or playback.poll() is not None:
            return
        playback.terminate()
        try:
            playback.wait(timeout=PLAYBACK_TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            playback.kill()
        logger.debug("Cancelled pending utterance")

    def speak(self, request: SpeakRequest) -> bool:
        """Cancel any pending utterance, then speak *request* once.

        Returns ``True`` if playback started.
        """
        self.cancel()
        try:
            self.synthesize(request, self.config.output_path)
        except FileNotFoundError as exc:
            logger.error("Cannot speak alert: %s", exc)
            return False

        try:
            self._playback = subprocess.Popen(
                ["aplay", "-q", "-D", self.config.audio_device, str(self.config.output_path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.error("aplay not found — install alsa-utils")
            return False

        logger.info("[ALERT] speaking (%s, vol=%.2f): %s", request.locale, request.volume, request.text[:60])
        return True


# ---------------------------------------------------------------------------
# MessageBus service
# ---------------------------------------------------------------------------


class AlertOutputService:
    """Subscribe to alert requests and hand them to speech/notification output."""

    def __init__(
        self,
        bus: Optional[MessageBus] = None,
        voice_config: VoiceConfig | None = None,
        notifier: Callable[[NotificationRequest], None] = log_notifier,
    ) -> None:
        self.bus = bus or MessageBus()
        self._player = VoiceAlertPlayer(voice_config)
        self._notifier = notifier
        self._subscriber: Optional[zmq.Socket] = None
        self._stop = threading.Event()
        self.running = False

    def start(self) -> None:
        """Subscribe and process — blocking."""
        self._stop.clear()
        self._subscriber = self.bus.create_subscriber(ports=[ALERT_PORT], topics=[ALERT_TOPIC])
        self.running = True
        logger.info("AlertOutputService started — SUB alert :%d", ALERT_PORT)
        try:
            self._main_loop()
        finally:
            self.running = False
            self._player.cancel()
            self._cleanup()
            logger.info("AlertOutputService stopped")

    def stop(self) -> None:
        self._stop.set()
        self.running = False

    def _cleanup(self) -> None:
        if self._subscriber:
            self._subscriber.close()
            self._subscriber = None

    def _main_loop(self) -> None:
        while not self._stop.is_set():
            result = self.bus.receive(self._subscriber, timeout_ms=500)
            if result is None:
                continue
            topic, envelope = result
            data = envelope.get("data", {})
            if not isinstance(data, dict):
                logger.warning("Received non-dict data for topic=%s: %s", topic, type(data))
                continue
            self.dispatch(data)

    def dispatch(self, data: dict[str, Any]) -> None:
        """Forward the notify and speak parts of one alert payload."""
        notify = data.get("notify")
        if isinstance(notify, dict) and notify.get("title"):
            self._notifier(NotificationRequest(title=notify["title"], body=notify.get("body")))

        speak = data.get("speak")
        if isinstance(speak, dict):
            try:
                request = SpeakRequest(
                    text=speak["text"],
                    locale=speak.get("locale", Locale.EN_US.value),
                    volume=float(speak.get("volume", 1.0)),
                    rate=float(speak.get("rate", 1.0)),
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Ignoring malformed speak request: %r", exc)
                return
            self._player.speak(request)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Alert output — Piper TTS warnings and notifications")
    parser.add_argument("--device", default=DEFAULT_AUDIO_DEVICE, help="ALSA audio device")
    parser.add_argument("--model-dir", default=None, help="Directory holding the Piper .onnx voices")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    voice_config = VoiceConfig(audio_device=args.device)
    if args.model_dir:
        voice_config.model_paths = {
            locale: str(Path(args.model_dir) / Path(path).name)
            for locale, path in DEFAULT_MODEL_PATHS.items()
        }

    service = AlertOutputService(voice_config=voice_config)
    try:
        service.start()
    except KeyboardInterrupt:
        service.stop()
