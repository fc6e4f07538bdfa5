"""Tests for voiceshield.core.voice_alert – Piper TTS alert output.

Piper voices and ``aplay`` are mocked; no model files or sound card are
needed.
"""

from __future__ import annotations

import subprocess
import wave
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from voiceshield.core import voice_alert
from voiceshield.core.alerts import NotificationRequest, SpeakRequest
from voiceshield.core.locales import Locale
from voiceshield.core.message_bus import ALERT_PORT
from voiceshield.core.voice_alert import (
    AlertOutputService,
    VoiceAlertPlayer,
    VoiceConfig,
    log_notifier,
)

REQUEST = SpeakRequest(text="Attention", locale="en-US", volume=0.6, rate=0.95)


def _fake_synthesize_wav(text, wav_file, syn_config=None) -> None:
    wav_file.setnchannels(1)
    wav_file.setsampwidth(2)
    wav_file.setframerate(22050)
    wav_file.writeframes(b"\x00\x00" * 10)


@pytest.fixture()
def config(tmp_path: Path) -> VoiceConfig:
    model = tmp_path / "en_US-test.onnx"
    model.write_bytes(b"")
    return VoiceConfig(
        model_paths={Locale.EN_US: str(model)},
        audio_device="plughw:1,0",
        output_path=tmp_path / "alert.wav",
    )


# ---------------------------------------------------------------------------
# VoiceAlertPlayer
# ---------------------------------------------------------------------------


class TestSynthesize:
    """Voices load lazily and honour volume and rate."""

    @patch("voiceshield.core.voice_alert.PiperVoice")
    def test_writes_wav_with_synthesis_config(self, mock_voice_cls: MagicMock, config: VoiceConfig) -> None:
        voice = mock_voice_cls.load.return_value
        voice.synthesize_wav.side_effect = _fake_synthesize_wav

        VoiceAlertPlayer(config).synthesize(REQUEST, config.output_path)

        syn_config = voice.synthesize_wav.call_args.kwargs["syn_config"]
        assert syn_config.volume == pytest.approx(0.6)
        assert syn_config.length_scale == pytest.approx(1 / 0.95)
        with wave.open(str(config.output_path), "rb") as wav_file:
            assert wav_file.getframerate() == 22050

    @patch("voiceshield.core.voice_alert.PiperVoice")
    def test_voice_is_cached_per_locale(self, mock_voice_cls: MagicMock, config: VoiceConfig) -> None:
        mock_voice_cls.load.return_value.synthesize_wav.side_effect = _fake_synthesize_wav
        player = VoiceAlertPlayer(config)
        player.synthesize(REQUEST, config.output_path)
        player.synthesize(REQUEST, config.output_path)
        mock_voice_cls.load.assert_called_once()

    def test_missing_model_file(self, tmp_path: Path) -> None:
        player = VoiceAlertPlayer(VoiceConfig(model_paths={Locale.EN_US: str(tmp_path / "nope.onnx")}))
        with pytest.raises(FileNotFoundError, match="not found"):
            player._voice_for(Locale.EN_US)

    def test_unconfigured_locale(self, config: VoiceConfig) -> None:
        with pytest.raises(FileNotFoundError, match="es-ES"):
            VoiceAlertPlayer(config)._voice_for(Locale.ES_ES)


class TestSpeak:
    """Playback goes through aplay and cancels the previous utterance."""

    @pytest.fixture()
    def player(self, config: VoiceConfig) -> VoiceAlertPlayer:
        player = VoiceAlertPlayer(config)
        player.synthesize = MagicMock()
        return player

    @patch("voiceshield.core.voice_alert.subprocess.Popen")
    def test_plays_on_configured_device(self, mock_popen: MagicMock, player: VoiceAlertPlayer) -> None:
        assert player.speak(REQUEST) is True
        args = mock_popen.call_args.args[0]
        assert args[:4] == ["aplay", "-q", "-D", "plughw:1,0"]
        assert args[-1] == str(player.config.output_path)

    @patch("voiceshield.core.voice_alert.subprocess.Popen")
    def test_new_request_cancels_pending(self, mock_popen: MagicMock, player: VoiceAlertPlayer) -> None:
        first = MagicMock()
        first.poll.return_value = None
        mock_popen.side_effect = [first, MagicMock()]

        player.speak(REQUEST)
        player.speak(REQUEST)

        first.terminate.assert_called_once()
        assert mock_popen.call_count == 2

    @patch("voiceshield.core.voice_alert.subprocess.Popen")
    def test_finished_playback_not_terminated(self, mock_popen: MagicMock, player: VoiceAlertPlayer) -> None:
        done = MagicMock()
        done.poll.return_value = 0
        mock_popen.return_value = done

        player.speak(REQUEST)
        player.speak(REQUEST)
        done.terminate.assert_not_called()

    def test_stuck_playback_is_killed(self, player: VoiceAlertPlayer) -> None:
        stuck = MagicMock()
        stuck.poll.return_value = None
        stuck.wait.side_effect = subprocess.TimeoutExpired("aplay", 1.0)
        player._playback = stuck

        player.cancel()
        stuck.kill.assert_called_once()
        assert player._playback is None

    @patch("voiceshield.core.voice_alert.subprocess.Popen", side_effect=FileNotFoundError)
    def test_missing_aplay(self, mock_popen: MagicMock, player: VoiceAlertPlayer) -> None:
        assert player.speak(REQUEST) is False

    def test_missing_voice_is_not_fatal(self, player: VoiceAlertPlayer) -> None:
        player.synthesize.side_effect = FileNotFoundError("Piper model not found")
        assert player.speak(REQUEST) is False


# ---------------------------------------------------------------------------
# AlertOutputService
# ---------------------------------------------------------------------------


class _DummySocket:
    def close(self) -> None:
        pass


class _FakeBus:
    def __init__(self) -> None:
        self.publisher_calls: list[int] = []
        self.subscribed_ports: list[int] = []

    def create_subscriber(self, ports: list[int], topics: list[str]) -> _DummySocket:
        self.subscribed_ports.extend(ports)
        return _DummySocket()

    def create_publisher(self, port: int) -> _DummySocket:
        self.publisher_calls.append(port)
        return _DummySocket()

    def receive(self, socket: _DummySocket, timeout_ms: int = 500):
        return None


class TestAlertOutputService:
    """Alert payloads are split between the notifier and the player."""

    @pytest.fixture()
    def service(self) -> AlertOutputService:
        service = AlertOutputService(bus=_FakeBus(), notifier=MagicMock())
        service._player = MagicMock()
        return service

    def test_dispatch_both(self, service: AlertOutputService) -> None:
        service.dispatch({
            "speak": REQUEST.to_dict(),
            "notify": {"title": "High risk: possible fraud", "body": "Reason: urgent transfer"},
        })
        service._notifier.assert_called_once_with(
            NotificationRequest("High risk: possible fraud", "Reason: urgent transfer")
        )
        service._player.speak.assert_called_once_with(REQUEST)

    def test_dispatch_notify_only(self, service: AlertOutputService) -> None:
        service.dispatch({"speak": None, "notify": {"title": "Warning: suspicious activity"}})
        assert service._notifier.call_args.args[0].body is None
        service._player.speak.assert_not_called()

    def test_malformed_speak_is_ignored(self, service: AlertOutputService) -> None:
        service.dispatch({"speak": {"locale": "en-US"}, "notify": None})
        service._player.speak.assert_not_called()

    def test_start_subscribes_without_publishing(self, service: AlertOutputService, monkeypatch) -> None:
        monkeypatch.setattr(service, "_main_loop", lambda: None)
        service.start()
        assert service.bus.subscribed_ports == [ALERT_PORT]
        assert service.bus.publisher_calls == []
        service._player.cancel.assert_called_once()


def test_log_notifier_logs_warning(caplog) -> None:
    with caplog.at_level("WARNING", logger=voice_alert.__name__):
        log_notifier(NotificationRequest("Warning: suspicious activity", "Reason: pressure cue"))
    assert "[NOTIFY] Warning: suspicious activity" in caplog.text
