from unittest.mock import MagicMock

import pytest
import requests

from errors import SpeechError
from mock_data import BlockingTTSEngine, FakeClock, FakeFallback, FakePlayer, FakeSynthesizer, FakeTTSEngine
from speech import (
    ELEVENLABS_OUTPUT_FORMAT,
    ELEVENLABS_TTS_ENDPOINT,
    VOICE_SETTINGS,
    AudioPlayer,
    ElevenLabsSynthesizer,
    Pyttsx3Synthesizer,
    SpeechService,
    SpeechState,
    TimedAudioPlayer,
    mp3_duration,
)


def _response(status=200, content=b"mp3-bytes", text=""):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.content = content
    response.text = text
    return response


class TestElevenLabsSynthesizer:
    @pytest.fixture
    def synth(self):
        return ElevenLabsSynthesizer(api_key="xi-key", voice_id="voice-1", model_id="eleven_multilingual_v2", timeout=30.0)

    def test_posts_text_and_voice_settings(self, synth, mocker):
        post = mocker.patch("speech.requests.post", return_value=_response())

        assert synth.synthesize("Hello farmer") == b"mp3-bytes"

        args, kwargs = post.call_args
        assert args[0] == f"{ELEVENLABS_TTS_ENDPOINT}/voice-1"
        assert kwargs["params"] == {"output_format": ELEVENLABS_OUTPUT_FORMAT}
        assert kwargs["headers"]["xi-api-key"] == "xi-key"
        assert kwargs["headers"]["Accept"] == "audio/mpeg"
        assert kwargs["json"] == {"text": "Hello farmer", "model_id": "eleven_multilingual_v2",
                                  "voice_settings": VOICE_SETTINGS}
        assert kwargs["timeout"] == 30.0

    def test_missing_key_never_hits_the_network(self, mocker):
        post = mocker.patch("speech.requests.post")
        synth = ElevenLabsSynthesizer(api_key="", voice_id="voice-1")

        assert synth.configured is False
        with pytest.raises(SpeechError):
            synth.synthesize("Hello")
        post.assert_not_called()

    def test_http_error_raises(self, synth, mocker):
        mocker.patch("speech.requests.post", return_value=_response(status=401, text="invalid api key"))

        with pytest.raises(SpeechError, match="401"):
            synth.synthesize("Hello")

    def test_empty_audio_raises(self, synth, mocker):
        mocker.patch("speech.requests.post", return_value=_response(content=b""))

        with pytest.raises(SpeechError):
            synth.synthesize("Hello")

    @pytest.mark.parametrize("exc", [requests.exceptions.Timeout("slow"), requests.exceptions.ConnectionError("down")])
    def test_network_errors_raise(self, synth, mocker, exc):
        mocker.patch("speech.requests.post", side_effect=exc)

        with pytest.raises(SpeechError):
            synth.synthesize("Hello")


class TestSpeechService:
    def test_remote_playback_until_end(self):
        synth, player, fallback = FakeSynthesizer(), FakePlayer(), FakeFallback()
        service = SpeechService(synth, player, fallback)

        assert service.speak("Action plan") is True
        assert service.state is SpeechState.SPEAKING
        assert player.played == [(b"ID3-mp3-bytes", "audio/mpeg")]
        assert fallback.spoken == []

        player.on_end()
        assert service.state is SpeechState.IDLE

    def test_speak_while_speaking_is_ignored(self):
        synth, player = FakeSynthesizer(), FakePlayer()
        service = SpeechService(synth, player, FakeFallback())
        service.speak("first")

        assert service.speak("second") is False
        assert synth.texts == ["first"]

    def test_remote_failure_falls_back_to_local_voice(self):
        synth, player, fallback = FakeSynthesizer(error="quota"), FakePlayer(), FakeFallback()
        service = SpeechService(synth, player, fallback)

        service.speak("Action plan")

        assert player.played == []
        assert fallback.spoken == ["Action plan"]
        fallback.on_start()
        assert service.is_speaking
        fallback.on_end()
        assert service.state is SpeechState.IDLE

    def test_playback_error_falls_back_to_local_voice(self):
        player, fallback = FakePlayer(), FakeFallback()
        service = SpeechService(FakeSynthesizer(), player, fallback)
        service.speak("Action plan")

        player.on_error(RuntimeError("autoplay blocked"))

        assert fallback.spoken == ["Action plan"]
        fallback.on_start()
        assert service.is_speaking

    def test_local_error_returns_to_idle(self):
        fallback = FakeFallback()
        service = SpeechService(FakeSynthesizer(error="down"), FakePlayer(), fallback)
        service.speak("Action plan")
        fallback.on_start()

        fallback.on_error(RuntimeError("no audio device"))

        assert service.state is SpeechState.IDLE

    def test_no_voice_at_all_returns_to_idle(self):
        service = SpeechService(FakeSynthesizer(error="down"), FakePlayer(), FakeFallback(error="no engine"))

        service.speak("Action plan")

        assert service.state is SpeechState.IDLE

    def test_without_player_speaks_locally(self):
        synth, fallback = FakeSynthesizer(), FakeFallback()
        service = SpeechService(synth, None, fallback)

        service.speak("Action plan")

        assert synth.texts == []
        assert fallback.spoken == ["Action plan"]

    def test_stop_halts_everything_and_ignores_late_callbacks(self):
        player, fallback = FakePlayer(), FakeFallback()
        service = SpeechService(FakeSynthesizer(), player, fallback)
        service.speak("Action plan")
        on_end, on_error = player.on_end, player.on_error

        service.stop()

        assert service.state is SpeechState.IDLE
        assert player.stop_calls >= 1
        assert fallback.stop_calls >= 1
        on_error(RuntimeError("late"))
        on_end()
        assert fallback.spoken == []
        assert service.state is SpeechState.IDLE

    def test_stale_local_start_does_not_resume(self):
        fallback = FakeFallback()
        service = SpeechService(FakeSynthesizer(error="down"), FakePlayer(), fallback)
        service.speak("Action plan")
        stale_start = fallback.on_start

        service.close()
        stale_start()

        assert service.state is SpeechState.IDLE

    def test_can_speak_again_after_stop(self):
        synth, player = FakeSynthesizer(), FakePlayer()
        service = SpeechService(synth, player, FakeFallback())
        service.speak("first")
        service.stop()

        assert service.speak("second") is True
        assert synth.texts == ["first", "second"]

    @pytest.mark.parametrize("synth,player,fallback,expected", [
        (FakeSynthesizer(), FakePlayer(), None, True),
        (FakeSynthesizer(configured=False), FakePlayer(), FakeFallback(), True),
        (FakeSynthesizer(configured=False), FakePlayer(), FakeFallback(available=False), False),
        (FakeSynthesizer(), None, None, False),
    ])
    def test_is_supported(self, synth, player, fallback, expected):
        assert SpeechService(synth, player, fallback).is_supported is expected


class TestPyttsx3Synthesizer:
    def test_speaks_and_reports_events(self):
        engine = FakeTTSEngine()
        local = Pyttsx3Synthesizer(engine_factory=lambda: engine)
        events = []

        local.speak("Rotate crops", lambda: events.append("start"), lambda: events.append("end"),
                    lambda e: events.append(("error", e)))
        local.join(timeout=5)

        assert events == ["start", "end"]
        assert engine.properties == {"rate": 150, "volume": 0.9}
        assert engine.callbacks == {}

    def test_driver_failure_reports_error(self):
        engine = FakeTTSEngine(fail=True)
        local = Pyttsx3Synthesizer(engine_factory=lambda: engine)
        errors = []

        local.speak("Rotate crops", lambda: None, lambda: None, errors.append)
        local.join(timeout=5)

        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)

    def test_unavailable_engine(self):
        def broken():
            raise OSError("no espeak")

        local = Pyttsx3Synthesizer(engine_factory=broken)

        assert local.available is False
        with pytest.raises(SpeechError):
            local.speak("Rotate crops", lambda: None, lambda: None, lambda e: None)

    def test_stop_waits_for_the_run_loop(self):
        engine = BlockingTTSEngine()
        local = Pyttsx3Synthesizer(engine_factory=lambda: engine)
        local.speak("Rotate crops", lambda: None, lambda: None, lambda e: None)
        assert engine.running.wait(5)

        local.stop()

        assert engine.stopped is True
        assert local.busy is False
        assert engine.running.is_set() is False

    def test_stop_without_utterance_leaves_engine_alone(self):
        engine = BlockingTTSEngine()
        local = Pyttsx3Synthesizer(engine_factory=lambda: engine)
        assert local.available

        local.stop()

        assert engine.stopped is False


class TestSharedLocalEngine:
    """pyttsx3 returns the same engine to every caller in the process."""

    def _service(self, engine):
        local = Pyttsx3Synthesizer(engine_factory=lambda: engine)
        return SpeechService(FakeSynthesizer(error="down"), FakePlayer(), local), local

    def test_second_service_cannot_cut_off_the_first(self):
        engine = BlockingTTSEngine()
        first, first_local = self._service(engine)
        second, _ = self._service(engine)
        try:
            first.speak("Remove infected leaves")
            assert engine.running.wait(5)

            second.speak("Rotate crops")

            assert engine.stopped is False
            assert first.is_speaking
            assert second.state is SpeechState.IDLE
            assert engine.run_count == 1
        finally:
            first.stop()
        assert first_local.busy is False

    def test_other_service_can_speak_once_the_first_stops(self):
        engine = BlockingTTSEngine()
        first, _ = self._service(engine)
        second, second_local = self._service(engine)
        first.speak("Remove infected leaves")
        assert engine.running.wait(5)
        first.stop()

        try:
            second.speak("Rotate crops")
            assert engine.running.wait(5)
            assert second.is_speaking
            assert engine.run_count == 2
        finally:
            second.stop()
        assert second_local.busy is False

    def test_stop_then_speak_again_in_one_session(self):
        engine = BlockingTTSEngine()
        service, local = self._service(engine)
        service.speak("first")
        assert engine.running.wait(5)
        service.stop()

        try:
            assert service.speak("second") is True
            assert engine.running.wait(5)
            assert service.is_speaking
        finally:
            service.stop()
        assert engine.run_count == 2
        assert local.busy is False


class TestTimedAudioPlayer:
    def test_audio_player_is_abstract(self):
        with pytest.raises(TypeError):
            AudioPlayer()

    def test_duration_follows_the_bitrate(self):
        # 16 kB at 128 kbps is one second
        assert mp3_duration(b"\x00" * 16000) == pytest.approx(1.0)

    def test_end_of_clip_returns_service_to_idle(self):
        clock = FakeClock()
        player = TimedAudioPlayer(clock=clock, margin=0.5)
        service = SpeechService(FakeSynthesizer(audio=b"\x00" * 32000), player, FakeFallback())

        service.speak("Action plan")
        assert player.is_playing
        clock.advance(2.0)
        assert player.poll() is False
        assert service.is_speaking

        clock.advance(0.6)
        assert player.poll() is True
        assert service.state is SpeechState.IDLE
        assert player.is_playing is False

    def test_read_aloud_can_be_pressed_again_after_the_clip(self):
        clock = FakeClock()
        synth = FakeSynthesizer(audio=b"\x00" * 16000)
        player = TimedAudioPlayer(clock=clock)
        service = SpeechService(synth, player, FakeFallback())
        service.speak("first")
        clock.advance(10)
        player.poll()

        assert service.speak("second") is True
        assert synth.texts == ["first", "second"]

    def test_stopped_clip_never_reports_an_end(self):
        clock = FakeClock()
        player = TimedAudioPlayer(clock=clock)
        service = SpeechService(FakeSynthesizer(), player, FakeFallback())
        service.speak("Action plan")
        service.stop()
        clock.advance(60)

        assert player.poll() is False
        assert service.state is SpeechState.IDLE

    def test_render_failure_falls_back(self):
        fallback = FakeFallback()
        player = TimedAudioPlayer(clock=FakeClock())
        service = SpeechService(FakeSynthesizer(), player, fallback)
        service.speak("Action plan")

        player.fail(RuntimeError("autoplay blocked"))

        assert player.is_playing is False
        assert fallback.spoken == ["Action plan"]
