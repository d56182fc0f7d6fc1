"""
Read-aloud support.

Speech is rendered by ElevenLabs first; when that fails for any reason the
text is spoken by the local pyttsx3 engine instead. Only one utterance or one
audio playback is ever active.
"""


import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import pyttsx3
import requests

from errors import SpeechError

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_ENDPOINT = "https://api.elevenlabs.io/v1/text-to-speech"

# constant bitrate, so a clip's length follows from its size
ELEVENLABS_OUTPUT_FORMAT = "mp3_44100_128"
MP3_BITRATE_BPS = 128_000

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.0,
    "use_speaker_boost": True,
}

# pyttsx3.init() hands back one shared engine per driver, so only one
# utterance may run on it at a time across the whole process
_ENGINE_LOCK = threading.Lock()


class SpeechState(Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


def mp3_duration(audio: bytes, bitrate=MP3_BITRATE_BPS) -> float:
    """Playback length in seconds of a constant-bitrate MP3 clip."""
    return len(audio) * 8 / bitrate


class ElevenLabsSynthesizer:
    """Remote voice synthesis. The API key stays on the server."""

    def __init__(self, api_key, voice_id, model_id="eleven_multilingual_v2", timeout=30.0):
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def synthesize(self, text: str) -> bytes:
        if not self.api_key:
            raise SpeechError("ELEVENLABS_API_KEY is not configured")
        try:
            response = requests.post(
                f"{ELEVENLABS_TTS_ENDPOINT}/{self.voice_id}",
                params={"output_format": ELEVENLABS_OUTPUT_FORMAT},
                headers={
                    "Accept": "audio/mpeg",
                    "Content-Type": "application/json",
                    "xi-api-key": self.api_key,
                },
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": VOICE_SETTINGS,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise SpeechError("ElevenLabs request timed out") from e
        except requests.exceptions.RequestException as e:
            raise SpeechError(f"Network error: {e}") from e

        if not response.ok:
            logger.error(f"❌ ElevenLabs API request failed with status {response.status_code}: {response.text[:200]}")
            raise SpeechError(f"ElevenLabs API request failed with status {response.status_code}")
        if not response.content:
            raise SpeechError("ElevenLabs returned no audio")
        return response.content


class AudioPlayer(ABC):
    """
    Plays synthesized audio.

    Implementations call `on_end()` when playback finishes and
    `on_error(exc)` when it cannot be played.
    """

    @abstractmethod
    def play(self, audio: bytes, mime_type: str, on_end: Callable[[], None], on_error: Callable[[Exception], None]):
        ...

    @abstractmethod
    def stop(self):
        ...


class TimedAudioPlayer(AudioPlayer):
    """
    Holds one clip and reports its end once its playback time has elapsed.

    For front ends that cannot observe the audio element themselves: call
    `poll()` periodically and it fires `on_end` when the clip is over.
    """

    def __init__(self, clock=time.monotonic, margin=0.5):
        self._clock = clock
        self.margin = margin
        self.audio = None
        self.mime_type = "audio/mpeg"
        self.deadline = None
        self._on_end = None
        self._on_error = None

    @property
    def is_playing(self) -> bool:
        return self.audio is not None

    def play(self, audio, mime_type, on_end, on_error):
        self.audio = audio
        self.mime_type = mime_type
        self.deadline = self._clock() + mp3_duration(audio) + self.margin
        self._on_end = on_end
        self._on_error = on_error

    def stop(self):
        self.audio = None
        self.deadline = None
        self._on_end = None
        self._on_error = None

    def poll(self) -> bool:
        """Fire `on_end` if the current clip has finished. Returns True when it did."""
        if self.audio is None or self._clock() < self.deadline:
            return False
        on_end = self._on_end
        self.stop()
        if on_end:
            on_end()
        return True

    def fail(self, error):
        on_error = self._on_error
        self.stop()
        if on_error:
            on_error(error)


class Pyttsx3Synthesizer:
    """Local fallback voice, driven by pyttsx3's utterance events."""

    def __init__(self, rate=150, volume=0.9, engine_factory=None, stop_timeout=5.0):
        self.rate = rate
        self.volume = volume
        self.stop_timeout = stop_timeout
        self._engine_factory = engine_factory or pyttsx3.init
        self._engine = None
        self._init_failed = False
        self._thread: Optional[threading.Thread] = None

    def _get_engine(self):
        if self._engine is None and not self._init_failed:
            try:
                engine = self._engine_factory()
                engine.setProperty("rate", self.rate)
                engine.setProperty("volume", self.volume)
                self._engine = engine
            except Exception as e:
                self._init_failed = True
                logger.warning(f"⚠️ pyttsx3 init failed: {e}")
        return self._engine

    @property
    def available(self) -> bool:
        return self._get_engine() is not None

    @property
    def busy(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def speak(self, text, on_start, on_end, on_error):
        engine = self._get_engine()
        if engine is None:
            raise SpeechError("No local speech engine available")
        if not _ENGINE_LOCK.acquire(blocking=False):
            raise SpeechError("Local speech engine is busy")
        try:
            self._thread = threading.Thread(
                target=self._run, args=(engine, text, on_start, on_end, on_error), daemon=True
            )
            self._thread.start()
        except Exception:
            _ENGINE_LOCK.release()
            raise

    def _run(self, engine, text, on_start, on_end, on_error):
        tokens = [
            engine.connect("started-utterance", lambda name: on_start()),
            engine.connect("finished-utterance", lambda name, completed: on_end()),
            engine.connect("error", lambda name, exception: on_error(exception)),
        ]
        try:
            engine.say(text)
            engine.runAndWait()
        except Exception as e:
            logger.error(f"❌ pyttsx3 failed: {e}")
            on_error(e)
        finally:
            for token in tokens:
                engine.disconnect(token)
            _ENGINE_LOCK.release()

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self):
        """Stop this synthesizer's own utterance, if any, and wait for its run loop to exit."""
        if not self.busy:
            return
        self._engine.stop()
        self.join(self.stop_timeout)


class SpeechService:
    """
    Two-tier text-to-speech with a single speaking flag.

    Every speak() gets a fresh utterance token; callbacks carrying an older
    token are dropped, so once stop() returns nothing can flip the state back
    or start more audio.
    """

    def __init__(self, synthesizer: ElevenLabsSynthesizer, player: Optional[AudioPlayer] = None, fallback=None):
        self.synthesizer = synthesizer
        self.player = player
        self.fallback = fallback
        self._lock = threading.Lock()
        self._state = SpeechState.IDLE
        self._token = 0

    @property
    def state(self) -> SpeechState:
        return self._state

    @property
    def is_speaking(self) -> bool:
        return self._state is SpeechState.SPEAKING

    @property
    def is_supported(self) -> bool:
        if self.synthesizer is not None and self.synthesizer.configured and self.player is not None:
            return True
        return self.fallback is not None and self.fallback.available

    def speak(self, text: str) -> bool:
        with self._lock:
            if self._state is SpeechState.SPEAKING:
                return False
            self._token += 1
            token = self._token
            self._state = SpeechState.SPEAKING
        self._halt_audio()

        if self.player is None:
            self._speak_locally(text, token)
            return True

        try:
            audio = self.synthesizer.synthesize(text)
        except SpeechError as e:
            logger.warning(f"⚠️ ElevenLabs TTS failed, switching to fallback: {e}")
            self._speak_locally(text, token)
            return True

        if not self._is_current(token):
            # stopped while the audio was being fetched
            return True
        self.player.play(
            audio,
            "audio/mpeg",
            on_end=lambda: self._set_state(token, SpeechState.IDLE),
            on_error=lambda error=None: self._on_playback_error(token, text, error),
        )
        return True

    def stop(self):
        with self._lock:
            self._token += 1
            self._state = SpeechState.IDLE
        self._halt_audio()

    def close(self):
        self.stop()

    def _halt_audio(self):
        if self.fallback is not None:
            try:
                self.fallback.stop()
            except Exception as e:
                logger.warning(f"⚠️ Could not stop local speech: {e}")
        if self.player is not None:
            self.player.stop()

    def _is_current(self, token) -> bool:
        with self._lock:
            return token == self._token

    def _set_state(self, token, state) -> bool:
        with self._lock:
            if token != self._token:
                return False
            self._state = state
            return True

    def _on_playback_error(self, token, text, error):
        if not self._set_state(token, SpeechState.IDLE):
            return
        logger.error(f"❌ Error playing ElevenLabs audio, using fallback: {error}")
        if self.player is not None:
            self.player.stop()
        self._speak_locally(text, token)

    def _on_local_error(self, token, error):
        logger.error(f"❌ SpeechSynthesis error: {error}")
        self._set_state(token, SpeechState.IDLE)

    def _speak_locally(self, text, token):
        if self.fallback is None:
            logger.warning("⚠️ No local speech engine configured")
            self._set_state(token, SpeechState.IDLE)
            return
        try:
            self.fallback.speak(
                text,
                on_start=lambda: self._set_state(token, SpeechState.SPEAKING),
                on_end=lambda: self._set_state(token, SpeechState.IDLE),
                on_error=lambda error=None: self._on_local_error(token, error),
            )
        except SpeechError as e:
            logger.warning(f"⚠️ Local speech unavailable: {e}")
            self._set_state(token, SpeechState.IDLE)
