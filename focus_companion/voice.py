"""
============================================================
 Focus Companion — Voice
 The alert sink. speak() never blocks the caller: synthesis
 and playback run in a background thread.

   OpenAI TTS (mp3) → pygame mixer      when an API key is set
   pyttsx3 local voice                  offline fallback

 Requests inside VOICE_COOLDOWN of the previous utterance are
 dropped; nothing is spoken while sound is disabled.
============================================================
"""

import logging
import os
import tempfile
import threading
import time

import openai
import pygame
import pyttsx3

from focus_companion import config

logger = logging.getLogger(__name__)


class Voice:
    """Fire-and-forget speech with a cooldown, urgent lines faster and louder."""

    def __init__(self, settings, clock=time.monotonic) -> None:
        self.settings = settings
        self.clock = clock

        self.client = None
        if config.OPENAI_API_KEY:
            self.client = openai.OpenAI(
                api_key=config.OPENAI_API_KEY,
                timeout=config.OPENAI_TTS_TIMEOUT,
                max_retries=0,  # Fall back to the local voice instead
            )
            logger.info("[VOICE] OpenAI TTS client initialized")
        else:
            logger.info("[VOICE] No API key. Using local voice only.")

        self._mixer_ready: bool | None = None
        self._local_engine = None
        self._playback_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self.last_spoken: float | None = None
        self.last_text = ""
        self.spoken_count = 0

    # ── Public API ───────────────────────────────────────────
    def speak(self, text: str, urgent: bool = False) -> bool:
        """Queue `text` for playback. Returns False when muted or cooling down."""
        if not text or not self.settings.sound_enabled:
            return False
        now = self.clock()
        with self._state_lock:
            if self.last_spoken is not None and now - self.last_spoken < config.VOICE_COOLDOWN:
                return False
            self.last_spoken = now
            self.last_text = text
            self.spoken_count += 1
        self._dispatch(text, urgent)
        return True

    def close(self) -> None:
        if self._mixer_ready:
            pygame.mixer.quit()
            self._mixer_ready = None
        if self._local_engine is not None:
            self._local_engine.stop()
            self._local_engine = None

    # ── Playback thread ──────────────────────────────────────
    def _dispatch(self, text: str, urgent: bool) -> None:
        thread = threading.Thread(target=self._say, args=(text, urgent), daemon=True, name="Voice")
        thread.start()

    def _say(self, text: str, urgent: bool) -> None:
        volume = config.VOICE_URGENT_VOLUME if urgent else config.VOICE_VOLUME
        with self._playback_lock:
            audio = self._generate_tts(text, urgent) if self.client is not None else None
            if audio and self._play_audio(audio, volume):
                return
            self._speak_local(text, urgent, volume)

    def _generate_tts(self, text: str, urgent: bool) -> bytes | None:
        try:
            response = self.client.audio.speech.create(
                model=config.OPENAI_TTS_MODEL,
                voice=config.OPENAI_TTS_VOICE,
                input=text,
                response_format="mp3",
                speed=config.VOICE_URGENT_RATE_FACTOR if urgent else 1.0,
            )
            return response.content
        except openai.OpenAIError as e:
            logger.warning("[VOICE] OpenAI TTS failed: %s", e)
            return None

    def _ensure_mixer(self) -> bool:
        if self._mixer_ready is None:
            try:
                pygame.mixer.init(frequency=24000, size=-16, channels=1, buffer=2048)
                self._mixer_ready = True
            except pygame.error as e:
                logger.warning("[VOICE] Audio mixer unavailable: %s", e)
                self._mixer_ready = False
        return self._mixer_ready

    def _play_audio(self, audio_data: bytes, volume: float) -> bool:
        """Play mp3 bytes through the pygame mixer via a temp file."""
        if not self._ensure_mixer():
            return False
        fd, tmp_path = tempfile.mkstemp(suffix=".mp3")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio_data)
            pygame.mixer.music.load(tmp_path)
            pygame.mixer.music.set_volume(volume)
            pygame.mixer.music.play()
            while pygame.mixer.music.get_busy():
                time.sleep(0.1)
            pygame.mixer.music.unload()
            return True
        except pygame.error as e:
            logger.warning("[VOICE] Audio playback error: %s", e)
            return False
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                pass

    def _speak_local(self, text: str, urgent: bool, volume: float) -> None:
        """Offline TTS through pyttsx3."""
        try:
            if self._local_engine is None:
                self._local_engine = pyttsx3.init()
            rate = config.VOICE_RATE * (config.VOICE_URGENT_RATE_FACTOR if urgent else 1.0)
            self._local_engine.setProperty("rate", int(rate))
            self._local_engine.setProperty("volume", volume)
            self._local_engine.say(text)
            self._local_engine.runAndWait()
        except Exception as e:
            logger.warning("[VOICE] Local TTS error: %s", e)
            # Engine may be in a bad state; rebuild on next use
            self._local_engine = None
