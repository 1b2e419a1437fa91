"""
Spoken announcements.

Best-effort text-to-speech for greetings. Speaking happens on a daemon
thread; failures are logged and never reach the caller.
"""

import threading
from typing import Optional

import pyttsx3

from .logging_config import get_logger

logger = get_logger(__name__)

SPEECH_RATE = 170


class Announcer:
    """Speak short notifications aloud."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._engine: Optional[pyttsx3.Engine] = None
        self._init_failed = False

    def __call__(self, text: str) -> None:
        self.announce(text)

    def announce(self, text: str) -> None:
        """Queue text for speaking without blocking."""
        if not text:
            return
        logger.info(f'📢 {text}')
        if not self.enabled:
            return
        threading.Thread(target=self._speak, args=(text,), daemon=True, name='Announcer').start()

    def _speak(self, text: str) -> None:
        # pyttsx3 engines are not thread-safe; one utterance at a time
        with self._lock:
            engine = self._get_engine()
            if engine is None:
                return
            try:
                engine.say(text)
                engine.runAndWait()
            except RuntimeError as e:
                logger.warning(f'Speech failed: {e}')

    def _get_engine(self) -> Optional[pyttsx3.Engine]:
        if self._engine is None and not self._init_failed:
            try:
                self._engine = pyttsx3.init()
                self._engine.setProperty('rate', SPEECH_RATE)
            except (RuntimeError, OSError, ImportError) as e:
                # No speech driver on this host
                logger.warning(f'Text-to-speech unavailable: {e}')
                self._init_failed = True
        return self._engine
