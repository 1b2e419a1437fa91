"""
Sampling loop module.

Runs one controller step at a time on a background thread:
- each step runs to completion before the next may start
- between steps the loop waits for the delay the step returned
- a step returning None ends the loop
- stop() wakes any wait immediately

An overrunning step is never queued twice: the next step simply starts
as soon as the previous one finishes.
"""

import threading
import time
from typing import Callable, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

StepFn = Callable[[], Optional[float]]


class SamplingLoop:
    """Fixed-interval, cancellable step runner."""

    def __init__(
        self,
        step: StepFn,
        name: str = 'SamplingLoop',
        on_exit: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            step: Callable run each tick; returns delay until the next tick or None to stop
            name: Thread name (shows up in logs)
            on_exit: Called on the loop thread after the last step
            clock: Monotonic clock
        """
        self._step = step
        self._on_exit = on_exit
        self.name = name
        self._clock = clock
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    def start(self) -> None:
        """Start the loop thread."""
        if self._thread and self._thread.is_alive():
            logger.debug(f'{self.name} already running')
            return

        self._stop_flag.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f'{self.name} started')

    def stop(self, join_timeout: Optional[float] = 2.0) -> None:
        """
        Signal the loop to stop and wait for the thread.

        Safe to call from any state, including from inside a step.
        """
        self._stop_flag.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop_flag.is_set()

    def _run(self) -> None:
        try:
            self._loop()
        finally:
            if self._on_exit is not None:
                self._on_exit()
            logger.debug(f'{self.name} exited')

    def _loop(self) -> None:
        while not self._stop_flag.is_set():
            started = self._clock()
            try:
                delay = self._step()
            except Exception as e:
                logger.error(f'{self.name} step failed: {e}', exc_info=True)
                delay = 1.0

            self.ticks += 1

            if delay is None:
                logger.debug(f'{self.name} finished')
                break

            # Time spent in the step counts towards the interval
            remaining = delay - (self._clock() - started)
            if remaining > 0:
                self._stop_flag.wait(remaining)
