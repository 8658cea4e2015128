"""
CHIP-8 Audio Collaborators
==========================
The machine exposes a single signal: sound is active while the sound
timer is nonzero.  Chip8System.run() calls set_sound(active) only when
that signal changes.

  NullAudio      silent
  TerminalBell   rings BEL on each rising edge
  PygameBeeper   looping square-wave tone via pygame.mixer
"""

from __future__ import annotations

import logging
import sys

log = logging.getLogger(__name__)

TONE_HZ     = 349.23   # F4
SAMPLE_RATE = 44100
VOLUME      = 0.1


class NullAudio:
    """Discards the sound signal."""

    def __init__(self):
        self.active = False

    def set_sound(self, active: bool):
        self.active = bool(active)

    def close(self):
        self.active = False


class TerminalBell(NullAudio):
    """Write BEL to a terminal whenever sound switches on."""

    def __init__(self, stream=None):
        super().__init__()
        self.stream = stream if stream is not None else sys.stdout
        self.rings = 0

    def set_sound(self, active: bool):
        if active and not self.active:
            self.stream.write("\x07")
            self.stream.flush()
            self.rings += 1
        self.active = bool(active)


def square_wave(freq: float = TONE_HZ, rate: int = SAMPLE_RATE,
                volume: float = VOLUME):
    """One period-aligned buffer of a square wave as int16 samples."""
    import numpy as np

    # Whole number of periods so the loop point is seamless
    periods = max(1, int(round(freq / 10)))
    n = int(round(rate * periods / freq))
    t = np.arange(n) / rate
    wave = np.where(np.sin(2 * np.pi * freq * t) >= 0, 1.0, -1.0)
    return (wave * volume * 32767).astype(np.int16)


class PygameBeeper(NullAudio):
    """Continuous tone while the sound signal is active."""

    def __init__(self, freq: float = TONE_HZ, volume: float = VOLUME):
        super().__init__()
        self.freq = freq
        self.volume = volume
        self._pygame = None
        self._sound = None

    def open(self):
        import numpy as np
        import pygame

        pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=1)
        rate, _, channels = pygame.mixer.get_init()
        samples = square_wave(self.freq, rate, self.volume)
        if channels > 1:
            samples = np.repeat(samples[:, None], channels, axis=1)
        self._sound = pygame.sndarray.make_sound(np.ascontiguousarray(samples))
        self._pygame = pygame
        log.debug("tone ready: %.2f Hz @ %d Hz, %d ch", self.freq, rate, channels)

    def set_sound(self, active: bool):
        active = bool(active)
        if self._sound is not None and active != self.active:
            if active:
                self._sound.play(loops=-1)
            else:
                self._sound.stop()
        self.active = active

    def close(self):
        if self._sound is not None:
            self._sound.stop()
            self._sound = None
        if self._pygame is not None:
            self._pygame.mixer.quit()
            self._pygame = None
        self.active = False
