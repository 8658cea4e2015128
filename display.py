"""
CHIP-8 Host Frontends
=====================
Input + video collaborators for Chip8System.run().  Each one implements

    poll_keys() -> list[bool] | None   latest 16-key snapshot (None = no change)
    exit_requested                     True once the user asked to quit
    present(frame, width, height)      show a 0/1 pixel frame
    close()

Sound goes to a separate collaborator (audio.py).

Frontends:
  NullDevice        accepts everything, shows nothing
  HeadlessDisplay   records frames (tests, batch runs)
  PygameFrontend    scaled window; keyboard via pygame
  TerminalFrontend  ANSI terminal in raw mode; keyboard via stdin

Keymap (physical -> CHIP-8):

    1 2 3 4        1 2 3 C
    Q W E R   =>   4 5 6 D
    A S D F        7 8 9 E
    Z X C V        A 0 B F

Usage (programmatic):
    from display import PygameFrontend
    ui = PygameFrontend("PONG", scale=10)
    ui.open()
    system.run(ui, ui, audio)
    ui.close()
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Optional

from devices import NUM_KEYS, frame_to_text

log = logging.getLogger(__name__)

KEYMAP = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}

PX_OFF_COLOR = (0x1E, 0x1C, 0x2D)
PX_ON_COLOR  = (0xE0, 0xDE, 0xF4)

KEY_DEBOUNCE_S = 0.100   # terminal key presses expire after this long


def keys_from_chars(chars) -> list[bool]:
    """Map an iterable of physical key characters to a 16-key snapshot."""
    state = [False] * NUM_KEYS
    for ch in chars:
        k = KEYMAP.get(ch.lower()) if isinstance(ch, str) else None
        if k is not None:
            state[k] = True
    return state


def frame_to_rgb(frame: bytes | bytearray, width: int, height: int,
                 on=PX_ON_COLOR, off=PX_OFF_COLOR):
    """Convert a 0/1 frame to a (width, height, 3) uint8 array for surfarray."""
    import numpy as np

    bits = np.frombuffer(bytes(frame), dtype=np.uint8).reshape(height, width)
    lut = np.array([off, on], dtype=np.uint8)
    return lut[bits].transpose(1, 0, 2)


# ── Null / Headless ───────────────────────────────────────────────────


class NullDevice:
    """Empty device: no keys, no output."""

    exit_requested = False

    def poll_keys(self) -> Optional[list[bool]]:
        return None

    def present(self, frame: bytes, width: int, height: int):
        pass

    def set_sound(self, active: bool):
        pass

    def close(self):
        pass


class HeadlessDisplay(NullDevice):
    """No-op display for testing; records every presented frame."""

    def __init__(self, max_frames: Optional[int] = None):
        self.frames: list[bytes] = []
        self.max_frames = max_frames
        self.width = 0
        self.height = 0

    def present(self, frame: bytes, width: int, height: int):
        self.width, self.height = width, height
        self.frames.append(bytes(frame))
        if self.max_frames is not None and len(self.frames) > self.max_frames:
            del self.frames[0]

    @property
    def last_frame(self) -> Optional[bytes]:
        return self.frames[-1] if self.frames else None

    def render_text(self, on: str = "#", off: str = ".") -> str:
        if not self.frames:
            return ""
        return frame_to_text(self.frames[-1], self.width, on, off)


# ── pygame window ─────────────────────────────────────────────────────


class PygameFrontend(NullDevice):
    """Scaled pygame window; ESC or closing the window exits."""

    def __init__(self, title: str = "CHIP-8", scale: int = 10,
                 width: int = 64, height: int = 32):
        self.title = title
        self.scale = max(1, scale)
        self.width = width
        self.height = height
        self.exit_requested = False
        self._pygame = None
        self._screen = None
        self._surface = None
        self._keycodes: dict[int, int] = {}

    def open(self):
        import pygame

        pygame.init()
        pygame.display.set_caption(f"CHIP-8: {self.title}")
        self._screen = pygame.display.set_mode(
            (self.width * self.scale, self.height * self.scale),
            pygame.RESIZABLE)
        self._surface = pygame.Surface((self.width, self.height))
        self._surface.fill(PX_OFF_COLOR)
        self._keycodes = {pygame.key.key_code(ch): k for ch, k in KEYMAP.items()}
        self._pygame = pygame
        self._blit()
        log.debug("pygame window open (%dx scale)", self.scale)

    def poll_keys(self) -> Optional[list[bool]]:
        pygame = self._pygame
        if pygame is None:
            return None
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.exit_requested = True
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self.exit_requested = True
        pressed = pygame.key.get_pressed()
        state = [False] * NUM_KEYS
        for code, k in self._keycodes.items():
            if pressed[code]:
                state[k] = True
        return state

    def present(self, frame: bytes, width: int, height: int):
        if self._pygame is None:
            return
        if (width, height) != (self.width, self.height):
            self.width, self.height = width, height
            self._surface = self._pygame.Surface((width, height))
        self._pygame.surfarray.blit_array(
            self._surface, frame_to_rgb(frame, width, height))
        self._blit()

    def _blit(self):
        pygame = self._pygame
        sw, sh = self._screen.get_size()
        # Keep the 2:1 aspect, letterbox the rest
        aspect = self.width / self.height
        if sw / sh > aspect:
            dh = sh
            dw = int(dh * aspect)
        else:
            dw = sw
            dh = int(dw / aspect)
        self._screen.fill((0, 0, 0))
        scaled = pygame.transform.scale(self._surface, (dw, dh))
        self._screen.blit(scaled, ((sw - dw) // 2, (sh - dh) // 2))
        pygame.display.flip()

    def close(self):
        if self._pygame is not None:
            self._pygame.quit()
            self._pygame = None
            log.debug("pygame window closed")


# ── ANSI terminal ─────────────────────────────────────────────────────


class TerminalFrontend(NullDevice):
    """Raw-mode terminal frontend.

    Terminals report key presses as a byte stream with no key-up events,
    so each pressed key is held for KEY_DEBOUNCE_S after its own last
    press and then released.
    """

    def __init__(self, stdin=None, stdout=None, clock=time.monotonic):
        self._in = stdin if stdin is not None else sys.stdin
        self._out = stdout if stdout is not None else sys.stdout
        self._clock = clock
        self.exit_requested = False
        self._keys = [False] * NUM_KEYS
        self._key_expire = [0.0] * NUM_KEYS
        self._old_tty = None
        self._term_size = (0, 0)

    def open(self):
        fd = self._in.fileno()
        if os.isatty(fd):
            import termios, tty
            self._old_tty = termios.tcgetattr(fd)
            tty.setraw(fd)
        # Alternate screen, hide cursor, clear
        self._write("\x1b[?1049h\x1b[?25l\x1b[2J")

    def close(self):
        self._write("\x1b[0m\x1b[?25h\x1b[?1049l")
        if self._old_tty is not None:
            import termios
            termios.tcsetattr(self._in.fileno(), termios.TCSADRAIN, self._old_tty)
            self._old_tty = None

    def _write(self, s: str):
        self._out.write(s)
        self._out.flush()

    def _read_available(self) -> bytes:
        import select

        fd = self._in.fileno()
        data = b""
        while select.select([fd], [], [], 0)[0]:
            chunk = os.read(fd, 64)
            if not chunk:
                break
            data += chunk
        return data

    def poll_keys(self) -> Optional[list[bool]]:
        prev = list(self._keys)
        now = self._clock()
        for k in range(NUM_KEYS):
            if self._keys[k] and now >= self._key_expire[k]:
                self._keys[k] = False

        data = self._read_available()
        for pos, b in enumerate(data):
            if b in (0x03, 0x1B):        # ^C, ESC
                self.exit_requested = True
                data = data[:pos]
                break

        for k, down in enumerate(keys_from_chars(chr(b) for b in data)):
            if down:
                self._keys[k] = True
                self._key_expire[k] = now + KEY_DEBOUNCE_S

        return list(self._keys) if self._keys != prev else None

    def present(self, frame: bytes, width: int, height: int):
        try:
            cols, lines = os.get_terminal_size(self._out.fileno())
        except OSError:
            cols, lines = width, height
        if (cols, lines) != self._term_size:
            self._term_size = (cols, lines)
            self._write("\x1b[2J")
        x_off = max(0, cols - width) // 2
        y_off = max(0, lines - height) // 2

        parts = []
        for row in range(height):
            parts.append(f"\x1b[{y_off + row + 1};{x_off + 1}H")
            line = frame[row * width:(row + 1) * width]
            lit = None
            for p in line:
                if p != lit:
                    parts.append("\x1b[97m" if p else "\x1b[30m")
                    lit = p
                parts.append("█")
        self._write("".join(parts))
