"""
CHIP-8 Peripheral / Device Layer
================================
The machine-owned peripherals the interpreter core reads and mutates:

  TimerUnit    delay + sound countdowns, decremented at 60 Hz
  FrameBuffer  64x32 monochrome surface, XOR sprites, dirty flag
  Keypad       16-key down-state vector with press-edge latching

None of these know about the host.  The host reaches them only through
the Chip8 accessors (set_key, tick_60hz, read_display, sound_active).
"""

from __future__ import annotations
from typing import Iterable, Optional

DISPLAY_WIDTH  = 64
DISPLAY_HEIGHT = 32
NUM_KEYS       = 16


# ---------------------------------------------------------------------------
#  Device base class
# ---------------------------------------------------------------------------

class Device:
    """Abstract machine peripheral."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        """Return the device to its power-on state."""
        pass

    def tick(self):
        """Advance the device by one 60 Hz period. Override for timers."""
        pass


# ---------------------------------------------------------------------------
#  Timer Unit
# ---------------------------------------------------------------------------
# Two independent 8-bit down-counters.  Both decrement by exactly one per
# 60 Hz tick while nonzero and stop at zero.  Instruction execution never
# touches them except through Fx07 / Fx15 / Fx18.

class TimerUnit(Device):
    """Delay and sound countdown timers."""

    def __init__(self):
        super().__init__("Timers")
        self.delay: int = 0
        self.sound: int = 0

    def reset(self):
        self.delay = 0
        self.sound = 0

    def set_delay(self, value: int):
        self.delay = value & 0xFF

    def set_sound(self, value: int):
        self.sound = value & 0xFF

    def tick(self):
        if self.delay > 0:
            self.delay -= 1
        if self.sound > 0:
            self.sound -= 1

    @property
    def sound_active(self) -> bool:
        return self.sound > 0


# ---------------------------------------------------------------------------
#  Frame Buffer
# ---------------------------------------------------------------------------
# One byte per pixel (0 or 1), row-major:
#
#    (0, 0)   ....   (w-1, 0)
#     ...             ...
#    (0, h-1) ....   (w-1, h-1)
#
# read() hands the host a copy and clears the dirty flag; snapshot() copies
# without touching it.

class FrameBuffer(Device):
    """Monochrome XOR-composited display surface."""

    def __init__(self, width: int = DISPLAY_WIDTH, height: int = DISPLAY_HEIGHT):
        super().__init__("FrameBuffer")
        if width < 1 or height < 1:
            raise ValueError(f"Bad display size {width}x{height}")
        self.width = width
        self.height = height
        self.pixels = bytearray(width * height)
        self.dirty: bool = False

    def reset(self):
        self.pixels = bytearray(self.width * self.height)
        self.dirty = False

    def clear(self):
        """Zero every pixel (00E0)."""
        self.pixels[:] = bytes(len(self.pixels))
        self.dirty = True

    def get_pixel(self, x: int, y: int) -> int:
        return self.pixels[y * self.width + x]

    def draw_sprite(self, x: int, y: int, sprite: bytes | bytearray,
                    clip: bool = False) -> bool:
        """XOR an 8-pixel-wide sprite onto the surface at (x, y).

        The origin always wraps onto the grid.  Pixels that then run past
        the right or bottom edge wrap around when *clip* is False and are
        dropped when it is True.  Returns True if any lit pixel was turned
        off.
        """
        w, h = self.width, self.height
        x %= w
        y %= h
        px = self.pixels
        collided = False
        for row, bits in enumerate(sprite):
            py = y + row
            if py >= h:
                if clip:
                    break
                py %= h
            base = py * w
            for col in range(8):
                if not (bits >> (7 - col)) & 1:
                    continue
                cx = x + col
                if cx >= w:
                    if clip:
                        break
                    cx %= w
                idx = base + cx
                if px[idx]:
                    collided = True
                px[idx] ^= 1
        self.dirty = True
        return collided

    def snapshot(self) -> bytes:
        return bytes(self.pixels)

    def read(self) -> bytes:
        """Copy the surface out for the host and clear the dirty flag."""
        self.dirty = False
        return bytes(self.pixels)

    def rows(self) -> list[list[int]]:
        w = self.width
        return [list(self.pixels[r * w:(r + 1) * w]) for r in range(self.height)]

    def render_text(self, on: str = "#", off: str = ".") -> str:
        return frame_to_text(self.pixels, self.width, on, off)


def frame_to_text(frame: bytes | bytearray, width: int,
                  on: str = "#", off: str = ".") -> str:
    """Render a 0/1 pixel frame as one text line per display row."""
    lines = []
    for r in range(0, len(frame), width):
        lines.append("".join(on if p else off for p in frame[r:r + width]))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------
#    +------------+
#    | 1  2  3  C |
#    | 4  5  6  D |
#    | 7  8  9  E |
#    | A  0  B  F |
#    +------------+
#
# Besides the current down-state, every up->down transition is latched so
# the key-wait instruction can see presses that happened between steps.

class Keypad(Device):
    """16-key hexadecimal keypad."""

    def __init__(self):
        super().__init__("Keypad")
        self.keys: list[bool] = [False] * NUM_KEYS
        self._presses: set[int] = set()

    def reset(self):
        self.keys = [False] * NUM_KEYS
        self._presses.clear()

    def set_key(self, index: int, pressed: bool):
        if not 0 <= index < NUM_KEYS:
            raise ValueError(f"Key index {index} out of range 0..15")
        pressed = bool(pressed)
        if pressed and not self.keys[index]:
            self._presses.add(index)
        self.keys[index] = pressed

    def set_state(self, states: Iterable[bool]):
        """Apply a full 16-key snapshot as individual transitions."""
        states = list(states)
        if len(states) != NUM_KEYS:
            raise ValueError(f"Keypad snapshot needs {NUM_KEYS} entries, "
                             f"got {len(states)}")
        for i, s in enumerate(states):
            self.set_key(i, s)

    def is_pressed(self, index: int) -> bool:
        return self.keys[index & 0xF]

    def arm(self):
        """Forget earlier presses; only presses from now on count."""
        self._presses.clear()

    def take_press(self) -> Optional[int]:
        """Return the lowest key pressed since arm(), consuming the latch."""
        if not self._presses:
            return None
        key = min(self._presses)
        self._presses.clear()
        return key

    @property
    def mask(self) -> int:
        m = 0
        for i, k in enumerate(self.keys):
            if k:
                m |= 1 << i
        return m
