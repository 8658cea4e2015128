"""
CHIP-8 System Driver
====================
Wires together:
  - the Chip8 interpreter core (chip8.py)
  - an input collaborator   (key snapshots in)
  - a display collaborator  (dirty frames out)
  - an audio collaborator   (sound-active signal out)

and owns the clock.  A frame is one 60 Hz period: the latest key snapshot
is pushed into the keypad, clock_hz / 60 instructions are stepped, the
timers are ticked once, and the display / sound outputs are collected.

The core has no locking; everything here runs on the caller's thread.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from chip8 import Chip8, Chip8Error, IllegalInstructionError, PC_STEP, MEM_SIZE, STACK_DEPTH
from quirks import Quirks

log = logging.getLogger(__name__)

TIMER_HZ         = 60
DEFAULT_CLOCK_HZ = 720
MIN_CLOCK_HZ     = 1
MAX_CLOCK_HZ     = 2000

ILLEGAL_POLICIES = ("halt", "skip")


class StopReason(Enum):
    EXIT = 'EXIT'       # input collaborator asked to quit
    HALT = 'HALT'       # engine fault stopped the session
    FRAMES = 'FRAMES'   # max_frames reached


@dataclass
class FrameResult:
    frame: Optional[bytes]           # new pixels, or None if nothing was drawn
    sound: bool
    steps: int                       # instructions retired (stalls excluded)
    break_at: Optional[int] = None   # breakpoint address that ended the frame


class Chip8System:
    """Host-side session around one Chip8 machine."""

    def __init__(self, clock_hz: float = DEFAULT_CLOCK_HZ,
                 quirks: Optional[Quirks] = None,
                 on_illegal: str = "halt",
                 mem_size: int = MEM_SIZE,
                 stack_depth: int = STACK_DEPTH,
                 rng=None):
        if on_illegal not in ILLEGAL_POLICIES:
            raise ValueError(f"on_illegal must be one of {ILLEGAL_POLICIES}")
        self.cpu = Chip8(quirks=quirks, mem_size=mem_size,
                         stack_depth=stack_depth, rng=rng)
        self.on_illegal = on_illegal
        self.clock_hz: float = DEFAULT_CLOCK_HZ
        self.set_clock_speed(clock_hz)

        self.halted: bool = False
        self.fault: Optional[Chip8Error] = None
        self.frame_count: int = 0
        self.skipped: int = 0
        self._step_credit: float = 0.0
        self._pending_keys: Optional[list[bool]] = None
        self._sound_on: bool = False

    # -----------------------------------------------------------------
    #  Configuration
    # -----------------------------------------------------------------

    @property
    def quirks(self) -> Quirks:
        return self.cpu.quirks

    def set_clock_speed(self, hz: float):
        """Set the instruction rate; values outside 1..2000 Hz are rejected."""
        if not MIN_CLOCK_HZ <= hz <= MAX_CLOCK_HZ:
            raise ValueError(f"Clock rate {hz} Hz outside "
                             f"{MIN_CLOCK_HZ}..{MAX_CLOCK_HZ} Hz")
        self.clock_hz = hz
        self._step_credit = 0.0

    @property
    def steps_per_frame(self) -> float:
        return self.clock_hz / TIMER_HZ

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_program(self, image: bytes | bytearray):
        """Start a fresh session with *image* loaded at 0x200."""
        self.cpu.load_program(image)
        self.halted = False
        self.fault = None
        self.frame_count = 0
        self.skipped = 0
        self._step_credit = 0.0
        self._pending_keys = None
        self._sound_on = False
        log.debug("loaded %d-byte program", len(image))

    def load_program_file(self, path: str):
        """Load a ROM file from disk."""
        with open(path, "rb") as f:
            data = f.read()
        self.load_program(data)

    # -----------------------------------------------------------------
    #  Input
    # -----------------------------------------------------------------

    def push_keys(self, states: Sequence[bool]):
        """Queue a 16-key snapshot; applied before the next batch of steps."""
        self._pending_keys = [bool(s) for s in states]

    def _apply_keys(self):
        if self._pending_keys is not None:
            self.cpu.keypad.set_state(self._pending_keys)
            self._pending_keys = None

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def _halt(self, err: Chip8Error):
        self.halted = True
        self.fault = err
        log.debug("session halted: %s", err)

    def step(self) -> int:
        """Execute one instruction under the session's fault policy.

        Returns 1 if an instruction retired, 0 if stalled or halted.
        """
        if self.halted:
            return 0
        try:
            return self.cpu.step()
        except IllegalInstructionError as e:
            if self.on_illegal == "skip":
                log.warning("skipping %s", e)
                self.cpu.pc += PC_STEP
                self.skipped += 1
                return 1
            self._halt(e)
        except Chip8Error as e:
            self._halt(e)
        return 0

    def run_frame(self, breakpoints: Optional[set[int]] = None) -> FrameResult:
        """Run one 60 Hz frame: keys in, steps, one timer tick, outputs.

        Reaching an address in *breakpoints* ends the frame early, before
        that instruction runs; the timers still tick once.
        """
        self._apply_keys()
        self._step_credit += self.steps_per_frame
        n = int(self._step_credit)
        self._step_credit -= n

        steps = 0
        break_at = None
        for _ in range(n):
            if self.halted:
                break
            if breakpoints and self.cpu.pc in breakpoints:
                break_at = self.cpu.pc
                break
            steps += self.step()

        self.cpu.tick_60hz()
        self.frame_count += 1

        frame = self.cpu.read_display() if self.cpu.display_dirty else None
        return FrameResult(frame=frame, sound=self.cpu.sound_active, steps=steps,
                           break_at=break_at)

    def run_frames(self, count: int) -> FrameResult:
        """Run *count* frames with no collaborators; returns the last result."""
        result = FrameResult(frame=None, sound=self.cpu.sound_active, steps=0)
        for _ in range(count):
            if self.halted:
                break
            result = self.run_frame()
        return result

    def run(self, input_dev, display_dev, audio_dev,
            max_frames: Optional[int] = None, realtime: bool = True) -> StopReason:
        """Drive the session until the input device exits, a fault halts
        the machine, or *max_frames* frames have run."""
        period = 1.0 / TIMER_HZ
        deadline = time.perf_counter()
        frames = 0

        while True:
            if max_frames is not None and frames >= max_frames:
                return StopReason.FRAMES

            keys = input_dev.poll_keys()
            if input_dev.exit_requested:
                return StopReason.EXIT
            if keys is not None:
                self.push_keys(keys)

            result = self.run_frame()
            frames += 1

            if result.frame is not None:
                display_dev.present(result.frame, self.cpu.fb.width,
                                    self.cpu.fb.height)
            if result.sound != self._sound_on:
                self._sound_on = result.sound
                audio_dev.set_sound(result.sound)

            if self.halted:
                if self._sound_on:
                    self._sound_on = False
                    audio_dev.set_sound(False)
                return StopReason.HALT

            if realtime:
                deadline += period
                delay = deadline - time.perf_counter()
                if delay > 0:
                    time.sleep(delay)
                elif delay < -0.25:
                    # Fell far behind (debugger, slow terminal): resync
                    deadline = time.perf_counter()

    # -----------------------------------------------------------------
    #  Introspection
    # -----------------------------------------------------------------

    def dump_state(self) -> str:
        lines = ["CPU:", self.cpu.dump_regs()]
        lines.append(f"Clock: {self.clock_hz:g} Hz  "
                     f"({self.steps_per_frame:.2f} steps/frame)")
        lines.append(f"Quirks: {self.quirks.describe()}")
        lines.append(f"Frames: {self.frame_count}  "
                     f"Instructions: {self.cpu.cycle_count}")
        if self.halted:
            lines.append(f"HALTED: {self.fault}")
        return "\n".join(lines)
