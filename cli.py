#!/usr/bin/env python3
"""
CHIP-8 Runner / Monitor CLI
===========================
Command-line front end for the CHIP-8 virtual machine.

Provides:
  - ROM loading with a selectable quirk dialect
  - pygame window, ANSI terminal or headless execution
  - Optional sound (pygame tone, or terminal bell with --tui)
  - Interactive debug monitor: step / frame / breakpoints / disassembly

Usage:
  python cli.py ROM [-f HZ] [-g | -t | --headless] [-a]
                    [--quirks PRESET] [--quirk NAMES] [--no-quirk NAMES]
                    [--scale N] [--frames N] [--seed N] [--skip-illegal]
                    [--monitor] [-v]
"""

from __future__ import annotations
import argparse
import cmd
import logging
import os
import random
import shlex
import sys
from typing import Optional

from chip8 import Chip8Error, PC_STEP
from quirks import Quirks, PRESETS
from system import (
    Chip8System, StopReason, DEFAULT_CLOCK_HZ, MIN_CLOCK_HZ, MAX_CLOCK_HZ,
)

log = logging.getLogger(__name__)

HEADLESS_FRAMES = 600       # 10 s of machine time when --frames is absent
MONITOR_RUN_FRAMES = 3600

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

ALU_NAMES = {
    0x0: "LD", 0x1: "OR", 0x2: "AND", 0x3: "XOR", 0x4: "ADD",
    0x5: "SUB", 0x6: "SHR", 0x7: "SUBN", 0xE: "SHL",
}

MISC_FORMATS = {
    0x07: "LD V{x:X}, DT",
    0x0A: "LD V{x:X}, K",
    0x15: "LD DT, V{x:X}",
    0x18: "LD ST, V{x:X}",
    0x1E: "ADD I, V{x:X}",
    0x29: "LD F, V{x:X}",
    0x33: "LD B, V{x:X}",
    0x55: "LD [I], V{x:X}",
    0x65: "LD V{x:X}, [I]",
}


def disasm_opcode(op: int, quirks: Optional[Quirks] = None) -> str:
    """Mnemonic for one 16-bit opcode; '??? 0x####' if it does not decode.

    Bnnn reads as JP Vx, nnn when *quirks* selects the jump quirk.
    """
    f = (op >> 12) & 0xF
    x = (op >> 8) & 0xF
    y = (op >> 4) & 0xF
    n = op & 0xF
    nn = op & 0xFF
    nnn = op & 0xFFF

    if op == 0x00E0:
        return "CLS"
    if op == 0x00EE:
        return "RET"
    if f == 0x1:
        return f"JP {nnn:#05x}"
    if f == 0x2:
        return f"CALL {nnn:#05x}"
    if f == 0x3:
        return f"SE V{x:X}, {nn:#04x}"
    if f == 0x4:
        return f"SNE V{x:X}, {nn:#04x}"
    if f == 0x5 and n == 0:
        return f"SE V{x:X}, V{y:X}"
    if f == 0x6:
        return f"LD V{x:X}, {nn:#04x}"
    if f == 0x7:
        return f"ADD V{x:X}, {nn:#04x}"
    if f == 0x8 and n in ALU_NAMES:
        return f"{ALU_NAMES[n]} V{x:X}, V{y:X}"
    if f == 0x9 and n == 0:
        return f"SNE V{x:X}, V{y:X}"
    if f == 0xA:
        return f"LD I, {nnn:#05x}"
    if f == 0xB:
        reg = x if quirks is not None and quirks.jump else 0
        return f"JP V{reg:X}, {nnn:#05x}"
    if f == 0xC:
        return f"RND V{x:X}, {nn:#04x}"
    if f == 0xD:
        return f"DRW V{x:X}, V{y:X}, {n}"
    if f == 0xE and nn == 0x9E:
        return f"SKP V{x:X}"
    if f == 0xE and nn == 0xA1:
        return f"SKNP V{x:X}"
    if f == 0xF and nn in MISC_FORMATS:
        return MISC_FORMATS[nn].format(x=x)
    return f"??? {op:#06x}"


def disasm_one(mem: bytearray | bytes, addr: int,
               quirks: Optional[Quirks] = None) -> tuple[str, int]:
    """Disassemble one instruction at `addr`. Returns (text, byte_count)."""
    def rb(a):
        return mem[a] if 0 <= a < len(mem) else 0

    op = (rb(addr) << 8) | rb(addr + 1)
    return disasm_opcode(op, quirks), PC_STEP


# ---------------------------------------------------------------------------
#  Interactive monitor
# ---------------------------------------------------------------------------

class Chip8Monitor(cmd.Cmd):
    """Interactive debug monitor for a CHIP-8 session."""

    intro = (
        "\n"
        "CHIP-8 Monitor.  Type 'help' for commands, 'quit' to exit.\n"
    )
    prompt = "C8> "

    def __init__(self, system: Chip8System, image: bytes = b""):
        super().__init__()
        self.sys = system
        self.image = bytes(image)
        self.breakpoints: set[int] = set()

    # -- Parsing helpers --

    def _parse_addr(self, s: str) -> int:
        """Parse an address (hex with optional 0x prefix, 'pc' or 'i')."""
        s = s.strip().lower()
        if s == "pc":
            return self.sys.cpu.pc
        if s == "i":
            return self.sys.cpu.i
        return int(s, 0)

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except ValueError as e:
            print(f"Error: {e}")
            return False

    def _report_halt(self):
        print(f"Machine halted: {self.sys.fault}")

    def _stall_reason(self) -> str:
        cpu = self.sys.cpu
        if cpu.waiting_for_key:
            return f"waiting for key -> V{cpu.wait_reg:X}"
        if cpu.vblank_wait:
            return "waiting for display tick"
        return "stalled"

    # ================================================================
    #  Commands
    # ================================================================

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            if self.sys.halted:
                self._report_halt()
                break
            addr_before = self.sys.cpu.pc
            text, _ = disasm_one(self.sys.cpu.mem.data, addr_before,
                                  self.sys.quirks)
            if self.sys.step():
                print(f"  {addr_before:#06x}: {text}")
            elif self.sys.halted:
                self._report_halt()
                break
            else:
                print(f"  {addr_before:#06x}: ({self._stall_reason()})")
                break
    do_s = do_step

    def do_frame(self, arg):
        """Run N whole frames (steps + one timer tick each): frame [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        steps = drawn = 0
        for _ in range(count):
            if self.sys.halted:
                break
            result = self.sys.run_frame()
            steps += result.steps
            drawn += result.frame is not None
        print(f"  {count} frame(s), {steps} instruction(s), {drawn} redraw(s), "
              f"PC={self.sys.cpu.pc:#06x}")
        if self.sys.halted:
            self._report_halt()

    def do_tick(self, arg):
        """Advance the 60 Hz timers without executing: tick [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            self.sys.cpu.tick_60hz()
        t = self.sys.cpu.timers
        print(f"  DT={t.delay}  ST={t.sound}")

    def do_run(self, arg):
        """Run frames until halt or breakpoint: run [max_frames]"""
        max_frames = self._parse_int(arg) if arg.strip() else MONITOR_RUN_FRAMES
        cpu = self.sys.cpu
        # Step off a breakpoint we are already sitting on
        if self.breakpoints and cpu.pc in self.breakpoints and not self.sys.halted:
            self.sys.step()
        for frame in range(max_frames):
            if self.sys.halted:
                self._report_halt()
                return
            result = self.sys.run_frame(breakpoints=self.breakpoints)
            if result.break_at is not None:
                print(f"Breakpoint hit at {result.break_at:#06x} "
                      f"(frame {frame + 1})")
                return
        print(f"Stopped after {max_frames} frames.  PC={cpu.pc:#06x}")

    def do_reset(self, arg):
        """Reload the program and restart the machine."""
        self.sys.load_program(self.image)
        print(f"Machine reset.  PC={self.sys.cpu.pc:#06x}")

    # -- Breakpoints --

    def do_bp(self, arg):
        """Set breakpoint: bp <address>"""
        if not arg.strip():
            if self.breakpoints:
                print("Breakpoints:")
                for a in sorted(self.breakpoints):
                    print(f"  {a:#06x}")
            else:
                print("No breakpoints set.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.add(addr)
        print(f"Breakpoint set at {addr:#06x}")

    def do_bpd(self, arg):
        """Delete breakpoint: bpd <address|all>"""
        if arg.strip().lower() == "all":
            self.breakpoints.clear()
            print("All breakpoints cleared.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.discard(addr)
        print(f"Breakpoint at {addr:#06x} removed.")

    # -- Input --

    def do_key(self, arg):
        """Press or release a keypad key: key <0-F> on|off"""
        parts = shlex.split(arg)
        if len(parts) != 2 or parts[1].lower() not in ("on", "off", "1", "0"):
            print("Usage: key <0-F> on|off")
            return
        index = int(parts[0], 16)
        pressed = parts[1].lower() in ("on", "1")
        self.sys.cpu.set_key(index, pressed)
        print(f"  key {index:X} {'down' if pressed else 'up'}")

    # -- Inspection --

    def do_regs(self, arg):
        """Show registers, timers and stack."""
        print(self.sys.cpu.dump_regs())
        print(f"  Cycles: {self.sys.cpu.cycle_count}")

    def do_dump(self, arg):
        """Hex dump memory: dump <address> [count]
        Count defaults to 64 bytes."""
        parts = shlex.split(arg)
        if not parts:
            print("Usage: dump <address> [count]")
            return
        addr = self._parse_addr(parts[0])
        count = self._parse_int(parts[1]) if len(parts) > 1 else 64
        data = self.sys.cpu.mem.data
        end = min(addr + count, len(data))

        for row_start in range(addr, end, 16):
            row = data[row_start:min(row_start + 16, end)]
            hex_str = " ".join(f"{b:02x}" for b in row)
            print(f"  {row_start:#06x}: {hex_str}")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        addr = self._parse_addr(parts[0]) if parts else self.sys.cpu.pc
        count = self._parse_int(parts[1]) if len(parts) > 1 else 16
        data = self.sys.cpu.mem.data

        for _ in range(count):
            if addr + 1 >= len(data):
                break
            text, size = disasm_one(data, addr, self.sys.quirks)
            raw = f"{data[addr]:02x} {data[addr + 1]:02x}"
            marker = ">>>" if addr == self.sys.cpu.pc else "   "
            print(f"  {marker} {addr:#06x}: {raw}  {text}")
            addr += size

    def do_screen(self, arg):
        """Print the display as text."""
        print(self.sys.cpu.fb.render_text())

    def do_quirks(self, arg):
        """Show the active quirk toggles."""
        print(f"  {self.sys.quirks.describe()}")

    def do_status(self, arg):
        """Show full session status."""
        print(self.sys.dump_state())

    def do_quit(self, arg):
        """Exit the monitor."""
        print("Goodbye.")
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        print()
        return self.do_quit(arg)

    def default(self, line):
        """Handle unknown commands gracefully."""
        print(f"Unknown command: {line.split()[0]!r}. Type 'help' for available commands.")

    def emptyline(self):
        """Don't repeat the last command on empty input."""
        pass


# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

def _clock_rate(text: str) -> int:
    try:
        hz = int(text, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid frequency: {text!r}")
    if not MIN_CLOCK_HZ <= hz <= MAX_CLOCK_HZ:
        raise argparse.ArgumentTypeError(
            f"frequency must be {MIN_CLOCK_HZ}..{MAX_CLOCK_HZ} Hz, got {hz}")
    return hz


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 virtual machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Keypad:\n"
               "  1 2 3 4        1 2 3 C\n"
               "  Q W E R   =>   4 5 6 D\n"
               "  A S D F        7 8 9 E\n"
               "  Z X C V        A 0 B F\n"
               "\n"
               "Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --tui -a -f 1000\n"
               "  python cli.py test.ch8 --headless --frames 120 --quirks chip8\n"
               "  python cli.py game.ch8 --monitor\n"
    )
    parser.add_argument("rom", help="Program image to load at 0x200")
    parser.add_argument("-f", "--freq", type=_clock_rate, default=DEFAULT_CLOCK_HZ,
                        metavar="HZ",
                        help=f"Instruction rate, {MIN_CLOCK_HZ}..{MAX_CLOCK_HZ} "
                             f"(default: {DEFAULT_CLOCK_HZ})")

    ui = parser.add_mutually_exclusive_group()
    ui.add_argument("-g", "--gui", action="store_true",
                    help="Open a pygame window (default)")
    ui.add_argument("-t", "--tui", action="store_true",
                    help="Render in the terminal")
    ui.add_argument("--headless", action="store_true",
                    help="Run without input/output and print the final screen")

    parser.add_argument("-a", "--audio", action="store_true",
                        help="Enable sound")
    parser.add_argument("--quirks", default="modern", metavar="PRESET",
                        help=f"Quirk preset: {', '.join(PRESETS)} (default: modern)")
    parser.add_argument("--quirk", action="append", default=[], metavar="NAMES",
                        help=f"Enable quirks (comma list of {', '.join(Quirks.names())})")
    parser.add_argument("--no-quirk", action="append", default=[], metavar="NAMES",
                        help="Disable quirks (comma list)")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for the window (default: 10)")
    parser.add_argument("--frames", type=int, default=None, metavar="N",
                        help="Stop after N frames "
                             f"(headless default: {HEADLESS_FRAMES})")
    parser.add_argument("--seed", type=int, default=None, metavar="N",
                        help="Seed the random number generator")
    parser.add_argument("--skip-illegal", action="store_true",
                        help="Skip undecodable instructions instead of halting")
    parser.add_argument("--monitor", action="store_true",
                        help="Start in the interactive debug monitor")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More logging (-v info, -vv debug)")
    return parser


def resolve_quirks(args, parser: argparse.ArgumentParser) -> Quirks:
    try:
        q = Quirks.preset(args.quirks)
        for names in args.quirk:
            q = Quirks.from_names(names, base=q, enabled=True)
        for names in args.no_quirk:
            q = Quirks.from_names(names, base=q, enabled=False)
    except ValueError as e:
        parser.error(str(e))
    return q


def _open_gui(title: str, scale: int, with_audio: bool):
    try:
        from display import PygameFrontend
        ui = PygameFrontend(title, scale=scale)
        ui.open()
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        return None, None
    print(f"[display] Window opened (scale={scale}x)")

    from audio import NullAudio
    audio = NullAudio()
    if with_audio:
        from audio import PygameBeeper
        beeper = PygameBeeper()
        try:
            beeper.open()
            audio = beeper
        except Exception as e:
            print(f"[audio] Sound disabled: {e}", file=sys.stderr)
    return ui, audio


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    quirks = resolve_quirks(args, parser)
    if args.scale < 1:
        parser.error("--scale must be at least 1")
    if args.frames is not None and args.frames < 0:
        parser.error("--frames must not be negative")

    rng = random.Random(args.seed) if args.seed is not None else None
    system = Chip8System(clock_hz=args.freq, quirks=quirks,
                         on_illegal="skip" if args.skip_illegal else "halt",
                         rng=rng)
    try:
        with open(args.rom, "rb") as f:
            image = f.read()
        system.load_program(image)
    except (OSError, Chip8Error) as e:
        print(f"Cannot load {args.rom}: {e}", file=sys.stderr)
        return 1
    log.info("%s: %d bytes, %g Hz, quirks: %s",
             args.rom, len(image), args.freq, quirks.describe())

    # ---- Debug monitor ------------------------------------------------
    if args.monitor:
        mon = Chip8Monitor(system, image)
        try:
            mon.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted. Goodbye.")
        return 0

    from display import HeadlessDisplay, NullDevice, TerminalFrontend
    from audio import NullAudio, TerminalBell

    # ---- Headless: run N frames as fast as possible, print the screen --
    if args.headless:
        screen = HeadlessDisplay(max_frames=1)
        frames = args.frames if args.frames is not None else HEADLESS_FRAMES
        reason = system.run(NullDevice(), screen, NullAudio(),
                            max_frames=frames, realtime=False)
        print(system.cpu.fb.render_text())
        if reason is StopReason.HALT:
            print(f"Halted: {system.fault}", file=sys.stderr)
            return 1
        return 0

    # ---- Terminal -----------------------------------------------------
    if args.tui:
        ui = TerminalFrontend()
        audio = TerminalBell() if args.audio else NullAudio()
        ui.open()
        try:
            reason = system.run(ui, ui, audio, max_frames=args.frames)
        except KeyboardInterrupt:
            reason = StopReason.EXIT
        finally:
            ui.close()
            audio.close()
    else:
        title = os.path.splitext(os.path.basename(args.rom))[0]
        ui, audio = _open_gui(title, args.scale, args.audio)
        if ui is None:
            return 1
        try:
            reason = system.run(ui, ui, audio, max_frames=args.frames)
        except KeyboardInterrupt:
            reason = StopReason.EXIT
        finally:
            audio.close()
            ui.close()

    if reason is StopReason.HALT:
        print(f"Halted: {system.fault}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
