"""
CHIP-8 Bytecode Interpreter
===========================
A step-at-a-time interpreter for the CHIP-8 instruction set.

Every instruction is a big-endian 16-bit word fetched from memory at PC.
The top nibble selects a family; the remaining nibbles are decoded as

    o x y n      o   = family
                 x,y = register indices
                 n   = 4-bit immediate
                 nn  = low byte
                 nnn = low 12 bits (address)

One call to step() executes at most one instruction.  Timers run on their
own 60 Hz cadence through tick_60hz(); the two are never merged.

Memory layout (canonical 4 KiB):

    0x000 .. 0x04F   built-in hexadecimal glyphs (16 x 5 bytes)
    0x050 .. 0x1FF   reserved for the interpreter
    0x200 .. 0xFFF   program image
"""

from __future__ import annotations
import random
from typing import Optional

from devices import FrameBuffer, Keypad, TimerUnit, DISPLAY_WIDTH, DISPLAY_HEIGHT
from quirks import Quirks

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE      = 4096
PROGRAM_START = 0x200
FONT_BASE     = 0x000
FONT_HEIGHT   = 5      # bytes per glyph
NUM_REGS      = 16
STACK_DEPTH   = 16
PC_STEP       = 2      # bytes per instruction
MASK8         = 0xFF
MASK16        = 0xFFFF
VF            = 0xF

FONT_SPRITES = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def u8(v: int) -> int:
    """Mask to unsigned 8 bits."""
    return v & MASK8

def u16(v: int) -> int:
    """Mask to unsigned 16 bits."""
    return v & MASK16

def font_addr(digit: int) -> int:
    """Address of the built-in glyph for hex digit *digit* (low nibble)."""
    return FONT_BASE + (digit & 0xF) * FONT_HEIGHT

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter-generated faults."""
    pass

class ImageTooLargeError(Chip8Error):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Program image is {size} bytes; "
                         f"at most {limit} fit above {PROGRAM_START:#05x}")

class OutOfBoundsError(Chip8Error):
    def __init__(self, addr: int, capacity: int, access: str = "read"):
        self.addr = addr
        self.capacity = capacity
        self.access = access
        super().__init__(f"{access.capitalize()} out of bounds @ {addr:#06x} "
                         f"(memory is {capacity} bytes)")

class StackOverflowError(Chip8Error):
    def __init__(self, depth: int):
        self.depth = depth
        super().__init__(f"Call stack overflow (depth {depth})")

class StackUnderflowError(Chip8Error):
    def __init__(self):
        super().__init__("Return with empty call stack")

class IllegalInstructionError(Chip8Error):
    def __init__(self, opcode: int, addr: Optional[int] = None):
        self.opcode = opcode
        self.addr = addr
        where = f" @ {addr:#05x}" if addr is not None else ""
        super().__init__(f"Illegal instruction {opcode:#06x}{where}")


# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class Memory:
    """Flat byte store with the glyph table installed at FONT_BASE."""

    def __init__(self, size: int = MEM_SIZE):
        if size <= PROGRAM_START:
            raise ValueError(f"Memory must be larger than {PROGRAM_START:#x} bytes")
        self.size = size
        self.data = bytearray(size)
        self._load_fonts()

    def _load_fonts(self):
        self.data[FONT_BASE:FONT_BASE + len(FONT_SPRITES)] = FONT_SPRITES

    def reset(self):
        self.data = bytearray(self.size)
        self._load_fonts()

    @property
    def program_limit(self) -> int:
        """Largest image that fits above PROGRAM_START."""
        return self.size - PROGRAM_START

    def check(self, addr: int, count: int = 1, access: str = "read"):
        """Raise OutOfBoundsError unless [addr, addr+count) is addressable."""
        if addr < 0 or addr + count > self.size:
            raise OutOfBoundsError(addr, self.size, access)

    def read_byte(self, addr: int) -> int:
        self.check(addr, 1, "read")
        return self.data[addr]

    def write_byte(self, addr: int, value: int):
        self.check(addr, 1, "write")
        self.data[addr] = value & MASK8

    def read_block(self, addr: int, count: int) -> bytes:
        self.check(addr, count, "read")
        return bytes(self.data[addr:addr + count])

    def write_block(self, addr: int, values: bytes | bytearray | list[int]):
        self.check(addr, len(values), "write")
        for i, b in enumerate(values):
            self.data[addr + i] = b & MASK8

    def fetch16(self, addr: int) -> int:
        """Big-endian instruction word at *addr*."""
        self.check(addr, 2, "fetch")
        return (self.data[addr] << 8) | self.data[addr + 1]

    def load_program(self, image: bytes | bytearray):
        """Copy a program image to PROGRAM_START."""
        if len(image) > self.program_limit:
            raise ImageTooLargeError(len(image), self.program_limit)
        self.data[PROGRAM_START:PROGRAM_START + len(image)] = image


# ---------------------------------------------------------------------------
#  Register File
# ---------------------------------------------------------------------------

class RegisterFile:
    """V0..VF, I, PC and the bounded return-address stack."""

    def __init__(self, stack_depth: int = STACK_DEPTH):
        if stack_depth < 1:
            raise ValueError("Stack depth must be at least 1")
        self.stack_depth = stack_depth
        self.v: list[int] = [0] * NUM_REGS
        self.stack: list[int] = []
        self._i: int = 0
        self._pc: int = PROGRAM_START

    def reset(self):
        self.v = [0] * NUM_REGS
        self.stack = []
        self._i = 0
        self._pc = PROGRAM_START

    # -- Property shortcuts --

    @property
    def pc(self) -> int:
        return self._pc

    @pc.setter
    def pc(self, value: int):
        self._pc = u16(value)

    @property
    def i(self) -> int:
        return self._i

    @i.setter
    def i(self, value: int):
        self._i = u16(value)

    def get(self, x: int) -> int:
        return self.v[x]

    def set(self, x: int, value: int):
        self.v[x] = u8(value)

    # -- Stack --

    def push(self, addr: int):
        if len(self.stack) >= self.stack_depth:
            raise StackOverflowError(self.stack_depth)
        self.stack.append(u16(addr))

    def pop(self) -> int:
        if not self.stack:
            raise StackUnderflowError()
        return self.stack.pop()


# ---------------------------------------------------------------------------
#  Interpreter
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 machine state plus the fetch/decode/execute loop."""

    def __init__(self, quirks: Optional[Quirks] = None,
                 mem_size: int = MEM_SIZE, stack_depth: int = STACK_DEPTH,
                 width: int = DISPLAY_WIDTH, height: int = DISPLAY_HEIGHT,
                 rng: Optional[random.Random] = None):
        self.quirks: Quirks = quirks if quirks is not None else Quirks()
        self.mem = Memory(mem_size)
        self.regs = RegisterFile(stack_depth)
        self.timers = TimerUnit()
        self.fb = FrameBuffer(width, height)
        self.keypad = Keypad()
        self.rng = rng if rng is not None else random.Random()

        # Key-wait sub-state: register index awaiting a key, or None
        self.wait_reg: Optional[int] = None
        # Display-wait sub-state: set by a draw, cleared by the next tick
        self.vblank_wait: bool = False

        self.cycle_count: int = 0
        self.last_opcode: Optional[int] = None

    # -- Lifecycle --

    def reset(self):
        """Power-on state: glyphs only, PC at PROGRAM_START, all else zero."""
        self.mem.reset()
        self.regs.reset()
        self.timers.reset()
        self.fb.reset()
        self.keypad.reset()
        self.wait_reg = None
        self.vblank_wait = False
        self.cycle_count = 0
        self.last_opcode = None

    def load_program(self, image: bytes | bytearray):
        """Reset the machine and load *image* at PROGRAM_START.

        An oversized image fails before any state is touched.
        """
        if len(image) > self.mem.program_limit:
            raise ImageTooLargeError(len(image), self.mem.program_limit)
        self.reset()
        self.mem.load_program(image)

    # -- Property shortcuts --

    @property
    def pc(self) -> int:
        return self.regs.pc

    @pc.setter
    def pc(self, value: int):
        self.regs.pc = value

    @property
    def i(self) -> int:
        return self.regs.i

    @i.setter
    def i(self, value: int):
        self.regs.i = value

    @property
    def v(self) -> list[int]:
        return self.regs.v

    @property
    def waiting_for_key(self) -> bool:
        return self.wait_reg is not None

    # -- Host interface --

    def set_key(self, index: int, pressed: bool):
        self.keypad.set_key(index, pressed)

    def is_pressed(self, index: int) -> bool:
        return self.keypad.is_pressed(index)

    def tick_60hz(self):
        """One 60 Hz period: decrement timers, release a display-wait."""
        self.timers.tick()
        self.vblank_wait = False

    @property
    def sound_active(self) -> bool:
        return self.timers.sound_active

    @property
    def display_dirty(self) -> bool:
        return self.fb.dirty

    def read_display(self) -> bytes:
        return self.fb.read()

    # -- Flag-setting writes --

    def _write_with_flag(self, x: int, result: int, flag: int):
        """Store *result* in Vx and *flag* in VF.

        VF is written last so it holds the flag even when x == 0xF, unless
        the flag_first quirk asks for the other order.
        """
        v = self.regs.v
        if self.quirks.flag_first:
            v[VF] = flag
            v[x] = u8(result)
        else:
            v[x] = u8(result)
            v[VF] = flag

    # =====================================================================
    #  STEP: the core decode/execute loop
    # =====================================================================

    def step(self) -> int:
        """Execute one instruction.

        Returns 1 when an instruction retired (or a key-wait completed) and
        0 when the machine is stalled in a key-wait or display-wait.
        """
        if self.wait_reg is not None:
            key = self.keypad.take_press()
            if key is None:
                return 0
            self.regs.v[self.wait_reg] = key
            self.wait_reg = None
            self.regs.pc += PC_STEP
            self.cycle_count += 1
            return 1

        if self.vblank_wait:
            return 0

        pc = self.regs.pc
        opcode = self.mem.fetch16(pc)
        self.last_opcode = opcode

        f = (opcode >> 12) & 0xF

        # Dispatch on family
        if   f == 0x0: advance = self._exec_sys(opcode)
        elif f == 0x1: advance = self._exec_jp(opcode)
        elif f == 0x2: advance = self._exec_call(opcode)
        elif f == 0x3: advance = self._exec_se_imm(opcode)
        elif f == 0x4: advance = self._exec_sne_imm(opcode)
        elif f == 0x5: advance = self._exec_se_reg(opcode)
        elif f == 0x6: advance = self._exec_ld_imm(opcode)
        elif f == 0x7: advance = self._exec_add_imm(opcode)
        elif f == 0x8: advance = self._exec_alu(opcode)
        elif f == 0x9: advance = self._exec_sne_reg(opcode)
        elif f == 0xA: advance = self._exec_ld_i(opcode)
        elif f == 0xB: advance = self._exec_jp_offset(opcode)
        elif f == 0xC: advance = self._exec_rnd(opcode)
        elif f == 0xD: advance = self._exec_drw(opcode)
        elif f == 0xE: advance = self._exec_key(opcode)
        else:          advance = self._exec_misc(opcode)

        if advance:
            self.regs.pc = pc + PC_STEP
        self.cycle_count += 1
        return 1

    def run(self, max_steps: int = 1_000_000) -> int:
        """Step until max_steps or a stall. Returns instructions retired."""
        total = 0
        for _ in range(max_steps):
            done = self.step()
            if not done:
                break
            total += done
        return total

    def _illegal(self, opcode: int):
        raise IllegalInstructionError(opcode, self.regs.pc)

    def _skip_if(self, cond: bool) -> bool:
        self.regs.pc += 2 * PC_STEP if cond else PC_STEP
        return False

    # =====================================================================
    #  Family executors: each returns True when PC should advance by 2
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _exec_sys(self, op: int) -> bool:
        if op == 0x00E0:  # CLS
            self.fb.clear()
            return True
        if op == 0x00EE:  # RET
            self.regs.pc = self.regs.pop()
            return False
        # 0nnn machine-code routines are not interpretable
        self._illegal(op)

    # -- 0x1: JP nnn --
    def _exec_jp(self, op: int) -> bool:
        self.regs.pc = op & 0x0FFF
        return False

    # -- 0x2: CALL nnn --
    def _exec_call(self, op: int) -> bool:
        self.regs.push(self.regs.pc + PC_STEP)
        self.regs.pc = op & 0x0FFF
        return False

    # -- 0x3: SE Vx, nn --
    def _exec_se_imm(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        return self._skip_if(self.regs.v[x] == op & 0xFF)

    # -- 0x4: SNE Vx, nn --
    def _exec_sne_imm(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        return self._skip_if(self.regs.v[x] != op & 0xFF)

    # -- 0x5: SE Vx, Vy --
    def _exec_se_reg(self, op: int) -> bool:
        if op & 0xF:
            self._illegal(op)
        x = (op >> 8) & 0xF
        y = (op >> 4) & 0xF
        return self._skip_if(self.regs.v[x] == self.regs.v[y])

    # -- 0x6: LD Vx, nn --
    def _exec_ld_imm(self, op: int) -> bool:
        self.regs.v[(op >> 8) & 0xF] = op & 0xFF
        return True

    # -- 0x7: ADD Vx, nn (no carry) --
    def _exec_add_imm(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        self.regs.v[x] = u8(self.regs.v[x] + (op & 0xFF))
        return True

    # -- 0x8: register ALU --
    def _exec_alu(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        y = (op >> 4) & 0xF
        sub = op & 0xF
        v = self.regs.v
        vx, vy = v[x], v[y]

        if sub == 0x0:    # LD Vx, Vy
            v[x] = vy
        elif sub == 0x1:  # OR
            v[x] = vx | vy
            if not self.quirks.logic:
                v[VF] = 0
        elif sub == 0x2:  # AND
            v[x] = vx & vy
            if not self.quirks.logic:
                v[VF] = 0
        elif sub == 0x3:  # XOR
            v[x] = vx ^ vy
            if not self.quirks.logic:
                v[VF] = 0
        elif sub == 0x4:  # ADD, VF = carry
            total = vx + vy
            self._write_with_flag(x, total, 1 if total > MASK8 else 0)
        elif sub == 0x5:  # SUB Vx - Vy, VF = not borrow
            self._write_with_flag(x, vx - vy, 1 if vx >= vy else 0)
        elif sub == 0x6:  # SHR, VF = bit shifted out
            src = vx if self.quirks.shift else vy
            self._write_with_flag(x, src >> 1, src & 1)
        elif sub == 0x7:  # SUBN Vy - Vx, VF = not borrow
            self._write_with_flag(x, vy - vx, 1 if vy >= vx else 0)
        elif sub == 0xE:  # SHL, VF = bit shifted out
            src = vx if self.quirks.shift else vy
            self._write_with_flag(x, src << 1, (src >> 7) & 1)
        else:
            self._illegal(op)
        return True

    # -- 0x9: SNE Vx, Vy --
    def _exec_sne_reg(self, op: int) -> bool:
        if op & 0xF:
            self._illegal(op)
        x = (op >> 8) & 0xF
        y = (op >> 4) & 0xF
        return self._skip_if(self.regs.v[x] != self.regs.v[y])

    # -- 0xA: LD I, nnn --
    def _exec_ld_i(self, op: int) -> bool:
        self.regs.i = op & 0x0FFF
        return True

    # -- 0xB: JP V0, nnn  (jump quirk: JP Vx, xnn) --
    def _exec_jp_offset(self, op: int) -> bool:
        nnn = op & 0x0FFF
        r = (op >> 8) & 0xF if self.quirks.jump else 0
        self.regs.pc = nnn + self.regs.v[r]
        return False

    # -- 0xC: RND Vx, nn --
    def _exec_rnd(self, op: int) -> bool:
        self.regs.v[(op >> 8) & 0xF] = self.rng.randrange(256) & (op & 0xFF)
        return True

    # -- 0xD: DRW Vx, Vy, n --
    def _exec_drw(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        y = (op >> 4) & 0xF
        n = op & 0xF
        sprite = self.mem.read_block(self.regs.i, n)
        collided = self.fb.draw_sprite(self.regs.v[x], self.regs.v[y], sprite,
                                       clip=self.quirks.clipping)
        self.regs.v[VF] = 1 if collided else 0
        if self.quirks.display_wait:
            self.vblank_wait = True
        return True

    # -- 0xE: SKP / SKNP Vx --
    def _exec_key(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        low = op & 0xFF
        if low == 0x9E:
            return self._skip_if(self.keypad.is_pressed(self.regs.v[x]))
        if low == 0xA1:
            return self._skip_if(not self.keypad.is_pressed(self.regs.v[x]))
        self._illegal(op)

    # -- 0xF: timers, keys, index, BCD, register save/restore --
    def _exec_misc(self, op: int) -> bool:
        x = (op >> 8) & 0xF
        low = op & 0xFF
        regs = self.regs
        v = regs.v

        if low == 0x07:    # LD Vx, DT
            v[x] = self.timers.delay
        elif low == 0x0A:  # LD Vx, K: enter key-wait, PC stays put
            self.wait_reg = x
            self.keypad.arm()
            return False
        elif low == 0x15:  # LD DT, Vx
            self.timers.set_delay(v[x])
        elif low == 0x18:  # LD ST, Vx
            self.timers.set_sound(v[x])
        elif low == 0x1E:  # ADD I, Vx
            regs.i = regs.i + v[x]
        elif low == 0x29:  # LD F, Vx
            regs.i = font_addr(v[x])
        elif low == 0x33:  # LD B, Vx
            val = v[x]
            self.mem.write_block(regs.i, [val // 100, (val // 10) % 10, val % 10])
        elif low == 0x55:  # LD [I], V0..Vx
            self.mem.write_block(regs.i, v[:x + 1])
            if self.quirks.load_store:
                regs.i = regs.i + x + 1
        elif low == 0x65:  # LD V0..Vx, [I]
            data = self.mem.read_block(regs.i, x + 1)
            v[:x + 1] = list(data)
            if self.quirks.load_store:
                regs.i = regs.i + x + 1
        else:
            self._illegal(op)
        return True

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        v = self.regs.v
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X}={v[r]:#04x}" for r in range(row, row + 4)))
        lines.append(f"  I  = {self.regs.i:#06x}  PC = {self.regs.pc:#06x}")
        lines.append(f"  DT = {self.timers.delay:3d}  ST = {self.timers.sound:3d}"
                     f"  keys = {self.keypad.mask:#06x}")
        stack = " ".join(f"{a:#05x}" for a in self.regs.stack) or "(empty)"
        lines.append(f"  stack[{len(self.regs.stack)}/{self.regs.stack_depth}] = {stack}")
        if self.wait_reg is not None:
            lines.append(f"  waiting for key -> V{self.wait_reg:X}")
        if self.vblank_wait:
            lines.append("  waiting for display tick")
        return "\n".join(lines)
