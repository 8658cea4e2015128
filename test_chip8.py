#!/usr/bin/env python3
"""
CHIP-8 interpreter test suite.

Covers every instruction family, each quirk in both settings, the key-wait
and display-wait sub-states, timers, display collision/wrap/clip and the
error taxonomy.

    python -m pytest test_chip8.py
"""
import dataclasses
import random
import unittest

from chip8 import (
    Chip8, Memory, RegisterFile, FONT_SPRITES, MEM_SIZE, PROGRAM_START,
    font_addr, Chip8Error, ImageTooLargeError, OutOfBoundsError,
    StackOverflowError, StackUnderflowError, IllegalInstructionError,
)
from devices import FrameBuffer, Keypad, TimerUnit, frame_to_text
from quirks import Quirks, PRESETS


# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def prog(*words: int) -> bytes:
    """Encode opcodes as a big-endian program image."""
    return b"".join(w.to_bytes(2, "big") for w in words)


def make_cpu(*words: int, quirks: Quirks = None, seed: int = 1, **kw) -> Chip8:
    cpu = Chip8(quirks=quirks, rng=random.Random(seed), **kw)
    cpu.load_program(prog(*words))
    return cpu


def run_steps(cpu: Chip8, n: int) -> int:
    return sum(cpu.step() for _ in range(n))


def lit(cpu: Chip8) -> set[tuple[int, int]]:
    """Coordinates of every lit pixel."""
    fb = cpu.fb
    return {(i % fb.width, i // fb.width)
            for i, p in enumerate(fb.pixels) if p}


# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class TestMemory(unittest.TestCase):
    def test_font_installed(self):
        mem = Memory()
        self.assertEqual(bytes(mem.data[0:80]), FONT_SPRITES)
        self.assertEqual(bytes(mem.data[0:5]), bytes([0xF0, 0x90, 0x90, 0x90, 0xF0]))

    def test_font_addr_uses_low_nibble(self):
        self.assertEqual(font_addr(0xA), 50)
        self.assertEqual(font_addr(0x1F), font_addr(0xF))

    def test_load_exact_capacity(self):
        cpu = Chip8()
        cpu.load_program(bytes([0xAB]) * (MEM_SIZE - PROGRAM_START))
        self.assertEqual(cpu.mem.data[-1], 0xAB)

    def test_load_one_byte_too_many(self):
        cpu = Chip8()
        with self.assertRaises(ImageTooLargeError) as cm:
            cpu.load_program(bytes(MEM_SIZE - PROGRAM_START + 1))
        self.assertEqual(cm.exception.size, 3585)
        self.assertEqual(cm.exception.limit, 3584)

    def test_failed_load_leaves_state(self):
        cpu = make_cpu(0x6005)
        cpu.step()
        with self.assertRaises(ImageTooLargeError):
            cpu.load_program(bytes(5000))
        self.assertEqual(cpu.v[0], 5)
        self.assertEqual(cpu.pc, 0x202)

    def test_load_resets_machine(self):
        cpu = make_cpu(0x6005, 0xA123)
        run_steps(cpu, 2)
        cpu.timers.set_delay(9)
        cpu.load_program(prog(0x1200))
        self.assertEqual(cpu.v, [0] * 16)
        self.assertEqual(cpu.i, 0)
        self.assertEqual(cpu.pc, PROGRAM_START)
        self.assertEqual(cpu.timers.delay, 0)
        self.assertEqual(cpu.mem.data[0x202], 0)

    def test_small_custom_capacity(self):
        cpu = Chip8(mem_size=0x300)
        cpu.load_program(bytes(0x100))
        with self.assertRaises(ImageTooLargeError):
            cpu.load_program(bytes(0x101))

    def test_capacity_too_small(self):
        with self.assertRaises(ValueError):
            Memory(PROGRAM_START)

    def test_read_out_of_bounds(self):
        mem = Memory()
        with self.assertRaises(OutOfBoundsError) as cm:
            mem.read_byte(MEM_SIZE)
        self.assertEqual(cm.exception.access, "read")
        self.assertEqual(cm.exception.addr, MEM_SIZE)

    def test_block_write_is_all_or_nothing(self):
        mem = Memory()
        with self.assertRaises(OutOfBoundsError):
            mem.write_block(MEM_SIZE - 2, [1, 2, 3])
        self.assertEqual(mem.data[MEM_SIZE - 2:], bytearray(2))

    def test_fetch_big_endian(self):
        mem = Memory()
        mem.write_block(0x300, [0x12, 0x34])
        self.assertEqual(mem.fetch16(0x300), 0x1234)


# ---------------------------------------------------------------------------
#  Registers and stack
# ---------------------------------------------------------------------------

class TestRegisters(unittest.TestCase):
    def test_pc_and_i_are_16_bit(self):
        regs = RegisterFile()
        regs.pc = 0x1_0002
        regs.i = 0x1_FFFF
        self.assertEqual(regs.pc, 0x0002)
        self.assertEqual(regs.i, 0xFFFF)

    def test_v_writes_masked(self):
        regs = RegisterFile()
        regs.set(3, 0x1FF)
        self.assertEqual(regs.get(3), 0xFF)

    def test_push_pop(self):
        regs = RegisterFile(stack_depth=2)
        regs.push(0x202)
        regs.push(0x304)
        self.assertEqual(regs.pop(), 0x304)
        self.assertEqual(regs.pop(), 0x202)
        with self.assertRaises(StackUnderflowError):
            regs.pop()

    def test_overflow(self):
        regs = RegisterFile(stack_depth=2)
        regs.push(1)
        regs.push(2)
        with self.assertRaises(StackOverflowError) as cm:
            regs.push(3)
        self.assertEqual(cm.exception.depth, 2)

    def test_calls_to_declared_depth(self):
        # 16 chained CALLs each to the next word, then one more
        words = [0x2000 | (PROGRAM_START + 2 * (k + 1)) for k in range(17)]
        cpu = make_cpu(*words)
        run_steps(cpu, 16)
        self.assertEqual(len(cpu.regs.stack), 16)
        self.assertEqual(cpu.pc, PROGRAM_START + 32)
        with self.assertRaises(StackOverflowError):
            cpu.step()

    def _recursion(self, depth: int) -> Chip8:
        # 0x200 CALL sub ; 0x202 JP self
        # 0x204 sub: ADD V0, 1 ; SE V0, depth ; CALL sub ; RET
        return make_cpu(0x2204, 0x1202, 0x7001, 0x3000 | depth, 0x2204, 0x00EE)

    def test_recursion_to_declared_depth_unwinds(self):
        cpu = self._recursion(16)
        deepest = 0
        for _ in range(200):
            cpu.step()
            deepest = max(deepest, len(cpu.regs.stack))
        self.assertEqual(deepest, 16)
        self.assertEqual(cpu.v[0], 16)
        self.assertEqual(cpu.regs.stack, [])
        self.assertEqual(cpu.pc, 0x202)

    def test_recursion_one_level_deeper_overflows(self):
        cpu = self._recursion(17)
        with self.assertRaises(StackOverflowError):
            cpu.run(200)
        self.assertEqual(len(cpu.regs.stack), 16)

    def test_nested_call_return_round_trip(self):
        cpu = make_cpu(0x2300, 0x1202, stack_depth=2)
        cpu.mem.write_block(0x300, prog(0x2400, 0x00EE))
        cpu.mem.write_block(0x400, prog(0x00EE))
        run_steps(cpu, 4)   # CALL, CALL, RET, RET
        self.assertEqual(cpu.pc, 0x202)
        self.assertEqual(cpu.regs.stack, [])


# ---------------------------------------------------------------------------
#  Instruction set
# ---------------------------------------------------------------------------

class TestFetch(unittest.TestCase):
    def test_first_step_executes_first_word(self):
        cpu = make_cpu(0x6A42)
        self.assertEqual(cpu.step(), 1)
        self.assertEqual(cpu.last_opcode, 0x6A42)
        self.assertEqual(cpu.v[0xA], 0x42)
        self.assertEqual(cpu.pc, 0x202)
        self.assertEqual(cpu.cycle_count, 1)

    def test_fetch_past_end(self):
        cpu = make_cpu(0x1FFF)
        cpu.step()
        with self.assertRaises(OutOfBoundsError) as cm:
            cpu.step()
        self.assertEqual(cm.exception.access, "fetch")

    def test_run_stops_at_stall(self):
        cpu = make_cpu(0x6001, 0x6102, 0xF00A)
        self.assertEqual(cpu.run(100), 3)
        self.assertTrue(cpu.waiting_for_key)


class TestFlow(unittest.TestCase):
    def test_jp(self):
        cpu = make_cpu(0x1300)
        cpu.step()
        self.assertEqual(cpu.pc, 0x300)

    def test_call_and_ret(self):
        cpu = make_cpu(0x2300)
        cpu.mem.write_block(0x300, prog(0x00EE))
        cpu.step()
        self.assertEqual(cpu.regs.stack, [0x202])
        self.assertEqual(cpu.pc, 0x300)
        cpu.step()
        self.assertEqual(cpu.pc, 0x202)
        self.assertEqual(cpu.regs.stack, [])

    def test_ret_empty_stack(self):
        cpu = make_cpu(0x00EE)
        with self.assertRaises(StackUnderflowError):
            cpu.step()

    def test_se_imm(self):
        cpu = make_cpu(0x6005, 0x3005)
        run_steps(cpu, 2)
        self.assertEqual(cpu.pc, 0x206)
        cpu = make_cpu(0x6005, 0x3006)
        run_steps(cpu, 2)
        self.assertEqual(cpu.pc, 0x204)

    def test_sne_imm(self):
        cpu = make_cpu(0x6005, 0x4006)
        run_steps(cpu, 2)
        self.assertEqual(cpu.pc, 0x206)
        cpu = make_cpu(0x6005, 0x4005)
        run_steps(cpu, 2)
        self.assertEqual(cpu.pc, 0x204)

    def test_se_reg(self):
        cpu = make_cpu(0x6005, 0x6105, 0x5010)
        run_steps(cpu, 3)
        self.assertEqual(cpu.pc, 0x208)

    def test_sne_reg(self):
        cpu = make_cpu(0x6001, 0x6102, 0x9010)
        run_steps(cpu, 3)
        self.assertEqual(cpu.pc, 0x208)
        cpu = make_cpu(0x6001, 0x6101, 0x9010)
        run_steps(cpu, 3)
        self.assertEqual(cpu.pc, 0x206)

    def test_jp_offset_v0(self):
        cpu = make_cpu(0x6001, 0x6208, 0xB210)
        run_steps(cpu, 3)
        self.assertEqual(cpu.pc, 0x211)

    def test_jp_offset_jump_quirk(self):
        cpu = make_cpu(0x6001, 0x6208, 0xB210, quirks=Quirks(jump=True))
        run_steps(cpu, 3)
        self.assertEqual(cpu.pc, 0x218)


class TestLoadsAndArithmetic(unittest.TestCase):
    def test_ld_imm(self):
        cpu = make_cpu(0x6C7F)
        cpu.step()
        self.assertEqual(cpu.v[0xC], 0x7F)

    def test_add_imm_wraps_without_flag(self):
        cpu = make_cpu(0x60FF, 0x7002)
        run_steps(cpu, 2)
        self.assertEqual(cpu.v[0], 0x01)
        self.assertEqual(cpu.v[0xF], 0)

    def test_ld_reg(self):
        cpu = make_cpu(0x6133, 0x8010)
        run_steps(cpu, 2)
        self.assertEqual(cpu.v[0], 0x33)

    def _logic(self, sub, quirks=None):
        cpu = make_cpu(0x600C, 0x610A, 0x6F05, 0x8010 | sub, quirks=quirks)
        run_steps(cpu, 4)
        return cpu

    def test_or_and_xor_reset_vf(self):
        for sub, expect in ((1, 0x0E), (2, 0x08), (3, 0x06)):
            cpu = self._logic(sub)
            self.assertEqual(cpu.v[0], expect)
            self.assertEqual(cpu.v[0xF], 0)

    def test_logic_quirk_keeps_vf(self):
        for sub in (1, 2, 3):
            cpu = self._logic(sub, Quirks(logic=True))
            self.assertEqual(cpu.v[0xF], 5)

    def test_add_carry(self):
        cpu = make_cpu(0x60FF, 0x6102, 0x8014)
        run_steps(cpu, 3)
        self.assertEqual(cpu.v[0], 0x01)
        self.assertEqual(cpu.v[0xF], 1)
        cpu = make_cpu(0x6001, 0x6102, 0x8014)
        run_steps(cpu, 3)
        self.assertEqual(cpu.v[0], 0x03)
        self.assertEqual(cpu.v[0xF], 0)

    def test_sub(self):
        cpu = make_cpu(0x6005, 0x6103, 0x8015)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x02, 1))
        cpu = make_cpu(0x6003, 0x6105, 0x8015)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0xFE, 0))
        cpu = make_cpu(0x6004, 0x6104, 0x8015)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x00, 1))

    def test_subn(self):
        cpu = make_cpu(0x6003, 0x6105, 0x8017)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x02, 1))
        cpu = make_cpu(0x6005, 0x6103, 0x8017)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0xFE, 0))

    def test_shr_reads_vy(self):
        cpu = make_cpu(0x6001, 0x6106, 0x8016)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x03, 0))

    def test_shr_shift_quirk_reads_vx(self):
        cpu = make_cpu(0x6001, 0x6106, 0x8016, quirks=Quirks(shift=True))
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x00, 1))

    def test_shl_both_settings(self):
        words = (0x6040, 0x6181, 0x801E)
        cpu = make_cpu(*words)
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x02, 1))
        cpu = make_cpu(*words, quirks=Quirks(shift=True))
        run_steps(cpu, 3)
        self.assertEqual((cpu.v[0], cpu.v[0xF]), (0x80, 0))

    def test_flag_wins_when_target_is_vf(self):
        cpu = make_cpu(0x6FFE, 0x6101, 0x8F14)
        run_steps(cpu, 3)
        self.assertEqual(cpu.v[0xF], 0)

    def test_flag_first_quirk(self):
        cpu = make_cpu(0x6FFE, 0x6101, 0x8F14, quirks=Quirks(flag_first=True))
        run_steps(cpu, 3)
        self.assertEqual(cpu.v[0xF], 0xFF)

    def test_rnd_masked(self):
        cpu = make_cpu(0xC00F, seed=7)
        cpu.step()
        self.assertEqual(cpu.v[0], random.Random(7).randrange(256) & 0x0F)
        cpu = make_cpu(0xC000)
        cpu.step()
        self.assertEqual(cpu.v[0], 0)


class TestIndexAndMemoryOps(unittest.TestCase):
    def test_ld_i(self):
        cpu = make_cpu(0xA123)
        cpu.step()
        self.assertEqual(cpu.i, 0x123)

    def test_add_i(self):
        cpu = make_cpu(0xA0FF, 0x6002, 0xF01E)
        run_steps(cpu, 3)
        self.assertEqual(cpu.i, 0x101)

    def test_add_i_wraps_16_bit(self):
        cpu = make_cpu(0x6002, 0xF01E)
        cpu.step()
        cpu.i = 0xFFFF
        cpu.step()
        self.assertEqual(cpu.i, 0x0001)

    def test_font_glyph_address(self):
        cpu = make_cpu(0x601A, 0xF029)
        run_steps(cpu, 2)
        self.assertEqual(cpu.i, 50)

    def test_bcd(self):
        cpu = make_cpu(0x60FE, 0xA300, 0xF033)
        run_steps(cpu, 3)
        self.assertEqual(list(cpu.mem.data[0x300:0x303]), [2, 5, 4])
        self.assertEqual(cpu.i, 0x300)

    def test_store_registers(self):
        cpu = make_cpu(0x6001, 0x6102, 0x6203, 0xA300, 0xF255)
        run_steps(cpu, 5)
        self.assertEqual(list(cpu.mem.data[0x300:0x304]), [1, 2, 3, 0])
        self.assertEqual(cpu.i, 0x300)

    def test_store_registers_load_store_quirk(self):
        cpu = make_cpu(0x6001, 0x6102, 0x6203, 0xA300, 0xF255,
                       quirks=Quirks(load_store=True))
        run_steps(cpu, 5)
        self.assertEqual(cpu.i, 0x303)

    def test_load_registers(self):
        for q, expect_i in ((Quirks(), 0x300), (Quirks(load_store=True), 0x302)):
            cpu = make_cpu(0xA300, 0xF165, quirks=q)
            cpu.mem.write_block(0x300, [0xAA, 0xBB, 0xCC])
            run_steps(cpu, 2)
            self.assertEqual(cpu.v[0:3], [0xAA, 0xBB, 0])
            self.assertEqual(cpu.i, expect_i)

    def test_store_out_of_bounds_writes_nothing(self):
        cpu = make_cpu(0xAFFE, 0x6001, 0x6101, 0x6201, 0xF255)
        run_steps(cpu, 4)
        with self.assertRaises(OutOfBoundsError) as cm:
            cpu.step()
        self.assertEqual(cm.exception.access, "write")
        self.assertEqual(bytes(cpu.mem.data[0xFFE:]), bytes(2))


# ---------------------------------------------------------------------------
#  Display
# ---------------------------------------------------------------------------

class TestDisplay(unittest.TestCase):
    def test_draw_glyph(self):
        cpu = make_cpu(0xA000, 0x6000, 0x6100, 0xD015)
        run_steps(cpu, 4)
        self.assertEqual(cpu.v[0xF], 0)
        self.assertEqual(cpu.fb.rows()[0][:5], [1, 1, 1, 1, 0])
        self.assertEqual(cpu.fb.rows()[1][:5], [1, 0, 0, 1, 0])

    def test_redraw_clears_and_collides(self):
        cpu = make_cpu(0xA000, 0xD015, 0xD015)
        run_steps(cpu, 2)
        self.assertTrue(lit(cpu))
        cpu.step()
        self.assertEqual(lit(cpu), set())
        self.assertEqual(cpu.v[0xF], 1)

    def test_edge_pixels_wrap(self):
        cpu = make_cpu(0x603E, 0x6100, 0xA000, 0xD011)
        run_steps(cpu, 4)
        self.assertEqual(lit(cpu), {(62, 0), (63, 0), (0, 0), (1, 0)})

    def test_clipping_quirk(self):
        cpu = make_cpu(0x603E, 0x611F, 0xA000, 0xD012,
                       quirks=Quirks(clipping=True))
        run_steps(cpu, 4)
        self.assertEqual(lit(cpu), {(62, 31), (63, 31)})

    def test_origin_always_wraps(self):
        for q in (Quirks(), Quirks(clipping=True)):
            cpu = make_cpu(0x6045, 0x6122, 0xA000, 0xD011, quirks=q)
            run_steps(cpu, 4)
            self.assertEqual(lit(cpu), {(5, 2), (6, 2), (7, 2), (8, 2)})

    def test_zero_height_sprite(self):
        cpu = make_cpu(0x6F01, 0xA000, 0xD010)
        run_steps(cpu, 3)
        self.assertEqual(lit(cpu), set())
        self.assertEqual(cpu.v[0xF], 0)

    def test_sprite_read_out_of_bounds(self):
        cpu = make_cpu(0xAFFF, 0xD012)
        cpu.step()
        with self.assertRaises(OutOfBoundsError):
            cpu.step()

    def test_cls(self):
        cpu = make_cpu(0xA000, 0xD015, 0x00E0)
        run_steps(cpu, 3)
        self.assertEqual(lit(cpu), set())

    def test_dirty_flag_observed_once(self):
        cpu = make_cpu(0xA000, 0xD015, 0x00E0)
        self.assertFalse(cpu.display_dirty)
        run_steps(cpu, 3)
        self.assertTrue(cpu.display_dirty)
        self.assertEqual(cpu.read_display(), bytes(64 * 32))
        self.assertFalse(cpu.display_dirty)

    def test_display_wait_quirk(self):
        cpu = make_cpu(0xA000, 0xD015, 0x6001, quirks=Quirks(display_wait=True))
        run_steps(cpu, 2)
        self.assertTrue(lit(cpu))
        self.assertEqual(cpu.step(), 0)
        self.assertEqual(cpu.pc, 0x204)
        cpu.tick_60hz()
        self.assertEqual(cpu.step(), 1)
        self.assertEqual(cpu.v[0], 1)

    def test_no_display_wait_by_default(self):
        cpu = make_cpu(0xA000, 0xD015, 0x6001)
        self.assertEqual(run_steps(cpu, 3), 3)


class TestFrameBuffer(unittest.TestCase):
    def test_custom_size(self):
        fb = FrameBuffer(8, 4)
        fb.draw_sprite(6, 3, bytes([0xC0, 0xC0]))
        self.assertEqual(fb.get_pixel(6, 3), 1)
        self.assertEqual(fb.get_pixel(7, 0), 1)

    def test_render_text(self):
        fb = FrameBuffer(4, 2)
        fb.draw_sprite(0, 0, bytes([0x90]))
        self.assertEqual(fb.render_text(), "#..#\n....")
        self.assertEqual(frame_to_text(fb.snapshot(), 4, "X", " "), "X  X\n    ")

    def test_bad_size(self):
        with self.assertRaises(ValueError):
            FrameBuffer(0, 32)


# ---------------------------------------------------------------------------
#  Keys
# ---------------------------------------------------------------------------

class TestKeys(unittest.TestCase):
    def test_skp_sknp(self):
        for pressed, skp_pc, sknp_pc in ((True, 0x206, 0x204), (False, 0x204, 0x206)):
            cpu = make_cpu(0x6005, 0xE09E)
            cpu.set_key(5, pressed)
            run_steps(cpu, 2)
            self.assertEqual(cpu.pc, skp_pc)
            cpu = make_cpu(0x6005, 0xE0A1)
            cpu.set_key(5, pressed)
            run_steps(cpu, 2)
            self.assertEqual(cpu.pc, sknp_pc)

    def test_skp_uses_low_nibble(self):
        cpu = make_cpu(0x6015, 0xE09E)
        cpu.set_key(5, True)
        run_steps(cpu, 2)
        self.assertEqual(cpu.pc, 0x206)

    def test_key_wait_holds_pc(self):
        cpu = make_cpu(0xF30A, 0x6001)
        self.assertEqual(cpu.step(), 1)
        for _ in range(10):
            self.assertEqual(cpu.step(), 0)
        self.assertTrue(cpu.waiting_for_key)
        self.assertEqual(cpu.pc, 0x200)

    def test_key_wait_completes_on_press(self):
        cpu = make_cpu(0xF30A, 0x6001)
        run_steps(cpu, 3)
        cpu.set_key(7, True)
        self.assertEqual(cpu.step(), 1)
        self.assertEqual(cpu.v[3], 7)
        self.assertEqual(cpu.pc, 0x202)
        self.assertFalse(cpu.waiting_for_key)
        # The completing step does not also run the next instruction
        self.assertEqual(cpu.v[0], 0)
        cpu.step()
        self.assertEqual(cpu.v[0], 1)

    def test_key_held_before_wait_does_not_count(self):
        cpu = make_cpu(0xF30A)
        cpu.set_key(2, True)
        run_steps(cpu, 3)
        self.assertTrue(cpu.waiting_for_key)
        cpu.set_key(2, False)
        cpu.set_key(2, True)
        cpu.step()
        self.assertEqual(cpu.v[3], 2)

    def test_lowest_new_key_wins(self):
        cpu = make_cpu(0xF30A)
        cpu.step()
        cpu.set_key(9, True)
        cpu.set_key(4, True)
        cpu.step()
        self.assertEqual(cpu.v[3], 4)

    def test_key_wait_checked_before_display_wait(self):
        cpu = make_cpu(0xA000, 0xD015, quirks=Quirks(display_wait=True))
        run_steps(cpu, 2)
        cpu.wait_reg = 1
        cpu.set_key(0xB, True)
        self.assertEqual(cpu.step(), 1)
        self.assertEqual(cpu.v[1], 0xB)

    def test_keypad_validation(self):
        pad = Keypad()
        with self.assertRaises(ValueError):
            pad.set_key(16, True)
        with self.assertRaises(ValueError):
            pad.set_state([True] * 15)

    def test_keypad_mask_and_latch(self):
        pad = Keypad()
        pad.set_state([i in (0, 0xF) for i in range(16)])
        self.assertEqual(pad.mask, 0x8001)
        self.assertEqual(pad.take_press(), 0)
        self.assertIsNone(pad.take_press())


# ---------------------------------------------------------------------------
#  Timers
# ---------------------------------------------------------------------------

class TestTimers(unittest.TestCase):
    def test_steps_do_not_touch_timers(self):
        cpu = make_cpu(0x600A, 0xF015, 0xF018, 0x1206)
        run_steps(cpu, 100)
        self.assertEqual(cpu.timers.delay, 10)
        self.assertEqual(cpu.timers.sound, 10)

    def test_tick_decrements_and_floors(self):
        cpu = make_cpu(0x6002, 0xF015, 0xF018, 0xF107)
        run_steps(cpu, 3)
        self.assertTrue(cpu.sound_active)
        for _ in range(5):
            cpu.tick_60hz()
        self.assertEqual(cpu.timers.delay, 0)
        self.assertFalse(cpu.sound_active)

    def test_read_delay(self):
        cpu = make_cpu(0x6010, 0xF015, 0xF107)
        run_steps(cpu, 2)
        cpu.tick_60hz()
        cpu.step()
        self.assertEqual(cpu.v[1], 0x0F)

    def test_timer_unit(self):
        t = TimerUnit()
        t.set_sound(0x101)
        self.assertEqual(t.sound, 1)
        t.tick()
        t.tick()
        self.assertEqual((t.delay, t.sound), (0, 0))


# ---------------------------------------------------------------------------
#  Illegal opcodes
# ---------------------------------------------------------------------------

class TestIllegal(unittest.TestCase):
    def test_machine_routine(self):
        cpu = make_cpu(0x0123)
        with self.assertRaises(IllegalInstructionError) as cm:
            cpu.step()
        self.assertEqual(cm.exception.opcode, 0x0123)
        self.assertEqual(cm.exception.addr, 0x200)
        self.assertIn("0x0123", str(cm.exception))
        self.assertEqual(cpu.pc, 0x200)

    def test_undecodable_words(self):
        for op in (0x5011, 0x8008, 0x800F, 0x9001, 0xE0FF, 0xF0FF, 0xF000):
            cpu = make_cpu(op)
            with self.assertRaises(IllegalInstructionError):
                cpu.step()

    def test_all_errors_share_base(self):
        for cls in (ImageTooLargeError, OutOfBoundsError, StackOverflowError,
                    StackUnderflowError, IllegalInstructionError):
            self.assertTrue(issubclass(cls, Chip8Error))


# ---------------------------------------------------------------------------
#  Quirk configuration
# ---------------------------------------------------------------------------

class TestQuirks(unittest.TestCase):
    def test_default_is_modern(self):
        self.assertEqual(Quirks(), Quirks.preset("modern"))
        self.assertEqual(Quirks().describe(), "none")

    def test_presets(self):
        self.assertEqual(Quirks.preset("chip8").enabled(),
                         ["load_store", "clipping", "display_wait"])
        self.assertEqual(Quirks.preset("CHIP-8"), PRESETS["chip8"])
        self.assertTrue(Quirks.preset("schip").shift)
        self.assertFalse(Quirks.preset("xochip").clipping)

    def test_preset_overrides(self):
        q = Quirks.preset("schip", display_wait=True)
        self.assertTrue(q.display_wait)
        self.assertTrue(q.jump)

    def test_unknown_names(self):
        with self.assertRaises(ValueError):
            Quirks.preset("nope")
        with self.assertRaises(ValueError):
            Quirks().with_changes(bogus=True)
        with self.assertRaises(ValueError):
            Quirks.from_names("shift,bogus")

    def test_from_names(self):
        q = Quirks.from_names("shift, display-wait")
        self.assertEqual(q.enabled(), ["shift", "display_wait"])
        q = Quirks.from_names("shift", base=q, enabled=False)
        self.assertEqual(q.enabled(), ["display_wait"])

    def test_frozen(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            Quirks().shift = True


class TestDump(unittest.TestCase):
    def test_dump_regs(self):
        cpu = make_cpu(0x6A42, 0x2300)
        run_steps(cpu, 2)
        text = cpu.dump_regs()
        self.assertIn("VA=0x42", text)
        self.assertIn("PC = 0x0300", text)
        self.assertIn("stack[1/16]", text)


if __name__ == "__main__":
    unittest.main()
