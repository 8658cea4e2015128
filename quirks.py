"""
CHIP-8 Quirk Configuration
==========================
Decades of interpreters disagree on a handful of instruction details.
Each disagreement is a named toggle here; a session picks its toggles once
and the decoder consults them on every affected opcode.

  shift         8xy6 / 8xyE shift Vx in place instead of reading Vy
  load_store    Fx55 / Fx65 leave I pointing past the last register
  jump          Bxnn jumps to xnn + Vx instead of nnn + V0
  logic         8xy1 / 8xy2 / 8xy3 leave VF alone instead of zeroing it
  clipping      Dxyn drops pixels past the edge instead of wrapping them
  display_wait  Dxyn stalls the machine until the next 60 Hz tick
  flag_first    VF is written before the destination register

Presets name the combinations used by well-known interpreters:

    Quirks.preset("chip8")                  # COSMAC VIP
    Quirks.preset("schip", display_wait=True)
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class Quirks:
    """Immutable per-session set of behavioural toggles."""

    shift: bool = False
    load_store: bool = False
    jump: bool = False
    logic: bool = False
    clipping: bool = False
    display_wait: bool = False
    flag_first: bool = False

    @classmethod
    def names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def preset(cls, name: str, **overrides) -> "Quirks":
        """Return the named dialect, optionally with some toggles changed."""
        key = name.strip().lower().replace("-", "")
        try:
            base = PRESETS[key]
        except KeyError:
            raise ValueError(
                f"Unknown quirk preset '{name}' "
                f"(choose from {', '.join(sorted(PRESETS))})") from None
        return base.with_changes(**overrides) if overrides else base

    @classmethod
    def from_names(cls, spec: str, base: "Quirks | None" = None,
                   enabled: bool = True) -> "Quirks":
        """Parse a comma list such as ``"shift,clipping"``.

        Each named toggle is set to *enabled* on top of *base*.
        """
        changes = {}
        for tok in spec.split(","):
            tok = tok.strip().lower().replace("-", "_")
            if not tok:
                continue
            changes[tok] = enabled
        return (base or cls()).with_changes(**changes)

    def with_changes(self, **changes) -> "Quirks":
        valid = set(self.names())
        for k in changes:
            if k not in valid:
                raise ValueError(f"Unknown quirk '{k}' "
                                 f"(choose from {', '.join(sorted(valid))})")
        return replace(self, **{k: bool(v) for k, v in changes.items()})

    def enabled(self) -> list[str]:
        return [n for n in self.names() if getattr(self, n)]

    def describe(self) -> str:
        on = self.enabled()
        return ", ".join(on) if on else "none"


PRESETS = {
    "modern": Quirks(),
    "chip8":  Quirks(load_store=True, clipping=True, display_wait=True),
    "chip48": Quirks(shift=True, load_store=True, jump=True, logic=True,
                     clipping=True),
    "schip":  Quirks(shift=True, jump=True, logic=True, clipping=True),
    "xochip": Quirks(load_store=True, logic=True),
}
