# mouthq/models/mouth.py
import os
from dataclasses import dataclass
from enum import Enum


class MouthShape(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    G = "G"
    H = "H"
    X = "X"

    @property
    def is_basic(self) -> bool:
        return self in BASIC_SHAPES

    @property
    def is_extended(self) -> bool:
        return not self.is_basic


BASIC_SHAPES = (MouthShape.A, MouthShape.B, MouthShape.C, MouthShape.D, MouthShape.E, MouthShape.F)
EXTENDED_SHAPES = (MouthShape.G, MouthShape.H, MouthShape.X)


class MouthCasing(str, Enum):
    UPPER = "upper"
    LOWER = "lower"
    UNKNOWN = "unknown"


def _common_suffix(names: list[str]) -> str:
    return os.path.commonprefix([n[::-1] for n in names])[::-1]


@dataclass(frozen=True)
class MouthNaming:
    """How mouth attachments are named, e.g. prefix "mouth_" + "A" + suffix ""."""

    prefix: str = ""
    suffix: str = ""
    casing: MouthCasing = MouthCasing.UNKNOWN

    @classmethod
    def guess(cls, names: list[str]) -> "MouthNaming":
        if not names:
            return cls()
        prefix = os.path.commonprefix(names)
        suffix = _common_suffix(names)
        first = names[0]
        if len(prefix) + len(suffix) > len(first):
            # a single name: prefix and suffix overlap, assume it is the shape itself
            prefix, suffix = first[:-1], ""
        core = first[len(prefix):len(first) - len(suffix)]
        if len(core) == 1 and core.isalpha():
            casing = MouthCasing.UPPER if core.isupper() else MouthCasing.LOWER
        else:
            casing = MouthCasing.LOWER
        return cls(prefix, suffix, casing)

    @property
    def display_string(self) -> str:
        if self.casing is MouthCasing.UNKNOWN:
            return "unknown"
        placeholder = "A" if self.casing is MouthCasing.UPPER else "a"
        return f'"{self.prefix}<{placeholder}>{self.suffix}"'

    def name_for(self, shape: MouthShape) -> str:
        letter = shape.value if self.casing is MouthCasing.UPPER else shape.value.lower()
        return f"{self.prefix}{letter}{self.suffix}"

    def shapes_in(self, names: list[str]) -> tuple[MouthShape, ...]:
        if self.casing is MouthCasing.UNKNOWN:
            return ()
        present = set(names)
        return tuple(s for s in MouthShape if self.name_for(s) in present)
