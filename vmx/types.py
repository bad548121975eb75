"""Core value types shared by the virtual machine modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

REGISTER_COUNT = 16
MEMORY_SIZE = 16384
SEGMENT_COUNT = 8
CELL_SIZE = 4
NULL = -1


class Register(IntEnum):
    """Register numbers as they appear in operand encodings."""

    CS = 0
    DS = 1
    ES = 2
    SS = 3
    KS = 4
    IP = 5
    SP = 6
    BP = 7
    CC = 8
    AC = 9
    A = 10
    B = 11
    C = 12
    D = 13
    E = 14
    F = 15


class OperandType(IntEnum):
    """Operand kinds; the value is also the operand's width in code bytes."""

    NONE = 0
    REGISTER = 1
    IMMEDIATE = 2
    MEMORY = 3


_ERROR_MESSAGES = {
    1: "Operacion no valida.",
    2: "Division por cero.",
    3: "Falla de segmento.",
    4: "Memoria insuficiente",
    5: "Stack overflow",
    6: "Stack underflow",
}


class ErrorCode(IntEnum):
    """Faults that stop the machine."""

    INVALID_OPERATION = 1
    DIVISION_BY_ZERO = 2
    SEGMENTATION_FAULT = 3
    INSUFFICIENT_MEMORY = 4
    STACK_OVERFLOW = 5
    STACK_UNDERFLOW = 6

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self.value]


@dataclass
class Operand:
    """A decoded operand: its kind and its raw encoded value."""

    kind: OperandType = OperandType.NONE
    value: int = 0


@dataclass
class Instruction:
    """A decoded instruction with its two operands."""

    opcode: int
    op1: Operand = field(default_factory=Operand)
    op2: Operand = field(default_factory=Operand)

    def size(self) -> int:
        """Number of code bytes the instruction occupies."""
        return int(self.op1.kind) + int(self.op2.kind) + 1


@dataclass
class Segment:
    """An entry of the segment table."""

    base: int = 0
    size: int = 0