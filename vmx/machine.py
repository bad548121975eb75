"""Machine state: memory, registers, segment table and operand access."""

from __future__ import annotations

import sys
from typing import Iterator, TextIO

from .types import (
    CELL_SIZE,
    MEMORY_SIZE,
    REGISTER_COUNT,
    SEGMENT_COUNT,
    ErrorCode,
    Instruction,
    Operand,
    OperandType,
    Register,
    Segment,
)


def _int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def _int16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def _selector(register_value: int) -> int:
    return (register_value >> 16) & 0xFFFF


_V1_OPCODES = frozenset(range(0x10, 0x1F)) | frozenset(range(0x00, 0x09)) | {0x0F}
_V2_OPCODES = _V1_OPCODES | frozenset(range(0x0B, 0x0F))


def is_valid_opcode(opcode: int, version: int) -> bool:
    """Whether an opcode exists in the given machine version."""
    if version == 1:
        return opcode in _V1_OPCODES
    if version == 2:
        return opcode in _V2_OPCODES
    return True


class VMError(Exception):
    """A fault that stops the machine."""

    def __init__(self, code: ErrorCode, address: int) -> None:
        self.code = ErrorCode(code)
        self.address = address
        super().__init__(f"Error en [{address:04X}]: {self.code.message}")


class _RegisterFile:
    """Sixteen registers that hold signed 32-bit values."""

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values = [0] * REGISTER_COUNT

    def __getitem__(self, index: int) -> int:
        return self._values[index]

    def __setitem__(self, index: int, value: int) -> None:
        self._values[index] = _int32(value)

    def __iter__(self) -> Iterator[int]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Registers({self._values!r})"


class Machine:
    """The virtual machine state and its operand primitives."""

    def __init__(
        self,
        version: int = 1,
        memory_size: int = MEMORY_SIZE,
        image_path: str | None = None,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.version = version
        self.memory_size = memory_size
        self.image_path = image_path
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.memory = bytearray(MEMORY_SIZE)
        self.registers = _RegisterFile()
        self.segments = [Segment() for _ in range(SEGMENT_COUNT)]
        self.running = True
        self.breakpoint = False
        self.entry_offset = 0

    # -- addressing -------------------------------------------------------

    def physical_address(self, segment: int, offset: int) -> int:
        """Physical address of ``offset`` inside segment number ``segment``."""
        return self.segments[segment].base + offset

    def _segment(self, selector: int) -> Segment:
        if not 0 <= selector < SEGMENT_COUNT:
            self.fail(ErrorCode.SEGMENTATION_FAULT)
        return self.segments[selector]

    def _byte(self, address: int) -> int:
        if 0 <= address < len(self.memory):
            return self.memory[address]
        return 0

    def _memory_target(self, operand: Operand) -> tuple[int, int]:
        code = (operand.value >> 4) & 0x0F
        register_value = self.registers[code]
        segment = self._segment(_selector(register_value))
        register_offset = _int16(register_value & 0xFFFF)
        offset = _int16((operand.value >> 8) & 0xFFFF)
        size = CELL_SIZE - (self.version == 2) * (operand.value & 0x03)
        address = segment.base + register_offset + offset
        if (
            address < segment.base
            or address + size - 1 > segment.base + segment.size
            or address < 0
            or address + size > len(self.memory)
        ):
            self.fail(ErrorCode.SEGMENTATION_FAULT)
        return address, size

    # -- operand access ---------------------------------------------------

    def get_value(self, operand: Operand) -> int:
        """Read the value an operand designates."""
        kind = operand.kind
        if kind == OperandType.REGISTER:
            sector = (operand.value & 0x0C) >> 2
            current = self.registers[(operand.value & 0xF0) >> 4]
            if sector == 0:
                return current
            if sector == 1:
                return _int32((current & 0xFF) << 24) >> 24
            if sector == 2:
                return _int32((current & 0xFF00) << 16) >> 24
            return _int32((current & 0xFFFF) << 16) >> 16
        if kind == OperandType.IMMEDIATE:
            return operand.value
        if kind == OperandType.MEMORY:
            address, size = self._memory_target(operand)
            return int.from_bytes(self.memory[address:address + size], "big", signed=True)
        return 0

    def set_value(self, operand: Operand, value: int) -> None:
        """Store ``value`` where a register or memory operand points."""
        kind = operand.kind
        if kind == OperandType.MEMORY:
            address, size = self._memory_target(operand)
            mask = (1 << (8 * size)) - 1
            self.memory[address:address + size] = (value & mask).to_bytes(size, "big")
        elif kind == OperandType.REGISTER:
            sector = (operand.value & 0x0C) >> 2
            code = (operand.value & 0xF0) >> 4
            current = self.registers[code]
            if sector == 0:
                self.registers[code] = value
            elif sector == 1:
                self.registers[code] = (current & 0xFFFFFF00) | (value & 0xFF)
            elif sector == 2:
                self.registers[code] = (current & 0xFFFF00FF) | ((value << 8) & 0xFF00)
            else:
                self.registers[code] = (current & 0xFFFF0000) | (value & 0xFFFF)

    # -- stack ------------------------------------------------------------

    def push(self, value: int) -> None:
        """Push a 32-bit value onto the stack segment."""
        self.registers[Register.SP] = self.registers[Register.SP] - 4
        segment = self._segment(_selector(self.registers[Register.SS]))
        stack_pointer = self.registers[Register.SP]
        address = segment.base + (stack_pointer & 0xFFFF)
        if (
            address < segment.base
            or _int16(stack_pointer) < 0
            or address + CELL_SIZE > len(self.memory)
        ):
            self.fail(ErrorCode.STACK_OVERFLOW)
        self.memory[address:address + CELL_SIZE] = (value & 0xFFFFFFFF).to_bytes(CELL_SIZE, "big")

    def pop(self) -> int:
        """Pop a 32-bit value from the stack segment."""
        segment = self._segment(_selector(self.registers[Register.SS]))
        address = segment.base + (self.registers[Register.SP] & 0xFFFF)
        if segment.base + segment.size <= address or address + CELL_SIZE > len(self.memory):
            self.fail(ErrorCode.STACK_UNDERFLOW)
        value = int.from_bytes(self.memory[address:address + CELL_SIZE], "big", signed=True)
        self.registers[Register.SP] = self.registers[Register.SP] + 4
        return value

    # -- faults -----------------------------------------------------------

    def fail(self, code: ErrorCode | int) -> None:
        """Stop the machine and raise the fault at the current IP."""
        ip = self.registers[Register.IP]
        segment = ip >> 16
        offset = ip & 0xFFFF
        if 0 <= segment < SEGMENT_COUNT:
            address = self.physical_address(segment, offset)
        else:
            address = offset
        self.running = False
        raise VMError(ErrorCode(code), address)

    # -- decoding ---------------------------------------------------------

    def _fetch_operand(self, kind: OperandType) -> Operand:
        ip = self.registers[Register.IP]
        segment = self._segment((ip >> 16) & 0xFF)
        address = segment.base + _int16(ip & 0xFFFF)
        if kind == OperandType.MEMORY:
            value = (self._byte(address) << 16) | (self._byte(address + 1) << 8) | self._byte(address + 2)
        elif kind == OperandType.IMMEDIATE:
            value = _int16((self._byte(address) << 8) | self._byte(address + 1))
        elif kind == OperandType.REGISTER:
            value = self._byte(address)
        else:
            value = 0
        return Operand(kind, value)

    def decode(self) -> list[Instruction | None]:
        """Decode the code segment.

        The result has one slot per code byte; an instruction sits at the
        offset where it starts and the remaining slots are ``None``.
        """
        code_segment = self._segment(_selector(self.registers[Register.CS]))
        code_size = code_segment.size & 0xFFFF
        instructions: list[Instruction | None] = [None] * code_size
        saved_ip = self.registers[Register.IP]
        segment = self._segment(_selector(saved_ip))
        self.registers[Register.IP] = saved_ip & 0xFFFF0000
        try:
            address = segment.base
            while address < segment.base + segment.size:
                byte = self._byte(address)
                position = self.registers[Register.IP] & 0xFFFF
                self.registers[Register.IP] += 1
                op2 = self._fetch_operand(OperandType((byte >> 6) & 0x03))
                self.registers[Register.IP] += op2.kind
                op1 = self._fetch_operand(OperandType((byte >> 4) & 0x03))
                self.registers[Register.IP] += op1.kind
                if position < code_size:
                    instructions[position] = Instruction(byte, op1, op2)
                address = segment.base + _int16(self.registers[Register.IP] & 0xFFFF)
        finally:
            self.registers[Register.IP] = saved_ip
        return instructions