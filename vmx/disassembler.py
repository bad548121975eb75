"""Listing of the constant and code segments."""

from __future__ import annotations

from typing import Iterator, Sequence, TextIO

from .machine import Machine
from .types import NULL, Instruction, Operand, OperandType, Register

_MNEMONICS = {
    0x00: "SYS",
    0x01: "JMP",
    0x02: "JZ",
    0x03: "JP",
    0x04: "JN",
    0x05: "JNZ",
    0x06: "JNP",
    0x07: "JNN",
    0x08: "NOT",
    0x0B: "PUSH",
    0x0C: "POP",
    0x0D: "CALL",
    0x0E: "RET",
    0x0F: "STOP",
    0x10: "MOV",
    0x11: "ADD",
    0x12: "SUB",
    0x13: "SWAP",
    0x14: "MUL",
    0x15: "DIV",
    0x16: "CMP",
    0x17: "SHL",
    0x18: "SHR",
    0x19: "AND",
    0x1A: "OR",
    0x1B: "XOR",
    0x1C: "LDL",
    0x1D: "LDH",
    0x1E: "RND",
}

_REGISTER_NAMES = (
    "CS", "DS", "ES", "SS", "KS", "IP", "SP", "BP",
    "CC", "AC", "EAX", "EBX", "ECX", "EDX", "EEX", "EFX",
)

# A word-sized memory operand is listed with both the w and b marks.
_SIZE_MARKS = {0: "l", 2: "wb", 3: "b"}
_SECTOR_SUFFIXES = {1: "L", 2: "H", 3: "X"}


def _int16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def mnemonic(code: int) -> str:
    """Mnemonic of an opcode."""
    return _MNEMONICS.get(code, "Mnemonico no identificado")


def register_name(code: int) -> str:
    """Name of a register number."""
    if 0 <= code < len(_REGISTER_NAMES):
        return _REGISTER_NAMES[code]
    return "Registro no identificado"


def format_bytes(value: int, count: int) -> str:
    """The ``count`` low bytes of ``value`` as hex, most significant first."""
    return "".join(f"{(value >> (8 * (count - i - 1))) & 0xFF:02X} " for i in range(count))


def format_operand(operand: Operand) -> str:
    """Assembler text of an operand."""
    kind = operand.kind
    value = operand.value
    if kind == OperandType.REGISTER:
        name = register_name((value >> 4) & 0x0F)
        sector = (value >> 2) & 0x03
        if sector == 0:
            return name
        return name[1] + _SECTOR_SUFFIXES[sector]
    if kind == OperandType.IMMEDIATE:
        return str(_int16(value))
    if kind == OperandType.MEMORY:
        offset = _int16((value >> 8) & 0xFFFF)
        mark = _SIZE_MARKS.get(value & 0x03, "")
        name = register_name((value >> 4) & 0x0F)
        if offset > 0:
            return f"{mark}[{name} + {offset}]"
        if offset == 0:
            return f"{mark}[{name}]"
        return f"{mark}[{name}{offset}]"
    return ""


def constant_lines(machine: Machine) -> Iterator[str]:
    """One line per NUL-terminated string of the constant segment."""
    segment = machine.segments[(machine.registers[Register.KS] >> 16) & 0xFFFF]
    end = segment.base + segment.size
    memory = machine.memory
    address = segment.base
    while address < end:
        start = address
        hex_bytes = []
        while address < end and memory[address] != 0:
            hex_bytes.append(f"{memory[address]:02X} ")
            address += 1
        address += 1
        terminator = memory.find(b"\x00", start)
        text = bytes(memory[start:terminator if terminator >= 0 else len(memory)])
        yield f" [{start:04X}]{''.join(hex_bytes)}00\t | \"{text.decode('latin-1')}\""


def instruction_lines(
    machine: Machine, instructions: Sequence[Instruction | None]
) -> Iterator[str]:
    """One line per decoded instruction, in code order."""
    base = machine.segments[(machine.registers[Register.CS] >> 16) & 0xFFFF].base
    position = 0
    while position < len(instructions):
        instruction = instructions[position]
        if instruction is None:
            break
        op1, op2 = instruction.op1, instruction.op2
        marker = ""
        if machine.version == 2:
            marker = ">" if machine.entry_offset == position else " "
        padding = "  " * max(0, 7 - int(op1.kind) - int(op2.kind))
        separator = ", " if op1.kind != OperandType.NONE else ""
        yield (
            f"{marker}[{base + position:04X}] {instruction.opcode & 0xFF:02X} "
            f"{format_bytes(op2.value, int(op2.kind))}"
            f"{format_bytes(op1.value, int(op1.kind))}{padding}"
            f"\t| {mnemonic(instruction.opcode & 0x1F)} "
            f"{format_operand(op1)}{separator}{format_operand(op2)}"
        )
        position += instruction.size()


def write_disassembly(
    machine: Machine,
    instructions: Sequence[Instruction | None],
    out: TextIO | None = None,
) -> None:
    """Write the constant listing, when there is a constant segment, then the code."""
    stream = out if out is not None else machine.stdout
    if machine.registers[Register.KS] != NULL:
        for line in constant_lines(machine):
            stream.write(line + "\n")
    for line in instruction_lines(machine, instructions):
        stream.write(line + "\n")