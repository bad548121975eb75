"""Set up machine state from program files and command-line parameters."""

from __future__ import annotations

from typing import Iterable, Sequence

from .machine import Machine
from .types import (
    CELL_SIZE,
    MEMORY_SIZE,
    NULL,
    REGISTER_COUNT,
    SEGMENT_COUNT,
    Register,
    Segment,
)

# Registers that receive a selector, in the order of segment_sizes[1:].
_SEGMENT_REGISTERS = (Register.KS, Register.CS, Register.DS, Register.ES, Register.SS)


def _selector(register_value: int) -> int:
    return (register_value >> 16) & 0xFFFF


def _store(machine: Machine, base: int, data: bytes) -> None:
    if base < 0 or base + len(data) > len(machine.memory):
        raise ValueError("data does not fit in machine memory")
    machine.memory[base:base + len(data)] = data


def init_v1(machine: Machine, code_size: int) -> None:
    """Lay out a version 1 machine: code segment first, data segment after it."""
    machine.registers[Register.CS] = 0x00000000
    machine.registers[Register.DS] = 0x00010000
    machine.registers[Register.KS] = NULL
    machine.segments[_selector(machine.registers[Register.CS])] = Segment(0, code_size)
    machine.segments[_selector(machine.registers[Register.DS])] = Segment(
        code_size, MEMORY_SIZE - code_size
    )
    machine.registers[Register.IP] = machine.registers[Register.CS]
    machine.entry_offset = 0


def init_v2(
    machine: Machine,
    segment_sizes: Sequence[int],
    entry_point: int,
    total_memory: int,
    param_pointer: int,
    param_count: int,
) -> None:
    """Lay out a version 2 machine.

    ``segment_sizes`` holds the sizes of the param, constant, code, data,
    extra and stack segments. Empty segments get no table entry and their
    register is set to -1. The initial stack holds the parameter vector
    pointer, the parameter count and a return address of -1.
    """
    sizes = list(segment_sizes)
    if len(sizes) < 6:
        raise ValueError("six segment sizes are required")
    base = 0
    number = 0
    for index, size in enumerate(sizes[:6]):
        if size > 0:
            machine.segments[number] = Segment(base, size)
            if index > 0:
                machine.registers[_SEGMENT_REGISTERS[index - 1]] = number << 16
            base += size
            number += 1
        elif index > 0:
            machine.registers[_SEGMENT_REGISTERS[index - 1]] = NULL

    machine.registers[Register.IP] = machine.registers[Register.CS] + entry_point
    machine.registers[Register.SP] = machine.registers[Register.SS] + sizes[5]
    machine.entry_offset = entry_point
    machine.memory_size = total_memory

    if param_count > 0:
        machine.push(param_pointer)
        machine.push(param_count)
    else:
        machine.push(-1)
        machine.push(0)
    machine.push(-1)


def load_registers(machine: Machine, values: Iterable[int]) -> None:
    """Set all sixteen registers from ``values``."""
    values = list(values)
    if len(values) != REGISTER_COUNT:
        raise ValueError(f"expected {REGISTER_COUNT} register values, got {len(values)}")
    for number, value in enumerate(values):
        machine.registers[number] = value


def load_segments(machine: Machine, descriptors: Iterable[int]) -> None:
    """Set the segment table from descriptors of the form ``base << 16 | size``."""
    descriptors = list(descriptors)
    if len(descriptors) != SEGMENT_COUNT:
        raise ValueError(f"expected {SEGMENT_COUNT} segment descriptors, got {len(descriptors)}")
    machine.segments = [
        Segment((descriptor >> 16) & 0xFFFF, descriptor & 0xFFFF) for descriptor in descriptors
    ]


def load_memory(machine: Machine, data: bytes) -> None:
    """Copy ``data`` to the start of machine memory."""
    _store(machine, 0, bytes(data))


def load_param_segment(machine: Machine, params: Sequence[str]) -> tuple[int, int]:
    """Write the parameter strings and their pointer vector at address 0.

    Returns the offset of the pointer vector and the size of the segment.
    """
    area = bytearray()
    offsets = []
    for param in params:
        offsets.append(len(area))
        area += param.encode("utf-8") + b"\x00"
    pointer = len(area)
    for offset in offsets:
        area += bytes((0x00, 0x00, (offset >> 16) & 0xFF, offset & 0xFF))
    _store(machine, 0, bytes(area))
    return pointer, len(area)


def load_code_segment(machine: Machine, code: bytes) -> None:
    """Copy ``code`` into the code segment."""
    if not code:
        return
    base = machine.segments[_selector(machine.registers[Register.CS])].base
    _store(machine, base, bytes(code))


def load_const_segment(machine: Machine, data: bytes) -> None:
    """Copy ``data`` into the constant segment."""
    if not data:
        return
    base = machine.segments[_selector(machine.registers[Register.KS])].base
    _store(machine, base, bytes(data))


__all__ = [
    "CELL_SIZE",
    "init_v1",
    "init_v2",
    "load_code_segment",
    "load_const_segment",
    "load_memory",
    "load_param_segment",
    "load_registers",
    "load_segments",
]