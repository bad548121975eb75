"""Instruction semantics and the fetch-execute loop."""

from __future__ import annotations

import random
import re
from typing import Callable, Sequence, TextIO

from .image import write_image
from .machine import Machine, is_valid_opcode
from .splitter import Splitter
from .types import ErrorCode, Instruction, Operand, OperandType, Register

CC_ZERO = 0x40000000
CC_NEGATIVE = 0x80000000

_BREAKPOINT = Operand(OperandType.IMMEDIATE, 0x0F)

_DECIMAL = re.compile(r"[+-]?[0-9]+")
_OCTAL = re.compile(r"[+-]?[0-7]+")
_HEX = re.compile(r"[+-]?(?:0[xX](?=[0-9a-fA-F]))?[0-9a-fA-F]+")


def _int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def _int16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


# -- helpers ---------------------------------------------------------------


def update_cc(machine: Machine, result: int) -> None:
    """Set the condition code from a result: zero, negative or neither."""
    result = _int32(result)
    if result == 0:
        flags = CC_ZERO
    elif result < 0:
        flags = CC_NEGATIVE
    else:
        flags = 0
    machine.registers[Register.CC] = flags


def _binary_prefix(text: str) -> tuple[int, bool]:
    """Value of the trailing binary digits of ``text`` and whether all were digits."""
    result = 0
    for exponent, char in enumerate(reversed(text)):
        if char not in "01":
            return _int32(result), False
        if char == "1":
            result += 1 << exponent
    return _int32(result), True


def binary_to_int(text: str) -> int:
    """Parse a string of binary digits as a 32-bit signed integer."""
    value, valid = _binary_prefix(text)
    if not valid:
        raise ValueError(f"not a binary number: {text!r}")
    return value


def int_to_binary(value: int) -> str:
    """The 32-bit two's complement form of ``value`` as binary digits."""
    return format(value & 0xFFFFFFFF, "032b")


def _code_segment_end(machine: Machine) -> int:
    selector = (machine.registers[Register.CS] >> 16) & 0xFFFF
    if selector >= len(machine.segments):
        machine.fail(ErrorCode.SEGMENTATION_FAULT)
    segment = machine.segments[selector]
    return segment.base + segment.size


def jump(machine: Machine, operand: Operand) -> None:
    """Move IP to the logical address the operand gives, inside the code segment."""
    target = machine.get_value(operand)
    limit = _int16(_code_segment_end(machine))
    if target > limit:
        machine.fail(ErrorCode.SEGMENTATION_FAULT)
    machine.registers[Register.IP] = (machine.registers[Register.IP] & 0xFFFF0000) + target


# -- two operands ----------------------------------------------------------


def mov(machine: Machine, op1: Operand, op2: Operand) -> None:
    machine.set_value(op1, machine.get_value(op2))


def add(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) + machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def sub(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) - machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def swap(machine: Machine, op1: Operand, op2: Operand) -> None:
    first = machine.get_value(op1)
    second = machine.get_value(op2)
    machine.set_value(op1, second)
    machine.set_value(op2, first)


def mul(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) * machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def _truncated_div(dividend: int, divisor: int) -> int:
    quotient = abs(dividend) // abs(divisor)
    return quotient if (dividend < 0) == (divisor < 0) else -quotient


def div(machine: Machine, op1: Operand, op2: Operand) -> None:
    """Divide op1 by op2 toward zero; the remainder goes to AC."""
    dividend = machine.get_value(op1)
    divisor = machine.get_value(op2)
    if divisor == 0:
        machine.fail(ErrorCode.DIVISION_BY_ZERO)
    quotient = _int32(_truncated_div(dividend, divisor))
    remainder = dividend - _truncated_div(dividend, divisor) * divisor
    machine.set_value(op1, quotient)
    machine.registers[Register.AC] = remainder
    update_cc(machine, quotient)


def cmp(machine: Machine, op1: Operand, op2: Operand) -> None:
    update_cc(machine, machine.get_value(op1) - machine.get_value(op2))


def shl(machine: Machine, op1: Operand, op2: Operand) -> None:
    value = machine.get_value(op1)
    count = machine.get_value(op2) & 0x1F
    result = _int32(value << count)
    machine.set_value(op1, result)
    update_cc(machine, result)


def shr(machine: Machine, op1: Operand, op2: Operand) -> None:
    value = machine.get_value(op1)
    count = machine.get_value(op2) & 0x1F
    result = _int32(value) >> count
    machine.set_value(op1, result)
    update_cc(machine, result)


def and_(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) & machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def or_(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) | machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def xor(machine: Machine, op1: Operand, op2: Operand) -> None:
    result = _int32(machine.get_value(op1) ^ machine.get_value(op2))
    machine.set_value(op1, result)
    update_cc(machine, result)


def ldl(machine: Machine, op1: Operand, op2: Operand) -> None:
    """Replace the low 16 bits of op1 with the low 16 bits of op2."""
    value = (machine.get_value(op1) & 0xFFFF0000) | (machine.get_value(op2) & 0xFFFF)
    machine.set_value(op1, value)


def ldh(machine: Machine, op1: Operand, op2: Operand) -> None:
    """Replace the high 16 bits of op1 with op2."""
    value = (machine.get_value(op1) & 0xFFFF) | (machine.get_value(op2) << 16)
    machine.set_value(op1, _int32(value))


def rnd(machine: Machine, op1: Operand, op2: Operand) -> None:
    """Store a random number between 0 and op2, both included."""
    limit = machine.get_value(op2)
    if limit > 0:
        machine.set_value(op1, random.randint(0, limit))
    else:
        machine.stdout.write("RDN no admite negativos\n")


# -- system calls ----------------------------------------------------------


def _read_token(stream: TextIO) -> str:
    char = stream.read(1)
    while char and char.isspace():
        char = stream.read(1)
    chars = []
    while char and not char.isspace():
        chars.append(char)
        char = stream.read(1)
    return "".join(chars)


def _scan_int(token: str, pattern: re.Pattern[str], base: int) -> int:
    match = pattern.match(token)
    if match is None:
        return 0
    return _int32(int(match.group(), base))


def _data_address(machine: Machine) -> int:
    pointer = machine.registers[Register.D]
    selector = (pointer >> 16) & 0xFFFF
    if selector >= len(machine.segments):
        machine.fail(ErrorCode.SEGMENTATION_FAULT)
    return machine.segments[selector].base + (pointer & 0xFFFF)


def _put(machine: Machine, address: int, byte: int) -> None:
    if not 0 <= address < len(machine.memory):
        machine.fail(ErrorCode.SEGMENTATION_FAULT)
    machine.memory[address] = byte & 0xFF


def _get(machine: Machine, address: int) -> int:
    if not 0 <= address < len(machine.memory):
        machine.fail(ErrorCode.SEGMENTATION_FAULT)
    return machine.memory[address]


def _prompt(machine: Machine, text: str) -> None:
    machine.stdout.write(text)
    machine.stdout.flush()


def _store_split(machine: Machine, address: int, width: int, value: int) -> None:
    fields = Splitter(value, 8).outputs()
    for j in range(width):
        index = min(width - j - 1, len(fields) - 1)
        _put(machine, address + j, fields[index])


def _sys_read(machine: Machine, mode: int, address: int, count: int, width: int) -> None:
    if mode not in (1, 2, 4, 8, 16):
        return
    for i in range(count):
        cell = address + i * width
        _prompt(machine, f"[{cell:4X}]: " if mode == 8 else f"[{cell:04X}]: ")
        token = _read_token(machine.stdin)
        if mode == 1:
            _store_split(machine, cell, width, _scan_int(token, _DECIMAL, 10))
        elif mode == 2:
            data = token.encode("latin-1", "replace")
            for j in range(width):
                _put(machine, cell + j, data[j] if j < len(data) else 0)
        elif mode == 4:
            _store_split(machine, cell, width, _scan_int(token, _OCTAL, 8))
        elif mode == 8:
            value = _scan_int(token, _HEX, 16)
            for j in range(width - 1, -1, -1):
                _put(machine, cell + j, value & 0xFF)
                value >>= 8
        else:
            value, valid = _binary_prefix(token)
            if not valid:
                machine.stdout.write(
                    "ERROR: se pidio un numero binario y se ingreso cualquier cosa"
                )
            _store_split(machine, cell, width, value)


def _sys_write(machine: Machine, formats: list[int], address: int, count: int, width: int) -> None:
    for i in range(count):
        cell = address + i * width
        parts = [f"[{cell:04X}]: "]
        for k in range(4, -1, -1):
            if not formats[k]:
                continue
            value = 0
            for j in range(width):
                value = _int32((value << 8) | _get(machine, cell + j))
            if k == 4:
                parts.append("0b" + int_to_binary(value) + " ")
            elif k == 3:
                parts.append(f"0x{value & 0xFFFFFFFF:08X} ")
            elif k == 2:
                parts.append(f"0o{value & 0xFFFFFFFF:011o} ")
            elif k == 1:
                for j in range(width):
                    byte = _get(machine, cell + j)
                    parts.append(chr(byte) if 32 <= byte < 127 else ".")
                parts.append(" ")
            else:
                parts.append(f"{value} ")
        machine.stdout.write("".join(parts) + "\n")


def _breakpoint(machine: Machine) -> None:
    machine.running = False
    try:
        write_image(machine)
    except (OSError, ValueError):
        machine.stdout.write("Error al abrir el archivo de imagen\n")
    machine.stdout.write(f"[BREAKPOINT] Imagen guardada en '{machine.image_path}'\n")
    _prompt(machine, "Acciones: (g) continuar | (Enter) paso a paso | (q) abortar\n> ")
    choice = machine.stdin.read(1)
    if choice == "g":
        machine.running = True
        machine.breakpoint = False
    elif choice == "q":
        stop(machine)
    elif choice == "\n":
        machine.breakpoint = True
        machine.running = True
    else:
        machine.stdout.write("entrada de consola invalida.\n")


def sys_call(machine: Machine, op1: Operand) -> None:
    """System call: read, write, string input and output, clear screen, breakpoint."""
    service = op1.value
    c_register = machine.registers[Register.C]
    cx = c_register & 0xFFFF
    cl = c_register & 0xFF
    ch = (c_register >> 8) & 0xFF
    al = machine.registers[Register.A] & 0xFF

    if service == 1:
        _sys_read(machine, al, _data_address(machine), cl, ch)
    elif service == 2:
        _sys_write(machine, Splitter(al, 1).outputs(), _data_address(machine), cl, ch)
    elif service == 3:
        address = _data_address(machine)
        _prompt(machine, f"[{address:04X}]: ")
        line = machine.stdin.readline(cx) if cx > 0 else ""
        written = 0
        for char in line[:cx]:
            if char == "\n":
                break
            _put(machine, address + written, ord(char) & 0xFF)
            written += 1
        _put(machine, address + written, 0)
    elif service == 4:
        address = _data_address(machine)
        if not 0 <= address < len(machine.memory):
            machine.fail(ErrorCode.SEGMENTATION_FAULT)
        end = machine.memory.find(b"\x00", address)
        text = bytes(machine.memory[address:end if end >= 0 else len(machine.memory)])
        machine.stdout.write(f"[{address:04X}]: {text.decode('latin-1')}")
    elif service == 7:
        machine.stdout.write("\033[2J\033[H")
        machine.stdout.flush()
    elif service == 0x0F:
        _breakpoint(machine)


# -- one operand -----------------------------------------------------------


def jmp(machine: Machine, op1: Operand) -> None:
    if op1.kind not in (OperandType.IMMEDIATE, OperandType.MEMORY):
        machine.stdout.write(
            "Error: JMP solo admite inmediatos o direcciones logicas (tipo MEMORIA)\n"
        )
    else:
        jump(machine, op1)


def jz(machine: Machine, op1: Operand) -> None:
    if machine.registers[Register.CC] & CC_ZERO:
        jump(machine, op1)


def jp(machine: Machine, op1: Operand) -> None:
    if machine.registers[Register.CC] == 0:
        jump(machine, op1)


def jn(machine: Machine, op1: Operand) -> None:
    if machine.registers[Register.CC] & CC_NEGATIVE:
        jump(machine, op1)


def jnz(machine: Machine, op1: Operand) -> None:
    if not machine.registers[Register.CC] & CC_ZERO:
        jump(machine, op1)


def jnp(machine: Machine, op1: Operand) -> None:
    if machine.registers[Register.CC] != 0:
        jump(machine, op1)


def jnn(machine: Machine, op1: Operand) -> None:
    if not machine.registers[Register.CC] & CC_NEGATIVE:
        jump(machine, op1)


def not_(machine: Machine, op1: Operand) -> None:
    result = _int32(~machine.get_value(op1))
    machine.set_value(op1, result)
    update_cc(machine, result)


def push(machine: Machine, op1: Operand) -> None:
    machine.push(machine.get_value(op1))


def pop(machine: Machine, op1: Operand) -> None:
    machine.set_value(op1, machine.pop())


def call(machine: Machine, op1: Operand) -> None:
    """Push the return address and jump."""
    machine.push(machine.registers[Register.IP])
    jmp(machine, op1)


# -- no operands -----------------------------------------------------------


def stop(machine: Machine) -> None:
    """Halt and move IP past the end of the code segment."""
    machine.running = False
    selector = (machine.registers[Register.CS] >> 16) & 0xFFFF
    size = machine.segments[selector].size if selector < len(machine.segments) else 0
    machine.registers[Register.IP] = size & 0xFFFF


def ret(machine: Machine) -> None:
    machine.registers[Register.IP] = machine.pop()


# -- execution -------------------------------------------------------------

_NO_OPERAND: dict[int, Callable[[Machine], None]] = {0x0F: stop, 0x0E: ret}

_ONE_OPERAND: dict[int, Callable[[Machine, Operand], None]] = {
    0x00: sys_call,
    0x01: jmp,
    0x02: jz,
    0x03: jp,
    0x04: jn,
    0x05: jnz,
    0x06: jnp,
    0x07: jnn,
    0x08: not_,
    0x0B: push,
    0x0C: pop,
    0x0D: call,
}

_TWO_OPERANDS: dict[int, Callable[[Machine, Operand, Operand], None]] = {
    0x10: mov,
    0x11: add,
    0x12: sub,
    0x13: swap,
    0x14: mul,
    0x15: div,
    0x16: cmp,
    0x17: shl,
    0x18: shr,
    0x19: and_,
    0x1A: or_,
    0x1B: xor,
    0x1C: ldl,
    0x1D: ldh,
    0x1E: rnd,
}


def _execute(machine: Machine, opcode: int, instruction: Instruction) -> None:
    op1, op2 = instruction.op1, instruction.op2
    if op1.kind == OperandType.NONE and op2.kind == OperandType.NONE:
        handler0 = _NO_OPERAND.get(opcode)
        if handler0 is None:
            machine.fail(ErrorCode.INVALID_OPERATION)
        handler0(machine)
    elif op1.kind == OperandType.NONE:
        handler1 = _ONE_OPERAND.get(opcode)
        if handler1 is None:
            machine.fail(ErrorCode.INVALID_OPERATION)
        handler1(machine, op2)
    else:
        handler2 = _TWO_OPERANDS.get(opcode)
        if handler2 is None:
            machine.fail(ErrorCode.INVALID_OPERATION)
        handler2(machine, op1, op2)


def run(machine: Machine, instructions: Sequence[Instruction | None]) -> None:
    """Execute decoded instructions until the machine stops or IP leaves the code.

    Faults raise :class:`~vmx.machine.VMError`.
    """
    registers = machine.registers
    while machine.running and (registers[Register.IP] & 0xFFFF) < len(instructions):
        position = registers[Register.IP] & 0xFFFF
        instruction = instructions[position]
        if instruction is None:
            machine.fail(ErrorCode.INVALID_OPERATION)
        registers[Register.IP] = registers[Register.IP] + instruction.size()
        opcode = instruction.opcode & 0x1F
        if not is_valid_opcode(opcode, machine.version):
            machine.fail(ErrorCode.INVALID_OPERATION)
        _execute(machine, opcode, instruction)
        if machine.breakpoint and instruction.op1.value != 0x0F and opcode != 0x0F:
            sys_call(machine, _BREAKPOINT)