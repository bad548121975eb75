"""Read VMX program files into a machine."""

from __future__ import annotations

import os
import struct
from typing import NoReturn, Sequence

from .loading import (
    init_v1,
    init_v2,
    load_code_segment,
    load_const_segment,
    load_memory,
    load_param_segment,
)
from .machine import Machine
from .types import MEMORY_SIZE

MAGIC = b"VMX25"

# magic, version, code segment size
_V1_HEADER = struct.Struct(">5sBH")
# magic, version, code, data, extra, stack, constant sizes, entry point
_V2_HEADER = struct.Struct(">5sB6h")


class LoadError(Exception):
    """A program file that cannot be loaded."""


def total_segment_size(sizes: Sequence[int]) -> int:
    """Sum of the positive sizes among the six segments."""
    return sum(size for size in list(sizes)[:6] if size > 0)


def segments_fit(sizes: Sequence[int]) -> bool:
    """Whether the segments together fit in machine memory."""
    return total_segment_size(sizes) <= MEMORY_SIZE


def code_size_fits(size: int) -> bool:
    """Whether a version 1 code segment fits in machine memory."""
    return 0 <= size < MEMORY_SIZE


def _fail(machine: Machine, message: str) -> NoReturn:
    machine.running = False
    raise LoadError(message)


def _read_v1(machine: Machine, data: bytes) -> None:
    if len(data) < _V1_HEADER.size:
        _fail(machine, "program file is truncated")
    _, _, size = _V1_HEADER.unpack_from(data)
    if not code_size_fits(size):
        _fail(machine, "Error: Tamaño de code segment excede la memoria de la máquina virtual")
    machine.version = 1
    load_memory(machine, data[_V1_HEADER.size:_V1_HEADER.size + size])
    init_v1(machine, size)


def _read_v2(machine: Machine, data: bytes, params: Sequence[str]) -> None:
    if len(data) < _V2_HEADER.size:
        _fail(machine, "program file is truncated")
    _, _, code_size, data_size, extra_size, stack_size, const_size, entry = (
        _V2_HEADER.unpack_from(data)
    )
    machine.version = 2
    body = data[_V2_HEADER.size:]
    code_length = max(code_size, 0)
    code = body[:code_length]
    constants = body[code_length:code_length + max(const_size, 0)]

    try:
        pointer, param_size = load_param_segment(machine, params)
    except ValueError:
        _fail(machine, "Error: Tamaño de segmentos excede la memoria de la máquina virtual")

    sizes = [param_size, const_size, code_size, data_size, extra_size, stack_size]
    if not segments_fit(sizes):
        _fail(machine, "Error: Tamaño de segmentos excede la memoria de la máquina virtual")

    init_v2(machine, sizes, entry, total_segment_size(sizes), pointer, len(params))
    load_code_segment(machine, code)
    load_const_segment(machine, constants)


def read_vmx(machine: Machine, path: str | os.PathLike, params: Sequence[str] = ()) -> None:
    """Load a version 1 or 2 VMX file, with ``params`` as the parameter segment.

    Raises :class:`LoadError` and stops the machine when the file cannot be used.
    """
    try:
        with open(path, "rb") as program:
            data = program.read()
    except OSError as exc:
        machine.running = False
        raise LoadError("Error al abrir el archivo") from exc

    version = data[5] if len(data) > 5 else None
    if data[:5] != MAGIC or version not in (1, 2):
        _fail(machine, "not a VMX25 version 1 or 2 file")
    if version == 1:
        _read_v1(machine, data)
    else:
        _read_v2(machine, data, list(params))