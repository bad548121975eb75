"""Save and restore a machine as a VMI image file."""

from __future__ import annotations

import os
import struct

from .loading import load_memory, load_registers, load_segments
from .machine import Machine
from .types import REGISTER_COUNT, SEGMENT_COUNT

MAGIC = b"VMI25"
VERSION = 1

_HEADER = struct.Struct(">5sBH")
_REGISTERS = struct.Struct(f">{REGISTER_COUNT}i")
_SEGMENTS = struct.Struct(f">{SEGMENT_COUNT}I")
_PREFIX_SIZE = _HEADER.size + _REGISTERS.size + _SEGMENTS.size


def _target(machine: Machine, path: str | os.PathLike | None) -> str | os.PathLike:
    target = path if path is not None else machine.image_path
    if target is None:
        raise ValueError("no image file name given")
    return target


def write_image(machine: Machine, path: str | os.PathLike | None = None) -> None:
    """Write header, registers, segment table and memory to ``path``."""
    kib = (machine.memory_size & 0xFFFF) // 1024
    header = _HEADER.pack(MAGIC, VERSION, kib)
    registers = _REGISTERS.pack(*machine.registers)
    segments = _SEGMENTS.pack(
        *(((s.base << 16) | (s.size & 0xFFFF)) & 0xFFFFFFFF for s in machine.segments)
    )
    memory = bytes(machine.memory[:machine.memory_size]).ljust(machine.memory_size, b"\x00")
    with open(_target(machine, path), "wb") as image:
        image.write(header + registers + segments + memory)


def read_image(machine: Machine, path: str | os.PathLike | None = None) -> None:
    """Restore registers, segment table and memory from an image file."""
    with open(_target(machine, path), "rb") as image:
        data = image.read()
    if len(data) < _HEADER.size:
        raise ValueError("image file is too short")
    magic, version, kib = _HEADER.unpack_from(data)
    if magic != MAGIC or version != VERSION:
        raise ValueError("not a VMI25 version 1 image")
    if len(data) < _PREFIX_SIZE:
        raise ValueError("image file is truncated")
    load_registers(machine, _REGISTERS.unpack_from(data, _HEADER.size))
    load_segments(machine, _SEGMENTS.unpack_from(data, _HEADER.size + _REGISTERS.size))
    size = kib * 1024
    load_memory(machine, data[_PREFIX_SIZE:_PREFIX_SIZE + size])