"""Command line: load a VMX program or VMI image, optionally list it, and run it."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from typing import Sequence

from .disassembler import write_disassembly
from .image import read_image
from .loader import LoadError, read_vmx
from .machine import Machine, VMError
from .operations import run
from .types import MEMORY_SIZE

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass
class Options:
    """Parsed command-line arguments."""

    vmx: str | None = None
    vmi: str | None = None
    memory_size: int = MEMORY_SIZE
    disassemble: bool = False
    params: list[str] = field(default_factory=list)


def _leading_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def parse_args(argv: Sequence[str]) -> Options:
    """Parse arguments; everything after ``-p`` is a program parameter."""
    options = Options()
    args = list(argv)
    for index, arg in enumerate(args):
        if arg == "-p":
            options.params = args[index + 1:]
            break
        if ".vmx" in arg:
            options.vmx = arg
        elif ".vmi" in arg:
            options.vmi = arg
        elif arg.startswith("m="):
            options.memory_size = _leading_int(arg[2:]) * 1024
        elif arg == "-d":
            options.disassemble = True
    return options


def main(argv: Sequence[str] | None = None) -> int:
    """Run the virtual machine; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("No se ha ingresado el nombre del archivo")
        return 1
    options = parse_args(args)
    machine = Machine(memory_size=options.memory_size, image_path=options.vmi)

    try:
        if options.vmx is not None:
            read_vmx(machine, options.vmx, options.params)
        elif options.vmi is not None:
            read_image(machine, options.vmi)
        else:
            print("No se ha ingresado el nombre del archivo")
            return 1
        instructions = machine.decode()
    except LoadError as exc:
        if str(exc):
            print(exc)
        return 1
    except VMError as exc:
        print(exc)
        return 1
    except (OSError, ValueError):
        print("Error al abrir el archivo")
        return 1

    if options.disassemble and machine.running:
        write_disassembly(machine, instructions)

    try:
        run(machine, instructions)
    except VMError as exc:
        machine.stdout.write(f"{exc}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())