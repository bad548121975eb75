# vmx

`vmx` runs programs for a small segmented 32-bit virtual machine. It loads
`VMX25` program files, can print a disassembly of them before running, and
writes the machine state as a `VMI25` image when a breakpoint is hit. An image
can later be loaded and run again.

## Installing

```
pip install .
```

This installs the `vmx` command. No third-party libraries are needed.

## Running a program

```
vmx program.vmx
```

Arguments are recognised by their shape, in any order:

| Argument         | Meaning                                                              |
|------------------|----------------------------------------------------------------------|
| `name.vmx`       | program file to load and run                                         |
| `name.vmi`       | image file: written on a breakpoint, or loaded when no `.vmx` is given |
| `m=SIZE`         | memory size in KiB, used as the memory size written to images        |
| `-d`             | print the disassembly before running                                 |
| `-p ARG ...`     | everything after `-p` is passed to the program as parameters         |

Examples:

```
vmx program.vmx -d
vmx program.vmx state.vmi -p first second
vmx state.vmi
```

The command exits with status 1 when no file is given or the file cannot be
loaded, and with status 0 otherwise.

When a breakpoint system call is reached the image is written to the `.vmi`
file (if none was named, an error line is printed instead) and the machine
reads one character: `g` continues, Enter steps one instruction at a time,
`q` stops the program.

## Program files

A `VMX25` file starts with the five bytes `VMX25` and a version byte.

* **Version 1**: two big-endian bytes with the code size, then the code. The
  code segment starts at address 0 and the data segment takes the rest of the
  16 KiB memory.
* **Version 2**: big-endian 16-bit sizes of the code, data, extra, stack and
  constant segments, then the entry point offset, then the code bytes and the
  constant bytes. Command-line parameters are placed in a parameter segment
  ahead of the others, as NUL-terminated strings followed by a table of
  pointers; the stack starts out holding the pointer table address, the
  parameter count and a return address of -1. Empty segments get no table
  entry and their register is set to -1.

A program whose segments do not fit in memory is rejected with
`vmx.loader.LoadError`.

## Registers and instructions

Registers are `CS DS ES SS KS IP SP BP CC AC EAX EBX ECX EDX EEX EFX`; the
general registers can also be addressed as their low byte (`AL`), second byte
(`AH`) or low word (`AX`). In version 2 memory operands may read or write 4,
2 or 1 bytes (`l`, `w`, `b`); in version 1 they always use 4 bytes.

Two operands: `MOV ADD SUB SWAP MUL DIV CMP SHL SHR AND OR XOR LDL LDH RND`.
One operand: `SYS JMP JZ JP JN JNZ JNP JNN NOT PUSH POP CALL`.
No operand: `RET STOP`. `PUSH`, `POP`, `CALL` and `RET` exist in version 2
only.

`SYS` services: 1 read, 2 write (decimal, character, octal, hexadecimal and
binary, selected by bits 0 to 4 of `AL`; `CL` cells of `CH` bytes each at the
address in `EDX`), 3 read a string of at most `CX` characters, 4 write a
string, 7 clear the screen, 15 breakpoint.

Run-time faults (invalid instruction, division by zero, segment fault,
insufficient memory, stack overflow and underflow) raise
`vmx.machine.VMError`; the command prints its message, which gives the
address of the failing instruction, and stops.

## Using it from Python

```python
import sys

from vmx.disassembler import write_disassembly
from vmx.loader import read_vmx
from vmx.machine import Machine
from vmx.operations import run

machine = Machine(2, 16384, "state.vmi", sys.stdin, sys.stdout)
read_vmx(machine, "program.vmx", ["first", "second"])
instructions = machine.decode()
write_disassembly(machine, instructions, sys.stdout)
run(machine, instructions)
```

`vmx.image.write_image` and `vmx.image.read_image` save and restore a
machine's registers, segment table and memory as a `VMI25` image.

## Limitations

* An image does not record the program's version. A machine loaded from an
  image runs as version 1, so `PUSH`, `POP`, `CALL` and `RET` in it are
  rejected as invalid instructions.
* There is no assembler: programs must already be in `VMX25` form.

## Tests

```
pip install .[test]
pytest
```