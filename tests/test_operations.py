import io

import pytest

from vmx.loading import init_v1, init_v2, load_code_segment
from vmx.machine import Machine, VMError
from vmx.operations import (
    add,
    and_,
    binary_to_int,
    call,
    cmp,
    div,
    int_to_binary,
    jmp,
    jn,
    jnn,
    jnp,
    jnz,
    jp,
    jump,
    jz,
    ldh,
    ldl,
    mov,
    mul,
    not_,
    or_,
    pop,
    push,
    ret,
    rnd,
    run,
    shl,
    shr,
    stop,
    sub,
    swap,
    sys_call,
    update_cc,
    xor,
)
from vmx.types import ErrorCode, Operand, OperandType, Register


def reg(code, sector=0):
    return Operand(OperandType.REGISTER, (int(code) << 4) | (sector << 2))


def imm(value):
    return Operand(OperandType.IMMEDIATE, value)


def mem(code, offset=0, size=0):
    return Operand(OperandType.MEMORY, ((offset & 0xFFFF) << 8) | (int(code) << 4) | size)


EAX = reg(Register.A)
EBX = reg(Register.B)


def make_machine(stdin_text="", code_size=16):
    machine = Machine(version=1, stdin=io.StringIO(stdin_text), stdout=io.StringIO())
    init_v1(machine, code_size)
    machine.registers[Register.D] = machine.registers[Register.DS]
    return machine


def make_v2(sizes=(0, 0, 16, 64, 0, 64)):
    machine = Machine(version=2, stdin=io.StringIO(), stdout=io.StringIO())
    init_v2(machine, list(sizes), 0, sum(sizes), 0, 0)
    return machine


def data_base(machine):
    return machine.segments[1].base


def test_update_cc_zero():
    machine = make_machine()
    update_cc(machine, 0)
    assert machine.registers[Register.CC] == 0x40000000


def test_update_cc_negative():
    machine = make_machine()
    update_cc(machine, -3)
    assert machine.registers[Register.CC] & 0xFFFFFFFF == 0x80000000


def test_update_cc_positive():
    machine = make_machine()
    machine.registers[Register.CC] = 0x40000000
    update_cc(machine, 7)
    assert machine.registers[Register.CC] == 0


@pytest.mark.parametrize("value", [0, 1, -1, 12345, -(2**31), 2**31 - 1])
def test_binary_round_trip(value):
    text = int_to_binary(value)
    assert len(text) == 32
    assert binary_to_int(text) == value


def test_int_to_binary_all_ones():
    assert int_to_binary(-1) == "1" * 32


def test_binary_to_int_rejects_other_digits():
    with pytest.raises(ValueError):
        binary_to_int("102")


def test_mov_immediate_to_register():
    machine = make_machine()
    mov(machine, EAX, imm(-42))
    assert machine.get_value(EAX) == -42


def test_mov_through_memory():
    machine = make_machine()
    mov(machine, mem(Register.DS, 8), imm(300))
    mov(machine, EBX, mem(Register.DS, 8))
    assert machine.get_value(EBX) == 300


def test_add_then_sub_restores():
    machine = make_machine()
    machine.registers[Register.A] = 1000
    add(machine, EAX, imm(234))
    sub(machine, EAX, imm(234))
    assert machine.registers[Register.A] == 1000
    assert machine.registers[Register.CC] == 0


def test_add_to_zero_sets_zero_flag():
    machine = make_machine()
    machine.registers[Register.A] = 5
    add(machine, EAX, imm(-5))
    assert machine.registers[Register.A] == 0
    assert machine.registers[Register.CC] == 0x40000000


def test_swap_exchanges():
    machine = make_machine()
    machine.registers[Register.A] = 11
    machine.registers[Register.B] = -22
    swap(machine, EAX, EBX)
    assert machine.registers[Register.A] == -22
    assert machine.registers[Register.B] == 11


def test_mul_negative_result():
    machine = make_machine()
    machine.registers[Register.A] = 6
    mul(machine, EAX, imm(-7))
    assert machine.registers[Register.A] == -42
    assert machine.registers[Register.CC] & 0xFFFFFFFF == 0x80000000


@pytest.mark.parametrize("dividend,divisor", [(-7, 2), (7, -2), (100, 7), (-100, -7)])
def test_div_truncates_toward_zero(dividend, divisor):
    machine = make_machine()
    machine.registers[Register.A] = dividend
    div(machine, EAX, imm(divisor))
    quotient = machine.registers[Register.A]
    remainder = machine.registers[Register.AC]
    assert quotient * divisor + remainder == dividend
    assert abs(remainder) < abs(divisor)
    assert remainder == 0 or (remainder < 0) == (dividend < 0)


def test_div_by_zero_stops_machine():
    machine = make_machine()
    machine.registers[Register.A] = 9
    with pytest.raises(VMError) as info:
        div(machine, EAX, imm(0))
    assert info.value.code == ErrorCode.DIVISION_BY_ZERO
    assert machine.running is False


def test_cmp_leaves_operand():
    machine = make_machine()
    machine.registers[Register.A] = 3
    cmp(machine, EAX, imm(3))
    assert machine.registers[Register.A] == 3
    assert machine.registers[Register.CC] == 0x40000000


def test_shl_then_shr_restores():
    machine = make_machine()
    machine.registers[Register.A] = 77
    shl(machine, EAX, imm(4))
    shr(machine, EAX, imm(4))
    assert machine.registers[Register.A] == 77


def test_shr_is_arithmetic():
    machine = make_machine()
    machine.registers[Register.A] = -8
    shr(machine, EAX, imm(1))
    assert machine.registers[Register.A] < 0


def test_xor_self_is_zero():
    machine = make_machine()
    machine.registers[Register.A] = 0x1234
    xor(machine, EAX, EAX)
    assert machine.registers[Register.A] == 0
    assert machine.registers[Register.CC] == 0x40000000


def test_and_or_identities():
    machine = make_machine()
    machine.registers[Register.A] = 0x0F0F
    and_(machine, EAX, imm(0x0F0F))
    or_(machine, EAX, imm(0))
    assert machine.registers[Register.A] == 0x0F0F


def test_not_twice_restores():
    machine = make_machine()
    machine.registers[Register.A] = 12345
    not_(machine, EAX)
    assert machine.registers[Register.A] < 0
    not_(machine, EAX)
    assert machine.registers[Register.A] == 12345


def test_ldh_and_ldl_build_word():
    machine = make_machine()
    ldh(machine, EAX, imm(0x1234))
    ldl(machine, EAX, imm(0x5678))
    value = machine.registers[Register.A]
    assert (value >> 16) & 0xFFFF == 0x1234
    assert value & 0xFFFF == 0x5678


def test_rnd_within_bounds():
    machine = make_machine()
    for _ in range(50):
        rnd(machine, EAX, imm(5))
        assert 0 <= machine.registers[Register.A] <= 5


def test_rnd_rejects_nonpositive():
    machine = make_machine()
    machine.registers[Register.A] = 99
    rnd(machine, EAX, imm(0))
    assert machine.registers[Register.A] == 99
    assert "RDN no admite negativos" in machine.stdout.getvalue()


@pytest.mark.parametrize(
    "instruction,flags,taken",
    [
        (jz, 0x40000000, True),
        (jz, 0, False),
        (jnz, 0, True),
        (jnz, 0x40000000, False),
        (jn, -0x80000000, True),
        (jn, 0, False),
        (jnn, 0, True),
        (jnn, -0x80000000, False),
        (jp, 0, True),
        (jp, 0x40000000, False),
        (jnp, 0x40000000, True),
        (jnp, 0, False),
    ],
)
def test_conditional_jumps(instruction, flags, taken):
    machine = make_machine()
    machine.registers[Register.IP] = 0
    machine.registers[Register.CC] = flags
    instruction(machine, imm(10))
    assert (machine.registers[Register.IP] & 0xFFFF) == (10 if taken else 0)


def test_jump_outside_code_segment_faults():
    machine = make_machine(code_size=16)
    with pytest.raises(VMError) as info:
        jump(machine, imm(40))
    assert info.value.code == ErrorCode.SEGMENTATION_FAULT


def test_jmp_rejects_register_operand():
    machine = make_machine()
    machine.registers[Register.IP] = 3
    machine.registers[Register.A] = 10
    jmp(machine, EAX)
    assert machine.registers[Register.IP] == 3
    assert "JMP" in machine.stdout.getvalue()


def test_push_pop_round_trip():
    machine = make_v2()
    stack_pointer = machine.registers[Register.SP]
    push(machine, imm(1234))
    assert machine.registers[Register.SP] == stack_pointer - 4
    pop(machine, EBX)
    assert machine.registers[Register.B] == 1234
    assert machine.registers[Register.SP] == stack_pointer


def test_call_and_ret():
    machine = make_v2()
    return_address = machine.registers[Register.CS] + 3
    machine.registers[Register.IP] = return_address
    call(machine, imm(10))
    assert machine.registers[Register.IP] & 0xFFFF == 10
    ret(machine)
    assert machine.registers[Register.IP] == return_address


def test_stop_moves_ip_past_code():
    machine = make_machine(code_size=16)
    stop(machine)
    assert machine.running is False
    assert machine.registers[Register.IP] == 16


def _set_io(machine, mode, count, width):
    machine.registers[Register.A] = mode
    machine.registers[Register.C] = (width << 8) | count


def test_sys_write_decimal():
    machine = make_machine()
    machine.set_value(mem(Register.D), 1234)
    _set_io(machine, 1, 1, 4)
    sys_call(machine, imm(2))
    assert machine.stdout.getvalue().strip().endswith("1234")


def test_sys_write_hex():
    machine = make_machine()
    machine.set_value(mem(Register.D), 0xCAFE)
    _set_io(machine, 8, 1, 4)
    sys_call(machine, imm(2))
    assert "0x0000CAFE" in machine.stdout.getvalue()


def test_sys_write_binary():
    machine = make_machine()
    machine.set_value(mem(Register.D), 5)
    _set_io(machine, 16, 1, 4)
    sys_call(machine, imm(2))
    assert "0b" + int_to_binary(5) in machine.stdout.getvalue()


def test_sys_write_characters():
    machine = make_machine()
    base = data_base(machine)
    machine.memory[base:base + 4] = b"Hi!\x01"
    _set_io(machine, 2, 1, 4)
    sys_call(machine, imm(2))
    assert "Hi!." in machine.stdout.getvalue()


def test_sys_write_format_order():
    machine = make_machine()
    machine.set_value(mem(Register.D), 65)
    _set_io(machine, 0x1F, 1, 4)
    sys_call(machine, imm(2))
    text = machine.stdout.getvalue()
    assert text.index("0b") < text.index("0x") < text.index("0o")


@pytest.mark.parametrize("entry", [1234, -5])
def test_sys_read_decimal(entry):
    machine = make_machine(f"{entry}\n")
    _set_io(machine, 1, 1, 4)
    sys_call(machine, imm(1))
    assert machine.get_value(mem(Register.D)) == entry


def test_sys_read_hex():
    machine = make_machine("ff\n")
    _set_io(machine, 8, 1, 2)
    sys_call(machine, imm(1))
    base = data_base(machine)
    assert bytes(machine.memory[base:base + 2]) == b"\x00\xff"


def test_sys_read_octal():
    machine = make_machine("17\n")
    _set_io(machine, 4, 1, 1)
    sys_call(machine, imm(1))
    assert machine.memory[data_base(machine)] == 0o17


def test_sys_read_binary():
    machine = make_machine("101\n")
    _set_io(machine, 16, 1, 1)
    sys_call(machine, imm(1))
    assert machine.memory[data_base(machine)] == binary_to_int("101")


def test_sys_read_characters():
    machine = make_machine("ab\n")
    _set_io(machine, 2, 1, 2)
    sys_call(machine, imm(1))
    base = data_base(machine)
    assert bytes(machine.memory[base:base + 2]) == b"ab"


def test_sys_string_read_and_write():
    machine = make_machine("hello\n")
    machine.registers[Register.C] = 10
    sys_call(machine, imm(3))
    base = data_base(machine)
    assert bytes(machine.memory[base:base + 6]) == b"hello\x00"
    sys_call(machine, imm(4))
    assert machine.stdout.getvalue().endswith("hello")


def test_breakpoint_continue(tmp_path):
    machine = make_machine("g")
    machine.image_path = str(tmp_path / "snap.vmi")
    machine.breakpoint = True
    sys_call(machine, imm(15))
    assert machine.running is True
    assert machine.breakpoint is False
    assert (tmp_path / "snap.vmi").read_bytes().startswith(b"VMI25")


def test_breakpoint_quit(tmp_path):
    machine = make_machine("q", code_size=16)
    machine.image_path = str(tmp_path / "snap.vmi")
    sys_call(machine, imm(15))
    assert machine.running is False
    assert machine.registers[Register.IP] == 16


def test_breakpoint_step(tmp_path):
    machine = make_machine("\n")
    machine.image_path = str(tmp_path / "snap.vmi")
    sys_call(machine, imm(15))
    assert machine.running is True
    assert machine.breakpoint is True


def test_breakpoint_invalid_input(tmp_path):
    machine = make_machine("x")
    machine.image_path = str(tmp_path / "snap.vmi")
    sys_call(machine, imm(15))
    assert machine.running is False
    assert "entrada de consola invalida." in machine.stdout.getvalue()


def _program(machine, code):
    load_code_segment(machine, code)
    return machine.decode()


def test_run_mov_then_stop():
    code = bytes([0x90, 0x00, 0x05, 0xA0, 0x0F])
    machine = Machine(version=1, stdin=io.StringIO(), stdout=io.StringIO())
    init_v1(machine, len(code))
    run(machine, _program(machine, code))
    assert machine.registers[Register.A] == 5
    assert machine.running is False


def test_run_invalid_opcode():
    code = bytes([0x09])
    machine = Machine(version=1, stdin=io.StringIO(), stdout=io.StringIO())
    init_v1(machine, len(code))
    with pytest.raises(VMError) as info:
        run(machine, _program(machine, code))
    assert info.value.code == ErrorCode.INVALID_OPERATION


def test_run_ret_from_main_ends():
    machine = make_v2((0, 0, 1, 0, 0, 64))
    code = bytes([0x0E])
    run(machine, _program(machine, code))
    assert machine.registers[Register.IP] == -1