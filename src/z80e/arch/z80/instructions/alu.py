"""
Z80 算術論理演算 (ALU) 命令の実装。
"""
from typing import Optional

from z80e.arch.z80.state import Z80CpuState
from z80e.transport.bus import Bus
from z80e.core.operation import Operation
from z80e.arch.z80.alu import (
    ALU_MNEMONICS, alu8, inc8, dec8, add16, adc16, sbc16, rotate_a, daa,
    update_flags_sub8, calculate_parity
)
from .base import (
    get_register_name, get_register_value, set_register_value, get_ss_reg_name,
    get_hl_name, get_hl, set_hl, make_opcode_hex, split_opcode, index_prefix, operand_address
)

# --- Decoding Functions ---

# @intent:responsibility ADD A,r / ADC / SUB / SBC / AND / XOR / OR / CP r 形式の命令をデコードします。
def decode_alu_r(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """8ビットALU命令（レジスタオペランド）をデコードします。"""
    src_code = opcode & 0b111
    src_name = get_register_name(src_code, prefix)
    op_name = ALU_MNEMONICS[(opcode >> 3) & 0b111]
    opcode_hex = make_opcode_hex(prefix, opcode)

    if prefix and src_code == 0b110:
        d = bus.read(pc + 2)
        return Operation(
            opcode_hex=opcode_hex,
            mnemonic=f"{op_name}{src_name}".replace("+d)", f"+{d:02X}H)"),
            operands=[],
            cycle_count=19,
            length=3,
            operand_bytes=[d]
        )
    if prefix:
        cycles = 8
    else:
        cycles = 4 if src_name != "(HL)" else 7
    return Operation(
        opcode_hex=opcode_hex,
        mnemonic=f"{op_name}{src_name}",
        operands=[],
        cycle_count=cycles,
        length=2 if prefix else 1
    )

# @intent:responsibility ADD A,n / ... / CP n 形式の命令をデコードします。
def decode_alu_n(opcode: int, bus: Bus, pc: int) -> Operation:
    """8ビットALU命令（即値オペランド）をデコードします。"""
    n = bus.read(pc + 1)
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic=f"{ALU_MNEMONICS[(opcode >> 3) & 0b111]}n",
        operands=[f"${n:02X}"],
        cycle_count=7,
        length=2,
        operand_bytes=[n]
    )

# @intent:responsibility INC r / DEC r 形式の命令をデコードします。
def decode_inc_dec8(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """8ビットのINC/DEC命令をデコードします。"""
    reg_code = (opcode >> 3) & 0b111
    reg_name = get_register_name(reg_code, prefix)
    mnemonic = f"{'INC' if (opcode & 1) == 0 else 'DEC'} {reg_name}"
    opcode_hex = make_opcode_hex(prefix, opcode)
    if prefix and reg_code == 0b110:
        d = bus.read(pc + 2)
        return Operation(
            opcode_hex=opcode_hex,
            mnemonic=mnemonic.replace("+d)", f"+{d:02X}H)"),
            operands=[],
            cycle_count=23,
            length=3,
            operand_bytes=[d]
        )
    if prefix:
        cycles = 8
    else:
        cycles = 4 if reg_name != "(HL)" else 11
    return Operation(
        opcode_hex=opcode_hex,
        mnemonic=mnemonic,
        operands=[],
        cycle_count=cycles,
        length=2 if prefix else 1
    )

# @intent:responsibility INC ss / DEC ss 形式の命令をデコードします。
def decode_inc_dec16(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix)
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"{'DEC' if opcode & 0x08 else 'INC'} {ss_name}",
        operands=[],
        cycle_count=10 if prefix else 6,
        length=2 if prefix else 1
    )

# @intent:responsibility ADD HL,ss 形式の命令をデコードします。
def decode_add_hl_ss(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """ADD HL,ss命令をデコードします。"""
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix)
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"ADD {get_hl_name(prefix)},{ss_name}",
        operands=[],
        cycle_count=15 if prefix else 11,
        length=2 if prefix else 1
    )

# @intent:responsibility RLCA / RRCA / RLA / RRA をデコードします。
def decode_rotate_a(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = ["RLCA", "RRCA", "RLA", "RRA"][(opcode >> 3) & 0b11]
    return Operation(opcode_hex=f"{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=4, length=1)

# @intent:responsibility DAA / CPL / SCF / CCF をデコードします。
def decode_accumulator_misc(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = {0x27: "DAA", 0x2F: "CPL", 0x37: "SCF", 0x3F: "CCF"}[opcode]
    return Operation(opcode_hex=f"{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=4, length=1)

# --- ED Prefix Decoding Functions ---

def decode_ed_neg(opcode: int, bus: Bus, pc: int) -> Operation:
    """NEG命令（およびその未定義ミラー）をデコードします。"""
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic="NEG", operands=[], cycle_count=8, length=2)

# @intent:responsibility ADC HL,ss / SBC HL,ss をデコードします。
def decode_ed_adc_sbc_hl(opcode: int, bus: Bus, pc: int) -> Operation:
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11)
    op_name = "ADC" if opcode & 0x08 else "SBC"
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=f"{op_name} HL,{ss_name}", operands=[], cycle_count=15, length=2)

def decode_ed_rrd_rld(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = "RRD" if opcode == 0x67 else "RLD"
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=18, length=2)

# @intent:responsibility ブロック比較命令 CPI/CPD/CPIR/CPDR をデコードします。
def decode_ed_block_compare(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = {0xA1: "CPI", 0xA9: "CPD", 0xB1: "CPIR", 0xB9: "CPDR"}[opcode]
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=16, length=2)

# --- Execution Functions ---

def execute_alu_r(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix = index_prefix(operation)
    _, opcode = split_opcode(operation)
    src_code = opcode & 0b111
    address = operand_address(state, operation, prefix) if src_code == 0b110 else None
    value = get_register_value(state, bus, get_register_name(src_code, prefix), address)
    alu8(state, (opcode >> 3) & 0b111, value)

def execute_alu_n(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    alu8(state, (opcode >> 3) & 0b111, operation.operand_bytes[0])

def execute_inc_dec8(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix = index_prefix(operation)
    _, opcode = split_opcode(operation)
    reg_code = (opcode >> 3) & 0b111
    reg_name = get_register_name(reg_code, prefix)
    address = operand_address(state, operation, prefix) if reg_code == 0b110 else None
    val = get_register_value(state, bus, reg_name, address)
    result = inc8(state, val) if (opcode & 1) == 0 else dec8(state, val)
    set_register_value(state, bus, reg_name, result, address)

def execute_inc_dec16(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix, opcode = split_opcode(operation)
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix).lower()
    step = -1 if opcode & 0x08 else 1
    setattr(state, ss_name, (getattr(state, ss_name) + step) & 0xFFFF)

def execute_add_hl_ss(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix, opcode = split_opcode(operation)
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix).lower()
    base_val = get_hl(state, prefix)
    set_hl(state, add16(state, base_val, getattr(state, ss_name)), prefix)

def execute_rotate_a(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    rotate_a(state, (opcode >> 3) & 0b11)

def execute_accumulator_misc(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    if opcode == 0x27:
        daa(state)
    elif opcode == 0x2F: # CPL
        state.a = (~state.a) & 0xFF
        state.flag_h = True
        state.flag_n = True
    elif opcode == 0x37: # SCF
        state.flag_c = True
        state.flag_h = False
        state.flag_n = False
    else: # CCF: 直前のキャリーがHに入る
        state.flag_h = state.flag_c
        state.flag_c = not state.flag_c
        state.flag_n = False

def execute_ed_neg(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    value = state.a
    result = 0 - value
    update_flags_sub8(state, 0, value, result)
    state.a = result & 0xFF

def execute_ed_adc_sbc_hl(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    value = getattr(state, get_ss_reg_name((opcode >> 4) & 0b11).lower())
    if opcode & 0x08:
        state.hl = adc16(state, state.hl, value)
    else:
        state.hl = sbc16(state, state.hl, value)

# @intent:responsibility RRD/RLD: Aの下位4ビットと(HL)の間で4ビット単位の回転を行います。
def execute_ed_rrd_rld(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    mem = bus.read(state.hl)
    a = state.a
    if opcode == 0x67: # RRD
        new_mem = ((a & 0x0F) << 4) | (mem >> 4)
        state.a = (a & 0xF0) | (mem & 0x0F)
    else: # RLD
        new_mem = ((mem << 4) & 0xF0) | (a & 0x0F)
        state.a = (a & 0xF0) | (mem >> 4)
    bus.write(state.hl, new_mem)
    state.wz = (state.hl + 1) & 0xFFFF
    state.flag_s = (state.a & 0x80) != 0
    state.flag_z = state.a == 0
    state.flag_h = False
    state.flag_n = False
    state.flag_pv = calculate_parity(state.a)

def execute_ed_block_compare(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    """CPI/CPD/CPIR/CPDRを実行します。Cフラグは保持されます。"""
    _, opcode = split_opcode(operation)
    is_repeat = (opcode & 0x10) != 0
    step = -1 if opcode & 0x08 else 1

    value = bus.read(state.hl)
    result = state.a - value
    carry = state.flag_c
    update_flags_sub8(state, state.a, value, result)
    state.flag_c = carry
    state.hl = (state.hl + step) & 0xFFFF
    state.bc = (state.bc - 1) & 0xFFFF
    state.flag_pv = state.bc != 0
    state.wz = (state.wz + step) & 0xFFFF

    if is_repeat and state.bc != 0 and not state.flag_z:
        state.pc = (state.pc - 2) & 0xFFFF
        state.wz = (state.pc + 1) & 0xFFFF
        return 5
    return None
