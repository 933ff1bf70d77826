"""
Z80 データ転送命令（8/16ビットロード、スタック、交換、ブロック転送）の実装。
"""
from typing import Optional

from z80e.arch.z80.state import Z80CpuState
from z80e.transport.bus import Bus
from z80e.core.operation import Operation
from .base import (
    get_register_name, get_register_value, set_register_value, get_push_pop_reg_name,
    get_ss_reg_name, get_hl_name, get_hl, set_hl, make_opcode_hex, split_opcode,
    index_prefix, operand_address, push_word, pop_word, read_nn
)

# --- Decoding Functions ---
# 全てのデコード関数は pc に命令の先頭（プレフィックスがあればプレフィックス）のアドレスを受け取ります。

# @intent:responsibility LD r,r'形式の命令をデコードします。
def decode_ld_r_r_prime(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """汎用的なLD r,r'命令をデコードします。"""
    dest_code = (opcode >> 3) & 0b111
    src_code = opcode & 0b111
    opcode_hex = make_opcode_hex(prefix, opcode)

    if prefix and 0b110 in (dest_code, src_code):
        # LD r,(IX+d) / LD (IX+d),r: H/Lは置き換えない
        d = bus.read(pc + 2)
        dest = get_register_name(dest_code, prefix if dest_code == 0b110 else 0)
        src = get_register_name(src_code, prefix if src_code == 0b110 else 0)
        return Operation(
            opcode_hex=opcode_hex,
            mnemonic=f"LD {dest},{src}".replace("+d)", f"+{d:02X}H)"),
            operands=[],
            cycle_count=19,
            length=3,
            operand_bytes=[d]
        )

    dest = get_register_name(dest_code, prefix)
    src = get_register_name(src_code, prefix)
    if prefix:
        cycles = 8
    else:
        cycles = 4 if "(HL)" not in [dest, src] else 7
    return Operation(
        opcode_hex=opcode_hex,
        mnemonic=f"LD {dest},{src}",
        operands=[],
        cycle_count=cycles,
        length=2 if prefix else 1
    )

# @intent:responsibility LD r,n 形式の命令をデコードします。
def decode_ld_r_n(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """LD r,n命令をデコードします。"""
    reg_code = (opcode >> 3) & 0b111
    reg_name = get_register_name(reg_code, prefix)
    opcode_hex = make_opcode_hex(prefix, opcode)
    if prefix and reg_code == 0b110:
        d = bus.read(pc + 2)
        n = bus.read(pc + 3)
        return Operation(
            opcode_hex=opcode_hex,
            mnemonic=f"LD {reg_name},n".replace("+d)", f"+{d:02X}H)"),
            operands=[f"${n:02X}"],
            cycle_count=19,
            length=4,
            operand_bytes=[d, n]
        )
    offset = 2 if prefix else 1
    n = bus.read(pc + offset)
    if prefix:
        cycles = 11
    else:
        cycles = 7 if reg_name != "(HL)" else 10
    return Operation(
        opcode_hex=opcode_hex,
        mnemonic=f"LD {reg_name},n",
        operands=[f"${n:02X}"],
        cycle_count=cycles,
        length=offset + 1,
        operand_bytes=[n]
    )

# @intent:responsibility LD ss,nn 形式の命令をデコードします。
def decode_ld_ss_nn(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """LD ss,nn命令をデコードします。"""
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix)
    offset = 2 if prefix else 1
    nn_low, nn_high, nn = read_nn(bus, pc + offset)
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"LD {ss_name},nn",
        operands=[f"${nn:04X}"],
        cycle_count=14 if prefix else 10,
        length=offset + 2,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility LD (BC),A / LD (DE),A / LD A,(BC) / LD A,(DE) をデコードします。
def decode_ld_indirect_a(opcode: int, bus: Bus, pc: int) -> Operation:
    pair = "BC" if opcode & 0x10 == 0 else "DE"
    if opcode & 0x08:
        mnemonic = f"LD A,({pair})"
    else:
        mnemonic = f"LD ({pair}),A"
    return Operation(opcode_hex=f"{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=7, length=1)

def decode_ld_a_nn(opcode: int, bus: Bus, pc: int) -> Operation:
    """LD A,(nn) 命令をデコードします。"""
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex="3A",
        mnemonic="LD A,(nn)",
        operands=[f"(${nn:04X})"],
        cycle_count=13,
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

def decode_ld_nn_a(opcode: int, bus: Bus, pc: int) -> Operation:
    """LD (nn),A 命令をデコードします。"""
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex="32",
        mnemonic="LD (nn),A",
        operands=[f"(${nn:04X})"],
        cycle_count=13,
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility LD (nn),HL (0x22) と LD HL,(nn) (0x2A)、およびそのIX/IY形式をデコードします。
def decode_ld_hl_indirect(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    name = get_hl_name(prefix)
    offset = 2 if prefix else 1
    nn_low, nn_high, nn = read_nn(bus, pc + offset)
    mnemonic = f"LD (nn),{name}" if opcode == 0x22 else f"LD {name},(nn)"
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=mnemonic,
        operands=[f"(${nn:04X})"],
        cycle_count=20 if prefix else 16,
        length=offset + 2,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility LD SP,HL / LD SP,IX / LD SP,IY をデコードします。
def decode_ld_sp_hl(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"LD SP,{get_hl_name(prefix)}",
        operands=[],
        cycle_count=10 if prefix else 6,
        length=2 if prefix else 1
    )

def decode_push_pop(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    """PUSH/POP命令をデコードします。"""
    reg_name = get_push_pop_reg_name((opcode >> 4) & 0b11, prefix)
    is_push = (opcode & 0x0F) == 0x05
    if is_push:
        cycles = 15 if prefix else 11
    else:
        cycles = 14 if prefix else 10
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"{'PUSH' if is_push else 'POP'} {reg_name}",
        operands=[],
        cycle_count=cycles,
        length=2 if prefix else 1
    )

# @intent:responsibility オペコード0x08 (EX AF,AF') をデコードします。
def decode_08(opcode: int, bus: Bus, pc: int) -> Operation:
    """EX AF,AF'命令をデコードします。"""
    return Operation(opcode_hex="08", mnemonic="EX AF,AF'", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0xEB (EX DE,HL) をデコードします。
def decode_eb(opcode: int, bus: Bus, pc: int) -> Operation:
    """EX DE,HL命令をデコードします。"""
    return Operation(opcode_hex="EB", mnemonic="EX DE,HL", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0xD9 (EXX) をデコードします。
def decode_d9(opcode: int, bus: Bus, pc: int) -> Operation:
    """EXX命令をデコードします。"""
    return Operation(opcode_hex="D9", mnemonic="EXX", operands=[], cycle_count=4, length=1)

# @intent:responsibility EX (SP),HL / EX (SP),IX / EX (SP),IY をデコードします。
def decode_e3(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"EX (SP),{get_hl_name(prefix)}",
        operands=[],
        cycle_count=23 if prefix else 19,
        length=2 if prefix else 1
    )

# --- ED Prefix Decoding Functions ---

# @intent:responsibility LD (nn),rr (ED 43/53/63/73) と LD rr,(nn) (ED 4B/5B/6B/7B) をデコードします。
def decode_ed_ld_rr_indirect(opcode: int, bus: Bus, pc: int) -> Operation:
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11)
    nn_low, nn_high, nn = read_nn(bus, pc + 2)
    if opcode & 0x08:
        mnemonic = f"LD {ss_name},(nn)"
    else:
        mnemonic = f"LD (nn),{ss_name}"
    return Operation(
        opcode_hex=f"ED{opcode:02X}",
        mnemonic=mnemonic,
        operands=[f"(${nn:04X})"],
        cycle_count=20,
        length=4,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility LD I,A / LD R,A / LD A,I / LD A,R をデコードします。
def decode_ed_ld_ir(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = {0x47: "LD I,A", 0x4F: "LD R,A", 0x57: "LD A,I", 0x5F: "LD A,R"}[opcode]
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=9, length=2)

# @intent:responsibility ブロック転送命令 LDI/LDD/LDIR/LDDR をデコードします。
def decode_ed_block_transfer(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = {0xA0: "LDI", 0xA8: "LDD", 0xB0: "LDIR", 0xB8: "LDDR"}[opcode]
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=16, length=2)

# --- Execution Functions ---

def execute_ld_r_r_prime(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    prefix = index_prefix(operation)
    dest_code = (opcode >> 3) & 0b111
    src_code = opcode & 0b111
    address = None
    if 0b110 in (dest_code, src_code):
        address = operand_address(state, operation, prefix)
        # (IX+d) を伴う場合、もう一方のH/Lは置き換えない
        prefix = 0
    dest_name = get_register_name(dest_code, prefix)
    src_name = get_register_name(src_code, prefix)
    val = get_register_value(state, bus, src_name, address)
    set_register_value(state, bus, dest_name, val, address)

def execute_ld_r_n(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix = index_prefix(operation)
    _, opcode = split_opcode(operation)
    reg_code = (opcode >> 3) & 0b111
    reg_name = get_register_name(reg_code, prefix)
    address = operand_address(state, operation, prefix) if reg_code == 0b110 else None
    set_register_value(state, bus, reg_name, operation.operand_bytes[-1], address)

def execute_ld_ss_nn(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix, opcode = split_opcode(operation)
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11, prefix).lower()
    nn_low, nn_high = operation.operand_bytes
    setattr(state, ss_name, (nn_high << 8) | nn_low)

def execute_ld_indirect_a(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    address = state.bc if opcode & 0x10 == 0 else state.de
    if opcode & 0x08:
        state.a = bus.read(address)
    else:
        bus.write(address, state.a)
    state.wz = (address + 1) & 0xFFFF

def execute_ld_a_nn(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """LD A,(nn)を実行します。"""
    nn_low, nn_high = operation.operand_bytes
    addr = (nn_high << 8) | nn_low
    state.a = bus.read(addr)
    state.wz = (addr + 1) & 0xFFFF

def execute_ld_nn_a(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """LD (nn),Aを実行します。"""
    nn_low, nn_high = operation.operand_bytes
    addr = (nn_high << 8) | nn_low
    bus.write(addr, state.a)
    state.wz = (addr + 1) & 0xFFFF

def execute_ld_hl_indirect(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix, opcode = split_opcode(operation)
    nn_low, nn_high = operation.operand_bytes
    addr = (nn_high << 8) | nn_low
    if opcode == 0x22:
        bus.write_word(addr, get_hl(state, prefix))
    else:
        set_hl(state, bus.read_word(addr), prefix)
    state.wz = (addr + 1) & 0xFFFF

def execute_ld_sp_hl(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    state.sp = get_hl(state, index_prefix(operation))

def execute_push_pop(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    prefix, opcode = split_opcode(operation)
    reg_name = get_push_pop_reg_name((opcode >> 4) & 0b11, prefix).lower()
    if (opcode & 0x0F) == 0x05:
        push_word(state, bus, getattr(state, reg_name))
    else:
        setattr(state, reg_name, pop_word(state, bus))

def execute_08(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """EX AF,AF'命令を実行します。"""
    state.af, state.af_ = state.af_, state.af

def execute_eb(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """EX DE,HL命令を実行します。"""
    state.de, state.hl = state.hl, state.de

def execute_d9(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """EXX命令を実行します。"""
    state.bc, state.bc_ = state.bc_, state.bc
    state.de, state.de_ = state.de_, state.de
    state.hl, state.hl_ = state.hl_, state.hl

def execute_e3(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """EX (SP),HL / EX (SP),IX / EX (SP),IY 命令を実行します。"""
    prefix = index_prefix(operation)
    value = bus.read_word(state.sp)
    bus.write_word(state.sp, get_hl(state, prefix))
    set_hl(state, value, prefix)
    state.wz = value

def execute_ed_ld_rr_indirect(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    ss_name = get_ss_reg_name((opcode >> 4) & 0b11).lower()
    nn_low, nn_high = operation.operand_bytes
    addr = (nn_high << 8) | nn_low
    if opcode & 0x08:
        setattr(state, ss_name, bus.read_word(addr))
    else:
        bus.write_word(addr, getattr(state, ss_name))
    state.wz = (addr + 1) & 0xFFFF

def execute_ed_ld_ir(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    if opcode == 0x47:
        state.i = state.a
    elif opcode == 0x4F:
        state.r = state.a
    else:
        # LD A,I / LD A,R: P/VにはIFF2がコピーされる
        state.a = state.i if opcode == 0x57 else state.r
        state.flag_s = (state.a & 0x80) != 0
        state.flag_z = state.a == 0
        state.flag_h = False
        state.flag_n = False
        state.flag_pv = state.iff2

def execute_ed_block_transfer(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    """LDI/LDD/LDIR/LDDRを実行します。"""
    _, opcode = split_opcode(operation)
    is_repeat = (opcode & 0x10) != 0
    is_decrement = (opcode & 0x08) != 0

    # 1 byte transfer
    bus.write(state.de, bus.read(state.hl))
    step = -1 if is_decrement else 1
    state.hl = (state.hl + step) & 0xFFFF
    state.de = (state.de + step) & 0xFFFF
    state.bc = (state.bc - 1) & 0xFFFF

    # Flags (S, Z, C are preserved)
    state.flag_n = False
    state.flag_h = False
    state.flag_pv = state.bc != 0

    if is_repeat and state.bc != 0:
        # PCをこの命令の先頭に戻し、次の命令境界で再び実行されるようにする
        state.pc = (state.pc - 2) & 0xFFFF
        state.wz = (state.pc + 1) & 0xFFFF
        return 5
    return None
