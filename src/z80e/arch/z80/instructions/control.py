"""
Z80 制御命令（分岐、ビット操作、I/O、システム制御）の実装。
"""
from typing import Optional

from z80e.arch.z80.state import Z80CpuState
from z80e.transport.bus import Bus
from z80e.core.operation import Operation
from z80e.arch.z80.alu import SHIFT_MNEMONICS, rotate_shift8, bit_test, calculate_parity
from .base import (
    CONDITION_NAMES, get_register_name, get_register_value, set_register_value, get_hl_name,
    get_hl, make_opcode_hex, split_opcode, index_prefix, check_condition, signed_byte,
    operand_address, push_word, pop_word, read_nn
)

# --- Decoding Functions ---

def decode_00(opcode: int, bus: Bus, pc: int) -> Operation:
    """NOP命令をデコードします。"""
    return Operation(opcode_hex="00", mnemonic="NOP", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0x76 (HALT)をデコードします。
def decode_76(opcode: int, bus: Bus, pc: int) -> Operation:
    """HALT命令をデコードします。"""
    return Operation(opcode_hex="76", mnemonic="HALT", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0xFB (EI) をデコードします。
def decode_fb(opcode: int, bus: Bus, pc: int) -> Operation:
    """EI命令をデコードします。"""
    return Operation(opcode_hex="FB", mnemonic="EI", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0xF3 (DI) をデコードします。
def decode_f3(opcode: int, bus: Bus, pc: int) -> Operation:
    """DI命令をデコードします。"""
    return Operation(opcode_hex="F3", mnemonic="DI", operands=[], cycle_count=4, length=1)

# @intent:responsibility オペコード0xC3 (JP nn) をデコードします。
def decode_c3(opcode: int, bus: Bus, pc: int) -> Operation:
    """JP nn命令をデコードします。"""
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex="C3",
        mnemonic="JP nn",
        operands=[f"${nn:04X}"],
        cycle_count=10,
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility JP cc,nn 形式の命令をデコードします。
def decode_jp_cc_nn(opcode: int, bus: Bus, pc: int) -> Operation:
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic=f"JP {CONDITION_NAMES[(opcode >> 3) & 0b111]},nn",
        operands=[f"${nn:04X}"],
        cycle_count=10,
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility JP (HL) / JP (IX) / JP (IY) をデコードします。
def decode_e9(opcode: int, bus: Bus, pc: int, prefix: int = 0) -> Operation:
    return Operation(
        opcode_hex=make_opcode_hex(prefix, opcode),
        mnemonic=f"JP ({get_hl_name(prefix)})",
        operands=[],
        cycle_count=8 if prefix else 4,
        length=2 if prefix else 1
    )

# @intent:responsibility オペコード0x18 (JR e) をデコードします。
def decode_18(opcode: int, bus: Bus, pc: int) -> Operation:
    """JR e命令をデコードします。"""
    offset = bus.read(pc + 1)
    target = (pc + 2 + signed_byte(offset)) & 0xFFFF
    return Operation(
        opcode_hex="18",
        mnemonic="JR e",
        operands=[f"${target:04X}"],
        cycle_count=12,
        length=2,
        operand_bytes=[offset]
    )

# @intent:responsibility オペコード0x10 (DJNZ e) をデコードします。
def decode_10(opcode: int, bus: Bus, pc: int) -> Operation:
    """DJNZ e命令をデコードします。"""
    offset = bus.read(pc + 1)
    target = (pc + 2 + signed_byte(offset)) & 0xFFFF
    return Operation(
        opcode_hex="10",
        mnemonic="DJNZ e",
        operands=[f"${target:04X}"],
        cycle_count=8, # 13 if jump, 8 if no jump
        length=2,
        operand_bytes=[offset]
    )

# @intent:responsibility JR cc,e 形式の命令をデコードします。
def decode_jr_cc_e(opcode: int, bus: Bus, pc: int) -> Operation:
    """条件付き相対ジャンプ命令をデコードします。"""
    cc = CONDITION_NAMES[(opcode >> 3) & 0b11]
    offset = bus.read(pc + 1)
    target = (pc + 2 + signed_byte(offset)) & 0xFFFF
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic=f"JR {cc},e",
        operands=[f"${target:04X}"],
        cycle_count=7, # 12 if jump
        length=2,
        operand_bytes=[offset]
    )

# @intent:responsibility オペコード0xCD (CALL nn) をデコードします。
def decode_cd(opcode: int, bus: Bus, pc: int) -> Operation:
    """CALL nn命令をデコードします。"""
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex="CD",
        mnemonic="CALL nn",
        operands=[f"${nn:04X}"],
        cycle_count=17,
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

def decode_call_cc_nn(opcode: int, bus: Bus, pc: int) -> Operation:
    nn_low, nn_high, nn = read_nn(bus, pc + 1)
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic=f"CALL {CONDITION_NAMES[(opcode >> 3) & 0b111]},nn",
        operands=[f"${nn:04X}"],
        cycle_count=10, # 17 if taken
        length=3,
        operand_bytes=[nn_low, nn_high]
    )

# @intent:responsibility オペコード0xC9 (RET) をデコードします。
def decode_c9(opcode: int, bus: Bus, pc: int) -> Operation:
    """RET命令をデコードします。"""
    return Operation(opcode_hex="C9", mnemonic="RET", operands=[], cycle_count=10, length=1)

def decode_ret_cc(opcode: int, bus: Bus, pc: int) -> Operation:
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic=f"RET {CONDITION_NAMES[(opcode >> 3) & 0b111]}",
        operands=[],
        cycle_count=5, # 11 if taken
        length=1
    )

# @intent:responsibility RST p 形式の命令をデコードします。
def decode_rst(opcode: int, bus: Bus, pc: int) -> Operation:
    return Operation(
        opcode_hex=f"{opcode:02X}",
        mnemonic="RST p",
        operands=[f"${opcode & 0x38:02X}"],
        cycle_count=11,
        length=1
    )

# @intent:responsibility オペコード0xDB (IN A,(n)) をデコードします。
def decode_db(opcode: int, bus: Bus, pc: int) -> Operation:
    """IN A,(n)命令をデコードします。"""
    n = bus.read(pc + 1)
    return Operation(
        opcode_hex="DB",
        mnemonic="IN A,(n)",
        operands=[f"(${n:02X})"],
        cycle_count=11,
        length=2,
        operand_bytes=[n]
    )

# @intent:responsibility オペコード0xD3 (OUT (n),A) をデコードします。
def decode_d3(opcode: int, bus: Bus, pc: int) -> Operation:
    """OUT (n),A命令をデコードします。"""
    n = bus.read(pc + 1)
    return Operation(
        opcode_hex="D3",
        mnemonic="OUT (n),A",
        operands=[f"(${n:02X})"],
        cycle_count=11,
        length=2,
        operand_bytes=[n]
    )

# @intent:responsibility CBプレフィックス命令（ビット操作、シフト、ローテート）をデコードします。
# @intent:pre-condition opcodeはCBに続く2バイト目、pcはCBプレフィックスのアドレスです。
def decode_cb(opcode: int, bus: Bus, pc: int) -> Operation:
    """CBプレフィックス命令をデコードします。"""
    reg_name = get_register_name(opcode & 0b111)
    type_code = (opcode >> 6) & 0b11
    bit_index = (opcode >> 3) & 0b111

    if type_code == 0b01: # BIT b, r
        mnemonic = f"BIT {bit_index},{reg_name}"
        cycles = 8 if reg_name != "(HL)" else 12
    elif type_code == 0b10: # RES b, r
        mnemonic = f"RES {bit_index},{reg_name}"
        cycles = 8 if reg_name != "(HL)" else 15
    elif type_code == 0b11: # SET b, r
        mnemonic = f"SET {bit_index},{reg_name}"
        cycles = 8 if reg_name != "(HL)" else 15
    else: # 0b00: Shift/Rotate
        mnemonic = f"{SHIFT_MNEMONICS[bit_index]} {reg_name}"
        cycles = 8 if reg_name != "(HL)" else 15

    return Operation(
        opcode_hex=f"CB{opcode:02X}",
        mnemonic=mnemonic,
        operands=[],
        cycle_count=cycles,
        length=2
    )

# @intent:responsibility DD CB d op / FD CB d op 形式の命令をデコードします。
# @intent:pre-condition opcodeは最終バイト、pcはDD/FDプレフィックスのアドレスです。
# @intent:rationale レジスタフィールドが(HL)以外の未定義形式は、(IX+d)への演算結果をそのレジスタにもコピーします。
def decode_index_cb(opcode: int, bus: Bus, pc: int, prefix: int = 0xDD) -> Operation:
    d = bus.read(pc + 2)
    target = get_register_name(0b110, prefix).replace("+d)", f"+{d:02X}H)")
    reg_code = opcode & 0b111
    type_code = (opcode >> 6) & 0b11
    bit_index = (opcode >> 3) & 0b111

    if type_code == 0b01:
        mnemonic = f"BIT {bit_index},{target}"
    elif type_code == 0b10:
        mnemonic = f"RES {bit_index},{target}"
    elif type_code == 0b11:
        mnemonic = f"SET {bit_index},{target}"
    else:
        mnemonic = f"{SHIFT_MNEMONICS[bit_index]} {target}"
    if type_code != 0b01 and reg_code != 0b110:
        mnemonic += f",{get_register_name(reg_code)}"

    return Operation(
        opcode_hex=f"{prefix:02X}CB{opcode:02X}",
        mnemonic=mnemonic,
        operands=[],
        cycle_count=20 if type_code == 0b01 else 23,
        length=4,
        operand_bytes=[d]
    )

# --- ED Prefix Decoding Functions ---

# @intent:responsibility IN r,(C) (ED 40+8r) と OUT (C),r (ED 41+8r) をデコードします。
def decode_ed_io_c(opcode: int, bus: Bus, pc: int) -> Operation:
    reg_code = (opcode >> 3) & 0b111
    if opcode & 1:
        src = "0" if reg_code == 0b110 else get_register_name(reg_code)
        mnemonic = f"OUT (C),{src}"
    else:
        dest = "F" if reg_code == 0b110 else get_register_name(reg_code)
        mnemonic = f"IN {dest},(C)"
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=12, length=2)

# @intent:responsibility ブロックI/O命令 INI/IND/INIR/INDR/OUTI/OUTD/OTIR/OTDR をデコードします。
def decode_ed_block_io(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = {
        0xA2: "INI", 0xAA: "IND", 0xB2: "INIR", 0xBA: "INDR",
        0xA3: "OUTI", 0xAB: "OUTD", 0xB3: "OTIR", 0xBB: "OTDR",
    }[opcode]
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=16, length=2)

# @intent:responsibility IM 0/1/2（および未定義ミラー）をデコードします。
def decode_ed_im(opcode: int, bus: Bus, pc: int) -> Operation:
    mode = {0x00: 0, 0x10: 1, 0x18: 2, 0x08: 0}[opcode & 0x18]
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=f"IM {mode}", operands=[], cycle_count=8, length=2)

# @intent:responsibility RETN（および未定義ミラー）と RETI をデコードします。
def decode_ed_reti_retn(opcode: int, bus: Bus, pc: int) -> Operation:
    mnemonic = "RETI" if opcode == 0x4D else "RETN"
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic=mnemonic, operands=[], cycle_count=14, length=2)

# @intent:responsibility 未定義のEDオペコードを、2バイト・8 Tステートの何もしない命令としてデコードします。
def decode_ed_nop(opcode: int, bus: Bus, pc: int) -> Operation:
    return Operation(opcode_hex=f"ED{opcode:02X}", mnemonic="NOP*", operands=[f"$ED{opcode:02X}"], cycle_count=8, length=2)

# --- Execution Functions ---

def execute_00(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    # Intentional: NOP (No Operation)
    pass

def execute_76(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    # @intent:responsibility CPUをHALT（停止）状態にします。PCは既にHALTの次を指しています。
    state.halted = True

def execute_fb(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """EI命令を実行します。有効化は次の1命令の完了後に反映されます。"""
    state.iff1 = True
    state.iff2 = True
    state.ei_delay = True

def execute_f3(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """DI命令を実行します。"""
    state.iff1 = False
    state.iff2 = False

def execute_c3(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    low, high = operation.operand_bytes
    state.pc = (high << 8) | low
    state.wz = state.pc

def execute_jp_cc_nn(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    low, high = operation.operand_bytes
    state.wz = (high << 8) | low
    if check_condition(state, (opcode >> 3) & 0b111):
        state.pc = state.wz

def execute_e9(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    state.pc = get_hl(state, index_prefix(operation))

def execute_18(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    # Note: PC is already incremented by operation.length before execution
    state.pc = (state.pc + signed_byte(operation.operand_bytes[0])) & 0xFFFF
    state.wz = state.pc

def execute_10(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    state.b = (state.b - 1) & 0xFF
    if state.b != 0:
        state.pc = (state.pc + signed_byte(operation.operand_bytes[0])) & 0xFFFF
        state.wz = state.pc
        return 5
    return None

def execute_jr_cc_e(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    opcode = int(operation.opcode_hex, 16)
    if check_condition(state, (opcode >> 3) & 0b11):
        state.pc = (state.pc + signed_byte(operation.operand_bytes[0])) & 0xFFFF
        state.wz = state.pc
        return 5
    return None

def execute_cd(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    # CALL nn: PC is already at the instruction AFTER CALL nn
    push_word(state, bus, state.pc)
    nn_low, nn_high = operation.operand_bytes
    state.pc = (nn_high << 8) | nn_low
    state.wz = state.pc

def execute_call_cc_nn(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    opcode = int(operation.opcode_hex, 16)
    nn_low, nn_high = operation.operand_bytes
    state.wz = (nn_high << 8) | nn_low
    if check_condition(state, (opcode >> 3) & 0b111):
        push_word(state, bus, state.pc)
        state.pc = state.wz
        return 7
    return None

def execute_c9(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    # RET: Pop PC from stack
    state.pc = pop_word(state, bus)
    state.wz = state.pc

def execute_ret_cc(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    opcode = int(operation.opcode_hex, 16)
    if check_condition(state, (opcode >> 3) & 0b111):
        execute_c9(state, bus, operation)
        return 6
    return None

def execute_rst(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    opcode = int(operation.opcode_hex, 16)
    push_word(state, bus, state.pc)
    state.pc = opcode & 0x38
    state.wz = state.pc

def execute_db(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """IN A,(n)命令を実行します。"""
    address = (state.a << 8) | operation.operand_bytes[0]
    state.a = bus.read_io(address)
    state.wz = (address + 1) & 0xFFFF

def execute_d3(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """OUT (n),A命令を実行します。"""
    port = operation.operand_bytes[0]
    bus.write_io((state.a << 8) | port, state.a)
    state.wz = (state.a << 8) | ((port + 1) & 0xFF)

def execute_cb(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """CBプレフィックス命令を実行します。"""
    _, cb_opcode = split_opcode(operation)
    reg_name = get_register_name(cb_opcode & 0b111)
    type_code = (cb_opcode >> 6) & 0b11
    bit_index = (cb_opcode >> 3) & 0b111

    val = get_register_value(state, bus, reg_name)

    if type_code == 0b01: # BIT b, r
        bit_test(state, val, bit_index)
    elif type_code == 0b10: # RES b, r
        set_register_value(state, bus, reg_name, val & ~(1 << bit_index))
    elif type_code == 0b11: # SET b, r
        set_register_value(state, bus, reg_name, val | (1 << bit_index))
    else: # 0b00: Shift/Rotate
        set_register_value(state, bus, reg_name, rotate_shift8(state, val, bit_index))

def execute_index_cb(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """DD CB / FD CB 命令を実行します。"""
    prefix, opcode = split_opcode(operation)
    address = operand_address(state, operation, prefix)
    reg_code = opcode & 0b111
    type_code = (opcode >> 6) & 0b11
    bit_index = (opcode >> 3) & 0b111

    val = bus.read(address)
    if type_code == 0b01:
        bit_test(state, val, bit_index)
        return
    if type_code == 0b10:
        result = val & ~(1 << bit_index) & 0xFF
    elif type_code == 0b11:
        result = val | (1 << bit_index)
    else:
        result = rotate_shift8(state, val, bit_index)

    bus.write(address, result)
    if reg_code != 0b110:
        set_register_value(state, bus, get_register_name(reg_code), result)

def execute_ed_io_c(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    _, opcode = split_opcode(operation)
    reg_code = (opcode >> 3) & 0b111
    address = state.bc
    if opcode & 1: # OUT (C),r
        value = 0 if reg_code == 0b110 else get_register_value(state, bus, get_register_name(reg_code))
        bus.write_io(address, value)
    else: # IN r,(C)
        value = bus.read_io(address)
        if reg_code != 0b110:
            set_register_value(state, bus, get_register_name(reg_code), value)
        state.flag_s = (value & 0x80) != 0
        state.flag_z = value == 0
        state.flag_h = False
        state.flag_pv = calculate_parity(value)
        state.flag_n = False
    state.wz = (address + 1) & 0xFFFF

def execute_ed_block_io(state: Z80CpuState, bus: Bus, operation: Operation) -> Optional[int]:
    """INI/IND/INIR/INDR/OUTI/OUTD/OTIR/OTDRを実行します。"""
    _, opcode = split_opcode(operation)
    is_repeat = (opcode & 0x10) != 0
    step = -1 if opcode & 0x08 else 1

    if opcode & 1: # OUT系: Bを減らしてからポートに出力
        value = bus.read(state.hl)
        state.b = (state.b - 1) & 0xFF
        bus.write_io(state.bc, value)
    else: # IN系: ポートから読み込んでからBを減らす
        value = bus.read_io(state.bc)
        bus.write(state.hl, value)
        state.b = (state.b - 1) & 0xFF
    state.hl = (state.hl + step) & 0xFFFF

    state.flag_z = state.b == 0
    state.flag_s = (state.b & 0x80) != 0
    state.flag_n = True

    if is_repeat and state.b != 0:
        state.pc = (state.pc - 2) & 0xFFFF
        return 5
    return None

def execute_im(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """IM 0/1/2命令を実行します。"""
    _, opcode = split_opcode(operation)
    state.im = {0x00: 0, 0x10: 1, 0x18: 2, 0x08: 0}[opcode & 0x18]

def execute_reti_retn(state: Z80CpuState, bus: Bus, operation: Operation) -> None:
    """RETI/RETN命令を実行します。"""
    execute_c9(state, bus, operation)
    # IFF2をIFF1にコピー（RETIも同様に振る舞う）
    state.iff1 = state.iff2
