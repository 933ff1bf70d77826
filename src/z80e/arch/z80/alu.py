"""
Z80 ALU (算術論理演算ユニット) およびフラグ操作ユーティリティ。

演算結果に基づいた正確なフラグ（S, Z, H, P/V, N, C）の計算と更新を担当します。
未定義ビット（ビット3, 5）は扱いません。
"""
from z80e.arch.z80.state import Z80CpuState

# @intent:constant 8ビットALU命令の演算コード（オペコードのビット5-3）とニーモニックの対応。
ALU_MNEMONICS = ["ADD A,", "ADC A,", "SUB ", "SBC A,", "AND ", "XOR ", "OR ", "CP "]

# @intent:constant CBプレフィックスのローテート/シフト命令（ビット5-3）のニーモニック。
SHIFT_MNEMONICS = ["RLC", "RRC", "RL", "RR", "SLA", "SRA", "SLL", "SRL"]


# @intent:responsibility 指定されたバイト値のパリティ（ビット1の数が偶数ならTrue）を計算します。
def calculate_parity(val: int) -> bool:
    """8ビット値のパリティ（偶数ならTrue）を計算します。"""
    val ^= val >> 4
    val ^= val >> 2
    val ^= val >> 1
    return (val & 1) == 0

# @intent:responsibility 8ビット加算の結果に基づいて全フラグを更新します。
def update_flags_add8(state: Z80CpuState, val1: int, val2: int, result: int, carry_in: int = 0) -> None:
    """ADD/ADC命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    state.flag_h = ((val1 & 0x0F) + (val2 & 0x0F) + carry_in) > 0x0F
    # Overflow: 同符号の加算で結果の符号が変わった場合
    state.flag_pv = ((val1 ^ res8) & (val2 ^ res8) & 0x80) != 0
    state.flag_n = False
    state.flag_c = result > 0xFF

# @intent:responsibility 8ビット減算の結果に基づいて全フラグを更新します。
def update_flags_sub8(state: Z80CpuState, val1: int, val2: int, result: int, borrow_in: int = 0) -> None:
    """SUB/SBC/CP命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    state.flag_h = ((val1 & 0x0F) - (val2 & 0x0F) - borrow_in) < 0
    # Overflow: 異符号の減算で結果の符号が第一オペランドと異なる場合
    state.flag_pv = ((val1 ^ val2) & (val1 ^ res8) & 0x80) != 0
    state.flag_n = True
    state.flag_c = result < 0

# @intent:responsibility 8ビット論理演算の結果に基づいてフラグを更新します。
def update_flags_logic8(state: Z80CpuState, result: int, h_flag: bool = False) -> None:
    """AND/OR/XOR命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    state.flag_h = h_flag # ANDならTrue, OR/XORならFalse
    state.flag_pv = calculate_parity(res8)
    state.flag_n = False
    state.flag_c = False

# @intent:responsibility インクリメント/デクリメント命令のフラグを更新します（Cフラグは変化しません）。
def update_flags_inc_dec8(state: Z80CpuState, val: int, result: int, is_inc: bool) -> None:
    """INC/DEC命令のフラグを更新します。Cフラグは保持されます。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0

    if is_inc:
        state.flag_h = (val & 0x0F) == 0x0F
        state.flag_pv = val == 0x7F # 127 -> -128
        state.flag_n = False
    else:
        state.flag_h = (val & 0x0F) == 0x00
        state.flag_pv = val == 0x80 # -128 -> 127
        state.flag_n = True

# @intent:responsibility 16ビット加算の結果に基づいてフラグ（H, N, C）を更新します。
# @intent:rationale Z, S, P/Vフラグは影響を受けないことに注意してください。
def update_flags_add16(state: Z80CpuState, val1: int, val2: int, result: int) -> None:
    """ADD HL,ss命令のフラグを更新します。"""
    # Half Carry: Bit 11から12へのキャリー
    state.flag_h = ((val1 & 0x0FFF) + (val2 & 0x0FFF)) > 0x0FFF
    state.flag_n = False
    state.flag_c = result > 0xFFFF

# --- 演算 ---

# @intent:responsibility Aレジスタとvalueに対して8ビットALU演算を行います。CPは結果をAに格納しません。
def alu8(state: Z80CpuState, op_index: int, value: int) -> None:
    a = state.a
    carry = 1 if state.flag_c else 0
    if op_index == 0: # ADD
        result = a + value
        update_flags_add8(state, a, value, result)
        state.a = result & 0xFF
    elif op_index == 1: # ADC
        result = a + value + carry
        update_flags_add8(state, a, value, result, carry)
        state.a = result & 0xFF
    elif op_index == 2: # SUB
        result = a - value
        update_flags_sub8(state, a, value, result)
        state.a = result & 0xFF
    elif op_index == 3: # SBC
        result = a - value - carry
        update_flags_sub8(state, a, value, result, carry)
        state.a = result & 0xFF
    elif op_index == 4: # AND
        state.a = a & value
        update_flags_logic8(state, state.a, h_flag=True)
    elif op_index == 5: # XOR
        state.a = a ^ value
        update_flags_logic8(state, state.a)
    elif op_index == 6: # OR
        state.a = a | value
        update_flags_logic8(state, state.a)
    else: # CP
        update_flags_sub8(state, a, value, a - value)

def inc8(state: Z80CpuState, value: int) -> int:
    result = (value + 1) & 0xFF
    update_flags_inc_dec8(state, value, result, is_inc=True)
    return result

def dec8(state: Z80CpuState, value: int) -> int:
    result = (value - 1) & 0xFF
    update_flags_inc_dec8(state, value, result, is_inc=False)
    return result

def add16(state: Z80CpuState, val1: int, val2: int) -> int:
    result = val1 + val2
    update_flags_add16(state, val1, val2, result)
    state.wz = (val1 + 1) & 0xFFFF
    return result & 0xFFFF

# @intent:responsibility ADC HL,ss を計算します。16ビット演算ですが全フラグが変化します。
def adc16(state: Z80CpuState, val1: int, val2: int) -> int:
    carry = 1 if state.flag_c else 0
    result = val1 + val2 + carry
    res16 = result & 0xFFFF
    state.flag_s = (res16 & 0x8000) != 0
    state.flag_z = res16 == 0
    state.flag_h = ((val1 & 0x0FFF) + (val2 & 0x0FFF) + carry) > 0x0FFF
    state.flag_pv = ((val1 ^ res16) & (val2 ^ res16) & 0x8000) != 0
    state.flag_n = False
    state.flag_c = result > 0xFFFF
    state.wz = (val1 + 1) & 0xFFFF
    return res16

def sbc16(state: Z80CpuState, val1: int, val2: int) -> int:
    carry = 1 if state.flag_c else 0
    result = val1 - val2 - carry
    res16 = result & 0xFFFF
    state.flag_s = (res16 & 0x8000) != 0
    state.flag_z = res16 == 0
    state.flag_h = ((val1 & 0x0FFF) - (val2 & 0x0FFF) - carry) < 0
    state.flag_pv = ((val1 ^ val2) & (val1 ^ res16) & 0x8000) != 0
    state.flag_n = True
    state.flag_c = result < 0
    state.wz = (val1 + 1) & 0xFFFF
    return res16

# @intent:responsibility CBプレフィックスのローテート/シフト命令を計算し、フラグを更新して結果を返します。
def rotate_shift8(state: Z80CpuState, value: int, op_index: int) -> int:
    carry_in = 1 if state.flag_c else 0
    if op_index == 0: # RLC
        carry = value >> 7
        result = ((value << 1) | carry) & 0xFF
    elif op_index == 1: # RRC
        carry = value & 1
        result = (value >> 1) | (carry << 7)
    elif op_index == 2: # RL
        carry = value >> 7
        result = ((value << 1) | carry_in) & 0xFF
    elif op_index == 3: # RR
        carry = value & 1
        result = (value >> 1) | (carry_in << 7)
    elif op_index == 4: # SLA
        carry = value >> 7
        result = (value << 1) & 0xFF
    elif op_index == 5: # SRA
        carry = value & 1
        result = (value >> 1) | (value & 0x80)
    elif op_index == 6: # SLL (undocumented: bit0 <- 1)
        carry = value >> 7
        result = ((value << 1) | 1) & 0xFF
    else: # SRL
        carry = value & 1
        result = value >> 1

    update_flags_logic8(state, result)
    state.flag_c = carry == 1
    return result

# @intent:responsibility RLCA/RRCA/RLA/RRAを実行します。S, Z, P/Vは変化しません。
def rotate_a(state: Z80CpuState, op_index: int) -> None:
    value = state.a
    carry_in = 1 if state.flag_c else 0
    if op_index == 0: # RLCA
        carry = value >> 7
        result = ((value << 1) | carry) & 0xFF
    elif op_index == 1: # RRCA
        carry = value & 1
        result = (value >> 1) | (carry << 7)
    elif op_index == 2: # RLA
        carry = value >> 7
        result = ((value << 1) | carry_in) & 0xFF
    else: # RRA
        carry = value & 1
        result = (value >> 1) | (carry_in << 7)
    state.a = result
    state.flag_h = False
    state.flag_n = False
    state.flag_c = carry == 1

# @intent:responsibility BIT b,r のフラグを更新します。P/VはZと同じ値になります。
def bit_test(state: Z80CpuState, value: int, bit_index: int) -> None:
    res = value & (1 << bit_index)
    state.flag_z = res == 0
    state.flag_h = True
    state.flag_n = False
    state.flag_s = bit_index == 7 and res != 0
    state.flag_pv = state.flag_z

# @intent:responsibility 直前の加減算の結果をBCDに補正します。
def daa(state: Z80CpuState) -> None:
    a = state.a
    correction = 0
    carry = state.flag_c
    if state.flag_h or (a & 0x0F) > 9:
        correction |= 0x06
    if carry or a > 0x99:
        correction |= 0x60
        carry = True

    if state.flag_n:
        half = state.flag_h and (a & 0x0F) < 6
        result = (a - correction) & 0xFF
    else:
        half = (a & 0x0F) > 9
        result = (a + correction) & 0xFF

    state.a = result
    state.flag_s = (result & 0x80) != 0
    state.flag_z = result == 0
    state.flag_h = half
    state.flag_pv = calculate_parity(result)
    state.flag_c = carry
