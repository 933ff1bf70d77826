"""
Z80命令セット実装のための共通ヘルパー関数と定数。

オペコードのビットフィールドからレジスタ名を求め、DD/FDプレフィックスによる
HL → IX/IY（H/L → IXH/IXL、(HL) → (IX+d)）の置き換えもここで解決します。
"""
from typing import Tuple

from z80e.arch.z80.state import Z80CpuState
from z80e.core.operation import Operation
from z80e.transport.bus import Bus

# Helper functions for register mapping
REGISTER_CODES = {
    0b000: "B", 0b001: "C", 0b010: "D", 0b011: "E",
    0b100: "H", 0b101: "L", 0b110: "(HL)", 0b111: "A"
}

INDEX_PREFIXES = {0xDD: "IX", 0xFD: "IY"}

CONDITION_NAMES = ["NZ", "Z", "NC", "C", "PO", "PE", "P", "M"]

# @intent:utility_function 指定されたコードに対応するレジスタ名を返します。
# @intent:rationale prefixにDD/FDを渡すと、H/LはIXH/IXLに、(HL)は(IX+d)に置き換わります。
def get_register_name(code: int, prefix: int = 0) -> str:
    name = REGISTER_CODES.get(code, "UNKNOWN_REG")
    index = INDEX_PREFIXES.get(prefix)
    if index is None:
        return name
    if code == 0b110:
        return f"({index}+d)"
    if code in (0b100, 0b101):
        return index + name
    return name

# @intent:utility_function レジスタ名（またはメモリオペランド）に基づいて現在の値を取得します。
def get_register_value(state: Z80CpuState, bus: Bus, reg_name: str, address: int = None) -> int:
    if reg_name.startswith("("):
        return bus.read(state.hl if address is None else address)
    return getattr(state, reg_name.lower())

# @intent:utility_function レジスタ名（またはメモリオペランド）に値を設定します。
def set_register_value(state: Z80CpuState, bus: Bus, reg_name: str, value: int, address: int = None) -> None:
    if reg_name.startswith("("):
        bus.write(state.hl if address is None else address, value & 0xFF)
    else:
        setattr(state, reg_name.lower(), value & 0xFF)

# @intent:utility_function HL、またはプレフィックスに応じてIX/IYの名前を返します。
def get_hl_name(prefix: int = 0) -> str:
    return INDEX_PREFIXES.get(prefix, "HL")

# @intent:utility_function PUSH/POP命令で使用されるレジスタペア名を返します。
def get_push_pop_reg_name(code: int, prefix: int = 0) -> str:
    name = {0b00: "BC", 0b01: "DE", 0b10: "HL", 0b11: "AF"}.get(code, "UNKNOWN")
    return get_hl_name(prefix) if name == "HL" else name

# @intent:utility_function 16ビット演算で使用されるレジスタペア名(ss)を返します。
def get_ss_reg_name(code: int, prefix: int = 0) -> str:
    name = {0b00: "BC", 0b01: "DE", 0b10: "HL", 0b11: "SP"}.get(code, "UNKNOWN")
    return get_hl_name(prefix) if name == "HL" else name

# @intent:utility_function 条件コード（オペコードのビット5-3）を評価します。
def check_condition(state: Z80CpuState, cc_code: int) -> bool:
    if cc_code == 0: return not state.flag_z  # NZ
    if cc_code == 1: return state.flag_z      # Z
    if cc_code == 2: return not state.flag_c  # NC
    if cc_code == 3: return state.flag_c      # C
    if cc_code == 4: return not state.flag_pv # PO
    if cc_code == 5: return state.flag_pv     # PE
    if cc_code == 6: return not state.flag_s  # P
    return state.flag_s                        # M

# @intent:utility_function 8ビットの2の補数を符号付き整数に変換します。
def signed_byte(value: int) -> int:
    return value - 256 if value >= 128 else value

# @intent:utility_function デコード用に、プレフィックスとオペコードから命令の識別HEX文字列を作ります。
def make_opcode_hex(prefix: int, opcode: int) -> str:
    if prefix:
        return f"{prefix:02X}{opcode:02X}"
    return f"{opcode:02X}"

# @intent:utility_function Operationの識別HEXから(プレフィックス, 最終オペコード)を取り出します。
#                         "DDCB06" のような2段プレフィックスでは先頭のDD/FDを返します。
def split_opcode(operation: Operation) -> Tuple[int, int]:
    opcode_hex = operation.opcode_hex
    if len(opcode_hex) == 2:
        return 0, int(opcode_hex, 16)
    return int(opcode_hex[:2], 16), int(opcode_hex[-2:], 16)

# @intent:utility_function DD/FDプレフィックスのみを返し、それ以外のプレフィックスは0とします。
def index_prefix(operation: Operation) -> int:
    prefix, _ = split_opcode(operation)
    return prefix if prefix in INDEX_PREFIXES else 0

def get_hl(state: Z80CpuState, prefix: int = 0) -> int:
    if prefix == 0xDD: return state.ix
    if prefix == 0xFD: return state.iy
    return state.hl

def set_hl(state: Z80CpuState, value: int, prefix: int = 0) -> None:
    value &= 0xFFFF
    if prefix == 0xDD: state.ix = value
    elif prefix == 0xFD: state.iy = value
    else: state.hl = value

# @intent:utility_function (HL)または(IX+d)/(IY+d)の実効アドレスを求めます。
# @intent:pre-condition インデックス形式の場合、operand_bytes[0]にディスプレースメントが格納されている必要があります。
def operand_address(state: Z80CpuState, operation: Operation, prefix: int = 0) -> int:
    if prefix in INDEX_PREFIXES:
        address = (get_hl(state, prefix) + signed_byte(operation.operand_bytes[0])) & 0xFFFF
        state.wz = address
        return address
    return state.hl

# @intent:utility_function スタックに16ビット値を積みます（上位バイトが先）。
def push_word(state: Z80CpuState, bus: Bus, value: int) -> None:
    state.sp = (state.sp - 1) & 0xFFFF
    bus.write(state.sp, (value >> 8) & 0xFF)
    state.sp = (state.sp - 1) & 0xFFFF
    bus.write(state.sp, value & 0xFF)

# @intent:utility_function スタックから16ビット値を取り出します。
def pop_word(state: Z80CpuState, bus: Bus) -> int:
    low = bus.read(state.sp)
    state.sp = (state.sp + 1) & 0xFFFF
    high = bus.read(state.sp)
    state.sp = (state.sp + 1) & 0xFFFF
    return (high << 8) | low

# @intent:utility_function 命令ストリームから16ビットのリトルエンディアン値を読み出します。
def read_nn(bus, address: int) -> Tuple[int, int, int]:
    low = bus.read(address)
    high = bus.read(address + 1)
    return low, high, (high << 8) | low
