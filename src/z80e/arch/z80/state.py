# z80e/arch/z80/state.py
"""
Z80 CPU固有の状態定義。

このモジュールは、Z80 CPUのレジスタ、フラグ、およびその他の状態を保持するデータ構造を定義します。
"""
from dataclasses import dataclass

from z80e.core.state import CpuState

# Z80フラグビットマスク
# @intent:constant Z80フラグレジスタ内の各フラグビットの位置を定義します。
S_FLAG = 0b10000000  # Sign (符号)
Z_FLAG = 0b01000000  # Zero (ゼロ)
# 0b00100000 # Unused (未定義ビット5)
H_FLAG = 0b00010000  # Half Carry (ハーフキャリー)
# 0b00001000 # Unused (未定義ビット3)
PV_FLAG = 0b00000100 # Parity/Overflow (パリティ/オーバーフロー)
N_FLAG = 0b00000010  # Add/Subtract (加減算)
C_FLAG = 0b00000001  # Carry (キャリー)


def _flag_property(mask: int) -> property:
    def getter(self: "Z80CpuState") -> bool:
        return (self.f & mask) != 0

    def setter(self: "Z80CpuState", value: bool) -> None:
        if value:
            self.f |= mask
        else:
            self.f &= ~mask & 0xFF

    return property(getter, setter)


def _pair_property(high: str, low: str) -> property:
    def getter(self: "Z80CpuState") -> int:
        return (getattr(self, high) << 8) | getattr(self, low)

    def setter(self: "Z80CpuState", value: int) -> None:
        setattr(self, high, (value >> 8) & 0xFF)
        setattr(self, low, value & 0xFF)

    return property(getter, setter)


def _half_property(register: str, shift: int) -> property:
    def getter(self: "Z80CpuState") -> int:
        return (getattr(self, register) >> shift) & 0xFF

    def setter(self: "Z80CpuState", value: int) -> None:
        keep = getattr(self, register) & (0x00FF if shift else 0xFF00)
        setattr(self, register, keep | ((value & 0xFF) << shift))

    return property(getter, setter)


# @intent:responsibility Z80 CPUの全てのレジスタとフラグ、割り込み関連の状態を保持します。
@dataclass
class Z80CpuState(CpuState):
    """
    Z80 CPUのレジスタ状態を保持するデータクラス。
    CpuStateを拡張し、Z80固有のレジスタと割り込みフリップフロップを含みます。
    """
    # Main registers
    a: int = 0x00
    b: int = 0x00
    c: int = 0x00
    d: int = 0x00
    e: int = 0x00
    h: int = 0x00
    l: int = 0x00
    f: int = 0x00  # Flag register

    # Alternate registers
    a_: int = 0x00
    b_: int = 0x00
    c_: int = 0x00
    d_: int = 0x00
    e_: int = 0x00
    h_: int = 0x00
    l_: int = 0x00
    f_: int = 0x00

    # Index registers
    ix: int = 0x0000
    iy: int = 0x0000

    # Special purpose registers
    i: int = 0x00  # Interrupt Vector
    r: int = 0x00  # Refresh Register
    wz: int = 0x0000  # Internal scratch (MEMPTR)

    # Interrupt control
    iff1: bool = False
    iff2: bool = False
    im: int = 0  # Interrupt mode (0, 1, 2)
    ei_delay: bool = False  # EI直後の1命令は割り込みを受け付けない
    after_prefix: bool = False  # 単独のDD/FDプレフィックスの直後も割り込みを受け付けない

    halted: bool = False # CPU stop state flag

    # @intent:accessor Fレジスタの各フラグビットにアクセスするためのプロパティを提供します。
    # @intent:rationale フラグを直接ビット操作する代わりに、分かりやすいプロパティとして提供することで、コードの可読性を高めます。
    flag_s = _flag_property(S_FLAG)
    flag_z = _flag_property(Z_FLAG)
    flag_h = _flag_property(H_FLAG)
    flag_pv = _flag_property(PV_FLAG)
    flag_n = _flag_property(N_FLAG)
    flag_c = _flag_property(C_FLAG)

    # 16-bit register pairs
    af = _pair_property("a", "f")
    bc = _pair_property("b", "c")
    de = _pair_property("d", "e")
    hl = _pair_property("h", "l")
    af_ = _pair_property("a_", "f_")
    bc_ = _pair_property("b_", "c_")
    de_ = _pair_property("d_", "e_")
    hl_ = _pair_property("h_", "l_")

    # 8-bit halves of the index registers
    ixh = _half_property("ix", 8)
    ixl = _half_property("ix", 0)
    iyh = _half_property("iy", 8)
    iyl = _half_property("iy", 0)

    # @intent:responsibility 割り込みで復帰できないHALT状態（ハング）かどうかを返します。
    @property
    def hung(self) -> bool:
        return self.halted and not self.iff2
