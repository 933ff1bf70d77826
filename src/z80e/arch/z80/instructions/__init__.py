"""
Z80命令セット実装パッケージ。
"""
from typing import Optional

from z80e.common.errors import Z80Error
from z80e.transport.bus import Bus
from z80e.core.operation import Operation
from z80e.arch.z80.state import Z80CpuState
from .maps import DECODE_MAP, EXECUTE_MAP

# @intent:responsibility 与えられたオペコードをZ80の命令としてデコードします。
# @intent:pre-condition `pc`はデコードするオペコード（プレフィックスがあればその先頭）のアドレスを指している必要があります。
def decode_opcode(opcode: int, bus: Bus, pc: int) -> Operation:
    """
    Z80のオペコードをデコードし、Operationオブジェクトを返します。
    デコード表は全てのオペコードを網羅しており、未定義の命令も定義済みのフォールバックにデコードされます。
    """
    return DECODE_MAP[opcode & 0xFF](opcode & 0xFF, bus, pc)

# @intent:responsibility デコードされたZ80命令を実行し、CPUの状態を変更します。
# @intent:return 分岐の成立やブロック命令の繰り返しで基本コストに加算されるTステート数。
def execute_instruction(operation: Operation, state: Z80CpuState, bus: Bus) -> int:
    """
    デコードされたZ80命令を実行し、CPUの状態を変更します。
    """
    executor = EXECUTE_MAP.get(int(operation.opcode_hex, 16))
    if executor is None:
        raise Z80Error(f"No executor for opcode {operation.opcode_hex} ({operation.mnemonic}).")
    extra: Optional[int] = executor(state, bus, operation)
    return extra or 0
