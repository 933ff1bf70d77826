# z80e/core/operation.py
"""
デコード済み命令の不変レコード

デコーダが生成し、実行関数と実行ループが参照する命令の詳細を定義します。
"""
from dataclasses import dataclass, field
from typing import List


# @intent:responsibility デコードされた命令の詳細を記録します。
@dataclass(frozen=True) # 不変データ構造
class Operation:
    """
    デコードされた命令の詳細（HEX、ニーモニック、オペランド、コスト）を記録するデータクラス。
    """
    opcode_hex: str # 例: "C3", "ED44", "DDCB06" (ディスプレースメントは含まない)
    mnemonic: str # 例: "JP nn"
    operands: List[str] = field(default_factory=list) # 例: ["$1234"]
    operand_bytes: List[int] = field(default_factory=list) # オペコード以降の生バイト（ディスプレースメントを含む）
    cycle_count: int = 0 # 命令の基本Tステート数（分岐不成立時のコスト）
    length: int = 1 # 命令のバイト長

    # @intent:rationale 実行関数はoperand_bytesのみを参照し、命令列を再読込しません。
    #                  これにより、割り込みモード0でデバイスが供給した命令もメモリ上の命令と同じ経路で実行できます。
