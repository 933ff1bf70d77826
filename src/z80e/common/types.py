"""
共通の型定義を提供するモジュール。
実行ループの結果など、プロジェクト全体で使用される型を定義します。
"""
from enum import Enum
from typing import NamedTuple, Optional

from z80e.common.errors import Z80Error


# @intent:data_structure execute()が停止した理由。
class StopReason(Enum):
    DONE = "DONE"        # サイクル予算を使い切った
    HALTED = "HALTED"    # HALT中（マスカブル割り込みで復帰可能）のまま予算を使い切った
    HUNG = "HUNG"        # IFF2が無効な状態でHALTした（外部リセットでのみ復帰可能）
    ERROR = "ERROR"      # 割り込みラインの異常により中断した


# @intent:data_structure execute()の戻り値。消費サイクル数、停止理由、ERROR時の原因例外を保持します。
class ExecutionResult(NamedTuple):
    cycles: int
    reason: StopReason
    error: Optional[Z80Error] = None
