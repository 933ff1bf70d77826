"""
Z80アーキテクチャの実装パッケージ。
"""
from .cpu import Z80Cpu
from .state import Z80CpuState

__all__ = ["Z80Cpu", "Z80CpuState"]
