# tests/arch/z80/conftest.py
import pytest

from z80e.arch.z80.cpu import Z80Cpu
from z80e.transport.bus import RAM


@pytest.fixture
def ram():
    return RAM(0x10000)


@pytest.fixture
def cpu(ram):
    """64KBのRAMをインストールしたZ80Cpu。"""
    return Z80Cpu(ram)


@pytest.fixture
def load(ram):
    """指定アドレスにプログラムを配置するヘルパー。"""
    def _load(address, data):
        ram.load(address, bytes(data))
    return _load
