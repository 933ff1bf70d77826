from dataclasses import dataclass, field
from typing import Dict, List

@dataclass
class MemoryRegion:
    start: int
    end: int
    type: str  # "RAM", "ROM"
    label: str = ""
    initial_value: int = 0x00

@dataclass
class IoPortConfig:
    port: int
    type: str = "LATCH"
    label: str = ""
    initial_value: int = 0x00

@dataclass
class CpuInitialState:
    pc: int = 0x0000
    sp: int = 0x0000
    im: int = 0
    iff: bool = False
    registers: Dict[str, int] = field(default_factory=dict)

@dataclass
class SystemConfig:
    memory_map: List[MemoryRegion] = field(default_factory=list)
    io_map: List[IoPortConfig] = field(default_factory=list)
    initial_state: CpuInitialState = field(default_factory=CpuInitialState)
