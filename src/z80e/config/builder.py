import logging
from typing import Tuple
from z80e.transport.bus import MemoryMap, RAM, ROM, IoLatch
from z80e.arch.z80.cpu import Z80Cpu
from .models import SystemConfig, CpuInitialState

logger = logging.getLogger(__name__)

# @intent:constant 初期状態で設定できるレジスタ名とそのビット幅。
REGISTER_WIDTHS = {
    **{name: 8 for name in ("a", "f", "b", "c", "d", "e", "h", "l",
                            "a_", "f_", "b_", "c_", "d_", "e_", "h_", "l_",
                            "i", "r", "ixh", "ixl", "iyh", "iyl")},
    **{name: 16 for name in ("af", "bc", "de", "hl", "af_", "bc_", "de_", "hl_",
                             "ix", "iy", "pc", "sp")},
}

# @intent:responsibility システム構成（Config）に基づいて、メモリマップ、I/Oデバイス、CPUを生成・接続し、初期状態を適用します。
class SystemBuilder:
    def build_system(self, config: SystemConfig) -> Tuple[Z80Cpu, MemoryMap]:
        memory_map = MemoryMap()

        for region in config.memory_map:
            size = region.end - region.start + 1
            if region.type == "RAM":
                device = RAM(size)
            elif region.type == "ROM":
                device = ROM(size)
            else:
                logger.warning(
                    "Unknown memory type '%s' for range %04X-%04X, defaulting to RAM",
                    region.type, region.start, region.end
                )
                device = RAM(size)
            if region.initial_value:
                device.load(0, bytes([region.initial_value & 0xFF]) * size)
            memory_map.register_device(region.start, region.end, device)

        cpu = Z80Cpu(memory_map)

        for port_config in config.io_map:
            if port_config.type != "LATCH":
                logger.warning(
                    "Unknown I/O device type '%s' for port %02X, defaulting to LATCH",
                    port_config.type, port_config.port
                )
            cpu.install_device(port_config.port, IoLatch(port_config.initial_value))

        # 初期状態の適用
        self.apply_initial_state(cpu, config.initial_state)

        return cpu, memory_map

    # @intent:responsibility Configで定義された初期状態をCPUに適用します。
    def apply_initial_state(self, cpu: Z80Cpu, config_state: CpuInitialState) -> None:
        """
        CPUをリセットし、Configから指定された初期値を適用します。
        """
        cpu.reset()
        state = cpu.get_state()

        state.pc = config_state.pc & 0xFFFF
        state.sp = config_state.sp & 0xFFFF
        state.im = config_state.im
        state.iff1 = config_state.iff
        state.iff2 = config_state.iff
        for reg_name, value in config_state.registers.items():
            width = REGISTER_WIDTHS.get(reg_name)
            if width is not None:
                setattr(state, reg_name, value & ((1 << width) - 1))
            else:
                logger.warning("Ignoring unknown register '%s' in initial state", reg_name)
