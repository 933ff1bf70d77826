import yaml
from typing import Dict, Any
from .models import SystemConfig, MemoryRegion, IoPortConfig, CpuInitialState

# @intent:responsibility YAMLで記述されたシステム構成を読み込み、SystemConfigに変換します。
class ConfigLoader:
    def load_from_file(self, path: str) -> SystemConfig:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        return self._parse_config(data or {})

    def load_from_string(self, text: str) -> SystemConfig:
        return self._parse_config(yaml.safe_load(text) or {})

    def _parse_config(self, data: Dict[str, Any]) -> SystemConfig:
        if not isinstance(data, dict):
            raise ValueError("System configuration must be a mapping.")

        # Parse Memory Map
        memory_map = []
        for region_data in data.get("memory_map") or []:
            memory_map.append(MemoryRegion(
                start=self._parse_int(region_data.get("start")),
                end=self._parse_int(region_data.get("end")),
                type=str(region_data.get("type", "RAM")).upper(),
                label=region_data.get("label", ""),
                initial_value=self._parse_int(region_data.get("initial_value", 0))
            ))

        # Parse I/O Map
        io_map = []
        for port_data in data.get("io_map") or []:
            io_map.append(IoPortConfig(
                port=self._parse_int(port_data.get("port")),
                type=str(port_data.get("type", "LATCH")).upper(),
                label=port_data.get("label", ""),
                initial_value=self._parse_int(port_data.get("initial_value", 0))
            ))

        # Parse Initial State
        initial_state_data = data.get("initial_state") or {}
        registers = {
            str(name).lower(): self._parse_int(value)
            for name, value in (initial_state_data.get("registers") or {}).items()
        }
        initial_state = CpuInitialState(
            pc=self._parse_int(initial_state_data.get("pc", 0)),
            sp=self._parse_int(initial_state_data.get("sp", 0)),
            im=self._parse_int(initial_state_data.get("im", 0)),
            iff=bool(initial_state_data.get("iff", False)),
            registers=registers
        )
        if initial_state.im not in (0, 1, 2):
            raise ValueError(f"Invalid interrupt mode: {initial_state.im}")

        return SystemConfig(
            memory_map=memory_map,
            io_map=io_map,
            initial_state=initial_state
        )

    # @intent:utility_function 整数、"0x"/"$"付きの16進文字列、10進文字列を整数に変換します。
    def _parse_int(self, value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Invalid integer format: {value}")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.lower().startswith("0x"):
                return int(text, 16)
            if text.startswith("$"):
                return int(text[1:], 16)
            return int(text)
        raise ValueError(f"Invalid integer format: {value}")
