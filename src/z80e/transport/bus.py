# z80e/transport/bus.py
"""
Transport Layer (ケイパビリティとバス)

このモジュールは、ホストアプリケーションが提供するメモリとI/Oデバイスの
インターフェース（ケイパビリティ）を定義し、CPUからのアクセスを
インストールされたプロバイダへ委譲する責務を負います。
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from z80e.common.errors import InvalidStateError

PORT_COUNT = 0x100


# @intent:responsibility 16ビットアドレスでアクセスされるバイトコンテナのインターフェースを定義します。
class Memory(ABC):
    """
    CPUに接続されるメモリの抽象基底クラス。
    アドレス空間は16ビット全域であり、範囲外のアクセスに対する方針は各プロバイダが定めます。
    """
    # @intent:responsibility 指定されたアドレスから8bitのデータを読み出す責務を負います。
    @abstractmethod
    def read_byte(self, address: int) -> int:
        pass

    # @intent:responsibility 指定されたアドレスに8bitのデータを書き込む責務を負います。
    @abstractmethod
    def write_byte(self, address: int, value: int) -> None:
        pass


# @intent:responsibility 1つのI/Oポートを実装するデバイスのインターフェースを定義します。
class IoDevice(ABC):
    """
    I/Oポートに接続されるデバイスの抽象基底クラス。
    """
    @abstractmethod
    def read_in(self) -> int:
        """IN命令でポートから読み込まれる8bit値を返します。"""
        pass

    @abstractmethod
    def write_out(self, value: int) -> None:
        """OUT命令でポートに書き込まれた8bit値を受け取ります。"""
        pass


# @intent:responsibility 基本的なRAMデバイスの機能を提供します。
class RAM(Memory):
    """
    バッファを背後に持つRAMデバイス。
    サイズを超えるアドレスの読み込みは0を返し、書き込みは無視されます。
    """
    # @intent:responsibility 指定されたサイズのメモリ領域を初期化します。
    # @intent:pre-condition sizeは正の整数である必要があります。
    def __init__(self, size: int = 0x10000):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("RAM size must be a positive integer.")
        self._memory = bytearray(size)
        self._size = size

    def read_byte(self, address: int) -> int:
        if 0 <= address < self._size:
            return self._memory[address]
        return 0

    def write_byte(self, address: int, value: int) -> None:
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Data {value} is not an 8-bit value.")
        if 0 <= address < self._size:
            self._memory[address] = value

    # @intent:responsibility ホストがバイト列をまとめて配置するためのメソッドです。
    # @intent:pre-condition データ全体がバッファ内に収まる必要があります。
    def load(self, address: int, data: Sequence[int]) -> None:
        end = address + len(data)
        if address < 0 or end > self._size:
            raise IndexError(f"Data of {len(data)} bytes at {address:#06x} exceeds RAM of size {self._size}.")
        self._memory[address:end] = bytes(data)

    # @intent:responsibility RAMのサイズを返します。
    def get_size(self) -> int:
        return self._size


# @intent:responsibility 読み込み専用メモリ(ROM)の機能を提供します。
class ROM(RAM):
    """
    読み込み専用メモリデバイス。
    CPUからの書き込みは無視されます。内容の初期化には load / load_data を使用します。
    """
    # @intent:rationale ROMへの書き込みは実機では無効なため、例外を投げずに無視します。
    def write_byte(self, address: int, value: int) -> None:
        # Intentional: ROM writes are ignored as per hardware behavior.
        pass

    # @intent:responsibility ROMの内容を1バイト単位で初期化するためのバックドアメソッドです。
    def load_data(self, address: int, data: int) -> None:
        super().write_byte(address, data)


# @intent:responsibility 複数のメモリプロバイダをアドレス範囲に割り当て、アクセスを振り分けます。
class MemoryMap(Memory):
    """
    アドレス範囲ごとにメモリプロバイダを登録するメモリマップ。
    どのデバイスにもマップされていないアドレスの読み込みは0xFF（フローティングバス）を返し、書き込みは破棄されます。
    """
    UNMAPPED_VALUE = 0xFF

    def __init__(self):
        # メモリマップ: (start_address, end_address, device) のタプルリスト
        self._memory_map: List[Tuple[int, int, Memory]] = []

    # @intent:responsibility 指定されたアドレス範囲にデバイスを登録します。
    # @intent:rationale アドレス範囲の重複チェックは行いません。先に登録された範囲が優先されます。
    def register_device(self, start_address: int, end_address: int, device: Memory) -> None:
        """
        指定されたアドレス範囲にデバイスを登録します。
        デバイスにはアドレス範囲先頭からのオフセットでアクセスします。
        """
        if not (0 <= start_address <= end_address <= 0xFFFF):
            raise ValueError("Invalid address range: start_address must be <= end_address within 0x0000-0xFFFF.")
        if not isinstance(device, Memory):
            raise TypeError("Device must be an instance of a class derived from Memory.")

        if isinstance(device, RAM):
            expected_size = end_address - start_address + 1
            if device.get_size() != expected_size:
                raise ValueError(
                    f"Registered {type(device).__name__} device size ({device.get_size()} bytes) does not match "
                    f"the specified address range size ({expected_size} bytes)."
                )

        self._memory_map.append((start_address, end_address, device))

    def _find_device(self, address: int) -> Tuple[Optional[Memory], int]:
        for start, end, device in self._memory_map:
            if start <= address <= end:
                return device, address - start
        return None, 0

    def read_byte(self, address: int) -> int:
        device, offset = self._find_device(address)
        if device is None:
            return self.UNMAPPED_VALUE
        return device.read_byte(offset)

    def write_byte(self, address: int, value: int) -> None:
        device, offset = self._find_device(address)
        if device is not None:
            device.write_byte(offset, value)


# @intent:responsibility 最後に書き込まれた値を保持し、読み込み時に返す単純なI/Oデバイスです。
class IoLatch(IoDevice):
    def __init__(self, initial_value: int = 0x00):
        self.value = initial_value & 0xFF

    def read_in(self) -> int:
        return self.value

    def write_out(self, value: int) -> None:
        self.value = value & 0xFF


# @intent:responsibility CPUから見たバス。インストールされたMemoryと256スロットのI/Oポート表へアクセスを委譲します。
# @intent:rationale プロバイダは借用されるだけで、Busは所有しません。
#                  execute()の実行中に別スレッドからプロバイダを変更してはなりません（非エイリアス契約）。
class Bus:
    """
    CPUのメモリ空間とI/O空間を束ねるバス。
    """
    def __init__(self, memory: Optional[Memory] = None):
        self._memory: Optional[Memory] = None
        self._ports: List[Optional[IoDevice]] = [None] * PORT_COUNT
        if memory is not None:
            self.install_memory(memory)

    # @intent:responsibility メモリプロバイダをインストールします。既存のものは置き換えられます。
    def install_memory(self, memory: Memory) -> None:
        if not isinstance(memory, Memory):
            raise TypeError("Memory must be an instance of a class derived from Memory.")
        self._memory = memory

    @property
    def memory(self) -> Optional[Memory]:
        return self._memory

    # @intent:responsibility メモリがインストール済みであることを保証します。
    # @intent:post-condition 未インストールの場合、InvalidStateErrorを発生させます。
    def require_memory(self) -> Memory:
        if self._memory is None:
            raise InvalidStateError("No memory installed on the bus.")
        return self._memory

    @staticmethod
    def _check_port(port: int) -> None:
        if not isinstance(port, int) or not 0 <= port < PORT_COUNT:
            raise InvalidStateError(f"I/O port {port!r} out of range 0-255.")

    # @intent:responsibility 指定ポートにI/Oデバイスを登録します。Noneを渡すとスロットを空にします。
    def install_device(self, port: int, device: Optional[IoDevice]) -> None:
        self._check_port(port)
        if device is not None and not isinstance(device, IoDevice):
            raise TypeError("Device must be an instance of a class derived from IoDevice.")
        self._ports[port] = device

    def device_at(self, port: int) -> Optional[IoDevice]:
        self._check_port(port)
        return self._ports[port]

    # @intent:responsibility メモリとI/Oデバイスの参照を全て解除します。
    def detach(self) -> None:
        self._memory = None
        self._ports = [None] * PORT_COUNT

    def read(self, address: int) -> int:
        return self.require_memory().read_byte(address & 0xFFFF)

    def write(self, address: int, data: int) -> None:
        self.require_memory().write_byte(address & 0xFFFF, data & 0xFF)

    # @intent:responsibility リトルエンディアンの16ビット値を読み出します。
    def read_word(self, address: int) -> int:
        low = self.read(address)
        high = self.read(address + 1)
        return (high << 8) | low

    def write_word(self, address: int, value: int) -> None:
        self.write(address, value & 0xFF)
        self.write(address + 1, (value >> 8) & 0xFF)

    # @intent:responsibility 指定されたI/Oアドレスから8bitのデータを読み出します。
    # @intent:rationale Z80はI/Oアドレスの上位8ビットにもレジスタ値を出力しますが、ポートの選択には下位8ビットのみを使用します。
    def read_io(self, address: int) -> int:
        device = self._ports[address & 0xFF]
        if device is None:
            return 0x00 # Default value for unmapped IO
        return device.read_in() & 0xFF

    def write_io(self, address: int, data: int) -> None:
        device = self._ports[address & 0xFF]
        if device is not None:
            device.write_out(data & 0xFF)


# @intent:responsibility 割り込みモード0でデバイスがデータバスに供給する命令バイト列を、メモリと同じ形で読めるようにします。
class InterruptDataBus:
    """
    デコーダ専用の読み込みオーバーレイ。origin以降のアドレスに供給バイト列を割り当て、
    供給されなかったバイトは0xFF（プルアップされたデータバス）として読めます。
    """
    def __init__(self, data: bytes, origin: int):
        self._data = data
        self._origin = origin

    def read(self, address: int) -> int:
        offset = (address - self._origin) & 0xFFFF
        if offset < len(self._data):
            return self._data[offset]
        return 0xFF
