# tests/transport/test_bus.py
"""
z80e.transport.busモジュールの単体テスト。
"""
import pytest

from z80e.common.errors import InvalidStateError
from z80e.transport.bus import Bus, InterruptDataBus, IoDevice, IoLatch, Memory, MemoryMap, RAM, ROM

# @intent:test_suite メモリ/I/Oのケイパビリティ、標準プロバイダ、バスによる委譲を検証します。


class CountingDevice(IoDevice):
    """read_in / write_out の呼び出しを記録するテスト用デバイス。"""
    def __init__(self, value: int = 0x00):
        self.value = value
        self.reads = 0
        self.writes = []

    def read_in(self) -> int:
        self.reads += 1
        return self.value

    def write_out(self, value: int) -> None:
        self.writes.append(value)


class TestRAM:
    """
    RAMデバイスの単体テスト。
    """
    # @intent:test_case_init RAMクラスが正しいサイズで初期化されることを検証します。
    def test_ram_init_valid_size(self):
        ram = RAM(16)
        assert ram.get_size() == 16
        assert all(ram.read_byte(i) == 0 for i in range(16))

    # @intent:test_case_init 無効なサイズでRAMを初期化するとValueErrorが発生することを検証します。
    @pytest.mark.parametrize("size", [0, -1, 1.5])
    def test_ram_init_invalid_size(self, size):
        with pytest.raises(ValueError, match="RAM size must be a positive integer."):
            RAM(size)

    # @intent:test_case_rw 境界内でRAMへの読み書きが正しく行われることを検証します。
    def test_ram_read_write_within_bounds(self):
        ram = RAM(4)
        for address, value in enumerate([0x12, 0x34, 0x56, 0x78]):
            ram.write_byte(address, value)
        assert [ram.read_byte(i) for i in range(4)] == [0x12, 0x34, 0x56, 0x78]

    # @intent:test_case_boundary サイズを超えるアクセスは、読み込みが0を返し書き込みが無視されることを検証します。
    def test_ram_out_of_bounds_policy(self):
        ram = RAM(4)
        ram.write_byte(4, 0xAA)
        assert ram.read_byte(4) == 0
        assert ram.read_byte(0xFFFF) == 0

    def test_ram_rejects_non_byte_value(self):
        ram = RAM(4)
        with pytest.raises(ValueError, match="not an 8-bit value"):
            ram.write_byte(0, 0x100)

    def test_ram_load(self):
        ram = RAM(8)
        ram.load(2, b"\x01\x02\x03")
        assert [ram.read_byte(i) for i in range(2, 5)] == [1, 2, 3]
        with pytest.raises(IndexError):
            ram.load(6, b"\x01\x02\x03")


class TestROM:
    # @intent:test_case CPUからの書き込みは無視され、load_dataでのみ内容を初期化できることを検証します。
    def test_rom_ignores_writes(self):
        rom = ROM(4)
        rom.load_data(0, 0xC3)
        rom.write_byte(0, 0x00)
        assert rom.read_byte(0) == 0xC3

    def test_rom_load_sequence(self):
        rom = ROM(4)
        rom.load(0, [0xAA, 0xBB])
        assert rom.read_byte(1) == 0xBB


class TestMemoryMap:
    @pytest.fixture
    def memory_map(self):
        mm = MemoryMap()
        rom = ROM(0x1000)
        rom.load_data(0, 0x3E)
        mm.register_device(0x0000, 0x0FFF, rom)
        mm.register_device(0x8000, 0xFFFF, RAM(0x8000))
        return mm

    # @intent:test_case アドレスは範囲先頭からのオフセットとしてデバイスに渡されることを検証します。
    def test_routes_by_range(self, memory_map):
        assert memory_map.read_byte(0x0000) == 0x3E
        memory_map.write_byte(0x8001, 0x42)
        assert memory_map.read_byte(0x8001) == 0x42

    # @intent:test_case マップされていないアドレスは0xFFを返し、書き込みは破棄されることを検証します。
    def test_unmapped_access(self, memory_map):
        assert memory_map.read_byte(0x4000) == 0xFF
        memory_map.write_byte(0x4000, 0x12)
        assert memory_map.read_byte(0x4000) == 0xFF

    def test_register_validation(self):
        mm = MemoryMap()
        with pytest.raises(ValueError):
            mm.register_device(0x2000, 0x1000, RAM(0x100))
        with pytest.raises(ValueError):
            mm.register_device(0x1000, 0x10FF, RAM(0x200))
        with pytest.raises(TypeError):
            mm.register_device(0x0000, 0x00FF, object())


class TestBus:
    @pytest.fixture
    def bus(self):
        return Bus(RAM(0x10000))

    def test_requires_memory(self):
        bus = Bus()
        assert bus.memory is None
        with pytest.raises(InvalidStateError):
            bus.require_memory()
        with pytest.raises(InvalidStateError):
            bus.read(0x0000)

    def test_install_memory_type_check(self):
        with pytest.raises(TypeError):
            Bus().install_memory(bytearray(16))

    # @intent:test_case アドレスが16ビットに丸められ、ワードはリトルエンディアンで扱われることを検証します。
    def test_word_access_is_little_endian(self, bus):
        bus.write_word(0x2004, 0x3000)
        assert bus.read(0x2004) == 0x00
        assert bus.read(0x2005) == 0x30
        assert bus.read_word(0x2004) == 0x3000
        bus.write(0x1FFFF, 0x77)
        assert bus.read(0xFFFF) == 0x77

    # @intent:test_case ポート5に登録したデバイスへのIN/OUTがそれぞれ1回ずつ委譲されることを検証します。
    def test_io_delegation(self, bus):
        device = CountingDevice(0xA5)
        bus.install_device(5, device)
        assert bus.device_at(5) is device
        assert bus.read_io(0x1205) == 0xA5
        bus.write_io(0x3405, 0x5A)
        assert device.reads == 1
        assert device.writes == [0x5A]

    def test_empty_port_slot(self, bus):
        assert bus.read_io(0x0007) == 0x00
        bus.write_io(0x0007, 0xFF)

    def test_uninstall_device(self, bus):
        bus.install_device(0xFF, IoLatch())
        bus.install_device(0xFF, None)
        assert bus.device_at(0xFF) is None

    @pytest.mark.parametrize("port", [-1, 256, 1000])
    def test_port_out_of_range(self, bus, port):
        with pytest.raises(InvalidStateError):
            bus.install_device(port, IoLatch())
        with pytest.raises(InvalidStateError):
            bus.device_at(port)

    def test_detach(self, bus):
        bus.install_device(1, IoLatch())
        bus.detach()
        assert bus.memory is None
        assert bus.device_at(1) is None

    # @intent:test_case Busはプロバイダをコピーせず借用することを検証します。
    def test_memory_is_borrowed(self):
        ram = RAM(0x10000)
        bus = Bus(ram)
        bus.write(0x1234, 0x56)
        assert ram.read_byte(0x1234) == 0x56
        assert bus.memory is ram


class TestIoLatch:
    def test_latch_returns_last_written_value(self):
        latch = IoLatch(0x10)
        assert latch.read_in() == 0x10
        latch.write_out(0x1FF)
        assert latch.read_in() == 0xFF


class TestInterruptDataBus:
    # @intent:test_case 供給バイト列をorigin以降に割り当て、範囲外は0xFFとして読めることを検証します。
    def test_overlay_reads(self):
        overlay = InterruptDataBus(b"\xcd\x00\x40", 0x1000)
        assert [overlay.read(0x1000 + i) for i in range(3)] == [0xCD, 0x00, 0x40]
        assert overlay.read(0x1003) == 0xFF
        assert overlay.read(0x0FFF) == 0xFF


def test_custom_memory_provider():
    class MirroredMemory(Memory):
        def __init__(self):
            self.cells = bytearray(0x100)

        def read_byte(self, address):
            return self.cells[address & 0xFF]

        def write_byte(self, address, value):
            self.cells[address & 0xFF] = value

    bus = Bus(MirroredMemory())
    bus.write(0x0010, 0x99)
    assert bus.read(0x1210) == 0x99
