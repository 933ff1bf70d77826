# tests/arch/z80/test_instructions_ed.py
"""
EDプレフィックス命令の単体テスト。
"""
import pytest

from z80e.transport.bus import IoDevice

# @intent:test_suite ブロック転送/比較/I-O、16ビット演算、割り込み制御命令とEDフォールバックを検証します。


class SequenceDevice(IoDevice):
    def __init__(self, values=()):
        self.values = list(values)
        self.writes = []

    def read_in(self) -> int:
        return self.values.pop(0)

    def write_out(self, value: int) -> None:
        self.writes.append(value)


class TestEdArithmetic:
    @pytest.mark.parametrize("opcode", [0x44, 0x4C, 0x54, 0x5C, 0x64, 0x6C, 0x74, 0x7C])
    def test_neg_and_mirrors(self, cpu, load, opcode):
        load(0x0000, [0xED, opcode])
        cpu.get_state().a = 0x01
        operation = cpu.step()
        assert operation.mnemonic == "NEG"
        assert operation.cycle_count == 8
        assert cpu.get_state().a == 0xFF
        assert cpu.get_state().flag_c and cpu.get_state().flag_n

    def test_neg_overflow(self, cpu, load):
        load(0x0000, [0xED, 0x44])
        cpu.get_state().a = 0x80
        cpu.step()
        assert cpu.get_state().a == 0x80
        assert cpu.get_state().flag_pv

    def test_sbc_hl_de(self, cpu, load):
        load(0x0000, [0xED, 0x52])
        state = cpu.get_state()
        state.hl = 0x1000
        state.de = 0x0001
        state.flag_c = True
        assert cpu.step().cycle_count == 15
        assert state.hl == 0x0FFE

    def test_adc_hl_hl(self, cpu, load):
        load(0x0000, [0xED, 0x6A])
        state = cpu.get_state()
        state.hl = 0x8000
        cpu.step()
        assert state.hl == 0x0000
        assert state.flag_c and state.flag_z and state.flag_pv

    def test_rrd_rld(self, cpu, load, ram):
        load(0x0000, [0xED, 0x67, 0xED, 0x6F])
        state = cpu.get_state()
        state.hl = 0x5000
        state.a = 0x84
        ram.write_byte(0x5000, 0x20)
        assert cpu.step().cycle_count == 18
        assert state.a == 0x80
        assert ram.read_byte(0x5000) == 0x42
        state.a = 0x7A
        ram.write_byte(0x5000, 0x31)
        cpu.step()
        assert state.a == 0x73
        assert ram.read_byte(0x5000) == 0x1A


class TestEdLoads:
    def test_ld_nn_rr_and_back(self, cpu, load, ram):
        load(0x0000, [0xED, 0x43, 0x00, 0x60, 0xED, 0x5B, 0x00, 0x60])  # LD (6000H),BC ; LD DE,(6000H)
        state = cpu.get_state()
        state.bc = 0xBEEF
        operation = cpu.step()
        assert operation.cycle_count == 20
        assert operation.length == 4
        assert ram.read_byte(0x6000) == 0xEF
        assert ram.read_byte(0x6001) == 0xBE
        cpu.step()
        assert state.de == 0xBEEF

    def test_ld_sp_nn_indirect(self, cpu, load, ram):
        load(0x0000, [0xED, 0x7B, 0x00, 0x60])  # LD SP,(6000H)
        ram.load(0x6000, b"\xfe\xff")
        cpu.step()
        assert cpu.get_state().sp == 0xFFFE

    # @intent:test_case LD A,I / LD A,R はP/VにIFF2をコピーすることを検証します。
    def test_ld_a_i_copies_iff2(self, cpu, load):
        load(0x0000, [0xED, 0x47, 0xED, 0x57])  # LD I,A ; LD A,I
        state = cpu.get_state()
        state.a = 0x20
        state.iff2 = True
        assert cpu.step().cycle_count == 9
        assert state.i == 0x20
        state.a = 0
        cpu.step()
        assert state.a == 0x20
        assert state.flag_pv is True

    def test_ld_r_a(self, cpu, load):
        load(0x0000, [0xED, 0x4F])
        cpu.get_state().a = 0x55
        cpu.step()
        assert cpu.get_state().r == 0x55


class TestEdBlockInstructions:
    # @intent:test_case LDIRは繰り返し中は21、最後は16 Tステートで、各繰り返しが1命令として実行されることを検証します。
    def test_ldir(self, cpu, load, ram):
        load(0x0000, [0xED, 0xB0])
        ram.load(0x4000, b"\x01\x02\x03")
        state = cpu.get_state()
        state.hl = 0x4000
        state.de = 0x5000
        state.bc = 3
        assert cpu.step().cycle_count == 21
        assert state.pc == 0x0000
        assert cpu.step().cycle_count == 21
        assert cpu.step().cycle_count == 16
        assert state.pc == 0x0002
        assert [ram.read_byte(0x5000 + i) for i in range(3)] == [1, 2, 3]
        assert state.bc == 0
        assert state.hl == 0x4003
        assert state.de == 0x5003
        assert state.flag_pv is False

    def test_lddr(self, cpu, load, ram):
        load(0x0000, [0xED, 0xB8])
        ram.load(0x4000, b"\xaa\xbb")
        state = cpu.get_state()
        state.hl = 0x4001
        state.de = 0x5001
        state.bc = 2
        cpu.execute(37)
        assert ram.read_byte(0x5000) == 0xAA
        assert ram.read_byte(0x5001) == 0xBB
        assert state.hl == 0x3FFF

    def test_ldi_single(self, cpu, load, ram):
        load(0x0000, [0xED, 0xA0])
        ram.write_byte(0x4000, 0x99)
        state = cpu.get_state()
        state.hl = 0x4000
        state.de = 0x5000
        state.bc = 2
        assert cpu.step().cycle_count == 16
        assert ram.read_byte(0x5000) == 0x99
        assert state.bc == 1
        assert state.flag_pv is True

    # @intent:test_case CPIRは一致した時点で停止し、Cフラグを保持することを検証します。
    def test_cpir_stops_on_match(self, cpu, load, ram):
        load(0x0000, [0xED, 0xB1])
        ram.load(0x4000, b"\x10\x20\x30\x40")
        state = cpu.get_state()
        state.hl = 0x4000
        state.bc = 4
        state.a = 0x30
        state.flag_c = True
        assert cpu.step().cycle_count == 21
        assert cpu.step().cycle_count == 21
        assert cpu.step().cycle_count == 16
        assert state.flag_z is True
        assert state.hl == 0x4003
        assert state.bc == 1
        assert state.flag_pv is True
        assert state.flag_c is True
        assert state.pc == 0x0002

    def test_cpi(self, cpu, load, ram):
        load(0x0000, [0xED, 0xA1])
        state = cpu.get_state()
        state.hl = 0x4000
        state.bc = 1
        state.a = 0x01
        cpu.step()
        assert state.flag_z is False
        assert state.flag_n is True
        assert state.flag_pv is False


class TestEdIo:
    @pytest.fixture
    def device(self, cpu):
        device = SequenceDevice([0x00, 0x81, 0x7F])
        cpu.install_device(0x10, device)
        return device

    # @intent:test_case IN r,(C)はBCのポートから読み込み、S/Z/P/Vを設定することを検証します。
    def test_in_r_c(self, cpu, load, device):
        load(0x0000, [0xED, 0x78, 0xED, 0x40, 0xED, 0x70])  # IN A,(C) ; IN B,(C) ; IN F,(C)
        state = cpu.get_state()
        state.bc = 0x1210
        assert cpu.step().cycle_count == 12
        assert state.a == 0x00
        assert state.flag_z and state.flag_pv
        cpu.step()
        assert state.b == 0x81
        assert state.flag_s and not state.flag_z
        state.b = 0x12
        a_before = state.a
        cpu.step()
        assert state.a == a_before
        assert not state.flag_pv and not state.flag_s

    def test_out_c_r(self, cpu, load, device):
        load(0x0000, [0xED, 0x59, 0xED, 0x71])  # OUT (C),E ; OUT (C),0
        state = cpu.get_state()
        state.c = 0x10
        state.e = 0x42
        assert cpu.step().cycle_count == 12
        cpu.step()
        assert device.writes == [0x42, 0x00]

    # @intent:test_case INIRはBが0になるまで繰り返し、Zを立てることを検証します。
    def test_inir(self, cpu, load, ram, device):
        load(0x0000, [0xED, 0xB2])
        state = cpu.get_state()
        state.b = 2
        state.c = 0x10
        state.hl = 0x6000
        assert cpu.step().cycle_count == 21
        assert state.pc == 0x0000
        assert cpu.step().cycle_count == 16
        assert state.b == 0
        assert state.flag_z and state.flag_n
        assert ram.read_byte(0x6000) == 0x00
        assert ram.read_byte(0x6001) == 0x81
        assert state.hl == 0x6002

    def test_otir(self, cpu, load, ram, device):
        load(0x0000, [0xED, 0xB3])
        ram.load(0x6000, b"\x0a\x0b\x0c")
        state = cpu.get_state()
        state.b = 3
        state.c = 0x10
        state.hl = 0x6000
        cpu.execute(58)
        assert device.writes == [0x0A, 0x0B, 0x0C]
        assert state.b == 0
        assert state.pc == 0x0002

    def test_outd(self, cpu, load, ram, device):
        load(0x0000, [0xED, 0xAB])
        ram.write_byte(0x6000, 0x5A)
        state = cpu.get_state()
        state.b = 2
        state.c = 0x10
        state.hl = 0x6000
        assert cpu.step().cycle_count == 16
        assert device.writes == [0x5A]
        assert state.b == 1
        assert state.hl == 0x5FFF
        assert state.flag_z is False


class TestEdInterruptControl:
    @pytest.mark.parametrize("opcode,mode", [
        (0x46, 0), (0x56, 1), (0x5E, 2), (0x4E, 0), (0x66, 0), (0x6E, 0), (0x76, 1), (0x7E, 2),
    ])
    def test_im(self, cpu, load, opcode, mode):
        load(0x0000, [0xED, opcode])
        cpu.get_state().im = 2 if mode != 2 else 0
        operation = cpu.step()
        assert operation.mnemonic == f"IM {mode}"
        assert operation.cycle_count == 8
        assert cpu.get_state().im == mode

    # @intent:test_case RETN（とミラー）はIFF2をIFF1へ戻してリターンすることを検証します。
    @pytest.mark.parametrize("opcode", [0x45, 0x55, 0x5D, 0x65, 0x6D, 0x75, 0x7D, 0x4D])
    def test_retn_reti(self, cpu, load, ram, opcode):
        load(0x0000, [0xED, opcode])
        ram.load(0x8000, b"\x34\x12")
        state = cpu.get_state()
        state.sp = 0x8000
        state.iff1 = False
        state.iff2 = True
        operation = cpu.step()
        assert operation.mnemonic == ("RETI" if opcode == 0x4D else "RETN")
        assert operation.cycle_count == 14
        assert state.pc == 0x1234
        assert state.sp == 0x8002
        assert state.iff1 is True


class TestEdFallback:
    # @intent:test_case 未定義のEDオペコードは2バイト・8 Tステートの何もしない命令になることを検証します。
    @pytest.mark.parametrize("opcode", [0x00, 0x3F, 0x77, 0x7F, 0x80, 0xA4, 0xBF, 0xC0, 0xFF])
    def test_undefined_ed_is_nop(self, cpu, load, opcode):
        load(0x0000, [0xED, opcode])
        state = cpu.get_state()
        state.a = 0x12
        before = state.f
        operation = cpu.step()
        assert operation.mnemonic == "NOP*"
        assert operation.cycle_count == 8
        assert operation.length == 2
        assert state.pc == 0x0002
        assert state.a == 0x12
        assert state.f == before
