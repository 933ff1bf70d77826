# tests/arch/z80/test_execution_loop.py
"""
Z80Cpu.executeによるサイクル予算付き実行ループと、割り込み応答の結合テスト。
"""
import threading

import pytest

from z80e.arch.z80.cpu import Z80Cpu
from z80e.common.errors import DeadlockError, InvalidStateError, WouldBlockError
from z80e.common.types import ExecutionResult, StopReason
from z80e.transport.bus import IoDevice, RAM

# @intent:test_suite 実行ループの停止理由、HALT/ハング、割り込みモード0/1/2、EI遅延、I/O委譲を検証します。


class CountingDevice(IoDevice):
    def __init__(self, value: int):
        self.value = value
        self.reads = 0
        self.writes = []

    def read_in(self) -> int:
        self.reads += 1
        return self.value

    def write_out(self, value: int) -> None:
        self.writes.append(value)


class TestExecutionBudget:
    # @intent:test_case N個のNOPを実行するとPCがNバイト進み、消費サイクルが4×Nになることを検証します。
    @pytest.mark.parametrize("count", [1, 10, 100])
    def test_nop_sequence(self, cpu, count):
        result = cpu.execute(4 * count)
        assert result == ExecutionResult(4 * count, StopReason.DONE)
        assert cpu.get_state().pc == count

    def test_overshoot_is_at_most_one_instruction(self, cpu):
        result = cpu.execute(10)
        assert result.cycles == 12
        assert cpu.get_state().pc == 3

    @pytest.mark.parametrize("budget", [0, -1, -2 ** 31])
    def test_non_positive_budget(self, cpu, budget):
        assert cpu.execute(budget) == ExecutionResult(0, StopReason.DONE)
        assert cpu.get_state().pc == 0

    def test_cycle_count_accumulates(self, cpu):
        cpu.execute(8)
        cpu.execute(8)
        assert cpu.cycle_count == 16
        cpu.reset()
        assert cpu.cycle_count == 0

    def test_execute_without_memory(self):
        with pytest.raises(InvalidStateError):
            Z80Cpu().execute(10)

    def test_install_memory_later(self):
        cpu = Z80Cpu()
        cpu.install_memory(RAM(0x10000))
        assert cpu.execute(4).cycles == 4


class TestHaltAndHung:
    # @intent:test_case IFF2が無効な状態でHALTするとHUNGで停止し、再度executeしてもPCは変わらずHUNGを返すことを検証します。
    def test_halt_with_interrupts_disabled_is_hung(self, cpu, load):
        load(0x0000, [0x76])
        first = cpu.execute(100)
        assert first == ExecutionResult(4, StopReason.HUNG)
        assert cpu.get_state().pc == 0x0001
        second = cpu.execute(100)
        assert second == ExecutionResult(0, StopReason.HUNG)
        assert cpu.get_state().pc == 0x0001

    def test_hung_ignores_pending_interrupt(self, cpu, load):
        load(0x0000, [0x76])
        cpu.execute(10)
        assert cpu.interrupt(0xFF) is True
        assert cpu.execute(100).reason is StopReason.HUNG
        assert cpu.interrupts.pending is True

    def test_reset_recovers_from_hung(self, cpu, load):
        load(0x0000, [0x76])
        cpu.execute(10)
        cpu.reset()
        assert cpu.get_state().halted is False
        assert cpu.execute(4).reason is StopReason.HUNG

    # @intent:test_case 割り込み可能なHALT中は4 TステートずつPCを維持して予算を消費し、HALTEDで停止することを検証します。
    def test_halt_with_interrupts_enabled_is_halted(self, cpu, load):
        load(0x0000, [0xFB, 0x76])  # EI ; HALT
        result = cpu.execute(40)
        assert result == ExecutionResult(40, StopReason.HALTED)
        assert cpu.get_state().pc == 0x0002

    # @intent:test_case 割り込み可能なHALTから割り込みで復帰し、RETI後にHALTの次のアドレスから再開することを検証します。
    def test_interrupt_resumes_after_halt(self, cpu, load):
        load(0x0000, [0xED, 0x56, 0xFB, 0x76, 0x3E, 0x42, 0x76])  # IM 1 ; EI ; HALT ; LD A,42H ; HALT
        load(0x0038, [0xFB, 0xED, 0x4D])  # EI ; RETI
        state = cpu.get_state()
        state.sp = 0xFFFE

        result = cpu.execute(100)
        assert result.reason is StopReason.HALTED
        assert state.pc == 0x0004

        assert cpu.interrupt(0xFF) is True
        result = cpu.execute(40)
        # INT(13) + EI(4) + RETI(14) + LD A,n(7) + HALT(4)
        assert result == ExecutionResult(42, StopReason.HALTED)
        assert state.a == 0x42
        assert state.pc == 0x0007
        assert state.sp == 0xFFFE
        assert cpu.interrupts.pending is False


class TestInterruptModes:
    @pytest.fixture
    def enabled(self, cpu):
        state = cpu.get_state()
        state.iff1 = True
        state.iff2 = True
        state.sp = 0xFFFE
        state.pc = 0x0100
        return state

    # @intent:test_case モード2では(I<<8)|バス値のアドレスからリトルエンディアンでジャンプ先を読み込むことを検証します。
    def test_mode2_vector_table(self, cpu, ram, enabled):
        enabled.im = 2
        enabled.i = 0x20
        ram.load(0x2004, b"\x00\x30")
        cpu.interrupt(0x04)
        result = cpu.execute(1)
        assert result == ExecutionResult(19, StopReason.DONE)
        assert enabled.pc == 0x3000
        assert ram.read_byte(0xFFFC) == 0x00
        assert ram.read_byte(0xFFFD) == 0x01
        assert enabled.iff1 is False
        assert enabled.iff2 is False

    def test_mode1_fixed_vector(self, cpu, ram, enabled):
        enabled.im = 1
        cpu.interrupt(0x00)
        result = cpu.execute(1)
        assert result.cycles == 13
        assert enabled.pc == 0x0038
        assert ram.read_byte(0xFFFC) == 0x00
        assert ram.read_byte(0xFFFD) == 0x01

    # @intent:test_case モード0ではデバイスが供給したRST命令を実行し、PCは割り込まれた命令のアドレスが積まれることを検証します。
    def test_mode0_rst(self, cpu, ram, enabled):
        enabled.im = 0
        cpu.interrupt(0xFF)  # RST 38H
        result = cpu.execute(1)
        assert result.cycles == 13
        assert enabled.pc == 0x0038
        assert ram.read_byte(0xFFFC) == 0x00
        assert ram.read_byte(0xFFFD) == 0x01

    # @intent:test_case モード0で複数バイト命令（CALL nn）を供給できることを検証します。
    def test_mode0_call(self, cpu, ram, enabled):
        enabled.im = 0
        cpu.interrupt([0xCD, 0x00, 0x40])
        result = cpu.execute(1)
        assert result.cycles == 19
        assert enabled.pc == 0x4000
        assert enabled.sp == 0xFFFC
        assert ram.read_byte(0xFFFC) == 0x00
        assert ram.read_byte(0xFFFD) == 0x01

    def test_mode0_missing_operands_read_as_ff(self, cpu, enabled):
        enabled.im = 0
        cpu.interrupt(0xCD)
        cpu.execute(1)
        assert enabled.pc == 0xFFFF

    def test_disabled_interrupts_stay_pending(self, cpu, enabled):
        enabled.iff1 = False
        cpu.interrupt(0xFF)
        result = cpu.execute(8)
        assert result.cycles == 8
        assert enabled.pc == 0x0102
        assert cpu.interrupts.pending is True

    def test_cleared_interrupt_is_not_taken(self, cpu, enabled):
        enabled.im = 1
        cpu.interrupt(0xFF)
        assert cpu.clear_interrupt() is True
        cpu.execute(4)
        assert enabled.pc == 0x0101

    # @intent:test_case EIの直後の1命令は割り込みを受け付けないことを検証します。
    def test_ei_delay(self, cpu, ram, load):
        load(0x0000, [0xFB, 0x00])  # EI ; NOP
        state = cpu.get_state()
        state.im = 1
        state.sp = 0xFFFE
        cpu.interrupt(0xFF)
        result = cpu.execute(9)
        # EI(4) + NOP(4) + INT(13)
        assert result.cycles == 21
        assert state.pc == 0x0038
        assert ram.read_byte(0xFFFC) == 0x02

    # @intent:test_case 連続したDD/FDプレフィックスの途中では割り込みを受け付けず、続く命令の完了後に受理することを検証します。
    def test_no_interrupt_between_repeated_prefixes(self, cpu, ram, load, enabled):
        enabled.im = 1
        load(0x0100, [0xDD, 0xFD, 0x21, 0x34, 0x12])  # DD ; LD IY,1234H
        first = cpu.step()
        assert first.mnemonic == "NOP*"
        assert enabled.pc == 0x0101

        cpu.interrupt(0xFF)
        result = cpu.execute(1)
        assert result.cycles == 14
        assert enabled.iy == 0x1234
        assert enabled.pc == 0x0105
        assert cpu.interrupts.pending is True

        result = cpu.execute(1)
        assert result.cycles == 13
        assert enabled.pc == 0x0038
        assert ram.read_byte(0xFFFC) == 0x05
        assert ram.read_byte(0xFFFD) == 0x01

    def test_interrupt_accepted_after_prefixed_instruction(self, cpu, load, enabled):
        enabled.im = 1
        load(0x0100, [0xDD, 0xFD, 0x21, 0x34, 0x12])
        cpu.step()
        cpu.step()
        assert enabled.after_prefix is False
        cpu.interrupt(0xFF)
        assert cpu.execute(1).cycles == 13
        assert enabled.pc == 0x0038

    def test_register_map_reports_interrupt_state(self, cpu, enabled):
        enabled.im = 2
        registers = cpu.get_register_map()
        assert registers["IM"] == 2
        assert registers["IFF1"] == 1
        assert registers["PC"] == 0x0100
        assert set(cpu.get_flag_state()) == {"S", "Z", "H", "PV", "N", "C"}


class TestIoDelegation:
    # @intent:test_case ポート5へのIN/OUTがそれぞれread_in/write_outを1回だけ呼び出すことを検証します。
    def test_port5_in_out(self, cpu, load):
        device = CountingDevice(0xA5)
        cpu.install_device(5, device)
        assert cpu.device_at(5) is device
        load(0x0000, [0xDB, 0x05, 0xD3, 0x05])  # IN A,(5) ; OUT (5),A
        cpu.step()
        assert device.reads == 1
        assert cpu.get_state().a == 0xA5
        cpu.step()
        assert device.reads == 1
        assert device.writes == [0xA5]

    def test_port_out_of_range(self, cpu):
        with pytest.raises(InvalidStateError):
            cpu.install_device(256, CountingDevice(0))


class TestInterruptLineFailures:
    # @intent:test_case 割り込みラインが破棄されている場合、executeは例外ではなくERRORの結果を返すことを検証します。
    def test_closed_line_reports_error(self, cpu):
        cpu.interrupts.close()
        result = cpu.execute(10)
        assert result.reason is StopReason.ERROR
        assert result.cycles == 0
        assert isinstance(result.error, InvalidStateError)

    def test_line_held_by_executing_thread_reports_deadlock(self, cpu):
        with cpu.interrupts.locked():
            result = cpu.execute(10)
        assert result.reason is StopReason.ERROR
        assert isinstance(result.error, DeadlockError)

    def test_teardown(self, cpu):
        cpu.teardown()
        with pytest.raises(InvalidStateError):
            cpu.execute(10)
        with pytest.raises(InvalidStateError):
            cpu.interrupt(0xFF)

    # @intent:test_case 2つのスレッドが同時にtry_interruptしても、成功を観測するのは一方だけであることを検証します。
    def test_concurrent_try_interrupt(self, cpu):
        barrier = threading.Barrier(2)
        outcomes = []

        def poster():
            barrier.wait()
            try:
                outcomes.append(cpu.try_interrupt(0xFF))
            except WouldBlockError:
                outcomes.append("would_block")

        threads = [threading.Thread(target=poster) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert outcomes.count(True) == 1
        assert len(outcomes) == 2

    def test_try_clear_interrupt(self, cpu):
        assert cpu.try_clear_interrupt() is False
        cpu.try_interrupt(0x01)
        assert cpu.try_clear_interrupt() is True
