# z80e/arch/z80/cpu.py
"""
Z80 CPUエミュレーションの中心モジュール。

このモジュールはZ80 CPUの具体的な実装を提供し、
AbstractCpuインターフェースを実装します。
ホストはメモリとI/Oデバイスをインストールし、サイクル予算を指定してexecute()を呼び出します。
別スレッドからの割り込み要求はInterruptLineを介して受け付けます。
"""
import logging
from typing import Dict, Optional

from z80e.core.cpu import AbstractCpu
from z80e.core.interrupt import BusValue, InterruptLine
from z80e.core.operation import Operation
from z80e.common.types import StopReason
from z80e.arch.z80.state import Z80CpuState
from z80e.arch.z80.instructions import decode_opcode, execute_instruction
from z80e.arch.z80.instructions.base import push_word
from z80e.transport.bus import Bus, InterruptDataBus, IoDevice, Memory

logger = logging.getLogger(__name__)

IM1_VECTOR = 0x0038
IM0_ACK_CYCLES = 2
IM1_CYCLES = 13
IM2_CYCLES = 19
HALT_IDLE_CYCLES = 4


# @intent:responsibility Z80 CPUの具体的なエミュレーションロジックを提供します。
class Z80Cpu(AbstractCpu):
    """
    Z80 CPUをエミュレートするクラス。
    AbstractCpuを継承し、Z80固有の動作（HALT、割り込み応答、Rレジスタ）を実装します。
    """
    # @intent:responsibility Z80Cpuの初期化を行います。
    # @intent:post-condition レジスタは全て0、IFFは無効、IM 0、割り込みラインはIdleです。
    def __init__(self, memory: Optional[Memory] = None):
        super().__init__(Bus(memory))
        self._interrupts = InterruptLine()

    # @intent:responsibility Z80 CPUの初期状態（Z80CpuState）を生成します。
    def _create_initial_state(self) -> Z80CpuState:
        return Z80CpuState()

    # --- ケイパビリティとライフサイクル ---

    def install_memory(self, memory: Memory) -> None:
        self._bus.install_memory(memory)

    def install_device(self, port: int, device: Optional[IoDevice]) -> None:
        self._bus.install_device(port, device)

    def device_at(self, port: int) -> Optional[IoDevice]:
        return self._bus.device_at(port)

    @property
    def interrupts(self) -> InterruptLine:
        return self._interrupts

    # @intent:responsibility CPUハンドルを破棄します。割り込みラインを閉じ、プロバイダへの参照を解除します。
    def teardown(self) -> None:
        self._interrupts.close()
        self._bus.detach()
        logger.debug("CPU torn down")

    # --- 割り込み要求（任意のスレッドから呼び出し可能） ---

    def interrupt(self, bus_value: BusValue) -> bool:
        return self._interrupts.post(bus_value)

    def try_interrupt(self, bus_value: BusValue) -> bool:
        return self._interrupts.try_post(bus_value)

    def clear_interrupt(self) -> bool:
        return self._interrupts.clear()

    def try_clear_interrupt(self) -> bool:
        return self._interrupts.try_clear()

    # --- 命令サイクル ---

    # @intent:responsibility 現在のPCからオペコードをフェッチします。PCの更新はstep内で命令長に応じて行います。
    def _fetch(self) -> int:
        return self._bus.read(self._state.pc)

    # @intent:responsibility フェッチしたオペコードをデコードし、Operationオブジェクトを返します。
    def _decode(self, opcode: int) -> Operation:
        # pcをdecode_opcodeに渡すのは、マルチバイト命令のオペランド読み込みのため
        return decode_opcode(opcode, self._bus, self._state.pc)

    # @intent:responsibility デコードされた命令を実行し、Z80の状態を更新します。
    def _execute(self, operation: Operation) -> int:
        self._advance_refresh(2 if len(operation.opcode_hex) >= 4 else 1)
        self._state.after_prefix = False
        was_halted = self._state.halted
        extra = execute_instruction(operation, self._state, self._bus)
        if self._state.halted and not was_halted:
            if self._state.hung:
                logger.info("CPU hung at %#06x (HALT with interrupts disabled)", (self._state.pc - 1) & 0xFFFF)
            else:
                logger.debug("CPU halted at %#06x", (self._state.pc - 1) & 0xFFFF)
        return extra

    # @intent:responsibility Rレジスタの下位7ビットを進めます。ビット7は保持されます。
    def _advance_refresh(self, count: int) -> None:
        r = self._state.r
        self._state.r = (r & 0x80) | ((r + count) & 0x7F)

    # @intent:responsibility HALT中は命令をフェッチせず、4 TステートのアイドルとしてPCを維持します。
    def _handle_halt(self) -> Optional[Operation]:
        if not self._state.halted:
            return None
        self._advance_refresh(1)
        return Operation(opcode_hex="76", mnemonic="HALT", operands=[], cycle_count=HALT_IDLE_CYCLES, length=0)

    def _is_hung(self) -> bool:
        return self._state.hung

    def _stop_reason(self) -> StopReason:
        if self._state.hung:
            return StopReason.HUNG
        if self._state.halted:
            return StopReason.HALTED
        return StopReason.DONE

    # @intent:responsibility 命令境界で割り込みラインを確認し、受理条件を満たせば割り込み応答を行います。
    # @intent:rationale 受理しない場合もラインをサンプリングし、破棄や再入などの異常を境界ごとに検出します。
    def _service_interrupt(self) -> Optional[Operation]:
        state = self._state
        if state.ei_delay:
            # EI直後の1命令は割り込みを受け付けない
            state.ei_delay = False
            self._interrupts.sample()
            return None
        if state.after_prefix:
            # プレフィックスと続く命令の間では割り込みを受け付けない
            self._interrupts.sample()
            return None
        if not state.iff1:
            self._interrupts.sample()
            return None

        data = self._interrupts.acknowledge()
        if data is None:
            return None

        state.iff1 = False
        state.iff2 = False
        state.halted = False
        self._advance_refresh(1)

        if state.im == 0:
            operation = self._vector_mode0(data)
        elif state.im == 1:
            push_word(state, self._bus, state.pc)
            state.pc = IM1_VECTOR
            operation = Operation(opcode_hex="FF", mnemonic="INT (IM 1)", operands=[f"${IM1_VECTOR:04X}"],
                                  cycle_count=IM1_CYCLES, length=0)
        else:
            vector_address = ((state.i << 8) | data[0]) & 0xFFFF
            target = self._bus.read_word(vector_address)
            push_word(state, self._bus, state.pc)
            state.pc = target
            operation = Operation(opcode_hex="FF", mnemonic="INT (IM 2)", operands=[f"${target:04X}"],
                                  cycle_count=IM2_CYCLES, length=0)

        logger.debug("Interrupt accepted in IM %d: %s -> PC=%#06x", state.im, operation.mnemonic, state.pc)
        self._cycle_count += operation.cycle_count
        return operation

    # @intent:responsibility モード0: デバイスがデータバスに置いた命令を、PCを進めずに実行します。
    def _vector_mode0(self, data: bytes) -> Operation:
        overlay = InterruptDataBus(data, self._state.pc)
        operation = decode_opcode(data[0], overlay, self._state.pc)
        extra = execute_instruction(operation, self._state, self._bus)
        cost = operation.cycle_count + (extra or 0) + IM0_ACK_CYCLES
        return Operation(
            opcode_hex=operation.opcode_hex,
            mnemonic=f"INT (IM 0) {operation.mnemonic}",
            operands=operation.operands,
            operand_bytes=operation.operand_bytes,
            cycle_count=cost,
            length=0
        )

    def get_register_map(self) -> Dict[str, int]:
        s = self._state
        return {
            "A": s.a, "F": s.f, "B": s.b, "C": s.c, "D": s.d, "E": s.e, "H": s.h, "L": s.l,
            "A'": s.a_, "F'": s.f_, "B'": s.b_, "C'": s.c_, "D'": s.d_, "E'": s.e_, "H'": s.h_, "L'": s.l_,
            "IX": s.ix, "IY": s.iy, "SP": s.sp, "PC": s.pc,
            "I": s.i, "R": s.r,
            "AF": s.af, "BC": s.bc, "DE": s.de, "HL": s.hl,
            "AF'": s.af_, "BC'": s.bc_, "DE'": s.de_, "HL'": s.hl_,
            "IM": s.im, "IFF1": int(s.iff1), "IFF2": int(s.iff2)
        }

    def get_flag_state(self) -> Dict[str, bool]:
        s = self._state
        return {
            "S": s.flag_s,
            "Z": s.flag_z,
            "H": s.flag_h,
            "PV": s.flag_pv,
            "N": s.flag_n,
            "C": s.flag_c
        }
