# z80e/core/cpu.py
"""
Core Layer (抽象CPU)

このモジュールは、CPUの基本的な状態管理と、サイクル予算の下での命令サイクルの駆動に関する抽象化を提供します。
具体的な命令の振る舞いはInstruction Layerに移譲されます。
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Optional

from z80e.common.errors import Z80Error
from z80e.common.types import ExecutionResult, StopReason
from z80e.core.operation import Operation
from z80e.core.state import CpuState
from z80e.transport.bus import Bus

logger = logging.getLogger(__name__)


# @intent:responsibility 抽象CPUの基本機能とインターフェースを定義します。
class AbstractCpu(ABC):
    """
    全てのCPUエミュレーションの基底となる抽象クラス。
    Busとのインターフェース、基本的な状態管理、命令サイクルと実行ループの抽象化を提供します。
    """
    # @intent:responsibility CPUの状態とバスへの参照を初期化します。
    def __init__(self, bus: Bus):
        self._bus = bus
        self._state: CpuState = self._create_initial_state()
        self._cycle_count: int = 0
        # @intent:rationale Stateオブジェクトの直接操作を避けるため、protectedな命名規則を採用。
        #                  外部からのアクセスは`get_state()`メソッドを介して行う。

    # @intent:responsibility 初期状態のCpuStateオブジェクトを生成します。
    @abstractmethod
    def _create_initial_state(self) -> CpuState:
        """
        CPUの初期状態を生成して返します。
        具体的なCPUアーキテクチャはこのメソッドを実装し、
        そのアーキテクチャに特化したCpuStateのサブクラスを返すことができます。
        """
        pass

    # @intent:responsibility CPUをリセットし、初期状態に戻します。
    def reset(self) -> None:
        """
        CPUのレジスタと内部状態を初期値にリセットします。累計サイクル数もクリアされます。
        """
        self._state = self._create_initial_state()
        self._cycle_count = 0

    # @intent:responsibility 現在のCPUの状態を返します。
    def get_state(self) -> CpuState:
        return self._state

    @property
    def cycle_count(self) -> int:
        """リセット以降に消費した累計Tステート数。"""
        return self._cycle_count

    @property
    def bus(self) -> Bus:
        return self._bus

    # @intent:responsibility メモリから次の命令（オペコード）をフェッチします。
    @abstractmethod
    def _fetch(self) -> int:
        """
        現在のPCからメモリの次の命令（オペコード）をフェッチし、その値を返します。
        PCの更新は_update_pcで行います。
        """
        pass

    # @intent:responsibility フェッチしたオペコードを解析し、Operationオブジェクトに変換します。
    @abstractmethod
    def _decode(self, opcode: int) -> Operation:
        pass

    # @intent:responsibility デコードされた命令を実行し、CPUの状態を更新します。
    # @intent:return 分岐成立などで基本コストに加算されるTステート数。
    @abstractmethod
    def _execute(self, operation: Operation) -> int:
        pass

    # @intent:responsibility CPUを1命令サイクル進め、実行した命令を返します。
    # @intent:rationale Template Methodパターンを採用し、共通の実行フロー（HALT判定→フェッチ→デコード→PC更新→実行）を定義します。
    #                  アーキテクチャ固有の振る舞い（HALT処理など）はフックメソッドで対応します。
    def step(self) -> Operation:
        """
        CPUを1命令サイクル進めます。戻り値のcycle_countは分岐による追加分を含む実際のコストです。
        """
        # 1. HALT判定 (Hook)
        halt_operation = self._handle_halt()
        if halt_operation:
            self._cycle_count += halt_operation.cycle_count
            return halt_operation

        # 2. フェッチ
        opcode = self._fetch()

        # 3. デコード
        operation = self._decode(opcode)

        # 4. PC更新 (Hook)
        self._update_pc(operation)

        # 5. 実行
        extra = self._execute(operation)
        if extra:
            operation = replace(operation, cycle_count=operation.cycle_count + extra)

        self._cycle_count += operation.cycle_count
        return operation

    # @intent:responsibility HALT状態の場合の処理を行います。
    # @intent:return HALT中であれば消費したサイクルを表すOperation、そうでなければNone。
    def _handle_halt(self) -> Optional[Operation]:
        return None

    # @intent:responsibility 命令実行前にPCを更新します。
    def _update_pc(self, operation: Operation) -> None:
        self._state.pc = (self._state.pc + operation.length) & 0xFFFF

    # @intent:responsibility 命令境界で割り込みを処理します。
    # @intent:return 割り込みを受理した場合はその処理を表すOperation、そうでなければNone。
    def _service_interrupt(self) -> Optional[Operation]:
        return None

    # @intent:responsibility 外部リセット以外で復帰できない停止状態かどうかを返します。
    def _is_hung(self) -> bool:
        return False

    # @intent:responsibility 予算を使い切った時点の停止理由を返します。
    def _stop_reason(self) -> StopReason:
        return StopReason.DONE

    # @intent:responsibility 指定されたサイクル予算の範囲で命令を実行します。
    # @intent:rationale 予算の確認は命令境界でのみ行うため、実際の消費は要求より最大1命令分（と割り込み応答分）多くなり得ます。
    def execute(self, cycles: int) -> ExecutionResult:
        """
        サイクル予算を使い切るか、CPUがハング状態に入るまで命令を実行します。

        割り込みラインの異常は例外として送出せず、StopReason.ERRORの結果として返します。
        """
        self._bus.require_memory()
        consumed = 0
        while cycles > 0 and not self._is_hung():
            try:
                operation = self._service_interrupt()
            except Z80Error as e:
                logger.error("Execution aborted after %d cycles: %s", consumed, e)
                return ExecutionResult(consumed, StopReason.ERROR, e)
            if operation is None:
                operation = self.step()
            cycles -= operation.cycle_count
            consumed += operation.cycle_count
        return ExecutionResult(consumed, self._stop_reason())

    @abstractmethod
    def get_register_map(self) -> Dict[str, int]:
        """
        現在のレジスタ値を辞書形式で返す。
        ホストがCPUの内部構造を知らなくても値を参照できるようにするために使用される。
        """
        pass

    @abstractmethod
    def get_flag_state(self) -> Dict[str, bool]:
        """
        現在のフラグ（ステータスレジスタ）の各ビットの状態を辞書形式で返す。
        """
        pass
