# z80e/core/interrupt.py
"""
割り込みライン

実行ループとは別のスレッドから、保留中の割り込み（とデータバスに提示される値）を
安全に設定・解除するためのコントローラを提供します。

状態は Idle（保留なし）と Pending(bus_value) の2つで、全ての読み書きは1つのロックで保護されます。
ロックの再入はスレッドIDのタグで検出し、ハングさせる代わりにDeadlockErrorとして報告します。
"""
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Union

from z80e.common.errors import DeadlockError, InvalidStateError, WouldBlockError

logger = logging.getLogger(__name__)

BusValue = Union[int, bytes, Sequence[int]]


# @intent:responsibility 割り込み要求値を内部表現（bytes）に正規化します。
# @intent:rationale モード0ではCALL nnのような複数バイト命令をデバイスが供給するため、バイト列も受け付けます。
def normalize_bus_value(bus_value: BusValue) -> bytes:
    if isinstance(bus_value, bool):
        raise ValueError("Bus value must be an 8-bit integer or a byte sequence.")
    if isinstance(bus_value, int):
        if not 0 <= bus_value <= 0xFF:
            raise ValueError(f"Bus value {bus_value} is not an 8-bit value.")
        return bytes([bus_value])
    try:
        data = bytes(bus_value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid bus value {bus_value!r}: {e}") from e
    if not data:
        raise ValueError("Bus value sequence must not be empty.")
    return data


# @intent:responsibility 保留中の割り込み要求と、そのデータバス値をスレッド安全に管理します。
class InterruptLine:
    """
    1本のマスカブル割り込みライン。

    post / clear はロックを待ち、try_post / try_clear は競合時に即座にWouldBlockErrorを送出します。
    どちらも状態遷移が起きた場合にTrue、既に目的の状態だった場合にFalseを返します。
    """
    def __init__(self):
        self._lock: Optional[threading.Lock] = threading.Lock()
        self._owner: Optional[int] = None
        self._pending: bool = False
        self._bus_value: bytes = b""

    # @intent:responsibility ロックを取得し、所有スレッドのタグを付けます。
    # @intent:post-condition 戻り値のロックは取得済みであり、_ownerは呼び出しスレッドのIDです。
    def _acquire(self, blocking: bool) -> threading.Lock:
        lock = self._lock
        if lock is None:
            raise InvalidStateError("Interrupt line has been torn down.")
        me = threading.get_ident()
        if self._owner == me:
            if blocking:
                raise DeadlockError("Interrupt line lock is already held by the calling thread.")
            raise WouldBlockError("Interrupt line lock is held by the calling thread.")
        if not lock.acquire(blocking):
            raise WouldBlockError("Interrupt line lock is contended.")
        if self._lock is not lock:
            # 待機中にclose()が完了した
            lock.release()
            raise InvalidStateError("Interrupt line has been torn down.")
        if self._owner is not None:
            # 解放済みのロックに所有者タグが残っている: 構造的に不正な状態
            lock.release()
            raise InvalidStateError("Interrupt line lock has a stale owner tag.")
        self._owner = me
        return lock

    def _release(self, lock: threading.Lock) -> None:
        self._owner = None
        lock.release()

    @contextmanager
    def _held(self, blocking: bool = True) -> Iterator[None]:
        lock = self._acquire(blocking)
        try:
            yield
        finally:
            self._release(lock)

    # @intent:responsibility ホストが複数の読み書きをまとめて行うためにラインを保持します。
    # @intent:rationale 保持中に同じスレッドからpost/clearを呼ぶとDeadlockErrorになります。
    @contextmanager
    def locked(self) -> Iterator["InterruptLine"]:
        with self._held():
            yield self

    # --- 操作 ---

    def post(self, bus_value: BusValue) -> bool:
        """割り込みを要求します（ブロッキング）。Idleから遷移した場合にTrueを返します。"""
        data = normalize_bus_value(bus_value)
        with self._held(blocking=True):
            return self._set_pending(data)

    def try_post(self, bus_value: BusValue) -> bool:
        """割り込みを要求します（ノンブロッキング）。"""
        data = normalize_bus_value(bus_value)
        with self._held(blocking=False):
            return self._set_pending(data)

    def clear(self) -> bool:
        """保留中の割り込みを取り下げます（ブロッキング）。Pendingから遷移した場合にTrueを返します。"""
        with self._held(blocking=True):
            return self._set_idle()

    def try_clear(self) -> bool:
        """保留中の割り込みを取り下げます（ノンブロッキング）。"""
        with self._held(blocking=False):
            return self._set_idle()

    def _set_pending(self, data: bytes) -> bool:
        if self._pending:
            return False
        self._pending = True
        self._bus_value = data
        logger.debug("Interrupt posted with bus value %s", data.hex())
        return True

    def _set_idle(self) -> bool:
        if not self._pending:
            return False
        self._pending = False
        self._bus_value = b""
        return True

    # --- 実行ループ向け ---

    # @intent:responsibility 保留中のバス値を変更せずに返します。命令境界ごとの健全性確認にも使われます。
    def sample(self) -> Optional[bytes]:
        with self._held(blocking=True):
            return self._bus_value if self._pending else None

    # @intent:responsibility 保留中の割り込みを受理し、Idleに戻したうえでバス値を返します。保留がなければNone。
    def acknowledge(self) -> Optional[bytes]:
        with self._held(blocking=True):
            if not self._pending:
                return None
            data = self._bus_value
            self._set_idle()
            return data

    @property
    def pending(self) -> bool:
        with self._held(blocking=True):
            return self._pending

    @property
    def bus_value(self) -> Optional[int]:
        """保留中のバス値の先頭バイト。Idleの場合はNone。"""
        with self._held(blocking=True):
            return self._bus_value[0] if self._pending else None

    @property
    def closed(self) -> bool:
        return self._lock is None

    # @intent:responsibility ラインを破棄します。以降の操作は全てInvalidStateErrorになります。
    def close(self) -> None:
        lock = self._lock
        if lock is None:
            return
        with self._held(blocking=True):
            self._pending = False
            self._bus_value = b""
            self._lock = None
