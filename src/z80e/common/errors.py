"""
エミュレーションコアが送出する例外の定義。

CPUハンドルの契約違反（メモリ未設定、ポート範囲外、ロックの再入など）と、
割り込みラインの一時的な競合を、呼び出し元が区別できる型として提供します。
"""


# @intent:responsibility z80eが送出する全ての例外の基底クラス。詳細メッセージのみを持つ「その他」のエラーとしても使用されます。
class Z80Error(Exception):
    pass


# @intent:responsibility 呼び出し時点でCPUハンドルまたは割り込みラインが不正な状態にあることを示します。
# @intent:rationale メモリ未設定・ポート範囲外・破棄済みのラインへの操作は、リトライしても解決しないプログラマのエラーです。
class InvalidStateError(Z80Error):
    pass


# @intent:responsibility ノンブロッキング操作がロックの競合により実行できなかったことを示します。
class WouldBlockError(Z80Error):
    pass


# @intent:responsibility 既にロックを保持しているスレッドがブロッキング操作を呼び出したことを示します。
class DeadlockError(Z80Error):
    pass
