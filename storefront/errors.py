"""
Storefront - 例外定義

ドメイン例外はすべて StorefrontError を継承する。
ルート側で HTTPException に変換し、ユーザーには短く安定したメッセージだけを返す。
"""


class StorefrontError(Exception):
    """ドメイン例外の基底クラス"""


class ValidationError(StorefrontError):
    """入力の形式・値が不正 (リトライしない)"""


class NotFoundError(StorefrontError):
    """商品・注文・セッションが存在しない"""


class AuthenticationError(StorefrontError):
    """認証情報が無効"""


class PermissionDeniedError(StorefrontError):
    """権限不足 (admin ロールが必要な操作など)"""


class InvalidStatusTransition(StorefrontError):
    """注文ステータスの遷移が状態機械に反している"""

    def __init__(self, current: str, requested: str, terminal: bool = False) -> None:
        if terminal:
            message = f"Order is already {current} and can no longer change"
        else:
            message = f"Cannot transition order from {current} to {requested}"
        super().__init__(message)
        self.current = current
        self.requested = requested


class FatalSagaError(StorefrontError):
    """
    Saga の致命的失敗 (Step 1-2)。

    補償トランザクション実行後に送出される。
    public_message はユーザーに返す固定文言、内部詳細はログのみ。
    """

    public_message = "Failed to create order"

    def __init__(self, step: str, detail: str = "") -> None:
        super().__init__(f"{step} failed: {detail}" if detail else f"{step} failed")
        self.step = step


class TolerableSagaError(StorefrontError):
    """Saga の許容可能な失敗 (Step 3-4)。ログに記録するだけで伝播しない。"""


class StockContentionError(StorefrontError):
    """在庫更新の CAS リトライ上限に達した"""


class ProtocolDecodeError(StorefrontError):
    """アクション指示子のペイロードが不正 (指示子なしとして扱う)"""


class DispatchError(StorefrontError):
    """
    アクション指示子の実行失敗。

    notice は会話に追記するユーザー向けの短い文言。
    """

    def __init__(self, notice: str) -> None:
        super().__init__(notice)
        self.notice = notice


class GeneratorUnavailableError(StorefrontError):
    """コンテンツ生成サービスがタイムアウト・エラーを返した"""
