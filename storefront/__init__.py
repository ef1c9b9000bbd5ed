"""
Storefront Core

チェックアウト Saga と、チャットアシスタントのアクション・プロトコルを
実装するサービス。
"""
