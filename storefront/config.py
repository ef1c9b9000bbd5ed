"""
Storefront - 設定

すべての設定は環境変数から読み込む。デフォルト値はローカル開発用。
"""

import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./storefront.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
AUTH_SERVICE_URL = os.environ.get("AUTH_SERVICE_URL", "http://localhost:8001")

# コンテンツ生成 (外部アシスタント)
COHERE_API_URL = os.environ.get("COHERE_API_URL", "https://api.cohere.com/v1/chat")
COHERE_API_KEY = os.environ.get("COHERE_API_KEY", "")
COHERE_MODEL = os.environ.get("COHERE_MODEL", "command-a-03-2025")

GENERATOR_TIMEOUT_SECONDS = float(os.environ.get("GENERATOR_TIMEOUT_SECONDS", "30"))
AUTH_TIMEOUT_SECONDS = float(os.environ.get("AUTH_TIMEOUT_SECONDS", "10"))

# 会話履歴のウィンドウ (直近 N 件)
HISTORY_WINDOW = int(os.environ.get("HISTORY_WINDOW", "20"))
MAX_HISTORY_WINDOW = int(os.environ.get("MAX_HISTORY_WINDOW", "50"))
CATALOG_CONTEXT_LIMIT = int(os.environ.get("CATALOG_CONTEXT_LIMIT", "50"))

ESTIMATED_DELIVERY_DAYS = int(os.environ.get("ESTIMATED_DELIVERY_DAYS", "3"))
STOCK_MAX_RETRIES = int(os.environ.get("STOCK_MAX_RETRIES", "10"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
