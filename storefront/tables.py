"""
Storefront - テーブル定義

SQLAlchemy Core のテーブル定義。金額はすべて最小通貨単位 (セント) の整数で保持し、
浮動小数点による丸め誤差を避ける。
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()


# ── カタログ / 在庫 ───────────────────────────────

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, index=True),
    Column("price_cents", BigInteger, nullable=False),
    Column("category", String(100)),
    Column("image", String(255)),
)

stock_records = Table(
    "stock_records",
    metadata,
    Column("product_id", String(36), ForeignKey("products.id"), primary_key=True),
    Column("quantity", Integer, nullable=False, default=0),
    Column("available", Boolean, nullable=False, default=False),
    # 楽観的ロック用のバージョン番号
    Column("version", Integer, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True)),
)

cart_items = Table(
    "cart_items",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("product_id", String(36), ForeignKey("products.id"), primary_key=True),
    Column("quantity", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)


# ── 注文 ──────────────────────────────────────────

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("subtotal_cents", BigInteger, nullable=False),
    Column("tax_cents", BigInteger, nullable=False),
    Column("shipping_cents", BigInteger, nullable=False),
    Column("total_cents", BigInteger, nullable=False),
    Column("status", String(16), nullable=False),
    Column("payment_method", String(32), nullable=False),
    Column("delivery_address", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", String(36), nullable=False),
    Column("quantity", Integer, nullable=False),
    # 注文時点の単価スナップショット
    Column("unit_price_cents", BigInteger, nullable=False),
)

shipping_addresses = Table(
    "shipping_addresses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("phone", String(50), nullable=False),
    Column("address", String(255), nullable=False),
    Column("city", String(100), nullable=False),
    Column("state", String(100), nullable=False, default=""),
    Column("zip_code", String(20), nullable=False),
    Column("country", String(100), nullable=False),
)


# ── チャット ──────────────────────────────────────

chat_sessions = Table(
    "chat_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("title", String(64), nullable=False),
    # メッセージ順序の採番用カウンタ
    Column("last_seq", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

chat_messages = Table(
    "chat_messages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", String(64), nullable=False),
    Column("role", String(16), nullable=False),
    Column("content", Text, nullable=False),
    Column("action", Text),
    Column("seq", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("session_id", "seq", name="uq_chat_messages_session_seq"),
)
