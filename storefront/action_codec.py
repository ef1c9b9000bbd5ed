"""
Storefront - アクション・プロトコル (エンコード / デコード)

アシスタントの応答テキストには、機械実行用の指示子が最大 1 つ埋め込まれる:

    Sure! <ACTION>{"type":"navigate","page":"cart"}</ACTION>

指示子の型は navigate / search / addToCart / viewProduct の 4 種類に閉じている。
アシスタントの出力は信頼できない入力なので、デコードは常に失敗に寛容:
不正なペイロードは「指示子なし」として扱い、例外は送出しない。
"""

import json
import logging
import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ProtocolDecodeError

logger = logging.getLogger(__name__)

OPEN_TAG = "<ACTION>"
CLOSE_TAG = "</ACTION>"

_SPAN = re.compile(r"[ \t]*<ACTION>(.*?)</ACTION>[ \t]*", re.DOTALL)
_STRAY_TAG = re.compile(r"</?ACTION>")


# ── 指示子 (タグ付きユニオン) ────────────────────

class _Directive(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Navigate(_Directive):
    type: Literal["navigate"] = "navigate"
    page: str


class Search(_Directive):
    type: Literal["search"] = "search"
    query: str


class AddToCart(_Directive):
    type: Literal["addToCart"] = "addToCart"
    product_id: str | None = None
    product_name: str | None = None
    quantity: int = 1


class ViewProduct(_Directive):
    type: Literal["viewProduct"] = "viewProduct"
    product_id: str | None = None
    product_name: str | None = None


ActionDirective = Annotated[
    Union[Navigate, Search, AddToCart, ViewProduct],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[ActionDirective] = TypeAdapter(ActionDirective)


# ── デコード ─────────────────────────────────────

def parse_payload(payload: str) -> ActionDirective:
    """JSON ペイロードを指示子に変換する。不正なら ProtocolDecodeError。"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"Directive payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolDecodeError("Directive payload must be a JSON object")
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ProtocolDecodeError(f"Unknown or malformed directive: {data.get('type')!r}") from e


def strip_directives(text: str) -> str:
    """区切りで囲まれた部分と、対になっていない区切りトークンをすべて除去する。"""
    cleaned = _SPAN.sub(" ", text)
    cleaned = _STRAY_TAG.sub("", cleaned)
    return cleaned.strip()


def decode(text: str) -> tuple[str, ActionDirective | None]:
    """
    アシスタントのテキストから (表示用テキスト, 指示子) を取り出す。

    - 区切りがなければテキストをそのまま返す
    - 複数ある場合は最初の 1 つだけを採用し、すべての区切り部分を除去する
    - ペイロードが不正なら指示子なし (ログのみ)
    """
    match = _SPAN.search(text)
    if not match:
        return strip_directives(text), None

    clean_text = strip_directives(text)
    try:
        directive = parse_payload(match.group(1).strip())
    except ProtocolDecodeError as e:
        logger.warning("Ignoring directive: %s", e)
        return clean_text, None

    if len(_SPAN.findall(text)) > 1:
        logger.warning("Assistant text carried more than one directive; using the first")
    return clean_text, directive


# ── エンコード ───────────────────────────────────

def encode(directive: ActionDirective) -> str:
    """指示子をワイヤ形式 <ACTION>{...}</ACTION> に変換する。"""
    return f"{OPEN_TAG}{json.dumps(to_dict(directive), separators=(',', ':'))}{CLOSE_TAG}"


def to_dict(directive: ActionDirective) -> dict:
    return directive.model_dump(by_alias=True, exclude_none=True)


def to_json(directive: ActionDirective) -> str:
    """メッセージに添付して保存する形式"""
    return json.dumps(to_dict(directive))


def from_json(payload: str | None) -> ActionDirective | None:
    """保存済みの指示子を復元する。壊れていれば None。"""
    if not payload:
        return None
    try:
        return parse_payload(payload)
    except ProtocolDecodeError:
        logger.warning("Stored directive could not be restored")
        return None
