"""
アクション・プロトコルのデコード / エンコードのテスト
"""

import pytest

from storefront import action_codec
from storefront.action_codec import CLOSE_TAG, OPEN_TAG, AddToCart, Search, ViewProduct


class TestDecode:
    def test_navigate_directive_is_extracted(self):
        text = 'Sure! <ACTION>{"type":"navigate","page":"cart"}</ACTION>'

        clean, directive = action_codec.decode(text)

        assert clean == "Sure!"
        assert action_codec.to_dict(directive) == {"type": "navigate", "page": "cart"}

    def test_text_without_directive_is_unchanged(self):
        clean, directive = action_codec.decode("Apples are in aisle 3.")

        assert clean == "Apples are in aisle 3."
        assert directive is None

    def test_add_to_cart_fields(self):
        text = (
            "Great choice! "
            '<ACTION>{"type":"addToCart","productId":"p-apple","quantity":2,'
            '"productName":"Organic Apples"}</ACTION>'
        )

        _, directive = action_codec.decode(text)

        assert isinstance(directive, AddToCart)
        assert directive.product_id == "p-apple"
        assert directive.product_name == "Organic Apples"
        assert directive.quantity == 2

    def test_directive_in_the_middle_keeps_surrounding_text(self):
        text = 'Let me find that <ACTION>{"type":"search","query":"milk"}</ACTION> for you.'

        clean, directive = action_codec.decode(text)

        assert clean == "Let me find that for you."
        assert action_codec.to_dict(directive) == {"type": "search", "query": "milk"}

    def test_payload_spanning_lines(self):
        text = 'Here it is!\n<ACTION>{\n  "type": "viewProduct",\n  "productId": "p-milk"\n}</ACTION>'

        clean, directive = action_codec.decode(text)

        assert clean == "Here it is!"
        assert action_codec.to_dict(directive) == {"type": "viewProduct", "productId": "p-milk"}

    def test_invalid_json_is_treated_as_no_directive(self):
        clean, directive = action_codec.decode("Oops <ACTION>{type: navigate</ACTION>")

        assert clean == "Oops"
        assert directive is None

    def test_unknown_type_is_rejected(self):
        clean, directive = action_codec.decode(
            'Done. <ACTION>{"type":"checkout","orderId":"1"}</ACTION>'
        )

        assert clean == "Done."
        assert directive is None

    def test_non_object_payload_is_rejected(self):
        _, directive = action_codec.decode('Hi <ACTION>["navigate","cart"]</ACTION>')

        assert directive is None

    def test_wrong_field_shape_is_rejected(self):
        _, directive = action_codec.decode('Hi <ACTION>{"type":"navigate"}</ACTION>')

        assert directive is None

    def test_only_first_directive_is_honored(self):
        text = (
            'One <ACTION>{"type":"navigate","page":"cart"}</ACTION> '
            'two <ACTION>{"type":"search","query":"eggs"}</ACTION>'
        )

        clean, directive = action_codec.decode(text)

        assert action_codec.to_dict(directive) == {"type": "navigate", "page": "cart"}
        assert clean == "One two"

    def test_stray_delimiters_are_removed(self):
        clean, directive = action_codec.decode("Broken <ACTION>{\"type\":\"navigate\"")

        assert directive is None
        assert OPEN_TAG not in clean

    @pytest.mark.parametrize(
        "text",
        [
            'Sure! <ACTION>{"type":"navigate","page":"cart"}</ACTION>',
            "<ACTION>not json</ACTION>",
            "<ACTION></ACTION><ACTION></ACTION>",
            "dangling </ACTION> close",
            '<ACTION>{"type":"search","query":"</ACTION>"}</ACTION>',
        ],
    )
    def test_clean_text_never_contains_delimiters(self, text):
        clean, _ = action_codec.decode(text)

        assert OPEN_TAG not in clean
        assert CLOSE_TAG not in clean


class TestEncode:
    def test_encode_uses_wire_field_names(self):
        encoded = action_codec.encode(
            AddToCart(product_id="p-milk", product_name="Whole Milk", quantity=1)
        )

        assert encoded.startswith(OPEN_TAG) and encoded.endswith(CLOSE_TAG)
        assert '"productId":"p-milk"' in encoded
        assert '"type":"addToCart"' in encoded

    def test_encoded_directive_decodes_to_itself(self):
        directive = ViewProduct(product_id="p-bread")

        _, decoded = action_codec.decode(f"Look! {action_codec.encode(directive)}")

        assert action_codec.to_dict(decoded) == action_codec.to_dict(directive)

    def test_stored_directive_round_trip(self):
        stored = action_codec.to_json(Search(query="bread"))

        assert action_codec.to_dict(action_codec.from_json(stored)) == {"type": "search", "query": "bread"}
        assert action_codec.from_json("{broken") is None
        assert action_codec.from_json(None) is None
