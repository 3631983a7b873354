import re
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from stockchat.errors import LiteralSyntaxError
from stockchat.literal import (
    Array,
    Document,
    Pattern,
    Scalar,
    find_closing,
    parse_arguments,
    parse_document,
    parse_literal,
    parse_pipeline,
)


def test_parses_shell_style_document_into_tagged_nodes():
    node = parse_literal("{ name: 'Cable', 'qty': -3, price: 4.5, active: true, note: null }")

    assert isinstance(node, Document)
    assert node.keys() == ["name", "qty", "price", "active", "note"]
    assert dict(node.fields)["qty"] == Scalar(-3)
    assert dict(node.fields)["price"] == Scalar(4.5)
    assert dict(node.fields)["active"] == Scalar(True)
    assert dict(node.fields)["note"] == Scalar(None)


def test_regex_literal_lowers_to_compiled_pattern():
    node = parse_literal("{ name: /usb\\/c[a/]ble/i }")
    assert dict(node.fields)["name"] == Pattern("usb\\/c[a/]ble", "i")

    value = parse_document(node)["name"]
    assert isinstance(value, re.Pattern)
    assert value.flags & re.IGNORECASE
    assert value.search("USB/CABLE")


def test_date_and_objectid_constructors():
    oid = ObjectId()
    doc = parse_document(parse_literal(
        f"{{ since: new Date('2024-06-01'), at: ISODate(\"2024-06-01T10:00:00Z\"), product: ObjectId('{oid}') }}"
    ))

    assert doc["since"] == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert doc["at"] == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
    assert doc["product"] == oid


def test_comments_and_trailing_commas_are_tolerated():
    node = parse_literal("""
        // low stock first
        [
          { $sort: { currentQuantity: 1 } }, /* then cap */
          { $limit: 5 },
        ]
    """)
    assert isinstance(node, Array)
    assert len(node.items) == 2


@pytest.mark.parametrize("text", [
    "[{ $match: { $where: 'this.price > 1' } }]",
    "[{ $match: { $function: { body: 'x' } } }]",
    "[{ $match: { name: process.env } }]",
    "[{ $match: { name: require('fs') } }]",
    "[{ $match: { createdAt: new Date(Date.now() - 1000) } }]",
    "[{ $match: {} }] ; db.products.drop()",
    "[{ $match: { name: `template` } }]",
])
def test_anything_beyond_literals_is_rejected(text):
    with pytest.raises(LiteralSyntaxError):
        parse_pipeline(text)


@pytest.mark.parametrize("stage", ["$out", "$merge", "$replaceRoot", "$replaceWith"])
def test_write_stages_are_rejected(stage):
    with pytest.raises(LiteralSyntaxError, match="Write stage"):
        parse_pipeline(f"[{{ $match: {{}} }}, {{ {stage}: 'copy' }}]")


def test_write_stage_inside_facet_is_rejected():
    with pytest.raises(LiteralSyntaxError):
        parse_pipeline("[{ $facet: { a: [{ $match: {} }], b: [{ $out: 'x' }] } }]")


def test_lookup_sub_pipeline_accepts_read_stages():
    stages = parse_pipeline(
        "[{ $lookup: { from: 'suppliers', as: 's', pipeline: [{ $match: { city: 'Lyon' } }, { $limit: 1 }] } }]"
    )
    assert stages[0]["$lookup"]["pipeline"][1] == {"$limit": 1}


def test_stage_names_must_be_at_stage_level():
    with pytest.raises(LiteralSyntaxError):
        parse_pipeline("[{ $match: { $group: { _id: null } } }]")


def test_single_document_is_treated_as_one_stage_pipeline():
    assert parse_pipeline("{ $match: { price: { $gt: 5 } } }") == [{"$match": {"price": {"$gt": 5}}}]


def test_parse_arguments_splits_filter_and_projection():
    args = parse_arguments("{ price: { $gte: 10 } }, { name: 1, _id: 0 }")
    assert [parse_document(a) for a in args] == [{"price": {"$gte": 10}}, {"name": 1, "_id": 0}]
    assert parse_arguments("   ") == []


def test_unterminated_input_reports_position():
    with pytest.raises(LiteralSyntaxError) as exc:
        parse_literal("[{ $match: { name: 'cable } }]")
    assert exc.value.position is not None


def test_find_closing_ignores_brackets_in_strings():
    text = "find({ name: ')(' }).limit(2)"
    assert text[find_closing(text, 4)] == ")"
    assert find_closing(text, 4) == text.index(".limit") - 1
    assert find_closing("([)]", 0) == -1
