import pytest

from fastprobe.fields import (
    Comparison,
    FieldDef,
    FieldSet,
    FieldType,
    FilterError,
    Logical,
    validate_filter,
)

DEFS = [
    FieldDef("sport", "int", "TCP source port"),
    FieldDef("success", "bool", "is response considered success"),
    FieldDef("classification", "string", "packet classification"),
]


def test_add_and_get_values():
    fs = FieldSet()
    fs.add_string("classification", "synack")
    fs.add_uint64("sport", 80)
    fs.add_bool("success", 1)
    assert fs.get("classification") == "synack"
    assert fs.get("sport") == 80
    assert fs.get("success") is True
    assert fs.names() == ["classification", "sport", "success"]


def test_add_uint64_rejects_negative():
    with pytest.raises(ValueError):
        FieldSet().add_uint64("sport", -1)


def test_add_string_rejects_non_string():
    with pytest.raises(TypeError):
        FieldSet().add_string("classification", b"rst")


def test_add_null_and_binary_kinds():
    fs = FieldSet()
    fs.add_null("icmp_type")
    fs.add_binary("raw", bytearray(b"\x01\x02"))
    kinds = [f.kind for f in fs]
    assert kinds == [FieldType.NULL, FieldType.BINARY]
    assert fs.get("icmp_type") is None
    assert fs.get("raw") == b"\x01\x02"


def test_generic_add_accepts_kind_name():
    fs = FieldSet()
    fs.add("x", 5, "uint64")
    assert next(iter(fs)).kind is FieldType.UINT64


def test_modify_string_keeps_position():
    fs = FieldSet()
    fs.add_string("saddr", "192.0.2.1")
    fs.add_uint64("sport", 53)
    fs.modify_string("saddr", "192.0.2.9")
    assert fs.names() == ["saddr", "sport"]
    assert fs.get("saddr") == "192.0.2.9"


def test_modify_missing_field_raises():
    with pytest.raises(KeyError):
        FieldSet().modify_string("saddr", "192.0.2.1")


def test_get_missing_field_raises():
    with pytest.raises(KeyError):
        FieldSet().get("nope")


def test_repeated_fieldsets_nest():
    inner = FieldSet()
    inner.add_string("name", "example.com")
    repeated = FieldSet(repeated=True)
    repeated.add_fieldset(None, inner)
    outer = FieldSet()
    outer.add_repeated("dns_questions", repeated)
    got = outer.get("dns_questions")
    assert got is repeated
    assert len(got) == 1
    assert got.get(None).get("name") == "example.com"


def test_validate_string_comparison_sets_index():
    node = Comparison("classification", "=", "synack")
    validate_filter(node, DEFS)
    assert node.index == 2


def test_validate_int_against_bool_field():
    node = Comparison("success", "=", 1)
    validate_filter(node, DEFS)
    assert node.index == 1


def test_validate_logical_visits_both_sides():
    left = Comparison("sport", ">", 1000)
    right = Comparison("classification", "!=", "rst")
    validate_filter(Logical("&&", left, right), DEFS)
    assert (left.index, right.index) == (0, 2)


def test_unknown_field_is_rejected():
    with pytest.raises(FilterError, match="does not exist"):
        validate_filter(Comparison("ttl", "=", 3), DEFS)


def test_string_value_on_int_field_is_rejected():
    with pytest.raises(FilterError, match="not of type 'string'"):
        validate_filter(Comparison("sport", "=", "80"), DEFS)


def test_int_value_on_string_field_is_rejected():
    with pytest.raises(FilterError, match="not of type 'int'"):
        validate_filter(Comparison("classification", "=", 1), DEFS)


def test_error_in_right_branch_propagates():
    tree = Logical("||", Comparison("sport", "=", 1), Comparison("missing", "=", 1))
    with pytest.raises(FilterError):
        validate_filter(tree, DEFS)


def test_bad_operators_rejected():
    with pytest.raises(ValueError):
        Comparison("sport", "~", 1)
    with pytest.raises(ValueError):
        Logical("xor", Comparison("sport", "=", 1), Comparison("sport", "=", 2))