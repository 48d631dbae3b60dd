"""Result field sets, field definitions and output-filter validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Sequence, Union

_UINT64_LIMIT = 1 << 64


class FieldType(Enum):
    """Kinds of value a result field can hold."""

    STRING = "string"
    UINT64 = "uint64"
    BOOL = "bool"
    BINARY = "binary"
    NULL = "null"
    FIELDSET = "fieldset"
    REPEATED = "repeated"


@dataclass(frozen=True)
class FieldDef:
    """Declaration of a field a probe module can output."""

    name: str
    type: str
    desc: str = ""


@dataclass
class Field:
    """One named value inside a field set."""

    name: str | None
    kind: FieldType
    value: object


class FieldSet:
    """Ordered collection of result fields produced for one response."""

    def __init__(self, fields: Sequence[Field] = (), *, repeated: bool = False):
        self.repeated = repeated
        self._fields: list[Field] = list(fields)

    def __iter__(self) -> Iterator[Field]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: object) -> bool:
        return any(f.name == name for f in self._fields)

    def __repr__(self) -> str:
        return f"FieldSet({self._fields!r}, repeated={self.repeated})"

    def names(self) -> list[str | None]:
        """Return the field names in insertion order."""
        return [f.name for f in self._fields]

    def add(self, name: str | None, value: object, kind: FieldType | str) -> None:
        """Append a field of the given kind without further checks."""
        self._fields.append(Field(name, FieldType(kind), value))

    def add_string(self, name: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"field {name!r} expects a string")
        self.add(name, value, FieldType.STRING)

    def add_uint64(self, name: str, value: int) -> None:
        value = int(value)
        if not 0 <= value < _UINT64_LIMIT:
            raise ValueError(f"field {name!r} value {value} is not an unsigned 64-bit integer")
        self.add(name, value, FieldType.UINT64)

    def add_bool(self, name: str, value: object) -> None:
        self.add(name, bool(value), FieldType.BOOL)

    def add_binary(self, name: str, value: bytes) -> None:
        self.add(name, bytes(value), FieldType.BINARY)

    def add_null(self, name: str) -> None:
        self.add(name, None, FieldType.NULL)

    def add_fieldset(self, name: str | None, fieldset: FieldSet) -> None:
        if not isinstance(fieldset, FieldSet):
            raise TypeError("add_fieldset expects a FieldSet")
        self.add(name, fieldset, FieldType.FIELDSET)

    def add_repeated(self, name: str, fieldset: FieldSet) -> None:
        if not isinstance(fieldset, FieldSet):
            raise TypeError("add_repeated expects a FieldSet")
        self.add(name, fieldset, FieldType.REPEATED)

    def modify_string(self, name: str, value: str) -> None:
        """Replace the value of an existing field with a string."""
        if not isinstance(value, str):
            raise TypeError(f"field {name!r} expects a string")
        for f in self._fields:
            if f.name == name:
                f.kind = FieldType.STRING
                f.value = value
                return
        raise KeyError(name)

    def get(self, name: str | None) -> object:
        """Return the value of the first field with this name."""
        for f in self._fields:
            if f.name == name:
                return f.value
        raise KeyError(name)


class FilterError(ValueError):
    """Raised when an output filter does not match the available fields."""


_COMPARISON_OPS = frozenset({"=", "!=", "<", ">", "<=", ">="})
_LOGICAL_OPS = frozenset({"&&", "||"})


@dataclass
class Comparison:
    """Leaf of a filter expression: field <op> value."""

    field: str
    op: str
    value: Union[str, int]
    index: int | None = None

    def __post_init__(self) -> None:
        if self.op not in _COMPARISON_OPS:
            raise ValueError(f"unknown comparison operator {self.op!r}")


@dataclass
class Logical:
    """Inner node of a filter expression joining two sub-expressions."""

    op: str
    left: Union["Comparison", "Logical"]
    right: Union["Comparison", "Logical"]

    def __post_init__(self) -> None:
        if self.op not in _LOGICAL_OPS:
            raise ValueError(f"unknown logical operator {self.op!r}")


def _validate_comparison(node: Comparison, fielddefs: Sequence[FieldDef]) -> None:
    index = next((i for i, d in enumerate(fielddefs) if d.name == node.field), None)
    if index is None:
        raise FilterError(f"Field '{node.field}' does not exist")
    definition = fielddefs[index]
    node.index = index
    if isinstance(node.value, str):
        if definition.type != "string":
            raise FilterError(f"Field '{definition.name}' is not of type 'string'")
    elif isinstance(node.value, int):
        if definition.type not in ("int", "bool"):
            raise FilterError(f"Field '{definition.name}' is not of type 'int'")
    else:
        raise FilterError(f"Field '{definition.name}' compared with unsupported value")


def validate_filter(
    root: Comparison | Logical | None, fielddefs: Sequence[FieldDef]
) -> None:
    """Check every comparison against the field definitions, recording field indices."""
    if root is None:
        return
    if isinstance(root, Logical):
        validate_filter(root.left, fielddefs)
        validate_filter(root.right, fielddefs)
    elif isinstance(root, Comparison):
        _validate_comparison(root, fielddefs)
    else:
        raise TypeError(f"unexpected filter node {root!r}")