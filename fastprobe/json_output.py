"""JSON-lines output of result field sets."""

from __future__ import annotations

import json
import sys
from typing import IO

from .fields import Field, FieldSet, FieldType


def _field_value(field: Field) -> object:
    kind = field.kind
    if kind is FieldType.STRING:
        return str(field.value)
    if kind is FieldType.UINT64:
        return int(field.value)
    if kind is FieldType.BOOL:
        return bool(field.value)
    if kind is FieldType.BINARY:
        return bytes(field.value).hex()
    if kind is FieldType.NULL:
        return None
    if kind is FieldType.FIELDSET:
        return _object(field.value)
    if kind is FieldType.REPEATED:
        return _array(field.value)
    raise ValueError(f"received unknown output type: {kind}")


def _object(fieldset: FieldSet) -> dict:
    record: dict[str, object] = {}
    for field in fieldset:
        if field.name is None:
            raise ValueError("a field inside a JSON object needs a name")
        record[field.name] = _field_value(field)
    return record


def _array(fieldset: FieldSet) -> list:
    return [_field_value(field) for field in fieldset]


def fieldset_to_json(fieldset: FieldSet) -> dict | list:
    """Convert a field set to plain JSON data: a list if it is repeated, else a dict."""
    if fieldset.repeated:
        return _array(fieldset)
    return _object(fieldset)


def _encode(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False).replace("/", "\\/")
    if isinstance(value, dict):
        if not value:
            return "{ }"
        members = ", ".join(f"{_encode(str(k))}: {_encode(v)}" for k, v in value.items())
        return "{ " + members + " }"
    if isinstance(value, list):
        if not value:
            return "[ ]"
        return "[ " + ", ".join(_encode(v) for v in value) + " ]"
    raise TypeError(f"cannot encode {value!r} as JSON")


def format_json_record(fieldset: FieldSet) -> str:
    """Render a field set as one spaced JSON document without a newline."""
    return _encode(fieldset_to_json(fieldset))


class JsonOutput:
    """Writes one JSON document per line for every result."""

    name = "json"
    filter_duplicates = False
    filter_unsuccessful = False
    supports_dynamic_output = True
    update_interval = 0
    helptext = (
        "Outputs one or more output fileds as a json valid file. By default, the \n"
        "probe module does not filter out duplicates or limit to successful fields, \n"
        "but rather includes all received packets. Fields can be controlled by \n"
        "setting --output-fields. Filtering out failures and duplicate pakcets can \n"
        "be achieved by setting an --output-filter."
    )

    def __init__(
        self,
        fields=(),
        output_filename: str | None = None,
        stdout: IO[str] | None = None,
    ):
        self.fields = list(fields)
        self.output_filename = output_filename
        self._stdout = stdout
        self._file: IO[str] | None = None
        self._owns_file = False

    def open(self) -> None:
        """Open the destination; no filename or '-' means standard output."""
        if self.output_filename is None or self.output_filename == "-":
            self._file = self._stdout if self._stdout is not None else sys.stdout
            return
        try:
            self._file = open(self.output_filename, "w", encoding="utf-8")
        except OSError as exc:
            raise OSError(
                f"could not open JSON output file ({self.output_filename}): {exc}"
            ) from exc
        self._owns_file = True

    def process(self, fieldset: FieldSet) -> None:
        """Write one result record."""
        if self._file is None:
            return
        self._file.write(format_json_record(fieldset) + "\n")
        self._file.flush()

    def close(self) -> None:
        """Flush and release the destination."""
        if self._file is None:
            return
        self._file.flush()
        if self._owns_file:
            self._file.close()
        self._file = None
        self._owns_file = False

    def __enter__(self) -> JsonOutput:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()