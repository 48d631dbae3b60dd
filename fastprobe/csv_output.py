"""Comma-separated output of result field sets."""

from __future__ import annotations

import logging
import sys
from typing import IO, Sequence

from .fields import FieldSet, FieldType

log = logging.getLogger(__name__)


def _format_value(kind: FieldType, value: object) -> str:
    if kind is FieldType.STRING:
        text = str(value)
        return f'"{text}"' if "," in text else text
    if kind is FieldType.UINT64:
        return str(int(value))
    if kind is FieldType.BOOL:
        return str(int(bool(value)))
    if kind is FieldType.BINARY:
        return bytes(value).hex()
    if kind is FieldType.NULL:
        return ""
    raise ValueError("received unknown output type")


def format_csv_row(fieldset: FieldSet) -> str:
    """Render one field set as a CSV line without the trailing newline."""
    return ",".join(_format_value(f.kind, f.value) for f in fieldset)


class CsvOutput:
    """Writes a header line of field names, then one CSV line per result."""

    name = "csv"
    filter_duplicates = False
    filter_unsuccessful = False
    supports_dynamic_output = False
    helptext = (
        "Outputs one or more output fields as a comma-delimited file. By default, the "
        "probe module does not filter out duplicates or limit to successful fields, "
        "but rather includes all received packets. Fields can be controlled by "
        "setting --output-fields. Filtering out failures and duplicate packets can "
        "be achieved by setting an --output-filter."
    )

    def __init__(
        self,
        fields: Sequence[str] = (),
        output_filename: str | None = None,
        module_name: str = "csv",
        stdout: IO[str] | None = None,
    ):
        self.fields = list(fields)
        self.output_filename = output_filename
        self.module_name = module_name
        self._stdout = stdout
        self._file: IO[str] | None = None
        self._owns_file = False

    def open(self) -> None:
        """Open the destination and write the header line."""
        stdout = self._stdout if self._stdout is not None else sys.stdout
        if self.output_filename is None:
            log.info("no output file selected, will use stdout")
            self._file = stdout
        elif self.output_filename == "-":
            self._file = stdout
        else:
            try:
                self._file = open(self.output_filename, "w", encoding="utf-8")
            except OSError as exc:
                raise OSError(
                    f"could not open CSV output file ({self.output_filename}): {exc}"
                ) from exc
            self._owns_file = True
        if self.module_name != "default":
            log.debug("more than one field, will add headers")
            self._file.write(",".join(self.fields) + "\n")

    def process(self, fieldset: FieldSet) -> None:
        """Write one result line."""
        if self._file is None:
            return
        self._file.write(format_csv_row(fieldset) + "\n")
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

    def __enter__(self) -> CsvOutput:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()