"""Registry of the available output modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .csv_output import CsvOutput
from .json_output import JsonOutput


@dataclass(frozen=True)
class OutputModuleInfo:
    """Description of an output module and how to create it."""

    name: str
    factory: Callable[..., Any]
    supports_dynamic_output: bool
    filter_duplicates: bool
    filter_unsuccessful: bool
    update_interval: int
    helptext: str

    def create(self, *args, **kwargs) -> Any:
        """Build an instance of the module."""
        return self.factory(*args, **kwargs)


def _describe(cls) -> OutputModuleInfo:
    return OutputModuleInfo(
        name=cls.name,
        factory=cls,
        supports_dynamic_output=cls.supports_dynamic_output,
        filter_duplicates=cls.filter_duplicates,
        filter_unsuccessful=cls.filter_unsuccessful,
        update_interval=getattr(cls, "update_interval", 0),
        helptext=cls.helptext,
    )


_MODULES: tuple[OutputModuleInfo, ...] = (_describe(CsvOutput), _describe(JsonOutput))


def get_output_module(name: str) -> OutputModuleInfo:
    """Look up an output module by name."""
    for module in _MODULES:
        if module.name == name:
            return module
    raise KeyError(f"no output module named {name!r}")


def output_module_names() -> list[str]:
    """Names of all output modules in registration order."""
    return [module.name for module in _MODULES]