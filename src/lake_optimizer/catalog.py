from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

import tomllib

from .errors import MissingOptionError, UnsupportedFormatError
from .tables import DeltaLogTable, TableHandle
from .utils.options import compact_options


@dataclass(frozen=True)
class TableSpec:
    name: str
    format: str
    path: str | Path
    options: dict[str, Any] = field(default_factory=dict)

    def open(self) -> TableHandle:
        fmt = self.format.lower()
        if fmt == "delta":
            return DeltaLogTable(self.path, identifier=self.name, options=self.options)
        raise UnsupportedFormatError(f"Unsupported table format: {self.format}")


class Catalog(Protocol):
    def resolve(self, name: str) -> TableSpec:
        raise NotImplementedError

    def load_table(self, name: str) -> TableHandle:
        raise NotImplementedError


class LocalCatalog:
    """Table catalog backed by a JSON/TOML file or an in-process mapping.

    Example TOML::

        [tables.events]
        format = "delta"
        path = "/data/events"
        "self-optimizing.small-file-size-bytes" = 1048576
    """

    def __init__(self, source: str | Path | Mapping[str, Any]) -> None:
        if isinstance(source, Mapping):
            payload = dict(source)
        else:
            payload = self._load_file(Path(source))
        tables = payload.get("tables", payload)
        if not isinstance(tables, Mapping):
            raise ValueError("Catalog must contain a 'tables' mapping")
        self._tables = {str(name): dict(spec) for name, spec in tables.items()}

    def names(self) -> list[str]:
        return sorted(self._tables)

    def resolve(self, name: str) -> TableSpec:
        if name not in self._tables:
            raise KeyError(f"Table not found in catalog: {name}")
        return _normalize_spec(name, self._tables[name])

    def load_table(self, name: str) -> TableHandle:
        return self.resolve(name).open()

    def _load_file(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(path)
        if path.suffix == ".json":
            return json.loads(path.read_text())
        if path.suffix == ".toml":
            return tomllib.loads(path.read_text())
        raise ValueError(f"Unsupported catalog file type: {path.suffix}")


def _normalize_spec(name: str, payload: Mapping[str, Any]) -> TableSpec:
    fmt = payload.get("format") or payload.get("type")
    if fmt is None:
        raise MissingOptionError(f"Table '{name}' is missing 'format'")
    path = payload.get("path") or payload.get("location")
    if path is None:
        raise MissingOptionError(f"Table '{name}' is missing 'path'")

    reserved = {"format", "type", "path", "location", "options"}
    extra_options = {key: value for key, value in payload.items() if key not in reserved}
    options = dict(payload.get("options") or {})
    options.update(extra_options)
    options = compact_options(options)

    return TableSpec(name=str(name), format=str(fmt), path=path, options=options)
