from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from qrxfer.core.checksum import checksum

# One byte per symbol; 255 is reserved as the "literal follows" escape.
LITERAL_ESCAPE = 255
MAX_SYMBOLS = 255


@dataclass(frozen=True)
class SymbolDictionary:
    """
    Caller-supplied ordered vocabularies, keyed by field name.

    A field is looked up by its full dotted path first (``"team.alliance"``),
    then by its leaf name (``"alliance"``). Both sides of a transfer must use the
    same dictionary; ``fingerprint`` is stored in every record blob so a
    mismatch is detected instead of silently decoding to the wrong values.
    """

    fields: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        norm: dict[str, tuple[str, ...]] = {}
        for name, values in dict(self.fields).items():
            if not isinstance(name, str) or not name:
                raise ValueError("dictionary: field names must be non-empty strings")
            vals = tuple(values)
            for v in vals:
                if not isinstance(v, str):
                    raise ValueError(f"dictionary: field '{name}': values must be strings")
            if len(set(vals)) != len(vals):
                raise ValueError(f"dictionary: field '{name}': duplicate values")
            if len(vals) > MAX_SYMBOLS:
                raise ValueError(
                    f"dictionary: field '{name}': at most {MAX_SYMBOLS} values, got {len(vals)}"
                )
            norm[name] = vals
        object.__setattr__(self, "fields", norm)

    @staticmethod
    def from_mapping(obj: Mapping[str, Iterable[str]] | None) -> "SymbolDictionary":
        if obj is None:
            return SymbolDictionary()
        if not isinstance(obj, Mapping):
            raise ValueError("dictionary: expected an object of {field: [values...]}")
        fields: dict[str, tuple[str, ...]] = {}
        for k, v in obj.items():
            if isinstance(v, (str, bytes)) or not isinstance(v, Iterable):
                raise ValueError(f"dictionary: field '{k}': expected a list of strings")
            fields[str(k)] = tuple(v)
        return SymbolDictionary(fields)

    @staticmethod
    def from_json(text: str) -> "SymbolDictionary":
        try:
            obj = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"dictionary: invalid JSON: {e}") from e
        return SymbolDictionary.from_mapping(obj)

    def to_mapping(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.fields.items()}

    def __bool__(self) -> bool:
        return bool(self.fields)

    def lookup(self, path: str) -> tuple[str, ...] | None:
        vals = self.fields.get(path)
        if vals is not None:
            return vals
        return self.fields.get(path.rsplit(".", 1)[-1])

    @property
    def fingerprint(self) -> str:
        if not self.fields:
            return "0"
        canon = json.dumps(self.to_mapping(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return checksum(canon)


def build_auto_vocab(values: Iterable[str], *, max_size: int = 16) -> tuple[str, ...] | None:
    """
    Build an in-blob vocabulary for a low-cardinality string column.

    Returns the distinct values ordered by first appearance, or None when the
    column has more than ``max_size`` distinct values (not worth a dictionary).
    """
    seen: dict[str, None] = {}
    for v in values:
        if v not in seen:
            if len(seen) >= max_size:
                return None
            seen[v] = None
    return tuple(seen) if seen else None
