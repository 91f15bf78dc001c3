"""Transfer spec (v1) for qrxfer.

Goal: make a sender/receiver setup reproducible (CLI, devices, CI).

This module stays small and strict:
  - JSON only
  - explicit schema id
  - unknown keys are rejected
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from qrxfer.core.codecs import CODEC_IDS
from qrxfer.layers.symbol_dict import SymbolDictionary

SPEC_ID_V1 = "qrxfer.transfer.v1"

MODES = ("auto", "fountain", "chunks")


class TransferSpecError(ValueError):
    pass


def _load_json_arg(spec_arg: str) -> dict[str, Any]:
    s = spec_arg.strip()
    if not s:
        raise TransferSpecError("transfer spec: empty argument")

    if s.startswith("@"):
        p = Path(s[1:]).expanduser()
        if not p.exists() or not p.is_file():
            raise TransferSpecError(f"transfer spec: file not found: {p}")
        raw = p.read_text(encoding="utf-8")
        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise TransferSpecError(f"transfer spec: invalid JSON in {p}: {e}") from e
        if not isinstance(obj, dict):
            raise TransferSpecError(f"transfer spec: JSON in {p} must be an object")
        return obj

    try:
        obj = json.loads(s)
    except ValueError as e:
        raise TransferSpecError(f"transfer spec: invalid inline JSON: {e}") from e
    if not isinstance(obj, dict):
        raise TransferSpecError("transfer spec: inline JSON must be an object")
    return obj


def _optional_str(obj: dict[str, Any], key: str, default: str) -> str:
    if key not in obj or obj[key] is None:
        return default
    v = obj[key]
    if not isinstance(v, str) or not v.strip():
        raise TransferSpecError(f"transfer spec: field '{key}' must be a non-empty string")
    return v.strip()


def _optional_int(obj: dict[str, Any], key: str, default: int | None, *, minimum: int) -> int | None:
    if key not in obj or obj[key] is None:
        return default
    v = obj[key]
    if isinstance(v, bool) or not isinstance(v, int):
        raise TransferSpecError(f"transfer spec: field '{key}' must be an integer")
    if v < minimum:
        raise TransferSpecError(f"transfer spec: field '{key}' must be >= {minimum}, got {v}")
    return v


def _optional_float(obj: dict[str, Any], key: str, default: float) -> float:
    if key not in obj or obj[key] is None:
        return default
    v = obj[key]
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= 0:
        raise TransferSpecError(f"transfer spec: field '{key}' must be a positive number")
    return float(v)


@dataclass(frozen=True)
class TransferSpec:
    """One sender/receiver configuration. Defaults match the scouting app."""

    name: str = "transfer"
    data_type: str = "data"
    mode: str = "auto"
    codec: str = "zlib"
    compress_threshold: int = 10_000
    block_size: int = 200
    max_packets: int | None = None
    max_packet_chars: int = 1800
    chunk_size: int = 2000
    auto_chunk_limit: int = 3
    cycle_ms: int = 500
    degree_c: float = 0.1
    degree_delta: float = 0.5
    dictionary: SymbolDictionary = field(default_factory=SymbolDictionary)

    @property
    def packet_type(self) -> str:
        return f"{self.data_type}_fountain_packet"

    def with_overrides(self, **kw: Any) -> "TransferSpec":
        """CLI flags win over spec values; None means 'not given'."""
        changes = {k: v for k, v in kw.items() if v is not None}
        if not changes:
            return self
        try:
            return validate_transfer_spec(dataclasses.replace(self, **changes))
        except TypeError as e:
            raise TransferSpecError(f"transfer spec: {e}") from e

    def to_json(self) -> dict[str, Any]:
        return {
            "spec": SPEC_ID_V1,
            "name": self.name,
            "data_type": self.data_type,
            "mode": self.mode,
            "codec": self.codec,
            "compress_threshold": self.compress_threshold,
            "block_size": self.block_size,
            "max_packets": self.max_packets,
            "max_packet_chars": self.max_packet_chars,
            "chunk_size": self.chunk_size,
            "auto_chunk_limit": self.auto_chunk_limit,
            "cycle_ms": self.cycle_ms,
            "degree_c": self.degree_c,
            "degree_delta": self.degree_delta,
            "dictionary": self.dictionary.to_mapping(),
        }


def validate_transfer_spec(spec: TransferSpec) -> TransferSpec:
    if spec.mode not in MODES:
        raise TransferSpecError(f"transfer spec: mode must be one of {', '.join(MODES)}, got {spec.mode!r}")
    if spec.codec not in CODEC_IDS:
        raise TransferSpecError(
            f"transfer spec: unsupported codec {spec.codec!r} (known: {', '.join(CODEC_IDS)})"
        )
    for key in ("block_size", "max_packet_chars", "chunk_size", "cycle_ms"):
        if getattr(spec, key) < 1:
            raise TransferSpecError(f"transfer spec: field '{key}' must be >= 1")
    if spec.max_packets is not None and spec.max_packets < 1:
        raise TransferSpecError("transfer spec: field 'max_packets' must be >= 1")
    if spec.compress_threshold < 0 or spec.auto_chunk_limit < 0:
        raise TransferSpecError("transfer spec: thresholds must be >= 0")
    if not (0 < spec.degree_delta < 1) or spec.degree_c <= 0:
        raise TransferSpecError("transfer spec: need degree_c > 0 and 0 < degree_delta < 1")
    return spec


def load_transfer_spec(spec_arg: str) -> TransferSpec:
    """Load and validate a transfer spec.

    spec_arg:
      - '@file.json'
      - inline JSON object
    """
    obj = _load_json_arg(spec_arg)

    allowed = {f.name for f in dataclasses.fields(TransferSpec)} | {"spec"}
    extra = sorted(set(obj.keys()) - allowed)
    if extra:
        raise TransferSpecError(f"transfer spec: unsupported keys: {', '.join(extra)}")

    spec_id = obj.get("spec")
    if spec_id != SPEC_ID_V1:
        raise TransferSpecError(f"transfer spec: unsupported spec {spec_id!r} (expected {SPEC_ID_V1!r})")

    d = TransferSpec()
    try:
        dictionary = SymbolDictionary.from_mapping(obj.get("dictionary"))
    except ValueError as e:
        raise TransferSpecError(f"transfer spec: {e}") from e

    spec = TransferSpec(
        name=_optional_str(obj, "name", d.name),
        data_type=_optional_str(obj, "data_type", d.data_type),
        mode=_optional_str(obj, "mode", d.mode).lower(),
        codec=_optional_str(obj, "codec", d.codec).lower(),
        compress_threshold=_optional_int(obj, "compress_threshold", d.compress_threshold, minimum=0),
        block_size=_optional_int(obj, "block_size", d.block_size, minimum=1),
        max_packets=_optional_int(obj, "max_packets", None, minimum=1),
        max_packet_chars=_optional_int(obj, "max_packet_chars", d.max_packet_chars, minimum=1),
        chunk_size=_optional_int(obj, "chunk_size", d.chunk_size, minimum=1),
        auto_chunk_limit=_optional_int(obj, "auto_chunk_limit", d.auto_chunk_limit, minimum=0),
        cycle_ms=_optional_int(obj, "cycle_ms", d.cycle_ms, minimum=1),
        degree_c=_optional_float(obj, "degree_c", d.degree_c),
        degree_delta=_optional_float(obj, "degree_delta", d.degree_delta),
        dictionary=dictionary,
    )
    return validate_transfer_spec(spec)
