from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# ------------------------------------------------------------
# Record-shape recognition for JSON payloads.
#
# Accepted shapes:
#   "list"     [ {...}, {...}, ... ]
#   "entries"  { ..., "entries": [ {...}, ... ], ... }
#
# The payload must re-serialise byte-for-byte in one known style,
# otherwise the record path is not taken (lossless or nothing).
#
# Style code bits:
#   0..2  base layout (see _LAYOUTS)
#   4     ensure_ascii disabled
#   8     trailing newline
# ------------------------------------------------------------

SHAPE_LIST = "list"
SHAPE_ENTRIES = "entries"
ENTRIES_KEY = "entries"

_LAYOUTS: tuple[dict[str, Any], ...] = (
    {"indent": None, "separators": (",", ":")},
    {"indent": None, "separators": (", ", ": ")},
    {"indent": 2, "separators": (",", ": ")},
)
_NO_ASCII = 4
_NEWLINE = 8


def _style_codes() -> list[int]:
    out = []
    for nl in (0, _NEWLINE):
        for asc in (0, _NO_ASCII):
            for base in range(len(_LAYOUTS)):
                out.append(base | asc | nl)
    return out


STYLE_CODES: tuple[int, ...] = tuple(_style_codes())


def dump_styled(obj: Any, style: int) -> bytes:
    base = style & 3
    if base >= len(_LAYOUTS) or style & ~(3 | _NO_ASCII | _NEWLINE):
        raise ValueError(f"json_records: unknown style code {style}")
    layout = _LAYOUTS[base]
    s = json.dumps(
        obj,
        indent=layout["indent"],
        separators=layout["separators"],
        ensure_ascii=not (style & _NO_ASCII),
    )
    if style & _NEWLINE:
        s += "\n"
    return s.encode("utf-8")


def detect_style(obj: Any, payload: bytes) -> int | None:
    for style in STYLE_CODES:
        if dump_styled(obj, style) == payload:
            return style
    return None


def _keys_flattenable(obj: Any) -> bool:
    if isinstance(obj, dict):
        return all("." not in k and _keys_flattenable(v) for k, v in obj.items())
    if isinstance(obj, list):
        return all(_keys_flattenable(v) for v in obj)
    return True


def flatten_record(rec: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Nested non-empty objects become dotted paths; everything else is a leaf."""
    out: dict[str, Any] = {}
    for k, v in rec.items():
        path = f"{prefix}{k}"
        if isinstance(v, dict) and v:
            out.update(flatten_record(v, path + "."))
        else:
            out[path] = v
    return out


def unflatten_record(flat: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for path, v in flat.items():
        parts = path.split(".")
        cur = out
        for p in parts[:-1]:
            nxt = cur.get(p)
            if not isinstance(nxt, dict):
                nxt = {}
                cur[p] = nxt
            cur = nxt
        cur[parts[-1]] = v
    return out


@dataclass(frozen=True, slots=True)
class RecordSet:
    records: list[dict[str, Any]]
    shape: str
    style: int
    flat: bool
    # "entries" shape: the enclosing object with entries=None, as compact JSON
    envelope: str | None = None

    def meta(self) -> dict[str, Any]:
        return {"shape": self.shape, "style": self.style, "flat": self.flat, "envelope": self.envelope}


def parse_records(payload: bytes) -> RecordSet | None:
    """Return the payload as flat records, or None when the shape is not recognised."""
    try:
        obj = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError):
        return None

    if isinstance(obj, list):
        shape = SHAPE_LIST
        records = obj
        envelope = None
    elif isinstance(obj, dict) and isinstance(obj.get(ENTRIES_KEY), list):
        shape = SHAPE_ENTRIES
        records = obj[ENTRIES_KEY]
        env = dict(obj)
        env[ENTRIES_KEY] = None
        envelope = json.dumps(env, separators=(",", ":"), ensure_ascii=False)
    else:
        return None

    if not records or not all(isinstance(r, dict) for r in records):
        return None

    style = detect_style(obj, payload)
    if style is None:
        return None

    flat = _keys_flattenable(records)
    if flat:
        records = [flatten_record(r) for r in records]
    return RecordSet(records=records, shape=shape, style=style, flat=flat, envelope=envelope)


def render_records(
    records: list[dict[str, Any]],
    *,
    shape: str,
    style: int,
    flat: bool,
    envelope: str | None = None,
) -> bytes:
    recs = [unflatten_record(r) for r in records] if flat else records
    if shape == SHAPE_LIST:
        obj: Any = recs
    elif shape == SHAPE_ENTRIES:
        if envelope is None:
            raise ValueError("json_records: 'entries' shape without envelope")
        obj = json.loads(envelope)
        if not isinstance(obj, dict) or ENTRIES_KEY not in obj:
            raise ValueError("json_records: bad envelope")
        obj[ENTRIES_KEY] = recs
    else:
        raise ValueError(f"json_records: unknown shape {shape!r}")
    return dump_styled(obj, style)
