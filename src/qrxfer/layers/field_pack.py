from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from qrxfer.core.binpack import (
    dec_bytes,
    dec_str,
    dec_varint,
    enc_bytes,
    enc_str,
    enc_varint,
    pack_bools,
    u8,
    unpack_bools,
    zigzag_dec,
    zigzag_enc,
)
from qrxfer.layers.symbol_dict import LITERAL_ESCAPE, SymbolDictionary, build_auto_vocab

# Column kinds
KIND_BOOL = "b"  # bit-packed with the other bools of the record
KIND_U8 = "u8"  # one byte, 0..255
KIND_INT = "i"  # zigzag varint
KIND_STR = "s"  # varint(len) + utf-8
KIND_DICT = "d"  # one byte into the caller dictionary, 255 -> literal str
KIND_AUTO = "a"  # one byte into the in-blob vocabulary
KIND_JSON = "j"  # varint(len) + compact JSON (null, float, list, mixed...)

KINDS = frozenset({KIND_BOOL, KIND_U8, KIND_INT, KIND_STR, KIND_DICT, KIND_AUTO, KIND_JSON})

AUTO_VOCAB_MAX = 64


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def infer_kind(path: str, values: list[Any], dictionary: SymbolDictionary) -> tuple[str, tuple[str, ...] | None]:
    """Pick the tightest column kind that represents every present value exactly."""
    if all(isinstance(v, bool) for v in values):
        return KIND_BOOL, None
    if all(_is_int(v) for v in values):
        if all(0 <= v <= 255 for v in values):
            return KIND_U8, None
        return KIND_INT, None
    if all(isinstance(v, str) for v in values):
        if dictionary.lookup(path) is not None:
            return KIND_DICT, None
        vocab = build_auto_vocab(values, max_size=min(AUTO_VOCAB_MAX, len(values) // 2))
        if vocab is not None:
            return KIND_AUTO, vocab
        return KIND_STR, None
    return KIND_JSON, None


@dataclass(frozen=True, slots=True)
class Column:
    path: str
    kind: str
    vocab: tuple[str, ...] | None = None

    def to_json(self) -> list[Any]:
        if self.vocab is None:
            return [self.path, self.kind]
        return [self.path, self.kind, list(self.vocab)]

    @staticmethod
    def from_json(obj: Any) -> "Column":
        if not isinstance(obj, list) or len(obj) not in (2, 3):
            raise ValueError("field_pack: bad column descriptor")
        path, kind = obj[0], obj[1]
        if not isinstance(path, str) or kind not in KINDS:
            raise ValueError(f"field_pack: bad column {obj!r}")
        vocab = None
        if len(obj) == 3:
            if kind != KIND_AUTO or not isinstance(obj[2], list):
                raise ValueError(f"field_pack: vocabulary on non-auto column {path!r}")
            vocab = tuple(str(x) for x in obj[2])
        elif kind == KIND_AUTO:
            raise ValueError(f"field_pack: auto column {path!r} without vocabulary")
        return Column(path=path, kind=kind, vocab=vocab)


@dataclass
class LayerFieldPack:
    """
    Reversible record packer (list of flat dicts <-> bytes).

    Per record:
      - presence map (only when some record lacks some column), bit-packed
      - all BOOL columns of the record, bit-packed
      - every other present column in schema order, encoded by kind

    Meta (JSON in the container header):
      - cols: [[path, kind, vocab?], ...] in first-seen order
      - dense: presence map omitted
      - dict: fingerprint of the caller dictionary
      - n: record count
    """

    dictionary: SymbolDictionary = field(default_factory=SymbolDictionary)
    layer_id: str = "field_pack"

    # ---- encode ----

    def encode(self, records: list[dict[str, Any]]) -> tuple[bytes, dict[str, Any]]:
        # new keys go right after their predecessor in the record that introduces them,
        # so optional fields keep their place
        paths: list[str] = []
        for rec in records:
            prev = -1
            for k in rec:
                try:
                    prev = paths.index(k)
                except ValueError:
                    prev += 1
                    paths.insert(prev, k)

        cols: list[Column] = []
        for p in paths:
            present = [rec[p] for rec in records if p in rec]
            kind, vocab = infer_kind(p, present, self.dictionary)
            cols.append(Column(path=p, kind=kind, vocab=vocab))

        dense = all(len(rec) == len(paths) for rec in records)

        out = bytearray()
        for rec in records:
            if not dense:
                out += pack_bools([c.path in rec for c in cols])
            bools = [rec[c.path] for c in cols if c.kind == KIND_BOOL and c.path in rec]
            if bools:
                out += pack_bools(bools)
            for c in cols:
                if c.kind == KIND_BOOL or c.path not in rec:
                    continue
                out += self._enc_value(c, rec[c.path])

        meta = {
            "cols": [c.to_json() for c in cols],
            "dense": dense,
            "dict": self.dictionary.fingerprint,
            "n": len(records),
        }
        return bytes(out), meta

    def _enc_value(self, col: Column, v: Any) -> bytes:
        k = col.kind
        if k == KIND_U8:
            return bytes((v,))
        if k == KIND_INT:
            return enc_varint(zigzag_enc(v))
        if k == KIND_STR:
            return enc_str(v)
        if k == KIND_DICT:
            vocab = self.dictionary.lookup(col.path) or ()
            try:
                return bytes((vocab.index(v),))
            except ValueError:
                return bytes((LITERAL_ESCAPE,)) + enc_str(v)
        if k == KIND_AUTO:
            if col.vocab is None:
                raise ValueError(f"field_pack: auto column {col.path!r} without vocabulary")
            return bytes((col.vocab.index(v),))
        if k == KIND_JSON:
            return enc_str(json.dumps(v, separators=(",", ":"), ensure_ascii=False))
        raise ValueError(f"field_pack: cannot encode kind {k!r}")

    # ---- decode ----

    def decode(self, body: bytes, meta: dict[str, Any]) -> list[dict[str, Any]]:
        fp = meta.get("dict")
        if fp != self.dictionary.fingerprint:
            raise ValueError(
                f"field_pack: dictionary mismatch (blob={fp!r} local={self.dictionary.fingerprint!r})"
            )
        cols = [Column.from_json(c) for c in meta.get("cols", [])]
        n = meta.get("n")
        if not isinstance(n, int) or n < 0:
            raise ValueError("field_pack: bad record count")
        dense = bool(meta.get("dense"))
        for c in cols:
            if c.kind == KIND_DICT and self.dictionary.lookup(c.path) is None:
                raise ValueError(f"field_pack: no dictionary for column {c.path!r}")

        buf = bytes(body)
        idx = 0
        records: list[dict[str, Any]] = []
        for _ in range(n):
            if dense:
                present = [True] * len(cols)
            else:
                present, idx = unpack_bools(buf, idx, len(cols))
            nb = sum(1 for c, p in zip(cols, present) if p and c.kind == KIND_BOOL)
            bools: list[bool] = []
            if nb:
                bools, idx = unpack_bools(buf, idx, nb)
            bi = iter(bools)

            rec: dict[str, Any] = {}
            for c, p in zip(cols, present):
                if not p:
                    continue
                if c.kind == KIND_BOOL:
                    rec[c.path] = next(bi)
                else:
                    rec[c.path], idx = self._dec_value(c, buf, idx)
            records.append(rec)

        if idx != len(buf):
            raise ValueError(f"field_pack: {len(buf) - idx} trailing bytes")
        return records

    def _dec_value(self, col: Column, buf: bytes, idx: int) -> tuple[Any, int]:
        k = col.kind
        if k == KIND_U8:
            return u8(buf, idx)
        if k == KIND_INT:
            z, idx = dec_varint(buf, idx)
            return zigzag_dec(z), idx
        if k == KIND_STR:
            return dec_str(buf, idx)
        if k == KIND_DICT:
            vocab = self.dictionary.lookup(col.path) or ()
            i, idx = u8(buf, idx)
            if i == LITERAL_ESCAPE:
                return dec_str(buf, idx)
            if i >= len(vocab):
                raise ValueError(f"field_pack: dictionary index {i} out of range for {col.path!r}")
            return vocab[i], idx
        if k == KIND_AUTO:
            if col.vocab is None:
                raise ValueError(f"field_pack: auto column {col.path!r} without vocabulary")
            i, idx = u8(buf, idx)
            if i >= len(col.vocab):
                raise ValueError(f"field_pack: vocabulary index {i} out of range for {col.path!r}")
            return col.vocab[i], idx
        if k == KIND_JSON:
            raw, idx = dec_bytes(buf, idx)
            return json.loads(raw.decode("utf-8")), idx
        raise ValueError(f"field_pack: cannot decode kind {k!r}")
