from __future__ import annotations

import json
import logging
import math
import zlib
from dataclasses import dataclass, field
from typing import Any

from qrxfer.core.binpack import dec_bytes, dec_varint, enc_bytes, enc_varint
from qrxfer.core.codec_zstd import zstd
from qrxfer.core.codecs import CODEC_IDS, CODEC_NAMES, CODEC_RAW, make_codec, resolve_codec_id
from qrxfer.errors import DecodeError, UnsupportedVersion
from qrxfer.layers.field_pack import LayerFieldPack
from qrxfer.layers.json_records import parse_records, render_records
from qrxfer.layers.symbol_dict import SymbolDictionary

log = logging.getLogger(__name__)

# -------------------
# Container v1
# [MAGIC(3)|VER(1)|MODE(1)|CODEC(1)|varint(BODY_LEN)|BODY]
#
#   STORED   body = payload
#   BYTES    body = varint(raw_len) + codec(payload)
#   RECORDS  body = varint(raw_len) + codec(bytes(header_json) + packed records)
# -------------------
MAGIC = b"QXC"
VERSION = 1

MODE_STORED = 0
MODE_BYTES = 1
MODE_RECORDS = 2
MODE_NAMES = {MODE_STORED: "stored", MODE_BYTES: "bytes", MODE_RECORDS: "records"}

DEFAULT_COMPRESS_THRESHOLD = 10_000
QR_CAPACITY = 2000

_CODEC_FAILURES: tuple[type[BaseException], ...] = (ValueError, TypeError, KeyError, IndexError, zlib.error)
if zstd is not None:
    _CODEC_FAILURES = _CODEC_FAILURES + (zstd.ZstdError,)


def pack_container(mode: int, codec_byte: int, body: bytes) -> bytes:
    if mode not in MODE_NAMES:
        raise ValueError(f"unknown container mode: {mode}")
    out = bytearray()
    out += MAGIC
    out.append(VERSION)
    out.append(mode)
    out.append(codec_byte)
    out += enc_varint(len(body))
    out += body
    return bytes(out)


def unpack_container(blob: bytes) -> tuple[int, int, bytes]:
    """Return (mode, codec_byte, body). Raises DecodeError / UnsupportedVersion."""
    if len(blob) < 7:
        raise DecodeError("container: blob too short")
    if blob[:3] != MAGIC:
        raise DecodeError("container: bad magic")
    ver = blob[3]
    if ver != VERSION:
        raise UnsupportedVersion(f"container: unsupported version {ver}")
    mode, codec_byte = blob[4], blob[5]
    if mode not in MODE_NAMES:
        raise DecodeError(f"container: unknown mode {mode}")
    if codec_byte not in CODEC_NAMES:
        raise DecodeError(f"container: unknown codec id {codec_byte}")
    try:
        body_len, idx = dec_varint(blob, 6)
    except ValueError as e:
        raise DecodeError(f"container: {e}") from e
    if idx + body_len != len(blob):
        raise DecodeError(f"container: body length {body_len} does not match blob ({len(blob) - idx} bytes)")
    return mode, codec_byte, bytes(blob[idx:])


def container_mode(blob: bytes) -> str:
    mode, _, _ = unpack_container(blob)
    return MODE_NAMES[mode]


@dataclass
class Compressor:
    """
    Lossless payload compressor for the optical channel.

    Small payloads are stored as-is. Larger payloads that are a JSON list of
    records get the record path (field packing + dictionaries + codec);
    everything else goes straight through the codec. The record path is only
    kept when it round-trips byte-for-byte and beats the plain codec.
    """

    dictionary: SymbolDictionary = field(default_factory=SymbolDictionary)
    codec: str = "zlib"
    threshold: int = DEFAULT_COMPRESS_THRESHOLD
    level: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.dictionary, dict):
            self.dictionary = SymbolDictionary.from_mapping(self.dictionary)
        # validates the name early; zstd may still resolve to zlib at encode time
        resolve_codec_id(self.codec)
        if int(self.threshold) < 0:
            raise ValueError("threshold must be >= 0")

    # ---- encode ----

    def encode(self, payload: bytes) -> bytes:
        payload = bytes(payload)
        if len(payload) <= self.threshold:
            log.debug("compressor: %d bytes <= threshold %d, stored", len(payload), self.threshold)
            return pack_container(MODE_STORED, CODEC_RAW, payload)

        codec_name = resolve_codec_id(self.codec)
        if codec_name != self.codec:
            log.info("compressor: codec %s not available, using %s", self.codec, codec_name)
        codec = make_codec(codec_name, level=self.level)
        codec_byte = CODEC_IDS[codec_name]

        best = pack_container(MODE_BYTES, codec_byte, enc_varint(len(payload)) + codec.compress(payload))

        rec_blob = self._encode_records(payload, codec, codec_byte)
        if rec_blob is not None and len(rec_blob) < len(best):
            best = rec_blob

        stored = pack_container(MODE_STORED, CODEC_RAW, payload)
        if len(stored) < len(best):
            best = stored

        log.debug(
            "compressor: %d -> %d bytes (%s, %s)",
            len(payload),
            len(best),
            MODE_NAMES[best[4]],
            codec_name,
        )
        return best

    def _encode_records(self, payload: bytes, codec: Any, codec_byte: int) -> bytes | None:
        rs = parse_records(payload)
        if rs is None:
            return None
        layer = LayerFieldPack(dictionary=self.dictionary)
        try:
            packed, meta = layer.encode(rs.records)
        except ValueError as e:
            # e.g. lone surrogates from \ud800 escapes cannot be stored as utf-8
            log.debug("compressor: record packing failed (%s), using bytes mode", e)
            return None
        header = dict(rs.meta())
        header.update(meta)
        header_b = json.dumps(header, separators=(",", ":")).encode("ascii")
        inner = enc_bytes(header_b) + packed
        blob = pack_container(MODE_RECORDS, codec_byte, enc_varint(len(inner)) + codec.compress(inner))

        try:
            ok = self.decode(blob) == payload
        except DecodeError:
            ok = False
        if not ok:
            log.debug("compressor: record packing did not round-trip, using bytes mode")
            return None
        return blob

    # ---- decode ----

    def decode(self, blob: bytes) -> bytes:
        mode, codec_byte, body = unpack_container(bytes(blob))
        if mode == MODE_STORED:
            return body
        try:
            raw_len, idx = dec_varint(body, 0)
            codec = make_codec(CODEC_NAMES[codec_byte])
            inner = codec.decompress(body[idx:], out_size=raw_len)
            if mode == MODE_BYTES:
                return inner
            return self._decode_records(inner)
        except DecodeError:
            raise
        except _CODEC_FAILURES as e:
            raise DecodeError(f"{MODE_NAMES[mode]}: {e}") from e
        except RuntimeError as e:
            # zstandard not installed on the receiving side
            raise DecodeError(str(e)) from e

    def _decode_records(self, inner: bytes) -> bytes:
        header_b, idx = dec_bytes(inner, 0)
        header = json.loads(header_b.decode("utf-8"))
        if not isinstance(header, dict):
            raise DecodeError("records: header must be an object")
        fp = header.get("dict")
        if fp != self.dictionary.fingerprint:
            raise DecodeError(
                f"records: symbol dictionary mismatch (blob={fp!r} local={self.dictionary.fingerprint!r})"
            )
        layer = LayerFieldPack(dictionary=self.dictionary)
        records = layer.decode(inner[idx:], header)
        return render_records(
            records,
            shape=header.get("shape"),
            style=int(header.get("style", 0)),
            flat=bool(header.get("flat")),
            envelope=header.get("envelope"),
        )


# -------------------
# Stats
# -------------------
@dataclass(frozen=True, slots=True)
class CompressionStats:
    original_size: int
    compressed_size: int
    ratio: float
    codes_before: int
    codes_after: int

    @property
    def saved_percent(self) -> float:
        if self.original_size == 0:
            return 0.0
        return round(100.0 * (1.0 - self.compressed_size / self.original_size), 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "ratio": self.ratio,
            "saved_percent": self.saved_percent,
            "codes_before": self.codes_before,
            "codes_after": self.codes_after,
        }


def compression_stats(original: bytes | int, compressed: bytes | int, qr_capacity: int = QR_CAPACITY) -> CompressionStats:
    """Size comparison plus how many optical codes each side would need."""
    if qr_capacity <= 0:
        raise ValueError("qr_capacity must be > 0")
    o = original if isinstance(original, int) else len(original)
    c = compressed if isinstance(compressed, int) else len(compressed)
    ratio = round(o / c, 2) if c else 0.0
    return CompressionStats(
        original_size=o,
        compressed_size=c,
        ratio=ratio,
        codes_before=math.ceil(o / qr_capacity),
        codes_after=math.ceil(c / qr_capacity),
    )
