"""Byte-codec registry for the last compression stage.

Codec ids are stored as one byte in the container header. Keep them stable.
"""

from __future__ import annotations

from typing import Any

from qrxfer.core.codec_zlib import CodecZlib
from qrxfer.core.codec_zstd import CodecZstd, have_zstd

CODEC_RAW = 0
CODEC_ZLIB = 1
CODEC_DEFLATE = 2
CODEC_GZIP = 3
CODEC_ZSTD = 4

CODEC_IDS: dict[str, int] = {
    "raw": CODEC_RAW,
    "zlib": CODEC_ZLIB,
    "deflate": CODEC_DEFLATE,
    "gzip": CODEC_GZIP,
    "zstd": CODEC_ZSTD,
}
CODEC_NAMES: dict[int, str] = {v: k for k, v in CODEC_IDS.items()}


class _Identity:
    codec_id = "raw"

    def compress(self, data: bytes) -> bytes:
        return bytes(data)

    def decompress(self, data: bytes, out_size: int | None = None) -> bytes:
        b = bytes(data)
        if out_size is not None and len(b) != int(out_size):
            raise ValueError(f"raw: out_size mismatch: got={len(b)} expected={out_size}")
        return b


def resolve_codec_id(codec_id: str, *, zstd_available: bool | None = None) -> str:
    """Normalize a codec name; zstd falls back to zlib when zstandard is missing."""
    cid = str(codec_id).strip().lower()
    if cid not in CODEC_IDS:
        raise ValueError(f"unsupported codec: {codec_id!r} (known: {', '.join(CODEC_IDS)})")
    ok = have_zstd() if zstd_available is None else zstd_available
    if cid == "zstd" and not ok:
        return "zlib"
    return cid


def make_codec(codec_id: str, *, level: int | None = None) -> Any:
    cid = str(codec_id)
    if cid == "raw":
        return _Identity()
    if cid in ("zlib", "deflate", "gzip"):
        return CodecZlib(level=9 if level is None else level, framing=cid)
    if cid == "zstd":
        return CodecZstd(level=19 if level is None else level)
    raise ValueError(f"unsupported codec: {codec_id!r}")
