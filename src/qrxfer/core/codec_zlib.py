from __future__ import annotations

import zlib

# wbits selects the DEFLATE framing:
#   15  -> zlib header + adler32
#  -15  -> raw deflate (smallest, no header/trailer)
#   31  -> gzip header + crc32 (what pako.gzip produces)
_WBITS = {"zlib": 15, "deflate": -15, "gzip": 31}


class CodecZlib:
    """zlib/DEFLATE byte codec (no external deps)."""

    def __init__(self, level: int = 9, framing: str = "zlib"):
        if not (0 <= level <= 9):
            raise ValueError(f"zlib level must be 0..9, got {level}")
        if framing not in _WBITS:
            raise ValueError(f"zlib framing must be one of {sorted(_WBITS)}, got {framing!r}")
        self.level = level
        self.framing = framing
        self.codec_id = framing

    def compress(self, data: bytes) -> bytes:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("data must be bytes")
        c = zlib.compressobj(self.level, zlib.DEFLATED, _WBITS[self.framing])
        return c.compress(bytes(data)) + c.flush()

    def decompress(self, comp: bytes, out_size: int | None = None) -> bytes:
        if not isinstance(comp, (bytes, bytearray)):
            raise TypeError("comp must be bytes")
        d = zlib.decompressobj(_WBITS[self.framing])
        raw = d.decompress(bytes(comp))
        if not d.eof:
            raise ValueError(f"{self.framing}: truncated stream")
        if out_size is not None and len(raw) != int(out_size):
            raise ValueError(f"{self.framing}: out_size mismatch: got={len(raw)} expected={out_size}")
        return raw
