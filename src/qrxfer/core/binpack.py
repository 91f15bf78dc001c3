from __future__ import annotations

from collections.abc import Sequence

# ------------------------------------------------------------
# Binary packing primitives shared by the record layers.
#
#   varint:  unsigned LEB128
#   zigzag:  signed -> unsigned before varint
#   bytes:   varint(len) + raw
#   str:     varint(len) + utf-8
#   bools:   8 per byte, LSB first, ceil(n/8) bytes
#
# Decoders take (buf, idx) and return (value, new_idx).
# ------------------------------------------------------------


def enc_varint(x: int) -> bytes:
    """Unsigned LEB128."""
    if x < 0:
        raise ValueError("varint: negative value not supported")
    out = bytearray()
    while True:
        b = x & 0x7F
        x >>= 7
        if x:
            out.append(0x80 | b)
        else:
            out.append(b)
            break
    return bytes(out)


def dec_varint(buf: bytes, idx: int) -> tuple[int, int]:
    """Unsigned LEB128 decode."""
    shift = 0
    x = 0
    while True:
        if idx >= len(buf):
            raise ValueError("varint: truncated")
        b = buf[idx]
        idx += 1
        x |= (b & 0x7F) << shift
        if (b & 0x80) == 0:
            break
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")
    return x, idx


def zigzag_enc(n: int) -> int:
    return (n << 1) if n >= 0 else ((-n << 1) - 1)


def zigzag_dec(u: int) -> int:
    return (u >> 1) if (u & 1) == 0 else -(u >> 1) - 1


def enc_bytes(b: bytes) -> bytes:
    return enc_varint(len(b)) + bytes(b)


def dec_bytes(buf: bytes, idx: int) -> tuple[bytes, int]:
    n, idx = dec_varint(buf, idx)
    if idx + n > len(buf):
        raise ValueError("bytes: truncated")
    return bytes(buf[idx : idx + n]), idx + n


def enc_str(s: str) -> bytes:
    return enc_bytes(s.encode("utf-8"))


def dec_str(buf: bytes, idx: int) -> tuple[str, int]:
    raw, idx = dec_bytes(buf, idx)
    return raw.decode("utf-8"), idx


def u8(buf: bytes, idx: int) -> tuple[int, int]:
    if idx >= len(buf):
        raise ValueError("u8: truncated")
    return buf[idx], idx + 1


def pack_bools(flags: Sequence[bool]) -> bytes:
    """Pack booleans eight to a byte, first flag in the least significant bit."""
    out = bytearray((len(flags) + 7) // 8)
    for i, f in enumerate(flags):
        if f:
            out[i >> 3] |= 1 << (i & 7)
    return bytes(out)


def unpack_bools(buf: bytes, idx: int, n: int) -> tuple[list[bool], int]:
    nbytes = (n + 7) // 8
    if idx + nbytes > len(buf):
        raise ValueError("bools: truncated")
    chunk = buf[idx : idx + nbytes]
    flags = [bool(chunk[i >> 3] & (1 << (i & 7))) for i in range(n)]
    return flags, idx + nbytes
