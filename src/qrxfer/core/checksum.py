from __future__ import annotations

_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def rolling_hash32(data: bytes | str) -> int:
    """Signed 32-bit ``h = h * 31 + c`` over bytes (a str is UTF-8 encoded first)."""
    h = 0
    seq = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    for c in seq:
        h = (h * 31 + c) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def checksum(data: bytes | str) -> str:
    """Short base-36 checksum of ``data``.

    Catches optical misreads, not tampering. Matches the JavaScript
    ``Math.abs(hash).toString(36)`` form used by the scanning app.
    """
    return _to_base36(abs(rolling_hash32(data)))


def verify_checksum(data: bytes | str, expected: str) -> bool:
    return checksum(data) == str(expected).strip().lower()
