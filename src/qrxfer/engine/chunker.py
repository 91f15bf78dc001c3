from __future__ import annotations

import logging

from qrxfer.core.packets import Chunk
from qrxfer.errors import UsageError

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2000


def chunk_count(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    return (int(size) + chunk_size - 1) // chunk_size


def split_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE, session_id: str = "") -> list[Chunk]:
    """Fixed-size split (last chunk short), one checksum per chunk, no redundancy."""
    data = bytes(data)
    if not data:
        raise UsageError("chunker: cannot split an empty payload")
    if chunk_size < 1:
        raise UsageError(f"chunker: chunk_size must be >= 1, got {chunk_size}")
    if not session_id:
        raise UsageError("chunker: session_id is required")

    total = chunk_count(len(data), chunk_size)
    chunks = [
        Chunk.build(session_id, i, total, data[i * chunk_size : (i + 1) * chunk_size])
        for i in range(total)
    ]
    log.info("chunker: session %s %d bytes -> %d chunks", session_id, len(data), total)
    return chunks
