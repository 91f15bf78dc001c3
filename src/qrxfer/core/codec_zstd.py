from __future__ import annotations

from dataclasses import dataclass

try:
    import zstandard as zstd  # type: ignore
except Exception:  # pragma: no cover
    zstd = None


def have_zstd() -> bool:
    return zstd is not None


@dataclass
class CodecZstd:
    """
    Pluggable zstd byte compressor.

    The frame is always "tight": no content size, no checksum. The container
    already carries the uncompressed length and every frame on the optical
    channel is checksummed, so both would be pure overhead here.
    """

    level: int = 19
    codec_id: str = "zstd"

    def _require(self) -> None:
        if zstd is None:
            raise RuntimeError(
                "Module 'zstandard' not available. Install with: python3 -m pip install zstandard"
            )

    def compress(self, data: bytes) -> bytes:
        self._require()
        c = zstd.ZstdCompressor(
            level=int(self.level),
            write_content_size=False,
            write_checksum=False,
        )
        return c.compress(bytes(data))

    def decompress(self, data: bytes, out_size: int | None = None) -> bytes:
        self._require()
        if out_size is None:
            raise ValueError("zstd: out_size required (tight frames carry no content size)")
        d = zstd.ZstdDecompressor()
        raw = d.decompress(bytes(data), max_output_size=int(out_size))
        if len(raw) != int(out_size):
            raise ValueError(f"zstd: out_size mismatch: got={len(raw)} expected={out_size}")
        return raw
