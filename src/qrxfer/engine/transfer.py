from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from qrxfer.core.packets import Chunk, CodedPacket
from qrxfer.engine.chunker import chunk_count, split_chunks
from qrxfer.engine.compressor import CompressionStats, Compressor, compression_stats
from qrxfer.engine.fountain import FountainEncoder, default_max_packets, materialize_packets, new_session_id
from qrxfer.engine.session import (
    EVENT_IGNORED,
    ChunkDecoder,
    DecodeProgress,
    FountainDecoder,
)
from qrxfer.errors import DecodeError, MalformedPacket, PacketError, UsageError
from qrxfer.transfer_spec import TransferSpec

log = logging.getLogger(__name__)

MODE_AUTO = "auto"
MODE_FOUNTAIN = "fountain"
MODE_CHUNKS = "chunks"

# below this the fountain overhead is not worth it
FOUNTAIN_MIN_BYTES = 50

Frame = Union[CodedPacket, Chunk]


def choose_mode(
    size: int,
    *,
    mode: str = MODE_AUTO,
    chunk_size: int = 2000,
    auto_chunk_limit: int = 3,
) -> str:
    """Default policy: a handful of chunks is easier to scan than a fountain."""
    if mode in (MODE_FOUNTAIN, MODE_CHUNKS):
        return mode
    if mode != MODE_AUTO:
        raise UsageError(f"unknown transfer mode: {mode!r}")
    if size < FOUNTAIN_MIN_BYTES or chunk_count(size, chunk_size) <= auto_chunk_limit:
        return MODE_CHUNKS
    return MODE_FOUNTAIN


def compressor_for(spec: TransferSpec) -> Compressor:
    return Compressor(dictionary=spec.dictionary, codec=spec.codec, threshold=spec.compress_threshold)


@dataclass(frozen=True)
class OutgoingTransfer:
    session_id: str
    mode: str
    frames: list[Frame]
    original_size: int
    compressed_size: int
    cycle_ms: int = 500

    @property
    def stats(self) -> CompressionStats:
        return compression_stats(self.original_size, self.compressed_size)

    def frame_strings(self) -> list[str]:
        return [f.to_json() for f in self.frames]

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode,
            "frames": len(self.frames),
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "cycle_ms": self.cycle_ms,
        }


def _decodes(packets: list[CodedPacket]) -> bool:
    dec = FountainDecoder()
    for p in packets:
        dec.on_packet_received(p)
    return dec.is_complete


def prepare_transfer(
    payload: bytes,
    spec: TransferSpec | None = None,
    *,
    session_id: str | None = None,
    seed: str | int | None = None,
) -> OutgoingTransfer:
    """Compress ``payload`` and cut it into the frames the display will cycle through."""
    spec = spec or TransferSpec()
    compressed = compressor_for(spec).encode(payload)
    sid = session_id or new_session_id(spec.data_type)
    mode = choose_mode(
        len(compressed),
        mode=spec.mode,
        chunk_size=spec.chunk_size,
        auto_chunk_limit=spec.auto_chunk_limit,
    )

    frames: list[Frame]
    if mode == MODE_CHUNKS:
        frames = list(split_chunks(compressed, spec.chunk_size, sid))
    else:
        enc = FountainEncoder(
            compressed,
            spec.block_size,
            session_id=sid,
            seed=seed,
            c=spec.degree_c,
            delta=spec.degree_delta,
            packet_type=spec.packet_type,
        )
        cap = spec.max_packets or default_max_packets(enc.k)
        packets = materialize_packets(enc, cap, spec.max_packet_chars)
        # a fixed carousel never shows anything else, so make sure it peels
        for attempt in range(4):
            if _decodes(packets):
                break
            if attempt == 3:
                raise UsageError(
                    f"fountain: {len(packets)} packets still do not decode; raise max_packets or the block size"
                )
            cap *= 2
            log.warning("fountain: %d packets do not decode, retrying with cap %d", len(packets), cap)
            packets = materialize_packets(enc, cap, spec.max_packet_chars)
        frames = list(packets)

    return OutgoingTransfer(
        session_id=sid,
        mode=mode,
        frames=frames,
        original_size=len(payload),
        compressed_size=len(compressed),
        cycle_ms=spec.cycle_ms,
    )


class TransferReceiver:
    """
    Scan-loop front end.

    Feed every scanned string to ``on_scan``; once ``progress.complete`` is
    true, ``result()`` returns the original payload.
    """

    def __init__(self, spec: TransferSpec | None = None, *, expected_type: str | None = None):
        self.spec = spec or TransferSpec()
        self.expected_type = expected_type
        self.compressor = compressor_for(self.spec)
        self.fountain = FountainDecoder()
        self.chunks = ChunkDecoder()
        self._active: FountainDecoder | ChunkDecoder | None = None
        self.ignored_type = 0

    @property
    def active(self) -> FountainDecoder | ChunkDecoder | None:
        return self._active

    @property
    def is_complete(self) -> bool:
        return self._active is not None and self._active.is_complete

    def on_scan(self, raw: str | bytes) -> DecodeProgress:
        try:
            obj = json.loads(raw)
        except (ValueError, TypeError) as e:
            return self._reject_raw(MalformedPacket(f"frame: invalid JSON: {e}"))
        if not isinstance(obj, dict):
            return self._reject_raw(MalformedPacket("frame: JSON root must be an object"))

        if "indices" in obj:
            ptype = obj.get("type")
            if self.expected_type is not None and ptype is not None and ptype != self.expected_type:
                self.ignored_type += 1
                log.debug("frame ignored: type %r, expecting %r", ptype, self.expected_type)
                return self._current(EVENT_IGNORED)
            target: FountainDecoder | ChunkDecoder = self.fountain
            parse: Any = CodedPacket.from_wire
        elif "part" in obj:
            target = self.chunks
            parse = Chunk.from_wire
        else:
            return self._reject_raw(MalformedPacket("frame: neither a fountain packet nor a chunk"))

        # a bad frame of the other kind must not tear down the live session
        try:
            frame = parse(obj)
            frame.verify()
        except PacketError as e:
            return (self._active or target).reject(e)

        self._switch(target)
        if target is self.fountain:
            return self.fountain.on_packet_received(frame)
        return self.chunks.on_chunk_received(frame)

    def result(self) -> bytes:
        dec = self._active
        if dec is None or dec.payload is None:
            raise UsageError("transfer not complete")
        try:
            return self.compressor.decode(dec.payload)
        except DecodeError:
            log.warning("session %s: payload could not be decoded, discarding", dec.session_id)
            self.reset()
            raise

    def reset(self) -> None:
        self.fountain.reset()
        self.chunks.reset()
        self._active = None

    def _switch(self, dec: FountainDecoder | ChunkDecoder) -> None:
        if self._active is not dec:
            if self._active is not None:
                self._active.reset()
            self._active = dec

    def _current(self, event: str) -> DecodeProgress:
        dec = self._active or self.fountain
        return dataclasses.replace(dec.progress(), event=event)

    def _reject_raw(self, err: MalformedPacket) -> DecodeProgress:
        return (self._active or self.fountain).reject(err)
