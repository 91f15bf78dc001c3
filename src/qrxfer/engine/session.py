"""Receiver-side transfer sessions.

Both decoders are fed one scanned frame at a time and answer with a
``DecodeProgress`` snapshot. Bad frames never raise: they are dropped,
counted and reported as ``REJECTED`` so the scan loop simply keeps going.

Session lifecycle::

    IDLE --first frame--> BUFFERING --all blocks--> COMPLETE
      ^                       |  ^                     |
      |                       +--+ new session id <----+
      +------------------ reset() ---------------------+
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from qrxfer.core.packets import Chunk, CodedPacket
from qrxfer.errors import MalformedPacket, PacketError

log = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_BUFFERING = "buffering"
STATE_COMPLETE = "complete"

EVENT_ACCEPTED = "accepted"  # new information (solved or buffered)
EVENT_COMPLETE = "complete"  # this frame finished the session
EVENT_REDUNDANT = "redundant"  # valid, but adds nothing new
EVENT_DUPLICATE = "duplicate"  # exact frame seen before
EVENT_IGNORED = "ignored"  # session already complete
EVENT_REJECTED = "rejected"  # malformed, checksum failure, inconsistent shape


def estimated_needed(k: int) -> int:
    return max(k + 3, 10) if k else 0


@dataclass(frozen=True, slots=True)
class DecodeProgress:
    event: str
    state: str
    session_id: str | None
    solved: int
    total: int
    received: int
    buffered: int
    rejected: int
    duplicates: int
    estimated_needed: int
    session_reset: bool = False
    error: str | None = None

    @property
    def complete(self) -> bool:
        return self.state == STATE_COMPLETE

    @property
    def fraction(self) -> float:
        return self.solved / self.total if self.total else 0.0


class _Residual:
    __slots__ = ("unknown", "value", "done")

    def __init__(self, unknown: set[int], value: int):
        self.unknown = unknown
        self.value = value
        self.done = False


class _SessionDecoder:
    """Shared bookkeeping: lock, counters, progress snapshots."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rejected = 0
        self._clear()

    def _clear(self) -> None:
        self.state = STATE_IDLE
        self.session_id: str | None = None
        self.received = 0
        self.duplicates = 0
        self.redundant = 0
        self._payload: bytes | None = None

    def reset(self) -> None:
        with self._lock:
            if self.session_id is not None:
                log.info("session %s discarded", self.session_id)
            self.rejected = 0
            self._clear()

    @property
    def is_complete(self) -> bool:
        return self.state == STATE_COMPLETE

    @property
    def payload(self) -> bytes | None:
        """The reassembled (still compressed) bytes once complete, else None."""
        return self._payload

    def progress(self) -> DecodeProgress:
        with self._lock:
            return self._snapshot(EVENT_IGNORED)

    def reject(self, err: Exception) -> DecodeProgress:
        """Count a frame dropped before it reached this decoder (e.g. unparseable scan)."""
        with self._lock:
            return self._reject(err)

    def _reject(self, err: Exception) -> DecodeProgress:
        self.rejected += 1
        log.debug("frame rejected: %s", err)
        return self._snapshot(EVENT_REJECTED, error=str(err))

    # subclasses
    def _counts(self) -> tuple[int, int, int, int]:  # solved, total, buffered, needed
        raise NotImplementedError

    def _snapshot(self, event: str, *, session_reset: bool = False, error: str | None = None) -> DecodeProgress:
        solved, total, buffered, needed = self._counts()
        return DecodeProgress(
            event=event,
            state=self.state,
            session_id=self.session_id,
            solved=solved,
            total=total,
            received=self.received,
            buffered=buffered,
            rejected=self.rejected,
            duplicates=self.duplicates,
            estimated_needed=needed,
            session_reset=session_reset,
            error=error,
        )


class FountainDecoder(_SessionDecoder):
    """Peeling decoder for ``CodedPacket`` streams (any order, any duplicates)."""

    def _clear(self) -> None:
        super()._clear()
        self.k = 0
        self.total_bytes = 0
        self.block_size = 0
        self._solved: dict[int, int] = {}
        self._by_index: dict[int, list[_Residual]] = {}
        self._residuals: dict[frozenset[int], _Residual] = {}
        self._seen: set[tuple[int, tuple[int, ...], str]] = set()

    def _counts(self) -> tuple[int, int, int, int]:
        return len(self._solved), self.k, len(self._residuals), estimated_needed(self.k)

    @property
    def solved_indices(self) -> frozenset[int]:
        return frozenset(self._solved)

    def on_packet_received(self, packet: CodedPacket | Mapping[str, Any] | str | bytes) -> DecodeProgress:
        with self._lock:
            try:
                pkt = _coerce_packet(packet)
                pkt.verify()
            except PacketError as e:
                return self._reject(e)

            session_reset = False
            if pkt.session_id != self.session_id:
                session_reset = self.session_id is not None
                if session_reset:
                    log.info("SESSION_RESET %s -> %s", self.session_id, pkt.session_id)
                self._start(pkt)
            elif (pkt.k, pkt.total_bytes, pkt.block_size) != (self.k, self.total_bytes, self.block_size):
                return self._reject(
                    MalformedPacket(
                        f"packet {pkt.packet_id}: shape k={pkt.k} bytes={pkt.total_bytes} "
                        f"block={pkt.block_size} does not match session"
                    )
                )

            if self.state == STATE_COMPLETE:
                return self._snapshot(EVENT_IGNORED)

            key = (pkt.packet_id, pkt.indices, pkt.checksum)
            if key in self._seen:
                self.duplicates += 1
                return self._snapshot(EVENT_DUPLICATE, session_reset=session_reset)
            self._seen.add(key)
            self.received += 1

            event = self._absorb(pkt)
            return self._snapshot(event, session_reset=session_reset)

    def _start(self, pkt: CodedPacket) -> None:
        self._clear()
        self.state = STATE_BUFFERING
        self.session_id = pkt.session_id
        self.k = pkt.k
        self.total_bytes = pkt.total_bytes
        self.block_size = pkt.block_size
        log.info(
            "session %s started: k=%d bytes=%d block=%d",
            pkt.session_id,
            pkt.k,
            pkt.total_bytes,
            pkt.block_size,
        )

    def _absorb(self, pkt: CodedPacket) -> str:
        value = int.from_bytes(pkt.data, "big")
        unknown: set[int] = set()
        for i in pkt.indices:
            known = self._solved.get(i)
            if known is None:
                unknown.add(i)
            else:
                value ^= known

        if not unknown:
            self.redundant += 1
            return EVENT_REDUNDANT

        if len(unknown) == 1:
            self._solve(unknown.pop(), value)
        else:
            key = frozenset(unknown)
            if key in self._residuals:
                self.redundant += 1
                return EVENT_REDUNDANT
            res = _Residual(unknown, value)
            self._residuals[key] = res
            for i in unknown:
                self._by_index.setdefault(i, []).append(res)

        if len(self._solved) == self.k:
            self._finish()
            return EVENT_COMPLETE
        return EVENT_ACCEPTED

    def _solve(self, index: int, value: int) -> None:
        queue: deque[tuple[int, int]] = deque([(index, value)])
        while queue:
            i, v = queue.popleft()
            if i in self._solved:
                continue
            self._solved[i] = v
            for res in self._by_index.pop(i, ()):
                if res.done:
                    continue
                del self._residuals[frozenset(res.unknown)]
                res.unknown.discard(i)
                res.value ^= v
                if len(res.unknown) == 1:
                    res.done = True
                    queue.append((next(iter(res.unknown)), res.value))
                    continue
                key = frozenset(res.unknown)
                if key in self._residuals:
                    # collapsed onto an equation we already hold
                    res.done = True
                    continue
                self._residuals[key] = res

    def _finish(self) -> None:
        blocks = b"".join(self._solved[i].to_bytes(self.block_size, "big") for i in range(self.k))
        self._payload = blocks[: self.total_bytes]
        self.state = STATE_COMPLETE
        self._residuals.clear()
        self._by_index.clear()
        log.info("session %s complete: %d bytes from %d packets", self.session_id, self.total_bytes, self.received)


class ChunkDecoder(_SessionDecoder):
    """Slot-filling decoder for ordered ``Chunk`` frames."""

    def _clear(self) -> None:
        super()._clear()
        self.total = 0
        self._slots: dict[int, bytes] = {}

    def _counts(self) -> tuple[int, int, int, int]:
        return len(self._slots), self.total, 0, self.total

    def missing_parts(self) -> list[int]:
        """1-based part numbers still missing (what a user would look for)."""
        with self._lock:
            return [i + 1 for i in range(self.total) if i not in self._slots]

    def on_chunk_received(self, chunk: Chunk | Mapping[str, Any] | str | bytes) -> DecodeProgress:
        with self._lock:
            try:
                ch = _coerce_chunk(chunk)
                if not (0 <= ch.index < ch.total):
                    raise MalformedPacket(f"chunk: part {ch.part} out of range 1..{ch.total}")
                ch.verify()
            except PacketError as e:
                return self._reject(e)

            session_reset = False
            if ch.session_id != self.session_id:
                session_reset = self.session_id is not None
                if session_reset:
                    log.info("SESSION_RESET %s -> %s", self.session_id, ch.session_id)
                self._clear()
                self.state = STATE_BUFFERING
                self.session_id = ch.session_id
                self.total = ch.total
                log.info("session %s started: %d chunks", ch.session_id, ch.total)
            elif ch.total != self.total:
                return self._reject(
                    MalformedPacket(f"chunk {ch.part}: total {ch.total} does not match session ({self.total})")
                )

            if self.state == STATE_COMPLETE:
                return self._snapshot(EVENT_IGNORED)

            if ch.index in self._slots:
                self.duplicates += 1
                return self._snapshot(EVENT_DUPLICATE, session_reset=session_reset)

            self._slots[ch.index] = ch.data
            self.received += 1
            if len(self._slots) == self.total:
                self._payload = b"".join(self._slots[i] for i in range(self.total))
                self.state = STATE_COMPLETE
                log.info("session %s complete: %d chunks", self.session_id, self.total)
                return self._snapshot(EVENT_COMPLETE, session_reset=session_reset)
            return self._snapshot(EVENT_ACCEPTED, session_reset=session_reset)


def _coerce_packet(packet: Any) -> CodedPacket:
    if isinstance(packet, CodedPacket):
        # objects built in-process get the same shape checks as scanned ones
        return CodedPacket.from_wire(packet.to_wire())
    if isinstance(packet, Mapping):
        return CodedPacket.from_wire(packet)
    if isinstance(packet, (str, bytes, bytearray)):
        return CodedPacket.from_json(packet)
    raise MalformedPacket(f"packet: unsupported frame type {type(packet).__name__}")


def _coerce_chunk(chunk: Any) -> Chunk:
    if isinstance(chunk, Chunk):
        return Chunk.from_wire(chunk.to_wire())
    if isinstance(chunk, Mapping):
        return Chunk.from_wire(chunk)
    if isinstance(chunk, (str, bytes, bytearray)):
        return Chunk.from_json(chunk)
    raise MalformedPacket(f"chunk: unsupported frame type {type(chunk).__name__}")
