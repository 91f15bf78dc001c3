from __future__ import annotations

import bisect
import dataclasses
import logging
import math
import random
import secrets
import time
from collections.abc import Iterator
from dataclasses import dataclass

from qrxfer.core.packets import CodedPacket
from qrxfer.errors import UsageError

log = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 200
DEFAULT_MAX_PACKET_CHARS = 1800
DEFAULT_C = 0.1
DEFAULT_DELTA = 0.5
MIN_PACKETS = 30

_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_session_id(data_type: str = "data") -> str:
    """``<dataType>_<epoch ms>_<9 random base36 chars>``, as the scanning app names sessions."""
    tail = "".join(secrets.choice(_B36) for _ in range(9))
    return f"{data_type}_{int(time.time() * 1000)}_{tail}"


def packet_type_for(data_type: str) -> str:
    return f"{data_type}_fountain_packet"


def default_max_packets(k: int) -> int:
    return max(MIN_PACKETS, 3 * int(k))


class RobustSoliton:
    """
    Robust Soliton degree distribution over 1..k.

    rho(1) = 1/k, rho(d) = 1/(d(d-1));
    tau adds a spike at k/R plus extra weight on small degrees,
    R = c * ln(k/delta) * sqrt(k). Both are summed and normalised.
    """

    def __init__(self, k: int, c: float = DEFAULT_C, delta: float = DEFAULT_DELTA):
        if k < 1:
            raise ValueError("RobustSoliton: k must be >= 1")
        if c <= 0 or not (0 < delta < 1):
            raise ValueError("RobustSoliton: need c > 0 and 0 < delta < 1")
        self.k = k
        self.c = c
        self.delta = delta

        weights = [0.0] * (k + 1)
        weights[1] = 1.0 / k
        for d in range(2, k + 1):
            weights[d] = 1.0 / (d * (d - 1))

        R = c * math.log(k / delta) * math.sqrt(k)
        if R > 0:
            pivot = min(k, max(1, int(round(k / R))))
            for d in range(1, pivot):
                weights[d] += R / (d * k)
            weights[pivot] += R * math.log(R / delta) / k if R > delta else 0.0

        total = sum(weights)
        acc = 0.0
        self._cdf: list[float] = []
        for d in range(1, k + 1):
            acc += weights[d] / total
            self._cdf.append(acc)
        self._cdf[-1] = 1.0

    def pmf(self, d: int) -> float:
        if not (1 <= d <= self.k):
            return 0.0
        prev = self._cdf[d - 2] if d >= 2 else 0.0
        return self._cdf[d - 1] - prev

    def sample(self, rng: random.Random) -> int:
        return bisect.bisect_left(self._cdf, rng.random()) + 1


class FountainEncoder:
    """
    LT encoder over a fixed block table.

    ``packet(packet_id)`` depends only on (blocks, seed, packet_id), so any
    packet can be regenerated on demand and ``packets()`` can run forever.
    """

    def __init__(
        self,
        data: bytes,
        block_size: int = DEFAULT_BLOCK_SIZE,
        *,
        session_id: str | None = None,
        seed: str | int | None = None,
        c: float = DEFAULT_C,
        delta: float = DEFAULT_DELTA,
        packet_type: str | None = None,
    ):
        data = bytes(data)
        if not data:
            raise UsageError("fountain: cannot encode an empty payload")
        if block_size < 1:
            raise UsageError(f"fountain: block_size must be >= 1, got {block_size}")
        self.data = data
        self.block_size = int(block_size)
        self.total_bytes = len(data)
        self.k = (len(data) + self.block_size - 1) // self.block_size
        self.session_id = session_id or new_session_id()
        self.seed = self.session_id if seed is None else seed
        self.packet_type = packet_type
        self.distribution = RobustSoliton(self.k, c=c, delta=delta)

        padded = data + bytes(self.k * self.block_size - len(data))
        self._blocks = [
            int.from_bytes(padded[i * self.block_size : (i + 1) * self.block_size], "big")
            for i in range(self.k)
        ]

    def block(self, index: int) -> bytes:
        return self._blocks[index].to_bytes(self.block_size, "big")

    def choose_indices(self, packet_id: int) -> tuple[int, ...]:
        rng = random.Random(f"{self.seed}:{packet_id}")
        d = self.distribution.sample(rng)
        return tuple(sorted(rng.sample(range(self.k), d)))

    def packet(self, packet_id: int) -> CodedPacket:
        indices = self.choose_indices(packet_id)
        acc = 0
        for i in indices:
            acc ^= self._blocks[i]
        return CodedPacket.build(
            session_id=self.session_id,
            packet_id=packet_id,
            k=self.k,
            total_bytes=self.total_bytes,
            indices=indices,
            data=acc.to_bytes(self.block_size, "big"),
            packet_type=self.packet_type,
        )

    def packets(self, start: int = 0) -> Iterator[CodedPacket]:
        pid = start
        while True:
            yield self.packet(pid)
            pid += 1


def materialize_packets(
    encoder: FountainEncoder,
    max_packets: int | None = None,
    max_packet_chars: int = DEFAULT_MAX_PACKET_CHARS,
) -> list[CodedPacket]:
    """
    Pull a finite, displayable packet set from the stream.

    Repeated index combinations and packets whose JSON exceeds
    ``max_packet_chars`` are skipped; at most ``10 * max_packets`` draws are
    made. Kept packets are renumbered 0..n-1.
    """
    cap = default_max_packets(encoder.k) if max_packets is None else int(max_packets)
    if cap < 1:
        raise UsageError(f"max_packets must be >= 1, got {cap}")

    seen: set[tuple[int, ...]] = set()
    out: list[CodedPacket] = []
    oversize = 0
    for draw in range(10 * cap):
        if len(out) >= cap:
            break
        pkt = encoder.packet(draw)
        if pkt.indices in seen:
            continue
        pkt = dataclasses.replace(pkt, packet_id=len(out))
        if len(pkt.to_json()) > max_packet_chars:
            oversize += 1
            continue
        seen.add(pkt.indices)
        out.append(pkt)

    if not out:
        raise UsageError(
            f"no packet fits in {max_packet_chars} characters (block_size={encoder.block_size}); "
            "use a smaller block size"
        )
    if oversize:
        log.debug("fountain: skipped %d packets over %d chars", oversize, max_packet_chars)
    log.info(
        "fountain: session %s k=%d block=%d -> %d packets",
        encoder.session_id,
        encoder.k,
        encoder.block_size,
        len(out),
    )
    return out


@dataclass(frozen=True, slots=True)
class FountainPlan:
    """Sizing preview: what a given payload/block size would turn into."""

    total_bytes: int
    block_size: int
    k: int
    max_packets: int

    @staticmethod
    def for_payload(size: int, block_size: int = DEFAULT_BLOCK_SIZE, max_packets: int | None = None) -> "FountainPlan":
        k = max(1, (int(size) + block_size - 1) // block_size)
        return FountainPlan(
            total_bytes=int(size),
            block_size=block_size,
            k=k,
            max_packets=default_max_packets(k) if max_packets is None else max_packets,
        )
