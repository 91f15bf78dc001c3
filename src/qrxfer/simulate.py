from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from qrxfer.engine.transfer import TransferReceiver, prepare_transfer
from qrxfer.errors import DecodeError
from qrxfer.transfer_spec import TransferSpec
from qrxfer.transport import LossyChannel, PacketCarousel

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    complete: bool
    mode: str
    session_id: str
    frames: int
    shown: int
    scanned: int
    rejected: int
    duplicates: int
    dropped: int
    corrupted: int
    original_size: int
    compressed_size: int
    sha256: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "complete": self.complete,
            "mode": self.mode,
            "session_id": self.session_id,
            "frames": self.frames,
            "shown": self.shown,
            "scanned": self.scanned,
            "rejected": self.rejected,
            "duplicates": self.duplicates,
            "dropped": self.dropped,
            "corrupted": self.corrupted,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "sha256": self.sha256,
            "error": self.error,
        }


def simulate_transfer(
    payload: bytes,
    spec: TransferSpec | None = None,
    *,
    loss_rate: float = 0.1,
    corrupt_rate: float = 0.0,
    reorder_window: int = 4,
    seed: int = 0,
    max_cycles: int = 20,
) -> SimulationResult:
    """Sender carousel -> lossy camera -> receiver, until complete or ``max_cycles`` laps."""
    spec = spec or TransferSpec()
    out = prepare_transfer(payload, spec, seed=seed)
    carousel = PacketCarousel(out.frame_strings(), spec.cycle_ms)
    channel = LossyChannel(
        loss_rate=loss_rate,
        corrupt_rate=corrupt_rate,
        reorder_window=reorder_window,
        seed=seed,
    )
    rx = TransferReceiver(spec, expected_type=spec.packet_type)

    shown = 0
    scanned = 0
    progress = None
    while carousel.cycles < max_cycles and not rx.is_complete:
        channel.render(carousel.tick())
        shown += 1
        raw = channel.scan()
        if raw is None:
            continue
        scanned += 1
        progress = rx.on_scan(raw)
    while not rx.is_complete and channel.pending():
        progress = rx.on_scan(channel.scan() or "")
        scanned += 1

    recovered = b""
    error = None
    complete = rx.is_complete
    if complete:
        try:
            recovered = rx.result()
        except DecodeError as e:
            error = str(e)
    else:
        error = f"incomplete after {max_cycles} cycles"

    ok = recovered == payload and error is None
    log.info("simulate: %s after %d frames shown (%d scanned)", "ok" if ok else "FAILED", shown, scanned)
    return SimulationResult(
        ok=ok,
        complete=complete,
        mode=out.mode,
        session_id=out.session_id,
        frames=len(out.frames),
        shown=shown,
        scanned=scanned,
        rejected=progress.rejected if progress else 0,
        duplicates=progress.duplicates if progress else 0,
        dropped=channel.dropped,
        corrupted=channel.corrupted,
        original_size=len(payload),
        compressed_size=out.compressed_size,
        sha256=hashlib.sha256(recovered).hexdigest() if ok else "",
        error=error,
    )
