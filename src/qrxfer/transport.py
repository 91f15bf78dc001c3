"""
Transport adapter: the screen/camera pair, seen from the transfer engine.

The engine only ever hands the display one frame string at a time and only
ever receives scanned strings back. Rendering and scanning belong to the host
application; this module holds the interface plus two in-process pieces:

- ``PacketCarousel``: the fixed-interval frame cycle the sender displays.
- ``LossyChannel``: a camera that misses, mangles and reorders frames, for
  tests and ``qrxfer simulate``.
"""

from __future__ import annotations

import logging
import random
import threading
from collections import deque
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

log = logging.getLogger(__name__)

DEFAULT_CYCLE_MS = 500


@runtime_checkable
class Transport(Protocol):
    def render(self, frame: str) -> object:
        """Show one frame. Returns whatever the display layer returns (ignored)."""
        ...

    def scan(self) -> str | None:
        """Next scanned string, or None when nothing was read."""
        ...


class PacketCarousel:
    """Cycles through a fixed frame list forever (the sender has no back-channel)."""

    def __init__(self, frames: Sequence[str], interval_ms: int = DEFAULT_CYCLE_MS):
        if not frames:
            raise ValueError("carousel: no frames")
        if interval_ms < 1:
            raise ValueError("carousel: interval_ms must be >= 1")
        self.frames = list(frames)
        self.interval_ms = int(interval_ms)
        self.position = 0
        self.cycles = 0

    def __len__(self) -> int:
        return len(self.frames)

    def current(self) -> str:
        return self.frames[self.position]

    def tick(self) -> str:
        """Return the frame to show now and advance."""
        frame = self.frames[self.position]
        self.position += 1
        if self.position == len(self.frames):
            self.position = 0
            self.cycles += 1
        return frame

    def run(
        self,
        render: Callable[[str], object],
        stop: threading.Event,
        interval_ms: int | None = None,
    ) -> int:
        """Render frames at a fixed pace until ``stop`` is set. Returns frames shown."""
        wait_s = (interval_ms or self.interval_ms) / 1000.0
        shown = 0
        while not stop.is_set():
            render(self.tick())
            shown += 1
            if stop.wait(wait_s):
                break
        log.debug("carousel stopped after %d frames (%d full cycles)", shown, self.cycles)
        return shown


class LossyChannel:
    """
    In-memory ``Transport`` with a misbehaving camera.

    Every rendered frame is dropped with ``loss_rate``, has one character
    altered with ``corrupt_rate``, and lands in a reorder window of
    ``reorder_window`` frames from which ``scan`` picks at random.
    """

    def __init__(
        self,
        *,
        loss_rate: float = 0.0,
        corrupt_rate: float = 0.0,
        reorder_window: int = 1,
        seed: int | None = None,
    ):
        for name, v in (("loss_rate", loss_rate), ("corrupt_rate", corrupt_rate)):
            if not (0.0 <= v < 1.0):
                raise ValueError(f"channel: {name} must be in [0, 1), got {v}")
        if reorder_window < 1:
            raise ValueError("channel: reorder_window must be >= 1")
        self.loss_rate = loss_rate
        self.corrupt_rate = corrupt_rate
        self.reorder_window = reorder_window
        self._rng = random.Random(seed)
        self._queue: deque[str] = deque()
        self.rendered = 0
        self.dropped = 0
        self.corrupted = 0

    def render(self, frame: str) -> None:
        self.rendered += 1
        if self._rng.random() < self.loss_rate:
            self.dropped += 1
            return
        if frame and self._rng.random() < self.corrupt_rate:
            self.corrupted += 1
            frame = self._corrupt(frame)
        self._queue.append(frame)

    def _corrupt(self, frame: str) -> str:
        # damage the payload field; a mangled session id would model a different sender
        start = frame.find('"data":"')
        if start >= 0:
            lo = start + len('"data":"')
            hi = frame.find('"', lo)
            i = self._rng.randrange(lo, hi) if hi > lo else self._rng.randrange(len(frame))
        else:
            i = self._rng.randrange(len(frame))
        c = frame[i]
        repl = "A" if c != "A" else "B"
        return frame[:i] + repl + frame[i + 1 :]

    def scan(self) -> str | None:
        if not self._queue:
            return None
        n = min(self.reorder_window, len(self._queue))
        j = self._rng.randrange(n)
        self._queue.rotate(-j)
        frame = self._queue.popleft()
        self._queue.rotate(j)
        return frame

    def pending(self) -> int:
        return len(self._queue)
