"""qrxfer CLI.

This is the stable CLI entrypoint (console-script: ``qrxfer``).

UX policy:
  - Files in, files out: ``send`` writes the frames a display would cycle
    through (one JSON per line), ``receive`` replays scanned lines.
  - A transfer spec (``--spec``) is the shared config of both sides; flags
    override it.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from qrxfer.errors import EXIT_USAGE, IncompleteTransfer, QrXferError
from qrxfer.transfer_spec import TransferSpec, TransferSpecError, load_transfer_spec


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--debug", action="store_true", help="Show stack traces on errors (and DEBUG logs)")
    p.add_argument("-v", "--verbose", action="store_true", help="INFO logs on stderr")
    p.add_argument(
        "--spec",
        default=None,
        help="Transfer spec JSON. Use '@file.json' to load from file, or pass JSON inline.",
    )


def _setup_logging(ns: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(ns, "verbose", False):
        level = logging.INFO
    if getattr(ns, "debug", False):
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _spec_from_args(ns: argparse.Namespace, **overrides: Any) -> TransferSpec:
    spec = load_transfer_spec(ns.spec) if ns.spec else TransferSpec()
    return spec.with_overrides(**overrides)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _cmd_compress(ns: argparse.Namespace) -> int:
    from qrxfer.engine.transfer import compressor_for

    spec = _spec_from_args(ns, codec=ns.codec, compress_threshold=ns.threshold)
    data = ns.input.read_bytes()
    blob = compressor_for(spec).encode(data)
    ns.output.write_bytes(blob)
    return 0


def _cmd_decompress(ns: argparse.Namespace) -> int:
    from qrxfer.engine.transfer import compressor_for

    spec = _spec_from_args(ns)
    blob = ns.input.read_bytes()
    ns.output.write_bytes(compressor_for(spec).decode(blob))
    return 0


def _cmd_stats(ns: argparse.Namespace) -> int:
    from qrxfer.engine.compressor import compression_stats, container_mode
    from qrxfer.engine.fountain import FountainPlan
    from qrxfer.engine.transfer import choose_mode, compressor_for

    spec = _spec_from_args(ns)
    data = ns.input.read_bytes()
    blob = compressor_for(spec).encode(data)
    st = compression_stats(data, blob)
    plan = FountainPlan.for_payload(len(blob), spec.block_size, spec.max_packets)
    info = st.to_dict()
    info.update(
        {
            "container_mode": container_mode(blob),
            "transfer_mode": choose_mode(
                len(blob), mode=spec.mode, chunk_size=spec.chunk_size, auto_chunk_limit=spec.auto_chunk_limit
            ),
            "fountain_k": plan.k,
            "fountain_max_packets": plan.max_packets,
        }
    )
    if ns.json:
        _print_json(info)
        return 0
    print(f"original:   {st.original_size} bytes ({st.codes_before} codes)")
    print(f"compressed: {st.compressed_size} bytes ({st.codes_after} codes), {info['container_mode']}")
    print(f"ratio:      {st.ratio}x, saved {st.saved_percent}%")
    print(f"transfer:   {info['transfer_mode']} (k={plan.k}, up to {plan.max_packets} packets)")
    return 0


def _cmd_send(ns: argparse.Namespace) -> int:
    from qrxfer.engine.transfer import prepare_transfer

    spec = _spec_from_args(ns, mode=ns.mode, block_size=ns.block_size, max_packets=ns.max_packets)
    data = ns.input.read_bytes()
    out = prepare_transfer(data, spec, session_id=ns.session_id, seed=ns.seed)
    with ns.output.open("w", encoding="utf-8") as f:
        for line in out.frame_strings():
            f.write(line)
            f.write("\n")
    _print_json(out.summary())
    return 0


def _cmd_receive(ns: argparse.Namespace) -> int:
    from qrxfer.engine.transfer import TransferReceiver

    spec = _spec_from_args(ns)
    rx = TransferReceiver(spec, expected_type=ns.expected_type)
    progress = None
    with ns.input.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            progress = rx.on_scan(line)
            if progress.complete:
                break
    if not rx.is_complete:
        if progress is None:
            raise IncompleteTransfer("no frames scanned")
        raise IncompleteTransfer(
            f"incomplete: {progress.solved}/{progress.total} solved, "
            f"{progress.received} received, {progress.rejected} rejected"
        )
    data = rx.result()
    ns.output.write_bytes(data)
    print(f"OK {len(data)} bytes")
    return 0


def _cmd_simulate(ns: argparse.Namespace) -> int:
    from qrxfer.simulate import simulate_transfer

    spec = _spec_from_args(ns, mode=ns.mode)
    res = simulate_transfer(
        ns.input.read_bytes(),
        spec,
        loss_rate=ns.loss_rate,
        corrupt_rate=ns.corrupt_rate,
        reorder_window=ns.reorder_window,
        seed=ns.seed,
        max_cycles=ns.max_cycles,
    )
    if ns.json:
        _print_json(res.to_dict())
    else:
        status = "OK" if res.ok else "FAILED"
        print(
            f"{status} mode={res.mode} frames={res.frames} shown={res.shown} "
            f"scanned={res.scanned} dropped={res.dropped} corrupted={res.corrupted} rejected={res.rejected}"
        )
    if not res.ok:
        raise IncompleteTransfer(res.error or "simulation failed")
    return 0


def _cmd_spec_validate(ns: argparse.Namespace) -> int:
    # load is the validation
    load_transfer_spec(ns.transfer_spec)
    print("OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="qrxfer", description="Optical-code data transfer (fountain + chunks)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_c = sub.add_parser("compress", help="Compress a payload into a QXC container")
    p_c.add_argument("input", type=Path)
    p_c.add_argument("output", type=Path)
    p_c.add_argument("--codec", default=None, help="zlib (default), deflate, gzip, zstd, raw")
    p_c.add_argument("--threshold", type=int, default=None, help="Store payloads up to this size as-is")
    _add_common_args(p_c)

    p_d = sub.add_parser("decompress", help="Restore a payload from a QXC container")
    p_d.add_argument("input", type=Path)
    p_d.add_argument("output", type=Path)
    _add_common_args(p_d)

    p_s = sub.add_parser("stats", help="Compression and optical-code statistics")
    p_s.add_argument("input", type=Path)
    p_s.add_argument("--json", action="store_true", help="Machine-readable output")
    _add_common_args(p_s)

    p_tx = sub.add_parser("send", help="Write the frames to display (one JSON per line)")
    p_tx.add_argument("input", type=Path)
    p_tx.add_argument("output", type=Path)
    p_tx.add_argument("--mode", choices=["auto", "fountain", "chunks"], default=None)
    p_tx.add_argument("--block-size", type=int, default=None)
    p_tx.add_argument("--max-packets", type=int, default=None)
    p_tx.add_argument("--session-id", default=None)
    p_tx.add_argument("--seed", default=None, help="Packet stream seed (default: session id)")
    _add_common_args(p_tx)

    p_rx = sub.add_parser("receive", help="Replay scanned frames (one per line) and restore the payload")
    p_rx.add_argument("input", type=Path)
    p_rx.add_argument("output", type=Path)
    p_rx.add_argument("--expected-type", default=None, help="Ignore fountain packets of another type")
    _add_common_args(p_rx)

    p_sim = sub.add_parser("simulate", help="Send a payload over a simulated lossy camera")
    p_sim.add_argument("input", type=Path)
    p_sim.add_argument("--mode", choices=["auto", "fountain", "chunks"], default=None)
    p_sim.add_argument("--loss-rate", type=float, default=0.1)
    p_sim.add_argument("--corrupt-rate", type=float, default=0.0)
    p_sim.add_argument("--reorder-window", type=int, default=4)
    p_sim.add_argument("--seed", type=int, default=0)
    p_sim.add_argument("--max-cycles", type=int, default=20)
    p_sim.add_argument("--json", action="store_true", help="Machine-readable output")
    _add_common_args(p_sim)

    p_v = sub.add_parser("spec-validate", help="Validate a transfer spec (v1)")
    p_v.add_argument("transfer_spec", help="Transfer spec JSON (@file.json or inline JSON)")
    p_v.add_argument("--debug", action="store_true", help="Show stack traces on errors")

    return p


_COMMANDS = {
    "compress": _cmd_compress,
    "decompress": _cmd_decompress,
    "stats": _cmd_stats,
    "send": _cmd_send,
    "receive": _cmd_receive,
    "simulate": _cmd_simulate,
    "spec-validate": _cmd_spec_validate,
}


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    p = build_parser()
    ns = p.parse_args(argv)
    _setup_logging(ns)

    try:
        return _COMMANDS[ns.cmd](ns)
    except SystemExit:
        raise
    except TransferSpecError as e:
        # Treat as usage/config error.
        if getattr(ns, "debug", False):
            raise
        print(f"[qrxfer] {e}", file=sys.stderr)
        return EXIT_USAGE
    except QrXferError as e:
        if getattr(ns, "debug", False):
            raise
        print(f"[qrxfer] {e}", file=sys.stderr)
        return int(getattr(e, "exit_code", 10) or 10)
    except Exception as e:
        if getattr(ns, "debug", False):
            raise
        print(f"[qrxfer] error: {e}", file=sys.stderr)
        return 10


if __name__ == "__main__":
    raise SystemExit(main())
