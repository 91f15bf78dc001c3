#!/usr/bin/env python3
"""Write docs/exit_codes.md from qrxfer.errors (or check it is up to date)."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description=__doc__)
    ap.add_argument("--check", action="store_true", help="Exit 1 if docs/exit_codes.md is stale")
    ns = ap.parse_args(argv)

    repo = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo / "src"))

    from qrxfer.errors import render_exit_codes_markdown  # noqa: E402

    out = repo / "docs" / "exit_codes.md"
    text = render_exit_codes_markdown()
    if ns.check:
        current = out.read_text(encoding="utf-8") if out.is_file() else ""
        if current != text:
            print(f"[qrxfer] {out} is stale; run scripts/gen_exit_codes_md.py", file=sys.stderr)
            return 1
        print(f"[qrxfer] {out} up to date")
        return 0

    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    print(f"[qrxfer] wrote {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
