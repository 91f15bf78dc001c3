from __future__ import annotations

import sys
from pathlib import Path

CHECKS = (
    "test_no_low_level_imports_orchestrator",
    "test_low_level_packages_only_import_downwards",
    "test_packets_are_self_contained",
)


def main() -> int:
    repo_root = Path(__file__).resolve().parents[1]
    test_path = repo_root / "tests" / "test_arch_boundaries.py"
    if not test_path.is_file():
        print("ERROR: tests/test_arch_boundaries.py not found.", file=sys.stderr)
        return 3

    ns: dict[str, object] = {"__file__": str(test_path), "__name__": "arch_boundaries"}
    code = test_path.read_text(encoding="utf-8")
    exec(compile(code, str(test_path), "exec"), ns, ns)

    failed = 0
    for name in CHECKS:
        fn = ns.get(name)
        if not callable(fn):
            print(f"ERROR: {name} not found.", file=sys.stderr)
            return 3
        try:
            fn()
        except AssertionError as e:
            failed += 1
            print(str(e), file=sys.stderr)
    if failed:
        return 2
    print(f"OK: architecture boundaries respected ({len(CHECKS)} checks).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
