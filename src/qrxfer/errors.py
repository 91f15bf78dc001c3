"""Typed errors for qrxfer.

Single source of truth for exit codes lives here.

Policy:
- Errors are small and boring.
- Packet-level errors (MalformedPacket, ChecksumMismatch) are non-fatal inside the
  session decoders: the packet is dropped and reported as REJECTED.
- DecodeError is fatal to a session: the transfer has to be restarted.
- The CLI maps errors to stable exit codes (see EXIT_CODE_* constants).
- docs/exit_codes.md is generated from this module (scripts/gen_exit_codes_md.py).
"""

from __future__ import annotations

from dataclasses import dataclass

# -------------------------
# Exit codes (single source)
# -------------------------

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_GENERIC = 10
EXIT_UNSUPPORTED_VERSION = 11
EXIT_CHECKSUM_MISMATCH = 13
EXIT_INCOMPLETE = 14
EXIT_MALFORMED_PACKET = 20


@dataclass(frozen=True, slots=True)
class ExitCodeInfo:
    code: int
    name: str
    description: str


EXIT_CODES: tuple[ExitCodeInfo, ...] = (
    ExitCodeInfo(EXIT_OK, "OK", "Success"),
    ExitCodeInfo(EXIT_USAGE, "USAGE", "Usage/config error (invalid args, invalid transfer spec, etc.)"),
    ExitCodeInfo(EXIT_GENERIC, "GENERIC", "Generic failure (corrupt compressed payload, unexpected error, etc.)"),
    ExitCodeInfo(EXIT_UNSUPPORTED_VERSION, "UNSUPPORTED_VERSION", "Unsupported container version"),
    ExitCodeInfo(EXIT_CHECKSUM_MISMATCH, "CHECKSUM_MISMATCH", "Packet/chunk data does not match its checksum"),
    ExitCodeInfo(EXIT_INCOMPLETE, "INCOMPLETE", "Frames exhausted before the transfer completed"),
    ExitCodeInfo(EXIT_MALFORMED_PACKET, "MALFORMED_PACKET", "Scanned frame is not a valid packet/chunk"),
)

# For convenience (fast lookup)
_EXIT_CODE_BY_CODE: dict[int, ExitCodeInfo] = {e.code: e for e in EXIT_CODES}


def exit_code_info(code: int) -> ExitCodeInfo | None:
    return _EXIT_CODE_BY_CODE.get(int(code))


def render_exit_codes_markdown() -> str:
    """Render docs/exit_codes.md content."""
    lines: list[str] = []
    lines.append("# Exit codes\n")
    lines.append("> GENERATED FILE - do not edit manually.\n")
    lines.append("> Source of truth: `src/qrxfer/errors.py` (EXIT_CODES).\n")
    lines.append("> Regenerate: `python scripts/gen_exit_codes_md.py`.\n\n")
    lines.append("These are the CLI exit codes you can rely on.\n\n")
    lines.append("| Code | Name | Meaning |\n")
    lines.append("|---:|---|---|\n")
    for e in sorted(EXIT_CODES, key=lambda x: x.code):
        lines.append(f"| {e.code} | `{e.name}` | {e.description} |\n")
    lines.append("\n## Notes\n")
    lines.append("- Most internal errors extend `QrXferError` and carry an `exit_code`.\n")
    lines.append("- `--debug` re-raises errors to show full stack traces.\n")
    lines.append(
        "- Inside the receiver, malformed and checksum-failed frames are dropped, not raised.\n"
    )
    return "".join(lines)


# ---------------
# Typed exceptions
# ---------------


class QrXferError(Exception):
    """Base error for qrxfer."""

    exit_code: int = EXIT_GENERIC


class UsageError(QrXferError):
    exit_code = EXIT_USAGE


class PacketError(QrXferError):
    """A single scanned frame is unusable. Recoverable: the sender keeps cycling."""


class MalformedPacket(PacketError):
    exit_code = EXIT_MALFORMED_PACKET


class ChecksumMismatch(PacketError):
    exit_code = EXIT_CHECKSUM_MISMATCH

    def __init__(self, message: str, *, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DecodeError(QrXferError):
    """The compressed payload could not be inverted. Fatal to the session."""

    exit_code = EXIT_GENERIC


class UnsupportedVersion(DecodeError):
    exit_code = EXIT_UNSUPPORTED_VERSION


class IncompleteTransfer(QrXferError):
    exit_code = EXIT_INCOMPLETE
