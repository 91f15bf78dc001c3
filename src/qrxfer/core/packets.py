"""Wire types for one optical code.

Fountain packet (one JSON object per code)::

    {"sessionId": str, "packetId": int, "k": int, "bytes": int,
     "checksum": str, "indices": [int], "data": base64, "type"?: str}

Fallback chunk::

    {"id": str, "part": int (1-based), "total": int, "data": base64, "checksum": str}

Parsing never trusts the scanner: every shape problem raises MalformedPacket,
a data/checksum disagreement raises ChecksumMismatch (see ``verify``).
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from qrxfer.core.checksum import checksum
from qrxfer.errors import ChecksumMismatch, MalformedPacket

PACKET_KEYS = frozenset({"sessionId", "packetId", "k", "bytes", "checksum", "indices", "data"})
CHUNK_KEYS = frozenset({"id", "part", "total", "data", "checksum"})


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(s: Any, *, where: str) -> bytes:
    if not isinstance(s, str):
        raise MalformedPacket(f"{where}: 'data' must be a base64 string")
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MalformedPacket(f"{where}: 'data' is not valid base64: {e}") from e


def _req_int(obj: Mapping[str, Any], key: str, *, where: str, minimum: int = 0) -> int:
    v = obj.get(key)
    # bool is an int subclass; a scanner never legitimately produces one here
    if isinstance(v, bool) or not isinstance(v, int):
        raise MalformedPacket(f"{where}: field '{key}' must be an integer")
    if v < minimum:
        raise MalformedPacket(f"{where}: field '{key}' must be >= {minimum}, got {v}")
    return v


def _req_str(obj: Mapping[str, Any], key: str, *, where: str) -> str:
    v = obj.get(key)
    if not isinstance(v, str) or not v:
        raise MalformedPacket(f"{where}: field '{key}' must be a non-empty string")
    return v


def _load_json_object(raw: str | bytes, *, where: str) -> dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPacket(f"{where}: invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedPacket(f"{where}: JSON root must be an object")
    return obj


@dataclass(frozen=True, slots=True)
class CodedPacket:
    session_id: str
    packet_id: int
    k: int
    total_bytes: int
    checksum: str
    indices: tuple[int, ...]
    data: bytes
    packet_type: str | None = None

    @property
    def degree(self) -> int:
        return len(self.indices)

    @property
    def block_size(self) -> int:
        return len(self.data)

    @staticmethod
    def build(
        session_id: str,
        packet_id: int,
        k: int,
        total_bytes: int,
        indices: tuple[int, ...] | list[int],
        data: bytes,
        packet_type: str | None = None,
    ) -> "CodedPacket":
        return CodedPacket(
            session_id=session_id,
            packet_id=int(packet_id),
            k=int(k),
            total_bytes=int(total_bytes),
            checksum=checksum(data),
            indices=tuple(sorted(int(i) for i in indices)),
            data=bytes(data),
            packet_type=packet_type,
        )

    def verify(self) -> None:
        actual = checksum(self.data)
        if actual != self.checksum:
            raise ChecksumMismatch(
                f"packet {self.packet_id}: checksum mismatch",
                expected=self.checksum,
                actual=actual,
            )

    def to_wire(self) -> dict[str, Any]:
        obj: dict[str, Any] = {}
        if self.packet_type is not None:
            obj["type"] = self.packet_type
        obj.update(
            {
                "sessionId": self.session_id,
                "packetId": self.packet_id,
                "k": self.k,
                "bytes": self.total_bytes,
                "checksum": self.checksum,
                "indices": list(self.indices),
                "data": _b64(self.data),
            }
        )
        return obj

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    @staticmethod
    def from_wire(obj: Mapping[str, Any]) -> "CodedPacket":
        where = "packet"
        if not isinstance(obj, Mapping):
            raise MalformedPacket(f"{where}: expected an object")
        missing = sorted(PACKET_KEYS - set(obj.keys()))
        if missing:
            raise MalformedPacket(f"{where}: missing fields: {', '.join(missing)}")

        session_id = _req_str(obj, "sessionId", where=where)
        packet_id = _req_int(obj, "packetId", where=where)
        k = _req_int(obj, "k", where=where, minimum=1)
        total_bytes = _req_int(obj, "bytes", where=where, minimum=1)
        cks = obj.get("checksum")
        if not isinstance(cks, (str, int)) or isinstance(cks, bool):
            raise MalformedPacket(f"{where}: field 'checksum' must be a string")

        raw_indices = obj.get("indices")
        if not isinstance(raw_indices, list) or not raw_indices:
            raise MalformedPacket(f"{where}: field 'indices' must be a non-empty list")
        for i in raw_indices:
            if isinstance(i, bool) or not isinstance(i, int) or not (0 <= i < k):
                raise MalformedPacket(f"{where}: index out of range 0..{k - 1}: {i!r}")
        indices = tuple(sorted(raw_indices))
        if len(set(indices)) != len(indices):
            raise MalformedPacket(f"{where}: duplicate source indices")

        data = _unb64(obj.get("data"), where=where)
        if not data:
            raise MalformedPacket(f"{where}: empty data")
        # k blocks of len(data) bytes must be exactly enough for total_bytes
        if (total_bytes + len(data) - 1) // len(data) != k:
            raise MalformedPacket(
                f"{where}: k={k} inconsistent with bytes={total_bytes} and block size {len(data)}"
            )

        ptype = obj.get("type")
        if ptype is not None and not isinstance(ptype, str):
            raise MalformedPacket(f"{where}: field 'type' must be a string")

        return CodedPacket(
            session_id=session_id,
            packet_id=packet_id,
            k=k,
            total_bytes=total_bytes,
            checksum=str(cks).strip().lower(),
            indices=indices,
            data=data,
            packet_type=ptype,
        )

    @staticmethod
    def from_json(raw: str | bytes) -> "CodedPacket":
        return CodedPacket.from_wire(_load_json_object(raw, where="packet"))


@dataclass(frozen=True, slots=True)
class Chunk:
    session_id: str
    index: int
    total: int
    data: bytes
    checksum: str

    @property
    def part(self) -> int:
        return self.index + 1

    @staticmethod
    def build(session_id: str, index: int, total: int, data: bytes) -> "Chunk":
        return Chunk(
            session_id=session_id,
            index=int(index),
            total=int(total),
            data=bytes(data),
            checksum=checksum(data),
        )

    def verify(self) -> None:
        actual = checksum(self.data)
        if actual != self.checksum:
            raise ChecksumMismatch(
                f"chunk {self.part}/{self.total}: checksum mismatch",
                expected=self.checksum,
                actual=actual,
            )

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "part": self.part,
            "total": self.total,
            "data": _b64(self.data),
            "checksum": self.checksum,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    @staticmethod
    def from_wire(obj: Mapping[str, Any]) -> "Chunk":
        where = "chunk"
        if not isinstance(obj, Mapping):
            raise MalformedPacket(f"{where}: expected an object")
        missing = sorted(CHUNK_KEYS - set(obj.keys()))
        if missing:
            raise MalformedPacket(f"{where}: missing fields: {', '.join(missing)}")

        session_id = _req_str(obj, "id", where=where)
        total = _req_int(obj, "total", where=where, minimum=1)
        part = _req_int(obj, "part", where=where, minimum=1)
        if part > total:
            raise MalformedPacket(f"{where}: part {part} out of range 1..{total}")
        cks = obj.get("checksum")
        if not isinstance(cks, (str, int)) or isinstance(cks, bool):
            raise MalformedPacket(f"{where}: field 'checksum' must be a string")
        data = _unb64(obj.get("data"), where=where)

        return Chunk(
            session_id=session_id,
            index=part - 1,
            total=total,
            data=data,
            checksum=str(cks).strip().lower(),
        )

    @staticmethod
    def from_json(raw: str | bytes) -> "Chunk":
        return Chunk.from_wire(_load_json_object(raw, where="chunk"))


Frame = Union[CodedPacket, Chunk]


def parse_frame(raw: str | bytes | Mapping[str, Any]) -> Frame:
    """Parse one scanned code into a CodedPacket or a Chunk (by shape)."""
    obj = raw if isinstance(raw, Mapping) else _load_json_object(raw, where="frame")
    if "indices" in obj:
        return CodedPacket.from_wire(obj)
    if "part" in obj:
        return Chunk.from_wire(obj)
    raise MalformedPacket("frame: neither a fountain packet nor a chunk")
