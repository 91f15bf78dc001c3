from __future__ import annotations

import base64
import hashlib
import json
import random

import pytest

from qrxfer.core.packets import Chunk
from qrxfer.engine import transfer as transfer_mod
from qrxfer.engine.compressor import container_mode
from qrxfer.engine.session import EVENT_COMPLETE, EVENT_IGNORED, EVENT_REJECTED, STATE_IDLE
from qrxfer.engine.transfer import (
    MODE_CHUNKS,
    MODE_FOUNTAIN,
    TransferReceiver,
    choose_mode,
    compressor_for,
    prepare_transfer,
)
from qrxfer.errors import DecodeError, UsageError
from qrxfer.simulate import simulate_transfer
from qrxfer.transfer_spec import TransferSpec


def _noise(n: int, seed: int = 0) -> bytes:
    return random.Random(seed).randbytes(n)


def _records_payload(size: int) -> bytes:
    """A JSON array of records of exactly ``size`` bytes."""
    base = json.dumps([{"team": i, "score": i * 7 % 31} for i in range(200)], separators=(",", ":"))
    head = base[:-1] + ',{"note":"'
    tail = '"}]'
    assert len(head) + len(tail) <= size
    return (head + "x" * (size - len(head) - len(tail)) + tail).encode("ascii")


def _scouting_records(n: int, seed: int = 11) -> list[dict]:
    rng = random.Random(seed)
    return [
        {
            "match": i // 6 + 1,
            "team": rng.randint(1, 9999),
            "alliance": rng.choice(["red", "blue"]),
            "auto": {"mobility": rng.random() < 0.8, "notes": rng.randint(0, 4)},
            "teleop": {"speaker": rng.randint(0, 30), "amp": rng.randint(0, 12)},
            "comment": rng.choice(["", "fast", "defense", "tipped over"]),
        }
        for i in range(n)
    ]


def test_choose_mode_policy() -> None:
    assert choose_mode(10) == MODE_CHUNKS
    assert choose_mode(6000) == MODE_CHUNKS
    assert choose_mode(6001) == MODE_FOUNTAIN
    assert choose_mode(10, mode="fountain") == MODE_FOUNTAIN
    assert choose_mode(10**6, mode="chunks") == MODE_CHUNKS
    assert choose_mode(2500, chunk_size=1000, auto_chunk_limit=2) == MODE_FOUNTAIN
    with pytest.raises(UsageError):
        choose_mode(10, mode="carrier-pigeon")


def test_prepare_is_deterministic_for_fixed_session_and_seed() -> None:
    data = _noise(9000)
    a = prepare_transfer(data, session_id="fixed", seed=7)
    b = prepare_transfer(data, session_id="fixed", seed=7)
    assert a.mode == MODE_FOUNTAIN
    assert a.frame_strings() == b.frame_strings()


def test_fountain_transfer_roundtrip_any_order() -> None:
    data = _noise(9000, seed=1)
    spec = TransferSpec(data_type="match")
    out = prepare_transfer(data, spec, session_id="match_1")
    assert out.mode == MODE_FOUNTAIN
    assert all(len(s) <= spec.max_packet_chars for s in out.frame_strings())
    assert all(json.loads(s)["type"] == "match_fountain_packet" for s in out.frame_strings())

    frames = out.frame_strings()
    random.Random(2).shuffle(frames)
    rx = TransferReceiver(spec, expected_type="match_fountain_packet")
    for s in frames:
        if rx.on_scan(s).complete:
            break
    assert rx.is_complete
    assert rx.result() == data


def test_chunk_transfer_roundtrip() -> None:
    data = json.dumps({"team": 254, "notes": "fast"}).encode()
    out = prepare_transfer(data)
    assert out.mode == MODE_CHUNKS
    assert len(out.frames) == 1
    assert out.summary()["original_size"] == len(data)

    rx = TransferReceiver()
    p = rx.on_scan(out.frame_strings()[0])
    assert p.event == EVENT_COMPLETE
    assert rx.result() == data


def test_compressed_records_transfer() -> None:
    recs = [{"team": i, "alliance": "red" if i % 2 else "blue", "score": i % 40} for i in range(800)]
    data = json.dumps(recs).encode()
    assert len(data) > 10_000
    out = prepare_transfer(data)
    assert out.compressed_size < len(data) // 4
    assert out.stats.codes_after < out.stats.codes_before

    rx = TransferReceiver()
    for s in out.frame_strings():
        rx.on_scan(s)
    assert rx.result() == data


def test_k13_scenario_odd_then_even() -> None:
    data = _records_payload(10_000)
    assert len(data) == 10_000
    assert isinstance(json.loads(data), list)

    spec = TransferSpec(mode="fountain", block_size=800, max_packets=40)
    out = prepare_transfer(data, spec, session_id="k13", seed=2024)
    assert out.frames[0].k == 13
    assert len(out.frames) == 40

    frames = out.frame_strings()
    rx = TransferReceiver(spec)
    for s in frames[1::2] + frames[0::2]:
        p = rx.on_scan(s)
        assert p.event != EVENT_REJECTED
        assert p.total == 13
        assert p.estimated_needed == 16
    assert rx.is_complete
    assert hashlib.sha256(rx.result()).digest() == hashlib.sha256(data).digest()


def test_records_fountain_roundtrip_shuffled_with_duplicates() -> None:
    data = json.dumps(_scouting_records(1500)).encode("utf-8")
    spec = TransferSpec(mode="fountain")
    assert container_mode(compressor_for(spec).encode(data)) == "records"

    out = prepare_transfer(data, spec, session_id="records_1")
    assert out.mode == MODE_FOUNTAIN
    assert out.compressed_size < len(data) // 4

    frames = out.frame_strings() * 2
    random.Random(7).shuffle(frames)
    rx = TransferReceiver(spec)
    for s in frames:
        assert rx.on_scan(s).event != EVENT_REJECTED
    assert rx.is_complete
    assert rx.fountain.progress().duplicates > 0
    assert rx.result() == data


def test_receiver_ignores_other_packet_types() -> None:
    out = prepare_transfer(_noise(9000), TransferSpec(data_type="pit"), session_id="pit_1")
    rx = TransferReceiver(expected_type="match_fountain_packet")
    p = rx.on_scan(out.frame_strings()[0])
    assert p.event == EVENT_IGNORED
    assert rx.ignored_type == 1
    assert rx.active is None


def test_receiver_rejects_garbage_scans() -> None:
    rx = TransferReceiver()
    assert rx.on_scan("https://example.org").event == EVENT_REJECTED
    assert rx.on_scan("[1, 2]").event == EVENT_REJECTED
    p = rx.on_scan('{"hello": "world"}')
    assert p.event == EVENT_REJECTED
    assert p.rejected == 3


def test_switching_frame_kind_resets_the_other_decoder() -> None:
    out = prepare_transfer(_noise(9000), session_id="f")
    rx = TransferReceiver()
    rx.on_scan(out.frame_strings()[0])
    assert rx.active is rx.fountain
    rx.on_scan(Chunk.build("c", 0, 2, b"ab").to_json())
    assert rx.active is rx.chunks
    assert rx.fountain.progress().state == STATE_IDLE


def test_bad_fountain_frame_keeps_live_chunk_session() -> None:
    data = _noise(2500, seed=5)
    out = prepare_transfer(data, TransferSpec(mode="chunks", chunk_size=1000), session_id="chunks_1")
    chunks = out.frame_strings()
    assert len(chunks) == 3

    rx = TransferReceiver()
    rx.on_scan(chunks[0])
    rx.on_scan(chunks[1])

    wire = prepare_transfer(_noise(9000), session_id="f").frames[0].to_wire()
    raw = bytearray(base64.b64decode(wire["data"]))
    raw[0] ^= 0x01
    wire["data"] = base64.b64encode(bytes(raw)).decode("ascii")

    p = rx.on_scan(json.dumps(wire))
    assert p.event == EVENT_REJECTED
    assert rx.active is rx.chunks
    assert rx.chunks.progress().solved == 2

    assert rx.on_scan(chunks[2]).complete
    assert rx.result() == data


def test_bad_chunk_keeps_live_fountain_session() -> None:
    out = prepare_transfer(_noise(9000), session_id="f")
    rx = TransferReceiver()
    rx.on_scan(out.frame_strings()[0])
    before = rx.fountain.progress()

    bad = Chunk.build("c", 0, 2, b"ab").to_wire()
    bad["checksum"] = "0"
    p = rx.on_scan(json.dumps(bad))
    assert p.event == EVENT_REJECTED
    assert rx.active is rx.fountain
    after = rx.fountain.progress()
    assert (after.state, after.received, after.solved) == (before.state, before.received, before.solved)
    assert rx.chunks.progress().state == STATE_IDLE


def test_carousel_that_never_peels_is_refused(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transfer_mod, "_decodes", lambda packets: False)
    with pytest.raises(UsageError, match="do not decode"):
        prepare_transfer(_noise(9000), session_id="stuck")


def test_result_before_completion_is_usage_error() -> None:
    rx = TransferReceiver()
    with pytest.raises(UsageError):
        rx.result()


def test_undecodable_payload_raises_and_resets() -> None:
    rx = TransferReceiver()
    assert rx.on_scan(Chunk.build("junk", 0, 1, b"not a container").to_json()).complete
    with pytest.raises(DecodeError):
        rx.result()
    assert rx.active is None
    assert not rx.is_complete


def test_simulate_lossy_fountain() -> None:
    data = _noise(9000, seed=4)
    res = simulate_transfer(data, loss_rate=0.2, corrupt_rate=0.2, seed=3)
    assert res.ok, res.to_dict()
    assert res.mode == MODE_FOUNTAIN
    assert res.dropped > 0
    assert res.corrupted > 0
    assert res.rejected > 0


def test_simulate_chunks() -> None:
    data = b'{"a": 1}'
    res = simulate_transfer(data, loss_rate=0.5, seed=1)
    assert res.ok, res.to_dict()
    assert res.mode == MODE_CHUNKS
    assert res.frames == 1
