from __future__ import annotations

import random
import re
from functools import reduce

import pytest

from qrxfer.engine.fountain import (
    FountainEncoder,
    RobustSoliton,
    default_max_packets,
    materialize_packets,
    new_session_id,
    packet_type_for,
)
from qrxfer.errors import UsageError


def _data(n: int, seed: int = 0) -> bytes:
    return random.Random(seed).randbytes(n)


def _xor(blocks: list[bytes]) -> bytes:
    return bytes(reduce(lambda a, b: a ^ b, col) for col in zip(*blocks))


def test_block_table_pads_last_block() -> None:
    enc = FountainEncoder(_data(1001), 200, session_id="s")
    assert enc.k == 6
    assert enc.total_bytes == 1001
    assert enc.block(5) == enc.data[1000:] + bytes(199)


def test_packet_is_xor_of_its_blocks() -> None:
    enc = FountainEncoder(_data(5000), 300, session_id="s", seed=42)
    for pid in range(50):
        p = enc.packet(pid)
        assert list(p.indices) == sorted(set(p.indices))
        assert all(0 <= i < enc.k for i in p.indices)
        assert p.data == _xor([enc.block(i) for i in p.indices])
        p.verify()


def test_packet_is_pure_function_of_seed_and_id() -> None:
    data = _data(3000)
    a = FountainEncoder(data, 200, session_id="s1", seed="seed")
    b = FountainEncoder(data, 200, session_id="s1", seed="seed")
    assert [a.packet(i) for i in range(20)] == [b.packet(i) for i in range(20)]
    assert a.packet(17) == a.packet(17)
    # the lazy stream is the same sequence
    stream = a.packets()
    assert [next(stream) for _ in range(5)] == [a.packet(i) for i in range(5)]


def test_seed_defaults_to_session_id() -> None:
    data = _data(3000)
    a = FountainEncoder(data, 200, session_id="same")
    b = FountainEncoder(data, 200, session_id="same", seed="same")
    assert a.packet(3).indices == b.packet(3).indices


def test_robust_soliton_is_a_distribution() -> None:
    for k in (1, 2, 13, 50, 400):
        dist = RobustSoliton(k)
        total = sum(dist.pmf(d) for d in range(1, k + 1))
        assert total == pytest.approx(1.0)
        assert dist.pmf(0) == 0.0
        assert dist.pmf(k + 1) == 0.0


def test_degree_one_is_common_enough_to_start_peeling() -> None:
    dist = RobustSoliton(50)
    rng = random.Random(1)
    degrees = [dist.sample(rng) for _ in range(4000)]
    assert all(1 <= d <= 50 for d in degrees)
    assert degrees.count(1) > 200
    assert degrees.count(2) > degrees.count(10)


def test_empty_payload_and_bad_block_size_are_usage_errors() -> None:
    with pytest.raises(UsageError):
        FountainEncoder(b"", 200)
    with pytest.raises(UsageError):
        FountainEncoder(b"abc", 0)


def test_materialize_skips_repeats_and_renumbers() -> None:
    enc = FountainEncoder(_data(4000), 200, session_id="s")
    pkts = materialize_packets(enc, 40)
    assert len(pkts) == 40
    assert [p.packet_id for p in pkts] == list(range(40))
    assert len({p.indices for p in pkts}) == 40
    assert all(len(p.to_json()) <= 1800 for p in pkts)


def test_materialize_default_cap() -> None:
    assert default_max_packets(1) == 30
    assert default_max_packets(13) == 39
    enc = FountainEncoder(_data(400), 200, session_id="s")
    # k=2 has only three distinct index sets
    assert len(materialize_packets(enc)) == 3


def test_materialize_drops_oversize_packets() -> None:
    enc = FountainEncoder(_data(6000), 1500, session_id="s")
    with pytest.raises(UsageError, match="block size"):
        materialize_packets(enc, 10, max_packet_chars=1800)
    assert materialize_packets(enc, 10, max_packet_chars=4000)


def test_session_id_format() -> None:
    sid = new_session_id("match")
    assert re.fullmatch(r"match_\d{13}_[0-9a-z]{9}", sid)
    assert new_session_id("match") != sid
    assert packet_type_for("match") == "match_fountain_packet"
