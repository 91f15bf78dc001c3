from __future__ import annotations

import json
from pathlib import Path

import pytest

from qrxfer.layers.symbol_dict import SymbolDictionary
from qrxfer.transfer_spec import SPEC_ID_V1, TransferSpec, TransferSpecError, load_transfer_spec


def test_spec_inline_minimal() -> None:
    spec = load_transfer_spec(json.dumps({"spec": SPEC_ID_V1}))
    assert spec == TransferSpec()
    assert spec.packet_type == "data_fountain_packet"
    assert spec.max_packets is None


def test_spec_fields_and_dictionary() -> None:
    obj = {
        "spec": SPEC_ID_V1,
        "name": "scouting",
        "data_type": "match",
        "mode": "FOUNTAIN",
        "codec": "zstd",
        "block_size": 400,
        "max_packets": 60,
        "cycle_ms": 1000,
        "dictionary": {"alliance": ["red", "blue"]},
    }
    spec = load_transfer_spec(json.dumps(obj))
    assert spec.mode == "fountain"
    assert spec.codec == "zstd"
    assert (spec.block_size, spec.max_packets, spec.cycle_ms) == (400, 60, 1000)
    assert spec.packet_type == "match_fountain_packet"
    assert spec.dictionary.lookup("alliance") == ("red", "blue")


def test_spec_to_json_loads_back() -> None:
    d = SymbolDictionary.from_mapping({"alliance": ["red", "blue"]})
    spec = TransferSpec(name="x", data_type="pit", dictionary=d, chunk_size=900, max_packets=90)
    assert load_transfer_spec(json.dumps(spec.to_json())) == spec


@pytest.mark.parametrize(
    "obj",
    [
        {"spec": SPEC_ID_V1, "wat": 1},
        {"spec": "qrxfer.transfer.v0"},
        {},
        {"spec": SPEC_ID_V1, "mode": "carrier-pigeon"},
        {"spec": SPEC_ID_V1, "codec": "lzma"},
        {"spec": SPEC_ID_V1, "block_size": 0},
        {"spec": SPEC_ID_V1, "block_size": True},
        {"spec": SPEC_ID_V1, "degree_delta": 1.5},
        {"spec": SPEC_ID_V1, "name": ""},
        {"spec": SPEC_ID_V1, "dictionary": {"alliance": "red"}},
    ],
)
def test_spec_rejects_bad_values(obj: dict) -> None:
    with pytest.raises(TransferSpecError):
        load_transfer_spec(json.dumps(obj))


@pytest.mark.parametrize("arg", ["", "[1]", "{nope", "@/definitely/not/here.json"])
def test_spec_rejects_bad_arguments(arg: str) -> None:
    with pytest.raises(TransferSpecError):
        load_transfer_spec(arg)


def test_spec_from_file(tmp_path: Path) -> None:
    p = tmp_path / "t.json"
    p.write_text(json.dumps({"spec": SPEC_ID_V1, "mode": "chunks", "chunk_size": 1500}), encoding="utf-8")
    spec = load_transfer_spec("@" + str(p))
    assert spec.mode == "chunks"
    assert spec.chunk_size == 1500


def test_overrides_skip_none_and_validate() -> None:
    spec = TransferSpec()
    assert spec.with_overrides(mode=None, codec=None) is spec
    assert spec.with_overrides(block_size=300).block_size == 300
    with pytest.raises(TransferSpecError):
        spec.with_overrides(mode="nope")
    with pytest.raises(TransferSpecError):
        spec.with_overrides(block_size=0)


def test_cycle_ms_is_free_form() -> None:
    spec = load_transfer_spec(json.dumps({"spec": SPEC_ID_V1, "cycle_ms": 750}))
    assert spec.cycle_ms == 750
    with pytest.raises(TransferSpecError):
        load_transfer_spec(json.dumps({"spec": SPEC_ID_V1, "cycle_ms": 0}))
