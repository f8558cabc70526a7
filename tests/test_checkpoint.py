"""Checkpoint file persistence."""

import json

import pytest

from transfer_monitor.checkpoint import Checkpoint


def test_missing_file_is_undetermined(tmp_path):
    cp = Checkpoint(tmp_path / "state.json")
    assert cp.load() == 0
    assert not cp.has_position


def test_advance_persists(tmp_path):
    path = tmp_path / "out" / "state.json"
    Checkpoint(path).advance(1234)
    assert json.loads(path.read_text()) == {"lastProcessedBlock": 1234}
    cp = Checkpoint(path)
    assert cp.load() == 1234
    assert cp.has_position


@pytest.mark.parametrize("content", ["{oops", "[]", '{"lastProcessedBlock": "abc"}', "{}"])
def test_corrupt_file_is_undetermined(tmp_path, content):
    path = tmp_path / "state.json"
    path.write_text(content)
    assert Checkpoint(path).load() == 0


def test_never_moves_backwards(tmp_path):
    cp = Checkpoint(tmp_path / "state.json")
    cp.advance(10)
    with pytest.raises(ValueError):
        cp.advance(9)
    assert Checkpoint(cp.path).load() == 10


def test_no_temp_file_left(tmp_path):
    cp = Checkpoint(tmp_path / "state.json")
    cp.advance(5)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]
