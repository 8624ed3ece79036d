import json

import pytest

from mapsearch.reporting import atomic_writer, write_json_object, write_jsonl


def test_write_json_object_replaces_atomically(tmp_path):
    path = tmp_path / "stats.json"

    write_json_object(str(path), {"ok": 1})
    assert json.loads(path.read_text(encoding="utf-8")) == {"ok": 1}

    write_json_object(str(path), {"ok": 2})
    assert json.loads(path.read_text(encoding="utf-8")) == {"ok": 2}

    leftovers = [p for p in tmp_path.iterdir() if p.name != "stats.json"]
    assert not leftovers


def test_write_jsonl(tmp_path):
    path = tmp_path / "requests.jsonl"
    write_jsonl(str(path), ({"i": i} for i in range(3)))
    assert path.read_text(encoding="utf-8") == '{"i": 0}\n{"i": 1}\n{"i": 2}\n'


def test_failed_write_keeps_previous_file(tmp_path):
    path = tmp_path / "stats.json"
    path.write_text("old", encoding="utf-8")

    with pytest.raises(RuntimeError):
        with atomic_writer(str(path)) as f:
            f.write("new")
            raise RuntimeError("interrupted")

    assert path.read_text(encoding="utf-8") == "old"
    assert [p.name for p in tmp_path.iterdir()] == ["stats.json"]
