"""Tests for the persisted IndexedFileSet."""

from __future__ import annotations

import json

from localpilot.rag.state import IndexedFileSet


def test_missing_file_loads_empty(tmp_path):
    files = IndexedFileSet.load(tmp_path / "rag_state.json")
    assert len(files) == 0


def test_save_and_load_preserves_order(tmp_path):
    path = tmp_path / "rag_state.json"
    files = IndexedFileSet(path)
    for name in ["/p/b.py", "/p/a.py", "/p/c.py"]:
        files.add(name)
    files.add("/p/a.py")
    files.save()

    assert json.loads(path.read_text()) == {"indexedFiles": ["/p/b.py", "/p/a.py", "/p/c.py"]}
    reloaded = IndexedFileSet.load(path)
    assert list(reloaded) == ["/p/b.py", "/p/a.py", "/p/c.py"]
    assert "/p/a.py" in reloaded


def test_invalid_json_loads_empty(tmp_path):
    path = tmp_path / "rag_state.json"
    path.write_text("{not json", encoding="utf-8")

    assert len(IndexedFileSet.load(path)) == 0


def test_wrong_shape_loads_empty(tmp_path):
    path = tmp_path / "rag_state.json"
    path.write_text(json.dumps({"indexedFiles": "oops"}), encoding="utf-8")
    assert len(IndexedFileSet.load(path)) == 0

    path.write_text(json.dumps(["a", "b"]), encoding="utf-8")
    assert len(IndexedFileSet.load(path)) == 0


def test_save_creates_parent_and_leaves_no_temp_file(tmp_path):
    path = tmp_path / "nested" / "rag_state.json"
    files = IndexedFileSet(path, ["x"])
    files.save()

    assert path.exists()
    assert [p.name for p in path.parent.iterdir()] == ["rag_state.json"]


def test_clear(tmp_path):
    files = IndexedFileSet(tmp_path / "s.json", ["a", "b"])
    files.clear()
    assert len(files) == 0
