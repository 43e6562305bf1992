from __future__ import annotations

from pathlib import Path

from matchtext.dedup_mover import make_unique_path, move_duplicates, relative_to_root
from matchtext.scanner import collect_files, is_under_path


def test_make_unique_path(tmp_path) -> None:
    target = tmp_path / "report.txt"
    assert make_unique_path(target) == target
    target.write_text("x", encoding="utf-8")
    assert make_unique_path(target) == tmp_path / "report_1.txt"
    (tmp_path / "report_1.txt").write_text("x", encoding="utf-8")
    assert make_unique_path(target) == tmp_path / "report_2.txt"


def test_relative_to_root(tmp_path) -> None:
    root = tmp_path / "corpus"
    assert relative_to_root(root / "a" / "b.txt", root) == Path("a/b.txt")
    assert relative_to_root(tmp_path / "other" / "c.txt", root) == Path("c.txt")


def test_move_duplicates_mirrors_layout_and_avoids_collisions(tmp_path) -> None:
    root = tmp_path / "corpus"
    (root / "sub").mkdir(parents=True)
    first = root / "sub" / "notes.txt"
    first.write_text("one", encoding="utf-8")
    dup_dir = root / "Duplicates"
    (dup_dir / "sub").mkdir(parents=True)
    (dup_dir / "sub" / "notes.txt").write_text("already here", encoding="utf-8")

    report = move_duplicates([first], root, dup_dir)

    assert report.ok
    assert report.moved == 1
    assert not first.exists()
    assert (dup_dir / "sub" / "notes_1.txt").read_text(encoding="utf-8") == "one"


def test_move_duplicates_counts_missing_sources(tmp_path) -> None:
    report = move_duplicates([tmp_path / "gone.txt"], tmp_path, tmp_path / "Duplicates")
    assert report.failed == 1
    assert not report.ok


def test_collect_files_filters_and_prunes(tmp_path) -> None:
    (tmp_path / "b").mkdir()
    (tmp_path / "Duplicates").mkdir()
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "b" / "c.md").write_text("c", encoding="utf-8")
    (tmp_path / "b" / "image.png").write_bytes(b"\x89PNG")
    (tmp_path / "Duplicates" / "old.txt").write_text("old", encoding="utf-8")

    everything = collect_files(tmp_path)
    assert [p.relative_to(tmp_path).as_posix() for p in everything] == [
        "a.txt",
        "Duplicates/old.txt",
        "b/c.md",
    ]
    pruned = collect_files(tmp_path, skip_dir=tmp_path / "Duplicates")
    assert [p.name for p in pruned] == ["a.txt", "c.md"]
    shallow = collect_files(tmp_path, recursive=False)
    assert [p.name for p in shallow] == ["a.txt"]


def test_is_under_path(tmp_path) -> None:
    assert is_under_path(tmp_path / "x" / "y.txt", tmp_path / "x")
    assert not is_under_path(tmp_path / "xy" / "y.txt", tmp_path / "x")
