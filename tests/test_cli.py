from __future__ import annotations

import csv
import zipfile

import pytest
from pydantic import ValidationError

from matchtext import cli
from matchtext.core.similarity import SimilarityMode
from matchtext.schemas.options import CorpusOptions, parse_threshold


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda verbose=False: None)


def _corpus(root) -> None:
    root.mkdir()
    (root / "notes_v1.txt").write_text("budget planning meeting notes northern office", encoding="utf-8")
    (root / "notes_v2.txt").write_text("budget planning meeting notes northern office", encoding="utf-8")
    (root / "cake.md").write_text("lemon cake recipe with fresh berries", encoding="utf-8")
    (root / "photo.jpg").write_bytes(b"\xff\xd8\xff")


def test_parse_threshold() -> None:
    assert parse_threshold("0.95") == 0.95
    assert parse_threshold("1") == 1.0
    assert parse_threshold("1.5") is None
    assert parse_threshold("-0.1") is None
    assert parse_threshold("nan") is None
    assert parse_threshold("corpus") is None


def test_corpus_options_reject_out_of_range_threshold(tmp_path) -> None:
    with pytest.raises(ValidationError):
        CorpusOptions(root=tmp_path, dedup_threshold=1.5)
    with pytest.raises(ValidationError):
        CorpusOptions(root=tmp_path, threads=0)


def test_dedup_consumes_only_a_threshold(tmp_path) -> None:
    opts = cli.parse_mostsimilar_args([str(tmp_path), "--dedup", "0.9", "--hash"])
    assert opts.dedup is True
    assert opts.dedup_threshold == 0.9
    assert opts.mode is SimilarityMode.HASH

    opts = cli.parse_mostsimilar_args(["--dedup", str(tmp_path)])
    assert opts.dedup is True
    assert opts.dedup_threshold == 1.0
    assert opts.root == tmp_path

    opts = cli.parse_mostsimilar_args([str(tmp_path)])
    assert opts.dedup is False


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["dir", "--threads", "0"],
        ["dir", "--threads", "many"],
        ["dir", "--bogus"],
        ["dir", "--dedup", "1.5"],
    ],
)
def test_usage_errors_exit_with_one(argv) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.parse_mostsimilar_args(argv)
    assert exc.value.code == 1


def test_mostsimilar_writes_table_and_csv(tmp_path, monkeypatch, capsys) -> None:
    corpus = tmp_path / "corpus"
    _corpus(corpus)
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    monkeypatch.chdir(out_dir)

    assert cli.mostsimilar_main([str(corpus), "--threads", "2"]) == 0

    printed = capsys.readouterr().out
    assert "MostSimilar" in printed
    assert ".../notes_v2.txt" in printed

    with (out_dir / "corpus_mostsimilar.csv").open(encoding="utf-8", newline="") as fh:
        rows = list(csv.reader(fh))
    assert rows[0] == ["file", "most_similar", "score", "pair_id"]
    # notes_v2 outranks notes_v1, so it is the keeper on the left
    assert rows[1][:2] == [".../notes_v2.txt", ".../notes_v1.txt"]
    assert rows[1][2] == "1.00000000"
    assert len(rows) == 3


def test_mostsimilar_dedup_moves_older_version(tmp_path, monkeypatch) -> None:
    corpus = tmp_path / "corpus"
    _corpus(corpus)
    monkeypatch.chdir(tmp_path)

    assert cli.mostsimilar_main([str(corpus), "--dedup", "--threads", "1"]) == 0

    assert not (corpus / "notes_v1.txt").exists()
    assert (corpus / "Duplicates" / "notes_v1.txt").exists()
    assert (corpus / "notes_v2.txt").exists()

    # the duplicates area is not rescanned on the next run
    assert cli.mostsimilar_main([str(corpus), "--dedup", "--hash"]) == 0
    text = (tmp_path / "corpus_mostsimilar_hash.csv").read_text(encoding="utf-8")
    assert "Duplicates" not in text
    assert len(text.splitlines()) == 2


def test_mostsimilar_without_files_exits_with_two(tmp_path, monkeypatch) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    monkeypatch.chdir(tmp_path)
    assert cli.mostsimilar_main([str(empty)]) == 2
    assert cli.mostsimilar_main([str(tmp_path / "missing")]) == 2


def test_matchtext_lists_repository_by_similarity(tmp_path, capsys) -> None:
    corpus = tmp_path / "corpus"
    _corpus(corpus)
    sample = tmp_path / "sample.txt"
    sample.write_text("lemon cake recipe", encoding="utf-8")

    assert cli.matchtext_main([str(sample), str(corpus)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 3
    score, path = lines[0].split(" ", 1)
    assert path == str(corpus / "cake.md")
    assert 0.0 < float(score) <= 1.0
    assert len(score.split(".")[1]) == 8


def test_matchtext_empty_sample_exits_with_two(tmp_path) -> None:
    sample = tmp_path / "sample.txt"
    sample.write_text("the and of", encoding="utf-8")
    assert cli.matchtext_main([str(sample), str(tmp_path)]) == 2


def test_matchtext_corrupt_office_sample_is_read_as_raw_bytes(tmp_path, capsys) -> None:
    corpus = tmp_path / "corpus"
    _corpus(corpus)
    sample = tmp_path / "notes.docx"
    with zipfile.ZipFile(sample, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("word/document.xml", "".join(f"<w:t>budget line {i}</w:t>" for i in range(500)))
        compressed = archive.getinfo("word/document.xml").compress_size
    data = bytearray(sample.read_bytes())
    # damage the deflate stream of the only member, which starts the archive
    start = 30 + len("word/document.xml") + compressed // 4
    for offset in range(start, start + 20):
        data[offset] ^= 0xFF
    sample.write_bytes(bytes(data))

    assert cli.matchtext_main([str(sample), str(corpus)]) == 0
    assert len(capsys.readouterr().out.splitlines()) == 3


def test_metrics_server_disabled_without_port(monkeypatch) -> None:
    from matchtext.config import settings
    from matchtext.metrics import start_metrics_server

    monkeypatch.setattr(settings, "METRICS_PORT", 0)
    assert start_metrics_server() is False
