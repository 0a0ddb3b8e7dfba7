"""Tests for the command-line entry point."""
import json

import pytest

from snipbook.main import build_parser, main
from tests.conftest import RUST_MAIN


@pytest.fixture
def run(test_config, temp_data_dir, monkeypatch, capsys):
    """Run one CLI command against the temporary data directory."""
    monkeypatch.setattr(test_config, "log_level", "INFO")

    def _run(*argv):
        code = main(["--data-dir", str(temp_data_dir), *argv])
        out, err = capsys.readouterr()
        return code, out, err

    return _run


@pytest.fixture
def seeded(run, temp_data_dir):
    """Work > Rust with one snippet read from a file."""
    source = temp_data_dir / "main.rs"
    source.write_text(RUST_MAIN, encoding="utf-8")
    run("new-notebook", "Work")
    run("new-notebook", "Rust", "--parent", "Work")
    code, out, _ = run(
        "new-snippet", "hello", "--notebook", "Rust", "--language", "rust",
        "--file", str(source), "--tag", "cli",
    )
    assert code == 0
    return out.strip()


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_empty_list(run):
    code, out, _ = run("list")
    assert code == 0
    assert "No notebooks yet" in out


def test_list_tree(run, seeded):
    code, out, _ = run("list")
    assert code == 0
    assert out.splitlines() == ["Work/ (0)", "  Rust/ (1)", "    - hello [Rust]"]


def test_show_prints_content(run, seeded):
    code, out, _ = run("show", "hello")
    assert code == 0
    assert "Work > Rust" in out
    assert "#cli" in out
    assert 'println!("hello");' in out


def test_search(run, seeded):
    code, out, _ = run("search", "fn main")
    assert code == 0
    assert "[CONTENT_MATCH] hello: Line 3: fn main() {  (Work > Rust)" in out


def test_tag_and_tags(run, seeded):
    code, out, _ = run("tag", "hello", "#rust")
    assert code == 0
    assert out.strip() == "#cli #rust"
    _, out, _ = run("tags")
    assert out.splitlines() == ["#cli (1)", "#rust (1)"]


def test_export_import_round_trip(run, seeded, temp_data_dir):
    bundle_path = temp_data_dir / "bundle.json"
    code, out, _ = run("export", str(bundle_path))
    assert code == 0
    assert "Exported 2 notebooks and 1 snippets" in out
    assert len(json.loads(bundle_path.read_text(encoding="utf-8"))["snippets"]) == 1

    code, out, _ = run("import", str(bundle_path))
    assert code == 0
    assert out.startswith("Skip Existing: 0 notebook(s), 0 snippet(s) imported")


def test_backup_and_restore(run, seeded, temp_data_dir):
    code, out, _ = run("backup", "--label", "cli test")
    assert code == 0
    path = out.strip().split("Backup created: ")[1]
    assert path.endswith("-cli-test.json")

    _, out, _ = run("backups")
    assert "notebooks=2 snippets=1 roots=1" in out

    code, out, _ = run("restore", path)
    assert code == 0
    assert out.startswith("Overwrite All:")


def test_unknown_snippet_is_an_error(run):
    code, out, err = run("show", "missing")
    assert code == 1
    assert "Error: No snippet matches 'missing'" in err


def test_blank_notebook_name_is_an_error(run):
    code, _, err = run("new-notebook", "  ")
    assert code == 1
    assert "Error:" in err


def test_missing_import_file(run, temp_data_dir):
    code, _, err = run("import", str(temp_data_dir / "nope.json"))
    assert code == 1
    assert "Error:" in err
