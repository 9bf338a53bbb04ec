"""Tests for the workspace file accessor."""

from __future__ import annotations

from pathlib import Path

import pytest

from webaibridge.services.workspace import WorkspaceFiles, compile_pattern, language_for, parse_gitignore


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / ".gitignore").write_text("# build output\n*.log\n\nnode_modules/\n", encoding="utf-8")
    (tmp_path / "a.py").write_text("print('a')\n", encoding="utf-8")
    (tmp_path / "b.md").write_text("# B\n", encoding="utf-8")
    (tmp_path / "big.txt").write_text("x" * 500, encoding="utf-8")
    (tmp_path / "debug.log").write_text("noise\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("module.exports = 1\n", encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "c.ts").write_text("export const c = 1;\n", encoding="utf-8")
    return tmp_path


def test_parse_gitignore_skips_blanks_and_comments() -> None:
    assert parse_gitignore("# comment\n\n*.pyc\n  dist/  \n") == ["*.pyc", "dist/"]


@pytest.mark.parametrize(
    ("pattern", "path", "expected"),
    [
        ("*.log", "logs/app.log", True),
        ("*.log", "app.txt", False),
        ("src/*.ts", "src/deep/x.ts", False),
        ("src/**/x.ts", "src/deep/er/x.ts", True),
        ("/build", "build/out.js", True),
        ("/build", "src/build/out.js", False),
        ("file?.txt", "file1.txt", True),
        ("file?.txt", "file/.txt", False),
    ],
)
def test_compile_pattern(pattern: str, path: str, expected: bool) -> None:
    assert bool(compile_pattern(pattern).search(path)) is expected


def test_language_for_known_and_unknown_suffixes() -> None:
    assert language_for("component.TSX") == "typescriptreact"
    assert language_for("script.py") == "python"
    assert language_for("README") == "plaintext"


def test_list_files_honors_gitignore_and_size(workspace: Path) -> None:
    files = WorkspaceFiles(workspace, max_file_size=100)

    entries = files.file_entries()

    assert [entry.path for entry in entries] == [".gitignore", "a.py", "b.md", "src/c.ts"]
    assert entries[3].language_id == "typescript"
    assert entries[3].label == "c.ts"


def test_extra_exclusions_and_disabled_gitignore(workspace: Path) -> None:
    files = WorkspaceFiles(workspace, ["src/"], use_gitignore=False, max_file_size=1000)

    paths = [files.relative(path) for path in files.list_files()]

    assert "src/c.ts" not in paths
    assert "debug.log" in paths
    assert "node_modules/dep.js" in paths
    assert files.patterns == ("src/",)


def test_list_files_respects_cap_and_folder(workspace: Path) -> None:
    assert len(WorkspaceFiles(workspace, max_files=2).list_files()) == 2
    assert [p.name for p in WorkspaceFiles(workspace).list_files("src")] == ["c.ts"]


def test_is_excluded_for_directories(workspace: Path) -> None:
    files = WorkspaceFiles(workspace)

    assert files.is_excluded(workspace / "node_modules", is_dir=True)
    assert files.is_excluded("debug.log")
    assert not files.is_excluded("src", is_dir=True)


def test_build_chip_wraps_file_content(workspace: Path) -> None:
    chip = WorkspaceFiles(workspace).build_chip(workspace / "src" / "c.ts")

    assert chip.type == "file"
    assert chip.label == "c.ts"
    assert chip.file_path == "src/c.ts"
    assert chip.language_id == "typescript"
    assert chip.text == "export const c = 1;\n"
    assert chip.to_payload()["filePath"] == "src/c.ts"
