"""Host-side workspace accessor: file listing, exclusion rules and chip building."""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from typing import Iterable, Sequence

from ..chips.formatting import ChipRecord
from .bridge_types import FileEntry

__all__ = ["WorkspaceFiles", "compile_pattern", "language_for", "parse_gitignore"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 100_000
DEFAULT_MAX_FILES = 50

_LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "shellscript",
}


def language_for(path: str | Path) -> str:
    return _LANGUAGE_BY_SUFFIX.get(Path(path).suffix.lower(), "plaintext")


def parse_gitignore(content: str) -> list[str]:
    """Pattern lines of a ``.gitignore`` file, without blanks and comments."""

    patterns: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            patterns.append(stripped)
    return patterns


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a gitignore-style pattern into an unanchored regex.

    ``**`` crosses directories, ``*`` and ``?`` stay within one segment, a
    leading ``/`` anchors at the root and a trailing ``/`` matches everything
    below a directory.
    """

    anchored = pattern.startswith("/")
    body = pattern[1:] if anchored else pattern
    directory = body.endswith("/")
    parts: list[str] = []
    index = 0
    while index < len(body):
        if body.startswith("**", index):
            parts.append(".*")
            index += 2
            continue
        char = body[index]
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        index += 1
    regex = "".join(parts)
    if anchored:
        regex = "^" + regex
    if directory:
        regex += ".*"
    return re.compile(regex)


class WorkspaceFiles:
    """Reference implementation of the workspace accessor an editor host exposes."""

    def __init__(
        self,
        root: str | Path,
        exclude_patterns: Sequence[str] = (),
        *,
        use_gitignore: bool = True,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
    ) -> None:
        self._root = Path(root).resolve()
        self._max_file_size = max_file_size
        self._max_files = max_files
        patterns = list(exclude_patterns)
        if use_gitignore:
            patterns.extend(self._load_gitignore())
        self._patterns = tuple(patterns)
        self._compiled = tuple(compile_pattern(pattern) for pattern in patterns)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def relative(self, path: str | Path) -> str:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        try:
            relative = candidate.resolve().relative_to(self._root)
        except ValueError:
            relative = candidate
        return relative.as_posix()

    def is_excluded(self, path: str | Path, *, is_dir: bool = False) -> bool:
        relative = self.relative(path)
        targets = (relative, relative + "/") if is_dir else (relative,)
        return any(regex.search(target) for regex in self._compiled for target in targets)

    def list_files(self, folder: str | Path | None = None) -> list[Path]:
        """Recursively collect files under *folder*, honoring exclusions and caps."""

        start = self._root if folder is None else Path(folder)
        if not start.is_absolute():
            start = self._root / start
        files: list[Path] = []
        self._walk(start, files)
        return files

    def read_text(self, path: str | Path) -> str:
        target = Path(path)
        if not target.is_absolute():
            target = self._root / target
        return target.read_text(encoding="utf-8", errors="replace")

    def file_entries(self, folder: str | Path | None = None) -> list[FileEntry]:
        return [
            FileEntry(path=self.relative(path), label=path.name, language_id=language_for(path))
            for path in self.list_files(folder)
        ]

    def build_chip(self, path: str | Path, kind: str = "file") -> ChipRecord:
        """Read *path* and wrap it as a chip record the bridge can push."""

        relative = self.relative(path)
        text = self.read_text(path)
        if len(text) > self._max_file_size:
            LOGGER.info("%s is %d chars (limit %d)", relative, len(text), self._max_file_size)
        return ChipRecord(
            id=f"{kind}-{int(time.time() * 1000)}-{relative}",
            type=kind,
            label=Path(relative).name,
            text=text,
            language_id=language_for(relative),
            file_path=relative,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _walk(self, directory: Path, files: list[Path]) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as exc:
            LOGGER.debug("Cannot list %s: %s", directory, exc)
            return
        for entry in entries:
            if len(files) >= self._max_files:
                return
            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                if not self.is_excluded(path, is_dir=True):
                    self._walk(path, files)
            elif entry.is_file():
                if self.is_excluded(path):
                    continue
                try:
                    size = entry.stat().st_size
                except OSError:
                    continue
                if size <= self._max_file_size:
                    files.append(path)

    def _load_gitignore(self) -> Iterable[str]:
        gitignore = self._root / ".gitignore"
        try:
            return parse_gitignore(gitignore.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except OSError as exc:
            LOGGER.warning("Cannot read %s: %s", gitignore, exc)
            return []
