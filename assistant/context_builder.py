"""
Context builder for the assistant CLI.

This module collects a bounded description of the current working
directory to prepend to the model's system instructions.  It walks the
directory tree under fixed limits (depth, count, per-file size, excluded
names), lists the selected files, and inlines the contents of a small
allow-list of well-known project files (READMEs and manifests).

The walk never follows symbolic links and prunes excluded directories
before descending into them.  Entries that cannot be read are skipped.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import tiktoken

from .config import AssistantConfig, ScanLimits

logger = logging.getLogger(__name__)

IMPORTANT_FILES = frozenset({
    "README",
    "README.md",
    "README.rst",
    "README.txt",
    "Cargo.toml",
    "package.json",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "requirements.txt",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "Gemfile",
    "composer.json",
    "CMakeLists.txt",
    "Makefile",
})


class ScanError(OSError):
    """The scan root itself could not be read."""


@dataclass(frozen=True)
class CandidateFile:
    """A regular file that passed every scan filter."""

    path: Path
    size: int
    rel_path: str


@dataclass
class FileSelection:
    """Result of one directory walk.

    `total_files` counts every eligible regular file seen, including those
    left out by the size filter or the `max_files` cap.
    """

    files: List[CandidateFile] = field(default_factory=list)
    total_files: int = 0


def select_files(root: Path, limits: ScanLimits) -> FileSelection:
    """Walk `root` depth-first in name order and return the candidate files.

    Raises
    ------
    ScanError
        If the root directory cannot be listed.
    """
    selection = FileSelection()

    def traverse(current_dir: Path, depth: int) -> None:
        # Children of `current_dir` sit at depth + 1.
        if depth + 1 > limits.max_depth:
            return
        try:
            with os.scandir(current_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            if depth == 0:
                raise ScanError(f"Cannot read directory {current_dir}: {exc}") from exc
            logger.debug("Skipping unreadable directory %s: %s", current_dir, exc)
            return

        for entry in entries:
            if limits.is_excluded(entry.name):
                continue
            try:
                if entry.is_symlink():
                    continue
                if entry.is_dir(follow_symlinks=False):
                    traverse(Path(entry.path), depth + 1)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                size = entry.stat(follow_symlinks=False).st_size
            except OSError as exc:
                logger.debug("Skipping unreadable entry %s: %s", entry.path, exc)
                continue

            selection.total_files += 1
            if size > limits.max_file_bytes:
                continue
            if len(selection.files) >= limits.max_files:
                continue
            path = Path(entry.path)
            selection.files.append(
                CandidateFile(path=path, size=size, rel_path=path.relative_to(root).as_posix())
            )

    traverse(root, 0)
    logger.debug(
        "Selected %d of %d files under %s", len(selection.files), selection.total_files, root
    )
    return selection


class ContextBuilder:
    """Renders the context packet for a working directory."""

    def __init__(self, base_dir: Path, limits: ScanLimits) -> None:
        self.base_dir = base_dir
        self.limits = limits

    @dataclass
    class FileEntry:
        """Container for an inlined file."""
        rel_path: str
        content: str
        language: str

    def _detect_language(self, rel_path: str) -> str:
        """Infer a language identifier for markdown fences."""
        by_name = {"Makefile": "make", "CMakeLists.txt": "cmake", "Gemfile": "ruby"}
        name = Path(rel_path).name
        if name in by_name:
            return by_name[name]
        ext = Path(rel_path).suffix.lower().lstrip(".")
        mapping = {
            "py": "py",
            "json": "json",
            "md": "md",
            "rst": "rst",
            "toml": "toml",
            "cfg": "ini",
            "xml": "xml",
            "gradle": "groovy",
            "mod": "go",
        }
        return mapping.get(ext, "")

    def read_important_files(self, files: List[CandidateFile]) -> List["ContextBuilder.FileEntry"]:
        """Read the allow-listed files among `files`, in order.

        A file whose content is larger than `max_file_bytes` when read, or
        which cannot be read at all, is left out.
        """
        entries: List[ContextBuilder.FileEntry] = []
        for candidate in files:
            if candidate.path.name not in IMPORTANT_FILES:
                continue
            try:
                with candidate.path.open("rb") as f:
                    raw = f.read(self.limits.max_file_bytes + 1)
            except OSError as exc:
                logger.debug("Skipping unreadable file %s: %s", candidate.path, exc)
                continue
            if len(raw) > self.limits.max_file_bytes:
                continue
            content = raw.decode("utf-8", errors="replace").strip()
            entries.append(
                ContextBuilder.FileEntry(candidate.rel_path, content, self._detect_language(candidate.rel_path))
            )
        return entries

    def build(self) -> str:
        """Return the context packet for `base_dir`."""
        lines: List[str] = [f"Current working directory: {self.base_dir}", ""]
        try:
            selection = select_files(self.base_dir, self.limits)
        except ScanError as exc:
            logger.warning("Project context unavailable: %s", exc)
            selection = FileSelection()

        lines.append("Project structure:")
        for candidate in selection.files:
            lines.append(f"- {candidate.rel_path}")

        important = self.read_important_files(selection.files)
        if important:
            lines.append("")
            lines.append("Important files:")
            for entry in important:
                lines.append("")
                lines.append(f"### {entry.rel_path}")
                lines.append(f"```{entry.language}")
                lines.append(entry.content)
                lines.append("```")

        if len(selection.files) < selection.total_files:
            lines.append("")
            lines.append(f"(Showing {len(selection.files)} of {selection.total_files} total files)")
        return "\n".join(lines)


def build_context_packet(config: AssistantConfig, base_dir: Optional[Path] = None) -> str:
    """Return the context packet for the working directory, or "" if disabled.

    When context is disabled no filesystem access happens at all.  Raises
    OSError only if the working directory cannot be determined.
    """
    if not config.include_context:
        return ""
    if base_dir is None:
        base_dir = Path.cwd()
    return ContextBuilder(base_dir, config.scan_limits()).build()


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in `text` with the cl100k_base encoding."""
    try:
        encoding = tiktoken.get_encoding("cl100k_base")
    except Exception as exc:
        # The encoding file is downloaded on first use; offline runs land here.
        logger.debug("Token encoding unavailable (%s); using a character heuristic.", exc)
        return max(1, len(text) // 4)
    return len(encoding.encode(text, disallowed_special=()))
