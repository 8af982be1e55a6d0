"""Tests for assistant/context_builder.py.

Run with: python -m pytest tests/test_context_builder.py -v
"""

import os
from pathlib import Path

import pytest

from assistant.config import AssistantConfig, ScanLimits
from assistant.context_builder import (
    ContextBuilder,
    ScanError,
    build_context_packet,
    select_files,
)


def _write(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    _write(tmp_path / "README.md", "  # Demo\n\nA demo project.\n\n")
    _write(tmp_path / "Cargo.toml", "[package]\nname = \"demo\"\n")
    _write(tmp_path / "src" / "main.rs", "fn main() {}\n")
    _write(tmp_path / "src" / "lib.rs", "pub fn f() {}\n")
    _write(tmp_path / "node_modules" / "left-pad" / "index.js", "module.exports = 1\n")
    _write(tmp_path / "target" / "debug" / "demo", "binary")
    _write(tmp_path / ".git" / "HEAD", "ref: refs/heads/main\n")
    return tmp_path


class TestSelectFiles:
    def test_lists_files_in_stable_name_order(self, project):
        selection = select_files(project, ScanLimits())
        rel = [c.rel_path for c in selection.files]
        assert rel == ["Cargo.toml", "README.md", "src/lib.rs", "src/main.rs"]
        assert selection.total_files == 4
        assert rel == [c.rel_path for c in select_files(project, ScanLimits()).files]

    def test_candidate_carries_absolute_path_and_size(self, project):
        selection = select_files(project, ScanLimits())
        main = next(c for c in selection.files if c.rel_path == "src/main.rs")
        assert main.path == project / "src" / "main.rs"
        assert main.size == len("fn main() {}\n")

    def test_excluded_directories_never_appear(self, project):
        selection = select_files(project, ScanLimits())
        for candidate in selection.files:
            parts = candidate.rel_path.split("/")
            assert not any(p in {"node_modules", "target"} or p.startswith(".") for p in parts)

    def test_excluded_directory_is_not_listed(self, project, monkeypatch):
        visited = []
        real_scandir = os.scandir

        def spying_scandir(path):
            visited.append(Path(path).name)
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", spying_scandir)
        select_files(project, ScanLimits())
        assert "node_modules" not in visited
        assert "target" not in visited
        assert ".git" not in visited

    def test_zero_max_files_still_counts_total(self, project):
        selection = select_files(project, ScanLimits(max_files=0))
        assert selection.files == []
        assert selection.total_files == 4

    def test_max_files_caps_candidates(self, project):
        selection = select_files(project, ScanLimits(max_files=2))
        assert [c.rel_path for c in selection.files] == ["Cargo.toml", "README.md"]
        assert selection.total_files == 4

    def test_oversized_file_is_counted_but_not_listed(self, tmp_path):
        _write(tmp_path / "small.txt", "a" * 10)
        _write(tmp_path / "big.txt", "b" * 11)
        selection = select_files(tmp_path, ScanLimits(max_file_bytes=10))
        assert [c.rel_path for c in selection.files] == ["small.txt"]
        assert selection.total_files == 2

    def test_depth_limit(self, tmp_path):
        _write(tmp_path / "top.txt")
        _write(tmp_path / "a" / "one.txt")
        _write(tmp_path / "a" / "b" / "two.txt")
        _write(tmp_path / "a" / "b" / "c" / "three.txt")

        rel = [c.rel_path for c in select_files(tmp_path, ScanLimits(max_depth=2)).files]
        assert rel == ["a/one.txt", "top.txt"]
        assert select_files(tmp_path, ScanLimits(max_depth=0)).files == []

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlinks_are_not_followed(self, tmp_path):
        outside = tmp_path / "outside"
        _write(outside / "secret.txt")
        root = tmp_path / "root"
        _write(root / "real.txt")
        os.symlink(outside, root / "linked_dir")
        os.symlink(outside / "secret.txt", root / "linked_file.txt")
        os.symlink(root, root / "loop")

        selection = select_files(root, ScanLimits())
        assert [c.rel_path for c in selection.files] == ["real.txt"]
        assert selection.total_files == 1

    def test_hidden_files_are_skipped(self, tmp_path):
        _write(tmp_path / ".env", "SECRET=1")
        _write(tmp_path / "visible.txt")
        selection = select_files(tmp_path, ScanLimits())
        assert [c.rel_path for c in selection.files] == ["visible.txt"]

    def test_missing_root_raises_scan_error(self, tmp_path):
        with pytest.raises(ScanError):
            select_files(tmp_path / "missing", ScanLimits())

    def test_unreadable_subdirectory_is_skipped(self, tmp_path, monkeypatch):
        _write(tmp_path / "ok.txt")
        _write(tmp_path / "locked" / "hidden.txt")
        real_scandir = os.scandir

        def failing_scandir(path):
            if Path(path).name == "locked":
                raise PermissionError("denied")
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", failing_scandir)
        selection = select_files(tmp_path, ScanLimits())
        assert [c.rel_path for c in selection.files] == ["ok.txt"]


class TestContextBuilder:
    def test_packet_layout(self, project):
        packet = ContextBuilder(project, ScanLimits()).build()
        lines = packet.splitlines()
        assert lines[0] == f"Current working directory: {project}"
        start = lines.index("Project structure:")
        assert lines[start + 1:start + 5] == [
            "- Cargo.toml",
            "- README.md",
            "- src/lib.rs",
            "- src/main.rs",
        ]
        assert "Important files:" in lines
        assert "(Showing" not in packet

    def test_important_files_are_inlined_trimmed(self, project):
        packet = ContextBuilder(project, ScanLimits()).build()
        assert "### README.md\n```md\n# Demo\n\nA demo project.\n```" in packet
        assert "### Cargo.toml\n```toml\n[package]\nname = \"demo\"\n```" in packet
        assert "fn main()" not in packet

    def test_omitted_files_note(self, project):
        packet = ContextBuilder(project, ScanLimits(max_files=1)).build()
        assert packet.endswith("(Showing 1 of 4 total files)")

    def test_important_file_over_limit_is_not_inlined(self, tmp_path):
        _write(tmp_path / "README.md", "r" * 50)
        packet = ContextBuilder(tmp_path, ScanLimits(max_file_bytes=20)).build()
        assert "- README.md" not in packet
        assert "Important files:" not in packet
        assert packet.endswith("(Showing 0 of 1 total files)")

    def test_vanished_important_file_is_skipped(self, project):
        builder = ContextBuilder(project, ScanLimits())
        selection = select_files(project, ScanLimits())
        (project / "README.md").unlink()
        entries = builder.read_important_files(selection.files)
        assert [e.rel_path for e in entries] == ["Cargo.toml"]

    def test_unreadable_root_yields_header_only(self, tmp_path):
        missing = tmp_path / "gone"
        packet = ContextBuilder(missing, ScanLimits()).build()
        assert packet == f"Current working directory: {missing}\n\nProject structure:"


class TestBuildContextPacket:
    def test_disabled_context_touches_nothing(self, tmp_path, monkeypatch):
        def boom(*args, **kwargs):
            raise AssertionError("filesystem accessed")

        monkeypatch.setattr(os, "scandir", boom)
        monkeypatch.setattr(Path, "cwd", classmethod(lambda cls: boom()))
        config = AssistantConfig(include_context=False)
        assert build_context_packet(config) == ""
        assert build_context_packet(config, tmp_path / "missing") == ""

    def test_uses_working_directory(self, project, monkeypatch):
        monkeypatch.chdir(project)
        packet = build_context_packet(AssistantConfig())
        assert packet.startswith(f"Current working directory: {Path.cwd()}")
        assert "- src/main.rs" in packet

    def test_config_limits_apply(self, project):
        config = AssistantConfig(max_context_files=2, max_file_size=10_000)
        packet = build_context_packet(config, project)
        assert "(Showing 2 of 4 total files)" in packet

    def test_unresolvable_working_directory_raises(self, monkeypatch):
        def gone(cls):
            raise FileNotFoundError("cwd removed")

        monkeypatch.setattr(Path, "cwd", classmethod(gone))
        with pytest.raises(OSError):
            build_context_packet(AssistantConfig())
