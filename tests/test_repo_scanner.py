"""Tests for RepoScanner."""

import errno
from pathlib import Path

import pytest

from cairn.core.repo.index import summarize
from cairn.core.repo.models import FileKind, ScanOptions
from cairn.core.repo.scanner import RepoScanner, ScanError


def _paths(result) -> list[str]:
    return [f.path for f in result.files]


def _write(root: Path, relative: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x\n")


class TestRepoScanner:
    """Tests for the bounded breadth-first walk."""

    def test_scans_accepted_files_in_walk_order(self, temp_repo) -> None:
        """Files come back breadth-first and sorted within each directory."""
        result = RepoScanner(ScanOptions(root_path=temp_repo)).scan()
        assert _paths(result) == [
            "README.md",
            "pyproject.toml",
            "docs/guide.md",
            "src/main.py",
            "src/utils.py",
            "tests/test_utils.py",
        ]
        assert not result.truncated
        assert result.unreadable == []

    def test_default_excludes_pruned(self, temp_repo) -> None:
        """Dependency, VCS, and build directories never appear."""
        paths = _paths(RepoScanner(ScanOptions(root_path=temp_repo)).scan())
        assert not any(p.startswith(("node_modules/", ".git/", "dist/")) for p in paths)

    def test_metadata(self, temp_repo) -> None:
        """Each file carries kind, depth, size, and entry point flag."""
        result = RepoScanner(ScanOptions(root_path=temp_repo)).scan()
        by_path = {f.path: f for f in result.files}
        main = by_path["src/main.py"]
        assert main.kind is FileKind.SOURCE
        assert main.is_entry_point
        assert main.depth == 1
        assert main.size_bytes == (temp_repo / "src/main.py").stat().st_size
        assert by_path["tests/test_utils.py"].kind is FileKind.TEST
        assert by_path["README.md"].depth == 0

    def test_max_depth_zero(self, temp_repo) -> None:
        """max_depth=0 only lists files directly under the root."""
        result = RepoScanner(ScanOptions(root_path=temp_repo, max_depth=0)).scan()
        assert _paths(result) == ["README.md", "pyproject.toml"]

    def test_max_files_truncates(self, temp_repo) -> None:
        """The walk stops once max_files entries are collected."""
        result = RepoScanner(ScanOptions(root_path=temp_repo, max_files=3)).scan()
        assert _paths(result) == ["README.md", "pyproject.toml", "docs/guide.md"]
        assert result.truncated

    def test_include_patterns(self, temp_repo) -> None:
        """Only files matching an include pattern are kept."""
        result = RepoScanner(ScanOptions(root_path=temp_repo, include_patterns=["*.py"])).scan()
        assert _paths(result) == ["src/main.py", "src/utils.py", "tests/test_utils.py"]

    def test_exclude_patterns(self, temp_repo) -> None:
        """Excluded directories are pruned with their contents."""
        result = RepoScanner(ScanOptions(root_path=temp_repo, exclude_patterns=["tests/"])).scan()
        assert "tests/test_utils.py" not in _paths(result)

    def test_gitignore_respected(self, temp_repo) -> None:
        """Root .gitignore rules exclude matching files."""
        (temp_repo / ".gitignore").write_text("*.md\n")
        paths = _paths(RepoScanner(ScanOptions(root_path=temp_repo)).scan())
        assert "README.md" not in paths
        assert "docs/guide.md" not in paths

    def test_gitignore_can_be_ignored(self, temp_repo) -> None:
        """respect_gitignore=False keeps gitignored files."""
        (temp_repo / ".gitignore").write_text("*.md\n")
        options = ScanOptions(root_path=temp_repo, respect_gitignore=False)
        assert "README.md" in _paths(RepoScanner(options).scan())

    def test_worker_pool_gives_same_result(self, temp_repo) -> None:
        """Parallel stat calls do not change the output order."""
        serial = RepoScanner(ScanOptions(root_path=temp_repo)).scan()
        parallel = RepoScanner(ScanOptions(root_path=temp_repo, workers=4)).scan()
        assert _paths(parallel) == _paths(serial)

    def test_missing_root(self, tmp_path) -> None:
        """A missing root raises ScanError."""
        with pytest.raises(ScanError, match="does not exist"):
            RepoScanner(ScanOptions(root_path=tmp_path / "nope")).scan()

    def test_file_root(self, tmp_path) -> None:
        """A file given as root raises ScanError."""
        path = tmp_path / "single.py"
        path.write_text("x\n")
        with pytest.raises(ScanError, match="not a directory"):
            RepoScanner(ScanOptions(root_path=path)).scan()

    def test_empty_root(self, tmp_path) -> None:
        """An empty directory scans to no files."""
        result = RepoScanner(ScanOptions(root_path=tmp_path)).scan()
        assert result.files == []
        assert not result.truncated


class TestUnreadablePaths:
    """Tests for paths that cannot be listed or stat'ed."""

    @pytest.fixture
    def failing_paths(self, monkeypatch):
        """Make stat fail for files named secret.py and iterdir fail for dirs named locked."""
        original_stat = Path.stat
        original_iterdir = Path.iterdir

        def stat(self, *args, **kwargs):
            if self.name == "secret.py":
                raise FileNotFoundError(errno.ENOENT, "removed during scan", str(self))
            return original_stat(self, *args, **kwargs)

        def iterdir(self):
            if self.name == "locked":
                raise PermissionError(errno.EACCES, "permission denied", str(self))
            return original_iterdir(self)

        monkeypatch.setattr(Path, "stat", stat)
        monkeypatch.setattr(Path, "iterdir", iterdir)

    def test_unreadable_skipped_not_fatal(self, tmp_path, failing_paths) -> None:
        """Unreadable files and directories are recorded and the scan carries on."""
        _write(tmp_path, "README.md")
        _write(tmp_path, "secret.py")
        _write(tmp_path, "locked/inner.py")
        _write(tmp_path, "src/app.py")
        options = ScanOptions(root_path=tmp_path)

        result = RepoScanner(options).scan()

        assert _paths(result) == ["README.md", "src/app.py"]
        assert result.unreadable == ["secret.py", "locked"]
        assert not result.truncated

        summary = summarize(result, options)
        assert summary.total_scanned == 4
        assert summary.unreadable_count == 2
        assert {"secret.py", "locked"} <= set(summary.omitted)
        assert summary.omitted_count >= 2

    @pytest.mark.parametrize(
        "max_files, files, unreadable",
        [
            (2, ["a.py", "b.py"], []),
            (3, ["a.py", "b.py"], ["locked"]),
        ],
    )
    def test_unreadable_counts_toward_max_files(
        self, tmp_path, failing_paths, max_files, files, unreadable
    ) -> None:
        """An unreadable directory never pushes the scan past max_files."""
        _write(tmp_path, "a.py")
        _write(tmp_path, "b.py")
        _write(tmp_path, "locked/hidden.py")
        for n in range(5):
            _write(tmp_path, f"more/f{n}.py")

        result = RepoScanner(ScanOptions(root_path=tmp_path, max_files=max_files)).scan()

        assert _paths(result) == files
        assert result.unreadable == unreadable
        assert len(result.files) + len(result.unreadable) <= max_files
        assert result.truncated
