"""
Path-based file classification.

The classifier is a pure function of a relative path: it never touches the
filesystem. Rules are checked in a fixed priority order so a file that
matches several rule sets (e.g. ``tests/fixtures/config.json``) always gets
the same kind:

    generated > test > doc > data > tooling > config > source > other
"""

import re
from pathlib import PurePosixPath

from cairn.core.repo.models import FileKind

GENERATED_DIRS = {"dist", "build", "out", ".next", "generated", "__generated__"}
GENERATED_PATTERNS = [
    re.compile(r"\.min\.[a-z0-9]+$"),
    re.compile(r"\.generated\.[a-z0-9]+$"),
    re.compile(r"_pb2(_grpc)?\.py$"),
    re.compile(r"\.lock$"),
    re.compile(r"(^|/)package-lock\.json$"),
    re.compile(r"\.map$"),
]

TEST_DIRS = {"tests", "test", "__tests__", "spec"}
TEST_PATTERNS = [
    re.compile(r"(^|/)test_[^/]+\.py$"),
    re.compile(r"_test\.[a-z0-9]+$"),
    re.compile(r"\.test\.[a-z0-9]+$"),
    re.compile(r"\.spec\.[a-z0-9]+$"),
    re.compile(r"(^|/)conftest\.py$"),
]

DOC_DIRS = {"docs", "doc"}
DOC_EXTENSIONS = {".md", ".mdx", ".rst", ".txt", ".adoc"}
DOC_NAMES = re.compile(r"^(readme|changelog|license|contributing|authors)(\.|$)", re.IGNORECASE)

DATA_DIRS = {"migrations", "fixtures", "seeds"}
DATA_EXTENSIONS = {".sql", ".csv", ".tsv", ".parquet", ".prisma", ".db", ".sqlite"}

TOOLING_DIRS = {".github", "scripts", ".circleci", ".husky"}
TOOLING_NAMES = re.compile(
    r"^(makefile|justfile|dockerfile.*|procfile|\.pre-commit-config\.yaml)$", re.IGNORECASE
)
TOOLING_EXTENSIONS = {".sh", ".bash", ".ps1"}

CONFIG_EXTENSIONS = {".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".properties"}
CONFIG_PATTERNS = [
    re.compile(r"(^|/)\.env(\.[^/]*)?$"),
    re.compile(r"\.config\.[a-z0-9]+$"),
    re.compile(r"(^|/)\.[a-z]+rc$"),
    re.compile(r"(^|/)(pyproject\.toml|setup\.cfg|tsconfig[^/]*\.json)$"),
]

SOURCE_EXTENSIONS = {
    ".py", ".pyi", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".go", ".rs", ".java", ".kt", ".kts", ".rb", ".c", ".h", ".cc",
    ".cpp", ".hpp", ".cs", ".swift", ".php", ".scala", ".ex", ".exs",
    ".vue", ".svelte", ".lua", ".dart",
}

ENTRY_POINT_STEMS = {"main", "index", "app", "server", "cli", "__main__"}


def classify(path: str) -> FileKind:
    """
    Assign a FileKind to a repository-relative path.

    Args:
        path: POSIX path relative to the scan root

    Returns:
        The kind of the first matching rule set, FileKind.OTHER if none match
    """
    pure = PurePosixPath(path)
    name = pure.name
    lower = path.lower()
    dirs = {part.lower() for part in pure.parts[:-1]}
    suffix = pure.suffix.lower()

    if dirs & GENERATED_DIRS or any(p.search(lower) for p in GENERATED_PATTERNS):
        return FileKind.GENERATED
    if dirs & TEST_DIRS or any(p.search(lower) for p in TEST_PATTERNS):
        return FileKind.TEST
    if dirs & DOC_DIRS or suffix in DOC_EXTENSIONS or DOC_NAMES.match(name):
        return FileKind.DOC
    if dirs & DATA_DIRS or suffix in DATA_EXTENSIONS:
        return FileKind.DATA
    if dirs & TOOLING_DIRS or suffix in TOOLING_EXTENSIONS or TOOLING_NAMES.match(name):
        return FileKind.TOOLING
    if suffix in CONFIG_EXTENSIONS or any(p.search(lower) for p in CONFIG_PATTERNS):
        return FileKind.CONFIG
    if suffix in SOURCE_EXTENSIONS:
        return FileKind.SOURCE
    return FileKind.OTHER


def is_entry_point(path: str) -> bool:
    """Check whether a path looks like a program entry point."""
    pure = PurePosixPath(path)
    if path.startswith("cmd/"):
        return True
    return pure.suffix.lower() in SOURCE_EXTENSIONS and pure.stem.lower() in ENTRY_POINT_STEMS


class FileClassifier:
    """Callable wrapper around :func:`classify` and :func:`is_entry_point`."""

    def classify(self, path: str) -> FileKind:
        return classify(path)

    def is_entry_point(self, path: str) -> bool:
        return is_entry_point(path)
