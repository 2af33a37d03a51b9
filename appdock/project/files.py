"""File sets: ordered path -> content collections, merging and directory loading."""

import logging
import os
from dataclasses import dataclass, field

from appdock.errors import ValidationError

logger = logging.getLogger(__name__)

SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}
MAX_FILE_SIZE = 1024 * 1024


@dataclass(frozen=True)
class FileEntry:
    path: str
    content: str


def normalize_path(path: str) -> str:
    """Normalize to a relative POSIX path; reject absolute paths and '..' escapes."""
    norm = path.replace("\\", "/").strip()
    while norm.startswith("./"):
        norm = norm[2:]
    parts = [p for p in norm.split("/") if p not in ("", ".")]
    if not parts or norm.startswith("/") or ".." in parts:
        raise ValidationError(f"invalid file path '{path}'", location="files")
    return "/".join(parts)


@dataclass
class FileSet:
    """Ordered collection of files with unique paths.

    ``warnings`` carries non-fatal notes from whoever built the set
    (e.g. the code generator degrading an unknown field type).
    """

    entries: list[FileEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self):
        seen = set()
        for entry in self.entries:
            if entry.path in seen:
                raise ValidationError(f"duplicate file path '{entry.path}'", location="files")
            seen.add(entry.path)

    @classmethod
    def from_mapping(cls, files: dict) -> "FileSet":
        return cls([FileEntry(normalize_path(p), c) for p, c in files.items()])

    def add(self, path: str, content: str) -> None:
        path = normalize_path(path)
        if path in self:
            raise ValidationError(f"duplicate file path '{path}'", location="files")
        self.entries.append(FileEntry(path, content))

    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    def get(self, path: str, default=None):
        for entry in self.entries:
            if entry.path == path:
                return entry.content
        return default

    def as_dict(self) -> dict:
        return {e.path: e.content for e in self.entries}

    def __contains__(self, path) -> bool:
        return any(e.path == path for e in self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def merge_files(generated: FileSet, user: FileSet) -> FileSet:
    """User files first in their order, then generated files the user did not supply."""
    user_paths = set(user.paths())
    merged = list(user.entries)
    for entry in generated:
        if entry.path in user_paths:
            logger.info(f"Keeping user-supplied {entry.path} over generated version")
            continue
        merged.append(entry)
    return FileSet(merged, warnings=list(generated.warnings) + list(user.warnings))


def load_directory(root) -> FileSet:
    """Read a project directory into a FileSet.

    Skips VCS/dependency directories, oversized files and files that are
    not valid UTF-8 text.
    """
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Project directory not found: {root}")

    files = FileSet()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for name in sorted(filenames):
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            if os.path.getsize(full) > MAX_FILE_SIZE:
                files.warnings.append(f"skipped {rel}: larger than {MAX_FILE_SIZE} bytes")
                continue
            try:
                with open(full, encoding="utf-8") as f:
                    content = f.read()
            except UnicodeDecodeError:
                files.warnings.append(f"skipped {rel}: not a text file")
                continue
            files.add(rel, content)
    logger.debug(f"Loaded {len(files)} file(s) from {root}")
    return files


def write_directory(files: FileSet, root) -> list[str]:
    """Write every file of *files* under *root*; returns the written paths."""
    written = []
    for entry in files:
        target = os.path.join(root, *entry.path.split("/"))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(entry.content)
        written.append(target)
    return written
