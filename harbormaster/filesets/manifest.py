"""
Content-addressed manifests of local file trees.

A manifest lists every regular file under a source directory with its size
and SHA-256 digest, sorted by path, plus a tree hash over all entries. The
last applied manifest is persisted inside the target volume as a sentinel
file and compared against a freshly built local manifest on the next run.
"""

import hashlib
import json
import logging
import os
import stat
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ErrorKind, HarbormasterError
from .patterns import ExcludeMatcher

logger = logging.getLogger(__name__)

SENTINEL_FILENAME = ".harbormaster-index.json"
MANIFEST_VERSION = "v1"

_CHUNK_SIZE = 1024 * 1024


class FileEntry(BaseModel):
    """One regular file: relative slash path, size in bytes, hex digest."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str
    size: int = 0
    sha256: str = ""


class FileManifest(BaseModel):
    """Sorted file list plus its aggregate tree hash."""
    model_config = ConfigDict(extra="ignore")

    version: str = MANIFEST_VERSION
    target_path: str = ""
    created_at: str = ""
    exclude: list[str] = Field(default_factory=list)
    uid: str | int = ""
    gid: str | int = ""
    files: list[FileEntry] = Field(default_factory=list)
    tree_hash: str = ""

    def is_empty(self) -> bool:
        return not self.files and not self.tree_hash

    def by_path(self) -> dict[str, FileEntry]:
        return {entry.path: entry for entry in self.files}

    def to_json(self) -> str:
        """Serialize to the sentinel JSON format."""
        return json.dumps(self.model_dump(), indent=2)

    @classmethod
    def from_json(cls, text: str | bytes | None) -> "FileManifest":
        """Parse sentinel JSON; blank input yields an empty manifest.

        Raises:
            HarbormasterError: invalid_input when the content is not a manifest
        """
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise HarbormasterError(
                    "filesets.parse_manifest", ErrorKind.INVALID_INPUT, "manifest is not UTF-8", cause=e
                ) from e
        if text is None or not text.strip():
            return cls()
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise HarbormasterError(
                "filesets.parse_manifest", ErrorKind.INVALID_INPUT, "malformed manifest", cause=e
            ) from e


def compute_tree_hash(entries: list[FileEntry]) -> str:
    """SHA-256 over ``path\\0size\\0sha256\\n`` for each entry in the given order."""
    digest = hashlib.sha256()
    for entry in entries:
        digest.update(f"{entry.path}\0{entry.size}\0{entry.sha256}\n".encode("utf-8"))
    return digest.hexdigest()


def hash_file(path: Path) -> str:
    """Stream a file through SHA-256."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def _walk_error(op: str):
    def _raise(e: OSError) -> None:
        raise HarbormasterError(op, ErrorKind.INTERNAL, f"walk failed at {e.filename}", cause=e) from e
    return _raise


def build_manifest(
    source_dir: Path | str,
    target_path: str,
    exclude: list[str] | None = None,
) -> FileManifest:
    """Walk ``source_dir`` and build its manifest.

    Excluded directories are pruned without being visited. Symlinks and
    non-regular files are skipped.

    Args:
        source_dir: Local directory to index
        target_path: Path inside the volume the tree is synced to
        exclude: Glob patterns relative to ``source_dir``

    Returns:
        FileManifest with entries sorted by path

    Raises:
        HarbormasterError: not_found if the source is missing, invalid_input
            for bad globs, internal for unreadable or escaping paths
    """
    op = "filesets.build_manifest"
    root = Path(source_dir)
    if not root.is_dir():
        raise HarbormasterError(op, ErrorKind.NOT_FOUND, f"source directory {root} does not exist")

    matcher = ExcludeMatcher(exclude)
    entries: list[FileEntry] = []

    for dirpath, dirnames, filenames in os.walk(root, onerror=_walk_error(op), followlinks=False):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        if rel_dir == ".." or rel_dir.startswith("../"):
            raise HarbormasterError(op, ErrorKind.INTERNAL, f"path {dirpath} escapes {root}")

        kept = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if os.path.islink(os.path.join(dirpath, name)):
                continue
            if matcher and matcher.matches(rel):
                logger.debug(f"Pruning excluded directory {rel}")
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in filenames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            full = os.path.join(dirpath, name)
            try:
                info = os.lstat(full)
            except OSError as e:
                raise HarbormasterError(op, ErrorKind.INTERNAL, f"cannot stat {rel}", cause=e) from e
            if stat.S_ISLNK(info.st_mode) or not stat.S_ISREG(info.st_mode):
                continue
            if matcher and matcher.matches(rel):
                continue
            try:
                sha = hash_file(Path(full))
            except OSError as e:
                raise HarbormasterError(op, ErrorKind.INTERNAL, f"cannot read {rel}", cause=e) from e
            entries.append(FileEntry(path=rel, size=info.st_size, sha256=sha))

    entries.sort(key=lambda entry: entry.path)
    manifest = FileManifest(
        target_path=target_path,
        created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        exclude=matcher.patterns,
        files=entries,
        tree_hash=compute_tree_hash(entries),
    )
    logger.debug(f"Indexed {len(entries)} files under {root} (tree {manifest.tree_hash[:12]})")
    return manifest
