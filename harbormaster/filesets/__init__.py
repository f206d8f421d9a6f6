"""
Fileset sync engine: manifests, diffs and the payloads used to sync them.
"""

from .archive import build_archive
from .diff import FilesetDiff, diff_manifests
from .manifest import (
    MANIFEST_VERSION,
    SENTINEL_FILENAME,
    FileEntry,
    FileManifest,
    build_manifest,
    compute_tree_hash,
)
from .ownership import build_ownership_script
from .patterns import ExcludeMatcher, normalize_exclude_patterns

__all__ = [
    "MANIFEST_VERSION",
    "SENTINEL_FILENAME",
    "ExcludeMatcher",
    "FileEntry",
    "FileManifest",
    "FilesetDiff",
    "build_archive",
    "build_manifest",
    "build_ownership_script",
    "compute_tree_hash",
    "diff_manifests",
    "normalize_exclude_patterns",
]
