"""
Tar payloads for copying changed files into a volume.
"""

import io
import os
import tarfile
from pathlib import Path

from ..errors import ErrorKind, HarbormasterError


def build_archive(source_dir: Path | str, paths: list[str]) -> bytes:
    """Pack ``paths`` (relative slash paths under ``source_dir``) into a tar.

    Parent directories are added so extraction recreates the tree.

    Raises:
        HarbormasterError: not_found when a listed file vanished since planning
    """
    root = Path(source_dir)
    buffer = io.BytesIO()
    added_dirs = set()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for rel in sorted(paths):
            parts = rel.split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                parent = "/".join(parts[:depth])
                if parent not in added_dirs:
                    tar.add(root / parent, arcname=parent, recursive=False)
                    added_dirs.add(parent)
            full = root / rel
            if not os.path.isfile(full):
                raise HarbormasterError(
                    "filesets.build_archive", ErrorKind.NOT_FOUND, f"{rel} no longer exists in {root}"
                )
            tar.add(full, arcname=rel, recursive=False)
    return buffer.getvalue()
