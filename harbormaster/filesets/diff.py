"""
Diffing of a local manifest against the remote sentinel manifest.
"""

from pydantic import BaseModel, Field

from .manifest import FileEntry, FileManifest


class FilesetDiff(BaseModel):
    """Files to copy, overwrite and remove for one fileset sync."""
    to_create: list[FileEntry] = Field(default_factory=list)
    to_update: list[FileEntry] = Field(default_factory=list)
    to_delete: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)

    def changed_paths(self) -> list[str]:
        """Paths whose content must be copied, sorted."""
        return sorted(e.path for e in self.to_create + self.to_update)

    def summary(self) -> str:
        return (
            f"{len(self.to_create)} to create, {len(self.to_update)} to update, "
            f"{len(self.to_delete)} to delete"
        )


def diff_manifests(local: FileManifest, remote: FileManifest) -> FilesetDiff:
    """Compare two manifests.

    Equal, non-empty tree hashes short-circuit to an empty diff without
    looking at entries.
    """
    if local.tree_hash and local.tree_hash == remote.tree_hash:
        return FilesetDiff()

    local_files = local.by_path()
    remote_files = remote.by_path()

    to_create = []
    to_update = []
    for path, entry in local_files.items():
        existing = remote_files.get(path)
        if existing is None:
            to_create.append(entry)
        elif existing.size != entry.size or existing.sha256 != entry.sha256:
            to_update.append(entry)
    to_delete = [path for path in remote_files if path not in local_files]

    return FilesetDiff(
        to_create=sorted(to_create, key=lambda e: e.path),
        to_update=sorted(to_update, key=lambda e: e.path),
        to_delete=sorted(to_delete),
    )
