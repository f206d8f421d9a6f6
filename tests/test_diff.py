"""
Tests for manifest diffing.
"""

from harbormaster.filesets import FileEntry, FileManifest, FilesetDiff, build_manifest, compute_tree_hash, diff_manifests

from .fakes import write_tree


def _manifest(*entries, tree_hash=None):
    files = sorted((FileEntry(path=p, size=s, sha256=h) for p, s, h in entries), key=lambda e: e.path)
    return FileManifest(files=files, tree_hash=compute_tree_hash(files) if tree_hash is None else tree_hash)


def test_equal_tree_hash_short_circuits():
    local = _manifest(("a.txt", 1, "aaa"), tree_hash="same")
    corrupted = _manifest(("a.txt", 999, "garbage"), ("zzz.txt", 5, "x"), tree_hash="same")

    diff = diff_manifests(local, corrupted)

    assert diff.is_empty()


def test_identical_trees_built_at_different_times(temp_dir):
    write_tree(temp_dir, {"a.txt": "A", "sub/b.txt": "BB"})
    first = build_manifest(temp_dir, "/data")
    second = build_manifest(temp_dir, "/data")
    second.created_at = "1999-12-31T23:59:59Z"

    assert diff_manifests(first, second) == FilesetDiff()


def test_empty_tree_hashes_do_not_short_circuit():
    local = _manifest(("a.txt", 1, "aaa"), tree_hash="")
    remote = FileManifest()

    diff = diff_manifests(local, remote)

    assert [e.path for e in diff.to_create] == ["a.txt"]


def test_classification_and_sorting():
    local = _manifest(("c.txt", 1, "c"), ("a.txt", 1, "a-new"), ("b.txt", 2, "b"), ("same.txt", 1, "s"))
    remote = _manifest(("a.txt", 1, "a-old"), ("b.txt", 3, "b"), ("same.txt", 1, "s"), ("z.txt", 1, "z"), ("old.txt", 1, "o"))

    diff = diff_manifests(local, remote)

    assert [e.path for e in diff.to_create] == ["c.txt"]
    assert [e.path for e in diff.to_update] == ["a.txt", "b.txt"]
    assert diff.to_delete == ["old.txt", "z.txt"]
    assert diff.changed_paths() == ["a.txt", "b.txt", "c.txt"]
    assert diff.summary() == "1 to create, 2 to update, 2 to delete"


def test_diff_partitions_paths():
    cases = [
        (_manifest(), _manifest(("x", 1, "x"))),
        (_manifest(("x", 1, "x")), _manifest()),
        (_manifest(("a", 1, "1"), ("b", 1, "1")), _manifest(("b", 1, "2"), ("c", 1, "1"))),
        (_manifest(("a", 1, "1"), ("b", 2, "2")), _manifest(("a", 1, "1"), ("b", 2, "2"), ("d", 4, "4"))),
    ]
    for local, remote in cases:
        diff = diff_manifests(local, remote)
        local_paths = set(local.by_path())
        remote_paths = set(remote.by_path())
        created = {e.path for e in diff.to_create}
        updated = {e.path for e in diff.to_update}
        deleted = set(diff.to_delete)
        unchanged = {
            p for p in local_paths & remote_paths if local.by_path()[p] == remote.by_path()[p]
        }

        assert created == local_paths - remote_paths
        assert deleted == remote_paths - local_paths
        assert updated == {p for p in local_paths & remote_paths if local.by_path()[p] != remote.by_path()[p]}
        assert not (created & updated or created & deleted or updated & deleted)
        assert created | updated | deleted | unchanged == local_paths | remote_paths


def test_new_changed_and_removed_files():
    local = _manifest(("a.txt", 1, "new-a"), ("sub/b.txt", 2, "bb"))
    remote = _manifest(("a.txt", 1, "old-a"), ("old.txt", 3, "old"))

    diff = diff_manifests(local, remote)

    assert [e.path for e in diff.to_create] == ["sub/b.txt"]
    assert [e.path for e in diff.to_update] == ["a.txt"]
    assert diff.to_delete == ["old.txt"]
