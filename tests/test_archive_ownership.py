"""
Tests for tar payloads and ownership scripts.
"""

import io
import tarfile

import pytest
from pydantic import ValidationError

from harbormaster.errors import ErrorKind, HarbormasterError
from harbormaster.filesets import FileEntry, FilesetDiff, build_archive, build_ownership_script
from harbormaster.models import Ownership

from .fakes import write_tree


def test_archive_contains_files_and_parents(temp_dir):
    write_tree(temp_dir, {"a.txt": "A", "sub/deep/b.txt": "BB", "untouched.txt": "U"})

    data = build_archive(temp_dir, ["sub/deep/b.txt", "a.txt"])

    with tarfile.open(fileobj=io.BytesIO(data)) as tar:
        names = tar.getnames()
        assert tar.extractfile("sub/deep/b.txt").read() == b"BB"
    assert names == ["a.txt", "sub", "sub/deep", "sub/deep/b.txt"]


def test_archive_missing_file_is_not_found(temp_dir):
    with pytest.raises(HarbormasterError) as exc_info:
        build_archive(temp_dir, ["gone.txt"])
    assert exc_info.value.kind == ErrorKind.NOT_FOUND


def _diff(*paths):
    return FilesetDiff(to_create=[FileEntry(path=p, size=1, sha256="x") for p in paths])


class TestOwnershipScript:
    """Tests for build_ownership_script."""

    def test_recursive_mode(self):
        ownership = Ownership(user="1000", group="www-data", file_mode="0644", dir_mode="755")

        script = build_ownership_script("/var/www", ownership, _diff("a.txt"))

        assert script.startswith("set -e\n")
        assert "UID_VAL=1000" in script
        assert "getent group www-data" in script
        assert "find /var/www -type d -exec chmod 755 {} +" in script
        assert "find /var/www -type f -exec chmod 0644 {} +" in script
        assert 'chown -R "$UID_VAL:$GID_VAL" /var/www' in script

    def test_preserve_existing_touches_only_changed_paths(self):
        ownership = Ownership(user="1000", file_mode="600", dir_mode="700", preserve_existing=True)
        diff = FilesetDiff(
            to_create=[FileEntry(path="sub/new.txt", size=1, sha256="x")],
            to_update=[FileEntry(path="top.txt", size=1, sha256="y")],
            to_delete=["removed.txt"],
        )

        script = build_ownership_script("/data/", ownership, diff)

        assert "chmod 600 /data/sub/new.txt" in script
        assert "chmod 600 /data/top.txt" in script
        assert "chmod 700 /data/sub" in script
        assert "removed.txt" not in script
        assert "find" not in script
        assert "chmod 700 /data " not in script
        assert 'chown "$UID_VAL" /data/top.txt' in script

    def test_paths_are_shell_quoted(self):
        ownership = Ownership(file_mode="644", preserve_existing=True)
        script = build_ownership_script("/data", ownership, _diff("it's here.txt"))
        assert "'/data/it'\"'\"'s here.txt'" in script

    @pytest.mark.parametrize("target", ["/", ".", "/data/../etc"])
    def test_unsafe_target_is_invalid_input(self, target):
        with pytest.raises(HarbormasterError) as exc_info:
            build_ownership_script(target, Ownership(user="1"), _diff("a"))
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT

    @pytest.mark.parametrize("field,value", [("file_mode", "999"), ("dir_mode", "rwx"), ("user", "bad name;")])
    def test_bad_ownership_spec_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Ownership(**{field: value})
