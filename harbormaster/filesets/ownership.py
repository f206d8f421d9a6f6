"""
Ownership and permission scripts run inside the staging container.
"""

import posixpath
import shlex

from ..errors import ErrorKind, HarbormasterError
from ..models import Ownership
from .diff import FilesetDiff


def _resolve_id(var: str, value: str, database: str) -> list[str]:
    """Shell lines setting ``var`` to the numeric id of ``value``."""
    if value.isdigit():
        return [f"{var}={shlex.quote(value)}"]
    quoted = shlex.quote(value)
    return [
        f"if getent {database} {quoted} >/dev/null 2>&1; then",
        f"  {var}=$(getent {database} {quoted} | cut -d: -f3)",
        "else",
        f"  echo {shlex.quote(f'WARNING: {database} {value} not found; skipping chown')} >&2",
        f"  {var}=''",
        "fi",
    ]


def _chown_block(targets: list[str], recursive: bool) -> list[str]:
    flag = "-R " if recursive else ""
    lines = []
    for condition, owner in (
        ('[ -n "${UID_VAL:-}" ] && [ -n "${GID_VAL:-}" ]', '"$UID_VAL:$GID_VAL"'),
        ('[ -n "${UID_VAL:-}" ]', '"$UID_VAL"'),
        ('[ -n "${GID_VAL:-}" ]', '":$GID_VAL"'),
    ):
        keyword = "if" if not lines else "elif"
        lines.append(f"{keyword} {condition}; then")
        for target in targets:
            lines.append(f"  chown {flag}{owner} {shlex.quote(target)} 2>/dev/null || true")
    lines.append("fi")
    return lines


def build_ownership_script(target_path: str, ownership: Ownership, diff: FilesetDiff) -> str:
    """Build a POSIX shell script applying ``ownership`` under ``target_path``.

    With ``preserve_existing`` only the created/updated files and their parent
    directories are touched; otherwise the whole target tree is.

    Raises:
        HarbormasterError: invalid_input for an unsafe target path
    """
    op = "filesets.build_ownership_script"
    root = posixpath.normpath(target_path)
    if root in ("/", "."):
        raise HarbormasterError(op, ErrorKind.INVALID_INPUT, f"unsafe target path {target_path!r}")
    if ".." in target_path.split("/"):
        raise HarbormasterError(op, ErrorKind.INVALID_INPUT, f"target path contains '..': {target_path!r}")

    lines = ["set -e"]
    if ownership.user:
        lines += _resolve_id("UID_VAL", ownership.user, "passwd")
    if ownership.group:
        lines += _resolve_id("GID_VAL", ownership.group, "group")

    if ownership.preserve_existing:
        files = [posixpath.join(root, path) for path in diff.changed_paths()]
        dirs = set()
        for path in files:
            parent = posixpath.dirname(path)
            while parent not in (root, "/", ""):
                dirs.add(parent)
                parent = posixpath.dirname(parent)
        dirs = sorted(dirs)
        if ownership.dir_mode:
            for path in dirs:
                quoted = shlex.quote(path)
                lines.append(f"[ -d {quoted} ] && chmod {ownership.dir_mode} {quoted} || true")
        if ownership.file_mode:
            for path in files:
                quoted = shlex.quote(path)
                lines.append(f"[ -f {quoted} ] && chmod {ownership.file_mode} {quoted} || true")
        if (ownership.user or ownership.group) and (files or dirs):
            lines += _chown_block(files + dirs, recursive=False)
    else:
        quoted_root = shlex.quote(root)
        if ownership.dir_mode:
            lines.append(f"find {quoted_root} -type d -exec chmod {ownership.dir_mode} {{}} +")
        if ownership.file_mode:
            lines.append(f"find {quoted_root} -type f -exec chmod {ownership.file_mode} {{}} +")
        if ownership.user or ownership.group:
            lines += _chown_block([root], recursive=True)

    return "\n".join(lines) + "\n"
