"""
Tests for the harbormaster command line.
"""

import json

from typer.testing import CliRunner

from harbormaster import __version__
from harbormaster.cli import app
from harbormaster.filesets import FileManifest, build_manifest

from .fakes import write_tree

runner = CliRunner()


def test_index_prints_manifest(site_dir):
    result = runner.invoke(app, ["fileset", "index", str(site_dir), "--target-path", "/var/www"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [f["path"] for f in data["files"]] == ["a.txt", "sub/b.txt"]
    assert data["target_path"] == "/var/www"


def test_index_writes_output(site_dir, temp_dir):
    output = temp_dir / "manifest.json"

    result = runner.invoke(app, ["fileset", "index", str(site_dir), "-e", "sub/", "-o", str(output)])

    assert result.exit_code == 0
    assert "Indexed 1 files" in result.stdout
    manifest = FileManifest.from_json(output.read_text())
    assert [e.path for e in manifest.files] == ["a.txt"]
    assert manifest.exclude == ["sub/**"]


def test_index_missing_source(temp_dir):
    result = runner.invoke(app, ["fileset", "index", str(temp_dir / "missing")])

    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_diff(site_dir, temp_dir):
    local = temp_dir / "local.json"
    remote = temp_dir / "remote.json"
    local.write_text(build_manifest(site_dir, "/var/www").to_json())
    other = write_tree(temp_dir / "other", {"a.txt": "changed", "old.txt": "o"})
    remote.write_text(build_manifest(other, "/var/www").to_json())

    result = runner.invoke(app, ["fileset", "diff", str(local), str(remote)])

    assert result.exit_code == 0
    assert "+ sub/b.txt" in result.stdout
    assert "~ a.txt" in result.stdout
    assert "- old.txt" in result.stdout
    assert "1 to create, 1 to update, 1 to delete" in result.stdout


def test_diff_identical(site_dir, temp_dir):
    path = temp_dir / "m.json"
    path.write_text(build_manifest(site_dir, "/var/www").to_json())

    result = runner.invoke(app, ["fileset", "diff", str(path), str(path)])

    assert result.exit_code == 0
    assert "No changes." in result.stdout


def test_diff_missing_manifest(temp_dir):
    result = runner.invoke(app, ["fileset", "diff", str(temp_dir / "a.json"), str(temp_dir / "b.json")])

    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout
