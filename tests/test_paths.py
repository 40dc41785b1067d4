"""Tests for repository addressing and path sanitizing."""

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core.paths import (
    RepoLayout,
    repo_hash,
    resolve_inside,
    safe_segment,
    sanitize_filename,
    sanitize_folder_path,
    staging_file,
    validate_project_name,
)
from util.errors import ValidationError


class TestRepoHash:
    def test_is_stable_sha256_of_the_pair(self):
        expected = hashlib.sha256(
            json.dumps(["user-1", "proj-1"], separators=(",", ":")).encode("utf-8")
        ).hexdigest()
        assert repo_hash("user-1", "proj-1") == expected
        assert repo_hash("user-1", "proj-1") == repo_hash("user-1", "proj-1")

    def test_distinct_pairs_do_not_collide(self):
        assert repo_hash("a:b", "c") != repo_hash("a", "b:c")
        assert repo_hash("u1", "p") != repo_hash("u2", "p")

    def test_is_filesystem_safe(self):
        key = repo_hash("weird/owner", "../project")
        assert len(key) == 64
        assert all(ch in "0123456789abcdef" for ch in key)

    @pytest.mark.parametrize("owner,project", [("", "p"), ("u", ""), (None, "p")])
    def test_requires_both_parts(self, owner, project):
        with pytest.raises(ValidationError):
            repo_hash(owner, project)


class TestSanitizeFilename:
    def test_traversal_becomes_a_single_segment(self):
        assert sanitize_filename("../../etc/passwd") == "etc_passwd"

    def test_keeps_ordinary_names(self):
        assert sanitize_filename("Report (final).pdf") == "Report (final).pdf"

    def test_collapses_and_strips(self):
        assert sanitize_filename("  a<>b...pdf  ") == "a_b.pdf"
        assert sanitize_filename("..hidden") == "hidden"

    def test_long_names_keep_their_extension(self):
        name = sanitize_filename("x" * 500 + ".pdf")
        assert len(name) <= 200
        assert name.endswith(".pdf")

    @pytest.mark.parametrize("raw", ["", None, "...", "///"])
    def test_empty_results_fall_back(self, raw):
        assert sanitize_filename(raw).startswith("file_")


class TestSanitizeFolderPath:
    @pytest.mark.parametrize("raw", [None, "", ".", "/", "./"])
    def test_root_forms(self, raw):
        assert sanitize_folder_path(raw) == ""

    def test_normalizes_separators(self):
        assert sanitize_folder_path("docs\\2024//notes/") == "docs/2024/notes"

    @pytest.mark.parametrize("raw", ["..", "docs/../..", "a/../b", "docs/$(rm)", "docs/.git"])
    def test_rejects_traversal_and_odd_segments(self, raw):
        with pytest.raises(ValidationError) as exc:
            sanitize_folder_path(raw)
        assert exc.value.code == "invalid_folder"


class TestProjectName:
    def test_accepts_and_trims(self):
        assert validate_project_name("  My  Thesis v2 ") == "My Thesis v2"

    @pytest.mark.parametrize("raw", ["", "   ", "-leading", "a/b", "x" * 101])
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            validate_project_name(raw)


def test_safe_segment_hashes_unsafe_values():
    assert safe_segment("user-1") == "user-1"
    hashed = safe_segment("../evil")
    assert hashed.startswith("sha256-")
    assert "/" not in hashed


def test_resolve_inside_rejects_escape(tmp_path: Path):
    assert resolve_inside(tmp_path, "a/b.txt") == (tmp_path / "a" / "b.txt").resolve()
    with pytest.raises(ValidationError):
        resolve_inside(tmp_path, "../outside.txt")


def test_staging_file_is_dated_per_owner(tmp_path: Path):
    moment = datetime(2024, 3, 9, 12, 0, tzinfo=timezone.utc)
    path = staging_file("user-1", str(tmp_path), now=moment)
    assert path.parent == tmp_path / "2024-03-09" / "user-1"
    assert path.parent.is_dir()
    assert path.suffix == ".tmp"
    assert not path.exists()


def test_layout_describe(tmp_path: Path):
    layout = RepoLayout(tmp_path / "repos", tmp_path / "wt")
    key = repo_hash("u", "p")
    assert layout.describe(key) is None

    bare = layout.bare_path(key)
    (bare / "hooks").mkdir(parents=True)
    (bare / "HEAD").write_text("ref: refs/heads/main\n")
    repo = layout.describe(key)
    assert repo is not None
    assert repo.path == str(bare)
    assert repo.hooks_installed is False
    assert bare.name == f"{key}.git"
