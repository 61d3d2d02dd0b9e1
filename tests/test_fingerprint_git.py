"""
Fingerprint tests against a real git repository.

Skipped when git is not installed.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from skip_engine.errors import ToolInvocationError, TreeEmptyError
from skip_engine.fingerprint import GitTreeFingerprint, digest

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(repo: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def _commit(repo: Path, files: dict[str, str], message: str) -> str:
    for rel, content in files.items():
        target = repo / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "-m", message)
    return _git(repo, "rev-parse", "HEAD")


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    _git(tmp_path, "init", "-q")
    return tmp_path


def test_fingerprint_is_deterministic(repo: Path) -> None:
    rev = _commit(repo, {"service-a/main.py": "print(1)\n", "lib-1/util.py": "x = 1\n"}, "c1")
    provider = GitTreeFingerprint(repo_root=repo)

    first = provider.fingerprint(rev, ["service-a", "lib-1"])
    second = provider.fingerprint(rev, ["service-a", "lib-1"])

    assert first == second
    assert "service-a" in first
    assert "lib-1" in first
    assert digest(first) == digest(second)


def test_fingerprint_ignores_changes_outside_paths(repo: Path) -> None:
    c1 = _commit(repo, {"service-a/main.py": "print(1)\n", "docs/readme.md": "v1\n"}, "c1")
    c2 = _commit(repo, {"docs/readme.md": "v2\n"}, "c2")
    provider = GitTreeFingerprint(repo_root=repo)

    assert provider.fingerprint(c1, ["service-a"]) == provider.fingerprint(c2, ["service-a"])


def test_fingerprint_changes_with_content_inside_paths(repo: Path) -> None:
    c1 = _commit(repo, {"service-a/main.py": "print(1)\n"}, "c1")
    c2 = _commit(repo, {"service-a/main.py": "print(2)\n"}, "c2")
    provider = GitTreeFingerprint(repo_root=repo)

    assert provider.fingerprint(c1, ["service-a"]) != provider.fingerprint(c2, ["service-a"])


def test_fingerprint_unknown_revision(repo: Path) -> None:
    _commit(repo, {"service-a/main.py": "print(1)\n"}, "c1")

    with pytest.raises(ToolInvocationError):
        GitTreeFingerprint(repo_root=repo).fingerprint("0" * 40, ["service-a"])


def test_fingerprint_paths_absent_from_tree(repo: Path) -> None:
    rev = _commit(repo, {"service-a/main.py": "print(1)\n"}, "c1")

    with pytest.raises(TreeEmptyError):
        GitTreeFingerprint(repo_root=repo).fingerprint(rev, ["does-not-exist"])


def test_fingerprint_missing_git_executable(repo: Path) -> None:
    provider = GitTreeFingerprint(repo_root=repo, git_executable="git-does-not-exist")

    with pytest.raises(ToolInvocationError, match="Missing required executable"):
        provider.fingerprint("HEAD", ["service-a"])


def test_digest_is_sha256_hex() -> None:
    value = digest("100644 blob abc\tservice-a/main.py\n")

    assert len(value) == 64
    assert value == value.lower()
    assert value != digest("100644 blob abd\tservice-a/main.py\n")


def test_digest_rejects_empty_fingerprint() -> None:
    with pytest.raises(TreeEmptyError):
        digest("")
