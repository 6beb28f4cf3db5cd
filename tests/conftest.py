from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.invalid", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def init_repo(path: Path, *, with_commit: bool = True) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "--quiet")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    if with_commit:
        (path / ".gitignore").write_text("bin/\ndownloads/\n.env\n", encoding="utf-8")
        (path / "README.md").write_text("archive\n", encoding="utf-8")
        git(path, "add", "--all")
        git(path, "commit", "--quiet", "-m", "feat: initial main branch")
    return path


@pytest.fixture
def local_repo(tmp_path: Path) -> Path:
    """リモート無しのリポジトリ（main に .gitignore と README.md）."""
    return init_repo(tmp_path / "repo")


@pytest.fixture
def remote_repo(tmp_path: Path) -> tuple[Path, Path]:
    """bare リポジトリを origin に持つクローン. (作業リポジトリ, bare) を返す."""
    bare = tmp_path / "origin.git"
    bare.mkdir()
    git(bare, "init", "--quiet", "--bare")
    git(bare, "symbolic-ref", "HEAD", "refs/heads/main")

    repo = init_repo(tmp_path / "repo")
    git(repo, "remote", "add", "origin", str(bare))
    git(repo, "push", "--quiet", "origin", "main")
    return repo, bare
