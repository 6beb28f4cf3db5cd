"""RepositoryPublisher の結合テスト（実際の git リポジトリを使用）."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import git, init_repo, requires_git

from version_archive_builder.core.exceptions import PublishError, PublishStage
from version_archive_builder.core.publisher import PublishStatus, RepositoryPublisher

pytestmark = [pytest.mark.integration, requires_git]


def _publisher(repo: Path) -> RepositoryPublisher:
    return RepositoryPublisher(repo, author_name="Archive Bot", author_email="bot@example.invalid")


def _tree(tmp_path: Path, version: str, files: dict[str, str]) -> Path:
    source = tmp_path / f"stripped-{version}"
    for name, content in files.items():
        path = source / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    (source / "version.txt").write_text(version, encoding="utf-8")
    return source


class TestIsPublished:
    def test_empty_repository(self, tmp_path: Path) -> None:
        repo = init_repo(tmp_path / "empty", with_commit=False)

        assert _publisher(repo).is_published("versions/1.0.0") is False

    def test_local_branch(self, local_repo: Path) -> None:
        git(local_repo, "branch", "versions/1.0.0")

        assert _publisher(local_repo).is_published("versions/1.0.0") is True
        assert _publisher(local_repo).is_published("versions/1.1.0") is False

    def test_remote_branch_takes_precedence(self, remote_repo: tuple[Path, Path]) -> None:
        repo, _ = remote_repo
        # ローカルにだけあるブランチは push 未完了なので未公開扱い
        git(repo, "branch", "versions/1.0.0")

        assert _publisher(repo).is_published("versions/1.0.0") is False

        git(repo, "push", "--quiet", "origin", "versions/1.0.0")

        assert _publisher(repo).is_published("versions/1.0.0") is True

    def test_unreachable_remote(self, local_repo: Path, tmp_path: Path) -> None:
        git(local_repo, "remote", "add", "origin", str(tmp_path / "missing.git"))

        with pytest.raises(PublishError) as exc_info:
            _publisher(local_repo).is_published("versions/1.0.0")
        assert exc_info.value.stage is PublishStage.LOOKUP


class TestPublish:
    def test_first_branch_is_a_root_commit(self, local_repo: Path, tmp_path: Path) -> None:
        """作成元の無いブランチは main の履歴を含まないルートコミットになること."""
        publisher = _publisher(local_repo)
        source = _tree(tmp_path, "1.0.0", {"Managed/Game.dll": "stub"})

        result = publisher.publish("1.0.0", "versions/1.0.0", source)

        assert result.status is PublishStatus.COMMITTED
        assert result.pushed is False
        assert result.commit == git(local_repo, "rev-parse", "versions/1.0.0")
        assert git(local_repo, "log", "-1", "--format=%s", "versions/1.0.0") == "chore: strip v1.0.0"
        assert git(local_repo, "log", "-1", "--format=%an <%ae>", "versions/1.0.0") == "Archive Bot <bot@example.invalid>"
        files = git(local_repo, "ls-tree", "-r", "--name-only", "versions/1.0.0").splitlines()
        assert sorted(files) == [".gitignore", "Managed/Game.dll", "version.txt"]
        assert git(local_repo, "show", "versions/1.0.0:version.txt") == "1.0.0"
        assert git(local_repo, "rev-list", "--count", "versions/1.0.0") == "1"

    def test_republish_same_tree_is_unchanged(self, local_repo: Path, tmp_path: Path) -> None:
        publisher = _publisher(local_repo)
        source = _tree(tmp_path, "1.0.0", {"Game.dll": "stub"})
        first = publisher.publish("1.0.0", "versions/1.0.0", source)

        second = publisher.publish("1.0.0", "versions/1.0.0", source)

        assert second.status is PublishStatus.UNCHANGED
        assert second.commit == first.commit
        assert git(local_repo, "rev-list", "--count", "versions/1.0.0") == "1"

    def test_stale_files_are_removed(self, local_repo: Path, tmp_path: Path) -> None:
        publisher = _publisher(local_repo)
        publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "a", {"old/Removed.dll": "x", "Kept.dll": "1"}))

        result = publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "b", {"Kept.dll": "2"}))

        assert result.status is PublishStatus.COMMITTED
        files = git(local_repo, "ls-tree", "-r", "--name-only", "versions/1.0.0").splitlines()
        assert sorted(files) == [".gitignore", "Kept.dll", "version.txt"]
        assert not (local_repo / "old").exists()

    def test_ignored_files_survive_checkout(self, local_repo: Path, tmp_path: Path) -> None:
        (local_repo / "bin").mkdir()
        (local_repo / "bin" / "tool").write_text("binary", encoding="utf-8")
        (local_repo / "leftover.tmp").write_text("partial", encoding="utf-8")

        _publisher(local_repo).publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "x"}))

        assert (local_repo / "bin" / "tool").read_text(encoding="utf-8") == "binary"
        assert "leftover.tmp" not in git(local_repo, "ls-tree", "-r", "--name-only", "versions/1.0.0")

    def test_ignored_paths_in_tree_are_committed(self, local_repo: Path, tmp_path: Path) -> None:
        """.gitignore に一致するパスもストリップ済みツリーにあればコミットされること."""
        (local_repo / "bin").mkdir()
        (local_repo / "bin" / "tool").write_text("binary", encoding="utf-8")
        source = _tree(tmp_path, "1.0.0", {"Libs/bin/native.dll": "native", "Game.dll": "x", ".env": "KEY=1"})

        _publisher(local_repo).publish("1.0.0", "versions/1.0.0", source)

        files = git(local_repo, "ls-tree", "-r", "--name-only", "versions/1.0.0").splitlines()
        assert sorted(files) == [".env", ".gitignore", "Game.dll", "Libs/bin/native.dll", "version.txt"]
        # リポジトリ直下の無視されたツールは対象外
        assert (local_repo / "bin" / "tool").exists()

    def test_new_branch_is_based_on_earlier_version(self, local_repo: Path, tmp_path: Path) -> None:
        """作成元候補のうち存在する最初のブランチから分岐すること."""
        publisher = _publisher(local_repo)
        first = publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "1"}))

        second = publisher.publish(
            "1.2.0",
            "versions/1.2.0",
            _tree(tmp_path, "1.2.0", {"Game.dll": "2"}),
            bases=["versions/1.1.0", "versions/1.0.0"],
        )

        assert second.status is PublishStatus.COMMITTED
        assert git(local_repo, "rev-parse", "versions/1.2.0~1") == first.commit
        assert git(local_repo, "rev-list", "--count", "versions/1.2.0") == "2"

    def test_missing_bases_start_a_new_root(self, local_repo: Path, tmp_path: Path) -> None:
        _publisher(local_repo).publish(
            "1.1.0", "versions/1.1.0", _tree(tmp_path, "1.1.0", {"Game.dll": "x"}), bases=["versions/1.0.0"]
        )

        assert git(local_repo, "rev-list", "--count", "versions/1.1.0") == "1"

    def test_empty_repository(self, tmp_path: Path) -> None:
        repo = init_repo(tmp_path / "empty", with_commit=False)

        result = _publisher(repo).publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "x"}))

        assert result.status is PublishStatus.COMMITTED
        assert git(repo, "rev-list", "--count", "versions/1.0.0") == "1"

    def test_missing_source(self, local_repo: Path, tmp_path: Path) -> None:
        with pytest.raises(PublishError) as exc_info:
            _publisher(local_repo).publish("1.0.0", "versions/1.0.0", tmp_path / "missing")
        assert exc_info.value.stage is PublishStage.COPY


class TestPublishWithRemote:
    def test_push(self, remote_repo: tuple[Path, Path], tmp_path: Path) -> None:
        repo, bare = remote_repo
        publisher = _publisher(repo)

        result = publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "x"}))

        assert result.pushed is True
        assert git(bare, "rev-parse", "refs/heads/versions/1.0.0") == result.commit
        assert git(repo, "config", "branch.versions/1.0.0.remote") == "origin"
        assert publisher.is_published("versions/1.0.0") is True

    def test_unchanged_branch_is_pushed_when_missing_remotely(self, remote_repo: tuple[Path, Path], tmp_path: Path) -> None:
        repo, bare = remote_repo
        source = _tree(tmp_path, "1.0.0", {"Game.dll": "x"})
        # 前回の実行がコミット後の push で失敗した状態を再現
        local_only = RepositoryPublisher(
            repo, author_name="Archive Bot", author_email="bot@example.invalid", remote="upstream"
        )
        committed = local_only.publish("1.0.0", "versions/1.0.0", source)
        assert committed.pushed is False

        result = _publisher(repo).publish("1.0.0", "versions/1.0.0", source)

        assert result.status is PublishStatus.UNCHANGED
        assert result.pushed is True
        assert git(bare, "rev-parse", "refs/heads/versions/1.0.0") == committed.commit

    def test_branch_created_from_remote(self, remote_repo: tuple[Path, Path], tmp_path: Path) -> None:
        repo, bare = remote_repo
        first = _publisher(repo).publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "a", {"Game.dll": "x"}))
        clone = tmp_path / "clone"
        git(tmp_path, "clone", "--quiet", str(bare), str(clone))

        result = _publisher(clone).publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "b", {"Game.dll": "y"}))

        assert result.status is PublishStatus.COMMITTED
        assert git(clone, "rev-parse", "versions/1.0.0~1") == first.commit
        assert git(bare, "rev-parse", "refs/heads/versions/1.0.0") == result.commit


    def test_base_fetched_from_remote(self, remote_repo: tuple[Path, Path], tmp_path: Path) -> None:
        """作成元のブランチがリモートにしか無い場合は取得してから分岐すること."""
        repo, bare = remote_repo
        first = _publisher(repo).publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "a", {"Game.dll": "x"}))
        clone = tmp_path / "clone"
        git(tmp_path, "clone", "--quiet", str(bare), str(clone))

        result = _publisher(clone).publish(
            "1.1.0", "versions/1.1.0", _tree(tmp_path, "b", {"Game.dll": "y"}), bases=["versions/1.0.0"]
        )

        assert git(bare, "rev-parse", "refs/heads/versions/1.1.0") == result.commit
        assert git(bare, "rev-parse", "versions/1.1.0~1") == first.commit


class TestAliasAndRestore:
    def test_update_alias(self, remote_repo: tuple[Path, Path], tmp_path: Path) -> None:
        repo, bare = remote_repo
        publisher = _publisher(repo)
        result = publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "x"}))
        publisher.restore("main")

        sha = publisher.update_alias("versions/latest", "versions/1.0.0")

        assert sha == result.commit
        assert git(repo, "rev-parse", "versions/latest") == result.commit
        assert git(bare, "rev-parse", "refs/heads/versions/latest") == result.commit

    def test_update_alias_missing_branch(self, local_repo: Path) -> None:
        with pytest.raises(PublishError) as exc_info:
            _publisher(local_repo).update_alias("versions/latest", "versions/9.9.9")
        assert exc_info.value.stage is PublishStage.ALIAS

    def test_restore(self, local_repo: Path, tmp_path: Path) -> None:
        publisher = _publisher(local_repo)
        publisher.publish("1.0.0", "versions/1.0.0", _tree(tmp_path, "1.0.0", {"Game.dll": "x"}))
        assert publisher.current_branch() == "versions/1.0.0"

        publisher.restore("main")

        assert publisher.current_branch() == "main"
        assert (local_repo / "README.md").exists()
        assert not (local_repo / "Game.dll").exists()
