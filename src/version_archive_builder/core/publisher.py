"""バージョンごとのブランチへの公開処理.

1バージョン = 1ブランチ。ブランチの存在（リモートがあればリモート側）が
「公開済み」の唯一の判定基準です。

publish() の手順:
    1. ブランチを解決、無ければ作成し、同名のリモートブランチを追跡するよう設定。
       作成元はリモートの同名ブランチ、無ければ base 候補のうち最初に存在するブランチ
       （通常は直前のバージョン）。どれも無ければ親を持たない新しいルートにする
    2. 強制チェックアウト + 無視対象外の未追跡ファイルを削除
    3. 追跡中のファイルを（保護対象を除き）全て削除
    4. ストリップ済みツリーを作業ディレクトリへコピー
    5. 全変更をステージ（.gitignore に一致するファイルも含める）し、差分が無ければコミットしない
    6. ``chore: strip v<version>`` でコミット
    7. リモートへ push（自動リトライはしない）

チェックアウトはリポジトリ全体の状態を変更するため、publish() を並行に呼んではいけません。
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loguru import logger

from .exceptions import PublishError, PublishStage
from .git_repo import GitCommandError, GitRepository, auth_env

DEFAULT_BRANCH_TEMPLATE = "versions/{version}"
DEFAULT_PRESERVED_PATHS = (".gitignore", ".gitattributes")
COMMIT_MESSAGE_TEMPLATE = "chore: strip v{version}"


class PublishStatus(str, Enum):
    COMMITTED = "committed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class PublishTarget:
    branch: str
    working_path: Path


@dataclass(frozen=True)
class PublishResult:
    branch: str
    status: PublishStatus
    commit: str | None
    pushed: bool


def commit_message(version: str) -> str:
    return COMMIT_MESSAGE_TEMPLATE.format(version=version)


class RepositoryPublisher:
    """Git リポジトリハンドルを所有し、バージョンブランチの作成・更新・push を行う."""

    def __init__(
        self,
        repo_path: Path,
        *,
        author_name: str,
        author_email: str,
        token: str | None = None,
        remote: str = "origin",
        branch_template: str = DEFAULT_BRANCH_TEMPLATE,
        preserved_paths: Iterable[str] = DEFAULT_PRESERVED_PATHS,
    ) -> None:
        if "{version}" not in branch_template:
            raise ValueError(f"Branch template must contain '{{version}}': {branch_template!r}")
        self.repo = GitRepository(repo_path)
        self.remote = remote
        self.branch_template = branch_template
        self.preserved_paths = frozenset(preserved_paths)
        self._author_env = {
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_COMMITTER_NAME": author_name,
            "GIT_COMMITTER_EMAIL": author_email,
        }
        self._auth_env = auth_env(token)
        self._has_remote: bool | None = None

    @property
    def working_path(self) -> Path:
        return self.repo.path

    @property
    def has_remote(self) -> bool:
        if self._has_remote is None:
            self._has_remote = self.remote in self.repo.remotes()
            if not self._has_remote:
                logger.info(f"Remote '{self.remote}' is not configured; using local branches only")
        return self._has_remote

    def branch_name(self, version: str) -> str:
        return self.branch_template.format(version=version)

    def target(self, version: str) -> PublishTarget:
        return PublishTarget(branch=self.branch_name(version), working_path=self.working_path)

    def _remote_sha(self, branch: str, stage: PublishStage) -> str | None:
        try:
            return self.repo.remote_branch_sha(self.remote, branch, env=self._auth_env)
        except GitCommandError as e:
            raise PublishError(stage, branch, e.stderr or str(e)) from e

    def is_published(self, branch: str) -> bool:
        """ブランチが既に公開済みか.

        リモートが設定されていればリモート側のブランチを、無ければローカルブランチを確認する。
        コミットが1件も無いリポジトリでは常に False。

        Raises:
            PublishError: リモートへの問い合わせに失敗した場合（stage=lookup）
        """
        if self.has_remote:
            return self._remote_sha(branch, PublishStage.LOOKUP) is not None
        return self.repo.local_branch_exists(branch)

    def current_branch(self) -> str | None:
        return self.repo.current_branch()

    def _git(
        self,
        stage: PublishStage,
        branch: str,
        *args: str,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> str:
        try:
            return self.repo.run(*args, env=env, input=input).stdout
        except GitCommandError as e:
            raise PublishError(stage, branch, e.stderr or str(e)) from e

    def _fetch_branch(self, branch: str, stage: PublishStage) -> str:
        ref = f"refs/remotes/{self.remote}/{branch}"
        self._git(stage, branch, "fetch", self.remote, f"+refs/heads/{branch}:{ref}", env=self._auth_env)
        return ref

    def _resolve_base(self, branch: str, bases: Sequence[str]) -> str | None:
        """base 候補のうち最初に存在するブランチの ref. ローカルに無ければリモートから取得する."""
        for base in bases:
            if self.repo.local_branch_exists(base):
                return f"refs/heads/{base}"
            if self.has_remote and self._remote_sha(base, PublishStage.BRANCH):
                return self._fetch_branch(base, PublishStage.BRANCH)
        if bases:
            logger.warning(f"None of the earlier version branches exist, {branch} starts a new history")
        return None

    def _checkout(self, branch: str, bases: Sequence[str] = ()) -> None:
        if self.repo.local_branch_exists(branch):
            self._git(PublishStage.CHECKOUT, branch, "checkout", "--force", branch)
        else:
            remote_sha = self._remote_sha(branch, PublishStage.BRANCH) if self.has_remote else None
            if remote_sha:
                logger.info(f"Creating {branch} from {self.remote}/{branch}")
                ref = self._fetch_branch(branch, PublishStage.BRANCH)
                self._git(PublishStage.CHECKOUT, branch, "checkout", "--force", "-b", branch, ref)
            elif self.repo.rev_parse("HEAD") is None:
                # コミットが無いリポジトリ: HEAD を未作成ブランチへ付け替えるだけ
                logger.info(f"Creating new branch {branch} in empty repository")
                self._git(PublishStage.BRANCH, branch, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
            else:
                base_ref = self._resolve_base(branch, bases)
                if base_ref:
                    logger.info(f"Creating new branch {branch} from {base_ref}")
                    self._git(PublishStage.CHECKOUT, branch, "checkout", "--force", "-b", branch, base_ref)
                else:
                    # 追跡ファイルは index に残るので、保護対象以外は後段でまとめて削除される
                    logger.info(f"Creating new root branch {branch}")
                    self._git(PublishStage.CHECKOUT, branch, "checkout", "--orphan", branch)
            if self.has_remote:
                self._git(PublishStage.BRANCH, branch, "config", f"branch.{branch}.remote", self.remote)
                self._git(PublishStage.BRANCH, branch, "config", f"branch.{branch}.merge", f"refs/heads/{branch}")

        # 中断された前回の処理で残った未追跡ファイルを除去（無視対象は残す）
        self._git(PublishStage.CHECKOUT, branch, "clean", "-fd", "--quiet")

    def _clear_tracked(self, branch: str) -> int:
        workdir = self.working_path
        removed = 0
        parents: set[Path] = set()
        try:
            for name in self.repo.tracked_files():
                if name in self.preserved_paths:
                    continue
                path = workdir / name
                path.unlink(missing_ok=True)
                parents.update(p for p in path.parents if p != workdir and workdir in p.parents)
                removed += 1
            # 空になったディレクトリを深い順に削除
            for directory in sorted(parents, key=lambda p: len(p.parts), reverse=True):
                if directory.is_dir() and not any(directory.iterdir()):
                    directory.rmdir()
        except (OSError, GitCommandError) as e:
            raise PublishError(PublishStage.COPY, branch, f"failed to clear tracked files: {e}") from e
        return removed

    def _copy_tree(self, source: Path, branch: str) -> int:
        workdir = self.working_path
        copied = 0
        try:
            for src in sorted(source.rglob("*")):
                relative = src.relative_to(source)
                if relative.parts[0] == ".git":
                    continue
                dest = workdir / relative
                if src.is_dir():
                    if dest.exists() and not dest.is_dir():
                        dest.unlink()
                    dest.mkdir(parents=True, exist_ok=True)
                    continue
                if dest.is_dir():
                    shutil.rmtree(dest)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dest)
                copied += 1
        except OSError as e:
            raise PublishError(PublishStage.COPY, branch, f"failed to copy {source}: {e}") from e
        return copied

    def _needs_push(self, branch: str, local_sha: str | None) -> bool:
        if not self.has_remote or local_sha is None:
            return False
        return self._remote_sha(branch, PublishStage.PUSH) != local_sha

    def _push(self, branch: str, refspec: str) -> None:
        logger.info(f"Pushing {branch} to {self.remote}")
        self._git(PublishStage.PUSH, branch, "push", "--quiet", self.remote, refspec, env=self._auth_env)

    def _stage(self, source: Path, branch: str) -> None:
        # 削除を記録してから、コピーしたファイルを無視ルールに関係なく全てステージする
        self._git(PublishStage.STAGE, branch, "add", "--all")
        files = sorted(
            p.relative_to(source).as_posix()
            for p in source.rglob("*")
            if p.is_file() and p.relative_to(source).parts[0] != ".git"
        )
        if files:
            self._git(
                PublishStage.STAGE,
                branch,
                "add",
                "--force",
                "--pathspec-from-file=-",
                "--pathspec-file-nul",
                env={"GIT_LITERAL_PATHSPECS": "1"},
                input="\0".join(files) + "\0",
            )

    def publish(
        self,
        version: str,
        branch: str,
        source: Path,
        bases: Sequence[str] = (),
    ) -> PublishResult:
        """ストリップ済みツリーでブランチの内容を置き換え、コミットして push する.

        Args:
            version: バージョン文字列（コミットメッセージに使用）
            branch: 対象ブランチ名
            source: ストリップ済みツリーのディレクトリ
            bases: ブランチを新規作成する場合の作成元候補（優先順）。存在するものが無ければルートから作る

        Returns:
            公開結果。差分が無い場合はコミットせず status=UNCHANGED

        Raises:
            PublishError: いずれかの段階で失敗した場合
        """
        source = Path(source)
        if not source.is_dir():
            raise PublishError(PublishStage.COPY, branch, f"source tree does not exist: {source}")

        self._checkout(branch, bases)
        removed = self._clear_tracked(branch)
        copied = self._copy_tree(source, branch)
        logger.debug(f"{branch}: cleared {removed} tracked files, copied {copied} files")

        self._stage(source, branch)
        try:
            status = self.repo.status_porcelain()
        except GitCommandError as e:
            raise PublishError(PublishStage.STAGE, branch, e.stderr or str(e)) from e

        if not status.strip():
            local_sha = self.repo.rev_parse("HEAD")
            logger.info(f"{branch} already contains version {version}, nothing to commit")
            pushed = False
            if self._needs_push(branch, local_sha):
                self._push(branch, f"refs/heads/{branch}:refs/heads/{branch}")
                pushed = True
            return PublishResult(branch=branch, status=PublishStatus.UNCHANGED, commit=local_sha, pushed=pushed)

        self._git(
            PublishStage.COMMIT,
            branch,
            "commit",
            "--quiet",
            "--no-verify",
            "--message",
            commit_message(version),
            env=self._author_env,
        )
        local_sha = self.repo.rev_parse("HEAD")
        logger.info(f"Committed version {version} to {branch} ({(local_sha or '')[:8]})")

        pushed = False
        if self.has_remote:
            self._push(branch, f"refs/heads/{branch}:refs/heads/{branch}")
            pushed = True
        else:
            logger.info("No remote configured, skipping push")
        return PublishResult(branch=branch, status=PublishStatus.COMMITTED, commit=local_sha, pushed=pushed)

    def resolve_commit(self, branch: str) -> str | None:
        """ブランチ先端の commit ID. ローカルに無くリモートにある場合は fetch して解決する."""
        sha = self.repo.rev_parse(f"refs/heads/{branch}")
        if sha is None and self.has_remote and self._remote_sha(branch, PublishStage.ALIAS):
            sha = self.repo.rev_parse(self._fetch_branch(branch, PublishStage.ALIAS))
        return sha

    def update_alias(self, alias: str, branch: str) -> str:
        """エイリアスブランチ（例: versions/latest）を branch の先端へ強制的に移動して push する.

        Raises:
            PublishError: 解決・更新・push に失敗した場合（stage=alias）
        """
        sha = self.resolve_commit(branch)
        if sha is None:
            raise PublishError(PublishStage.ALIAS, alias, f"{branch} does not exist")
        if self.repo.current_branch() == alias:
            raise PublishError(PublishStage.ALIAS, alias, "alias branch is checked out")

        self._git(PublishStage.ALIAS, alias, "branch", "--force", alias, sha)
        if self.has_remote:
            self._git(
                PublishStage.ALIAS,
                alias,
                "push",
                "--quiet",
                "--force",
                self.remote,
                f"refs/heads/{alias}:refs/heads/{alias}",
                env=self._auth_env,
            )
        logger.info(f"{alias} now points at {branch} ({sha[:8]})")
        return sha

    def restore(self, branch: str | None) -> None:
        """実行前にチェックアウトされていたブランチへ戻す."""
        if not branch or not self.repo.local_branch_exists(branch):
            return
        if self.repo.current_branch() == branch:
            return
        self._git(PublishStage.CHECKOUT, branch, "checkout", "--force", branch)
        self._git(PublishStage.CHECKOUT, branch, "clean", "-fd", "--quiet")
        logger.info(f"Restored checkout of {branch}")
