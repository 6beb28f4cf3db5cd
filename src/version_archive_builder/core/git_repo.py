"""git コマンドの薄いラッパ.

全ての git 操作は ``git`` 実行ファイルをサブプロセスとして呼び出します。
"""

from __future__ import annotations

import base64
import os
import subprocess
from pathlib import Path

from loguru import logger

from .exceptions import ArchiveBuilderError


class GitCommandError(ArchiveBuilderError):
    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {self.stderr}")


def auth_env(token: str | None, username: str = "x-access-token") -> dict[str, str]:
    """HTTPS push/fetch 用の認証ヘッダを環境変数経由の git config として返す.

    コマンドライン引数に載せないため ``ps`` などから見えない。
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if not token:
        return env
    basic = base64.b64encode(f"{username}:{token}".encode()).decode("ascii")
    env.update(
        {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
        }
    )
    return env


class GitRepository:
    def __init__(self, path: Path, env: dict[str, str] | None = None) -> None:
        self.path = Path(path)
        self._env = dict(env or {})

    def run(
        self,
        *args: str,
        check: bool = True,
        env: dict[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """git サブコマンドを実行する.

        input を渡した場合はそれを標準入力へ書き込む（それ以外は stdin を閉じる）。

        Raises:
            GitCommandError: check=True かつ非ゼロ終了の場合
        """
        merged_env = {**os.environ, **self._env, **(env or {})}
        logger.debug(f"git {' '.join(args)}")
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.path,
                env=merged_env,
                input=input,
                stdin=subprocess.DEVNULL if input is None else None,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise GitCommandError(list(args), -1, str(e)) from e
        if check and result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stderr)
        return result

    def is_work_tree(self) -> bool:
        if not self.path.is_dir():
            return False
        result = self.run("rev-parse", "--is-inside-work-tree", check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def toplevel(self) -> Path:
        return Path(self.run("rev-parse", "--show-toplevel").stdout.strip())

    def current_branch(self) -> str | None:
        """チェックアウト中のブランチ名（detached HEAD なら None）."""
        result = self.run("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        name = result.stdout.strip()
        return name if result.returncode == 0 and name else None

    def rev_parse(self, ref: str) -> str | None:
        """ref を commit ID に解決する. 存在しなければ None（コミット0件のリポジトリでも None）."""
        result = self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        sha = result.stdout.strip()
        return sha if result.returncode == 0 and sha else None

    def local_branch_exists(self, branch: str) -> bool:
        return self.rev_parse(f"refs/heads/{branch}") is not None

    def remotes(self) -> list[str]:
        return self.run("remote").stdout.split()

    def remote_branch_sha(self, remote: str, branch: str, env: dict[str, str] | None = None) -> str | None:
        """リモート側ブランチの commit ID（存在しなければ None）."""
        result = self.run("ls-remote", "--heads", remote, f"refs/heads/{branch}", env=env)
        for line in result.stdout.splitlines():
            sha, _, ref = line.partition("\t")
            if ref.strip() == f"refs/heads/{branch}":
                return sha.strip()
        return None

    def tracked_files(self) -> list[str]:
        output = self.run("ls-files", "-z").stdout
        return [name for name in output.split("\0") if name]

    def is_tracked(self, path: Path) -> bool:
        result = self.run("ls-files", "--error-unmatch", "--", str(path), check=False)
        return result.returncode == 0

    def is_ignored(self, path: Path | str) -> bool:
        """.gitignore で除外されるか. ディレクトリは末尾に "/" を付けた文字列で渡す."""
        result = self.run("check-ignore", "--quiet", "--", str(path), check=False)
        if result.returncode not in (0, 1):
            raise GitCommandError(["check-ignore", str(path)], result.returncode, result.stderr)
        return result.returncode == 0

    def status_porcelain(self) -> str:
        return self.run("status", "--porcelain").stdout
