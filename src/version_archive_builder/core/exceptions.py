"""Archive builder exceptions.

カスタム例外クラスを定義します。

ConfigError / ManifestError は実行全体を止める致命的エラー、
ToolExecutionError / WorkspaceError / PublishError はバージョン単位で
記録され、次のバージョンの処理は継続されます。
"""

from __future__ import annotations

from enum import Enum


class ArchiveBuilderError(Exception):
    """全ての例外の基底クラス."""


class ConfigError(ArchiveBuilderError):
    """設定値・環境変数が不足または不正な場合の例外."""


class ManifestError(ArchiveBuilderError):
    """versions.json が読めない、または形式が不正な場合の例外."""


class ToolExecutionError(ArchiveBuilderError):
    """外部ツールが非ゼロ終了した場合の例外.

    Attributes:
        tool: ツール名（実行ファイル名）
        exit_code: 終了コード（起動自体に失敗した場合は None）
        stderr: 捕捉した標準エラー出力
    """

    def __init__(self, tool: str, exit_code: int | None, stderr: str = "") -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is None:
            message = f"{tool} could not be started"
        else:
            message = f"{tool} failed with exit code {exit_code}"
        tail = stderr.strip().splitlines()[-1:] if stderr else []
        if tail:
            message = f"{message}: {tail[0]}"
        super().__init__(message)


class WorkspaceError(ArchiveBuilderError):
    """作業ディレクトリの作成・削除に失敗した場合の例外."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Workspace error at {path}: {reason}")


class PublishStage(str, Enum):
    """PublishError が発生した処理段階."""

    LOOKUP = "lookup"
    BRANCH = "branch"
    CHECKOUT = "checkout"
    COPY = "copy"
    STAGE = "stage"
    COMMIT = "commit"
    PUSH = "push"
    ALIAS = "alias"


class PublishError(ArchiveBuilderError):
    """Git への公開処理のいずれかの段階で失敗した場合の例外.

    Attributes:
        stage: 失敗した段階
        branch: 対象ブランチ名
    """

    def __init__(self, stage: PublishStage, branch: str, reason: str) -> None:
        self.stage = stage
        self.branch = branch
        self.reason = reason
        super().__init__(f"Publish failed at stage '{stage.value}' for {branch}: {reason}")
