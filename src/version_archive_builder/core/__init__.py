"""バージョンアーカイブ構築のコア処理群.

- バージョン一覧の読み込み（manifest）
- 外部ツールの実行（runner）
- 一時作業ディレクトリ（workspace）
- ブランチへの公開（publisher）
"""

from .exceptions import (
    ArchiveBuilderError,
    ConfigError,
    ManifestError,
    PublishError,
    PublishStage,
    ToolExecutionError,
    WorkspaceError,
)
from .manifest import VersionDescriptor, find_duplicates, load_versions
from .publisher import PublishResult, PublishStatus, PublishTarget, RepositoryPublisher
from .runner import ExternalToolRunner, ToolResult
from .workspace import VersionWorkspace, version_workspace

__all__ = [
    "ArchiveBuilderError",
    "ConfigError",
    "ManifestError",
    "PublishError",
    "PublishStage",
    "ToolExecutionError",
    "WorkspaceError",
    "VersionDescriptor",
    "load_versions",
    "find_duplicates",
    "RepositoryPublisher",
    "PublishResult",
    "PublishStatus",
    "PublishTarget",
    "ExternalToolRunner",
    "ToolResult",
    "VersionWorkspace",
    "version_workspace",
]
