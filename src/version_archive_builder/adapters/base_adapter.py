"""外部ツール用アダプタ（基底クラス）.

ダウンロードツール・ストリップツールを共通インターフェースで扱うための
抽象基底クラスを定義します。アダプタはコマンドライン引数の組み立てだけを担当し、
プロセスの起動は ExternalToolRunner に任せます。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from ..core.manifest import VersionDescriptor
from ..core.runner import ExternalToolRunner, ToolResult


class BaseToolAdapter(ABC):
    """外部ツールアダプタの基底クラス."""

    def __init__(self, executable: Path, runner: ExternalToolRunner | None = None) -> None:
        self.executable = Path(executable)
        self.runner = runner or ExternalToolRunner()

    @property
    def name(self) -> str:
        return self.executable.name

    def secrets(self) -> tuple[str, ...]:
        """ログで伏せ字にすべき引数値."""
        return ()

    def _run(self, arguments: Sequence[str]) -> ToolResult:
        return self.runner.run(self.executable, arguments, secrets=self.secrets())


class DownloadTool(BaseToolAdapter):
    @abstractmethod
    def build_arguments(self, descriptor: VersionDescriptor, dest: Path) -> list[str]:
        """ダウンロードコマンドの引数を組み立てる."""
        ...

    def download(self, descriptor: VersionDescriptor, dest: Path) -> ToolResult:
        """descriptor のビルドを dest にダウンロードする.

        Raises:
            ToolExecutionError: ツールが非ゼロで終了した場合
        """
        return self._run(self.build_arguments(descriptor, dest))


class StripTool(BaseToolAdapter):
    @abstractmethod
    def build_arguments(self, source: Path, dest: Path) -> list[str]:
        """ストリップコマンドの引数を組み立てる."""
        ...

    def strip(self, source: Path, dest: Path) -> ToolResult:
        """source の生ビルドをストリップして dest に出力する.

        Raises:
            ToolExecutionError: ツールが非ゼロで終了した場合
        """
        return self._run(self.build_arguments(source, dest))
