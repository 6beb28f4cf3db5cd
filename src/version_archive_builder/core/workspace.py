"""バージョン単位の一時作業ディレクトリ.

レイアウト::

    <base>/vab-<version>-<random>/
        download/   ダウンロードツールの出力（ストリップ後に削除）
        stripped/   ストリップ後の成果物ツリー（version.txt を含む）
"""

from __future__ import annotations

import re
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .exceptions import WorkspaceError

VERSION_FILE = "version.txt"

_UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class VersionWorkspace:
    root: Path
    disposed: bool = False

    @property
    def download(self) -> Path:
        return self.root / "download"

    @property
    def stripped(self) -> Path:
        return self.root / "stripped"

    @classmethod
    def create(cls, base_dir: Path | None = None, label: str = "") -> VersionWorkspace:
        """衝突しない作業ディレクトリを作成し、サブディレクトリも作っておく.

        Args:
            base_dir: 親ディレクトリ（None ならシステムの一時ディレクトリ）
            label: ディレクトリ名に含める識別子（バージョン文字列など）

        Raises:
            WorkspaceError: ディレクトリ作成に失敗した場合
        """
        label = _UNSAFE_LABEL_CHARS.sub("_", label)
        prefix = f"vab-{label}-" if label else "vab-"
        try:
            if base_dir is not None:
                Path(base_dir).mkdir(parents=True, exist_ok=True)
            root = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None))
            workspace = cls(root=root)
            workspace.download.mkdir()
            workspace.stripped.mkdir()
        except OSError as e:
            raise WorkspaceError(str(base_dir or tempfile.gettempdir()), str(e)) from e

        logger.debug(f"Created workspace {root}")
        return workspace

    def discard_download(self) -> None:
        """ストリップ済みの生ダウンロードを先に削除する."""
        if self.download.exists():
            try:
                shutil.rmtree(self.download)
            except OSError as e:
                raise WorkspaceError(str(self.download), str(e)) from e

    def write_version_file(self, version: str) -> Path:
        path = self.stripped / VERSION_FILE
        try:
            path.write_text(version, encoding="utf-8")
        except OSError as e:
            raise WorkspaceError(str(path), str(e)) from e
        return path

    def dispose(self) -> None:
        """作業ディレクトリを再帰的に削除する. 二度目以降の呼び出しは何もしない."""
        if self.disposed:
            return
        self.disposed = True
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorkspaceError(str(self.root), str(e)) from e
        logger.debug(f"Disposed workspace {self.root}")


@contextmanager
def version_workspace(base_dir: Path | None = None, label: str = "") -> Iterator[VersionWorkspace]:
    """成功・失敗にかかわらず必ず dispose される作業ディレクトリ."""
    workspace = VersionWorkspace.create(base_dir, label)
    try:
        yield workspace
    finally:
        workspace.dispose()
