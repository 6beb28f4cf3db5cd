"""DepotDownloader によるビルド取得."""

from __future__ import annotations

from pathlib import Path

from ..core.manifest import VersionDescriptor
from ..core.runner import ExternalToolRunner
from .base_adapter import DownloadTool

DEFAULT_APP_ID = "620980"
DEFAULT_DEPOT_ID = "620981"


class DepotDownloaderAdapter(DownloadTool):
    """``-app <id> -depot <id> -manifest <id> -dir <dir>`` 形式でビルドをダウンロードする."""

    def __init__(
        self,
        executable: Path,
        *,
        username: str,
        password: str,
        app_id: str = DEFAULT_APP_ID,
        depot_id: str = DEFAULT_DEPOT_ID,
        runner: ExternalToolRunner | None = None,
    ) -> None:
        super().__init__(executable, runner)
        self.username = username
        self.password = password
        self.app_id = str(app_id)
        self.depot_id = str(depot_id)

    def secrets(self) -> tuple[str, ...]:
        return (self.password,)

    def build_arguments(self, descriptor: VersionDescriptor, dest: Path) -> list[str]:
        return [
            "-app",
            self.app_id,
            "-depot",
            self.depot_id,
            "-manifest",
            descriptor.manifest_id,
            "-dir",
            str(dest),
            "-remember-password",
            "-username",
            self.username,
            "-password",
            self.password,
        ]
