"""バージョンアーカイブのビルドパイプライン.

versions.json の各エントリについて順番に:

    1. ブランチ名を決定し、公開済みならスキップ
    2. 一時作業ディレクトリを確保
    3. ダウンロードツールでビルドを取得
    4. ストリップツールで成果物ツリーを生成し、version.txt を書き込む
    5. RepositoryPublisher でコミット・push（新規ブランチはマニフェスト上で直前のバージョンから分岐）
    6. 作業ディレクトリを必ず削除

1バージョンの失敗はそのバージョンの結果として記録し、次のバージョンの処理を続けます。
リトライは行いません（再実行時は公開済み判定により未完了分だけが処理される）。
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from loguru import logger

from .adapters import DepotDownloaderAdapter, DownloadTool, GenericStripperAdapter, StripTool
from .adapters.depot_downloader import DEFAULT_APP_ID, DEFAULT_DEPOT_ID
from .adapters.generic_stripper import DEFAULT_MODULE
from .config import PipelineConfig
from .core.exceptions import ArchiveBuilderError, ConfigError, PublishError
from .core.manifest import VersionDescriptor
from .core.publisher import PublishStatus, PublishTarget, RepositoryPublisher
from .core.runner import ExternalToolRunner
from .core.workspace import version_workspace


class OutcomeStatus(str, Enum):
    PUBLISHED = "published"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
    PLANNED = "planned"


# エイリアスブランチの移動先として有効な結果
_AVAILABLE = (OutcomeStatus.PUBLISHED, OutcomeStatus.UNCHANGED, OutcomeStatus.SKIPPED)


@dataclass(frozen=True)
class VersionOutcome:
    version: str
    branch: str
    status: OutcomeStatus
    reason: str | None = None
    commit: str | None = None
    pushed: bool = False

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "branch": self.branch,
            "status": self.status.value,
            "reason": self.reason,
            "commit": self.commit,
            "pushed": self.pushed,
        }


@dataclass
class RunSummary:
    outcomes: list[VersionOutcome] = field(default_factory=list)
    alias_branch: str | None = None
    alias_commit: str | None = None
    alias_error: str | None = None

    @property
    def failed(self) -> list[VersionOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def counts(self) -> dict[str, int]:
        counter = Counter(o.status.value for o in self.outcomes)
        return {status.value: counter.get(status.value, 0) for status in OutcomeStatus}


class PipelineOrchestrator:
    """バージョンを1つずつ順番に処理する.

    Publisher はチェックアウトでリポジトリ全体の状態を変更するため、
    バージョン間で並行処理はしない。
    """

    def __init__(
        self,
        publisher: RepositoryPublisher,
        downloader: DownloadTool,
        stripper: StripTool,
        *,
        temp_dir: Path | None = None,
        force: bool = False,
        alias_branch: str | None = None,
    ) -> None:
        self.publisher = publisher
        self.downloader = downloader
        self.stripper = stripper
        self.temp_dir = temp_dir
        self.force = force
        self.alias_branch = alias_branch

    def check_branch_names(self, descriptors: Sequence[VersionDescriptor]) -> None:
        """エイリアスブランチと同名になるバージョンが無いか確認する.

        Raises:
            ConfigError: バージョンのブランチ名がエイリアスブランチと一致する場合
        """
        if not self.alias_branch:
            return
        for descriptor in descriptors:
            if self.publisher.branch_name(descriptor.version) == self.alias_branch:
                raise ConfigError(
                    f"Version {descriptor.version!r} maps to the alias branch {self.alias_branch}; "
                    "rename the version or change publish.alias_branch"
                )

    def base_branches(
        self,
        descriptor: VersionDescriptor,
        history: Sequence[VersionDescriptor],
    ) -> list[str]:
        """新規ブランチの作成元候補. マニフェスト上で手前にあるバージョンのブランチを近い順に返す."""
        own = self.publisher.branch_name(descriptor.version)
        history = list(history)
        try:
            index = history.index(descriptor)
        except ValueError:
            return []
        bases: list[str] = []
        for earlier in reversed(history[:index]):
            branch = self.publisher.branch_name(earlier.version)
            if branch != own and branch not in bases:
                bases.append(branch)
        return bases

    def _publish(self, descriptor: VersionDescriptor, target: PublishTarget, bases: Sequence[str]) -> VersionOutcome:
        with version_workspace(self.temp_dir, label=descriptor.version) as workspace:
            self.downloader.download(descriptor, workspace.download)
            logger.info(f"Version {descriptor.version} downloaded")

            self.stripper.strip(workspace.download, workspace.stripped)
            workspace.discard_download()
            workspace.write_version_file(descriptor.version)
            logger.info(f"Version {descriptor.version} stripped")

            result = self.publisher.publish(descriptor.version, target.branch, workspace.stripped, bases=bases)

        status = OutcomeStatus.PUBLISHED if result.status is PublishStatus.COMMITTED else OutcomeStatus.UNCHANGED
        return VersionOutcome(
            version=descriptor.version,
            branch=target.branch,
            status=status,
            commit=result.commit,
            pushed=result.pushed,
        )

    def process_version(self, descriptor: VersionDescriptor, bases: Sequence[str] = ()) -> VersionOutcome:
        """1バージョンを処理する. 例外は送出せず、失敗は FAILED として返す.

        Args:
            descriptor: 処理するバージョン
            bases: ブランチを新規作成する場合の作成元候補（優先順）
        """
        target = self.publisher.target(descriptor.version)
        try:
            if not self.force and self.publisher.is_published(target.branch):
                logger.info(f"Version {descriptor.version} already exists in branch {target.branch}, skipping")
                return VersionOutcome(descriptor.version, target.branch, OutcomeStatus.SKIPPED)
            return self._publish(descriptor, target, bases)
        except ArchiveBuilderError as e:
            logger.error(f"Version {descriptor.version} failed: {e}")
            return VersionOutcome(descriptor.version, target.branch, OutcomeStatus.FAILED, reason=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error while processing version {descriptor.version}")
            return VersionOutcome(
                descriptor.version,
                target.branch,
                OutcomeStatus.FAILED,
                reason=f"{type(e).__name__}: {e}",
            )

    def plan(self, descriptors: Sequence[VersionDescriptor]) -> list[VersionOutcome]:
        """何も変更せずに各バージョンの処理予定（スキップ or 処理）を返す.

        Raises:
            ConfigError: バージョンのブランチ名がエイリアスブランチと一致する場合
        """
        self.check_branch_names(descriptors)
        planned = []
        for descriptor in descriptors:
            branch = self.publisher.target(descriptor.version).branch
            try:
                published = not self.force and self.publisher.is_published(branch)
            except PublishError as e:
                planned.append(VersionOutcome(descriptor.version, branch, OutcomeStatus.FAILED, reason=str(e)))
                continue
            status = OutcomeStatus.SKIPPED if published else OutcomeStatus.PLANNED
            logger.info(f"{descriptor.version} -> {branch}: {status.value}")
            planned.append(VersionOutcome(descriptor.version, branch, status))
        return planned

    def _update_alias(self, summary: RunSummary) -> None:
        if not self.alias_branch:
            return
        available = [o for o in summary.outcomes if o.status in _AVAILABLE]
        if not available:
            return
        newest = available[-1]
        summary.alias_branch = self.alias_branch
        try:
            summary.alias_commit = self.publisher.update_alias(self.alias_branch, newest.branch)
        except PublishError as e:
            logger.error(f"Failed to update {self.alias_branch}: {e}")
            summary.alias_error = str(e)

    def run(
        self,
        descriptors: Sequence[VersionDescriptor],
        history: Sequence[VersionDescriptor] | None = None,
    ) -> RunSummary:
        """全バージョンを順番に処理する.

        Args:
            descriptors: 処理順に並んだバージョン記述子
            history: 新規ブランチの作成元を決めるためのマニフェスト全体（省略時は descriptors）

        Returns:
            バージョンごとの結果

        Raises:
            ConfigError: バージョンのブランチ名がエイリアスブランチと一致する場合
        """
        self.check_branch_names(descriptors)
        history = list(history if history is not None else descriptors)
        summary = RunSummary()
        initial_branch = self.publisher.current_branch()
        total = len(descriptors)
        try:
            for index, descriptor in enumerate(descriptors, start=1):
                logger.info(f"[{index}/{total}] Processing version {descriptor.version}")
                summary.outcomes.append(self.process_version(descriptor, self.base_branches(descriptor, history)))
            self._update_alias(summary)
        finally:
            try:
                self.publisher.restore(initial_branch)
            except PublishError as e:
                logger.warning(f"Could not restore {initial_branch}: {e}")

        counts = summary.counts()
        logger.info(
            f"Run finished: {counts['published']} published, {counts['unchanged']} unchanged, "
            f"{counts['skipped']} skipped, {counts['failed']} failed"
        )
        return summary


def build_pipeline(
    config: PipelineConfig,
    runner: ExternalToolRunner | None = None,
    *,
    download_executable: Path | None = None,
    strip_executable: Path | None = None,
) -> PipelineOrchestrator:
    """設定からパイプライン一式を組み立てる.

    実行ファイルのパスを省略した場合は bin_dir と tools.yml の設定から決める。
    """
    settings = config.settings
    credentials = config.credentials
    runner = runner or ExternalToolRunner()

    publisher = RepositoryPublisher(
        config.repo_path,
        author_name=credentials.git_author_name,
        author_email=credentials.git_author_email,
        token=credentials.github_token,
        remote=settings.publish.remote,
        branch_template=settings.publish.branch_template,
        preserved_paths=settings.publish.preserved_paths,
    )
    download_options = settings.download_tool.options
    downloader = DepotDownloaderAdapter(
        download_executable or settings.download_tool.executable_path(config.bin_dir),
        username=credentials.steam_username,
        password=credentials.steam_password,
        app_id=download_options.get("app_id", DEFAULT_APP_ID),
        depot_id=download_options.get("depot_id", DEFAULT_DEPOT_ID),
        runner=runner,
    )
    stripper = GenericStripperAdapter(
        strip_executable or settings.strip_tool.executable_path(config.bin_dir),
        module=settings.strip_tool.options.get("module", DEFAULT_MODULE),
        runner=runner,
    )
    return PipelineOrchestrator(
        publisher,
        downloader,
        stripper,
        temp_dir=config.temp_dir,
        force=config.force,
        alias_branch=settings.publish.alias_branch,
    )
