"""パイプライン全体の結合テスト.

ダウンロード・ストリップツールは Python スクリプトで代用し、
実際のサブプロセス起動と git リポジトリへの公開を通しで確認する。
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from conftest import git, requires_git

from version_archive_builder.adapters import DownloadTool, StripTool
from version_archive_builder.builder import OutcomeStatus, PipelineOrchestrator
from version_archive_builder.core.manifest import VersionDescriptor
from version_archive_builder.core.publisher import RepositoryPublisher

pytestmark = [pytest.mark.integration, requires_git]

DOWNLOAD_SCRIPT = """
import pathlib, sys
manifest, dest = sys.argv[1], pathlib.Path(sys.argv[2])
if manifest.startswith("bad"):
    print("Manifest " + manifest + " not found", file=sys.stderr)
    sys.exit(3)
(dest / "Data").mkdir()
(dest / "Data" / "Game.dll").write_text("build " + manifest)
(dest / "Game.exe").write_text("exe")
print("Downloaded " + manifest)
"""

STRIP_SCRIPT = """
import pathlib, shutil, sys
source, dest = pathlib.Path(sys.argv[1]), pathlib.Path(sys.argv[2])
shutil.copytree(source / "Data", dest / "Data", dirs_exist_ok=True)
"""


class ScriptDownloader(DownloadTool):
    def build_arguments(self, descriptor: VersionDescriptor, dest: Path) -> list[str]:
        return ["-c", DOWNLOAD_SCRIPT, descriptor.manifest_id, str(dest)]


class ScriptStripper(StripTool):
    def build_arguments(self, source: Path, dest: Path) -> list[str]:
        return ["-c", STRIP_SCRIPT, str(source), str(dest)]


@pytest.fixture
def orchestrator(remote_repo: tuple[Path, Path], tmp_path: Path) -> PipelineOrchestrator:
    repo, _ = remote_repo
    temp_dir = tmp_path / "work"
    temp_dir.mkdir()
    publisher = RepositoryPublisher(repo, author_name="Archive Bot", author_email="bot@example.invalid")
    return PipelineOrchestrator(
        publisher,
        ScriptDownloader(Path(sys.executable)),
        ScriptStripper(Path(sys.executable)),
        temp_dir=temp_dir,
        alias_branch="versions/latest",
    )


VERSIONS = [
    VersionDescriptor("1.0.0", "1111"),
    VersionDescriptor("1.1.0", "bad-2222"),
    VersionDescriptor("1.2.0", "3333"),
]


def test_publishes_each_version(orchestrator: PipelineOrchestrator, remote_repo: tuple[Path, Path]) -> None:
    """バージョンごとにブランチが作成され、失敗したバージョンは他に影響しないこと."""
    repo, bare = remote_repo

    summary = orchestrator.run(VERSIONS)

    statuses = [o.status for o in summary.outcomes]
    assert statuses == [OutcomeStatus.PUBLISHED, OutcomeStatus.FAILED, OutcomeStatus.PUBLISHED]
    assert "Manifest bad-2222 not found" in summary.outcomes[1].reason

    assert git(bare, "show", "versions/1.0.0:Data/Game.dll") == "build 1111"
    assert git(bare, "show", "versions/1.2.0:version.txt") == "1.2.0"
    files = git(bare, "ls-tree", "-r", "--name-only", "versions/1.2.0").splitlines()
    assert "Game.exe" not in files
    assert git(bare, "branch", "--list", "versions/1.1.0") == ""
    # 失敗したバージョンを飛ばして直前の公開済みバージョンから分岐する
    assert git(bare, "rev-parse", "versions/1.2.0~1") == summary.outcomes[0].commit
    assert git(bare, "rev-list", "--count", "versions/1.0.0") == "1"

    # 最後に利用可能になったバージョンを指す
    assert git(bare, "rev-parse", "versions/latest") == summary.outcomes[2].commit
    # 実行前のブランチに戻る
    assert git(repo, "symbolic-ref", "--short", "HEAD") == "main"


def test_second_run_skips_published(orchestrator: PipelineOrchestrator) -> None:
    """2回目の実行では公開済みのバージョンをスキップし、失敗分だけ再処理すること."""
    orchestrator.run(VERSIONS)

    summary = orchestrator.run(VERSIONS)

    statuses = [o.status for o in summary.outcomes]
    assert statuses == [OutcomeStatus.SKIPPED, OutcomeStatus.FAILED, OutcomeStatus.SKIPPED]


def test_force_rebuild_is_unchanged(orchestrator: PipelineOrchestrator, remote_repo: tuple[Path, Path]) -> None:
    """--force で同じ内容を再生成してもコミットが増えないこと."""
    _, bare = remote_repo
    first = orchestrator.run(VERSIONS[:1])
    orchestrator.force = True

    second = orchestrator.run(VERSIONS[:1])

    assert second.outcomes[0].status is OutcomeStatus.UNCHANGED
    assert git(bare, "rev-parse", "versions/1.0.0") == first.outcomes[0].commit


def test_workspaces_are_removed(orchestrator: PipelineOrchestrator) -> None:
    """成功・失敗に関わらず一時作業ディレクトリが残らないこと."""
    orchestrator.run(VERSIONS)

    assert list(orchestrator.temp_dir.iterdir()) == []
