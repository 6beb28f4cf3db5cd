"""実行レポート（run_report.json）の生成と管理."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from loguru import logger

from version_archive_builder.builder import RunSummary, VersionOutcome
from version_archive_builder.core.exceptions import ConfigError


def create_run_report(
    outcomes: list[VersionOutcome],
    *,
    started_at: datetime,
    finished_at: datetime,
    repo_path: Path,
    versions_path: Path,
    builder_version: str,
    summary: RunSummary | None = None,
    dry_run: bool = False,
) -> dict:
    """実行レポートを作成.

    Args:
        outcomes: バージョンごとの結果
        started_at: 開始時刻（UTC）
        finished_at: 終了時刻（UTC）
        repo_path: 公開先リポジトリのパス
        versions_path: versions.json のパス
        builder_version: builder_ci のバージョン
        summary: エイリアスブランチ更新結果を含む実行サマリ
        dry_run: 処理予定の出力のみか

    Returns:
        レポート辞書
    """
    counts: dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1

    report = {
        "run_info": {
            "started_at": started_at.isoformat(),
            "finished_at": finished_at.isoformat(),
            "builder_version": builder_version,
            "repo_path": str(repo_path),
            "versions_file": str(versions_path),
            "dry_run": dry_run,
        },
        "counts": counts,
        "versions": [o.to_dict() for o in outcomes],
    }

    if summary and summary.alias_branch:
        report["alias"] = {
            "branch": summary.alias_branch,
            "commit": summary.alias_commit,
            "error": summary.alias_error,
        }

    return report


def write_run_report(report: dict, output_path: Path) -> None:
    """レポートをJSONファイルとして保存."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)

    logger.info(f"Run report written to {output_path}")


def load_run_report(report_path: Path) -> dict:
    """既存のレポートを読み込む. 存在しなければ空の辞書.

    Raises:
        ConfigError: JSONとして読めない、またはレポートの形式でない場合
    """
    if not report_path.exists():
        logger.warning(f"Run report not found: {report_path}")
        return {}

    try:
        with open(report_path, encoding="utf-8") as f:
            report = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid run report {report_path}: {e}") from e
    if not isinstance(report, dict) or not isinstance(report.get("versions", []), list):
        raise ConfigError(f"{report_path} is not a run report")

    logger.info(f"Loaded run report from {report_path}")
    return report


def failed_versions(report: dict) -> list[str]:
    """前回の実行で失敗したバージョンを返す（--only に渡して再実行する用途）."""
    return [
        str(v["version"])
        for v in report.get("versions", [])
        if isinstance(v, dict) and v.get("status") == "failed" and v.get("version")
    ]
