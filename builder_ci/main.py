"""CI orchestrator: fetch tools, download and strip each listed version, and publish one branch per version."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from version_archive_builder.builder import OutcomeStatus, RunSummary, build_pipeline
from version_archive_builder.config import Credentials, PipelineConfig, load_settings
from version_archive_builder.core.exceptions import ArchiveBuilderError, ConfigError
from version_archive_builder.core.git_repo import GitRepository
from version_archive_builder.core.manifest import VersionDescriptor, find_duplicates, load_versions
from builder_ci import __version__
from builder_ci.fetcher import ensure_tools, reset_tools
from builder_ci.report import create_run_report, failed_versions, load_run_report, write_run_report

EXIT_OK = 0
EXIT_VERSION_FAILED = 1
EXIT_FATAL = 2


def _configure_logging(verbose: bool, log_file: Path | None) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=3, encoding="utf-8")


def _select_versions(descriptors: list[VersionDescriptor], only: list[str]) -> list[VersionDescriptor]:
    if not only:
        return descriptors
    wanted = set(only)
    unknown = wanted - {d.version for d in descriptors}
    if unknown:
        logger.warning(f"Versions not in versions file, ignoring: {', '.join(sorted(unknown))}")
    return [d for d in descriptors if d.version in wanted]


def _guard_paths(
    repo_path: Path,
    directories: list[Path | None],
    files: list[Path | None],
    tracked_ok: list[Path | None],
) -> None:
    """リポジトリ内にある作業用パスが .gitignore で除外されていることを確認する.

    除外されていないと、ツール本体や .env がバージョンブランチにコミットされるか、
    チェックアウト時の clean で削除されてしまう。
    """
    git = GitRepository(repo_path)
    if not git.is_work_tree():
        raise ConfigError(f"{repo_path} is not inside a git repository")
    toplevel = git.toplevel().resolve()
    allowed_tracked = {p.resolve() for p in tracked_ok if p}

    def check(path: Path, is_dir: bool) -> None:
        resolved = path.resolve()
        if resolved == toplevel:
            raise ConfigError(f"{path} must not be the repository root")
        if toplevel not in resolved.parents:
            return
        if git.is_ignored(f"{resolved}/" if is_dir else resolved):
            return
        if resolved in allowed_tracked and git.is_tracked(resolved):
            return
        relative = resolved.relative_to(toplevel).as_posix()
        raise ConfigError(f"{relative} is inside the repository but not ignored; add it to .gitignore")

    for directory in directories:
        if directory is not None:
            check(directory, True)
    for file in files:
        if file is not None:
            check(file, False)


def _log_summary(summary: RunSummary) -> None:
    for outcome in summary.outcomes:
        line = f"{outcome.version:<16} {outcome.status.value:<10} {outcome.branch}"
        if outcome.reason:
            line += f" ({outcome.reason})"
        if outcome.status is OutcomeStatus.FAILED:
            logger.error(line)
        else:
            logger.info(line)
    if summary.alias_error:
        logger.error(f"{summary.alias_branch} was not updated: {summary.alias_error}")


def orchestrate(
    versions_path: Path,
    repo_path: Path,
    bin_dir: Path,
    temp_dir: Path | None,
    tools_yml: Path,
    env_file: Path,
    force: bool,
    reset: bool,
    dry_run: bool,
    only: list[str],
    retry_report: Path | None,
    report_path: Path | None,
    log_file: Path | None,
) -> int:
    started_at = datetime.now(timezone.utc)

    if env_file.exists():
        load_dotenv(env_file, override=False)
        logger.debug(f"Loaded environment from {env_file}")

    settings = load_settings(tools_yml)
    credentials = Credentials.from_env(os.environ)

    manifest = load_versions(versions_path)
    duplicates = find_duplicates(manifest)
    if duplicates:
        logger.warning(f"Versions declared more than once: {', '.join(duplicates)}")

    only = list(only)
    if retry_report:
        retry = failed_versions(load_run_report(retry_report))
        logger.info(f"Retrying {len(retry)} failed versions from {retry_report}")
        only.extend(retry)
        if not retry:
            return EXIT_OK
    descriptors = _select_versions(manifest, only)

    _guard_paths(
        repo_path,
        directories=[bin_dir, temp_dir],
        files=[env_file if env_file.exists() else None, report_path, log_file, versions_path],
        tracked_ok=[versions_path],
    )

    if reset:
        reset_tools(bin_dir)

    config = PipelineConfig(
        repo_path=repo_path,
        versions_path=versions_path,
        bin_dir=bin_dir,
        credentials=credentials,
        settings=settings,
        temp_dir=temp_dir,
        force=force,
    )

    if dry_run:
        pipeline = build_pipeline(config)
        summary = RunSummary(outcomes=pipeline.plan(descriptors))
    else:
        tools = ensure_tools(settings, bin_dir, token=credentials.github_token)
        pipeline = build_pipeline(
            config,
            download_executable=tools.download_tool,
            strip_executable=tools.strip_tool,
        )
        summary = pipeline.run(descriptors, history=manifest)

    _log_summary(summary)

    if report_path:
        report = create_run_report(
            summary.outcomes,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            repo_path=repo_path,
            versions_path=versions_path,
            builder_version=__version__,
            summary=summary,
            dry_run=dry_run,
        )
        write_run_report(report, report_path)

    return EXIT_OK if summary.ok and not summary.alias_error else EXIT_VERSION_FAILED


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Download, strip and publish every version listed in versions.json")
    p.add_argument(
        "--versions",
        type=Path,
        default=Path("versions.json"),
        help="versions.json path",
    )
    p.add_argument(
        "--repo-path",
        type=Path,
        default=Path("."),
        help="git repository that receives one branch per version (default: current directory)",
    )
    p.add_argument("--bin-dir", type=Path, default=Path("bin"), help="directory for downloaded tools")
    p.add_argument(
        "--temp-dir",
        type=Path,
        default=None,
        help="parent directory for per-version workspaces (default: system temp)",
    )
    p.add_argument(
        "--tools-yml",
        type=Path,
        default=Path(__file__).parent / "tools.yml",
        help="tools.yml path",
    )
    p.add_argument("--env-file", type=Path, default=Path(".env"), help="dotenv file with credentials")
    p.add_argument("--force", action="store_true", help="Reprocess versions that are already published")
    p.add_argument("--reset-tools", action="store_true", help="Delete downloaded tools before running")
    p.add_argument("--dry-run", action="store_true", help="Only show which versions would be processed")
    p.add_argument(
        "--only",
        action="append",
        default=[],
        metavar="VERSION",
        help="Process only this version (repeatable)",
    )
    p.add_argument(
        "--retry-failed",
        type=Path,
        default=None,
        metavar="REPORT",
        help="Process only the versions that failed in a previous run report",
    )
    p.add_argument("--report", type=Path, default=None, help="write a JSON run report here")
    p.add_argument("--log-file", type=Path, default=None, help="additional DEBUG log file")
    p.add_argument("-v", "--verbose", action="store_true", help="Show tool output and git commands")

    args = p.parse_args(argv)
    _configure_logging(args.verbose, args.log_file)
    logger.info(f"version-archive-builder {__version__}")

    try:
        return orchestrate(
            versions_path=args.versions,
            repo_path=args.repo_path,
            bin_dir=args.bin_dir,
            temp_dir=args.temp_dir,
            tools_yml=args.tools_yml,
            env_file=args.env_file,
            force=args.force,
            reset=args.reset_tools,
            dry_run=args.dry_run,
            only=args.only,
            retry_report=args.retry_failed,
            report_path=args.report,
            log_file=args.log_file,
        )
    except ArchiveBuilderError as e:
        logger.error(str(e))
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
