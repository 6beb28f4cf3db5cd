"""外部ツールの取得.

GitHub の latest release から対象プラットフォーム用の zip を取得し、
``<bin_dir>/<ツール名>/`` に展開します。既に実行ファイルがあれば再取得しません。
"""

from __future__ import annotations

import fnmatch
import os
import shutil
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger

from version_archive_builder.config import BuilderSettings, ToolSettings
from version_archive_builder.core.exceptions import ArchiveBuilderError

GITHUB_API = "https://api.github.com"
USER_AGENT = "version-archive-builder"


class ToolAcquisitionError(ArchiveBuilderError):
    """外部ツールの取得・展開に失敗した場合の例外."""


@dataclass(frozen=True)
class ToolPaths:
    download_tool: Path
    strip_tool: Path


def _client(token: str | None = None) -> httpx.Client:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/vnd.github+json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(headers=headers, follow_redirects=True, timeout=60)


def fetch_latest_release(client: httpx.Client, release_repo: str) -> dict:
    """GitHub API から最新リリース情報を取得する."""
    url = f"{GITHUB_API}/repos/{release_repo}/releases/latest"
    logger.debug(f"Fetching latest release info: {url}")
    try:
        response = client.get(url)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ToolAcquisitionError(f"Failed to get latest release of {release_repo}: {e}") from e


def select_asset(release: dict, pattern: str) -> dict:
    """リリースアセットの中から名前がパターンに一致する最初のものを返す.

    Args:
        release: GitHub API のリリース情報
        pattern: fnmatch 形式のアセット名パターン

    Raises:
        ToolAcquisitionError: 一致するアセットが無い場合
    """
    assets = release.get("assets") or []
    if not assets:
        raise ToolAcquisitionError(f"No assets found in release {release.get('tag_name', '?')}")
    for asset in assets:
        if fnmatch.fnmatch(asset.get("name", ""), pattern) and asset.get("browser_download_url"):
            return asset
    names = ", ".join(a.get("name", "?") for a in assets)
    raise ToolAcquisitionError(f"No asset matching {pattern!r} (available: {names})")


def _extract_zip(archive_path: Path, target_dir: Path) -> None:
    target_root = target_dir.resolve()
    with zipfile.ZipFile(archive_path) as archive:
        for member in archive.infolist():
            destination = (target_dir / member.filename).resolve()
            # zip 内の相対パスで展開先の外へ書き出さない
            if destination != target_root and target_root not in destination.parents:
                raise ToolAcquisitionError(f"Unsafe path in archive {archive_path.name}: {member.filename}")
        archive.extractall(target_dir)


def _make_executable(path: Path) -> None:
    if os.name == "nt":
        return
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def download_tool(client: httpx.Client, tool: ToolSettings, bin_dir: Path, platform: str | None = None) -> Path:
    """ツールの最新リリースをダウンロードして展開し、実行ファイルのパスを返す."""
    release = fetch_latest_release(client, tool.release_repo)
    asset = select_asset(release, tool.asset_pattern(platform))
    logger.info(f"Downloading {tool.name} {release.get('tag_name', '')} ({asset['name']})")

    bin_dir.mkdir(parents=True, exist_ok=True)
    target_dir = tool.tool_dir(bin_dir)
    temp_zip = bin_dir / f"{tool.name.lower()}_temp.zip"
    try:
        with client.stream("GET", asset["browser_download_url"]) as r:
            r.raise_for_status()
            with open(temp_zip, "wb") as f:
                for chunk in r.iter_bytes():
                    f.write(chunk)
        target_dir.mkdir(parents=True, exist_ok=True)
        _extract_zip(temp_zip, target_dir)
    except (httpx.HTTPError, OSError, zipfile.BadZipFile) as e:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise ToolAcquisitionError(f"Failed to download {tool.name}: {e}") from e
    finally:
        temp_zip.unlink(missing_ok=True)

    executable = tool.executable_path(bin_dir, platform)
    if not executable.exists():
        raise ToolAcquisitionError(f"{executable.name} not found after extracting {asset['name']}")
    _make_executable(executable)
    logger.info(f"{tool.name} has been downloaded and extracted to {target_dir}")
    return executable


def ensure_tool(
    tool: ToolSettings,
    bin_dir: Path,
    client: httpx.Client | None = None,
    platform: str | None = None,
) -> Path:
    """実行ファイルが無ければ取得する."""
    executable = tool.executable_path(bin_dir, platform)
    if executable.exists():
        logger.info(f"Using existing {tool.name}: {executable}")
        return executable

    logger.warning(f"{executable.name} does not exist, downloading")
    if client is not None:
        return download_tool(client, tool, bin_dir, platform)
    with _client() as own_client:
        return download_tool(own_client, tool, bin_dir, platform)


def ensure_tools(settings: BuilderSettings, bin_dir: Path, token: str | None = None) -> ToolPaths:
    """ダウンロードツール・ストリップツールの両方を用意する.

    Raises:
        ToolAcquisitionError: いずれかの取得に失敗した場合
    """
    bin_dir = Path(bin_dir)
    with _client(token) as client:
        return ToolPaths(
            download_tool=ensure_tool(settings.download_tool, bin_dir, client),
            strip_tool=ensure_tool(settings.strip_tool, bin_dir, client),
        )


def reset_tools(bin_dir: Path) -> None:
    """取得済みツールを全て削除する."""
    bin_dir = Path(bin_dir)
    if bin_dir.exists():
        logger.warning(f"Deleting downloaded tools in {bin_dir}")
        shutil.rmtree(bin_dir)
