"""versions.json の読み込みと検証.

versions.json はバージョン記述子の配列です::

    [
        {"version": "1.29.1", "manifest": "7885463693258878"},
        {"version": "1.30.0", "manifest": "2155306716355580"}
    ]

``{"versions": [...]}`` 形式も受け付けます。配列の順序がそのまま処理順序・公開順序になります。
重複したバージョンは除去しません（呼び出し側で扱う）。
"""

from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .exceptions import ManifestError

# git のref名として使えない文字（ブランチ名・ディレクトリ名に使うため）
_FORBIDDEN_VERSION_CHARS = re.compile(r"[\s~^:?*\[\\]")


@dataclass(frozen=True)
class VersionDescriptor:
    """処理対象の1バージョン.

    Attributes:
        version: バージョン文字列（ブランチ名・ディレクトリ名に使用）
        manifest_id: ダウンロードツールに渡す不透明なマニフェストID
    """

    version: str
    manifest_id: str


def _validate_version(version: str, index: int) -> None:
    if _FORBIDDEN_VERSION_CHARS.search(version):
        raise ManifestError(f"Entry {index}: version {version!r} contains characters not allowed in a branch name")
    if ".." in version or version.startswith(("/", ".", "-")) or version.endswith(("/", ".", ".lock")):
        raise ManifestError(f"Entry {index}: version {version!r} is not a valid branch component")


def _parse_entry(entry: object, index: int) -> VersionDescriptor:
    if not isinstance(entry, dict):
        raise ManifestError(f"Entry {index}: expected an object, got {type(entry).__name__}")

    version = entry.get("version")
    manifest_id = entry.get("manifest")

    if not isinstance(version, str) or not version.strip():
        raise ManifestError(f"Entry {index}: 'version' must be a non-empty string")
    # マニフェストIDは数値で書かれていることがあるため int も許可する
    if isinstance(manifest_id, int) and not isinstance(manifest_id, bool):
        manifest_id = str(manifest_id)
    if not isinstance(manifest_id, str) or not manifest_id.strip():
        raise ManifestError(f"Entry {index}: 'manifest' must be a non-empty string")

    version = version.strip()
    _validate_version(version, index)
    return VersionDescriptor(version=version, manifest_id=manifest_id.strip())


def load_versions(path: Path) -> list[VersionDescriptor]:
    """versions.json を読み込んでバージョン記述子のリストを返す.

    Args:
        path: versions.json のパス

    Returns:
        ファイル内の順序を保ったバージョン記述子のリスト

    Raises:
        ManifestError: ファイルが存在しない、JSONとして不正、エントリが空・不正な場合
    """
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Versions file not found: {path}")

    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ManifestError(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("versions")
    if not isinstance(data, list):
        raise ManifestError(f"{path} must contain a JSON array of versions")
    if not data:
        raise ManifestError(f"{path} does not declare any versions")

    descriptors = [_parse_entry(entry, index) for index, entry in enumerate(data)]
    logger.info(f"Loaded {len(descriptors)} versions from {path}")
    return descriptors


def find_duplicates(descriptors: list[VersionDescriptor]) -> list[str]:
    """複数回宣言されているバージョン文字列を返す."""
    counts = Counter(d.version for d in descriptors)
    return [version for version, count in counts.items() if count > 1]
