"""実行設定.

起動時に一度だけ組み立て、Publisher・ツールアダプタ・オーケストレータへ明示的に渡します。
コア処理は環境変数を直接参照しません。
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .core.exceptions import ConfigError
from .core.publisher import DEFAULT_BRANCH_TEMPLATE, DEFAULT_PRESERVED_PATHS

REQUIRED_ENV_VARS = (
    "STEAM_USERNAME",
    "STEAM_PASSWORD",
    "GIT_AUTHOR_NAME",
    "GIT_AUTHOR_EMAIL",
    "GITHUB_TOKEN",
)

DEFAULT_ALIAS_BRANCH = "versions/latest"


def current_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


@dataclass(frozen=True)
class Credentials:
    git_author_name: str
    git_author_email: str
    github_token: str
    steam_username: str
    steam_password: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> Credentials:
        """環境変数から認証情報を読み込む.

        Raises:
            ConfigError: 必須の環境変数が未設定または空の場合（不足分を全て列挙）
        """
        missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name, "").strip()]
        if missing:
            raise ConfigError(f"Environment variables not set: {', '.join(missing)}")
        return cls(
            git_author_name=environ["GIT_AUTHOR_NAME"].strip(),
            git_author_email=environ["GIT_AUTHOR_EMAIL"].strip(),
            github_token=environ["GITHUB_TOKEN"].strip(),
            steam_username=environ["STEAM_USERNAME"].strip(),
            steam_password=environ["STEAM_PASSWORD"],
        )

    def __repr__(self) -> str:
        return f"Credentials(git_author_name={self.git_author_name!r}, git_author_email={self.git_author_email!r}, ...)"


@dataclass(frozen=True)
class ToolSettings:
    """外部ツール1つ分の取得・実行設定（tools.yml の1エントリ）."""

    name: str
    release_repo: str
    assets: dict[str, str]
    executables: dict[str, str]
    options: dict[str, str] = field(default_factory=dict)

    def _for_platform(self, table: dict[str, str], platform: str, what: str) -> str:
        value = table.get(platform) or table.get("default")
        if not value:
            raise ConfigError(f"No {what} configured for {self.name} on {platform}")
        return value

    def asset_pattern(self, platform: str | None = None) -> str:
        return self._for_platform(self.assets, platform or current_platform(), "release asset")

    def tool_dir(self, bin_dir: Path) -> Path:
        return Path(bin_dir) / self.name

    def executable_path(self, bin_dir: Path, platform: str | None = None) -> Path:
        return self.tool_dir(bin_dir) / self._for_platform(self.executables, platform or current_platform(), "executable")


@dataclass(frozen=True)
class PublishSettings:
    branch_template: str = DEFAULT_BRANCH_TEMPLATE
    alias_branch: str | None = DEFAULT_ALIAS_BRANCH
    remote: str = "origin"
    preserved_paths: tuple[str, ...] = DEFAULT_PRESERVED_PATHS


@dataclass(frozen=True)
class BuilderSettings:
    publish: PublishSettings
    download_tool: ToolSettings
    strip_tool: ToolSettings


@dataclass(frozen=True)
class PipelineConfig:
    repo_path: Path
    versions_path: Path
    bin_dir: Path
    credentials: Credentials
    settings: BuilderSettings
    temp_dir: Path | None = None
    force: bool = False


def _mapping(value: object, key: str) -> dict:
    """省略時は空の辞書. 辞書以外は設定ミス."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping, got {type(value).__name__}")
    return value


def _parse_tool(raw: object, key: str) -> ToolSettings:
    if not isinstance(raw, dict):
        raise ConfigError(f"tools.{key} must be a mapping")
    try:
        name = str(raw["name"])
        release_repo = str(raw["release_repo"])
        assets = raw["assets"]
        executables = raw["executables"]
    except KeyError as e:
        raise ConfigError(f"tools.{key} is missing {e.args[0]!r}") from e
    if not isinstance(assets, dict) or not isinstance(executables, dict):
        raise ConfigError(f"tools.{key}.assets and tools.{key}.executables must be mappings")
    options = _mapping(raw.get("options"), f"tools.{key}.options")
    return ToolSettings(
        name=name,
        release_repo=release_repo,
        assets={str(k): str(v) for k, v in assets.items()},
        executables={str(k): str(v) for k, v in executables.items()},
        options={str(k): str(v) for k, v in options.items()},
    )


def _preserved_paths(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"publish.preserved_paths must be a list, got {type(value).__name__}")
    return tuple(str(v) for v in value)


def load_settings(settings_yml: Path) -> BuilderSettings:
    """tools.yml を読み込む.

    Args:
        settings_yml: tools.yml ファイルのパス

    Returns:
        公開設定とツール設定

    Raises:
        ConfigError: ファイルが無い、または形式が不正な場合
    """
    settings_yml = Path(settings_yml)
    if not settings_yml.exists():
        raise ConfigError(f"Settings file not found: {settings_yml}")
    try:
        with open(settings_yml, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {settings_yml}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {settings_yml}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"{settings_yml} must contain a mapping")

    publish_raw = _mapping(config.get("publish"), "publish")
    # alias_branch: null で無効化
    alias_branch = publish_raw.get("alias_branch", DEFAULT_ALIAS_BRANCH)
    publish = PublishSettings(
        branch_template=str(publish_raw.get("branch_template", DEFAULT_BRANCH_TEMPLATE)),
        alias_branch=str(alias_branch) if alias_branch else None,
        remote=str(publish_raw.get("remote", "origin")),
        preserved_paths=_preserved_paths(publish_raw.get("preserved_paths", DEFAULT_PRESERVED_PATHS)),
    )
    if "{version}" not in publish.branch_template:
        raise ConfigError(f"publish.branch_template must contain '{{version}}': {publish.branch_template!r}")

    tools = _mapping(config.get("tools"), "tools")
    return BuilderSettings(
        publish=publish,
        download_tool=_parse_tool(tools.get("download"), "download"),
        strip_tool=_parse_tool(tools.get("strip"), "strip"),
    )
