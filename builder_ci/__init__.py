"""builder_ci: CI統合レイヤ.

外部ツールの取得、実行レポート生成、オーケストレーションを提供する。
"""

from builder_ci.fetcher import (
    ToolAcquisitionError,
    ToolPaths,
    ensure_tool,
    ensure_tools,
    reset_tools,
    select_asset,
)
from builder_ci.report import (
    create_run_report,
    failed_versions,
    load_run_report,
    write_run_report,
)

__version__ = "0.1.0"

__all__ = [
    # fetcher
    "ToolAcquisitionError",
    "ToolPaths",
    "ensure_tool",
    "ensure_tools",
    "reset_tools",
    "select_asset",
    # report
    "create_run_report",
    "write_run_report",
    "load_run_report",
    "failed_versions",
]
