"""外部ツール（ダウンロード・ストリップ）用アダプタ群."""

from .base_adapter import BaseToolAdapter, DownloadTool, StripTool
from .depot_downloader import DepotDownloaderAdapter
from .generic_stripper import GenericStripperAdapter

__all__ = [
    "BaseToolAdapter",
    "DownloadTool",
    "StripTool",
    "DepotDownloaderAdapter",
    "GenericStripperAdapter",
]
