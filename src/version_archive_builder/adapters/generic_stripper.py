"""GenericStripper によるビルドのストリップ."""

from __future__ import annotations

from pathlib import Path

from ..core.runner import ExternalToolRunner
from .base_adapter import StripTool

DEFAULT_MODULE = "beatsaber"


class GenericStripperAdapter(StripTool):
    def __init__(
        self,
        executable: Path,
        *,
        module: str = DEFAULT_MODULE,
        runner: ExternalToolRunner | None = None,
    ) -> None:
        super().__init__(executable, runner)
        self.module = module

    def build_arguments(self, source: Path, dest: Path) -> list[str]:
        return ["strip", "-m", self.module, "-p", str(source), "-o", str(dest)]
