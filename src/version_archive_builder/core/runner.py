"""外部ツールの実行.

実行ファイルを引数付きで起動し、標準出力・標準エラーを行単位で逐次転送します。
成否は終了コードのみで判定し、出力内容は一切解釈しません。
"""

from __future__ import annotations

import os
import subprocess
import threading
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from loguru import logger

from .exceptions import ToolExecutionError

# (ツール名, ストリーム名 "stdout"/"stderr", 行) を受け取るコールバック
LineHandler = Callable[[str, str, str], None]

# エラーメッセージ用に保持する標準エラーの最大行数
STDERR_TAIL_LINES = 200

MASK = "***"


def log_line(tool: str, stream: str, line: str) -> None:
    """デフォルトの行ハンドラ: DEBUG レベルでログに流す."""
    logger.debug(f"[{tool}:{stream}] {line}")


def mask_arguments(command: Sequence[str], secrets: Iterable[str]) -> str:
    """ログ出力用にコマンドラインの秘密情報を伏せ字にする."""
    hidden = {s for s in secrets if s}
    return " ".join(MASK if part in hidden else part for part in command)


@dataclass
class ToolResult:
    tool: str
    exit_code: int
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)


class ExternalToolRunner:
    """外部ツールを起動して終了を待つ.

    子プロセスはコンソールを共有せず（POSIX では新しいセッション、Windows では
    ウィンドウ無し）、stdin は閉じた状態で起動します。stdout/stderr はそれぞれ専用の
    スレッドで読み出し、プロセス終了前でも行が届き次第 ``on_line`` に渡します。
    呼び出し自体はプロセスが終了するまでブロックします。
    """

    def __init__(self, on_line: LineHandler | None = None) -> None:
        self._on_line = on_line or log_line

    def _emit(self, tool: str, stream: str, line: str) -> None:
        try:
            self._on_line(tool, stream, line)
        except Exception as e:
            # ハンドラが失敗してもパイプは最後まで読み出す
            logger.warning(f"Output handler failed for {tool}: {e}")

    def _pump(self, tool: str, stream_name: str, stream: IO[str], sink: deque[str] | list[str]) -> None:
        with stream:
            for raw in iter(stream.readline, ""):
                line = raw.rstrip("\r\n")
                sink.append(line)
                self._emit(tool, stream_name, line)

    def run(
        self,
        executable: Path | str,
        arguments: Sequence[str],
        *,
        cwd: Path | None = None,
        secrets: Iterable[str] = (),
    ) -> ToolResult:
        """ツールを実行する.

        Args:
            executable: 実行ファイルのパス
            arguments: 引数（順序どおりに渡す。シェルは経由しない）
            cwd: 作業ディレクトリ
            secrets: ログ出力時に伏せ字にする引数値

        Returns:
            終了コード0の実行結果

        Raises:
            ToolExecutionError: 起動に失敗した、または非ゼロで終了した場合
        """
        tool = Path(executable).name
        command = [str(executable), *arguments]
        logger.info(f"Running {tool}: {mask_arguments(command, secrets)}")

        popen_kwargs: dict = {}
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
        else:
            popen_kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **popen_kwargs,
            )
        except OSError as e:
            raise ToolExecutionError(tool, None, str(e)) from e

        stdout_lines: list[str] = []
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        readers = [
            threading.Thread(target=self._pump, args=(tool, "stdout", process.stdout, stdout_lines), daemon=True),
            threading.Thread(target=self._pump, args=(tool, "stderr", process.stderr, stderr_tail), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            for reader in readers:
                reader.join()
            exit_code = process.wait()
        except BaseException:
            process.kill()
            process.wait()
            raise

        if exit_code != 0:
            logger.error(f"{tool} exited with code {exit_code}")
            raise ToolExecutionError(tool, exit_code, "\n".join(stderr_tail))

        logger.debug(f"{tool} finished successfully")
        return ToolResult(tool=tool, exit_code=exit_code, stdout=stdout_lines, stderr=list(stderr_tail))
