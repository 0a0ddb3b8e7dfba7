"""Contracts for the external editor and the system clipboard.

Front ends and tests supply their own implementations; these Protocols are
structural, so nothing needs to inherit from them. The subprocess-backed
defaults below cover the usual desktop setup.
"""
import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from snipbook.exceptions import ErrorCode, ExternalToolError

logger = logging.getLogger(__name__)


@runtime_checkable
class EditorLauncher(Protocol):
    """Contract for handing a content file to a text editor."""

    def edit(self, path: Path) -> None:
        """Open path in an editor and block until the user is done.

        The caller re-reads the file afterwards.
        """
        ...


@runtime_checkable
class Clipboard(Protocol):
    """Contract for exchanging plain UTF-8 text with the clipboard."""

    def read_text(self) -> str:
        ...

    def write_text(self, text: str) -> None:
        ...


class CommandEditorLauncher:
    """Runs an editor command (e.g. "$EDITOR") on the file and waits for it."""

    def __init__(self, command: Optional[str] = None):
        self.command = command or os.getenv("EDITOR", "vi")

    def edit(self, path: Path) -> None:
        argv = shlex.split(self.command) + [str(path)]
        if shutil.which(argv[0]) is None:
            raise ExternalToolError(
                f"Editor not found: {argv[0]}",
                command=self.command,
                code=ErrorCode.EXTERNAL_TOOL_MISSING,
            )
        logger.debug(f"Launching editor: {' '.join(argv)}")
        result = subprocess.run(argv, check=False)
        if result.returncode != 0:
            raise ExternalToolError(
                f"Editor exited with status {result.returncode}",
                command=self.command,
                returncode=result.returncode,
            )


# Tried in order; the first pair whose read command is installed wins
_CLIPBOARD_COMMANDS = [
    (["wl-paste", "--no-newline"], ["wl-copy"]),
    (["xclip", "-selection", "clipboard", "-o"], ["xclip", "-selection", "clipboard"]),
    (["pbpaste"], ["pbcopy"]),
]


class CommandClipboard:
    """Clipboard access through wl-clipboard, xclip or pbcopy/pbpaste."""

    def __init__(
        self,
        read_command: Optional[Sequence[str]] = None,
        write_command: Optional[Sequence[str]] = None,
        timeout: float = 5.0,
    ):
        if read_command is None or write_command is None:
            detected = self._detect()
            read_command = read_command or detected[0]
            write_command = write_command or detected[1]
        self.read_command: List[str] = list(read_command)
        self.write_command: List[str] = list(write_command)
        self.timeout = timeout

    @staticmethod
    def _detect():
        for read_cmd, write_cmd in _CLIPBOARD_COMMANDS:
            if shutil.which(read_cmd[0]) is not None:
                return read_cmd, write_cmd
        raise ExternalToolError(
            "No clipboard command found (install wl-clipboard or xclip)",
            code=ErrorCode.EXTERNAL_TOOL_MISSING,
        )

    def _run(self, argv: List[str], stdin: Optional[str] = None) -> str:
        try:
            result = subprocess.run(
                argv,
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"Clipboard command not found: {argv[0]}",
                command=" ".join(argv),
                code=ErrorCode.EXTERNAL_TOOL_MISSING,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                "Clipboard command timed out", command=" ".join(argv)
            ) from e

        if result.returncode != 0:
            raise ExternalToolError(
                "Clipboard command failed",
                command=" ".join(argv),
                returncode=result.returncode,
                stderr=result.stderr.strip() if result.stderr else None,
            )
        return result.stdout

    def read_text(self) -> str:
        return self._run(self.read_command)

    def write_text(self, text: str) -> None:
        self._run(self.write_command, stdin=text)
