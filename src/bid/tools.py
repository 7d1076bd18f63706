# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""External analysis tool abstractions."""

import logging
import subprocess
import threading
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_SECONDS: float = 30.0
DEFAULT_MAX_OUTPUT_BYTES: int = 10 * 1024 * 1024
READ_CHUNK_BYTES: int = 64 * 1024


class ToolInvocationError(RuntimeError):
    """Represent a failed external tool invocation."""


class ToolRunner(Protocol):
    """Define how external analysis tools are invoked."""

    def run(self, args: list[str]) -> str:
        """Run one tool and return its standard output.

        Args:
            args: Executable followed by its arguments.

        Returns:
            Decoded standard output.

        Raises:
            ToolInvocationError: If the tool cannot run, exits non-zero,
                times out, or produces more output than allowed.
        """


class SubprocessToolRunner:
    """Run external tools as blocking subprocesses."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        """Initialize runner limits.

        Args:
            timeout_seconds: Wall-clock limit per invocation.
            max_output_bytes: Maximum accepted standard output size.

        Raises:
            ValueError: If a limit is not greater than zero.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be > 0")
        self._timeout_seconds = timeout_seconds
        self._max_output_bytes = max_output_bytes

    def run(self, args: list[str]) -> str:
        """Run one tool with the configured limits.

        Standard output is read in chunks and the tool is killed as soon as
        it exceeds ``max_output_bytes``; standard error is discarded.

        Args:
            args: Executable followed by its arguments.

        Returns:
            Standard output decoded as UTF-8 with replacement.

        Raises:
            ToolInvocationError: On launch failure, non-zero exit, timeout or
                oversized output.
        """
        command = " ".join(args)
        try:
            process = subprocess.Popen(
                args, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            logger.warning(f"Tool could not be started (command={command} error={exc})")
            raise ToolInvocationError(f"{args[0]} could not be started: {exc}") from exc

        expired = threading.Event()

        def _expire() -> None:
            expired.set()
            process.kill()

        timer = threading.Timer(self._timeout_seconds, _expire)
        chunks: list[bytes] = []
        output_bytes = 0
        exceeded = False
        timer.start()
        try:
            with process:
                while True:
                    chunk = process.stdout.read(READ_CHUNK_BYTES)
                    if not chunk:
                        break
                    chunks.append(chunk)
                    output_bytes += len(chunk)
                    if output_bytes > self._max_output_bytes:
                        exceeded = True
                        process.kill()
                        break
                returncode = process.wait()
        finally:
            timer.cancel()

        if exceeded:
            logger.warning(
                f"Tool output exceeded limit (command={command} "
                f"output_bytes={output_bytes} max_output_bytes={self._max_output_bytes})"
            )
            raise ToolInvocationError(
                f"{args[0]} output exceeded {self._max_output_bytes} bytes"
            )
        if returncode != 0 and expired.is_set():
            logger.warning(
                f"Tool timed out (command={command} timeout_seconds={self._timeout_seconds})"
            )
            raise ToolInvocationError(
                f"{args[0]} timed out after {self._timeout_seconds}s"
            )
        if returncode != 0:
            logger.debug(f"Tool exited non-zero (command={command} returncode={returncode})")
            raise ToolInvocationError(f"{args[0]} exited with status {returncode}")
        return b"".join(chunks).decode("utf-8", errors="replace")
