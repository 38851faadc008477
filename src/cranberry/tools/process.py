"""Async subprocess execution."""

import asyncio
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from ..exceptions import ToolNotFoundError


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def _drain(
    stream: asyncio.StreamReader, on_line: Optional[Callable[[str], None]]
) -> str:
    lines = []
    async for raw in stream:
        line = raw.decode("utf-8", errors="replace")
        lines.append(line)
        if on_line:
            on_line(line.rstrip("\n"))
    return "".join(lines)


async def _feed(stream: Optional[asyncio.StreamWriter], data: Optional[str]) -> None:
    if stream is None or data is None:
        return
    try:
        stream.write(data.encode("utf-8"))
        await stream.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The process exited without reading its input; its exit code reports why
        pass
    finally:
        stream.close()


async def run_command(
    *args: str,
    stdin: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        *args: Program and arguments (no shell involved)
        stdin: Text written to the process's standard input
        env: Extra environment variables, layered over the current environment
        on_line: Called with every stdout line as it arrives

    Returns:
        CommandResult; a non-zero exit code is not an error here

    Raises:
        ToolNotFoundError: If the program is not installed
    """
    process_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=process_env,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(f"{args[0]} is not installed or not on PATH") from e

    stdout, stderr, _ = await asyncio.gather(
        _drain(process.stdout, on_line),
        _drain(process.stderr, None),
        _feed(process.stdin, stdin),
    )
    returncode = await process.wait()
    return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)
