import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence, Union

from core.errors import ProcessFailed

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], Awaitable[None]]

# whisper.cpp can print very long lines when it dumps a segment
STREAM_LIMIT = 1024 * 1024


def parse_progress_from_line(line: str) -> Optional[float]:
    """Returns the first 'NN%' token of the line, clamped to [0, 100]."""
    for token in line.split():
        if token.endswith("%"):
            try:
                value = float(token[:-1])
            except ValueError:
                continue
            return max(0.0, min(100.0, value))
    return None


def map_progress(percent: float, low: float, high: float) -> float:
    return low + (percent / 100.0) * (high - low)


async def _pump(stream: asyncio.StreamReader, callback: Optional[LineCallback], name: str):
    # Always drain to EOF; a full pipe would block the child forever
    while True:
        raw = await stream.readline()
        if not raw:
            break
        if callback is None:
            continue
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        try:
            await callback(line)
        except Exception as e:
            logger.warning(f"Dropped {name} output line: {e}")


async def run_subprocess(executable: Union[str, Path], args: Sequence[str],
                         on_stdout_line: Optional[LineCallback] = None,
                         on_stderr_line: Optional[LineCallback] = None) -> int:
    """
    Spawns executable with piped stdout/stderr. Each stream is read by its own task
    and delivered line by line as it arrives. A failing line callback drops that
    line only. Returns 0, raises ProcessFailed otherwise.
    """
    name = Path(executable).name
    try:
        proc = await asyncio.create_subprocess_exec(
            str(executable), *[str(a) for a in args],
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
    except OSError as e:
        raise ProcessFailed(f"failed to run {name}: {e}") from e

    logger.debug(f"Started {name} (pid {proc.pid})")
    try:
        await asyncio.gather(
            _pump(proc.stdout, on_stdout_line, name),
            _pump(proc.stderr, on_stderr_line, name),
        )
    except BaseException:
        # Readers are gone (shutdown or a stream error); nobody drains the pipes now
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        raise
    returncode = await proc.wait()

    if returncode != 0:
        raise ProcessFailed(f"{name} failed (exit code {returncode})", returncode=returncode)
    return returncode
