"""Supervision of the external render worker.

The worker is invoked as

    <render_command> <template_id> <output_path> <properties_json> [duration_frames]

and writes free-form diagnostics to stdout/stderr. Exit status 0 means the
video at ``output_path`` is finished; anything else is a failure. A partial
output file is left where the worker put it.
"""

import asyncio
import codecs
import logging
import os
import shlex
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from videogen.config import Settings
from videogen.exceptions import RenderProcessError
from videogen.render.properties import RenderProperties

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
ERROR_TAIL_CHARS = 2000


@dataclass
class RenderResult:
    """Outcome of a successful worker run."""

    output_path: str
    exit_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_path": self.output_path,
            "exit_code": self.exit_code,
            "elapsed_seconds": self.elapsed_seconds,
        }


class RenderDispatcher:
    """Launches one worker process per render and waits for it."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        workdir: Optional[str] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not command:
            raise ValueError("render command must not be empty")
        self.command = list(command)
        self.workdir = workdir
        self.timeout = timeout if timeout and timeout > 0 else None
        self.env = dict(env) if env is not None else None

    def build_command(
        self,
        template_id: str,
        output_path: str,
        properties_json: str,
        duration_frames: Optional[int] = None,
    ) -> list[str]:
        cmd = [*self.command, template_id, output_path, properties_json]
        if duration_frames is not None:
            cmd.append(str(duration_frames))
        return cmd

    async def dispatch(
        self,
        template_id: str,
        properties: RenderProperties | Mapping[str, Any],
        duration_frames: Optional[int],
        output_path: str | os.PathLike,
    ) -> RenderResult:
        """Run the worker to completion.

        Raises:
            RenderProcessError: non-zero exit, timeout, or launch failure
        """
        if isinstance(properties, RenderProperties):
            props = properties
        else:
            props = RenderProperties.build(**properties)

        output_path = str(output_path)
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(template_id, output_path, props.to_json(), duration_frames)

        logger.info(
            f"[RENDER] Launching worker for {template_id} -> {output_path} "
            f"(frames={duration_frames}): {shlex.join(self.command)}"
        )
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workdir,
                env=self.env,
            )
        except OSError as e:
            logger.error(f"[RENDER] Failed to launch worker for {template_id}: {e}")
            raise RenderProcessError(f"Failed to launch render process: {e}") from e

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        async def _run() -> int:
            await asyncio.gather(
                self._drain(proc.stdout, stdout_lines, logging.INFO, template_id),
                self._drain(proc.stderr, stderr_lines, logging.WARNING, template_id),
            )
            return await proc.wait()

        try:
            exit_code = await asyncio.wait_for(_run(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.error(f"[RENDER] Worker for {template_id} timed out after {self.timeout}s")
            raise RenderProcessError(
                f"Render process timed out after {self.timeout:g} seconds",
                exit_code=proc.returncode,
                stderr="\n".join(stderr_lines),
                stdout="\n".join(stdout_lines),
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        elapsed = time.monotonic() - started
        stdout = "\n".join(stdout_lines)
        stderr = "\n".join(stderr_lines)

        if exit_code != 0:
            logger.error(f"[RENDER] Worker for {template_id} exited with code {exit_code}")
            tail = (stderr.strip() or stdout.strip())[-ERROR_TAIL_CHARS:]
            raise RenderProcessError(
                tail or f"Render process failed (exit code {exit_code})",
                exit_code=exit_code,
                stderr=stderr,
                stdout=stdout,
            )

        logger.info(f"[RENDER] Worker for {template_id} finished in {elapsed:.1f}s")
        return RenderResult(
            output_path=output_path,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            elapsed_seconds=elapsed,
        )

    @staticmethod
    async def _drain(
        stream: Optional[asyncio.StreamReader],
        sink: list[str],
        level: int,
        template_id: str,
    ) -> None:
        """Read a pipe to EOF, logging complete lines as they arrive."""
        if stream is None:
            return
        # Characters may straddle chunk boundaries
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            pending += decoder.decode(chunk, final=not chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                line = line.rstrip("\r")
                sink.append(line)
                logger.log(level, f"[RENDER {template_id}] {line}")
            if not chunk:
                break
        if pending:
            sink.append(pending.rstrip("\r"))
            logger.log(level, f"[RENDER {template_id}] {pending.rstrip()}")

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()


def build_dispatcher(settings: Settings) -> RenderDispatcher:
    return RenderDispatcher(
        shlex.split(settings.render_command),
        workdir=settings.render_workdir,
        timeout=settings.render_timeout_seconds,
    )
