"""Rendering backend invocation.

The backend is an external diffusion service script. It is run once per job
and reports back on stdout:

    Progress: 40
    Result: /path/to/output.png

Anything it writes to stderr is kept as the diagnostic for a failed run.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from renderbridge.jobs.errors import BackendFailure

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: async fn(percent)
ProgressCallback = Callable[[float], Awaitable[None]]

_RESULT_PREFIX = "Result:"
_PROGRESS_RE = re.compile(r"^Progress:\s*([0-9]+(?:\.[0-9]+)?)")

_READ_CHUNK = 64 * 1024

# Lines longer than this cannot be progress reports and are not parsed
_MAX_REPORT_LINE = 4096


@dataclass(frozen=True)
class BackendInvocation:
    """Everything the backend needs for one render, fixed at dispatch time."""
    job_id: str
    image_path: str
    prompt: str
    negative_prompt: str
    style_preset: str
    backend: str
    backend_url: str
    output_dir: str


@dataclass
class BackendResult:
    ok: bool
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    artifact_path: Optional[str] = None


def parse_result_path(output: str) -> Optional[str]:
    """Return the artifact path declared by the first ``Result:`` line, if any."""
    for line in output.splitlines():
        if line.startswith(_RESULT_PREFIX):
            path = line[len(_RESULT_PREFIX):].strip()
            if path:
                return path
    return None


def parse_progress(line: str) -> Optional[float]:
    match = _PROGRESS_RE.match(line.strip())
    if match is None:
        return None
    return float(match.group(1))


class BackendInvoker(ABC):
    """Runs a single render on some backend and reports a typed outcome."""

    @abstractmethod
    async def invoke(
        self,
        invocation: BackendInvocation,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BackendResult:
        """Run the render. May raise BackendFailure if it could not finish."""
        ...


class SubprocessBackendInvoker(BackendInvoker):
    """Invokes the diffusion service script as a child process."""

    def __init__(self, python: str, script: str, timeout: Optional[float] = None):
        self._python = python
        self._script = script
        self._timeout = timeout

    def build_command(self, invocation: BackendInvocation) -> List[str]:
        return [
            self._python, self._script,
            "--backend", invocation.backend,
            "--url", invocation.backend_url,
            "--output", invocation.output_dir,
            "--job-id", invocation.job_id,
            "--image", invocation.image_path,
            "--prompt", invocation.prompt,
            "--negative-prompt", invocation.negative_prompt,
            "--style", invocation.style_preset,
        ]

    async def invoke(
        self,
        invocation: BackendInvocation,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BackendResult:
        cmd = self.build_command(invocation)
        logger.debug("Job %s: starting backend %s", invocation.job_id, cmd)
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        chunks: List[bytes] = []

        async def report(raw: bytes) -> None:
            progress = parse_progress(raw.decode("utf-8", errors="replace"))
            if progress is not None and on_progress is not None:
                await on_progress(progress)

        async def read_stdout() -> None:
            # Read raw chunks so arbitrarily long lines are kept whole in the output.
            pending = b""
            overlong = False
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                chunks.append(chunk)
                lines = (pending + chunk).split(b"\n")
                pending = lines.pop()
                for raw in lines:
                    if overlong:
                        overlong = False
                        continue
                    await report(raw)
                if len(pending) > _MAX_REPORT_LINE:
                    pending = b""
                    overlong = True
            if pending and not overlong:
                await report(pending)

        try:
            _, stderr, exit_code = await asyncio.wait_for(
                asyncio.gather(read_stdout(), proc.stderr.read(), proc.wait()),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise BackendFailure(
                f"Render backend timed out after {self._timeout:g}s and was killed"
            ) from None
        except BaseException:
            await self._kill(proc)
            raise

        output = b"".join(chunks).decode("utf-8", errors="replace")
        if exit_code == 0:
            return BackendResult(
                ok=True,
                exit_code=exit_code,
                output=output,
                artifact_path=parse_result_path(output),
            )

        error = stderr.decode("utf-8", errors="replace").strip() or output.strip()
        return BackendResult(
            ok=False,
            exit_code=exit_code,
            output=output,
            error=error or f"Render backend exited with code {exit_code}",
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()
