from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from ..core.errors import InvocationError, ToolTimeout

log = structlog.get_logger(__name__)


@dataclass
class ExecSpec:
    cmd: List[str]
    timeout_s: float
    workdir: Optional[Path] = None
    env: Optional[Dict[str, str]] = None


@dataclass
class ToolInvocation:
    status: int
    stdout: List[str] = field(default_factory=list)
    stderr: str = ""
    duration_ms: int = 0


class Executor:
    """Runs one external tool to completion.

    The tool gets its own session so the whole process group (the tool and
    whatever it spawned) can be killed when the watchdog expires or the
    awaiting task is cancelled.
    """

    async def invoke(self, spec: ExecSpec) -> ToolInvocation:
        try:
            proc = await asyncio.create_subprocess_exec(
                *spec.cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(spec.workdir) if spec.workdir else None,
                env={**os.environ, **spec.env} if spec.env else None,
                start_new_session=True,
            )
        except OSError as e:
            raise InvocationError(f"cannot start {spec.cmd[0]}", detail={"reason": str(e)}) from e

        start = time.perf_counter()
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=spec.timeout_s)
        except asyncio.TimeoutError:
            await self._kill(proc)
            log.warning("tool.watchdog_expired", cmd=spec.cmd[0], timeout_s=spec.timeout_s)
            raise ToolTimeout(
                f"{spec.cmd[0]} exceeded {spec.timeout_s:.1f}s",
                detail={"timeout_s": spec.timeout_s},
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            log.info("tool.cancelled", cmd=spec.cmd[0], pid=proc.pid)
            raise

        return ToolInvocation(
            status=proc.returncode,
            stdout=out.decode("utf-8", errors="replace").splitlines(),
            stderr=err.decode("utf-8", errors="replace"),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        await proc.wait()
