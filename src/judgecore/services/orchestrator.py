from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Dict, Optional, Tuple

import structlog

from ..core.errors import InputNotFound, InvocationError, MalformedToolOutput, ProgramNotFound, ToolTimeout
from ..core.models import RunRequest, RunResult, TerminationReason
from ..core.utils import IdGenerator, int_field, parse_report
from ..executor.base import ExecSpec, Executor
from ..settings import Settings
from .storage import COMPILED, INPUT, OUTPUT, SourceStore

log = structlog.get_logger(__name__)

# figures the runner must report for a run to be measurable
REQUIRED_KEYS = ("exit_code", "cpu", "vsize", "rss")

TR = TerminationReason


def classify(req: RunRequest, report: Dict[str, str]) -> TerminationReason:
    """Soft limits decide the verdict; the sandbox only enforced the hard ones."""
    exit_code = int_field(report, "exit_code") or 0
    sig = int_field(report, "signal") or 0
    cpu = int_field(report, "cpu") or 0
    vsize = int_field(report, "vsize") or 0
    rss = int_field(report, "rss") or 0
    timed_out = (int_field(report, "timed_out") or 0) != 0
    abnormal = exit_code != 0 or sig != 0

    if timed_out or sig == signal.SIGXCPU or cpu > req.time_limit_ms:
        return TR.TIME_LIMIT_EXCEEDED
    if rss > req.memory_limit_kb or (abnormal and vsize > req.memory_limit_kb):
        return TR.MEMORY_LIMIT_EXCEEDED
    if abnormal:
        return TR.RUNTIME_ERROR
    return TR.COMPLETED


class ExecutionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        storage: SourceStore,
        executor: Optional[Executor] = None,
        ids: Optional[IdGenerator] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.executor = executor or Executor()
        self.ids = ids or IdGenerator()

    def check(self, req: RunRequest) -> Tuple[Path, Path]:
        if not self.storage.exists(COMPILED, req.executable_ref):
            raise ProgramNotFound("Program file not found", detail={"program": req.executable_ref})
        if not self.storage.exists(INPUT, req.input_ref):
            raise InputNotFound("Input file not found", detail={"input": req.input_ref})
        return self.storage.locate(COMPILED, req.executable_ref), self.storage.locate(INPUT, req.input_ref)

    def watchdog_s(self, req: RunRequest) -> float:
        return req.hard_time_limit_ms / 1000.0 * self.settings.wall_time_factor + self.settings.watchdog_grace_s

    async def run(self, req: RunRequest) -> RunResult:
        program, input_file = self.check(req)
        self.storage.ensure_root(OUTPUT)

        output_ref = self.ids.output_name(req.input_ref)
        output_file = self.storage.locate(OUTPUT, output_ref)

        cmd = [
            *self.settings.runner_tool,
            str(req.time_limit_ms),
            str(req.memory_limit_kb),
            str(program),
            str(input_file),
            str(output_file),
            str(req.hard_time_limit_ms),
            str(req.hard_memory_limit_kb),
        ]
        bound = log.bind(program=req.executable_ref, input=req.input_ref, output=output_ref)
        bound.info("run.started", time_limit_ms=req.time_limit_ms, memory_limit_kb=req.memory_limit_kb)

        try:
            inv = await self.executor.invoke(
                ExecSpec(cmd=cmd, timeout_s=self.watchdog_s(req), env=self.settings.tool_env())
            )
        except asyncio.CancelledError:
            # a half-written output must never reach the comparator
            self.storage.discard(OUTPUT, output_ref)
            bound.info("run.cancelled")
            raise
        except ToolTimeout as e:
            # the runner outlived its own wall clock: the sandbox is at fault
            bound.error("run.watchdog_expired", reason=e.message)
            return RunResult(
                termination_reason=TR.SYSTEM_ERROR,
                output_ref=output_ref,
                output_path=output_file,
                detail=f"watchdog: {e.message}",
            )
        except InvocationError as e:
            bound.error("run.invocation_failed", reason=e.message)
            return RunResult(termination_reason=TR.SYSTEM_ERROR, output_ref=output_ref,
                             output_path=output_file, detail=e.message)

        if inv.status != 0:
            # the runner could not even start the program: no usage figures
            bound.error("run.runner_failed", status=inv.status, stderr=inv.stderr[-500:])
            return RunResult(
                termination_reason=TR.SYSTEM_ERROR,
                output_ref=output_ref,
                output_path=output_file,
                detail=inv.stderr.strip()[-500:] or f"runner exited with status {inv.status}",
            )

        report = parse_report(inv.stdout)
        missing = [k for k in REQUIRED_KEYS if int_field(report, k) is None]
        if missing:
            raise MalformedToolOutput(f"runner report lacks {', '.join(missing)}", missing=missing)

        reason = classify(req, report)
        result = RunResult(
            termination_reason=reason,
            output_ref=output_ref,
            output_path=output_file,
            exit_code=int_field(report, "exit_code"),
            cpu_time_ms=int_field(report, "cpu"),
            vsize_kb=int_field(report, "vsize"),
            rss_kb=int_field(report, "rss"),
            signal=int_field(report, "signal"),
            wall_time_ms=int_field(report, "wall"),
        )
        bound.info("run.finished", termination_reason=reason.value, cpu_ms=result.cpu_time_ms, rss_kb=result.rss_kb)
        return result
