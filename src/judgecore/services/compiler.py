from __future__ import annotations

from typing import Optional

import structlog

from ..core.errors import InvocationError, MalformedToolOutput, SourceNotFound
from ..core.models import CompiledArtifact, SourceArtifact
from ..core.utils import check_language, int_field, parse_report
from ..executor.base import ExecSpec, Executor
from ..settings import Settings
from .storage import COMPILED, SCRIPTS, SourceStore

log = structlog.get_logger(__name__)

REQUIRED_KEYS = ("exit_code", "compile_time")


class CompilerInvoker:
    """Turns a stored source into an executable under compiled/.

    A rejected program is an ordinary result (``exit_code != 0`` with the
    compiler's text in ``diagnostics["message"]``); only a broken toolchain
    raises.
    """

    def __init__(self, settings: Settings, storage: SourceStore, executor: Optional[Executor] = None):
        self.settings = settings
        self.storage = storage
        self.executor = executor or Executor()

    async def compile(self, source: SourceArtifact) -> CompiledArtifact:
        # allow-list is checked here, before any tool is started
        lang = check_language(getattr(source.language, "value", source.language))

        if not self.storage.exists(SCRIPTS, source.ref):
            raise SourceNotFound("source file does not exist", detail={"source": source.ref})
        code = self.storage.locate(SCRIPTS, source.ref)

        self.storage.ensure_root(COMPILED, *source.scope)
        output_file = self.storage.locate(COMPILED, source.ref)

        cmd = [*self.settings.compiler_tool, str(code), lang.value, str(output_file)]
        log.info("compile.started", source=source.ref, language=lang.value)
        inv = await self.executor.invoke(
            ExecSpec(
                cmd=cmd,
                timeout_s=self.settings.compile_timeout_s + self.settings.watchdog_grace_s,
                env=self.settings.tool_env(),
            )
        )

        if inv.status != 0:
            log.error("compile.invocation_failed", source=source.ref, status=inv.status, stderr=inv.stderr[-500:])
            raise InvocationError(
                "Check permission.",
                status=inv.status,
                detail={"reason": "compile_error", "time": 0, "program_path": str(code)},
            )

        report = parse_report(inv.stdout)
        missing = [k for k in REQUIRED_KEYS if int_field(report, k) is None]
        if missing:
            raise MalformedToolOutput(
                f"compiler report lacks {', '.join(missing)}", missing=missing, detail={"program_path": str(code)}
            )

        exit_code = int_field(report, "exit_code")
        compile_time = int_field(report, "compile_time")

        if exit_code != 0:
            # the destination holds the compiler's diagnostics, not a binary
            message = output_file.read_text(encoding="utf-8", errors="replace") if output_file.exists() else ""
            reason = "compile_error"
        else:
            message = "Now you can run this program."
            reason = "compiled"

        log.info("compile.finished", source=source.ref, exit_code=exit_code, compile_time_ms=compile_time)
        return CompiledArtifact(
            source_ref=source.ref,
            executable_ref=source.ref,
            executable_path=output_file,
            exit_code=exit_code,
            compile_time_ms=compile_time,
            diagnostics={
                "reason": reason,
                "message": message,
                "time_unit": "ms",
                "program_path": str(code),
            },
        )
