from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Dict, List, Optional, Tuple

import structlog

from ..core.errors import (
    CompilationFailed,
    ComparisonFailed,
    InputNotFound,
    JudgeError,
    RunIncomplete,
    StorageError,
    ValidationError,
)
from ..core.models import (
    CompiledArtifact,
    ComparisonConfig,
    ComparisonOutcome,
    GradeOutcome,
    Limits,
    RunRequest,
    RunResult,
    SourceArtifact,
    TerminationReason,
    Verdict,
)
from ..core.states import SubmissionState, SubmissionTracker, state_for
from ..settings import Settings
from .comparator import Comparator
from .compiler import CompilerInvoker
from .orchestrator import ExecutionOrchestrator
from .storage import INPUT, OUTPUT, SourceStore

log = structlog.get_logger(__name__)

SIDES = ("program1", "program2")


async def _join(*aws: Awaitable):
    """gather() that cancels the siblings when one of them raises."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class GradingPipeline:
    def __init__(
        self,
        settings: Settings,
        storage: SourceStore,
        compiler: CompilerInvoker,
        orchestrator: ExecutionOrchestrator,
        comparator: Comparator,
    ):
        self.settings = settings
        self.storage = storage
        self.compiler = compiler
        self.orchestrator = orchestrator
        self.comparator = comparator
        self.default_config = ComparisonConfig.from_mapping(settings.comparison)

    # ------------ compare pre-made outputs ------------

    def compare_artifacts(
        self, output_a: Path, output_b: Path, config: Optional[ComparisonConfig] = None
    ) -> ComparisonOutcome:
        for side, p in zip(SIDES, (output_a, output_b)):
            if not p.is_file():
                return ComparisonOutcome(
                    verdict=None,
                    failures=(InputNotFound("output file does not exist", side=side, detail={"path": p}),),
                )
        try:
            report = self.comparator.compare(output_a, output_b, config or self.default_config)
        except Exception as e:
            log.error("compare.failed", a=str(output_a), b=str(output_b), error=repr(e))
            failure = ComparisonFailed(str(e) or type(e).__name__, side="comparator",
                                       detail={"error": type(e).__name__})
            return ComparisonOutcome(verdict=None, failures=(failure,))
        return ComparisonOutcome(verdict=Verdict(outputs_differ=report.different, similarity=report.similarity))

    # ------------ run two programs on one input ------------

    async def compare_programs_on_input(
        self,
        program1: str,
        program2: str,
        input_ref: str,
        limits: Limits,
        config: Optional[ComparisonConfig] = None,
    ) -> ComparisonOutcome:
        requests = (limits.request(program1, input_ref), limits.request(program2, input_ref))

        # nothing is spawned unless both programs and the input exist
        for side, req in zip(SIDES, requests):
            try:
                self.orchestrator.check(req)
            except ValidationError as e:
                log.info("compare.rejected", side=side, kind=e.kind)
                return ComparisonOutcome(verdict=None, failures=(e.with_side(side),))

        self.storage.ensure_root(OUTPUT)
        (r1, f1), (r2, f2) = await self._run_pair(*requests)
        failures: List[JudgeError] = [f for f in (f1, f2) if f is not None]

        for side, result, failed in zip(SIDES, (r1, r2), (f1, f2)):
            if failed is None and not result.completed:
                failures.append(RunIncomplete(
                    f"{side} did not complete: {result.termination_reason.value}",
                    side=side,
                    detail={"termination_reason": result.termination_reason.value},
                ))

        if failures:
            return ComparisonOutcome(verdict=None, program1=r1, program2=r2, failures=tuple(failures))

        outcome = self.compare_artifacts(r1.output_path, r2.output_path, config)
        verdict = outcome.verdict
        if verdict is not None:
            verdict = Verdict(verdict.outputs_differ, verdict.similarity, r1, r2)
        log.info("compare.finished", program1=program1, program2=program2, input=input_ref,
                 differ=verdict.outputs_differ if verdict else None)
        return ComparisonOutcome(verdict=verdict, program1=r1, program2=r2, failures=outcome.failures)

    async def _run_pair(self, req1: RunRequest, req2: RunRequest):
        if self.settings.store_concurrent:
            return await _join(self._run_side("program1", req1), self._run_side("program2", req2))
        first = await self._run_side("program1", req1)
        second = await self._run_side("program2", req2)
        return first, second

    async def _run_side(self, side: str, req: RunRequest) -> Tuple[RunResult, Optional[JudgeError]]:
        try:
            return await self.orchestrator.run(req), None
        except StorageError:
            raise
        except JudgeError as e:
            # keep results paired: the failing side still gets a RunResult
            log.error("run.failed", side=side, kind=e.kind, reason=e.message)
            return RunResult(termination_reason=TerminationReason.SYSTEM_ERROR, detail=e.message), e.with_side(side)

    # ------------ compile, run and compare two sources ------------

    async def grade_sources(
        self,
        source1: SourceArtifact,
        source2: SourceArtifact,
        input_ref: str,
        limits: Limits,
        config: Optional[ComparisonConfig] = None,
    ) -> GradeOutcome:
        trackers = {side: SubmissionTracker(side) for side in SIDES}
        compiled: Dict[str, CompiledArtifact] = {}
        failures: List[JudgeError] = []

        for side, source in zip(SIDES, (source1, source2)):
            tracker = trackers[side]
            tracker.advance(SubmissionState.COMPILING)
            try:
                artifact = await self.compiler.compile(source)
            except StorageError:
                tracker.advance(SubmissionState.SYSTEM_ERROR)
                raise
            except ValidationError as e:
                tracker.advance(SubmissionState.COMPILE_FAILED)
                failures.append(e.with_side(side))
                continue
            except JudgeError as e:
                tracker.advance(SubmissionState.SYSTEM_ERROR)
                failures.append(e.with_side(side))
                continue

            compiled[side] = artifact
            if artifact.ok:
                tracker.advance(SubmissionState.COMPILED)
            else:
                tracker.advance(SubmissionState.COMPILE_FAILED)
                failures.append(CompilationFailed(
                    artifact.diagnostics.get("message", ""),
                    side=side,
                    detail={"exit_code": artifact.exit_code},
                ))

        def done(comparison: ComparisonOutcome) -> GradeOutcome:
            return GradeOutcome(
                comparison=comparison,
                compiled=compiled,
                states={side: t.state.value for side, t in trackers.items()},
            )

        if failures:
            return done(ComparisonOutcome(verdict=None, failures=tuple(failures)))

        # a rejected request leaves both programs at COMPILED, the furthest
        # stage they reached; the failure names the missing input
        if not self.storage.exists(INPUT, input_ref):
            return done(ComparisonOutcome(
                verdict=None, failures=(InputNotFound("Input file not found", detail={"input": input_ref}),)
            ))

        for tracker in trackers.values():
            tracker.advance(SubmissionState.RUNNING)
        try:
            comparison = await self.compare_programs_on_input(
                compiled["program1"].executable_ref,
                compiled["program2"].executable_ref,
                input_ref,
                limits,
                config,
            )
        except JudgeError:
            for tracker in trackers.values():
                tracker.advance(SubmissionState.SYSTEM_ERROR)
            raise

        for side, result in zip(SIDES, (comparison.program1, comparison.program2)):
            if result is None:
                trackers[side].advance(SubmissionState.SYSTEM_ERROR)
            else:
                trackers[side].advance(state_for(result.termination_reason))
        return done(comparison)
