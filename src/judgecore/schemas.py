from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel

from .core.errors import JudgeError
from .core.models import CompiledArtifact, ComparisonOutcome, GradeOutcome, RunResult


# --------- Outward result shape ---------

class JudgeScores(BaseModel):
    output_file_difference: bool
    output_file_similarity: float


class RunReport(BaseModel):
    termination_reason: str
    exit_code: Optional[int] = None
    signal: Optional[int] = None
    cpu: Optional[int] = None
    vsize: Optional[int] = None
    rss: Optional[int] = None
    wall: Optional[int] = None
    cpu_unit: str = "ms"
    vsize_unit: str = "kB"
    rss_unit: str = "kB"
    filename: Optional[str] = None
    path: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def from_result(cls, r: RunResult) -> "RunReport":
        return cls(
            termination_reason=r.termination_reason.value,
            exit_code=r.exit_code,
            signal=r.signal,
            cpu=r.cpu_time_ms,
            vsize=r.vsize_kb,
            rss=r.rss_kb,
            wall=r.wall_time_ms,
            filename=r.output_ref,
            path=str(r.output_path.parent) if r.output_path else None,
            detail=r.detail,
        )


class FailureReport(BaseModel):
    kind: str
    message: str
    side: Optional[str] = None
    detail: Dict[str, str] = {}

    @classmethod
    def from_error(cls, e: JudgeError) -> "FailureReport":
        return cls(**e.as_dict())


class CompileReport(BaseModel):
    status: bool
    message: str
    detail: Dict[str, Any]

    @classmethod
    def from_artifact(cls, a: CompiledArtifact) -> "CompileReport":
        return cls(
            status=a.ok,
            message=a.diagnostics.get("message", ""),
            detail={
                "reason": a.diagnostics.get("reason"),
                "time": a.compile_time_ms,
                "time_unit": "ms",
                "exit_code": a.exit_code,
                "program_path": a.diagnostics.get("program_path"),
                "executable": a.executable_ref,
            },
        )


class ComparisonResponse(BaseModel):
    # False means undetermined, never "identical"
    judge: Union[JudgeScores, Literal[False]]
    program1: Optional[RunReport] = None
    program2: Optional[RunReport] = None
    errors: List[FailureReport] = []

    @classmethod
    def from_outcome(cls, o: ComparisonOutcome) -> "ComparisonResponse":
        judge: Union[JudgeScores, Literal[False]] = False
        if o.verdict is not None:
            judge = JudgeScores(
                output_file_difference=o.verdict.outputs_differ,
                output_file_similarity=o.verdict.similarity,
            )
        return cls(
            judge=judge,
            program1=RunReport.from_result(o.program1) if o.program1 else None,
            program2=RunReport.from_result(o.program2) if o.program2 else None,
            errors=[FailureReport.from_error(e) for e in o.failures],
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class GradeResponse(ComparisonResponse):
    compile: Dict[str, CompileReport] = {}
    states: Dict[str, str] = {}

    @classmethod
    def from_grade(cls, g: GradeOutcome) -> "GradeResponse":
        base = ComparisonResponse.from_outcome(g.comparison)
        return cls(
            **dict(base),
            compile={side: CompileReport.from_artifact(a) for side, a in g.compiled.items()},
            states=dict(g.states),
        )
