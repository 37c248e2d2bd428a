from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import InvalidRequest, JudgeError


class Language(str, Enum):
    C = "c"
    CPP = "cpp"


SUPPORTED_LANGUAGES = tuple(lang.value for lang in Language)


class TerminationReason(str, Enum):
    COMPLETED = "completed"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    RUNTIME_ERROR = "runtime_error"
    SYSTEM_ERROR = "system_error"


@dataclass(frozen=True)
class SourceArtifact:
    scope: Tuple[str, ...]   # e.g. (quiz_id, problem_id)
    filename: str            # "main.cpp"
    language: Language
    content: bytes

    @property
    def ref(self) -> str:
        return "/".join((*self.scope, self.filename))


@dataclass(frozen=True)
class CompiledArtifact:
    source_ref: str
    executable_ref: str      # name under compiled/
    executable_path: Path
    exit_code: int
    compile_time_ms: int
    diagnostics: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _check_limits(time_ms: int, mem_kb: int, hard_time_ms: int, hard_mem_kb: int) -> None:
    if time_ms <= 0 or mem_kb <= 0:
        raise InvalidRequest("limits must be positive", detail={"time_limit_ms": time_ms, "memory_limit_kb": mem_kb})
    if hard_time_ms < time_ms:
        raise InvalidRequest(
            "hard time limit is below the time limit",
            detail={"time_limit_ms": time_ms, "hard_time_limit_ms": hard_time_ms},
        )
    if hard_mem_kb < mem_kb:
        raise InvalidRequest(
            "hard memory limit is below the memory limit",
            detail={"memory_limit_kb": mem_kb, "hard_memory_limit_kb": hard_mem_kb},
        )


@dataclass(frozen=True)
class Limits:
    """Soft limits are what a submission is graded against, hard limits are
    the ceiling the sandbox kills at. Omitted hard limits equal the soft ones."""

    time_limit_ms: int
    memory_limit_kb: int
    hard_time_limit_ms: Optional[int] = None
    hard_memory_limit_kb: Optional[int] = None

    def __post_init__(self):
        if self.hard_time_limit_ms is None:
            object.__setattr__(self, "hard_time_limit_ms", self.time_limit_ms)
        if self.hard_memory_limit_kb is None:
            object.__setattr__(self, "hard_memory_limit_kb", self.memory_limit_kb)
        _check_limits(self.time_limit_ms, self.memory_limit_kb, self.hard_time_limit_ms, self.hard_memory_limit_kb)

    def request(self, executable_ref: str, input_ref: str) -> "RunRequest":
        return RunRequest(
            executable_ref=executable_ref,
            input_ref=input_ref,
            time_limit_ms=self.time_limit_ms,
            memory_limit_kb=self.memory_limit_kb,
            hard_time_limit_ms=self.hard_time_limit_ms,
            hard_memory_limit_kb=self.hard_memory_limit_kb,
        )


@dataclass(frozen=True)
class RunRequest:
    executable_ref: str      # name under compiled/
    input_ref: str           # name under input/
    time_limit_ms: int
    memory_limit_kb: int
    hard_time_limit_ms: int
    hard_memory_limit_kb: int

    def __post_init__(self):
        _check_limits(self.time_limit_ms, self.memory_limit_kb, self.hard_time_limit_ms, self.hard_memory_limit_kb)


@dataclass(frozen=True)
class RunResult:
    termination_reason: TerminationReason
    output_ref: Optional[str] = None     # name under output/
    output_path: Optional[Path] = None
    exit_code: Optional[int] = None
    # usage stays None when the runner produced no reliable figures
    cpu_time_ms: Optional[int] = None
    vsize_kb: Optional[int] = None
    rss_kb: Optional[int] = None
    signal: Optional[int] = None
    wall_time_ms: Optional[int] = None
    detail: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.termination_reason is TerminationReason.COMPLETED

    @property
    def has_usage(self) -> bool:
        return self.cpu_time_ms is not None


_TRUE = frozenset({"true", "yes", "on", "1"})
_FALSE = frozenset({"false", "no", "off", "0"})


def _flag(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    raise InvalidRequest(f"{name} must be a boolean", detail={name: value})


@dataclass(frozen=True)
class ComparisonConfig:
    ignore_trailing_whitespace: bool = True
    ignore_blank_lines: bool = False
    ignore_case: bool = False
    ignore_whitespace: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ComparisonConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: _flag(k, v) for k, v in (data or {}).items() if k in known})


@dataclass(frozen=True)
class ComparisonReport:
    different: bool
    similarity: float


@dataclass(frozen=True)
class Verdict:
    outputs_differ: bool
    similarity: float
    program1_result: Optional[RunResult] = None
    program2_result: Optional[RunResult] = None


@dataclass(frozen=True)
class ComparisonOutcome:
    """What a comparison entry point hands back: a verdict, or the failures
    that left it undetermined, plus both run results when programs ran."""

    verdict: Optional[Verdict]
    program1: Optional[RunResult] = None
    program2: Optional[RunResult] = None
    failures: Tuple[JudgeError, ...] = ()

    @property
    def determined(self) -> bool:
        return self.verdict is not None

    @property
    def failure(self) -> Optional[JudgeError]:
        return self.failures[0] if self.failures else None


@dataclass(frozen=True)
class GradeOutcome:
    comparison: ComparisonOutcome
    compiled: Dict[str, CompiledArtifact] = field(default_factory=dict)
    states: Dict[str, str] = field(default_factory=dict)
