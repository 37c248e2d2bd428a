from __future__ import annotations

from typing import Any, Dict, Optional


class JudgeError(Exception):
    """Base of every failure the grading core reports.

    ``kind`` is a stable snake_case tag an outer layer can switch on, ``side``
    names which participant of a comparison failed (``program1``,
    ``program2``, ``comparator``) when that is known.
    """

    kind = "judge_error"

    def __init__(self, message: str, *, side: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.side = side
        self.detail = dict(detail or {})

    def with_side(self, side: str) -> "JudgeError":
        self.side = side
        return self

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "side": self.side,
            "detail": {k: str(v) for k, v in self.detail.items()},
        }


# ---- validation ----

class ValidationError(JudgeError, ValueError):
    kind = "validation_error"


class UnsupportedLanguage(ValidationError):
    kind = "unsupported_language"


class EmptyContent(ValidationError):
    kind = "empty_content"


class InvalidRequest(ValidationError):
    kind = "invalid_request"


class SourceNotFound(ValidationError):
    kind = "source_not_found"


class ProgramNotFound(ValidationError):
    kind = "program_not_found"


class InputNotFound(ValidationError):
    kind = "input_not_found"


# ---- external tools ----

class InvocationError(JudgeError):
    """The external tool could not start or exited with a non-zero outer status."""

    kind = "invocation_error"

    def __init__(self, message: str, *, status: Optional[int] = None, **kw):
        super().__init__(message, **kw)
        self.status = status
        self.compile_time_ms = 0
        self.detail.setdefault("status", status)


class MalformedToolOutput(JudgeError):
    kind = "malformed_tool_output"

    def __init__(self, message: str, *, missing=(), **kw):
        super().__init__(message, **kw)
        self.missing = tuple(missing)
        if self.missing:
            self.detail.setdefault("missing", ",".join(self.missing))


# ---- storage / comparison ----

class StorageError(JudgeError):
    kind = "storage_error"

    def __init__(self, message: str, *, reason: str = "", **kw):
        super().__init__(message, **kw)
        self.reason = reason
        self.detail.setdefault("reason", reason)


class ComparisonFailed(JudgeError):
    kind = "comparison_failed"


class IllegalTransition(JudgeError, RuntimeError):
    kind = "illegal_transition"


class ToolTimeout(InvocationError):
    """The orchestration watchdog killed an external tool that outlived its
    hard ceiling."""

    kind = "tool_timeout"


# ---- program outcomes that leave a comparison undetermined ----

class CompilationFailed(JudgeError):
    kind = "compile_error"


class RunIncomplete(JudgeError):
    kind = "run_incomplete"
