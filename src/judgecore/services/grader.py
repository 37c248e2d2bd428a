from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence

import structlog

from ..core.models import CompiledArtifact, ComparisonConfig, Limits, RunResult
from ..core.utils import IdGenerator
from ..executor.base import Executor
from ..logging import setup_logging
from ..schemas import ComparisonResponse, GradeResponse
from ..settings import Settings, load_settings
from .comparator import Comparator, DiffComparator
from .compiler import CompilerInvoker
from .orchestrator import ExecutionOrchestrator
from .pipeline import GradingPipeline
from .storage import OUTPUT, Content, LocalFSStorage, StoredFile

log = structlog.get_logger(__name__)


class Grader:
    """
    Synchronous facade: wires storage + compiler + orchestrator + comparator
    into one pipeline. Async callers should use ``self.pipeline`` directly.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        ids: Optional[IdGenerator] = None,
        comparator: Optional[Comparator] = None,
        executor: Optional[Executor] = None,
    ):
        self.settings = settings or load_settings()
        setup_logging(self.settings.log_level)
        self.ids = ids or IdGenerator()
        self.storage = LocalFSStorage(self.settings.storage_path, ids=self.ids)

        executor = executor or Executor()
        self.compiler = CompilerInvoker(self.settings, self.storage, executor)
        self.orchestrator = ExecutionOrchestrator(self.settings, self.storage, executor, ids=self.ids)
        self.pipeline = GradingPipeline(
            self.settings,
            self.storage,
            self.compiler,
            self.orchestrator,
            comparator or DiffComparator(),
        )

    # ------------ store ------------

    def save_input(self, content: Content, filename: Optional[str] = None) -> StoredFile:
        return self.storage.save_input(content, filename)

    def save_script(
        self, ext: str, content: Content, scope: Sequence[str], filename: Optional[str] = None
    ) -> StoredFile:
        return self.storage.save_script(ext, content, scope, filename)

    def save_output(self, content: Optional[Content], filename: Optional[str] = None) -> StoredFile:
        return self.storage.save_output(content, filename)

    # ------------ compile / run ------------

    def compile(self, filename: str, scope: Sequence[str]) -> CompiledArtifact:
        source = self.storage.load_source(scope, filename)
        return asyncio.run(self.compiler.compile(source))

    def run(self, program: str, input_ref: str, limits: Limits) -> RunResult:
        return asyncio.run(self.orchestrator.run(limits.request(program, input_ref)))

    # ------------ judge ------------

    def compare_files(
        self, output1: str, output2: str, config: Optional[ComparisonConfig] = None
    ) -> Dict[str, Any]:
        outcome = self.pipeline.compare_artifacts(
            self.storage.locate(OUTPUT, output1), self.storage.locate(OUTPUT, output2), config
        )
        return ComparisonResponse.from_outcome(outcome).to_dict()

    def compare_program(
        self,
        program1: str,
        program2: str,
        input_ref: str,
        limits: Limits,
        config: Optional[ComparisonConfig] = None,
    ) -> Dict[str, Any]:
        outcome = asyncio.run(
            self.pipeline.compare_programs_on_input(program1, program2, input_ref, limits, config)
        )
        return ComparisonResponse.from_outcome(outcome).to_dict()

    def grade_sources(
        self,
        scope: Sequence[str],
        filename1: str,
        filename2: str,
        input_ref: str,
        limits: Limits,
        config: Optional[ComparisonConfig] = None,
    ) -> Dict[str, Any]:
        source1 = self.storage.load_source(scope, filename1)
        source2 = self.storage.load_source(scope, filename2)
        outcome = asyncio.run(self.pipeline.grade_sources(source1, source2, input_ref, limits, config))
        log.info("grade.finished", scope="/".join(scope), states=outcome.states)
        return GradeResponse.from_grade(outcome).to_dict()
