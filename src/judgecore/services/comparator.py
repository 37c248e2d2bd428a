from __future__ import annotations

from difflib import SequenceMatcher
from pathlib import Path
from typing import List, Protocol

from ..core.models import ComparisonConfig, ComparisonReport


class Comparator(Protocol):
    def compare(self, path_a: Path, path_b: Path, config: ComparisonConfig) -> ComparisonReport: ...


class DiffComparator:
    """Line based comparison. Outputs are equal when their normalised lines
    are; similarity is the SequenceMatcher ratio over those lines."""

    def compare(self, path_a: Path, path_b: Path, config: ComparisonConfig) -> ComparisonReport:
        a = self.lines(path_a.read_bytes(), config)
        b = self.lines(path_b.read_bytes(), config)
        if a == b:
            return ComparisonReport(different=False, similarity=1.0)
        ratio = SequenceMatcher(None, a, b, autojunk=False).ratio()
        return ComparisonReport(different=True, similarity=round(ratio, 6))

    @staticmethod
    def lines(raw: bytes, config: ComparisonConfig) -> List[str]:
        text = raw.decode("utf-8", errors="replace")
        if config.ignore_case:
            text = text.casefold()
        lines = text.splitlines()

        if config.ignore_whitespace:
            lines = ["".join(line.split()) for line in lines]
        elif config.ignore_trailing_whitespace:
            lines = [line.rstrip() for line in lines]

        if config.ignore_blank_lines:
            lines = [line for line in lines if line.strip()]
        elif config.ignore_trailing_whitespace or config.ignore_whitespace:
            # trailing empty lines
            while lines and not lines[-1]:
                lines.pop()
        return lines
