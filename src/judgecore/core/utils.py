from __future__ import annotations

import math
import random
import re
import string
import time
from pathlib import PurePosixPath
from typing import Dict, Iterable, Optional

from .models import Language, SUPPORTED_LANGUAGES
from .errors import UnsupportedLanguage


class IdGenerator:
    """Names for files the store creates on its own (default input/script
    names and run outputs). Swap it out to get predictable names."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def token(self) -> str:
        suf = "".join(random.choice(string.hexdigits.lower()) for _ in range(6))
        return f"{int(time.time())}{suf}"

    def output_name(self, input_name: str) -> str:
        return f"{self.now_ms()}_{self.token()}_output_of_{PurePosixPath(input_name).name}"


class SequenceIdGenerator(IdGenerator):
    def __init__(self, start: int = 1, now_ms: int = 0):
        self._next = start
        self._now = now_ms

    def now_ms(self) -> int:
        return self._now

    def token(self) -> str:
        tok = f"{self._next:04d}"
        self._next += 1
        return tok


def infer_language(filename: str) -> Language:
    ext = PurePosixPath(filename).suffix.lstrip(".").lower()
    return check_language(ext)


def check_language(tag: str) -> Language:
    if tag not in SUPPORTED_LANGUAGES:
        raise UnsupportedLanguage(
            f"Permitted extension are {' or '.join(SUPPORTED_LANGUAGES)}",
            detail={"language": tag},
        )
    return Language(tag)


_KV = re.compile(r"^\s*([^:]+?)\s*:\s*(.*?)\s*$")


def parse_report(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key: value`` lines from a tool's stdout. Order does not matter,
    later duplicates win, lines without a colon are skipped."""
    out: Dict[str, str] = {}
    for line in lines:
        m = _KV.match(line)
        if m:
            out[m.group(1)] = m.group(2)
    return out


def int_field(report: Dict[str, str], key: str) -> Optional[int]:
    raw = report.get(key)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    # inf and nan are not measurements
    if not math.isfinite(value):
        return None
    return int(value)
