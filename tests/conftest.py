import asyncio
import json
import sys
from pathlib import Path

import pytest

from judgecore.core.utils import SequenceIdGenerator
from judgecore.services.storage import COMPILED, LocalFSStorage
from judgecore.settings import Settings

SRC = Path(__file__).resolve().parents[1] / "src"
PROGRAMS = Path(__file__).resolve().parent / "programs"

NOW_MS = 1700000000000

# Stand-ins for the external tools. Behaviour comes from a JSON file next to
# the script, keyed by the basename of the program/source ("*" = default).
# Every invocation is appended to a .calls file.
FAKE_RUNNER = """
import json, shutil, sys, time
from pathlib import Path

here = Path(__file__)
cfg = json.loads(here.with_suffix(".json").read_text())
with open(here.with_suffix(".calls"), "a") as f:
    f.write(" ".join(sys.argv[1:]) + "\\n")

soft_ms, soft_kb, program, inp, out, hard_ms, hard_kb = sys.argv[1:8]
b = cfg.get(Path(program).name, cfg.get("*", {}))
if b.get("touch_output"):
    Path(out).write_text("partial")
time.sleep(b.get("sleep", 0))
if "write" in b:
    Path(out).write_text(b["write"])
elif b.get("copy", True):
    shutil.copyfile(inp, out)
for k, v in b.get("report", {}).items():
    print(f"{k}: {v}")
sys.stderr.write(b.get("stderr", ""))
sys.exit(b.get("status", 0))
"""

FAKE_COMPILER = """
import json, sys
from pathlib import Path

here = Path(__file__)
cfg = json.loads(here.with_suffix(".json").read_text())
with open(here.with_suffix(".calls"), "a") as f:
    f.write(" ".join(sys.argv[1:]) + "\\n")

source, language, dest = sys.argv[1:4]
b = cfg.get(Path(source).name, cfg.get("*", {}))
if "diagnostics" in b:
    Path(dest).write_text(b["diagnostics"])
else:
    Path(dest).write_bytes(b"fake-binary")
for k, v in b.get("report", {"exit_code": 0, "compile_time": 7}).items():
    print(f"{k}: {v}")
sys.exit(b.get("status", 0))
"""

USAGE = {"exit_code": 0, "signal": 0, "cpu": 12, "vsize": 2048, "rss": 900, "wall": 20, "timed_out": 0}


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings(tmp_path):
    return Settings(storage_path=tmp_path / "storage", watchdog_grace_s=1.0)


@pytest.fixture
def ids():
    return SequenceIdGenerator(now_ms=NOW_MS)


@pytest.fixture
def storage(settings, ids):
    return LocalFSStorage(settings.storage_path, ids=ids)


@pytest.fixture
def fake_tool(tmp_path):
    def _make(kind, cfg):
        d = tmp_path / "tools"
        d.mkdir(exist_ok=True)
        script = d / f"fake_{kind}.py"
        script.write_text(FAKE_RUNNER if kind == "runner" else FAKE_COMPILER)
        script.with_suffix(".json").write_text(json.dumps(cfg))
        return [sys.executable, str(script)], script.with_suffix(".calls")

    return _make


@pytest.fixture
def programs(storage):
    """Two 'compiled' programs and one input already in the store."""
    storage.write_bytes(COMPILED, "q1/p1/admin.c", b"bin")
    storage.write_bytes(COMPILED, "q1/p1/user.c", b"bin")
    storage.save_input("1 2\n", "in1")
    return "q1/p1/admin.c", "q1/p1/user.c", "in1.txt"
