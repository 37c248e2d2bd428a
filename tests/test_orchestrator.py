import asyncio
import signal
import sys

import pytest

from conftest import NOW_MS, USAGE, run
from judgecore.core.errors import InputNotFound, MalformedToolOutput, ProgramNotFound
from judgecore.core.models import Limits, RunRequest, TerminationReason
from judgecore.services.orchestrator import ExecutionOrchestrator, classify
from judgecore.services.storage import OUTPUT

LIMITS = Limits(time_limit_ms=1000, memory_limit_kb=65536, hard_time_limit_ms=2000, hard_memory_limit_kb=131072)


def orchestrator(settings, storage, ids, fake_tool, cfg, **overrides):
    argv, calls = fake_tool("runner", cfg)
    s = settings.model_copy(update={"runner_tool": argv, **overrides})
    return ExecutionOrchestrator(s, storage, ids=ids), calls


def test_completed_run_captures_output_and_usage(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    orc, _ = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": USAGE}})

    result = run(orc.run(LIMITS.request(admin, inp)))

    assert result.termination_reason is TerminationReason.COMPLETED
    assert result.output_ref == f"{NOW_MS}_0001_output_of_in1.txt"
    assert result.output_path.read_text() == "1 2\n"
    assert (result.cpu_time_ms, result.vsize_kb, result.rss_kb) == (12, 2048, 900)
    assert result.exit_code == 0


def test_runner_receives_soft_and_hard_limits_in_order(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    orc, calls = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": USAGE}})

    result = run(orc.run(LIMITS.request(admin, inp)))

    args = calls.read_text().split()
    assert args[0:2] == ["1000", "65536"]
    assert args[2] == str(storage.locate("compiled", admin))
    assert args[3] == str(storage.locate("input", inp))
    assert args[4] == str(result.output_path)
    assert args[5:7] == ["2000", "131072"]


def test_missing_program_spawns_nothing(settings, storage, ids, fake_tool, programs):
    _, _, inp = programs
    orc, calls = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": USAGE}})

    with pytest.raises(ProgramNotFound):
        run(orc.run(LIMITS.request("q1/p1/nope.c", inp)))
    assert not calls.exists()


def test_missing_input_spawns_nothing(settings, storage, ids, fake_tool, programs):
    admin, _, _ = programs
    orc, calls = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": USAGE}})

    with pytest.raises(InputNotFound):
        run(orc.run(LIMITS.request(admin, "missing.txt")))
    assert not calls.exists()


def test_runner_failure_is_a_system_error_without_usage(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    cfg = {"*": {"status": 1, "copy": False, "stderr": "cannot start program", "report": USAGE}}
    orc, _ = orchestrator(settings, storage, ids, fake_tool, cfg)

    result = run(orc.run(LIMITS.request(admin, inp)))

    assert result.termination_reason is TerminationReason.SYSTEM_ERROR
    assert not result.has_usage
    assert result.rss_kb is None
    assert "cannot start program" in result.detail


def test_report_without_usage_fields_is_malformed(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    report = {k: v for k, v in USAGE.items() if k != "rss"}
    orc, _ = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": report}})

    with pytest.raises(MalformedToolOutput) as exc:
        run(orc.run(LIMITS.request(admin, inp)))
    assert exc.value.missing == ("rss",)


def test_watchdog_kills_a_hung_runner(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    cfg = {"*": {"sleep": 30, "report": USAGE}}
    orc, _ = orchestrator(settings, storage, ids, fake_tool, cfg, watchdog_grace_s=0.3)
    limits = Limits(time_limit_ms=100, memory_limit_kb=1024, hard_time_limit_ms=200, hard_memory_limit_kb=1024)

    result = run(asyncio.wait_for(orc.run(limits.request(admin, inp)), timeout=10))

    # the runner failed to stop on its own: not the program's fault
    assert result.termination_reason is TerminationReason.SYSTEM_ERROR
    assert not result.has_usage
    assert result.detail.startswith("watchdog")


def test_cancelled_run_leaves_no_partial_output(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    cfg = {"*": {"touch_output": True, "sleep": 30, "report": USAGE}}
    orc, _ = orchestrator(settings, storage, ids, fake_tool, cfg)
    expected_output = f"{NOW_MS}_0001_output_of_in1.txt"

    async def scenario():
        task = asyncio.ensure_future(orc.run(LIMITS.request(admin, inp)))
        for _ in range(200):
            await asyncio.sleep(0.05)
            if storage.exists(OUTPUT, expected_output):
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(scenario())
    assert not storage.exists(OUTPUT, expected_output)


def test_repeated_runs_never_share_an_output_file(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    orc, _ = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": USAGE}})

    first = run(orc.run(LIMITS.request(admin, inp)))
    second = run(orc.run(LIMITS.request(admin, inp)))

    assert first.output_ref != second.output_ref
    assert first.output_path.exists() and second.output_path.exists()


REQ = RunRequest("a", "b", time_limit_ms=1000, memory_limit_kb=1000, hard_time_limit_ms=2000, hard_memory_limit_kb=2000)


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({}, TerminationReason.COMPLETED),
        ({"cpu": 1500}, TerminationReason.TIME_LIMIT_EXCEEDED),
        ({"signal": int(signal.SIGXCPU), "exit_code": 128 + int(signal.SIGXCPU)}, TerminationReason.TIME_LIMIT_EXCEEDED),
        ({"timed_out": 1, "signal": 9, "exit_code": 137, "cpu": 10}, TerminationReason.TIME_LIMIT_EXCEEDED),
        ({"rss": 1500}, TerminationReason.MEMORY_LIMIT_EXCEEDED),
        ({"exit_code": 3, "vsize": 1900}, TerminationReason.MEMORY_LIMIT_EXCEEDED),
        ({"exit_code": 1}, TerminationReason.RUNTIME_ERROR),
        ({"signal": 11, "exit_code": 139}, TerminationReason.RUNTIME_ERROR),
    ],
)
def test_classify(overrides, expected):
    report = {"exit_code": "0", "signal": "0", "cpu": "100", "vsize": "500", "rss": "300", "timed_out": "0"}
    report.update({k: str(v) for k, v in overrides.items()})
    assert classify(REQ, report) is expected


def test_non_finite_usage_is_malformed(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    orc, _ = orchestrator(settings, storage, ids, fake_tool, {"*": {"report": {**USAGE, "cpu": "1e400"}}})

    with pytest.raises(MalformedToolOutput) as exc:
        run(orc.run(LIMITS.request(admin, inp)))
    assert exc.value.missing == ("cpu",)


def test_runner_sees_the_callers_settings(settings, storage, ids, fake_tool, programs):
    admin, _, inp = programs
    script = (
        "import json, os\n"
        "print('exit_code: 0')\n"
        "print('cpu: ' + str(int(float(os.environ['JUDGE_WALL_TIME_FACTOR']) * 10)))\n"
        "print('vsize: ' + str(json.loads(os.environ['JUDGE_MAX_OUTPUT_KB'])))\n"
        "print('rss: 1')\n"
    )
    tool = storage.root.parent / "env_runner.py"
    tool.write_text(script)
    s = settings.model_copy(update={
        "runner_tool": [sys.executable, str(tool)],
        "wall_time_factor": 3.5,
        "max_output_kb": 123,
    })

    result = run(ExecutionOrchestrator(s, storage, ids=ids).run(LIMITS.request(admin, inp)))

    assert result.cpu_time_ms == 35
    assert result.vsize_kb == 123
