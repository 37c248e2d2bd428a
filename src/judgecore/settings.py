from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_compilers() -> Dict[str, Dict[str, Any]]:
    return {
        "c": {"path": "gcc", "args": ["-O2", "-std=c11", "-DONLINE_JUDGE"], "libs": ["-lm"]},
        "cpp": {"path": "g++", "args": ["-O2", "-std=c++17", "-DONLINE_JUDGE"], "libs": []},
    }


class Settings(BaseSettings):
    # ---- store ----
    storage_path: Path = Path("storage")

    # ---- budgets ----
    compile_timeout_s: int = 30
    watchdog_grace_s: float = 2.0
    wall_time_factor: float = 2.0
    max_output_kb: int = 64 * 1024

    # program1/program2 may run side by side when the store tolerates it
    store_concurrent: bool = True

    # ---- external tools (argv prefix, positional args are appended) ----
    compiler_tool: List[str] = Field(
        default_factory=lambda: [sys.executable, "-m", "judgecore.tools.compile"]
    )
    runner_tool: List[str] = Field(
        default_factory=lambda: [sys.executable, "-m", "judgecore.tools.runner"]
    )

    compilers: Dict[str, Dict[str, Any]] = Field(default_factory=_default_compilers)

    # defaults for ComparisonConfig
    comparison: Dict[str, bool] = {}

    log_level: str = "INFO"

    # env prefix JUDGE_*
    model_config = SettingsConfigDict(env_prefix="JUDGE_", extra="ignore")

    def tool_env(self) -> Dict[str, str]:
        """The effective settings as JUDGE_* variables for the external tools.

        JUDGE_CONF is emptied so a tool builds its Settings from these alone.
        """
        env = {"JUDGE_CONF": ""}
        for name, value in self.model_dump(mode="json").items():
            env[f"JUDGE_{name.upper()}"] = value if isinstance(value, str) else json.dumps(value)
        return env


def load_settings() -> Settings:
    # 0) base from JUDGE_* env
    s = Settings()

    # 1) conf/judge.yaml (or JUDGE_CONF)
    # an empty JUDGE_CONF means "environment only"
    conf_yaml = os.environ.get("JUDGE_CONF", "conf/judge.yaml")
    data = {}
    if conf_yaml:
        try:
            with open(conf_yaml, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            data = {}
    if not isinstance(data, dict):
        data = {}

    limits = data.get("limits") or {}
    if not isinstance(limits, dict):
        limits = {}

    tools = data.get("tools") or {}
    if not isinstance(tools, dict):
        tools = {}

    compilers = dict(s.compilers)
    for lang, cfg in (data.get("compilers") or {}).items():
        if isinstance(cfg, dict):
            compilers[lang] = {**compilers.get(lang, {}), **cfg}

    # 2) merge into Settings keeping the declared types
    return s.model_copy(
        update={
            "storage_path": Path(str(data.get("storage_path", s.storage_path))),
            "compile_timeout_s": int(limits.get("compile_timeout_s", s.compile_timeout_s)),
            "watchdog_grace_s": float(limits.get("watchdog_grace_s", s.watchdog_grace_s)),
            "wall_time_factor": float(limits.get("wall_time_factor", s.wall_time_factor)),
            "max_output_kb": int(limits.get("max_output_kb", s.max_output_kb)),
            "store_concurrent": bool(data.get("store_concurrent", s.store_concurrent)),
            "compiler_tool": list(tools.get("compiler", s.compiler_tool)),
            "runner_tool": list(tools.get("runner", s.runner_tool)),
            "compilers": compilers,
            "comparison": dict(data.get("comparison") or s.comparison),
            "log_level": str(data.get("log_level", s.log_level)),
        }
    )
