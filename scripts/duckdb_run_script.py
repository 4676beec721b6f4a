"""
Execute SQL script files against DuckDB with ``@variable`` substitution.

Execution outcomes are returned as ``ScriptResult`` values so callers decide
what a failed script means for their run.
"""
import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import duckdb


DEFAULT_CONFIG = {
    "variables": {},
    "duckdb": {
        "threads": None,
        "memory_limit": None,
        "temp_directory": None,
    },
}


@dataclass(frozen=True)
class ScriptResult:
    path: Path
    statements: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def load_json(path: str) -> Dict[str, Any]:
    return json.loads(Path(path).read_text()) if path and Path(path).exists() else {}


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = merge_config(base[key], value)
        else:
            merged[key] = value
    return merged


def substitute_variables(text: str, variables: Dict[str, str], max_passes: int = 10) -> str:
    # Longest names first so @foo_large is not clobbered by @foo.
    ordered = sorted(variables.items(), key=lambda kv: len(kv[0]), reverse=True)
    for _ in range(max_passes):
        previous = text
        for var, val in ordered:
            text = text.replace(var, str(val))
        if text == previous:
            break
    return text


def has_sql(text: str) -> bool:
    return any(line.strip() and not line.strip().startswith("--") for line in text.splitlines())


def split_queries(raw_sql: str) -> List[str]:
    queries = []
    current = []
    depth = 0
    for line in raw_sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--"):
            continue
        current.append(line)
        depth += line.count("(") - line.count(")")
        if ";" in line and depth <= 0:
            statement = "\n".join(current)
            while ";" in statement:
                before, _sep, statement = statement.partition(";")
                if has_sql(before):
                    queries.append(before)
            # A trailing "-- note" after the last ";" is not a statement.
            current = [statement] if has_sql(statement) else []
    if current:
        queries.append("\n".join(current))
    return [q for q in queries if has_sql(q)]


def connect(database: str, config: Optional[Dict[str, Any]] = None) -> duckdb.DuckDBPyConnection:
    merged = merge_config(DEFAULT_CONFIG, config or {})
    duck_conf = merged.get("duckdb", {})
    variables = merged.get("variables", {})

    con = duckdb.connect(database)

    threads = duck_conf.get("threads")
    if threads is not None and str(threads) != "":
        con.execute(f"SET threads={int(threads)}")

    memory_limit = duck_conf.get("memory_limit")
    if memory_limit is not None and str(memory_limit) != "":
        con.execute(f"SET memory_limit='{substitute_variables(str(memory_limit), variables)}'")

    temp_directory = duck_conf.get("temp_directory")
    if temp_directory is not None and str(temp_directory) != "":
        con.execute(f"SET temp_directory='{substitute_variables(str(temp_directory), variables)}'")

    return con


def execute_script(
    con: duckdb.DuckDBPyConnection,
    sql_path: Path,
    variables: Optional[Dict[str, str]] = None,
    *,
    timeout: Optional[float] = None,
    log: Optional[Callable[[str], None]] = None,
) -> ScriptResult:
    """Run every statement in ``sql_path`` and report the first failure.

    ``timeout`` bounds the whole script; when it elapses the connection is
    interrupted and the running statement fails.
    """
    sql_path = Path(sql_path)
    try:
        raw_sql = sql_path.read_text(encoding="utf-8")
    except OSError as exc:
        return ScriptResult(sql_path, 0, f"Cannot read {sql_path}: {exc}")

    statements = split_queries(substitute_variables(raw_sql, variables or {}))
    timed_out = threading.Event()

    def _interrupt() -> None:
        timed_out.set()
        con.interrupt()

    timer = None
    if timeout:
        timer = threading.Timer(timeout, _interrupt)
        timer.daemon = True
        timer.start()
    try:
        for idx, statement in enumerate(statements, start=1):
            start_time = time.perf_counter()
            try:
                con.execute(statement)
            except duckdb.Error as exc:
                if timed_out.is_set():
                    return ScriptResult(sql_path, idx - 1, f"Timed out after {timeout}s in statement {idx}")
                return ScriptResult(sql_path, idx - 1, f"Statement {idx} failed: {exc}")
            if log:
                duration = time.perf_counter() - start_time
                log(f"Finished {sql_path.name} [statement {idx}] in {duration:.2f}s")
    finally:
        if timer is not None:
            timer.cancel()
    return ScriptResult(sql_path, len(statements))
