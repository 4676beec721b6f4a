"""
Deploy versioned SQL scripts to a DuckDB database.

``MAIN_PATH/Versions.txt`` lists version identifiers. Versions run in plain
text sort order (zero-pad numeric ids). Each version is a folder
``MAIN_PATH/{version}`` holding a controller file ``{version}.Controller.sql``
that names one script per line, in execution order.

A controller line that starts with ``/*`` has already run and is skipped.
After a script succeeds its line is rewritten as ``/* script.sql */`` right
away, so re-running after a failure resumes where the last run stopped. When
every script of a version has run, the version marker table is updated.

Any failure stops the run with exit code 1.
"""
import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb
from daily_log import DEFAULT_LOG_FOLDER, DailyLog, LogLevel
from duckdb_run_script import DEFAULT_CONFIG, connect, execute_script, load_json, merge_config
from tqdm import tqdm


VERSIONS_FILE = "Versions.txt"
CONTROLLER_SUFFIX = ".Controller.sql"
COMMENT_OPEN = "/*"
COMMENT_CLOSE = "*/"
DEFAULT_LOG_TYPE = "SqlDeploy"
DEFAULT_VERSION_TABLE = "deploy_version"
# Long enough to never cut off a legitimate deployment script.
DEFAULT_QUERY_TIMEOUT = 65535.0


class DeployError(Exception):
    """A condition that stops the deployment."""


@dataclass(frozen=True)
class ControllerEntry:
    line_number: int
    script_name: str
    completed: bool

    def render(self) -> str:
        if self.completed:
            return f"{COMMENT_OPEN} {self.script_name} {COMMENT_CLOSE}"
        return self.script_name


def parse_controller_line(line_number: int, line: str) -> Optional[ControllerEntry]:
    text = line.strip()
    if not text:
        return None
    # Prefix test only: a script whose real name starts with "/*" reads as done.
    if text.startswith(COMMENT_OPEN):
        name = text[len(COMMENT_OPEN):]
        if name.endswith(COMMENT_CLOSE):
            name = name[: -len(COMMENT_CLOSE)]
        return ControllerEntry(line_number, name.strip(), True)
    return ControllerEntry(line_number, text, False)


def read_controller(path: Path) -> List[ControllerEntry]:
    entries = []
    for idx, line in enumerate(path.read_text(encoding="utf-8").splitlines()):
        entry = parse_controller_line(idx, line)
        if entry is not None:
            entries.append(entry)
    return entries


def mark_completed(path: Path, entry: ControllerEntry) -> ControllerEntry:
    raw = path.read_text(encoding="utf-8")
    lines = raw.splitlines()
    if entry.line_number >= len(lines) or lines[entry.line_number].strip() != entry.script_name:
        raise DeployError(f"Controller {path} changed; line {entry.line_number + 1} is no longer {entry.script_name}")
    done = ControllerEntry(entry.line_number, entry.script_name, True)
    lines[entry.line_number] = done.render()
    trailer = "\n" if raw.endswith(("\n", "\r")) else ""
    path.write_text("\n".join(lines) + trailer, encoding="utf-8")
    return done


def read_versions(main_path: Path) -> List[str]:
    versions_path = main_path / VERSIONS_FILE
    if not versions_path.is_file():
        raise DeployError(f"Version list not found: {versions_path}")
    versions = [line.strip() for line in versions_path.read_text(encoding="utf-8").splitlines()]
    return sorted(v for v in versions if v)


def controller_path(main_path: Path, version: str) -> Path:
    return main_path / version / f"{version}{CONTROLLER_SUFFIX}"


def current_version(con: duckdb.DuckDBPyConnection, table: str = DEFAULT_VERSION_TABLE) -> Optional[str]:
    row = con.execute(
        """
        SELECT 1
        FROM information_schema.tables
        WHERE table_name = ?
        LIMIT 1
        """,
        [table],
    ).fetchone()
    if row is None:
        return None
    row = con.execute(f"SELECT version FROM {table} LIMIT 1").fetchone()
    return row[0] if row else None


def update_version_marker(con: duckdb.DuckDBPyConnection, version: str, table: str = DEFAULT_VERSION_TABLE) -> None:
    con.execute(f"CREATE TABLE IF NOT EXISTS {table} (version VARCHAR, updated_at TIMESTAMP)")
    con.execute("BEGIN TRANSACTION")
    try:
        con.execute(f"DELETE FROM {table}")
        con.execute(f"INSERT INTO {table} VALUES (?, current_timestamp)", [version])
        con.execute("COMMIT")
    except duckdb.Error:
        con.execute("ROLLBACK")
        raise


def deploy_version(
    con: duckdb.DuckDBPyConnection,
    main_path: Path,
    version: str,
    log: DailyLog,
    *,
    variables: Dict[str, str],
    timeout: Optional[float],
    version_table: str,
) -> int:
    """Run the pending scripts of one version and return how many ran."""
    version_dir = main_path / version
    if not version_dir.is_dir():
        raise DeployError(f"Version folder not found: {version_dir}")
    controller = controller_path(main_path, version)
    if not controller.is_file():
        raise DeployError(f"Controller not found: {controller}")

    log.info(f"Version {version}: reading {controller.name}")
    executed = 0
    for entry in read_controller(controller):
        if entry.completed:
            log.info(f"Skipping {entry.script_name} (already run)")
            continue
        script_path = version_dir / entry.script_name
        if not script_path.is_file():
            raise DeployError(f"Script not found: {script_path}")

        log.info(f"Executing {script_path}")
        result = execute_script(con, script_path, variables, timeout=timeout, log=log.info)
        if not result.ok:
            raise DeployError(f"{entry.script_name} failed: {result.error}")
        mark_completed(controller, entry)
        executed += 1
        log.info(f"Completed {entry.script_name} ({result.statements} statement(s))")

    update_version_marker(con, version, version_table)
    log.info(f"Version marker set to {version}")
    return executed


def deploy(
    server: str,
    main_path: Path,
    log: DailyLog,
    config: Optional[Dict[str, Any]] = None,
    *,
    timeout: Optional[float] = DEFAULT_QUERY_TIMEOUT,
    version_table: str = DEFAULT_VERSION_TABLE,
) -> int:
    """Deploy every version listed under ``main_path``; return the exit code."""
    main_path = Path(main_path)
    merged = merge_config(DEFAULT_CONFIG, config or {})
    variables = merged.get("variables", {})
    log.entry(f"Deploying {main_path} to {server}", LogLevel.START)
    try:
        versions = read_versions(main_path)
        log.info(f"Found {len(versions)} version(s): {', '.join(versions)}")
        con = connect(server, merged)
        try:
            log.info(f"Current version marker: {current_version(con, version_table) or '(none)'}")
            with tqdm(total=len(versions), desc="Deploy", unit="version") as progress:
                for version in versions:
                    deploy_version(
                        con,
                        main_path,
                        version,
                        log,
                        variables=variables,
                        timeout=timeout,
                        version_table=version_table,
                    )
                    progress.update(1)
        finally:
            con.close()
    except DeployError as exc:
        log.error(str(exc))
        return 1
    except Exception:
        log.exception("Deployment aborted")
        return 1
    log.entry("Deployment finished", LogLevel.END)
    return 0


def existing_dir(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_dir():
        raise argparse.ArgumentTypeError(f"Folder not found: {value}")
    return path


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deploy versioned SQL scripts to DuckDB")
    parser.add_argument("--server", required=True, help="DuckDB database file (or :memory:)")
    parser.add_argument("--main-path", required=True, type=existing_dir, help=f"Folder containing {VERSIONS_FILE}")
    parser.add_argument("--log-folder", type=existing_dir, default=DEFAULT_LOG_FOLDER, help="Root folder for log files")
    parser.add_argument("--log-type", default=DEFAULT_LOG_TYPE, help=f"Log name (default: {DEFAULT_LOG_TYPE})")
    parser.add_argument("-c", "--config", dest="config", help="Config json with 'variables' and 'duckdb' settings")
    parser.add_argument(
        "--set",
        dest="variable_overrides",
        action="append",
        default=[],
        metavar="VAR=VALUE",
        help="Override SQL variables (repeatable), e.g. --set @schema=main",
    )
    parser.add_argument(
        "--query-timeout",
        type=float,
        default=DEFAULT_QUERY_TIMEOUT,
        help="Seconds allowed per script before it is interrupted (0 disables)",
    )
    parser.add_argument(
        "--version-table",
        default=DEFAULT_VERSION_TABLE,
        help=f"Table holding the deployed version marker (default: {DEFAULT_VERSION_TABLE})",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = load_json(args.config)
    if args.variable_overrides:
        config.setdefault("variables", {})
        for raw in args.variable_overrides:
            if "=" not in raw:
                raise ValueError(f"Invalid --set value (expected VAR=VALUE): {raw}")
            key, value = raw.split("=", 1)
            config["variables"][key.strip()] = value

    log = DailyLog(args.log_folder, args.log_type)
    return deploy(
        args.server,
        args.main_path,
        log,
        config,
        timeout=args.query_timeout or None,
        version_table=args.version_table,
    )


if __name__ == "__main__":
    raise SystemExit(main())
