from __future__ import annotations

import importlib.util
import sys
import unittest
from pathlib import Path


def load_module(path: Path, name: str):
    scripts_dir = path.parent
    if str(scripts_dir) not in sys.path:
        sys.path.insert(0, str(scripts_dir))
    spec = importlib.util.spec_from_file_location(name, path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestDeployVariables(unittest.TestCase):
    def setUp(self) -> None:
        repo_root = Path(__file__).resolve().parents[2]
        self.duck = load_module(repo_root / "scripts" / "duckdb_run_script.py", "duckdb_run_script_vars")

    def test_table_name_is_replaced_everywhere_in_a_script(self) -> None:
        sql = "CREATE TABLE @table_name (id INTEGER);\nINSERT INTO @table_name VALUES (1);"
        out = self.duck.substitute_variables(sql, {"@table_name": "widgets"})
        self.assertEqual(out, "CREATE TABLE widgets (id INTEGER);\nINSERT INTO widgets VALUES (1);")

    def test_variable_sharing_a_prefix_with_a_longer_one_is_not_clobbered(self) -> None:
        sql = "SELECT * FROM @schema.orders JOIN @schema_archive.orders USING (id)"
        out = self.duck.substitute_variables(sql, {"@schema": "main", "@schema_archive": "history"})
        self.assertEqual(out, "SELECT * FROM main.orders JOIN history.orders USING (id)")

    def test_variable_defined_in_terms_of_another_resolves(self) -> None:
        out = self.duck.substitute_variables(
            "ATTACH '@audit_db' AS audit",
            {"@audit_db": "@data_dir/audit.duckdb", "@data_dir": "/srv/deploy"},
        )
        self.assertEqual(out, "ATTACH '/srv/deploy/audit.duckdb' AS audit")

    def test_numeric_values_are_rendered_as_text(self) -> None:
        out = self.duck.substitute_variables("SET threads=@threads", {"@threads": 4})
        self.assertEqual(out, "SET threads=4")

    def test_cli_overrides_deep_merge_over_config_file(self) -> None:
        from_file = {"variables": {"@table_name": "widgets", "@schema": "main"}, "duckdb": {"threads": 2}}
        overrides = {"variables": {"@table_name": "gadgets"}}
        merged = self.duck.merge_config(self.duck.DEFAULT_CONFIG, self.duck.merge_config(from_file, overrides))
        self.assertEqual(merged["variables"], {"@table_name": "gadgets", "@schema": "main"})
        self.assertEqual(merged["duckdb"]["threads"], 2)
        self.assertIsNone(merged["duckdb"]["memory_limit"])

    def test_split_queries_keeps_statements_sharing_a_line(self) -> None:
        out = self.duck.split_queries("CREATE TABLE t (id INTEGER); INSERT INTO t VALUES (1);\nSELECT 1;")
        self.assertEqual([q.strip() for q in out], ["CREATE TABLE t (id INTEGER)", "INSERT INTO t VALUES (1)", "SELECT 1"])

    def test_split_queries_drops_trailing_comment_after_last_statement(self) -> None:
        out = self.duck.split_queries("SELECT 1; -- note\nSELECT 2; -- another\n")
        self.assertEqual([q.strip() for q in out], ["SELECT 1", "SELECT 2"])
