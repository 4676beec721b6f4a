from __future__ import annotations

import importlib.util
import re
import sys
import tempfile
import unittest
from datetime import datetime
from pathlib import Path


def load_module(path: Path, name: str):
    scripts_dir = path.parent
    if str(scripts_dir) not in sys.path:
        sys.path.insert(0, str(scripts_dir))
    spec = importlib.util.spec_from_file_location(name, path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


class TestDailyLog(unittest.TestCase):
    def setUp(self) -> None:
        repo_root = Path(__file__).resolve().parents[2]
        self.mod = load_module(repo_root / "scripts" / "daily_log.py", "daily_log_test_mod")

    def test_path_is_keyed_by_name_year_month_day(self) -> None:
        log = self.mod.DailyLog(Path("/logs"), "Nightly")
        path = log.path_for(datetime(2024, 3, 7, 12, 0, 0))
        self.assertEqual(path, Path("/logs/Nightly/2024/03/Nightly-20240307.log"))

    def test_first_write_creates_banner_then_entries_append(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = self.mod.DailyLog(Path(td), "App")
            log.info("first")
            log.warn("second")
            path = log.path_for(datetime.now())
            text = path.read_text(encoding="utf-8")

            self.assertTrue(text.startswith(self.mod.BANNER_RULE))
            self.assertIn("Host        :", text)
            self.assertIn(str(path.resolve()), text)
            self.assertEqual(text.count("Log created"), 1)
            lines = [line for line in text.splitlines() if line.startswith("[")]
            self.assertEqual(len(lines), 2)
            self.assertRegex(lines[0], r"^\[Info\]\[.+\] first$")
            self.assertRegex(lines[1], r"^\[Warn\]\[.+\] second$")

    def test_start_entry_is_preceded_by_blank_line(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = self.mod.DailyLog(Path(td), "App")
            log.entry("run one", self.mod.LogLevel.START)
            log.entry("done", self.mod.LogLevel.END)
            log.entry("run two", self.mod.LogLevel.START)
            lines = log.path_for(datetime.now()).read_text(encoding="utf-8").splitlines()

            for idx, line in enumerate(lines):
                if line.startswith("[Start]"):
                    self.assertEqual(lines[idx - 1], "")
            self.assertTrue(any(re.match(r"^\[End\]\[.+\] done$", line) for line in lines))

    def test_exception_includes_traceback(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log = self.mod.DailyLog(Path(td), "App")
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                log.exception("failed")
            text = log.path_for(datetime.now()).read_text(encoding="utf-8")
            self.assertIn("[Error]", text)
            self.assertIn("RuntimeError: boom", text)
