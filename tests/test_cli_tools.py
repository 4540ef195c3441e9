import os
import sys
import csv
import json
import datetime
import unittest
from contextlib import redirect_stdout
import io

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import (
    export_workouts,
    backup_db,
    restore_db,
    demo_data,
    print_history,
)
from db import WorkoutRepository


class CLIToolsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        self.yaml_path = "test_cli.yaml"
        for path in [self.db_path, self.yaml_path]:
            if os.path.exists(path):
                os.remove(path)
        self.repo = WorkoutRepository(self.db_path)

    def tearDown(self) -> None:
        for path in [
            self.db_path,
            self.yaml_path,
            "backup.db",
            "export.csv",
            "export.json",
        ]:
            if os.path.exists(path):
                os.remove(path)

    def test_export_backup_restore(self) -> None:
        self.repo.create("alice", datetime.datetime(2024, 1, 1, 12), calories=300)
        self.repo.create("alice", datetime.datetime(2024, 1, 2, 12), calories=250)
        self.assertEqual(export_workouts(self.db_path, "alice", "csv", "export.csv"), 2)
        with open("export.csv", newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        self.assertEqual(rows[0]["timestamp"], "2024-01-02T12:00:00")
        self.assertEqual(float(rows[1]["calories"]), 300)

        export_workouts(self.db_path, "alice", "json", "export.json")
        with open("export.json", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual([w["id"] for w in data], [2, 1])

        backup_db(self.db_path, "backup.db")
        self.assertTrue(os.path.exists("backup.db"))
        self.repo.delete_all()
        restore_db("backup.db", self.db_path)
        self.assertEqual(len(WorkoutRepository(self.db_path).fetch_for_user("alice")), 2)

    def test_demo_data(self) -> None:
        with redirect_stdout(io.StringIO()):
            demo_data(self.db_path, self.yaml_path, "demo")
        rows = self.repo.fetch_for_user("demo")
        self.assertGreater(len(rows), 0)
        out = io.StringIO()
        with redirect_stdout(out):
            demo_data(self.db_path, self.yaml_path, "demo")
        self.assertIn("already contains", out.getvalue())
        self.assertEqual(len(self.repo.fetch_for_user("demo")), len(rows))

    def test_print_history(self) -> None:
        today = datetime.date.today()
        self.repo.create(
            "alice",
            datetime.datetime.combine(today, datetime.time(12)),
            calories=300,
            elapsed_time_seconds=1800,
        )
        out = io.StringIO()
        with redirect_stdout(out):
            print_history(self.db_path, "alice", "weekly", "calories")
        text = out.getvalue()
        self.assertIn("1 of 7 days", text)
        self.assertIn("Calories: 300", text)

    def test_print_history_empty(self) -> None:
        out = io.StringIO()
        with redirect_stdout(out):
            print_history(self.db_path, "nobody", "daily", "calories")
        self.assertIn("No workouts logged yet", out.getvalue())


if __name__ == "__main__":
    unittest.main()
