import os
import sys
import datetime
import unittest
import warnings
from altair.utils.deprecation import AltairDeprecationWarning

warnings.simplefilter("ignore", AltairDeprecationWarning)

from streamlit.testing.v1 import AppTest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SettingsRepository, WorkoutRepository

APP_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "streamlit_app.py")


class StreamlitAppTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = os.path.abspath("test_gui.db")
        self.yaml_path = os.path.abspath("test_gui_settings.yaml")
        for path in [self.db_path, self.yaml_path]:
            if os.path.exists(path):
                os.remove(path)
        os.environ["DB_PATH"] = self.db_path
        os.environ["YAML_PATH"] = self.yaml_path
        self.at = AppTest.from_file(APP_PATH, default_timeout=20)

    def tearDown(self) -> None:
        for path in [self.db_path, self.yaml_path]:
            if os.path.exists(path):
                os.remove(path)
        os.environ.pop("DB_PATH", None)
        os.environ.pop("YAML_PATH", None)

    def _configure(self) -> None:
        SettingsRepository(self.db_path, self.yaml_path).update(
            {"username": "alice", "openai_api_key": "sk-test"}
        )

    def _seed_today(self, calories: float) -> int:
        today = datetime.date.today()
        return WorkoutRepository(self.db_path).create(
            "alice",
            datetime.datetime.combine(today, datetime.time(12)),
            calories=calories,
            elapsed_time_seconds=1800,
        )

    def _metric(self, label: str) -> str:
        for metric in self.at.metric:
            if metric.label == label:
                return metric.value
        self.fail(f"metric {label} not found")

    def test_setup_form_required(self) -> None:
        self.at.run()
        self.assertEqual(len(self.at.tabs), 0)
        self.at.text_input[0].input("alice")
        self.at.text_input[1].input("sk-test")
        self.at.button[0].click().run()
        self.assertTrue(SettingsRepository(self.db_path, self.yaml_path).is_setup_complete())
        self.assertEqual([t.label for t in self.at.tabs], ["Log", "History", "Settings"])

    def test_setup_rejects_bad_key(self) -> None:
        self.at.run()
        self.at.text_input[0].input("alice")
        self.at.text_input[1].input("not-a-key")
        self.at.button[0].click().run()
        self.assertTrue(self.at.error)
        self.assertFalse(SettingsRepository(self.db_path, self.yaml_path).is_setup_complete())

    def test_empty_history(self) -> None:
        self._configure()
        self.at.run()
        self.assertIn("No workouts logged yet", [i.value for i in self.at.info])

    def test_saved_custom_range_applies(self) -> None:
        SettingsRepository(self.db_path, self.yaml_path).update(
            {"username": "alice", "openai_api_key": "sk-test", "history_range_days": 7}
        )
        self._seed_today(320)
        old_day = datetime.date.today() - datetime.timedelta(days=20)
        WorkoutRepository(self.db_path).create(
            "alice", datetime.datetime.combine(old_day, datetime.time(12)), calories=100
        )
        self.at.run()
        range_box = self.at.selectbox(key="history_range")
        self.assertEqual(range_box.value, "Last 7 days")
        self.assertIn("All time", range_box.options)
        self.assertEqual(len(self.at.expander), 1)

        range_box.set_value("All time").run()
        self.assertEqual(len(self.at.expander), 2)

    def test_history_detail_and_granularity(self) -> None:
        self._configure()
        self._seed_today(320)
        self.at.run()
        self.assertEqual(self._metric("Calories"), "320")
        self.assertEqual(self._metric("Duration"), "30:00")

        self.at.selectbox(key="history_granularity").set_value("weekly").run()
        self.assertIn("1 of 7 days", [c.value for c in self.at.caption])
        self.assertEqual(self._metric("Calories"), "320")
        self.assertEqual(self._metric("Climbed"), "no data")

    def test_delete_workout(self) -> None:
        self._configure()
        wid = self._seed_today(320)
        self.at.run()
        self.at.button(key=f"delete_workout_{wid}").click().run()
        self.assertEqual(WorkoutRepository(self.db_path).fetch_for_user("alice"), [])
        self.assertIn("No workouts logged yet", [i.value for i in self.at.info])


if __name__ == "__main__":
    unittest.main()
