import os
import sys
import io
import datetime
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from PIL import Image

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import CardioAPI, parse_workout_date
from vision_service import ExtractionError


TODAY = datetime.date(2024, 1, 7)


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), "white").save(buf, format="PNG")
    return buf.getvalue()


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cardio.db"
        self.yaml_path = "test_cardio_settings.yaml"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        if os.path.exists(self.yaml_path):
            os.remove(self.yaml_path)
        self.vision = mock.Mock()
        self.api = CardioAPI(
            db_path=self.db_path,
            yaml_path=self.yaml_path,
            vision=self.vision,
            today=lambda: TODAY,
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        if os.path.exists(self.yaml_path):
            os.remove(self.yaml_path)

    def _save(self, date: str, calories: float, **extra) -> int:
        response = self.client.post(
            "/workouts",
            params={"date": date, "username": "alice"},
            json={"calories": calories, "elapsedTimeSeconds": 1800, **extra},
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["id"]

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_save_and_list_workouts(self) -> None:
        first = self._save("2024-01-01", 300)
        second = self._save("2024-01-03", 200)
        response = self.client.get("/workouts", params={"username": "alice"})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([w["id"] for w in data], [second, first])
        self.assertEqual(data[0]["timestamp"], "2024-01-03T12:00:00")
        self.assertEqual(data[0]["distance_miles"], 0)
        self.assertIsNone(data[0]["avg_heart_rate"])

        response = self.client.get(
            "/workouts", params={"username": "alice", "since": "2024-01-02"}
        )
        self.assertEqual([w["id"] for w in response.json()], [second])

    def test_save_rejects_bad_dates(self) -> None:
        response = self.client.post(
            "/workouts",
            params={"date": "2024-01-08", "username": "alice"},
            json={"calories": 1},
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            "/workouts",
            params={"date": "2024/01/01", "username": "alice"},
            json={"calories": 1},
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            "/workouts", params={"date": "2024-01-01"}, json={"calories": 1}
        )
        self.assertEqual(response.status_code, 400)

    def test_get_and_delete_workout(self) -> None:
        wid = self._save("2024-01-02", 150)
        response = self.client.get(f"/workouts/{wid}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["calories"], 150)
        self.assertEqual(self.client.delete(f"/workouts/{wid}").status_code, 200)
        self.assertEqual(self.client.get(f"/workouts/{wid}").status_code, 404)
        self.assertEqual(self.client.delete(f"/workouts/{wid}").status_code, 404)

    def test_history_daily_and_weekly(self) -> None:
        self._save("2024-01-01", 300)
        self._save("2024-01-03", 200)
        response = self.client.get("/history", params={"username": "alice"})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["granularity"], "daily")
        self.assertEqual(data["values"], [300, 0, 200, 0, 0, 0, 0])
        self.assertEqual(data["labels"][0], "Jan 1")
        self.assertEqual(data["selected"], 2)
        self.assertEqual(
            data["overlay"], {"index": 2, "label": "Jan 3", "visible": True}
        )
        self.assertEqual(data["detail"]["label"], "Jan 3, 2024")

        response = self.client.put(
            "/history/granularity", params={"value": "weekly", "username": "alice"}
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data["values"]), 1)
        self.assertAlmostEqual(data["values"][0], 500 / 7)
        self.assertEqual(data["detail"]["days_summary"], "2 of 7 days")
        calories = [v for v in data["detail"]["values"] if v["key"] == "calories"][0]
        self.assertEqual(calories["value"], 250)

    def test_history_unknown_keys_keep_state(self) -> None:
        self._save("2024-01-01", 300)
        self.client.get("/history", params={"username": "alice", "granularity": "weekly"})
        response = self.client.put(
            "/history/granularity", params={"value": "yearly", "username": "alice"}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.put(
            "/history/metric", params={"value": "steps", "username": "alice"}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.get("/history/detail", params={"username": "alice"})
        self.assertEqual(response.json()["detail"]["granularity"], "weekly")
        response = self.client.get(
            "/history", params={"username": "alice", "metric": "steps"}
        )
        self.assertEqual(response.status_code, 400)

    def test_rejected_history_query_changes_nothing(self) -> None:
        self._save("2024-01-01", 300)
        self.client.get("/history", params={"username": "alice"})
        response = self.client.get(
            "/history",
            params={"username": "alice", "granularity": "monthly", "metric": "steps"},
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.get(
            "/history",
            params={"username": "alice", "granularity": "weekly", "range_days": -1},
        )
        self.assertEqual(response.status_code, 400)
        context = self.api.controller("alice").context
        self.assertEqual(context.granularity.value, "daily")
        self.assertEqual(context.series.granularity.value, "daily")
        self.assertEqual(context.range_days, 0)

        response = self.client.put(
            "/history/metric", params={"value": "distance", "username": "alice"}
        )
        data = response.json()
        self.assertEqual(data["granularity"], "daily")
        self.assertEqual(data["labels"][0], "Jan 1")

    def test_history_metric_switch(self) -> None:
        self._save("2024-01-01", 300, distanceMiles=3.1)
        self.client.get("/history", params={"username": "alice"})
        response = self.client.put(
            "/history/metric", params={"value": "distance", "username": "alice"}
        )
        self.assertEqual(response.json()["metric"], "distance")
        self.assertEqual(response.json()["values"][0], 3.1)

    def test_history_select(self) -> None:
        self._save("2024-01-01", 300)
        self._save("2024-01-03", 200)
        self.client.get("/history", params={"username": "alice"})
        response = self.client.post(
            "/history/select", params={"index": 1, "username": "alice"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["selected"], 1)
        self.assertIsNone(response.json()["detail"])
        response = self.client.post(
            "/history/select", params={"index": 99, "username": "alice"}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.get("/history/detail", params={"username": "alice"})
        self.assertEqual(response.json(), {"selected": 1, "detail": None})

    def test_history_range_filter(self) -> None:
        self._save("2023-11-01", 400)
        self._save("2024-01-03", 200)
        response = self.client.get(
            "/history", params={"username": "alice", "range_days": 30}
        )
        data = response.json()
        self.assertEqual(data["labels"][0], "Jan 3")
        self.assertEqual(len(data["workouts"]), 1)
        response = self.client.get(
            "/history", params={"username": "alice", "range_days": -1}
        )
        self.assertEqual(response.status_code, 400)

    def test_history_without_user_is_empty(self) -> None:
        response = self.client.get("/history")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["labels"], [])
        self.assertEqual(data["selected"], -1)
        self.assertFalse(data["overlay"]["visible"])

    def test_settings(self) -> None:
        response = self.client.post(
            "/settings/general", json={"openai_api_key": "bad-key"}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            "/settings/general",
            json={
                "username": "alice",
                "openai_api_key": "sk-test",
                "default_granularity": "monthly",
            },
        )
        self.assertEqual(response.status_code, 200)
        data = self.client.get("/settings/general").json()
        self.assertEqual(data["username"], "alice")
        self.assertIs(data["openai_api_key"], True)
        self.assertEqual(data["default_granularity"], "monthly")

        self._save("2024-01-01", 300)
        response = self.client.get("/history")
        self.assertEqual(response.json()["granularity"], "monthly")
        self.assertEqual(response.json()["labels"], ["Jan 2024"])

    def test_extract(self) -> None:
        self.vision.extract.return_value = {"calories": 320, "elapsedTimeSeconds": 1800, "distanceMiles": 3}
        response = self.client.post("/workouts/extract", content=_png_bytes())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["extraction"]["calories"], 320)
        self.assertIn("date", response.json())

        self.vision.extract.side_effect = ExtractionError("No content returned from OpenAI")
        response = self.client.post("/workouts/extract", content=_png_bytes())
        self.assertEqual(response.status_code, 502)

        response = self.client.post("/workouts/extract", content=b"")
        self.assertEqual(response.status_code, 400)

    def test_extract_requires_api_key(self) -> None:
        api = CardioAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        client = TestClient(api.app)
        response = client.post("/workouts/extract", content=_png_bytes())
        self.assertEqual(response.status_code, 400)

    def test_rate_limit(self) -> None:
        api = CardioAPI(db_path=self.db_path, yaml_path=self.yaml_path, rate_limit=2)
        client = TestClient(api.app)
        self.assertEqual(client.get("/health").status_code, 200)
        self.assertEqual(client.get("/health").status_code, 200)
        self.assertEqual(client.get("/health").status_code, 429)


class ParseWorkoutDateTest(unittest.TestCase):
    def test_date_only_is_noon(self) -> None:
        self.assertEqual(
            parse_workout_date("2024-01-03"), datetime.datetime(2024, 1, 3, 12, 0)
        )

    def test_full_timestamp(self) -> None:
        self.assertEqual(
            parse_workout_date("2024-01-03T07:15:00"),
            datetime.datetime(2024, 1, 3, 7, 15),
        )


if __name__ == "__main__":
    unittest.main()
