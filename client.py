import requests
from typing import Optional


class CardioClient:
    """Simple REST client for the cardio history API."""

    def __init__(self, base_url: str = "http://localhost:8000", username: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username

    def _params(self, **params) -> dict:
        if self.username is not None:
            params.setdefault("username", self.username)
        return {k: v for k, v in params.items() if v is not None}

    def save_workout(self, extraction: dict, date: Optional[str] = None) -> int:
        resp = requests.post(
            f"{self.base_url}/workouts",
            params=self._params(date=date),
            json=extraction,
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def extract(self, image: bytes) -> dict:
        resp = requests.post(
            f"{self.base_url}/workouts/extract",
            data=image,
            headers={"Content-Type": "application/octet-stream"},
        )
        resp.raise_for_status()
        return resp.json()

    def list_workouts(self, since: Optional[str] = None):
        resp = requests.get(f"{self.base_url}/workouts", params=self._params(since=since))
        resp.raise_for_status()
        return resp.json()

    def delete_workout(self, workout_id: int) -> None:
        resp = requests.delete(f"{self.base_url}/workouts/{workout_id}")
        resp.raise_for_status()

    def history(
        self,
        granularity: Optional[str] = None,
        metric: Optional[str] = None,
        range_days: Optional[int] = None,
    ) -> dict:
        resp = requests.get(
            f"{self.base_url}/history",
            params=self._params(
                granularity=granularity, metric=metric, range_days=range_days
            ),
        )
        resp.raise_for_status()
        return resp.json()

    def select(self, index: int) -> dict:
        resp = requests.post(
            f"{self.base_url}/history/select", params=self._params(index=index)
        )
        resp.raise_for_status()
        return resp.json()

    def detail(self) -> Optional[dict]:
        resp = requests.get(f"{self.base_url}/history/detail", params=self._params())
        resp.raise_for_status()
        return resp.json()["detail"]
