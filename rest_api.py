import datetime
import logging
import time
from dataclasses import asdict
from typing import Callable

from fastapi import FastAPI, HTTPException, Response, Body, APIRouter, Request

from config import APP_VERSION, DB_PATH, YAML_PATH
from db import SettingsRepository, WorkoutRepository
from chart_adapter import ChartAdapter
from history_service import Granularity, HistoryContext, HistoryController, HistoryView
from image_tools import extract_capture_date
from metrics import Metric
from vision_service import ExtractionError, VisionExtractor
from workout_store import WorkoutRecord, WorkoutStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory rate limiter."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = {}

    async def __call__(self, request: Request, call_next):
        ip = request.client.host if request.client else "anon"
        now = time.time()
        history = [t for t in self.requests.get(ip, []) if now - t < self.window]
        if len(history) >= self.limit:
            return Response("rate limit exceeded", status_code=429)
        history.append(now)
        self.requests[ip] = history
        return await call_next(request)


def parse_workout_date(value: str | None) -> datetime.datetime:
    """Return the timestamp for a ``YYYY-MM-DD`` or ISO datetime string.

    Date-only values are pinned to noon so the calendar day survives
    timezone shifts.
    """
    if value is None:
        return datetime.datetime.now().replace(microsecond=0)
    if len(value) == 10:
        day = datetime.date.fromisoformat(value)
        return datetime.datetime.combine(day, datetime.time(12, 0))
    return datetime.datetime.fromisoformat(value)


class CardioAPI:
    """Provides REST endpoints for cardio workout logging and history."""

    def __init__(
        self,
        db_path: str = "workouts.db",
        yaml_path: str = "settings.yaml",
        *,
        rate_limit: int | None = None,
        rate_window: int = 60,
        vision: VisionExtractor | None = None,
        today: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.workouts = WorkoutRepository(db_path)
        self.vision = vision
        self.today = today
        self.controllers: dict[str, HistoryController] = {}
        self.app = FastAPI(
            title="Cardio History API",
            description="REST API for cardio workout logging and history",
        )
        if rate_limit is not None:
            limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(limiter)
        self._setup_routes()

    def _username(self, username: str | None) -> str:
        return username or self.settings.get_text("username", "")

    def _vision(self) -> VisionExtractor:
        if self.vision is not None:
            return self.vision
        api_key = self.settings.get_text("openai_api_key", "")
        if not api_key:
            raise HTTPException(status_code=400, detail="OpenAI API key not configured")
        return VisionExtractor(api_key)

    def controller(self, username: str) -> HistoryController:
        """Return the history controller owning ``username``'s view state."""
        if username not in self.controllers:
            context = HistoryContext(
                granularity=Granularity.parse(
                    self.settings.get_text("default_granularity", "daily")
                ),
                metric=Metric.parse(self.settings.get_text("default_metric", "calories")),
                range_days=self.settings.get_int("history_range_days", 0),
            )
            self.controllers[username] = HistoryController(
                WorkoutStore(self.db_path, username), context, today=self.today
            )
        return self.controllers[username]

    @staticmethod
    def _view_payload(view: HistoryView) -> dict:
        payload = view.to_dict()
        overlay = ChartAdapter.selection_overlay(view.series.buckets, view.selection)
        payload["overlay"] = asdict(overlay)
        return payload

    def _setup_routes(self) -> None:
        history_router = APIRouter(prefix="/history", tags=["History"])

        @self.app.get("/health")
        def health():
            return {"status": "ok", "version": APP_VERSION}

        @self.app.get("/settings/general")
        def get_general_settings():
            data = self.settings.all_settings()
            data["openai_api_key"] = bool(data.get("openai_api_key"))
            return data

        @self.app.post("/settings/general")
        def update_general_settings(
            username: str | None = Body(None),
            openai_api_key: str | None = Body(None),
            default_granularity: str | None = Body(None),
            default_metric: str | None = Body(None),
            history_range_days: int | None = Body(None),
        ):
            values = {
                "username": username,
                "openai_api_key": openai_api_key,
                "default_granularity": default_granularity,
                "default_metric": default_metric,
                "history_range_days": history_range_days,
            }
            values = {k: v for k, v in values.items() if v is not None}
            try:
                self.settings.update(values)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"status": "updated"}

        @self.app.post(
            "/workouts",
            summary="Save workout",
            description="Store the fields read from a machine screen for a day.",
        )
        def save_workout(
            extraction: dict = Body(...),
            date: str | None = None,
            username: str | None = None,
        ):
            user = self._username(username)
            if not user:
                raise HTTPException(status_code=400, detail="username required")
            try:
                workout_date = parse_workout_date(date)
            except ValueError:
                raise HTTPException(
                    status_code=400,
                    detail="date must be in YYYY-MM-DD or ISO format",
                )
            if workout_date.date() > self.today():
                raise HTTPException(
                    status_code=400, detail="date cannot be in the future"
                )
            workout_id = self.workouts.save(user, extraction, workout_date)
            logger.info("saved workout %s for %s", workout_id, user)
            return {"id": workout_id}

        @self.app.get(
            "/workouts",
            summary="List workouts",
            description="Retrieve a user's workouts newest-first.",
        )
        def list_workouts(username: str | None = None, since: str | None = None):
            try:
                since_dt = datetime.datetime.fromisoformat(since) if since else None
            except ValueError:
                raise HTTPException(status_code=400, detail="invalid since")
            rows = self.workouts.fetch_for_user(self._username(username), since_dt)
            return [WorkoutRecord.from_row(r).to_dict() for r in rows]

        @self.app.post("/workouts/extract")
        async def extract_workout(request: Request):
            data = await request.body()
            if not data:
                raise HTTPException(status_code=400, detail="image required")
            vision = self._vision()
            try:
                extraction = vision.extract(data)
            except ExtractionError as e:
                logger.error("Capture extraction failed: %s", e)
                raise HTTPException(status_code=502, detail=str(e))
            taken = extract_capture_date(data)
            return {
                "extraction": extraction,
                "date": taken.date().isoformat(),
            }

        @self.app.get("/workouts/{workout_id}")
        def get_workout(workout_id: int):
            row = self.workouts.fetch_detail(workout_id)
            if row is None:
                raise HTTPException(status_code=404, detail="workout not found")
            return WorkoutRecord.from_row(row).to_dict()

        @self.app.delete("/workouts/{workout_id}")
        def delete_workout(workout_id: int):
            try:
                self.workouts.delete(workout_id)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {"status": "deleted"}

        @history_router.get("")
        async def get_history(
            username: str | None = None,
            granularity: str | None = None,
            metric: str | None = None,
            range_days: int | None = None,
        ):
            controller = self.controller(self._username(username))
            context = controller.context
            try:
                new_granularity = (
                    Granularity.parse(granularity)
                    if granularity is not None
                    else context.granularity
                )
                new_metric = Metric.parse(metric) if metric is not None else context.metric
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            if range_days is not None and range_days < 0:
                raise HTTPException(status_code=400, detail="range_days must be non-negative")
            context.granularity = new_granularity
            context.metric = new_metric
            if range_days is not None:
                context.range_days = range_days
            view = await controller.refresh()
            return self._view_payload(view)

        @history_router.put("/granularity")
        async def set_granularity(value: str, username: str | None = None):
            controller = self.controller(self._username(username))
            if not controller.set_granularity(value):
                raise HTTPException(status_code=400, detail=f"unknown granularity: {value}")
            return self._view_payload(controller.view())

        @history_router.put("/metric")
        async def set_metric(value: str, username: str | None = None):
            controller = self.controller(self._username(username))
            if not controller.set_metric(value):
                raise HTTPException(status_code=400, detail=f"unknown metric: {value}")
            return self._view_payload(controller.view())

        @history_router.post("/select")
        async def select_bucket(index: int, username: str | None = None):
            controller = self.controller(self._username(username))
            try:
                view = controller.select(index)
            except IndexError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._view_payload(view)

        @history_router.get("/detail")
        async def get_detail(username: str | None = None):
            view = self.controller(self._username(username)).view()
            return {
                "selected": view.selection.index,
                "detail": view.detail.to_dict() if view.detail else None,
            }

        self.app.include_router(history_router)


def create_app(db_path: str = DB_PATH, yaml_path: str = YAML_PATH) -> FastAPI:
    return CardioAPI(db_path=db_path, yaml_path=yaml_path).app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app())
