import asyncio
import datetime
import logging
import os
import warnings

import streamlit as st
from altair.utils.deprecation import AltairDeprecationWarning

warnings.filterwarnings("ignore", category=AltairDeprecationWarning)
from config import DB_PATH, YAML_PATH
from db import SettingsRepository, WorkoutRepository, WORKOUT_EXTRACTION_KEYS
from chart_adapter import ChartAdapter
from history_service import (
    Granularity,
    HistoryContext,
    HistoryController,
    HistoryView,
    NO_DATA,
)
from image_tools import extract_capture_date
from metrics import DETAIL_FIELDS, Metric
from algorithms import UnitFormatter
from vision_service import ExtractionError, VisionExtractor
from workout_store import WorkoutRecord, WorkoutStore

logger = logging.getLogger(__name__)

GRANULARITY_LABELS = {
    Granularity.DAILY: "Daily",
    Granularity.WEEKLY: "Weekly",
    Granularity.MONTHLY: "Monthly",
}

RANGE_OPTIONS = {
    "All time": 0,
    "Last 30 days": 30,
    "Last 90 days": 90,
    "Last 365 days": 365,
}


def range_options(saved_days: int) -> dict[str, int]:
    """Return the range choices, adding the saved default when it is not a preset."""
    options = dict(RANGE_OPTIONS)
    if saved_days not in options.values():
        options[f"Last {saved_days} days"] = saved_days
    return options


EXTRACTION_LABELS = {
    "elapsedTimeSeconds": "Elapsed time (seconds)",
    "calories": "Calories",
    "distanceMiles": "Distance (mi)",
    "distanceClimbedFeet": "Climbed (ft)",
    "avgSpeedMph": "Avg speed (mph)",
    "avgPaceSecondsPerMile": "Avg pace (sec/mi)",
    "avgHeartRate": "Avg heart rate (bpm)",
}


class CardioApp:
    """Streamlit application for logging cardio workouts and browsing history."""

    def __init__(
        self, db_path: str = "workouts.db", yaml_path: str = "settings.yaml"
    ) -> None:
        self.db_path = db_path
        self.settings_repo = SettingsRepository(db_path, yaml_path)
        self.workouts = WorkoutRepository(db_path)
        self.username = self.settings_repo.get_text("username", "")
        self.saved_range = self.settings_repo.get_int("history_range_days", 0)
        self.range_options = range_options(self.saved_range)
        self._state_init()

    def _state_init(self) -> None:
        if "history_granularity" not in st.session_state:
            st.session_state.history_granularity = self.settings_repo.get_text(
                "default_granularity", Granularity.DAILY.value
            )
        if "history_metric" not in st.session_state:
            st.session_state.history_metric = self.settings_repo.get_text(
                "default_metric", Metric.CALORIES.value
            )
        if (
            st.session_state.pop("range_setting_changed", False)
            or st.session_state.get("history_range") not in self.range_options
        ):
            st.session_state.history_range = next(
                k for k, v in self.range_options.items() if v == self.saved_range
            )
        if "history_stale" not in st.session_state:
            st.session_state.history_stale = True
        if "chart_version" not in st.session_state:
            st.session_state.chart_version = 0
        if "applied_click" not in st.session_state:
            st.session_state.applied_click = None
        if "extraction" not in st.session_state:
            st.session_state.extraction = None
        if "extraction_date" not in st.session_state:
            st.session_state.extraction_date = None

    def _controller(self) -> HistoryController:
        """Return the session's history controller for the current user."""
        controller = st.session_state.get("history_controller")
        if controller is None or controller.store.username != self.username:
            context = HistoryContext(
                granularity=Granularity.parse(st.session_state.history_granularity),
                metric=Metric.parse(st.session_state.history_metric),
                range_days=self.range_options[st.session_state.history_range],
            )
            controller = HistoryController(
                WorkoutStore(self.db_path, self.username), context
            )
            st.session_state.history_controller = controller
            st.session_state.history_stale = True
        return controller

    def _invalidate_history(self) -> None:
        st.session_state.history_stale = True

    def _chart_key(self, controller: HistoryController) -> str:
        context = controller.context
        return (
            f"history_chart_{context.granularity.value}_{context.metric.value}"
            f"_{st.session_state.chart_version}"
        )

    def _setup_form(self) -> None:
        st.title("Cardio History")
        st.write("Enter a username and an OpenAI API key to start logging.")
        with st.form("setup_form"):
            username = st.text_input("Username", value=self.username)
            api_key = st.text_input("OpenAI API Key", type="password")
            submitted = st.form_submit_button("Save")
        if not submitted:
            return
        if not username.strip() or not api_key.strip():
            st.error("Username and API key are required")
            return
        try:
            self.settings_repo.update(
                {"username": username.strip(), "openai_api_key": api_key.strip()}
            )
        except ValueError as e:
            st.error(str(e))
            return
        st.rerun()

    def run(self) -> None:
        st.set_page_config(page_title="Cardio History", layout="wide")
        if not self.settings_repo.is_setup_complete():
            self._setup_form()
            return
        st.title("Cardio History")
        st.caption(f"Signed in as {self.username}")
        log_tab, history_tab, settings_tab = st.tabs(["Log", "History", "Settings"])
        with log_tab:
            self._log_tab()
        with history_tab:
            self._history_tab()
        with settings_tab:
            self._settings_tab()

    def _log_tab(self) -> None:
        st.header("Log Workout")
        photo = st.file_uploader(
            "Photo of the machine screen", type=["jpg", "jpeg", "png"], key="log_photo"
        )
        if photo is not None and st.button("Extract", key="log_extract"):
            data = photo.getvalue()
            extractor = VisionExtractor(self.settings_repo.get_text("openai_api_key", ""))
            with st.spinner("Reading the screen..."):
                try:
                    st.session_state.extraction = extractor.extract(data)
                except ExtractionError as e:
                    logger.error("Capture extraction failed: %s", e)
                    st.error(str(e))
                    st.session_state.extraction = None
            st.session_state.extraction_date = extract_capture_date(data).date()
        self._save_form()

    def _save_form(self) -> None:
        extraction = st.session_state.extraction or {}
        today = datetime.date.today()
        default_date = st.session_state.extraction_date or today
        with st.form("save_workout_form"):
            workout_date = st.date_input(
                "Date", value=min(default_date, today), max_value=today
            )
            values = {}
            for key in WORKOUT_EXTRACTION_KEYS:
                values[key] = st.number_input(
                    EXTRACTION_LABELS[key],
                    min_value=0.0,
                    value=(
                        float(extraction[key])
                        if extraction.get(key) is not None
                        else None
                    ),
                    key=f"log_{key}",
                )
            submitted = st.form_submit_button("Save Workout")
        if not submitted:
            return
        timestamp = datetime.datetime.combine(workout_date, datetime.time(12, 0))
        raw = {**extraction, **values}
        wid = self.workouts.save(self.username, raw, timestamp)
        logger.info("saved workout %s for %s", wid, self.username)
        st.session_state.extraction = None
        st.session_state.extraction_date = None
        self._invalidate_history()
        st.success("Workout saved")

    def _history_controls(self, controller: HistoryController) -> None:
        col1, col2, col3 = st.columns(3)
        with col1:
            granularity = st.selectbox(
                "Granularity",
                [g.value for g in Granularity],
                format_func=lambda v: GRANULARITY_LABELS[Granularity(v)],
                key="history_granularity",
            )
        with col2:
            metric = st.selectbox(
                "Metric",
                [m.value for m in Metric],
                format_func=lambda v: Metric(v).descriptor.label,
                key="history_metric",
            )
        with col3:
            range_label = st.selectbox(
                "Range", list(self.range_options), key="history_range"
            )
        context = controller.context
        if granularity != context.granularity.value:
            controller.set_granularity(granularity)
        if metric != context.metric.value:
            controller.set_metric(metric)
        if self.range_options[range_label] != context.range_days:
            context.range_days = self.range_options[range_label]
            self._invalidate_history()

    def _apply_chart_click(self, controller: HistoryController) -> None:
        key = self._chart_key(controller)
        index = ChartAdapter.clicked_index(st.session_state.get(key))
        if index is None or (key, index) == st.session_state.applied_click:
            return
        st.session_state.applied_click = (key, index)
        try:
            controller.select(index)
        except IndexError:
            logger.warning("ignoring stale chart selection %s", index)

    def _history_tab(self) -> None:
        st.header("History")
        controller = self._controller()
        self._history_controls(controller)
        if st.session_state.history_stale:
            asyncio.run(controller.refresh())
            st.session_state.history_stale = False
            st.session_state.chart_version += 1
        self._apply_chart_click(controller)
        view = controller.view()
        if view.is_empty:
            st.info("No workouts logged yet")
            return
        chart = ChartAdapter.bar_chart(view.series, view.selection)
        st.altair_chart(
            chart,
            use_container_width=True,
            on_select="rerun",
            selection_mode=ChartAdapter.SELECTION_NAME,
            key=self._chart_key(controller),
        )
        self._detail_panel(view)
        self._workout_list(view)

    def _detail_panel(self, view: HistoryView) -> None:
        bucket = view.selected_bucket
        detail = view.detail
        st.subheader(detail.label if detail else bucket.label)
        if detail is None:
            st.write(NO_DATA)
            return
        if detail.days_summary:
            st.caption(detail.days_summary)
        cols = st.columns(4)
        for idx, item in enumerate(detail.values):
            cols[idx % 4].metric(item.label, item.display)

    def _workout_card(self, workout: WorkoutRecord) -> None:
        title = workout.timestamp.strftime("%a %b %d, %Y")
        summary = UnitFormatter.format_duration(workout.elapsed_time_seconds)
        with st.expander(f"{title} - {summary}"):
            for f in DETAIL_FIELDS:
                st.write(f"{f.label}: {f.format(getattr(workout, f.key))}")
            if st.button("Delete", key=f"delete_workout_{workout.id}"):
                self.workouts.delete(workout.id)
                self._invalidate_history()
                st.rerun()

    def _workout_list(self, view: HistoryView) -> None:
        st.subheader("Workouts")
        for workout in view.workouts:
            self._workout_card(workout)

    def _settings_tab(self) -> None:
        st.header("Settings")
        with st.form("settings_form"):
            username = st.text_input("Username", value=self.username)
            api_key = st.text_input(
                "OpenAI API Key",
                type="password",
                help="Leave empty to keep the stored key",
            )
            granularities = [g.value for g in Granularity]
            metrics = [m.value for m in Metric]
            current_g = self.settings_repo.get_text("default_granularity", "daily")
            current_m = self.settings_repo.get_text("default_metric", "calories")
            default_granularity = st.selectbox(
                "Default granularity",
                granularities,
                index=granularities.index(current_g) if current_g in granularities else 0,
            )
            default_metric = st.selectbox(
                "Default metric",
                metrics,
                index=metrics.index(current_m) if current_m in metrics else 0,
            )
            range_days = st.number_input(
                "History range (days, 0 = all)",
                min_value=0,
                step=1,
                value=self.settings_repo.get_int("history_range_days", 0),
            )
            submitted = st.form_submit_button("Save Settings")
        if not submitted:
            return
        if not username.strip():
            st.error("Username is required")
            return
        values = {
            "username": username.strip(),
            "default_granularity": default_granularity,
            "default_metric": default_metric,
            "history_range_days": int(range_days),
        }
        if api_key.strip():
            values["openai_api_key"] = api_key.strip()
        try:
            self.settings_repo.update(values)
        except ValueError as e:
            st.error(str(e))
            return
        if int(range_days) != self.saved_range:
            st.session_state.range_setting_changed = True
            st.rerun()
        st.success("Settings saved")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    db_path = os.environ.get("DB_PATH", DB_PATH)
    yaml_path = os.environ.get("YAML_PATH", YAML_PATH)
    CardioApp(db_path=db_path, yaml_path=yaml_path).run()
