import argparse
import asyncio
import csv
import datetime
import json
import logging
import shutil
import time

import requests

from config import DB_PATH, YAML_PATH
from db import WORKOUT_COLUMNS, SettingsRepository, WorkoutRepository
from history_service import HistoryContext, HistoryController, Granularity, NO_DATA
from metrics import Metric
from workout_store import WorkoutRecord, WorkoutStore


def export_workouts(db_path: str, username: str, fmt: str, output_path: str) -> int:
    """Write ``username``'s workouts newest-first and return how many."""
    rows = WorkoutRepository(db_path).fetch_for_user(username)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        if fmt == "csv":
            writer = csv.writer(f)
            writer.writerow(WORKOUT_COLUMNS)
            writer.writerows(rows)
        else:
            json.dump([WorkoutRecord.from_row(r).to_dict() for r in rows], f, indent=2)
    return len(rows)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


DEMO_WORKOUTS = [
    # days ago, seconds, calories, miles, climbed feet, mph, pace, bpm
    (1, 1800, 320, 3.1, 120, 6.2, 581, 142),
    (2, 2400, 410, 4.0, None, 6.0, 600, 138),
    (4, 1500, 250, 2.4, 80, 5.8, 620, None),
    (6, 2700, 480, 4.6, 150, 6.1, 590, 145),
    (9, 1200, 190, 1.9, None, 5.7, 632, 131),
    (13, 3000, 530, 5.2, 200, 6.2, 577, 149),
    (20, 1800, 300, 3.0, 95, 6.0, 600, 140),
]


def demo_data(db_path: str, yaml_path: str, username: str | None = None) -> None:
    """Populate the database with demo workouts if the user has none."""
    settings = SettingsRepository(db_path, yaml_path)
    user = username or settings.get_text("username", "") or "demo"
    workouts = WorkoutRepository(db_path)
    if workouts.fetch_for_user(user):
        print("Database already contains workouts")
        return
    today = datetime.date.today()
    for days, seconds, cal, miles, climbed, mph, pace, bpm in DEMO_WORKOUTS:
        day = today - datetime.timedelta(days=days)
        workouts.save(
            user,
            {
                "elapsedTimeSeconds": seconds,
                "calories": cal,
                "distanceMiles": miles,
                "distanceClimbedFeet": climbed,
                "avgSpeedMph": mph,
                "avgPaceSecondsPerMile": pace,
                "avgHeartRate": bpm,
            },
            datetime.datetime.combine(day, datetime.time(12, 0)),
        )
    print(f"Demo data inserted for {user}")


def print_history(
    db_path: str,
    username: str,
    granularity: str,
    metric: str,
    range_days: int = 0,
    select: int | None = None,
) -> None:
    context = HistoryContext(
        granularity=Granularity.parse(granularity),
        metric=Metric.parse(metric),
        range_days=range_days,
    )
    controller = HistoryController(WorkoutStore(db_path, username), context)
    view = asyncio.run(controller.refresh())
    if view.is_empty:
        print("No workouts logged yet")
        return
    if select is not None:
        view = controller.select(select)
    descriptor = view.series.metric.descriptor
    for idx, (label, value) in enumerate(zip(view.series.labels, view.series.values)):
        marker = ">" if idx == view.selection.index else " "
        print(f"{marker} {label:>10}  {descriptor.format(value)}")
    detail = view.detail
    if detail is None:
        print(f"\n{NO_DATA}")
        return
    print(f"\n{detail.label}")
    if detail.days_summary:
        print(detail.days_summary)
    for item in detail.values:
        print(f"  {item.label}: {item.display}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--db", default=DB_PATH)
    exp.add_argument("--user", required=True)
    exp.add_argument("--fmt", choices=["csv", "json"], default="csv")
    exp.add_argument("--out", default="workouts.csv")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default=DB_PATH)
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default=DB_PATH)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default=DB_PATH)
    demo.add_argument("--yaml", default=YAML_PATH)
    demo.add_argument("--user")

    hist = sub.add_parser("history")
    hist.add_argument("--db", default=DB_PATH)
    hist.add_argument("--user", required=True)
    hist.add_argument("--granularity", choices=[g.value for g in Granularity], default="daily")
    hist.add_argument("--metric", choices=[m.value for m in Metric], default="calories")
    hist.add_argument("--range", dest="range_days", type=int, default=0)
    hist.add_argument("--select", type=int)

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.cmd == "export":
        count = export_workouts(args.db, args.user, args.fmt, args.out)
        print(f"Exported {count} workouts to {args.out}")
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml, args.user)
    elif args.cmd == "history":
        try:
            print_history(
                args.db,
                args.user,
                args.granularity,
                args.metric,
                args.range_days,
                args.select,
            )
        except IndexError as e:
            parser.error(str(e))
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
