from __future__ import annotations
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import altair as alt
import pandas as pd

from history_service import Bucket, HistorySeries, SelectionState


@dataclass(frozen=True)
class OverlayDescriptor:
    """Where to draw the selected-bucket marker on the chart."""

    index: int
    label: str | None
    visible: bool


class ChartAdapter:
    """Map a history series onto an Altair bar chart and back."""

    SELECTION_NAME = "bucket"
    MARKER_COLOR = "#9ca3b4"

    @staticmethod
    def series_frame(series: HistorySeries) -> pd.DataFrame:
        """Return the chart input with one row per bucket."""
        descriptor = series.metric.descriptor
        return pd.DataFrame(
            {
                "index": list(range(len(series))),
                "label": list(series.labels),
                "value": list(series.values),
                "display": [descriptor.format(v) for v in series.values],
            }
        )

    @staticmethod
    def selection_overlay(
        buckets: Sequence[Bucket], selection: SelectionState
    ) -> OverlayDescriptor:
        bucket = selection.bucket(buckets)
        if bucket is None:
            return OverlayDescriptor(-1, None, False)
        return OverlayDescriptor(selection.index, bucket.label, True)

    @classmethod
    def bar_chart(
        cls, series: HistorySeries, selection: SelectionState
    ) -> alt.TopLevelMixin:
        """Return bars for ``series`` with a marker on the selected bucket."""
        descriptor = series.metric.descriptor
        frame = cls.series_frame(series)
        # Bars are keyed by position; daily labels repeat across years.
        label_expr = f"{json.dumps(list(series.labels))}[datum.value]"
        x = alt.X(
            "index:O",
            title=None,
            axis=alt.Axis(labelExpr=label_expr, labelAngle=-45),
        )
        pick = alt.selection_point(
            name=cls.SELECTION_NAME, fields=["index"], on="click"
        )
        bars = (
            alt.Chart(frame)
            .mark_bar(color=descriptor.color)
            .encode(
                x=x,
                y=alt.Y("value:Q", title=descriptor.y_label or descriptor.label),
                tooltip=[
                    alt.Tooltip("label:N", title="Period"),
                    alt.Tooltip("display:N", title=descriptor.label),
                ],
            )
            .add_params(pick)
        )
        overlay = cls.selection_overlay(series.buckets, selection)
        if not overlay.visible:
            return bars
        marker = (
            alt.Chart(pd.DataFrame({"index": [overlay.index]}))
            .mark_rule(color=cls.MARKER_COLOR, strokeDash=[4, 4])
            .encode(x=x)
        )
        return alt.layer(bars, marker)

    @classmethod
    def clicked_index(cls, event: Any) -> Optional[int]:
        """Return the clicked bucket index from a chart event, if any."""
        if event is None:
            return None
        if isinstance(event, Mapping):
            selection = event.get("selection")
        else:
            selection = getattr(event, "selection", None)
        if not selection or not isinstance(selection, Mapping):
            return None
        points = selection.get(cls.SELECTION_NAME)
        if not points:
            return None
        point = points[0]
        if isinstance(point, Mapping) and point.get("index") is not None:
            return int(point["index"])
        return None
