"""
Chart selection.

``VisualizationSelector.select`` walks an ordered decision table over the
intent, the plan shape and the characteristics of the result rows. ``build``
turns the rows into the typed chart specification of the chosen chart type.
"""
import math
import numbers
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from pydantic import BaseModel

from analysis.intent import Intent, IntentCategory, IntentSubtype, SortDirection
from analysis.plan import PlanShape, QueryPlan
from analysis.schema import field_label
from app.schemas.visualization import (
    Axes,
    Axis,
    BarConfig,
    CategoryPoint,
    ChartType,
    HistogramBin,
    HistogramChart,
    HistogramConfig,
    HorizontalBarChart,
    LineChart,
    LineConfig,
    MultiLineChart,
    PieChart,
    PieConfig,
    ScatterChart,
    Series,
    TimePoint,
    TreemapChart,
    TreemapConfig,
    VerticalBarChart,
    VisualizationSpec,
    XYPoint,
)
from app.utils.exceptions import NoDataFoundError
from app.utils.helpers import to_float
from core.logging import get_logger

logger = get_logger(__name__)

TIME_COLUMNS = ("month", "date", "order_date", "ship_date", "timestamp")
HIERARCHY_COLUMNS = (
    "parent_id", "parent", "category_parent", "level",
    "subcategory", "sub_category", "child_category",
)
CURRENCY_COLUMN = re.compile(r"sales|revenue|profit|cost|price", re.IGNORECASE)

MAX_HISTOGRAM_BINS = 20
HISTOGRAM_CATEGORY_THRESHOLD = 10
PIE_CATEGORY_LIMIT = 5

# Chart names an enrichment payload may use
HINT_ALIASES = {
    "bar": ChartType.BAR_VERTICAL,
    "column": ChartType.BAR_VERTICAL,
    "horizontal_bar": ChartType.HORIZONTAL_BAR,
    "bar_horizontal": ChartType.HORIZONTAL_BAR,
    "multi_line": ChartType.MULTI_LINE,
}


class DataCharacteristics(BaseModel):
    record_count: int = 0
    unique_categories: int = 0
    has_time_component: bool = False
    is_hierarchical: bool = False


class ChartChoice(BaseModel):
    chart_type: ChartType
    config: Dict[str, Any] = {}


def histogram_bins(record_count: int) -> int:
    return max(1, min(MAX_HISTOGRAM_BINS, math.ceil(math.sqrt(record_count))))


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def _time_column(df: pd.DataFrame) -> Optional[str]:
    return next((c for c in TIME_COLUMNS if c in df.columns and df[c].notna().any()), None)


def _numeric_columns(df: pd.DataFrame) -> List[str]:
    numeric = []
    for column in df.columns:
        if column in TIME_COLUMNS:
            continue
        present = df[column].dropna()
        if len(present) and all(_is_number(v) for v in present):
            numeric.append(column)
    return numeric


def _label_column(df: pd.DataFrame, preferred: Optional[str] = None) -> Optional[str]:
    if preferred and preferred in df.columns:
        return preferred
    numeric = set(_numeric_columns(df))
    return next((c for c in df.columns if c not in TIME_COLUMNS and c not in numeric), None)


def _times(values: pd.Series) -> pd.Series:
    return pd.to_datetime(values, errors="coerce")


def _values(df: pd.DataFrame, column: str) -> pd.Series:
    return df[column].map(to_float)


def _date_range(df: pd.DataFrame) -> str:
    column = _time_column(df)
    if column is None:
        return ""
    times = _times(df[column]).dropna()
    if times.empty:
        return ""
    return f"From {times.min().strftime('%b %Y')} to {times.max().strftime('%b %Y')}"


def result_titles(plan: QueryPlan, df: pd.DataFrame) -> Tuple[str, str]:
    """Title and subtitle for a result, worded after the plan shape."""
    metric = field_label(plan.metric)
    year = f" ({plan.year})" if plan.year else ""
    place = f" in {plan.geographic}" if plan.geographic else ""

    if plan.shape == PlanShape.COMPARISON:
        compared = " vs ".join(plan.compared_values)
        return f"{metric} Comparison: {compared}{year}", f"Monthly {plan.metric} trend comparison"

    if plan.shape == PlanShape.RANKING:
        ascending = bool(plan.order_by) and plan.order_by[0].direction == SortDirection.ASC
        words = [
            "Bottom" if ascending else "Top",
            str(plan.limit) if plan.limit else None,
            field_label(plan.dimension or "customer_name", plural=True),
        ]
        title = " ".join(w for w in words if w)
        return f"{title}{place}{year}", f"Ranked by total {plan.metric}"

    return f"Monthly {metric} Trend{place}{year}", _date_range(df)


class VisualizationSelector:
    """
    Decision table, first match wins:

    - comparison with ranking wording: horizontal bar of per-value totals
    - comparison plan (one series per compared value): multi-line
    - comparison with time wording: line
    - ranking: horizontal bar
    - trend with a time column: line
    - distribution: histogram above 10 categories, grouped vertical bars otherwise
    - composition: pie up to 5 categories, treemap above
    - a compatible chart hint from enrichment
    - monthly plan with a time column: line
    - vertical bars
    """

    def characteristics(self, rows: Sequence[Mapping[str, Any]]) -> DataCharacteristics:
        return self._characteristics(pd.DataFrame(list(rows)))

    def _characteristics(self, df: pd.DataFrame, preferred_label: Optional[str] = None) -> DataCharacteristics:
        if df.empty:
            return DataCharacteristics()

        label = _label_column(df, preferred_label)
        return DataCharacteristics(
            record_count=len(df),
            unique_categories=int(df[label].nunique()) if label else 0,
            has_time_component=_time_column(df) is not None,
            is_hierarchical=any(c in df.columns and df[c].notna().any() for c in HIERARCHY_COLUMNS),
        )

    def select(
        self,
        intent: Intent,
        characteristics: DataCharacteristics,
        shape: Optional[PlanShape] = None,
        hint: Optional[str] = None,
        numeric_columns: int = 0,
    ) -> ChartChoice:
        category = intent.category
        line = ChartChoice(chart_type=ChartType.LINE, config={"show_points": True, "show_tooltip": True})
        ranked_bars = ChartChoice(chart_type=ChartType.HORIZONTAL_BAR, config={"sorted": True, "show_values": True})

        if category == IntentCategory.COMPARISON and intent.subtype == IntentSubtype.RANKING:
            return ranked_bars
        if shape == PlanShape.COMPARISON:
            return ChartChoice(chart_type=ChartType.MULTI_LINE, config=line.config)
        if category == IntentCategory.COMPARISON and intent.subtype == IntentSubtype.TIME_BASED:
            return line
        if category == IntentCategory.RANKING:
            return ranked_bars
        if category == IntentCategory.TREND and characteristics.has_time_component:
            return line

        if category == IntentCategory.DISTRIBUTION:
            if characteristics.unique_categories > HISTOGRAM_CATEGORY_THRESHOLD:
                return ChartChoice(
                    chart_type=ChartType.HISTOGRAM,
                    config={"bins": histogram_bins(characteristics.record_count)},
                )
            return ChartChoice(chart_type=ChartType.BAR_VERTICAL, config={"grouped": True})

        if category == IntentCategory.COMPOSITION:
            if characteristics.unique_categories <= PIE_CATEGORY_LIMIT:
                return ChartChoice(chart_type=ChartType.PIE, config={"show_percentage": True, "donut": False})
            return ChartChoice(chart_type=ChartType.TREEMAP, config={"show_values": True})

        hinted = self._from_hint(hint, characteristics, numeric_columns)
        if hinted is not None:
            return hinted

        if shape == PlanShape.TREND and characteristics.has_time_component:
            return line

        return ChartChoice(chart_type=ChartType.BAR_VERTICAL, config={"show_values": True})

    def _from_hint(
        self,
        hint: Optional[str],
        characteristics: DataCharacteristics,
        numeric_columns: int,
    ) -> Optional[ChartChoice]:
        if not hint or characteristics.record_count == 0:
            return None

        key = hint.strip().lower()
        chart_type = HINT_ALIASES.get(key.replace("-", "_"))
        if chart_type is None:
            try:
                chart_type = ChartType(key)
            except ValueError:
                logger.debug(f"Ignoring unknown chart hint: {hint}")
                return None

        if chart_type == ChartType.LINE and characteristics.has_time_component:
            return ChartChoice(chart_type=chart_type, config={"show_points": True, "show_tooltip": True})
        if chart_type == ChartType.SCATTER and numeric_columns >= 2:
            return ChartChoice(chart_type=chart_type)
        if chart_type == ChartType.HISTOGRAM and numeric_columns >= 1:
            return ChartChoice(chart_type=chart_type, config={"bins": histogram_bins(characteristics.record_count)})
        if chart_type in (ChartType.BAR_VERTICAL, ChartType.HORIZONTAL_BAR, ChartType.PIE, ChartType.TREEMAP):
            return ChartChoice(chart_type=chart_type)

        logger.debug(f"Chart hint {hint} does not fit the result, ignoring it")
        return None

    def build(
        self,
        intent: Intent,
        plan: QueryPlan,
        rows: Sequence[Mapping[str, Any]],
        hint: Optional[str] = None,
    ) -> VisualizationSpec:
        df = pd.DataFrame(list(rows))
        if df.empty:
            raise NoDataFoundError()

        numeric = _numeric_columns(df)
        value_column = plan.value_column if plan.value_column in df.columns else next(iter(numeric), None)
        if value_column is None:
            raise NoDataFoundError("No numeric values to visualize")

        label_column = _label_column(df, plan.dimension)
        time_column = _time_column(df)
        characteristics = self._characteristics(df, plan.dimension)
        choice = self.select(intent, characteristics, shape=plan.shape, hint=hint, numeric_columns=len(numeric))
        logger.info(f"Selected {choice.chart_type.value} chart for {characteristics.model_dump()}")

        title, subtitle = result_titles(plan, df)
        value_axis = self._value_axis(plan, value_column, df)
        label_axis = Axis(label=field_label(label_column) if label_column else "Month", format="text")
        time_axis = Axis(label="Month", format="date")
        common = {"title": title, "subtitle": subtitle}
        chart_type = choice.chart_type

        if chart_type == ChartType.HORIZONTAL_BAR:
            # ranking rows arrive in query order; everything else is sorted here
            points = self._category_points(
                df, label_column, time_column, value_column,
                sort=plan.shape != PlanShape.RANKING,
            )
            return HorizontalBarChart(
                data=points, axes=Axes(x=value_axis, y=label_axis),
                config=BarConfig(**{"sorted": True, **choice.config}), **common,
            )

        if chart_type == ChartType.BAR_VERTICAL:
            points = self._category_points(df, label_column, time_column, value_column)
            return VerticalBarChart(
                data=points, axes=Axes(x=label_axis, y=value_axis),
                config=BarConfig(**choice.config), **common,
            )

        if chart_type == ChartType.LINE:
            return LineChart(
                data=self._time_points(df, time_column, value_column),
                axes=Axes(x=time_axis, y=value_axis),
                config=LineConfig(**choice.config), **common,
            )

        if chart_type == ChartType.MULTI_LINE:
            return MultiLineChart(
                data=self._series(df, plan, label_column, time_column, value_column),
                axes=Axes(x=time_axis, y=value_axis),
                config=LineConfig(**choice.config), **common,
            )

        if chart_type == ChartType.HISTOGRAM:
            bins = choice.config.get("bins", histogram_bins(len(df)))
            return HistogramChart(
                data=self._histogram(df, value_column, bins),
                axes=Axes(x=value_axis, y=Axis(label="Count", format="number")),
                config=HistogramConfig(bins=bins), **common,
            )

        if chart_type == ChartType.PIE:
            return PieChart(
                data=self._category_points(df, label_column, time_column, value_column),
                axes=Axes(x=label_axis, y=value_axis),
                config=PieConfig(**choice.config), **common,
            )

        if chart_type == ChartType.TREEMAP:
            return TreemapChart(
                data=self._category_points(df, label_column, time_column, value_column, sort=True),
                axes=Axes(x=label_axis, y=value_axis),
                config=TreemapConfig(**choice.config), **common,
            )

        if chart_type == ChartType.SCATTER:
            x_column, y_column = numeric[0], numeric[1]
            return ScatterChart(
                data=self._scatter(df, x_column, y_column, label_column),
                axes=Axes(
                    x=self._value_axis(plan, x_column, df),
                    y=self._value_axis(plan, y_column, df),
                ),
                **common,
            )

        raise ValueError(f"Unsupported chart type: {chart_type}")

    def _value_axis(self, plan: QueryPlan, column: str, df: pd.DataFrame) -> Axis:
        label = field_label(plan.metric) if column == plan.value_column else field_label(column)
        if any(CURRENCY_COLUMN.search(str(c)) for c in df.columns) and CURRENCY_COLUMN.search(column):
            return Axis(label=f"{label} ($)", format="currency")
        return Axis(label=label, format="number")

    def _category_points(
        self,
        df: pd.DataFrame,
        label_column: Optional[str],
        time_column: Optional[str],
        value_column: str,
        sort: bool = False,
    ) -> List[CategoryPoint]:
        if label_column:
            labels = df[label_column].fillna("").astype(str)
        elif time_column:
            labels = _times(df[time_column]).dt.strftime("%b %Y").fillna("")
        else:
            labels = pd.Series([f"Row {i + 1}" for i in range(len(df))], index=df.index)

        frame = pd.DataFrame({"label": labels, "value": _values(df, value_column)})
        totals = frame.groupby("label", sort=False)["value"].sum()
        if sort:
            totals = totals.sort_values(ascending=False)
        return [CategoryPoint(label=label, value=float(value)) for label, value in totals.items()]

    def _time_points(self, df: pd.DataFrame, time_column: Optional[str], value_column: str) -> List[TimePoint]:
        if time_column is None or df.empty:
            return []
        frame = pd.DataFrame({"x": _times(df[time_column]), "y": _values(df, value_column)})
        totals = frame.dropna(subset=["x"]).groupby("x", sort=True)["y"].sum()
        return [TimePoint(x=ts.isoformat(), y=float(y)) for ts, y in totals.items()]

    def _series(
        self,
        df: pd.DataFrame,
        plan: QueryPlan,
        label_column: Optional[str],
        time_column: Optional[str],
        value_column: str,
    ) -> List[Series]:
        # One series per compared value, each ordered by month
        if label_column is None:
            return [Series(name=field_label(plan.metric), values=self._time_points(df, time_column, value_column))]

        labels = df[label_column].astype(str)
        names = plan.compared_values or list(dict.fromkeys(labels))
        return [
            Series(name=name, values=self._time_points(df[labels == name], time_column, value_column))
            for name in names
        ]

    def _histogram(self, df: pd.DataFrame, value_column: str, bins: int) -> List[HistogramBin]:
        values = _values(df, value_column)
        counts = pd.cut(values, bins=bins).value_counts(sort=False).sort_index()
        return [
            HistogramBin(lower=float(interval.left), upper=float(interval.right), count=int(count))
            for interval, count in counts.items()
        ]

    def _scatter(
        self,
        df: pd.DataFrame,
        x_column: str,
        y_column: str,
        label_column: Optional[str],
    ) -> List[XYPoint]:
        xs, ys = _values(df, x_column), _values(df, y_column)
        labels = df[label_column].astype(str) if label_column else None
        return [
            XYPoint(x=float(xs[i]), y=float(ys[i]), label=labels[i] if labels is not None else None)
            for i in df.index
        ]
