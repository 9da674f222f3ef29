"""
Descriptive statistics over result rows, formatted as short text.
"""
from typing import Any, Callable, List, Mapping, Sequence

import pandas as pd

from analysis.intent import SortDirection
from analysis.plan import PlanShape, QueryPlan
from analysis.schema import CURRENCY_METRICS, field_label
from app.utils.helpers import format_currency, format_number, to_float
from core.logging import get_logger

logger = get_logger(__name__)

NO_DATA = "No data available for insights."


class InsightsSummarizer:
    """
    - single series: total and average
    - ranking: total, average per item and the first ranked item
    - comparison: total, average, highest and lowest per series, blank line between series

    Currency metrics are rendered as whole dollars; missing or unparseable
    values count as 0.
    """

    def summarize(self, plan: QueryPlan, rows: Sequence[Mapping[str, Any]]) -> str:
        df = pd.DataFrame(list(rows))
        if df.empty:
            return NO_DATA

        column = plan.value_column if plan.value_column in df.columns else None
        if column is None:
            logger.warning(f"Result has no {plan.value_column} column; insights skipped")
            return NO_DATA

        values = df[column].map(to_float)
        fmt = self._formatter(plan.metric)

        if plan.shape == PlanShape.COMPARISON:
            return self._multi_series(plan, df, values, fmt)
        if plan.shape == PlanShape.RANKING:
            return self._ranking(plan, df, values, fmt)
        return self._single_series(plan, values, fmt)

    def _formatter(self, metric: str) -> Callable[[float], str]:
        return format_currency if metric in CURRENCY_METRICS else format_number

    def _single_series(self, plan: QueryPlan, values: pd.Series, fmt) -> str:
        total = float(values.sum())
        average = total / len(values)
        return f"Total {field_label(plan.metric)}: {fmt(total)}\nAverage: {fmt(average)}"

    def _ranking(self, plan: QueryPlan, df: pd.DataFrame, values: pd.Series, fmt) -> str:
        total = float(values.sum())
        average = total / len(values)
        year = f" in {plan.year}" if plan.year else ""
        item = field_label(plan.dimension or "customer_name").lower()

        lines = [
            f"Total {plan.metric}{year}: {fmt(total)}",
            f"Average {plan.metric} per {item}: {fmt(average)}",
        ]
        if plan.dimension in df.columns:
            ascending = bool(plan.order_by) and plan.order_by[0].direction == SortDirection.ASC
            lead = "Bottom" if ascending else "Top"
            lines.append(f"{lead} {item}{year}: {df[plan.dimension].iloc[0]} ({fmt(float(values.iloc[0]))})")
        return "\n".join(lines)

    def _multi_series(self, plan: QueryPlan, df: pd.DataFrame, values: pd.Series, fmt) -> str:
        dimension = plan.dimension if plan.dimension in df.columns else None
        if dimension is None:
            return self._single_series(plan, values, fmt)

        labels = df[dimension].astype(str)
        names = plan.compared_values or list(dict.fromkeys(labels))
        blocks: List[str] = []
        for name in names:
            series = values[labels == name]
            if series.empty:
                continue
            total = float(series.sum())
            blocks.append(
                f"{name}:\n"
                f"• Total {plan.metric}: {fmt(total)}\n"
                f"• Average monthly {plan.metric}: {fmt(total / len(series))}\n"
                f"• Highest {plan.metric}: {fmt(float(series.max()))}\n"
                f"• Lowest {plan.metric}: {fmt(float(series.min()))}"
            )
        return "\n\n".join(blocks) if blocks else NO_DATA
