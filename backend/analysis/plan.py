"""
Query plan representation and construction.

Plans are built as a typed intermediate representation (expressions,
predicates, ordering, limit). Serialization to SQL happens separately in
``db.sql_safety.render_sql`` once the plan has been sanitized.
"""
import re
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict

from analysis.entities import EntitySet, TemporalKind
from analysis.intent import Intent, IntentCategory, SortDirection
from analysis.schema import ORDERS, DataSource
from app.utils.exceptions import ComparisonUnderspecifiedError, QuestionValidationError
from app.utils.helpers import title_case
from core.config import settings
from core.logging import get_logger
from llm.models import EnrichmentAnalysis
from memory.models import SessionContext

logger = get_logger(__name__)

Scalar = Union[date, int, str]

EXPRESSION_PATTERN = re.compile(
    r"""^\s*(?:
        (?P<func>[A-Za-z_]+)\s*\(\s*(?:'(?P<unit>\w+)'\s*,\s*)?(?P<inner>[A-Za-z_][\w.]*)\s*\)
        |
        (?P<plain>[A-Za-z_][\w.]*)
    )(?:\s+as\s+(?P<alias>\S+))?\s*$""",
    re.IGNORECASE | re.VERBOSE,
)


class Expression(BaseModel):
    """A column reference, optionally wrapped in SUM or DATE_TRUNC and aliased."""
    model_config = ConfigDict(frozen=True)

    field: str
    table: Optional[str] = None
    aggregate: Optional[str] = None
    truncate: Optional[str] = None
    alias: Optional[str] = None

    @property
    def function(self) -> Optional[str]:
        if self.truncate:
            return "DATE_TRUNC"
        return self.aggregate.upper() if self.aggregate else None

    @property
    def output_name(self) -> str:
        return self.alias or self.field

    def render(self, with_alias: bool = True) -> str:
        if self.truncate:
            body = f"DATE_TRUNC('{self.truncate}', {self.field})"
        elif self.aggregate:
            body = f"{self.aggregate.upper()}({self.field})"
        else:
            body = self.field
        if with_alias and self.alias:
            return f"{body} as {self.alias}"
        return body

    @classmethod
    def parse(cls, text: str) -> "Expression":
        """
        Parse "field", "t.field", "SUM(field) as alias" or
        "DATE_TRUNC('month', field) as alias". Anything else becomes a bare
        expression whose field is the raw text, which the sanitizer drops.
        """
        match = EXPRESSION_PATTERN.match(text or "")
        if not match:
            return cls(field=(text or "").strip())

        column = match.group("inner") or match.group("plain")
        table = None
        if "." in column:
            table, column = column.rsplit(".", 1)

        func = match.group("func")
        if func and func.upper() == "DATE_TRUNC":
            return cls(field=column, table=table, truncate=match.group("unit") or "", alias=match.group("alias"))
        return cls(field=column, table=table, aggregate=func.upper() if func else None, alias=match.group("alias"))


class PredicateOperator(str, Enum):
    EQ = "="
    IN = "IN"
    YEAR = "YEAR"
    GTE = ">="
    LT = "<"


def _literal(value: Scalar) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, date):
        value = value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


class Predicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: PredicateOperator
    values: Tuple[Scalar, ...]
    table: Optional[str] = None

    def render(self) -> str:
        if self.operator == PredicateOperator.IN:
            return f"{self.field} IN ({', '.join(_literal(v) for v in self.values)})"
        if self.operator == PredicateOperator.YEAR:
            return f"EXTRACT(YEAR FROM {self.field}) = {_literal(self.values[0])}"
        return f"{self.field} {self.operator.value} {_literal(self.values[0])}"


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    expression: Expression
    direction: SortDirection = SortDirection.ASC

    def render(self) -> str:
        return f"{self.expression.render(with_alias=False)} {self.direction.value}"


class PlanShape(str, Enum):
    RANKING = "ranking"
    TREND = "trend"
    COMPARISON = "comparison"


class QueryPlan(BaseModel):
    shape: PlanShape
    source: str = ORDERS.name
    select: List[Expression] = []
    where: List[Predicate] = []
    group_by: List[Expression] = []
    order_by: List[OrderItem] = []
    limit: Optional[int] = None

    # What the plan was built from; used by titles, charts and insights
    metric: str = "sales"
    dimension: Optional[str] = None
    geographic: Optional[str] = None
    year: Optional[int] = None
    compared_values: List[str] = []

    @property
    def value_column(self) -> str:
        return f"total_{self.metric}"

    def describe(self) -> Dict[str, object]:
        return {
            "select": [e.render() for e in self.select],
            "from": self.source,
            "where": [p.render() for p in self.where],
            "groupBy": [e.render(with_alias=False) for e in self.group_by],
            "orderBy": [o.render() for o in self.order_by],
            "limit": self.limit,
        }


# Ranking dimension preference when several categorical nouns appear
DIMENSION_PREFERENCE = [
    "customer_name", "product_name", "sub_category", "category", "segment",
    "region", "city", "country", "ship_mode", "state",
]
METRIC_PREFERENCE = ["sales", "profit", "quantity", "discount"]
RANGE_BOUNDS = re.compile(r"between\s+(.+?)\s+and\s+(\S+)", re.IGNORECASE)
RELATIVE_PARTS = re.compile(r"(last|this|next)\s+(day|week|month|quarter|year)", re.IGNORECASE)
FULL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
YEAR_MONTH = re.compile(r"^\d{4}-\d{2}$")
HAS_YEAR = re.compile(r"\b\d{4}\b")
_PARSE_DEFAULT = datetime(2000, 1, 1)


def _period_start(today: date, unit: str) -> date:
    if unit == "day":
        return today
    if unit == "week":
        return today - relativedelta(days=today.weekday())
    if unit == "month":
        return today.replace(day=1)
    if unit == "quarter":
        return date(today.year, 3 * ((today.month - 1) // 3) + 1, 1)
    return date(today.year, 1, 1)


def _period_step(unit: str) -> relativedelta:
    if unit == "quarter":
        return relativedelta(months=3)
    return relativedelta(**{f"{unit}s": 1})


def relative_window(raw_value: str, today: date) -> Optional[Tuple[date, date]]:
    """Half-open [start, end) window for "last month", "this year", ..."""
    match = RELATIVE_PARTS.search(raw_value)
    if not match:
        return None
    which, unit = match.group(1).lower(), match.group(2).lower()
    start = _period_start(today, unit)
    step = _period_step(unit)
    if which == "last":
        start = start - step
    elif which == "next":
        start = start + step
    return start, start + step


def _parse_bound(text: str, year: int) -> Tuple[date, relativedelta]:
    """
    Parse one range bound and the span it names. "2017" covers a year,
    "June" or "2017-06" a month, anything with a day a single day.
    """
    first = date_parser.parse(text, default=datetime(year, 1, 1)).date()
    shifted = date_parser.parse(text, default=datetime(year, 2, 2)).date()
    if first.month != shifted.month:
        return first, relativedelta(years=1)
    if first.day != shifted.day:
        return first, relativedelta(months=1)
    return first, relativedelta(days=1)


def range_window(raw_value: str, default_year: Optional[int] = None) -> Optional[Tuple[date, date]]:
    """
    [start, end) from "between <date> and <date>", the end bound included.

    Bounds without a year ("between March and June") take ``default_year``;
    without one the range is dropped. None if either end is not a date or
    the range is empty.
    """
    match = RANGE_BOUNDS.search(raw_value)
    if not match:
        return None

    bounds = []
    for text in match.groups():
        year = _PARSE_DEFAULT.year if HAS_YEAR.search(text) else default_year
        if year is None:
            return None
        try:
            bounds.append(_parse_bound(text, year))
        except (ValueError, OverflowError):
            return None

    (start, _), (end_start, end_span) = bounds
    end = end_start + end_span
    if end <= start:
        return None
    return start, end


def absolute_window(raw_value: str) -> Optional[Tuple[date, date]]:
    """One day for "YYYY-MM-DD", one month for "YYYY-MM". Bare years are left to the year filter."""
    if FULL_DATE.match(raw_value):
        step = relativedelta(days=1)
    elif YEAR_MONTH.match(raw_value):
        step = relativedelta(months=1)
    else:
        return None
    try:
        start = date_parser.parse(raw_value, default=_PARSE_DEFAULT).date()
    except (ValueError, OverflowError):
        return None
    return start, start + step


class QueryPlanBuilder:
    """
    Builds one of the plan shapes from intent, entities and session context:

    - comparison: monthly series per compared value, needs two values
    - ranking: top/bottom N of a dimension by the summed metric
    - trend: monthly totals of the metric
    - anything else: ranking when the text contains "top", trend otherwise
    """

    def __init__(
        self,
        source: DataSource = ORDERS,
        default_limit: int = None,
        today: Callable[[], date] = date.today,
    ):
        self.source = source
        self.default_limit = default_limit or settings.DEFAULT_LIMIT
        self.today = today

    def build(self, question: str, intent: Intent, entities: EntitySet, context: SessionContext) -> QueryPlan:
        metric = self._metric(entities, context)

        if intent.category == IntentCategory.COMPARISON:
            plan = self.comparison(intent, entities, metric)
        elif intent.category == IntentCategory.RANKING:
            plan = self.ranking(intent, entities, context, metric)
        elif intent.category == IntentCategory.TREND:
            plan = self.trend(entities, metric)
        elif "top" in (question or "").lower():
            plan = self.ranking(intent, entities, context, metric)
        else:
            # distribution, composition and general share the monthly fallback
            plan = self.trend(entities, metric)

        logger.info("Built %s plan: %s", plan.shape.value, plan.describe())
        return plan

    def ranking(self, intent: Intent, entities: EntitySet, context: SessionContext, metric: str) -> QueryPlan:
        dimension = self._dimension(entities)
        total = self._total(metric)
        return QueryPlan(
            shape=PlanShape.RANKING,
            source=self.source.name,
            select=[Expression(field=dimension), total],
            where=self._filters(entities),
            group_by=[Expression(field=dimension)],
            order_by=[OrderItem(expression=Expression(field=total.alias), direction=intent.direction)],
            limit=self._limit(entities.limit, context.last_limit),
            metric=metric,
            dimension=dimension,
            geographic=self._state(entities),
            year=entities.year,
        )

    def trend(self, entities: EntitySet, metric: str) -> QueryPlan:
        return QueryPlan(
            shape=PlanShape.TREND,
            source=self.source.name,
            select=[self._month(), self._total(metric)],
            where=self._filters(entities),
            group_by=[Expression(field="month")],
            order_by=[OrderItem(expression=Expression(field="month"), direction=SortDirection.ASC)],
            metric=metric,
            geographic=self._state(entities),
            year=entities.year,
        )

    def comparison(self, intent: Intent, entities: EntitySet, metric: str) -> QueryPlan:
        values = [title_case(v) for v in entities.comparison_values]
        if len(values) < 2:
            raise ComparisonUnderspecifiedError(values)

        where = [Predicate(field="state", operator=PredicateOperator.IN, values=tuple(values))]
        where.extend(self._date_filters(entities))
        return QueryPlan(
            shape=PlanShape.COMPARISON,
            source=self.source.name,
            select=[self._month(), Expression(field="state"), self._total(metric)],
            where=where,
            group_by=[Expression(field="month"), Expression(field="state")],
            order_by=[
                OrderItem(expression=Expression(field="month"), direction=SortDirection.ASC),
                OrderItem(expression=Expression(field="state"), direction=SortDirection.ASC),
            ],
            metric=metric,
            dimension="state",
            year=entities.year,
            compared_values=values,
        )

    def from_enrichment(self, analysis: EnrichmentAnalysis, entities: EntitySet, context: SessionContext) -> QueryPlan:
        """
        Ranking-style plan from a language model analysis. Expressions are
        taken as given; the sanitizer decides what survives.
        """
        section = analysis.analysis
        if not section.dimensions or not section.metrics:
            raise ValueError("Enrichment analysis has no dimensions or metrics")
        if section.limit is not None and section.limit < 1:
            raise ValueError(f"Enrichment analysis has an invalid limit: {section.limit}")

        metric = section.metrics[0]
        dimensions = [Expression.parse(d) for d in section.dimensions]
        totals = [
            Expression(field=m, aggregate=analysis.query.aggregation, alias=f"total_{m}")
            for m in section.metrics
        ]

        where = []
        geographic = section.filters.geographic or entities.geographic
        if geographic:
            where.append(Predicate(field="state", operator=PredicateOperator.EQ, values=(title_case(geographic),)))
        where.extend(self._date_filters(entities))

        order_by = []
        if analysis.query.orderBy:
            direction = SortDirection.ASC if analysis.query.orderBy.upper() == "ASC" else SortDirection.DESC
            order_by.append(OrderItem(expression=Expression(field=f"total_{metric}"), direction=direction))

        return QueryPlan(
            shape=PlanShape.RANKING,
            source=self.source.name,
            select=dimensions + totals,
            where=where,
            group_by=list(dimensions),
            order_by=order_by,
            limit=self._limit(section.limit, entities.limit, context.last_limit),
            metric=metric,
            dimension=dimensions[0].field,
            geographic=title_case(geographic) if geographic else None,
            year=entities.year,
        )

    def _metric(self, entities: EntitySet, context: SessionContext) -> str:
        for metric in METRIC_PREFERENCE:
            if metric in entities.metrics and metric in self.source.metrics:
                return metric
        return context.last_metric or settings.DEFAULT_METRIC

    def _limit(self, *candidates: Optional[int]) -> int:
        """First limit that was actually given; an explicit 0 is rejected, not replaced."""
        for limit in candidates:
            if limit is not None:
                if limit < 1:
                    raise QuestionValidationError("Limit must be at least 1")
                return limit
        return self.default_limit

    def _dimension(self, entities: EntitySet) -> str:
        flagged = set(entities.categorical)
        if entities.geographic:
            # the state flag is set by the state name used as a filter
            flagged.discard("state")
        for field in DIMENSION_PREFERENCE:
            if field in flagged:
                return field
        return "customer_name"

    def _state(self, entities: EntitySet) -> Optional[str]:
        return title_case(entities.geographic) if entities.geographic else None

    def _month(self) -> Expression:
        return Expression(field=self.source.date_field, truncate="month", alias="month")

    def _total(self, metric: str) -> Expression:
        return Expression(field=metric, aggregate="SUM", alias=f"total_{metric}")

    def _filters(self, entities: EntitySet) -> List[Predicate]:
        where = []
        state = self._state(entities)
        if state:
            where.append(Predicate(field="state", operator=PredicateOperator.EQ, values=(state,)))
        where.extend(self._date_filters(entities))
        return where

    def _date_filters(self, entities: EntitySet) -> List[Predicate]:
        date_field = self.source.date_field
        where = []
        if entities.year:
            where.append(Predicate(field=date_field, operator=PredicateOperator.YEAR, values=(entities.year,)))

        ranges = [t.raw_value for t in entities.temporal if t.kind == TemporalKind.RANGE]
        for temporal in entities.temporal:
            if temporal.kind == TemporalKind.RELATIVE:
                window = relative_window(temporal.raw_value, self.today())
            elif temporal.kind == TemporalKind.RANGE:
                window = range_window(temporal.raw_value, entities.year)
            elif any(temporal.raw_value in r for r in ranges):
                # bound of a range, covered above
                continue
            else:
                window = absolute_window(temporal.raw_value)
            if window:
                start, end = window
                where.append(Predicate(field=date_field, operator=PredicateOperator.GTE, values=(start,)))
                where.append(Predicate(field=date_field, operator=PredicateOperator.LT, values=(end,)))
        return where
