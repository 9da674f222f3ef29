import re
from enum import Enum
from typing import Any, Dict, FrozenSet, List, NamedTuple

from analysis.plan import Expression, Predicate, PredicateOperator, QueryPlan
from analysis.schema import ALLOWED_FUNCTIONS, DATA_SOURCES, ORDERS, DataSource
from app.utils.exceptions import PlanRejectedError, QuestionValidationError
from core.config import settings
from core.logging import get_logger

logger = get_logger(__name__)

# Checked against the raw question, before any parsing
FORBIDDEN_QUESTION = [
    r";", r"\bDROP\b", r"\bDELETE\b", r"\bUPDATE\b", r"\bINSERT\b",
]

FORBIDDEN_SQL = [
    r"\bINSERT\b", r"\bUPDATE\b", r"\bDELETE\b", r"\bDROP\b", r"\bALTER\b",
    r"\bTRUNCATE\b", r"\bCREATE\b", r"\bGRANT\b", r"\bREVOKE\b",
]

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
TRUNCATE_UNITS = frozenset({"day", "week", "month", "quarter", "year"})


def validate_question(question: Any) -> str:
    """
    Reject questions that are not text, are too short or too long, or carry
    SQL-injection markers. Returns the question unchanged when it passes.
    """
    if not question or not isinstance(question, str):
        raise QuestionValidationError("Question must be a non-empty string")
    if len(question) > settings.MAX_QUESTION_LENGTH:
        raise QuestionValidationError(f"Question too long (max {settings.MAX_QUESTION_LENGTH} characters)")
    if len(question.strip()) < settings.MIN_QUESTION_LENGTH:
        raise QuestionValidationError("Question too short")
    for pat in FORBIDDEN_QUESTION:
        if re.search(pat, question, flags=re.IGNORECASE):
            raise QuestionValidationError("Invalid question content")
    return question


def is_select_only(sql: str) -> bool:
    s = (sql or "").strip()
    if not s.lower().startswith("select"):
        return False
    for pat in FORBIDDEN_SQL:
        if re.search(pat, s, flags=re.IGNORECASE):
            return False
    # prevent multi-statement
    if ";" in s.rstrip().rstrip(";"):
        return False
    return True


class SanitizerMode(str, Enum):
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class QueryPlanSanitizer:
    """
    Keeps only plan entries whose base field belongs to the data source.

    Aggregate wrappers and table prefixes are ignored when finding the base
    field; only SUM and DATE_TRUNC are accepted as functions. Aliases declared
    by surviving select items may be referenced from GROUP BY and ORDER BY.
    In fail-open mode offending entries are dropped and the reduced plan is
    returned; in fail-closed mode the plan is rejected.
    """

    def __init__(self, source: DataSource = ORDERS, mode: str = None):
        self.source = source
        self.allowed_fields: FrozenSet[str] = source.fields
        self.allowed_functions = ALLOWED_FUNCTIONS
        self.mode = SanitizerMode(mode or settings.PLAN_SANITIZER_MODE)

    def is_valid_expression(self, expr: Expression, aliases: FrozenSet[str] = frozenset()) -> bool:
        if expr.alias is not None and not IDENTIFIER.match(expr.alias):
            return False
        function = expr.function
        if function is not None:
            if function not in self.allowed_functions:
                return False
            if function == "DATE_TRUNC" and expr.truncate not in TRUNCATE_UNITS:
                return False
        if expr.field in self.allowed_fields:
            return True
        # bare reference to an alias declared in SELECT
        return function is None and expr.table is None and expr.field in aliases

    def is_valid_predicate(self, predicate: Predicate) -> bool:
        return predicate.field in self.allowed_fields

    def sanitize(self, plan: QueryPlan) -> QueryPlan:
        rejected: List[str] = []

        def keep(items, valid, render):
            kept = []
            for item in items:
                if valid(item):
                    kept.append(item)
                else:
                    rejected.append(render(item))
            return kept

        select = keep(plan.select, self.is_valid_expression, lambda e: e.render())
        aliases = frozenset(e.alias for e in select if e.alias)
        where = keep(plan.where, self.is_valid_predicate, lambda p: p.render())
        group_by = keep(plan.group_by, lambda e: self.is_valid_expression(e, aliases), lambda e: e.render())
        order_by = keep(
            plan.order_by,
            lambda o: self.is_valid_expression(o.expression, aliases),
            lambda o: o.render(),
        )

        source = plan.source
        if source not in DATA_SOURCES:
            rejected.append(f"FROM {source}")
            source = self.source.name

        if rejected:
            if self.mode == SanitizerMode.FAIL_CLOSED:
                raise PlanRejectedError(rejected)
            logger.warning(f"Dropped plan entries outside the schema: {rejected}")

        return plan.model_copy(update={
            "source": source,
            "select": select,
            "where": where,
            "group_by": group_by,
            "order_by": order_by,
        })


class RenderedQuery(NamedTuple):
    sql: str
    params: Dict[str, Any]


def _render_predicate(predicate: Predicate, params: Dict[str, Any]) -> str:
    names = []
    for value in predicate.values:
        name = f"p{len(params)}"
        params[name] = value
        names.append(f":{name}")

    if predicate.operator == PredicateOperator.IN:
        return f"{predicate.field} IN ({', '.join(names)})"
    if predicate.operator == PredicateOperator.YEAR:
        return f"EXTRACT(YEAR FROM {predicate.field}) = {names[0]}"
    return f"{predicate.field} {predicate.operator.value} {names[0]}"


def render_sql(plan: QueryPlan) -> RenderedQuery:
    """
    Serialize a sanitized plan. Identifiers come from the schema allowlist;
    every literal value becomes a bound parameter.
    """
    params: Dict[str, Any] = {}
    select = ", ".join(e.render() for e in plan.select) if plan.select else "*"
    sql = f"SELECT {select} FROM {plan.source}"

    if plan.where:
        sql += " WHERE " + " AND ".join(_render_predicate(p, params) for p in plan.where)
    if plan.group_by:
        sql += " GROUP BY " + ", ".join(e.render(with_alias=False) for e in plan.group_by)
    if plan.order_by:
        sql += " ORDER BY " + ", ".join(o.render() for o in plan.order_by)
    if plan.limit is not None:
        sql += f" LIMIT {int(plan.limit)}"

    if not is_select_only(sql):
        raise ValueError(f"Unsafe SQL blocked:\n{sql}")
    return RenderedQuery(sql=sql, params=params)
