"""
Tests for query plan construction.
"""
from datetime import date

import pytest

from analysis.entities import EntityExtractor
from analysis.intent import IntentClassifier
from analysis.plan import (
    Expression,
    PlanShape,
    QueryPlanBuilder,
    absolute_window,
    range_window,
    relative_window,
)
from app.utils.exceptions import ComparisonUnderspecifiedError, QuestionValidationError
from llm.models import EnrichmentAnalysis
from memory.models import SessionContext


@pytest.fixture
def builder():
    return QueryPlanBuilder(today=lambda: date(2024, 3, 15))


def build(builder, question, context=None):
    entities = EntityExtractor().extract(question)
    intent = IntentClassifier().classify(question)
    return builder.build(question, intent, entities, context or SessionContext())


def test_ranking_plan(builder):
    plan = build(builder, "Show top 5 customers in California")

    assert plan.shape == PlanShape.RANKING
    assert plan.describe() == {
        "select": ["customer_name", "SUM(sales) as total_sales"],
        "from": "orders",
        "where": ["state = 'California'"],
        "groupBy": ["customer_name"],
        "orderBy": ["total_sales DESC"],
        "limit": 5,
    }
    assert plan.geographic == "California"
    assert plan.dimension == "customer_name"


def test_trend_plan_with_year(builder):
    plan = build(builder, "Show sales trend for 2017")

    assert plan.shape == PlanShape.TREND
    assert plan.describe() == {
        "select": ["DATE_TRUNC('month', order_date) as month", "SUM(sales) as total_sales"],
        "from": "orders",
        "where": ["EXTRACT(YEAR FROM order_date) = 2017"],
        "groupBy": ["month"],
        "orderBy": ["month ASC"],
        "limit": None,
    }
    assert plan.year == 2017


def test_comparison_plan(builder):
    plan = build(builder, "Compare sales between Arizona and Texas")

    assert plan.shape == PlanShape.COMPARISON
    assert plan.compared_values == ["Arizona", "Texas"]
    assert plan.geographic is None
    described = plan.describe()
    assert described["select"] == [
        "DATE_TRUNC('month', order_date) as month", "state", "SUM(sales) as total_sales",
    ]
    assert described["where"] == ["state IN ('Arizona', 'Texas')"]
    assert described["groupBy"] == ["month", "state"]
    assert described["orderBy"] == ["month ASC", "state ASC"]


def test_comparison_plan_with_year(builder):
    plan = build(builder, "compare profit California vs Texas in 2016")

    assert plan.metric == "profit"
    assert plan.describe()["where"] == [
        "state IN ('California', 'Texas')",
        "EXTRACT(YEAR FROM order_date) = 2016",
    ]


def test_comparison_needs_two_values(builder):
    with pytest.raises(ComparisonUnderspecifiedError) as exc:
        build(builder, "compare sales in Texas")
    assert exc.value.found == ["Texas"]
    assert exc.value.status_code == 422


def test_bottom_ranking_by_profit(builder):
    plan = build(builder, "bottom 3 products by profit")

    described = plan.describe()
    assert described["select"] == ["product_name", "SUM(profit) as total_profit"]
    assert described["orderBy"] == ["total_profit ASC"]
    assert described["limit"] == 3


def test_limit_falls_back_to_context(builder):
    plan = build(builder, "top customers", SessionContext(last_limit=10))
    assert plan.limit == 10


def test_explicit_limit_wins_over_context(builder):
    plan = build(builder, "top 2 customers", SessionContext(last_limit=10))
    assert plan.limit == 2


def test_zero_limit_is_rejected(builder):
    with pytest.raises(QuestionValidationError) as exc:
        build(builder, "top 0 customers", SessionContext(last_limit=10))
    assert exc.value.message == "Limit must be at least 1"


def test_metric_falls_back_to_context(builder):
    plan = build(builder, "top customers", SessionContext(last_metric="quantity"))
    assert plan.describe()["select"] == ["customer_name", "SUM(quantity) as total_quantity"]


def test_default_plan_is_trend(builder):
    plan = build(builder, "show sales in California")

    assert plan.shape == PlanShape.TREND
    assert plan.describe()["where"] == ["state = 'California'"]


def test_default_plan_ranks_on_literal_top_substring(builder):
    # distribution intent; "laptops" contains "top"
    plan = build(builder, "distribution of sales for laptops")
    assert plan.shape == PlanShape.RANKING

    plan = build(builder, "distribution of sales for tablets")
    assert plan.shape == PlanShape.TREND


def test_state_is_title_cased(builder):
    plan = build(builder, "top customers in ontario")
    assert plan.describe()["where"] == ["state = 'Ontario'"]


def test_relative_window_filters(builder):
    plan = build(builder, "top customers last month")
    assert plan.describe()["where"] == [
        "order_date >= '2024-02-01'",
        "order_date < '2024-03-01'",
    ]


def test_relative_window():
    today = date(2024, 3, 15)
    assert relative_window("last quarter", today) == (date(2023, 10, 1), date(2024, 1, 1))
    assert relative_window("this week", today) == (date(2024, 3, 11), date(2024, 3, 18))
    assert relative_window("next year", today) == (date(2025, 1, 1), date(2026, 1, 1))
    assert relative_window("someday", today) is None


def test_range_window():
    assert range_window("between 2017-01-01 and 2017-06-30") == (date(2017, 1, 1), date(2017, 7, 1))
    assert range_window("between 2016 and 2017") == (date(2016, 1, 1), date(2018, 1, 1))
    assert range_window("between Arizona and Texas") is None
    assert range_window("between 2017-06-30 and 2017-01-01") is None


def test_range_window_without_year():
    assert range_window("between March and June", 2017) == (date(2017, 3, 1), date(2017, 7, 1))
    assert range_window("between March 5 and June", 2017) == (date(2017, 3, 5), date(2017, 7, 1))
    assert range_window("between March and June") is None


def test_range_takes_the_question_year(builder):
    plan = build(builder, "top 5 customers between March and June 2017")
    assert plan.describe()["where"] == [
        "EXTRACT(YEAR FROM order_date) = 2017",
        "order_date >= '2017-03-01'",
        "order_date < '2017-07-01'",
    ]


def test_range_without_any_year_is_dropped(builder):
    plan = build(builder, "top 5 customers between March and June")
    assert plan.describe()["where"] == []


def test_range_bounds_are_not_single_days(builder):
    plan = build(builder, "top customers between 2017-01-01 and 2017-06-30")
    assert plan.describe()["where"] == [
        "EXTRACT(YEAR FROM order_date) = 2017",
        "order_date >= '2017-01-01'",
        "order_date < '2017-07-01'",
    ]


def test_absolute_window():
    assert absolute_window("2017-03-15") == (date(2017, 3, 15), date(2017, 3, 16))
    assert absolute_window("2017-03") == (date(2017, 3, 1), date(2017, 4, 1))
    assert absolute_window("2017") is None
    assert absolute_window("2017-13-45") is None


def test_full_date_filters_one_day(builder):
    plan = build(builder, "top customers on 2017-03-15")
    assert plan.describe()["where"] == [
        "EXTRACT(YEAR FROM order_date) = 2017",
        "order_date >= '2017-03-15'",
        "order_date < '2017-03-16'",
    ]


def test_year_month_filters_one_month(builder):
    plan = build(builder, "sales trend for 2017-03")
    assert plan.describe()["where"] == [
        "EXTRACT(YEAR FROM order_date) = 2017",
        "order_date >= '2017-03-01'",
        "order_date < '2017-04-01'",
    ]


def test_expression_parse():
    total = Expression.parse("SUM(sales) as total_sales")
    assert (total.field, total.aggregate, total.alias) == ("sales", "SUM", "total_sales")

    month = Expression.parse("DATE_TRUNC('month', order_date) as month")
    assert (month.field, month.truncate, month.alias) == ("order_date", "month", "month")
    assert month.render() == "DATE_TRUNC('month', order_date) as month"

    prefixed = Expression.parse("o.customer_name")
    assert (prefixed.table, prefixed.field) == ("o", "customer_name")

    garbage = Expression.parse("secret_field; DROP TABLE orders")
    assert garbage.field == "secret_field; DROP TABLE orders"


def test_from_enrichment(builder):
    analysis = EnrichmentAnalysis(**{
        "analysis": {
            "type": "ranking",
            "metrics": ["sales"],
            "dimensions": ["customer_name"],
            "filters": {"geographic": "california", "temporal": None},
            "limit": 5,
        },
        "query": {"aggregation": "SUM", "orderBy": "DESC"},
        "visualization": {"type": "bar-horizontal", "config": {}},
    })
    question = "Show top 5 customers in California"
    entities = EntityExtractor().extract(question)

    plan = builder.from_enrichment(analysis, entities, SessionContext())

    assert plan.describe() == build(builder, question).describe()


def test_from_enrichment_requires_dimensions(builder):
    analysis = EnrichmentAnalysis(analysis={"metrics": ["sales"], "dimensions": []})
    with pytest.raises(ValueError):
        builder.from_enrichment(analysis, EntityExtractor().extract("top customers"), SessionContext())


def test_from_enrichment_rejects_zero_limit(builder):
    analysis = EnrichmentAnalysis(analysis={"metrics": ["sales"], "dimensions": ["customer_name"], "limit": 0})
    with pytest.raises(ValueError):
        builder.from_enrichment(analysis, EntityExtractor().extract("top customers"), SessionContext())
