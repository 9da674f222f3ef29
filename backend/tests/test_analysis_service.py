"""
End-to-end tests of the analysis pipeline with a fake query executor.
"""
from unittest.mock import MagicMock

import pytest

from app.services.analysis_service import AnalysisService
from app.utils.exceptions import (
    ComparisonUnderspecifiedError,
    NoDataFoundError,
    QueryExecutionError,
    QuestionValidationError,
)
from llm.chain import EnrichmentChain
from llm.models import EnrichmentAnalysis


@pytest.mark.asyncio
async def test_top_customers_in_california(service, executor, store, ranking_rows):
    executor.execute_rendered.return_value = ranking_rows

    result = await service.process_question("Show top 5 customers in California", "s1")

    query = executor.execute_rendered.call_args.args[0]
    assert query.sql == (
        "SELECT customer_name, SUM(sales) as total_sales FROM orders "
        "WHERE state = :p0 GROUP BY customer_name ORDER BY total_sales DESC LIMIT 5"
    )
    assert query.params == {"p0": "California"}
    assert result.meta["plan"]["where"] == ["state = 'California'"]
    assert result.visualization.chart_type == "horizontal-bar"
    assert result.title == "Top 5 Customers in California"
    assert result.insights.splitlines()[-1] == "Top customer: Tamara Chand ($8,673)"
    assert result.raw_data[0] == {"customer_name": "Tamara Chand", "total_sales": 8672.9}
    assert result.sql is None

    context = await store.get("s1")
    assert context.last_state == "California"
    assert context.history[-1].title_text == "Top 5 Customers in California"
    assert context.history[-1].chart_type == "horizontal-bar"


@pytest.mark.asyncio
async def test_comparison_between_states(service, executor, comparison_rows):
    executor.execute_rendered.return_value = comparison_rows

    result = await service.process_question("Compare sales between Arizona and Texas", "s1")

    assert result.visualization.chart_type == "multi-line"
    assert [s.name for s in result.visualization.data] == ["Arizona", "Texas"]
    assert result.title == "Sales Comparison: Arizona vs Texas"
    assert result.insights.startswith("Arizona:\n")
    assert "\n\nTexas:\n" in result.insights


@pytest.mark.asyncio
async def test_sales_trend_for_year(service, executor, store, trend_rows):
    executor.execute_rendered.return_value = trend_rows

    result = await service.process_question("Show sales trend for 2017", "s1")

    query = executor.execute_rendered.call_args.args[0]
    assert "EXTRACT(YEAR FROM order_date) = :p0" in query.sql
    assert "GROUP BY DATE_TRUNC('month', order_date)" not in query.sql
    assert "GROUP BY month" in query.sql
    assert query.params == {"p0": 2017}
    assert result.visualization.chart_type == "line"
    assert len(result.visualization.data) == 12
    assert (await store.get("s1")).last_year == 2017


@pytest.mark.asyncio
async def test_follow_up_uses_session_context(service, executor, ranking_rows, trend_rows):
    executor.execute_rendered.return_value = ranking_rows
    await service.process_question("Show top 5 customers in California", "s1")

    executor.execute_rendered.return_value = trend_rows
    result = await service.process_question("how about New York", "s1")

    assert result.used_question == "show sales in New York"
    query = executor.execute_rendered.call_args.args[0]
    assert query.params == {"p0": "New York"}


@pytest.mark.asyncio
async def test_follow_up_inherits_state(service, executor, store, ranking_rows):
    executor.execute_rendered.return_value = ranking_rows
    await service.process_question("Show top 5 customers in California", "s1")

    result = await service.process_question("top 3 products by sales", "s1")

    assert result.used_question == "top 3 products by sales in California"
    assert (await store.get("s1")).last_state == "California"


@pytest.mark.asyncio
async def test_injection_is_rejected_before_planning(service, executor, store):
    with pytest.raises(QuestionValidationError):
        await service.process_question("DROP TABLE orders;", "s1")

    executor.execute_rendered.assert_not_called()
    assert (await store.get("s1")).history == []


@pytest.mark.asyncio
async def test_underspecified_comparison(service, executor):
    with pytest.raises(ComparisonUnderspecifiedError):
        await service.process_question("compare sales in Texas", "s1")
    executor.execute_rendered.assert_not_called()


@pytest.mark.asyncio
async def test_empty_result_is_an_error(service, executor, store):
    executor.execute_rendered.return_value = []

    with pytest.raises(NoDataFoundError):
        await service.process_question("Show top 5 customers in Alaska", "s1")

    # nothing remembered from a failed turn
    assert (await store.get("s1")).last_state is None


@pytest.mark.asyncio
async def test_execution_errors_propagate(service, executor):
    error = QueryExecutionError("SELECT 1", RuntimeError("connection reset"))
    executor.execute_rendered.side_effect = error

    with pytest.raises(QueryExecutionError) as exc:
        await service.process_question("Show top 5 customers in Texas", "s1")
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_debug_returns_sql(service, executor, ranking_rows):
    executor.execute_rendered.return_value = ranking_rows

    result = await service.process_question("Show top 5 customers in California", "s1", debug=True)

    assert result.sql.startswith("SELECT customer_name")


# Enrichment

def enrichment_returning(analysis):
    chain = MagicMock(spec=EnrichmentChain)
    chain.analyze.return_value = analysis
    return chain


@pytest.mark.asyncio
async def test_enrichment_plan_replaces_ranking_plan(store, executor, ranking_rows):
    analysis = EnrichmentAnalysis(**{
        "analysis": {"metrics": ["sales"], "dimensions": ["customer_name"], "limit": 3},
        "query": {"aggregation": "SUM", "orderBy": "DESC"},
        "visualization": {"type": "pie"},
    })
    service = AnalysisService(store=store, executor=executor, enrichment=enrichment_returning(analysis))
    executor.execute_rendered.return_value = ranking_rows[:3]

    result = await service.process_question("Show top customers in California", "s1")

    assert result.meta["plan"]["limit"] == 3
    # ranking intent decides the chart, the hint is only advisory
    assert result.visualization.chart_type == "horizontal-bar"


@pytest.mark.asyncio
async def test_enrichment_plan_outside_schema_is_discarded(store, executor, ranking_rows):
    analysis = EnrichmentAnalysis(**{
        "analysis": {"metrics": ["password"], "dimensions": ["customer_name"], "limit": 3},
    })
    service = AnalysisService(store=store, executor=executor, enrichment=enrichment_returning(analysis))
    executor.execute_rendered.return_value = ranking_rows

    result = await service.process_question("Show top 5 customers in California", "s1")

    assert result.meta["plan"]["select"] == ["customer_name", "SUM(sales) as total_sales"]
    assert result.meta["plan"]["limit"] == 5


@pytest.mark.asyncio
async def test_enrichment_failure_falls_back(store, executor, ranking_rows):
    chain = enrichment_returning(None)
    service = AnalysisService(store=store, executor=executor, enrichment=chain)
    executor.execute_rendered.return_value = ranking_rows

    result = await service.process_question("Show top 5 customers in California", "s1")

    chain.analyze.assert_called_once()
    assert result.meta["plan"]["limit"] == 5


@pytest.mark.asyncio
async def test_enrichment_skipped_for_comparisons(store, executor, comparison_rows):
    chain = enrichment_returning(None)
    service = AnalysisService(store=store, executor=executor, enrichment=chain)
    executor.execute_rendered.return_value = comparison_rows

    await service.process_question("Compare sales between Arizona and Texas", "s1")

    chain.analyze.assert_not_called()
