from typing import Any, AsyncContextManager, Callable, Dict, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from analysis.plan import QueryPlan
from app.utils.exceptions import QueryExecutionError
from core.logging import get_logger
from db.session import session_scope
from db.sql_safety import RenderedQuery, render_sql

logger = get_logger(__name__)


class QueryExecutor:
    """
    Runs sanitized plans against the relational store and returns rows as
    dictionaries. Failures are wrapped with the statement that caused them.
    """

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]] = session_scope):
        self.session_factory = session_factory

    async def execute(self, plan: QueryPlan) -> List[Dict[str, Any]]:
        return await self.execute_rendered(render_sql(plan))

    async def execute_rendered(self, query: RenderedQuery) -> List[Dict[str, Any]]:
        logger.info(f"Executing query: {query.sql} params={query.params}")
        try:
            async with self.session_factory() as session:
                result = await session.execute(text(query.sql), query.params)

                # Get column names
                columns = list(result.keys())

                # Convert rows to dictionaries
                rows = result.fetchall()
        except Exception as e:
            logger.error(f"Query execution failed: {e}\nQuery: {query.sql}\nParams: {query.params}")
            raise QueryExecutionError(query.sql, e) from e

        logger.info(f"Query returned {len(rows)} rows")
        return [dict(zip(columns, row)) for row in rows]
