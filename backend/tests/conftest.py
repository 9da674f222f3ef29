"""
Test configuration and fixtures.
"""
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_analysis_service
from app.main import app
from app.services.analysis_service import AnalysisService
from db.safe_query import QueryExecutor
from memory.store import InMemorySessionStore


@pytest.fixture
def store():
    """Fresh in-memory session store."""
    return InMemorySessionStore()


@pytest.fixture
def executor():
    """
    Query executor double. Tests set ``execute_rendered.return_value``.

    Returns:
        AsyncMock shaped like QueryExecutor
    """
    mock = AsyncMock(spec=QueryExecutor)
    mock.execute_rendered.return_value = []
    return mock


@pytest.fixture
def service(store, executor):
    return AnalysisService(store=store, executor=executor)


@pytest.fixture
def client(service):
    """
    Create a test client for the FastAPI app, wired to the test service.

    Returns:
        TestClient instance
    """
    app.dependency_overrides[get_analysis_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def ranking_rows():
    """Top customers by sales, as the database returns them."""
    return [
        {"customer_name": "Tamara Chand", "total_sales": Decimal("8672.90")},
        {"customer_name": "Raymond Buch", "total_sales": Decimal("7000.00")},
        {"customer_name": "Sanjit Chand", "total_sales": Decimal("6500.50")},
        {"customer_name": "Hunter Lopez", "total_sales": Decimal("5200.00")},
        {"customer_name": "Adrian Barton", "total_sales": Decimal("4100.25")},
    ]


@pytest.fixture
def trend_rows():
    """Monthly sales for 2017."""
    return [
        {"month": datetime(2017, m, 1), "total_sales": 1000.0 * m}
        for m in range(1, 13)
    ]


@pytest.fixture
def comparison_rows():
    """Three months of sales for two states, ordered by month then state."""
    rows = []
    for m in range(1, 4):
        rows.append({"month": datetime(2017, m, 1), "state": "Arizona", "total_sales": 100.0 * m})
        rows.append({"month": datetime(2017, m, 1), "state": "Texas", "total_sales": 200.0 * m})
    return rows
