from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


class HistoryEntry(BaseModel):
    title_text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    chart_type: str


class ResolvedFilters(BaseModel):
    """Filters a request actually resolved; None means "not mentioned"."""
    state: Optional[str] = None
    year: Optional[int] = None


class SessionContext(BaseModel):
    last_state: Optional[str] = None
    last_year: Optional[int] = None
    last_metric: str = "sales"
    last_limit: int = 5
    history: List[HistoryEntry] = []
