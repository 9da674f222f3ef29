from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AnalysisFilters(BaseModel):
    model_config = ConfigDict(extra="ignore")

    geographic: Optional[str] = None
    temporal: Optional[str] = None


class AnalysisSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    subtype: Optional[str] = None
    metrics: List[str] = []
    dimensions: List[str] = []
    filters: AnalysisFilters = AnalysisFilters()
    limit: Optional[int] = None


class QuerySection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    aggregation: str = "SUM"
    orderBy: Optional[str] = None


class VisualizationSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    config: Dict[str, Any] = {}


class EnrichmentAnalysis(BaseModel):
    """Shape the language model is asked to return for a question."""
    model_config = ConfigDict(extra="ignore")

    analysis: AnalysisSection
    query: QuerySection = QuerySection()
    visualization: VisualizationSection = VisualizationSection()
