from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from app.schemas.visualization import VisualizationSpec


class AnalyzeRequest(BaseModel):
    # Validated by the service so rejections use the error envelope
    question: Any = None
    session_id: str = "default"
    debug: bool = False


class AnalysisResult(BaseModel):
    title: str
    subtitle: str = ""
    visualization: VisualizationSpec
    insights: str
    raw_data: List[Dict[str, Any]]
    used_question: Optional[str] = None
    sql: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
