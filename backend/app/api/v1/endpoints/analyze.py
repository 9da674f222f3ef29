from fastapi import APIRouter, Depends

from app.api.deps import get_analysis_service
from app.schemas.analysis import AnalysisResult, AnalyzeRequest
from app.schemas.common import StandardResponse
from app.services.analysis_service import AnalysisService

router = APIRouter()


@router.post("/analyze", response_model=StandardResponse[AnalysisResult])
async def analyze(
    request: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    """
    Answer a free-text sales question with a chart specification and insights.

    Application errors (validation, empty results, database failures) are
    turned into the error envelope by the app-level exception handler.
    """
    result = await service.process_question(
        request.question,
        request.session_id,
        request.debug,
    )
    return StandardResponse(data=result)
