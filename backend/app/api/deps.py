"""
Common dependencies for API endpoints.
"""
from typing import Optional

from app.services.analysis_service import AnalysisService
from core.config import settings
from db.safe_query import QueryExecutor
from llm.chain import EnrichmentChain
from memory.store import SessionContextStore, create_session_store

# Singleton instances
_store_instance = None
_service_instance = None


def get_store() -> SessionContextStore:
    """
    Get or create the session context store.

    Returns:
        SessionContextStore instance (memory or redis backend)
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = create_session_store()
    return _store_instance


def get_enrichment() -> Optional[EnrichmentChain]:
    if not settings.ENRICHMENT_ENABLED or not settings.GROQ_API_KEY:
        return None
    # Imported here so the Groq client is only built when enrichment is on
    from llm.client import get_llm
    return EnrichmentChain(get_llm())


def get_analysis_service() -> AnalysisService:
    """
    Get or create the AnalysisService instance.

    Returns:
        AnalysisService instance
    """
    global _service_instance
    if _service_instance is None:
        _service_instance = AnalysisService(
            store=get_store(),
            executor=QueryExecutor(),
            enrichment=get_enrichment(),
        )
    return _service_instance
