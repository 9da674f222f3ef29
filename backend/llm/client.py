from langchain_groq import ChatGroq

from core.config import settings
from core.logging import get_logger

logger = get_logger(__name__)


def get_llm() -> ChatGroq:
    logger.info(f"Initializing ChatGroq with model: {settings.GROQ_MODEL}")
    return ChatGroq(
        model=settings.GROQ_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        api_key=settings.GROQ_API_KEY,
    )
