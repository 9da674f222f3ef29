import json
import re
from typing import Optional

from langchain_core.output_parsers import StrOutputParser

from analysis.entities import EntitySet
from analysis.schema import ORDERS, DataSource
from core.logging import get_logger
from llm.models import EnrichmentAnalysis
from llm.prompts import analysis_prompt

logger = get_logger(__name__)

parser = StrOutputParser()

FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_analysis(text: str) -> EnrichmentAnalysis:
    """Pull the JSON object out of a model reply; raises on anything unparseable."""
    cleaned = FENCE.sub("", text or "")
    match = JSON_OBJECT.search(cleaned)
    if not match:
        raise ValueError("No JSON object in model output")
    return EnrichmentAnalysis(**json.loads(match.group(0)))


class EnrichmentChain:
    """
    Advisory analysis of a question by the language model.

    The reply is a JSON payload with ``analysis``, ``query`` and
    ``visualization`` sections. Any failure (transport, parsing, validation)
    returns None so the caller keeps its rule-based plan.
    """

    def __init__(self, llm, source: DataSource = ORDERS):
        self.llm = llm
        self.source = source
        self.analysis_chain = analysis_prompt | llm | parser

    def analyze(self, question: str, entities: EntitySet) -> Optional[EnrichmentAnalysis]:
        try:
            raw = self.analysis_chain.invoke({
                "question": question,
                "geographic": entities.geographic or "none",
                "metrics": ", ".join(entities.metrics) or "none",
                "dimensions": ", ".join(entities.categorical) or "none",
                "temporal_fields": ", ".join(self.source.temporal),
                "categorical_fields": ", ".join(self.source.categorical),
                "metric_fields": ", ".join(self.source.metrics),
            })
            analysis = parse_analysis(raw)
        except Exception as e:
            logger.warning(f"LLM enrichment failed, using rule-based plan: {e}")
            return None

        logger.info(f"LLM enrichment: {analysis.model_dump()}")
        return analysis
