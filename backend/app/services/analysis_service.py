import time
from typing import Optional, Tuple

from starlette.concurrency import run_in_threadpool

from analysis.entities import EntityExtractor, EntitySet
from analysis.insights import InsightsSummarizer
from analysis.intent import Intent, IntentCategory, IntentClassifier
from analysis.plan import PlanShape, QueryPlan, QueryPlanBuilder
from analysis.visualization import VisualizationSelector
from app.schemas.analysis import AnalysisResult
from app.utils.exceptions import NoDataFoundError, PlanRejectedError
from app.utils.helpers import clean_row
from core.config import settings
from core.logging import get_logger
from db.safe_query import QueryExecutor
from db.sql_safety import QueryPlanSanitizer, render_sql, validate_question
from llm.chain import EnrichmentChain
from memory.models import ResolvedFilters, SessionContext
from memory.store import SessionContextStore

logger = get_logger(__name__)


class AnalysisService:
    """
    Question -> plan -> rows -> chart + insights, one linear pass per request.

    The session's lock is held from the context read to the context write so
    overlapping requests on one session cannot lose each other's update.
    """

    def __init__(
        self,
        store: SessionContextStore,
        executor: QueryExecutor,
        enrichment: Optional[EnrichmentChain] = None,
        extractor: EntityExtractor = None,
        classifier: IntentClassifier = None,
        builder: QueryPlanBuilder = None,
        sanitizer: QueryPlanSanitizer = None,
        selector: VisualizationSelector = None,
        summarizer: InsightsSummarizer = None,
    ):
        self.store = store
        self.executor = executor
        self.enrichment = enrichment
        self.extractor = extractor or EntityExtractor()
        self.classifier = classifier or IntentClassifier()
        self.builder = builder or QueryPlanBuilder()
        self.sanitizer = sanitizer or QueryPlanSanitizer()
        self.selector = selector or VisualizationSelector()
        self.summarizer = summarizer or InsightsSummarizer()

    async def process_question(self, question, session_id: str = "default", debug: bool = False) -> AnalysisResult:
        t0 = time.time()

        # 1. Reject bad input before anything else runs
        validate_question(question)
        session_id = session_id or "default"

        async with self.store.lock(session_id):
            # 2. Context + follow-up resolution
            context = await self.store.get(session_id)
            enhanced = self.store.enhance_question(question, context)
            if enhanced != question:
                logger.info(f"Question rewritten from context: {question!r} -> {enhanced!r}")

            # 3. Interpretation
            entities = self.extractor.extract(enhanced)
            intent = self.classifier.classify(enhanced)

            # 4. Plan
            plan, hint = await self._plan(enhanced, intent, entities, context)
            plan = self.sanitizer.sanitize(plan)
            query = render_sql(plan)

            # 5. Execute
            rows = await self.executor.execute_rendered(query)
            if not rows:
                raise NoDataFoundError()

            # 6. Present
            visualization = self.selector.build(intent, plan, rows, hint=hint)
            insights = self.summarizer.summarize(plan, rows)

            # 7. Remember
            await self.store.update(
                session_id,
                ResolvedFilters(state=plan.geographic, year=plan.year),
                visualization.title,
                visualization.chart_type,
            )

        return AnalysisResult(
            title=visualization.title,
            subtitle=visualization.subtitle,
            visualization=visualization,
            insights=insights,
            raw_data=[clean_row(r) for r in rows],
            used_question=enhanced,
            sql=query.sql if (debug or settings.DEBUG_RETURN_SQL) else None,
            meta={
                "latency_ms": int((time.time() - t0) * 1000),
                "intent": intent.category.value,
                "plan": plan.describe(),
            },
        )

    async def _plan(
        self,
        question: str,
        intent: Intent,
        entities: EntitySet,
        context: SessionContext,
    ) -> Tuple[QueryPlan, Optional[str]]:
        """
        Rule-based plan, optionally replaced by the enrichment plan.

        Enrichment is skipped for comparisons and only replaces ranking plans;
        for other shapes it contributes the chart hint alone.
        """
        plan = self.builder.build(question, intent, entities, context)
        if self.enrichment is None or intent.category == IntentCategory.COMPARISON:
            return plan, None

        analysis = await run_in_threadpool(self.enrichment.analyze, question, entities)
        if analysis is None:
            return plan, None

        hint = analysis.visualization.type
        if plan.shape != PlanShape.RANKING:
            return plan, hint

        try:
            enriched = self.sanitizer.sanitize(self.builder.from_enrichment(analysis, entities, context))
        except (ValueError, PlanRejectedError) as e:
            logger.warning(f"Enrichment plan discarded: {e}")
            return plan, hint

        outputs = {e.output_name for e in enriched.select}
        if enriched.value_column not in outputs or not enriched.group_by:
            logger.warning(f"Enrichment plan lost its value column or grouping: {enriched.describe()}")
            return plan, hint

        return enriched, hint
