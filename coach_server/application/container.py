from typing import Optional
from dataclasses import dataclass
import structlog

from domain.context.context_builder import ContextBuilder
from domain.context.context_ranker import ContextRanker
from domain.context.memory.cache_memory_store import CacheMemoryStore
from domain.orchestration.core.pipeline import CoachingPipeline
from domain.orchestration.subagent.coach_agent import CoachAgent
from domain.orchestration.subagent.memory_agent import MemoryConsolidator
from domain.orchestration.subagent.planner_agent import PlannerAgent
from domain.orchestration.subagent.router_agent import RouterAgent
from domain.safety.safety_filter import SafetyFilter
from domain.tool.tool_detector import ToolIntentDetector
from domain.tool.tool_executor import ServerToolExecutor
from domain.tool.tool_registry import ToolRegistry
from domain.tool.tool_run_service import ToolRunService
from infrastructure.background.task_runner import BackgroundTaskRunner
from infrastructure.config.settings import Settings, get_settings
from infrastructure.llm.llm_client import LLMClient, create_gemini_client
from infrastructure.observability.metrics import MetricsCollector
from infrastructure.security.jwt_validator import JWTValidator
from infrastructure.security.rate_limiter import RateLimiter
from infrastructure.storage.document_store import DocumentStore
from infrastructure.storage.memory_document_store import InMemoryDocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Process-wide services, built once by the application root"""
    settings: Settings
    store: DocumentStore
    cache: CacheMemoryStore
    metrics: MetricsCollector
    rate_limiter: RateLimiter
    auth: JWTValidator
    registry: ToolRegistry
    tool_runs: ToolRunService
    background: BackgroundTaskRunner
    pipeline: CoachingPipeline

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        llm: Optional[LLMClient] = None,
        store: Optional[DocumentStore] = None,
        detector: Optional[ToolIntentDetector] = None
    ) -> "ServiceContainer":
        settings = settings or get_settings()
        llm = llm or create_gemini_client(settings)
        store = store or InMemoryDocumentStore()

        cache = CacheMemoryStore(default_ttl=settings.cache_coach_ttl_sec)
        metrics = MetricsCollector()
        registry = ToolRegistry()
        safety = SafetyFilter()
        background = BackgroundTaskRunner(
            max_concurrency=settings.background_max_concurrency,
            on_failure=lambda name, error: metrics.increment_counter("background.failures")
        )

        pipeline = CoachingPipeline(
            router=RouterAgent(llm),
            context_builder=ContextBuilder(
                store,
                cache,
                ContextRanker(),
                coach_ttl=settings.cache_coach_ttl_sec,
                plans_ttl=settings.cache_plans_ttl_sec
            ),
            coach=CoachAgent(llm, detector),
            planner=PlannerAgent(llm),
            safety=safety,
            memory=MemoryConsolidator(llm, store, safety),
            background=background,
            metrics=metrics,
            queue_size=settings.stream_queue_size,
            confirmation_ttl_sec=settings.tool_confirmation_ttl_sec
        )

        logger.info("Services initialized", environment=settings.environment, auth_mode=settings.auth_mode)
        return cls(
            settings=settings,
            store=store,
            cache=cache,
            metrics=metrics,
            rate_limiter=RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_sec),
            auth=JWTValidator(
                mode=settings.auth_mode,
                project_id=settings.auth_project_id,
                shared_secret=settings.auth_shared_secret
            ),
            registry=registry,
            tool_runs=ToolRunService(
                registry,
                ServerToolExecutor(store, cache),
                store,
                metrics=metrics,
                token_ttl_sec=settings.tool_confirmation_ttl_sec
            ),
            background=background,
            pipeline=pipeline,
        )
