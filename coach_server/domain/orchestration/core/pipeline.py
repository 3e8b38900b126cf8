from typing import TypedDict, Any, Dict, List, Literal, NamedTuple, Optional
import asyncio
import time
import structlog
from langgraph.graph import StateGraph, END

from domain.context.context_builder import ContextBuilder
from domain.errors import (
    ContextBuildError, ExtractionError, GenerationError, PipelineError, RouterError, SafetyViolation
)
from domain.models.turn import CoachOutput, ContextPacket, ExtractionOutput, Route, TurnInput
from domain.orchestration.subagent.coach_agent import CoachAgent
from domain.orchestration.subagent.memory_agent import MemoryConsolidator
from domain.orchestration.subagent.planner_agent import PlannerAgent
from domain.orchestration.subagent.router_agent import RouterAgent
from domain.safety.safety_filter import SafetyFilter
from domain.streaming.streaming_handler import StreamingHandler
from infrastructure.background.task_runner import BackgroundTaskRunner
from infrastructure.observability.logging import PipelineLogger
from infrastructure.observability.metrics import MetricsCollector

logger = structlog.get_logger(__name__)
pipeline_logger = PipelineLogger("pipeline")

PLANNER_WARNING = "Could not extract structured plan"
AWAITING_CONFIRMATION = "awaiting_confirmation"


class PipelineState(TypedDict):
    """State carried between the stages of one turn"""
    turn: TurnInput
    handler: StreamingHandler
    stage: str
    route: Optional[Route]
    context: Optional[ContextPacket]
    coach_output: Optional[CoachOutput]
    extraction: Optional[ExtractionOutput]
    safety_passed: bool
    error: Optional[PipelineError]


class TurnStream(NamedTuple):
    handler: StreamingHandler
    task: "asyncio.Task[None]"


class CoachingPipeline:
    """Runs one coaching turn as a LangGraph state machine.

    classifying -> context_building -> generating -> [extracting] ->
    safety_checking -> done, with memory consolidation submitted to the
    background runner once the terminal event is out. A fatal stage routes
    to the error handler, which emits the single ``error`` event.
    """

    def __init__(
        self,
        router: RouterAgent,
        context_builder: ContextBuilder,
        coach: CoachAgent,
        planner: PlannerAgent,
        safety: SafetyFilter,
        memory: MemoryConsolidator,
        background: BackgroundTaskRunner,
        metrics: Optional[MetricsCollector] = None,
        queue_size: int = 100,
        confirmation_ttl_sec: int = 300
    ):
        self.router = router
        self.context_builder = context_builder
        self.coach = coach
        self.planner = planner
        self.safety = safety
        self.memory = memory
        self.background = background
        self.metrics = metrics or MetricsCollector()
        self.queue_size = queue_size
        self.confirmation_ttl_sec = confirmation_ttl_sec
        self.workflow = self._create_workflow()

    def get_agents_info(self) -> List[Dict[str, Any]]:
        return [agent.get_info() for agent in (self.router, self.coach, self.planner, self.memory)]

    def _create_workflow(self):
        workflow = StateGraph(PipelineState)

        workflow.add_node("classify", self.classify_node)
        workflow.add_node("build_context", self.build_context_node)
        workflow.add_node("generate", self.generate_node)
        workflow.add_node("extract", self.extract_node)
        workflow.add_node("safety_check", self.safety_check_node)
        workflow.add_node("finalize", self.finalize_node)
        workflow.add_node("error_handler", self.error_handler_node)

        workflow.set_entry_point("classify")

        workflow.add_conditional_edges(
            "classify",
            self.check_stage_result,
            {"ok": "build_context", "error": "error_handler"}
        )
        workflow.add_conditional_edges(
            "build_context",
            self.check_stage_result,
            {"ok": "generate", "error": "error_handler"}
        )
        workflow.add_conditional_edges(
            "generate",
            self.route_after_generation,
            {"extract": "extract", "safety_check": "safety_check", "error": "error_handler"}
        )
        workflow.add_edge("extract", "safety_check")
        workflow.add_edge("safety_check", "finalize")
        workflow.add_edge("finalize", END)
        workflow.add_edge("error_handler", END)

        return workflow.compile()

    def start(self, turn: TurnInput) -> TurnStream:
        """Launch the turn as a task writing into a fresh event handler"""

        handler = StreamingHandler(turn.session_id, max_queue_size=self.queue_size)
        task = asyncio.create_task(self.run(turn, handler), name=f"turn:{turn.session_id}")
        return TurnStream(handler, task)

    async def run(self, turn: TurnInput, handler: StreamingHandler) -> None:
        initial_state: PipelineState = {
            "turn": turn,
            "handler": handler,
            "stage": "classifying",
            "route": None,
            "context": None,
            "coach_output": None,
            "extraction": None,
            "safety_passed": False,
            "error": None,
        }

        self.metrics.increment_counter("pipeline.turns")
        started = time.perf_counter()
        try:
            await self.workflow.ainvoke(initial_state)
        except asyncio.CancelledError:
            logger.info("Turn cancelled", session_id=turn.session_id)
            self.metrics.increment_counter("pipeline.cancelled")
            raise
        except Exception as e:
            logger.error("Pipeline crashed", session_id=turn.session_id, error=str(e), exc_info=True)
            self.metrics.record_pipeline_error(PipelineError.code)
            if not handler.closed:
                await handler.send_error(PipelineError.code, "internal error")
        finally:
            self.metrics.record_stage("turn", (time.perf_counter() - started) * 1000)

    # Nodes

    async def classify_node(self, state: PipelineState) -> Dict[str, Any]:
        turn = state["turn"]
        started = time.perf_counter()
        try:
            route = await self.router.classify(turn.message, turn.uid)
        except PipelineError as e:
            return {"error": e}
        except Exception as e:
            return {"error": RouterError("classification failed", e)}

        self._transition(state, "context_building", started, {"route": route.name.value})
        return {"route": route, "stage": "context_building"}

    async def build_context_node(self, state: PipelineState) -> Dict[str, Any]:
        turn = state["turn"]
        started = time.perf_counter()
        try:
            context = await self.context_builder.build(turn.uid, turn.coach_id, state["route"], turn.message)
        except PipelineError as e:
            return {"error": e}
        except Exception as e:
            return {"error": ContextBuildError("context build failed", e)}

        self._transition(state, "generating", started)
        return {"context": context, "stage": "generating"}

    async def generate_node(self, state: PipelineState) -> Dict[str, Any]:
        turn = state["turn"]
        started = time.perf_counter()
        try:
            output = await self.coach.generate(turn.message, state["context"], state["handler"], state["route"])
        except PipelineError as e:
            return {"error": e}
        except Exception as e:
            return {"error": GenerationError("generation failed", e)}

        next_stage = "extracting" if state["route"].needs_extraction else "safety_checking"
        self._transition(state, next_stage, started, {"used_fallback": output.used_fallback})
        return {"coach_output": output, "stage": next_stage}

    async def extract_node(self, state: PipelineState) -> Dict[str, Any]:
        handler = state["handler"]
        started = time.perf_counter()
        try:
            extraction = await self.planner.generate(state["coach_output"], state["context"].coach_spec)
        except ExtractionError as e:
            logger.warning("Extraction failed", session_id=handler.session_id, error=str(e))
            extraction = ExtractionOutput(parse_failed=True)
        except Exception as e:
            logger.error("Extraction crashed", session_id=handler.session_id, error=str(e), exc_info=True)
            extraction = ExtractionOutput(parse_failed=True)

        if extraction.parse_failed:
            await self._notice(handler, "planner_warning", PLANNER_WARNING)

        if extraction.plan is not None:
            await handler.send_plan_card(extraction.plan)
        if extraction.next_actions:
            await handler.send_next_actions_card(extraction.next_actions)
        if extraction.weekly_review is not None:
            await handler.send_weekly_review_card(extraction.weekly_review)

        self._transition(state, "safety_checking", started, {"empty": extraction.is_empty()})
        return {"extraction": extraction, "stage": "safety_checking"}

    async def safety_check_node(self, state: PipelineState) -> Dict[str, Any]:
        handler = state["handler"]
        started = time.perf_counter()
        try:
            self.safety.validate(state["coach_output"], state["context"].coach_spec)
            passed = True
        except SafetyViolation as violation:
            await self._notice(handler, "safety_boundary", violation.message)
            passed = False

        self._transition(state, "done", started, {"passed": passed})
        return {"safety_passed": passed, "stage": "done"}

    async def finalize_node(self, state: PipelineState) -> Dict[str, Any]:
        handler = state["handler"]
        output: CoachOutput = state["coach_output"]

        if state["safety_passed"]:
            for request in output.tool_requests:
                await handler.send_tool_request(request)
                if request.requires_confirmation:
                    await handler.send_tool_status(
                        request.request_id,
                        AWAITING_CONFIRMATION,
                        expires_in_sec=self.confirmation_ttl_sec
                    )

        await handler.send_done()

        turn = state["turn"]
        self.background.submit(
            f"memory:{turn.session_id}",
            lambda: self.memory.update(turn.session_id, turn.uid, output)
        )
        return {"stage": "done"}

    async def error_handler_node(self, state: PipelineState) -> Dict[str, Any]:
        error = state["error"]
        handler = state["handler"]

        pipeline_logger.log_stage_failure(handler.session_id, state["stage"], error.code, str(error.cause or error))
        self.metrics.record_pipeline_error(error.code)
        await handler.send_error(error.code, error.message)
        return {"stage": "failed"}

    # Edges

    def check_stage_result(self, state: PipelineState) -> Literal["ok", "error"]:
        return "error" if state.get("error") else "ok"

    def route_after_generation(self, state: PipelineState) -> Literal["extract", "safety_check", "error"]:
        if state.get("error"):
            return "error"
        if state["route"].needs_extraction:
            return "extract"
        return "safety_check"

    # Helpers

    async def _notice(self, handler: StreamingHandler, kind: str, message: str):
        pipeline_logger.log_policy_notice(handler.session_id, kind, message)
        self.metrics.increment_counter(f"policy_notices.{kind}")
        await handler.send_policy_notice(kind, message)

    def _transition(self, state: PipelineState, to_stage: str, started: float, details: Optional[Dict[str, Any]] = None):
        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_stage(state["stage"], duration_ms)
        pipeline_logger.log_stage_transition(
            state["handler"].session_id, state["stage"], to_stage, duration_ms, details
        )
