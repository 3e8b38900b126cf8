from typing import List, Optional
import uuid
import structlog

from domain.errors import GenerationError, ProviderError
from domain.models.coach_spec import CoachSpec
from domain.models.turn import CoachOutput, ContextPacket, Route, RouteName
from domain.streaming.streaming_handler import StreamingHandler
from domain.tool.tool_detector import KeywordToolDetector, ToolIntentDetector
from infrastructure.llm.llm_client import LLMClient
from .base_subagent import BaseSubAgent

logger = structlog.get_logger(__name__)

GENERIC_FALLBACK = "I'm here to help. What's on your mind?"

FALLBACK_RESPONSES = {
    RouteName.QUICK_NUDGE: "Let's keep it small. What is one step you could take in the next five minutes?",
    RouteName.DEEP_SESSION: "Let's slow down and work through this together. What feels most important about it right now?",
    RouteName.MAKE_A_SYSTEM: "Let's build something repeatable. What outcome should this routine produce each week?",
    RouteName.REVIEW_RETRO: "Let's look back together. What went well recently, and what got in the way?",
    RouteName.SCHEDULING: "I can help you plan that. When would you like it to happen?",
}

CLOSING_INSTRUCTION = "Respond naturally but follow the style guidelines. Be calm, direct, and actionable."


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:16]}"


def fallback_response(route: Optional[Route]) -> str:
    if route is None:
        return GENERIC_FALLBACK
    return FALLBACK_RESPONSES.get(route.name, GENERIC_FALLBACK)


def build_system_prompt(context: ContextPacket) -> str:
    """Render the coach spec and user snapshot into the generator's instructions"""

    spec: CoachSpec = context.coach_spec
    lines: List[str] = [f"You are {spec.identity.name}, a {spec.identity.niche} coach.", ""]

    if spec.identity.tagline:
        lines += [f"Tagline: {spec.identity.tagline}", ""]

    formatting = spec.style.formatting
    lines.append("Your style:")
    lines.append(f"- Tone: {spec.style.tone}")
    lines.append(f"- Verbosity: {spec.style.verbosity}")
    lines.append(f"- At most {formatting.max_bullets} bullets, "
                 f"{formatting.max_sentences_per_paragraph} sentences per paragraph")
    if formatting.always_end_with:
        lines.append(f"- Always end with: {', '.join(formatting.always_end_with)}")
    lines.append("")

    rules = spec.style.interaction_rules
    lines.append("Interaction rules:")
    if rules.ask_one_question_at_a_time:
        lines.append("- Ask one question at a time")
    if rules.confirm_before_scheduling:
        lines.append("- Confirm before scheduling")
    if rules.avoid_motivational_fluff:
        lines.append("- Avoid motivational fluff")
    if rules.reflect_user_language:
        lines.append("- Reflect user's language")
    lines.append("")

    vault = context.user.context_vault
    lines.append("User context:")
    if vault.values:
        lines.append(f"- Values: {', '.join(vault.values)}")
    if vault.goals:
        lines.append(f"- Goals: {', '.join(vault.goals)}")
    if context.active_plans:
        lines.append(f"- Active plans: {len(context.active_plans)}")
    if context.recent_summary:
        lines.append(f"- Last session: {context.recent_summary}")
    for hit in context.memory_hits:
        lines.append(f"- Remembered {hit.type}: {hit.snippet}")
    lines.append("")

    if spec.methods.frameworks:
        lines.append("Available frameworks:")
        for framework in spec.methods.frameworks:
            lines.append(f"- {framework.name}: {framework.goal}")
            if framework.steps:
                lines.append(f"  Steps: {', '.join(framework.steps)}")
        lines.append("")

    tools = spec.tools_allowed.all_tools()
    if tools:
        lines.append("Available tools:")
        lines += [f"- {tool}" for tool in tools]
        lines.append("")

    refusals = spec.policies.refusals
    safety = spec.policies.safety
    lines.append("Safety policies:")
    if refusals.medical:
        lines.append("- Never give medical advice")
    if refusals.legal:
        lines.append("- Never give legal advice")
    if refusals.financial_advice == "none":
        lines.append("- Never give financial advice")
    elif refusals.financial_advice == "general_only":
        lines.append("- Keep financial guidance general")
    if refusals.self_harm == "escalate_support":
        lines.append("- If the user mentions self-harm, point them to professional support")
    if safety.no_manipulation:
        lines.append("- Never manipulate users")
    if safety.no_guilt or safety.no_shaming:
        lines.append("- Never guilt or shame users")
    lines.append("")

    lines.append(CLOSING_INSTRUCTION)
    return "\n".join(lines)


class CoachAgent(BaseSubAgent):
    """Streams the coach's reply as protocol events"""

    def __init__(self, llm: LLMClient, detector: Optional[ToolIntentDetector] = None):
        super().__init__("coach", "Generates the streamed coaching response", llm)
        self.detector = detector or KeywordToolDetector()

    async def generate(
        self,
        message: str,
        context: ContextPacket,
        handler: StreamingHandler,
        route: Optional[Route] = None
    ) -> CoachOutput:
        """Stream one reply.

        Emits ``stream.open``, one ``message.delta`` per token and a closing
        ``message.final``. If the provider fails before the first token the
        canned response for the route is streamed instead. A failure after
        tokens were forwarded raises ``GenerationError``. Cancellation
        propagates immediately without a final message.
        """

        self.update_activity()
        prompt = build_system_prompt(context) + "\n\nUser: " + message
        max_cards = context.coach_spec.outputs.rendering_hints.max_cards_per_response

        await handler.send_open()

        tokens: List[str] = []
        used_fallback = False
        try:
            async for token in self.llm.stream(prompt):
                tokens.append(token)
                await handler.send_delta(token)
        except ProviderError as e:
            if tokens:
                raise GenerationError("generation failed mid-stream", e) from e
            logger.warning("Generation failed before first token, using fallback",
                           session_id=handler.session_id, error=str(e))
            used_fallback = True
            tokens = [fallback_response(route)]
            await handler.send_delta(tokens[0])

        text = "".join(tokens)
        await handler.send_final(new_message_id(), text, max_cards=max_cards)

        tool_requests = [] if used_fallback else self.detector.detect(text, context.coach_spec)
        logger.info(
            "Generation complete",
            session_id=handler.session_id,
            tokens=len(tokens),
            tool_requests=len(tool_requests),
            used_fallback=used_fallback
        )
        return CoachOutput(message_text=text, tool_requests=tool_requests, used_fallback=used_fallback)
