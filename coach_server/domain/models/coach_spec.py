from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class SpecModel(BaseModel):
    """Base for coach spec sections; unknown keys from stored documents are ignored"""
    model_config = ConfigDict(extra="ignore")


class Persona(SpecModel):
    archetype: str = ""
    voice: str = ""
    boundaries: List[str] = Field(default_factory=list)


class Identity(SpecModel):
    name: str = Field(description="Display name the coach introduces itself with")
    tagline: str = ""
    niche: str = Field(description="Coaching domain, e.g. productivity_systems")
    audience: List[str] = Field(default_factory=list)
    problem_statements: List[str] = Field(default_factory=list)
    outcomes: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=lambda: ["en"])
    persona: Persona = Field(default_factory=Persona)


class Formatting(SpecModel):
    max_bullets: int = 7
    max_sentences_per_paragraph: int = 2
    always_end_with: List[str] = Field(default_factory=list)
    use_emoji: str = "sparingly"
    allowed_markdown: List[str] = Field(default_factory=list)


class InteractionRules(SpecModel):
    ask_one_question_at_a_time: bool = False
    confirm_before_scheduling: bool = False
    avoid_motivational_fluff: bool = False
    reflect_user_language: bool = False


class Style(SpecModel):
    tone: str = "neutral"
    verbosity: str = "medium"
    formatting: Formatting = Field(default_factory=Formatting)
    interaction_rules: InteractionRules = Field(default_factory=InteractionRules)


class Framework(SpecModel):
    id: str
    name: str
    goal: str = ""
    steps: List[str] = Field(default_factory=list)
    when_to_use: List[str] = Field(default_factory=list)


class Protocol(SpecModel):
    template: List[str] = Field(default_factory=list)
    phases: List[str] = Field(default_factory=list)


class DefaultProtocols(SpecModel):
    quick_nudge: Protocol = Field(default_factory=Protocol)
    deep_session: Protocol = Field(default_factory=Protocol)


class Methods(SpecModel):
    frameworks: List[Framework] = Field(default_factory=list)
    default_protocols: DefaultProtocols = Field(default_factory=DefaultProtocols)


class Refusals(SpecModel):
    medical: bool = False
    legal: bool = False
    financial_advice: str = Field(default="general_only", description="general_only or none")
    self_harm: str = Field(default="escalate_support")


class Privacy(SpecModel):
    store_sensitive_memory: bool = False
    redact_patterns: List[str] = Field(default_factory=list)
    user_controls: List[str] = Field(default_factory=list)


class SafetyFlags(SpecModel):
    no_manipulation: bool = False
    no_guilt: bool = False
    no_shaming: bool = False


class Policies(SpecModel):
    refusals: Refusals = Field(default_factory=Refusals)
    privacy: Privacy = Field(default_factory=Privacy)
    safety: SafetyFlags = Field(default_factory=SafetyFlags)


class ToolsAllowed(SpecModel):
    client_tools: List[str] = Field(default_factory=list)
    server_tools: List[str] = Field(default_factory=list)
    requires_user_confirmation: List[str] = Field(default_factory=list)

    def all_tools(self) -> List[str]:
        return self.client_tools + self.server_tools

    def is_allowed(self, tool_id: str) -> bool:
        return tool_id in self.client_tools or tool_id in self.server_tools

    def needs_confirmation(self, tool_id: str) -> bool:
        return tool_id in self.requires_user_confirmation


class SchemaDefinition(SpecModel):
    """User-authored output schema; ``properties`` stays opaque JSON"""
    type: str = "object"
    required: List[str] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)


class OutputSchemas(SpecModel):
    plan: Optional[SchemaDefinition] = Field(default=None, alias="Plan")
    next_action: Optional[SchemaDefinition] = Field(default=None, alias="NextAction")
    weekly_review: Optional[SchemaDefinition] = Field(default=None, alias="WeeklyReview")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RenderingHints(SpecModel):
    primary_card: str = "next_actions"
    max_cards_per_response: int = 3


class Outputs(SpecModel):
    schemas: OutputSchemas = Field(default_factory=OutputSchemas)
    rendering_hints: RenderingHints = Field(default_factory=RenderingHints)


class CoachSpec(SpecModel):
    """Declarative behavior contract for a coach"""
    version: str = "1.0"
    identity: Identity
    style: Style = Field(default_factory=Style)
    methods: Methods = Field(default_factory=Methods)
    policies: Policies = Field(default_factory=Policies)
    tools_allowed: ToolsAllowed = Field(default_factory=ToolsAllowed)
    outputs: Outputs = Field(default_factory=Outputs)


CLIENT_CONFIRMATION_TOOLS = [
    "local_notification_schedule",
    "calendar_event_create",
    "reminder_create",
]


def default_coach_spec() -> CoachSpec:
    """Fallback spec used when a coach has no usable definition"""

    return CoachSpec(
        version="1.0",
        identity=Identity(
            name="General Systems Coach",
            tagline="Build small systems that compound",
            niche="productivity_systems",
        ),
        style=Style(
            tone="minimalist_direct",
            verbosity="low",
            formatting=Formatting(
                max_bullets=7,
                max_sentences_per_paragraph=2,
                always_end_with=["one_question", "one_next_action"],
                use_emoji="sparingly",
                allowed_markdown=["bullet_list", "numbered_list", "bold"],
            ),
            interaction_rules=InteractionRules(
                ask_one_question_at_a_time=True,
                confirm_before_scheduling=True,
                avoid_motivational_fluff=True,
                reflect_user_language=True,
            ),
        ),
        policies=Policies(
            refusals=Refusals(
                medical=True,
                legal=True,
                financial_advice="general_only",
                self_harm="escalate_support",
            ),
            privacy=Privacy(
                store_sensitive_memory=False,
                redact_patterns=["password", "api_key", "credit_card"],
            ),
            safety=SafetyFlags(no_manipulation=True, no_guilt=True, no_shaming=True),
        ),
        tools_allowed=ToolsAllowed(
            client_tools=list(CLIENT_CONFIRMATION_TOOLS),
            server_tools=["memory_read", "memory_write", "plan_create"],
            requires_user_confirmation=list(CLIENT_CONFIRMATION_TOOLS),
        ),
    )


def spec_from_legacy_blueprint(blueprint: Dict[str, Any]) -> CoachSpec:
    """Best-effort translation of an unstructured coach blueprint.

    Only the style fields carry over; everything else comes from the default spec.
    """

    spec = default_coach_spec()
    style = blueprint.get("style") if isinstance(blueprint, dict) else None
    if isinstance(style, dict):
        tone = style.get("tone")
        if isinstance(tone, str) and tone:
            spec.style.tone = tone
        verbosity = style.get("verbosity")
        if isinstance(verbosity, str) and verbosity:
            spec.style.verbosity = verbosity
    return spec
