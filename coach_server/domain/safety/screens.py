"""Policy screens run by the safety filter, in order, over one coach output."""

from abc import ABC, abstractmethod
from typing import Callable, List, Pattern, Sequence
import re

from domain.errors import SafetyViolation
from domain.models.coach_spec import CoachSpec
from domain.models.turn import CoachOutput

SENSITIVE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"password[:\s]+\S+", re.IGNORECASE),
    re.compile(r"api[_\s]?key[:\s]+\S+", re.IGNORECASE),
    re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),  # card number
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"secret[:\s]+\S+", re.IGNORECASE),
    re.compile(r"token[:\s]+\S+", re.IGNORECASE),
]

MEDICAL_KEYWORDS = (
    "diagnose", "diagnosis", "prescribe", "prescription",
    "medication", "treatment", "cure", "disease",
    "symptom", "medical condition", "doctor should",
)

LEGAL_KEYWORDS = (
    "legal advice", "lawsuit", "sue", "attorney",
    "lawyer", "court", "legal rights", "contract law",
)

FINANCIAL_KEYWORDS = (
    "invest in", "stock pick", "buy stock", "sell stock",
    "financial advice", "portfolio", "trading",
)

SELF_HARM_KEYWORDS = (
    "kill myself", "end my life", "suicide", "self-harm",
    "hurt myself", "want to die",
)

MANIPULATION_PHRASES = (
    "you should feel guilty",
    "you're being lazy",
    "you're not trying hard enough",
    "you'll never succeed",
    "you're a failure",
    "you should be ashamed",
)

SHAMING_PHRASES = (
    "you should be embarrassed",
    "that's pathetic",
    "you're weak",
    "you're incompetent",
)


def keyword_matcher(keywords: Sequence[str]) -> Pattern[str]:
    """Case-insensitive match anchored at a word start ("sue" does not hit "issue")"""

    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternatives})", re.IGNORECASE)


def contains_sensitive_data(text: str) -> bool:
    return any(pattern.search(text) for pattern in SENSITIVE_PATTERNS)


class PolicyScreen(ABC):
    """One ordered check; raises ``SafetyViolation`` on failure"""

    name = "screen"

    @abstractmethod
    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        pass


class KeywordRefusalScreen(PolicyScreen):
    def __init__(
        self,
        name: str,
        keywords: Sequence[str],
        message: str,
        is_active: Callable[[CoachSpec], bool]
    ):
        self.name = name
        self.matcher = keyword_matcher(keywords)
        self.message = message
        self.is_active = is_active

    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        if self.is_active(spec) and self.matcher.search(output.message_text):
            raise SafetyViolation(self.name, self.message)


def refusal_screens() -> List[PolicyScreen]:
    return [
        KeywordRefusalScreen(
            "refusal.medical",
            MEDICAL_KEYWORDS,
            "I can't provide medical advice. Please consult a healthcare professional",
            lambda spec: spec.policies.refusals.medical,
        ),
        KeywordRefusalScreen(
            "refusal.legal",
            LEGAL_KEYWORDS,
            "I can't provide legal advice. Please consult a lawyer",
            lambda spec: spec.policies.refusals.legal,
        ),
        KeywordRefusalScreen(
            "refusal.financial",
            FINANCIAL_KEYWORDS,
            "I can't provide financial advice. Please consult a financial advisor",
            lambda spec: spec.policies.refusals.financial_advice == "none",
        ),
        KeywordRefusalScreen(
            "refusal.self_harm",
            SELF_HARM_KEYWORDS,
            "I'm concerned about your safety. Please reach out to a crisis helpline "
            "or mental health professional immediately",
            lambda spec: spec.policies.refusals.self_harm == "escalate_support",
        ),
    ]


class PrivacyScreen(PolicyScreen):
    """Rejects redact patterns when the coach may not store sensitive memory"""

    name = "privacy"

    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        privacy = spec.policies.privacy
        if privacy.store_sensitive_memory:
            return

        lowered = output.message_text.lower()
        for pattern in privacy.redact_patterns:
            if pattern and pattern.lower() in lowered:
                raise SafetyViolation(
                    self.name,
                    f"Response contains sensitive pattern '{pattern}' and cannot be stored"
                )


class ToolConsentScreen(PolicyScreen):
    name = "tool_consent"

    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        allowed = spec.tools_allowed
        for request in output.tool_requests:
            if allowed.needs_confirmation(request.tool) and not request.requires_confirmation:
                raise SafetyViolation(self.name, f"Tool {request.tool} requires user confirmation")
            if not allowed.is_allowed(request.tool):
                raise SafetyViolation(self.name, f"Tool {request.tool} is not allowed by this coach")


class SensitiveDataScreen(PolicyScreen):
    """Always on, regardless of policy flags"""

    name = "sensitive_data"

    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        if contains_sensitive_data(output.message_text):
            raise SafetyViolation(self.name, "Response contains sensitive data and cannot be stored")


class PhraseScreen(PolicyScreen):
    def __init__(self, name: str, phrases: Sequence[str], message: str, is_active: Callable[[CoachSpec], bool]):
        self.name = name
        self.phrases = [phrase.lower() for phrase in phrases]
        self.message = message
        self.is_active = is_active

    def check(self, output: CoachOutput, spec: CoachSpec) -> None:
        if not self.is_active(spec):
            return
        lowered = output.message_text.lower().replace("’", "'")
        if any(phrase in lowered for phrase in self.phrases):
            raise SafetyViolation(self.name, self.message)


def tone_screens() -> List[PolicyScreen]:
    return [
        PhraseScreen(
            "manipulation",
            MANIPULATION_PHRASES,
            "Response contains manipulative language",
            lambda spec: spec.policies.safety.no_manipulation or spec.policies.safety.no_guilt,
        ),
        PhraseScreen(
            "shaming",
            SHAMING_PHRASES,
            "Response contains shaming language",
            lambda spec: spec.policies.safety.no_shaming,
        ),
    ]


def default_screens() -> List[PolicyScreen]:
    return refusal_screens() + [PrivacyScreen(), ToolConsentScreen(), SensitiveDataScreen()] + tone_screens()
