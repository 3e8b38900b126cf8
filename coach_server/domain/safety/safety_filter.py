from typing import List, Optional, Sequence
import structlog

from domain.errors import SafetyViolation
from domain.models.coach_spec import CoachSpec
from domain.models.turn import CoachOutput
from .screens import SENSITIVE_PATTERNS, PolicyScreen, contains_sensitive_data, default_screens

logger = structlog.get_logger(__name__)

REDACTION_MARK = "[REDACTED]"


class SafetyFilter:
    """Runs policy screens in order; the first failing screen wins"""

    def __init__(self, screens: Optional[Sequence[PolicyScreen]] = None):
        self.screens: List[PolicyScreen] = list(screens) if screens is not None else default_screens()

    def validate(self, output: CoachOutput, spec: CoachSpec) -> None:
        """Raise ``SafetyViolation`` if any screen rejects the output"""

        for screen in self.screens:
            try:
                screen.check(output, spec)
            except SafetyViolation as violation:
                logger.info("Safety screen rejected output", screen=screen.name, kind=violation.kind)
                raise

    def redact_sensitive_data(self, text: str) -> str:
        redacted = text
        for pattern in SENSITIVE_PATTERNS:
            redacted = pattern.sub(REDACTION_MARK, redacted)
        return redacted

    def validate_memory_write(self, content: str) -> None:
        if contains_sensitive_data(content):
            raise SafetyViolation("sensitive_data", "Memory write contains sensitive data")
