from typing import Optional


class PipelineError(Exception):
    """Fatal failure of a turn stage, surfaced to the client as an ``error`` event"""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class RouterError(PipelineError):
    code = "ROUTER_ERROR"


class ContextBuildError(PipelineError):
    code = "CONTEXT_ERROR"


class GenerationError(PipelineError):
    code = "COACH_ERROR"


class StreamTimeoutError(PipelineError):
    code = "TIMEOUT"


class ExtractionError(Exception):
    """Structured extraction could not run; the turn continues without cards"""


class SafetyViolation(Exception):
    """A policy screen rejected the generated output"""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class ProviderError(Exception):
    """Language model provider call failed"""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class StreamClosedError(RuntimeError):
    """An event was emitted after the stream's terminal event"""


class ToolError(Exception):
    status_code = 400


class ToolNotFoundError(ToolError):
    status_code = 404

    def __init__(self, tool_id: str):
        super().__init__("tool not found")
        self.tool_id = tool_id


class ToolRunNotFoundError(ToolError):
    status_code = 404


class ToolInputError(ToolError):
    status_code = 400


class ToolPermissionError(ToolError):
    status_code = 403


class AuthenticationError(Exception):
    """Bearer credential missing, malformed or rejected"""
