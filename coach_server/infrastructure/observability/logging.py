import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "coach-server",
    environment: str = "development",
    version: str = "unknown"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Process-wide fields survive the per-request clear in the HTTP middleware
    _SERVICE_CONTEXT.update(
        service=service_name,
        environment=environment,
        version=version
    )


_SERVICE_CONTEXT: Dict[str, str] = {}


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    for key, value in _SERVICE_CONTEXT.items():
        event_dict.setdefault(key, value)

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("trace_id", "session_id", "uid"):
        if context.get(key):
            event_dict[key] = context[key]

    return event_dict


class PipelineLogger:
    """Specialized logger for coaching turn events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_stage_transition(
        self,
        session_id: str,
        from_stage: str,
        to_stage: str,
        duration_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log pipeline stage transitions"""

        self.logger.info(
            "stage_transition",
            session_id=session_id,
            from_stage=from_stage,
            to_stage=to_stage,
            duration_ms=duration_ms,
            details=details or {}
        )

    def log_stage_failure(self, session_id: str, stage: str, code: str, error: str):
        """Log a fatal stage failure"""

        self.logger.error(
            "stage_failed",
            session_id=session_id,
            stage=stage,
            code=code,
            error=error
        )

    def log_policy_notice(self, session_id: str, kind: str, message: str):
        self.logger.warning(
            "policy_notice",
            session_id=session_id,
            kind=kind,
            message=message
        )

    def log_tool_execution(
        self,
        tool_id: str,
        uid: str,
        status: str,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None
    ):
        """Log tool execution events"""

        self.logger.info(
            "tool_execution",
            tool_id=tool_id,
            uid=uid,
            status=status,
            duration_ms=duration_ms,
            error=error
        )
