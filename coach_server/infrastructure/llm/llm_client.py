from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional
from dataclasses import dataclass
import asyncio
import structlog

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from domain.errors import ProviderError

logger = structlog.get_logger(__name__)

RETRYABLE_MARKERS = (
    "timeout",
    "timed out",
    "deadline exceeded",
    "connection refused",
    "connection reset",
    "temporary failure",
    "service unavailable",
    "unavailable",
    "rate limit",
    "resource exhausted",
    "quota exceeded",
    "internal error",
)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 10.0
    multiplier: float = 2.0


def is_retryable(error: BaseException) -> bool:
    """Classify a provider failure as transient"""

    if isinstance(error, ProviderError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def content_to_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of parts) to text"""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return "" if content is None else str(content)


class LLMClient:
    """Single-shot and streaming completions over a LangChain chat model.

    ``complete`` retries transient failures with exponential backoff.
    ``stream`` is never retried: tokens already forwarded cannot be replayed.
    """

    def __init__(
        self,
        model: BaseChatModel,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        policy = self.retry_policy
        backoff = policy.initial_backoff
        last_error: Optional[BaseException] = None

        for attempt in range(policy.max_retries + 1):
            if attempt > 0:
                await self._sleep(backoff)
                backoff = min(backoff * policy.multiplier, policy.max_backoff)

            try:
                message = await self.model.ainvoke(self._messages(prompt, system_prompt))
                return content_to_text(message.content)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if not is_retryable(e):
                    raise ProviderError(f"non-retryable error: {e}", retryable=False) from e
                logger.warning(
                    "Provider call failed",
                    attempt=attempt + 1,
                    max_attempts=policy.max_retries + 1,
                    error=str(e)
                )

        raise ProviderError(f"max retries exceeded: {last_error}", retryable=True) from last_error

    async def stream(self, prompt: str, system_prompt: Optional[str] = None) -> AsyncIterator[str]:
        try:
            async for chunk in self.model.astream(self._messages(prompt, system_prompt)):
                text = content_to_text(chunk.content)
                if text:
                    yield text
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ProviderError(str(e), retryable=is_retryable(e)) from e

    @staticmethod
    def _messages(prompt: str, system_prompt: Optional[str]) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))
        return messages


def create_gemini_client(settings) -> LLMClient:
    """Build the production client from application settings"""

    from langchain_google_genai import ChatGoogleGenerativeAI

    model = ChatGoogleGenerativeAI(
        model=settings.gemini_model_id,
        temperature=settings.gemini_temperature,
        max_output_tokens=settings.gemini_max_tokens,
        google_api_key=settings.google_api_key,
    )
    return LLMClient(
        model,
        RetryPolicy(
            max_retries=settings.llm_max_retries,
            initial_backoff=settings.llm_initial_backoff_sec,
            max_backoff=settings.llm_max_backoff_sec,
        )
    )
